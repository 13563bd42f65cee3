"""
LLM completion client.

Both text extraction (vision input) and summarization (text input) go through
one capability: `complete(messages, model) -> text`. The pipeline depends on
the `CompletionService` protocol; production wires `HttpCompletionService`
against an OpenAI-compatible /chat/completions endpoint.

Features:
  - Reusable client (connection pooling) with explicit timeouts
  - Retry with exponential backoff + jitter on transport failures only
  - Non-2xx responses are hard failures (ExternalServiceError), never retried
  - Structured logging
"""

import asyncio
import logging
import random
import time
from typing import Any, Optional, Protocol

import httpx

from ..core.config import get_settings
from ..core.errors import ConfigurationError, ExternalServiceError
from ..core.flags import get_flags

logger = logging.getLogger(__name__)


class CompletionService(Protocol):
    async def complete(self, messages: list[dict], model: Optional[str] = None) -> str:
        ...


# ── Reusable client (connection pool) ────────────────────────────────

_client: Optional[httpx.AsyncClient] = None


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        settings = get_settings()
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10, read=settings.llm_timeout_seconds, write=30, pool=10),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
        )
    return _client


async def close_client():
    """Close the shared HTTP client. Call on app shutdown."""
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


# ── Provider config ──────────────────────────────────────────────────

def _get_provider_config(provider: Optional[str] = None) -> tuple[str, str, str]:
    """Returns (base_url, api_key, default_model) for a provider."""
    settings = get_settings()
    p = (provider or get_flags().llm_provider).lower()

    if p == "gemini":
        return settings.gemini_base_url, settings.gemini_api_key, settings.default_llm_model
    elif p == "aiml":
        return settings.aiml_base_url, settings.aiml_api_key, settings.default_llm_model
    else:  # openai (fallback)
        return settings.openai_base_url, settings.openai_api_key, settings.default_llm_model


# ── Retry logic ──────────────────────────────────────────────────────

BASE_DELAY = 1.0
MAX_DELAY = 16.0


class HttpCompletionService:
    """OpenAI-compatible chat completion over httpx."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        default_model: str,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 3,
        service_name: str = "llm",
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.default_model = default_model
        self.max_retries = max_retries
        self.service_name = service_name
        self._client = client

    @classmethod
    def from_settings(cls, provider: Optional[str] = None, service_name: str = "llm") -> "HttpCompletionService":
        settings = get_settings()
        base_url, api_key, default_model = _get_provider_config(provider)
        return cls(
            base_url=base_url,
            api_key=api_key,
            default_model=default_model,
            max_retries=settings.llm_max_retries,
            service_name=service_name,
        )

    def ensure_configured(self) -> None:
        if not self.api_key:
            raise ConfigurationError(
                f"No API key for LLM provider '{get_flags().llm_provider}'. "
                "Set GEMINI_API_KEY, AIML_API_KEY, or OPENAI_API_KEY."
            )
        if not self.base_url:
            raise ConfigurationError("LLM base URL is not configured")

    async def complete(self, messages: list[dict], model: Optional[str] = None) -> str:
        self.ensure_configured()

        payload: dict[str, Any] = {
            "model": model or self.default_model,
            "messages": messages,
        }
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        start = time.monotonic()
        resp = await self._request_with_retry(url, payload, headers)
        elapsed = time.monotonic() - start

        if resp.status_code >= 300:
            logger.error(
                "%s API error %d: %s", self.service_name, resp.status_code, resp.text[:500]
            )
            raise ExternalServiceError(
                f"{self.service_name} request failed with status {resp.status_code}",
                service=self.service_name,
                upstream_status=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError:
            raise ExternalServiceError(
                f"{self.service_name} returned a non-JSON body",
                service=self.service_name,
                upstream_status=resp.status_code,
            )

        content = extract_message_text(data)
        if content is None:
            raise ExternalServiceError(
                f"{self.service_name} response has no message content",
                service=self.service_name,
                upstream_status=resp.status_code,
            )

        usage = data.get("usage") or {}
        logger.info(
            "%s: %dms | in=%d out=%d tokens | model=%s",
            self.service_name,
            int(elapsed * 1000),
            usage.get("prompt_tokens", 0),
            usage.get("completion_tokens", 0),
            payload["model"],
        )
        return content

    async def _request_with_retry(self, url: str, payload: dict, headers: dict) -> httpx.Response:
        """POST with exponential backoff + jitter on transport errors."""
        client = self._client or _get_client()
        last_exc: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                return await client.post(url, json=payload, headers=headers)
            except httpx.TransportError as e:
                last_exc = e
                if attempt >= self.max_retries:
                    break
                delay = min(MAX_DELAY, BASE_DELAY * (2 ** attempt) + random.uniform(0, 1))
                logger.warning(
                    "%s transport error (attempt %d/%d): %s, retrying in %.1fs",
                    self.service_name, attempt + 1, self.max_retries + 1, e, delay,
                )
                await asyncio.sleep(delay)

        raise ExternalServiceError(
            f"{self.service_name} unreachable after {self.max_retries + 1} attempts: {last_exc}",
            service=self.service_name,
        )


def extract_message_text(data: dict) -> Optional[str]:
    """Pull the assistant text out of a chat completion body."""
    try:
        content = data["choices"][0]["message"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None

    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [p.get("text", "") for p in content if isinstance(p, dict)]
        return "".join(parts)
    return None
