import asyncio
import json

import httpx
import pytest

from verireport.core.errors import ConfigurationError, ExternalServiceError
from verireport.services import llm
from verireport.services.llm import HttpCompletionService, extract_message_text

MESSAGES = [{"role": "user", "content": "Reply with CONNECTED"}]


def completion_body(content="CONNECTED"):
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 5, "completion_tokens": 1},
    }


def run_complete(handler, api_key="k", max_retries=0, model=None):
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            service = HttpCompletionService(
                base_url="https://llm.test/v1",
                api_key=api_key,
                default_model="default-model",
                client=client,
                max_retries=max_retries,
                service_name="vision",
            )
            return await service.complete(MESSAGES, model=model)

    return asyncio.run(scenario())


def test_complete_posts_chat_completion_request():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=completion_body())

    assert run_complete(handler) == "CONNECTED"

    request = seen[0]
    assert request.url == "https://llm.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer k"
    payload = json.loads(request.content)
    assert payload["model"] == "default-model"
    assert payload["messages"] == MESSAGES


def test_complete_uses_explicit_model():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json=completion_body())

    run_complete(handler, model="vision-model")
    assert seen[0]["model"] == "vision-model"


def test_non_success_status_fails_without_retry():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, text="upstream exploded")

    with pytest.raises(ExternalServiceError) as exc:
        run_complete(handler, max_retries=3)

    assert exc.value.upstream_status == 500
    assert exc.value.service == "vision"
    assert exc.value.to_dict()["details"]["upstream_status"] == 500
    assert len(calls) == 1


def test_rate_limit_is_a_hard_failure():
    with pytest.raises(ExternalServiceError) as exc:
        run_complete(lambda request: httpx.Response(429, json={"error": "slow down"}))
    assert exc.value.upstream_status == 429


def test_missing_api_key_fails_before_any_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=completion_body())

    with pytest.raises(ConfigurationError):
        run_complete(handler, api_key="")
    assert calls == []


def test_transport_errors_are_retried(monkeypatch):
    monkeypatch.setattr(llm, "MAX_DELAY", 0.0)
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json=completion_body("ok"))

    assert run_complete(handler, max_retries=3) == "ok"
    assert len(calls) == 3


def test_exhausted_transport_retries_raise_external_service_error(monkeypatch):
    monkeypatch.setattr(llm, "MAX_DELAY", 0.0)
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExternalServiceError):
        run_complete(handler, max_retries=2)
    assert len(calls) == 3


def test_non_json_body_is_an_external_failure():
    with pytest.raises(ExternalServiceError):
        run_complete(lambda request: httpx.Response(200, text="<html>gateway</html>"))


def test_body_without_choices_is_an_external_failure():
    with pytest.raises(ExternalServiceError):
        run_complete(lambda request: httpx.Response(200, json={"id": "x"}))


def test_extract_message_text_variants():
    assert extract_message_text(completion_body("hi")) == "hi"
    assert extract_message_text(completion_body(None)) == ""
    parts = [{"type": "text", "text": "Total: "}, {"type": "text", "text": "$1,234"}]
    assert extract_message_text(completion_body(parts)) == "Total: $1,234"
    assert extract_message_text({"choices": []}) is None
    assert extract_message_text({}) is None


def test_from_settings_uses_configured_provider(monkeypatch):
    monkeypatch.setenv("DEFAULT_LLM_MODEL", "gemini-test")
    llm.get_settings.cache_clear()

    service = HttpCompletionService.from_settings()

    assert service.api_key == "test-key"
    assert service.default_model == "gemini-test"
    assert "generativelanguage" in service.base_url
    service.ensure_configured()


def test_from_settings_without_key_is_not_configured(monkeypatch):
    monkeypatch.setenv("FF_LLM_PROVIDER", "openai")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    llm.get_flags.cache_clear()
    llm.get_settings.cache_clear()

    service = HttpCompletionService.from_settings()
    with pytest.raises(ConfigurationError):
        service.ensure_configured()
