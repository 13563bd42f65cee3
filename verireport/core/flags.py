"""
Central feature flags. One file controls every external dependency.

Set via environment variables (prefix FF_) or .env file.
When a flag is OFF, the system uses a local fallback. Nothing crashes.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Identity ─────────────────────────────────────────────────────
    require_user_header: bool = Field(default=True, alias="FF_REQUIRE_USER_HEADER")
    # ON  → Caller identity taken from X-User-Id (set by the gateway). Missing → 401.
    # OFF → Dev user injected (user_id="dev-user"). No header needed.

    # ── Storage ──────────────────────────────────────────────────────
    use_s3: bool = Field(default=True, alias="FF_USE_S3")
    # ON  → Files and reports go to AWS S3. Needs AWS creds + S3_BUCKET_NAME.
    # OFF → Saved under LOCAL_STORAGE_PATH, served from /v1/storage/{key}.

    # ── OCR ──────────────────────────────────────────────────────────
    use_ocr: bool = Field(default=True, alias="FF_USE_OCR")
    # ON  → Images sent to the vision model, PDFs read with pdfplumber.
    # OFF → Extraction skipped. Files are still fingerprinted and attested.

    # ── LLM Provider ─────────────────────────────────────────────────
    llm_provider: str = Field(default="gemini", alias="FF_LLM_PROVIDER")
    # "gemini" → Google Gemini OpenAI-compatible endpoint. Needs GEMINI_API_KEY.
    # "aiml"   → AIML API proxy. Needs AIML_API_KEY.
    # "openai" → Direct OpenAI. Needs OPENAI_API_KEY.

    # ── Verification ─────────────────────────────────────────────────
    chain_prior_records: bool = Field(default=False, alias="FF_CHAIN_PRIOR_RECORDS")
    # ON  → Each chain fingerprint also hashes the previous record's chain value.
    # OFF → Chain fingerprint attests content fingerprint + timestamp only.


@lru_cache
def get_flags() -> FeatureFlags:
    return FeatureFlags()
