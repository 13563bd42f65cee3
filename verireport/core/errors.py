"""
Pipeline error taxonomy. Every failure the verification and report pipeline
can surface is one of these; the app factory maps them to structured JSON.
"""

from typing import Any, Optional


class PipelineError(Exception):
    """Base class. Carries a human-readable message and structured details."""

    error_type = "pipeline_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "type": self.error_type,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(PipelineError):
    """Required credential or endpoint missing. Raised before any external call."""

    error_type = "configuration_error"
    status_code = 503


class ExternalServiceError(PipelineError):
    """Extraction or summarization service returned a non-success response."""

    error_type = "external_service_error"
    status_code = 502

    def __init__(
        self,
        message: str,
        service: str = "",
        upstream_status: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        details = dict(details or {})
        if service:
            details["service"] = service
        if upstream_status is not None:
            details["upstream_status"] = upstream_status
        super().__init__(message, details)
        self.service = service
        self.upstream_status = upstream_status


class StorageError(PipelineError):
    """Reading source bytes or writing an output document failed."""

    error_type = "storage_error"
    status_code = 500


class ValidationError(PipelineError):
    """Malformed input, rejected before any external call."""

    error_type = "validation_error"
    status_code = 400


class NotFoundError(ValidationError):
    """Referenced file or conversation does not exist."""

    error_type = "not_found"
    status_code = 404
