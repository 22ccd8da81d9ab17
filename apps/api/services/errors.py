"""Domain error taxonomy shared by services and routers."""

from __future__ import annotations

from typing import Any, Dict


class ServiceError(Exception):
    """Base class for errors that map to a client-safe HTTP response."""

    status_code = 500
    error = "internal_error"
    default_message = "Internal server error."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.error, "detail": self.message}


class ValidationError(ServiceError):
    status_code = 400
    error = "validation_error"
    default_message = "Invalid request."


class AllowanceCapExceeded(ValidationError):
    error = "allowance_cap_exceeded"
    default_message = "Purchase would exceed the monthly cup limit."


class Unauthorized(ServiceError):
    status_code = 401
    error = "unauthorized"
    default_message = "Authentication required."


class NotFound(ServiceError):
    status_code = 404
    error = "not_found"
    default_message = "Not found."


class InsufficientAllowance(ServiceError):
    status_code = 400
    error = "insufficient_allowance"
    default_message = "No cups left for this month."


class Conflict(ServiceError):
    status_code = 409
    error = "conflict"
    default_message = "Request conflicts with a concurrent change. Please retry."


class CodeGenerationExhausted(Conflict):
    error = "code_generation_exhausted"
    default_message = "Could not generate a unique code. Please retry."


class UpstreamUnavailable(ServiceError):
    status_code = 503
    error = "upstream_unavailable"
    default_message = "Storage is temporarily unavailable. Please retry."

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["retryable"] = True
        return payload


class RateLimited(ServiceError):
    status_code = 429
    error = "rate_limited"
    default_message = "Too many requests. Try again later."

    def __init__(self, message: str | None = None, retry_after: int = 60):
        super().__init__(message)
        self.retry_after = retry_after
