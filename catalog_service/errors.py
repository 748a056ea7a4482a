"""Error taxonomy for the catalog service and the JSON envelope used by every response."""

from typing import Any, Optional


class ServiceError(Exception):
    """Base error. Unmapped failures surface as 500 with a generic message."""
    status_code = 500
    kind = "internal_error"
    default_message = "Internal server error."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(ServiceError):
    status_code = 400
    kind = "validation_error"
    default_message = "Invalid request."


class Unauthorized(ServiceError):
    status_code = 401
    kind = "unauthorized"
    default_message = "Please log in"


class Forbidden(ServiceError):
    status_code = 403
    kind = "forbidden"
    default_message = "Not allowed."


class NotFound(ServiceError):
    status_code = 404
    kind = "not_found"
    default_message = "Resource not found."


class Conflict(ServiceError):
    status_code = 409
    kind = "conflict"
    default_message = "Resource already exists."


class UpstreamError(ServiceError):
    status_code = 502
    kind = "upstream_error"
    default_message = "External provider request failed."


class ServiceUnavailable(ServiceError):
    status_code = 503
    kind = "service_unavailable"
    default_message = "Service temporarily unavailable."


STATUS_KINDS = {
    400: ValidationFailed.kind,
    401: Unauthorized.kind,
    403: Forbidden.kind,
    404: NotFound.kind,
    405: "method_not_allowed",
    409: Conflict.kind,
    502: UpstreamError.kind,
    503: ServiceUnavailable.kind,
}


def envelope(response: Any = None, message: Optional[str] = None) -> dict:
    """Success envelope: {success, response, message?}."""
    body = {"success": True, "response": response}
    if message:
        body["message"] = message
    return body


def error_body(message: str, kind: str) -> dict:
    """Failure envelope: {success: false, message, error}."""
    return {"success": False, "message": message, "error": kind}


CLIENT_ERROR_KIND = "client_error"


def kind_for_status(status_code: int) -> str:
    if status_code in STATUS_KINDS:
        return STATUS_KINDS[status_code]
    if 400 <= status_code < 500:
        return CLIENT_ERROR_KIND
    return ServiceError.kind
