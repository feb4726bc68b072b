"""API error taxonomy shared by the translation layer and the HTTP handlers."""
from typing import Any, Dict


class ApiError(Exception):
    """Base exception carrying an HTTP status and an OpenAI-style error code/type."""

    status_code: int = 500
    code: str = "api_error"
    type: str = "api_error"

    def __init__(
        self,
        status_code: int | None = None,
        code: str | None = None,
        message: str = "An unexpected error occurred",
        type: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        if type is not None:
            self.type = type

    def to_dict(self) -> Dict[str, Any]:
        """Error body: {"error": {"message", "type", "code"}}."""
        return error_body(self.message, self.type, self.code)


class InvalidRequestError(ApiError):
    """Malformed, missing or out-of-range client fields."""

    status_code = 400
    code = "invalid_request"
    type = "invalid_request_error"

    def __init__(self, message: str):
        super().__init__(message=message)


class ModelNotFoundError(ApiError):
    """Single-model lookup miss."""

    status_code = 404
    code = "model_not_found"
    type = "invalid_request_error"

    def __init__(self, model_id: str):
        super().__init__(message=f"Model {model_id} not found")
        self.model_id = model_id


class NotImplementedApiError(ApiError):
    """Endpoint intentionally not supported (embeddings)."""

    status_code = 501
    code = "not_implemented"
    type = "not_implemented_error"

    def __init__(self, message: str):
        super().__init__(message=message)


class RequestTimeoutError(ApiError):
    """Backend call aborted or exceeded its deadline."""

    status_code = 408
    code = "request_timeout"

    def __init__(self, message: str = "Request was aborted"):
        super().__init__(message=message)


class NoResponseError(ApiError):
    """Backend finished without producing an assistant message."""

    status_code = 500
    code = "no_response"

    def __init__(self, message: str = "No assistant response received from Claude Code SDK"):
        super().__init__(message=message)


class BackendCallFailedError(ApiError):
    """Any other backend failure; carries the underlying error message."""

    status_code = 500
    code = "chat_failed"

    def __init__(self, message: str):
        super().__init__(message=message)


def error_body(message: str, type: str, code: str) -> Dict[str, Any]:
    return {"error": {"message": message, "type": type, "code": code}}


INTERNAL_ERROR_BODY = error_body("Internal server error", "internal_error", "internal_error")
NOT_FOUND_BODY = error_body("The requested endpoint does not exist", "not_found", "not_found")
