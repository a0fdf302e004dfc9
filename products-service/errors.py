from pydantic import ValidationError


class APIError(Exception):
    """Error surfaced to the caller as ``{"error": message}`` with ``status_code``."""

    def __init__(self, status_code: int, message: str, error_type: str = "error"):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.error_type = error_type


class InvalidProductId(ValueError):
    """The request target does not carry a usable product identifier."""


def describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors(include_url=False):
        loc = ".".join(str(part) for part in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)
