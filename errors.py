"""Error taxonomy shared by the backend client, the property manager and the dispatcher."""

from enum import IntEnum
from typing import Any, Dict, Optional


class ErrorCode(IntEnum):
    """Five-digit error codes (HTTP status * 100 plus a sub-code)."""

    SUCCESS_NO_CONTENT = 20400
    BAD_REQUEST = 40000
    UNAUTHORIZED = 40100
    FORBIDDEN = 40300
    NOT_FOUND = 40400
    PAYLOAD_TOO_LARGE = 41300
    RATE_LIMIT_EXCEEDED = 42900
    INTERNAL_ERROR = 50000
    SSL_ERROR = 50001
    CONNECTION_REFUSED = 50002
    TIMEOUT = 50400


_KINDS = {
    ErrorCode.SUCCESS_NO_CONTENT: "SuccessNoContent",
    ErrorCode.BAD_REQUEST: "BadRequest",
    ErrorCode.UNAUTHORIZED: "Unauthorized",
    ErrorCode.FORBIDDEN: "Forbidden",
    ErrorCode.NOT_FOUND: "NotFound",
    ErrorCode.PAYLOAD_TOO_LARGE: "PayloadTooLarge",
    ErrorCode.RATE_LIMIT_EXCEEDED: "RateLimitExceeded",
    ErrorCode.TIMEOUT: "Timeout",
}


class ObsidianError(Exception):
    """Raised for every failure that should reach the MCP caller with a code.

    Args:
        message: Human readable description.
        code: Five-digit code. Plain HTTP statuses (e.g. 404) are scaled
            to 40400; anything else outside 10000..99999 becomes 50000.
        details: Optional diagnostic payload (never shown to the caller).
    """

    def __init__(self, message: str, code: int = ErrorCode.INTERNAL_ERROR, details: Optional[Any] = None):
        if code < 10000 or code > 99999:
            code = code * 100 if code < 1000 else ErrorCode.INTERNAL_ERROR
        self.message = message
        self.code = int(code)
        self.details = details
        super().__init__(message)

    @property
    def kind(self) -> str:
        """Short name of the error category, e.g. ``NotFound``."""
        if self.code in _KINDS:
            return _KINDS[self.code]
        if 40000 <= self.code < 50000:
            return "BadRequest"
        return "InternalError"

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "kind": self.kind, "message": self.message}

    def __str__(self) -> str:
        return f"{self.kind} ({self.code}): {self.message}"


def error_code_from_status(status: int) -> int:
    """Map an HTTP status code to a five-digit error code."""
    if 400 <= status < 500:
        return 40000 + (status - 400) * 100
    if 500 <= status < 600:
        return 50000 + (status - 500) * 100
    return ErrorCode.INTERNAL_ERROR
