"""
Stock Intel — Tool Error Taxonomy
───────────────────────────────────
Closed set of error codes. Whether a code is retryable is fixed here,
never by the caller.

Providers may raise a ToolError subclass, or just let httpx / anthropic /
json exceptions escape — classify_exception() maps both. The executor is
the only caller of the classifier.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

log = logging.getLogger("ae.errors")


class ErrorCode(str, Enum):
    RATE_LIMITED = "RATE_LIMITED"
    NOT_FOUND    = "NOT_FOUND"
    TIMEOUT      = "TIMEOUT"
    AUTH_FAILED  = "AUTH_FAILED"
    BLOCKED      = "BLOCKED"
    PARSE_ERROR  = "PARSE_ERROR"
    UNKNOWN      = "UNKNOWN"


RETRYABLE_CODES = frozenset({ErrorCode.RATE_LIMITED, ErrorCode.TIMEOUT})


def is_retryable(code: ErrorCode) -> bool:
    return code in RETRYABLE_CODES


@dataclass(frozen=True)
class ToolErrorInfo:
    code:      ErrorCode
    message:   str
    retryable: bool

    @classmethod
    def of(cls, code: ErrorCode, message: str) -> "ToolErrorInfo":
        return cls(code=code, message=message, retryable=is_retryable(code))

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message, "retryable": self.retryable}


# ── Exceptions providers may raise ────────────────────────────

class ToolError(Exception):
    code = ErrorCode.UNKNOWN


class RateLimitedError(ToolError):
    code = ErrorCode.RATE_LIMITED


class NotFoundError(ToolError):
    code = ErrorCode.NOT_FOUND


class ToolTimeoutError(ToolError):
    code = ErrorCode.TIMEOUT


class AuthFailedError(ToolError):
    code = ErrorCode.AUTH_FAILED


class BlockedError(ToolError):
    code = ErrorCode.BLOCKED


class ParseError(ToolError):
    code = ErrorCode.PARSE_ERROR


# ── Classifier ────────────────────────────────────────────────

_STATUS_CODES = {
    429: ErrorCode.RATE_LIMITED,
    401: ErrorCode.AUTH_FAILED,
    403: ErrorCode.BLOCKED,
    404: ErrorCode.NOT_FOUND,
    408: ErrorCode.TIMEOUT,
    504: ErrorCode.TIMEOUT,
}


def _status_of(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def classify_exception(exc: BaseException) -> ToolErrorInfo:
    message = str(exc) or exc.__class__.__name__

    if isinstance(exc, ToolError):
        return ToolErrorInfo.of(exc.code, message)

    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)) \
            or "Timeout" in exc.__class__.__name__:
        return ToolErrorInfo.of(ErrorCode.TIMEOUT, message or "timed out")

    status = _status_of(exc)
    if status in _STATUS_CODES:
        return ToolErrorInfo.of(_STATUS_CODES[status], message)

    if isinstance(exc, (json.JSONDecodeError, ValueError, KeyError)):
        return ToolErrorInfo.of(ErrorCode.PARSE_ERROR, message)

    lowered = message.lower()
    if "429" in lowered or "rate limit" in lowered or "too many requests" in lowered:
        return ToolErrorInfo.of(ErrorCode.RATE_LIMITED, message)
    if "timeout" in lowered or "timed out" in lowered or "etimedout" in lowered:
        return ToolErrorInfo.of(ErrorCode.TIMEOUT, message)

    return ToolErrorInfo.of(ErrorCode.UNKNOWN, message)
