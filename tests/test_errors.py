import asyncio
import json

import httpx
import pytest

from analysis_engine.tools.errors import (
    ErrorCode, NotFoundError, ParseError, RateLimitedError, classify_exception, is_retryable,
)


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://example.test/x")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=response)


@pytest.mark.parametrize("exc, code", [
    (RateLimitedError("slow down"),               ErrorCode.RATE_LIMITED),
    (NotFoundError("no such stock"),              ErrorCode.NOT_FOUND),
    (ParseError("bad shape"),                     ErrorCode.PARSE_ERROR),
    (asyncio.TimeoutError(),                      ErrorCode.TIMEOUT),
    (httpx.ReadTimeout("read timed out"),         ErrorCode.TIMEOUT),
    (_status_error(429),                          ErrorCode.RATE_LIMITED),
    (_status_error(401),                          ErrorCode.AUTH_FAILED),
    (_status_error(403),                          ErrorCode.BLOCKED),
    (_status_error(404),                          ErrorCode.NOT_FOUND),
    (_status_error(504),                          ErrorCode.TIMEOUT),
    (json.JSONDecodeError("Expecting value", "", 0), ErrorCode.PARSE_ERROR),
    (KeyError("chart"),                           ErrorCode.PARSE_ERROR),
    (RuntimeError("upstream said: 429 Too Many Requests"), ErrorCode.RATE_LIMITED),
    (RuntimeError("connection timed out"),        ErrorCode.TIMEOUT),
    (RuntimeError("something odd"),               ErrorCode.UNKNOWN),
    (TypeError("unsupported operand"),            ErrorCode.UNKNOWN),
])
def test_classifier(exc, code):
    info = classify_exception(exc)
    assert info.code is code
    assert info.retryable == (code in (ErrorCode.RATE_LIMITED, ErrorCode.TIMEOUT))


def test_only_rate_limit_and_timeout_are_retryable():
    retryable = {c for c in ErrorCode if is_retryable(c)}
    assert retryable == {ErrorCode.RATE_LIMITED, ErrorCode.TIMEOUT}


def test_error_info_wire_shape():
    info = classify_exception(NotFoundError("ITC not tracked"))
    assert info.to_dict() == {"code": "NOT_FOUND", "message": "ITC not tracked", "retryable": False}
