"""Error taxonomy shared by the tariff and assistant endpoints"""
from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    DOMAIN = "domain"
    UPSTREAM = "upstream"
    RATE_LIMIT = "rate_limit"
    UNAVAILABLE = "unavailable"


class ErrorCode(str, Enum):
    INVALID_JSON = "INVALID_JSON"
    EMPTY_MESSAGE = "EMPTY_MESSAGE"
    INVALID_INPUT = "INVALID_INPUT"
    UNKNOWN_VEHICLE = "UNKNOWN_VEHICLE"
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
    TENANT_CONFIG_UNAVAILABLE = "TENANT_CONFIG_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"
    AI_DISABLED = "AI_DISABLED"
    OPENAI_NOT_CONFIGURED = "OPENAI_NOT_CONFIGURED"
    OPENAI_FAILED = "OPENAI_FAILED"
    OPENAI_EMPTY = "OPENAI_EMPTY"

    def __str__(self):
        return self.value

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self]

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_CATEGORIES = {
    ErrorCode.INVALID_JSON: ErrorCategory.VALIDATION,
    ErrorCode.EMPTY_MESSAGE: ErrorCategory.VALIDATION,
    ErrorCode.INVALID_INPUT: ErrorCategory.DOMAIN,
    ErrorCode.UNKNOWN_VEHICLE: ErrorCategory.DOMAIN,
    ErrorCode.TENANT_NOT_FOUND: ErrorCategory.DOMAIN,
    ErrorCode.TENANT_CONFIG_UNAVAILABLE: ErrorCategory.UNAVAILABLE,
    ErrorCode.RATE_LIMITED: ErrorCategory.RATE_LIMIT,
    ErrorCode.AI_DISABLED: ErrorCategory.UNAVAILABLE,
    ErrorCode.OPENAI_NOT_CONFIGURED: ErrorCategory.UNAVAILABLE,
    ErrorCode.OPENAI_FAILED: ErrorCategory.UPSTREAM,
    ErrorCode.OPENAI_EMPTY: ErrorCategory.UPSTREAM,
}

_HTTP_STATUS = {
    ErrorCode.INVALID_JSON: 400,
    ErrorCode.EMPTY_MESSAGE: 400,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.UNKNOWN_VEHICLE: 400,
    ErrorCode.TENANT_NOT_FOUND: 404,
    ErrorCode.TENANT_CONFIG_UNAVAILABLE: 503,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.AI_DISABLED: 404,
    ErrorCode.OPENAI_NOT_CONFIGURED: 500,
    ErrorCode.OPENAI_FAILED: 502,
    ErrorCode.OPENAI_EMPTY: 502,
}

DETAIL_MAX_LEN = 400


class UpstreamError(Exception):
    """A routing, LLM or search provider call failed.

    Carries the HTTP status (None for transport failures) and a truncated
    diagnostic detail meant for server logs only.
    """

    def __init__(self, provider: str, status: Optional[int] = None, detail: Optional[str] = None):
        self.provider = provider
        self.status = status
        self.detail = (detail or "")[:DETAIL_MAX_LEN] or None
        super().__init__(f"{provider} failed (status={status})")
