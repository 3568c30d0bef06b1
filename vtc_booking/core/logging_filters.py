"""Logging filters that scrub credentials from log records."""
import logging
import re

_SENSITIVE_PATTERN = re.compile(
    r"(Bearer\s+[\w\.-]+|sk-[\w-]{8,}|X-API-KEY\"?\s*[:=]\s*\"?[\w-]+|key=[\w-]{8,})",
    re.IGNORECASE,
)


class SensitiveFilter(logging.Filter):
    """Replace API keys and bearer tokens with a redaction marker."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = _SENSITIVE_PATTERN.sub("**REDACTED**", record.msg)
        return True


def install_sensitive_filter(*logger_names: str) -> None:
    for name in logger_names or ("uvicorn", "uvicorn.access", "uvicorn.error", ""):
        target = logging.getLogger(name)
        # logger filters skip records propagated from children, handler filters do not
        for holder in [target, *target.handlers]:
            if not any(isinstance(f, SensitiveFilter) for f in holder.filters):
                holder.addFilter(SensitiveFilter())
