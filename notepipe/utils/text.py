import re

_CONTROL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def safe_preview(text: str, n: int = 600) -> str:
    text = (text or "").strip()
    return text if len(text) <= n else text[:n] + "…"


def strip_control(text: str) -> str:
    """Drop C0 control characters other than tab, newline and carriage return."""
    return _CONTROL.sub("", text or "")


def failure_reason(exc: BaseException, n: int = 500) -> str:
    """User-facing reason for a failed stage: the raw message, control chars removed, truncated."""
    message = strip_control(str(exc)).strip() or exc.__class__.__name__
    return safe_preview(message, n)
