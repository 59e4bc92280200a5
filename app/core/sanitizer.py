import re
from typing import Any, Dict, Iterable

_SCRIPT_RE = re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[^>]*>[\s\S]*?</style>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")


def redact_pii(message: str) -> str:
    """Redact personally identifiable information from log messages.

    Sanitizes emails, IPs, JWT tokens, API keys, and passwords before they
    reach the console or the rotating log files.
    """
    if not isinstance(message, str):
        return str(message)

    # Emails: user@example.com -> u***@example.com
    message = re.sub(
        r"[\w.-]+@[\w.-]+\.\w+",
        lambda m: m.group()[0] + "***@" + m.group().split("@")[1],
        message,
    )

    # IPs (IPv4): 192.168.1.100 -> 192.168.1.***
    message = re.sub(
        r"\b(\d{1,3}\.\d{1,3}\.\d{1,3}\.)\d{1,3}\b", r"\1***", message
    )

    # JWT tokens: eyJ... -> [JWT_REDACTED]
    message = re.sub(
        r"eyJ[A-Za-z0-9_-]+\.eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+",
        "[JWT_REDACTED]",
        message,
    )

    # API Keys: long hex strings (32+ chars)
    message = re.sub(r"\b[a-fA-F0-9]{32,}\b", "[API_KEY_REDACTED]", message)

    # Password values in common patterns
    message = re.sub(
        r'(password|passwd|pwd|secret)["\']?\s*[:=]\s*["\']?[^"\'&\s]+',
        r"\1=[REDACTED]",
        message,
        flags=re.IGNORECASE,
    )

    return message


def strip_html(html: str) -> str:
    """Remove script/style blocks with their content, then every remaining tag."""
    text = _SCRIPT_RE.sub("", html)
    text = _STYLE_RE.sub("", text)
    return _TAG_RE.sub("", text)


def sanitize_string(value: Any) -> str:
    """Sanitize user-provided text for storage and display (XSS mitigation)."""
    if value is None:
        return ""
    return strip_html(str(value)).strip()


def sanitize_strings(data: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    """Copy of ``data`` with the named string (or None) fields sanitized."""
    out = dict(data)
    for key in keys:
        if key in out and (out[key] is None or isinstance(out[key], str)):
            out[key] = sanitize_string(out[key])
    return out
