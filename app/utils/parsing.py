from __future__ import annotations

from typing import Any

_MISSING = object()


def safe_parse_int(value: Any, default: Any = _MISSING) -> Any:
    """Parse ``value`` as a base-10 integer.

    Returns ``default`` when parsing fails and one was given, otherwise
    raises ``ValueError`` so NaN-like input never reaches the database.
    """
    try:
        return int(str(value).strip(), 10)
    except (TypeError, ValueError):
        if default is not _MISSING:
            return default
        raise ValueError(f"Invalid integer: {value!r}") from None


def safe_parse_float(value: Any, default: Any = _MISSING) -> Any:
    """Parse ``value`` as a finite float; same default semantics as ``safe_parse_int``."""
    try:
        parsed = float(str(value).strip())
    except (TypeError, ValueError):
        parsed = None
    if parsed is None or parsed != parsed or parsed in (float("inf"), float("-inf")):
        if default is not _MISSING:
            return default
        raise ValueError(f"Invalid float: {value!r}")
    return parsed
