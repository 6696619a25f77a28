"""
Common utility functions.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict


def format_time(seconds: float) -> str:
    """
    Format a number of seconds as M:SS for the countdown display.

    Args:
        seconds: Seconds left (fractions are floored)

    Returns:
        Formatted string, e.g. "9:05"
    """
    whole = max(0, int(seconds))
    minutes, remaining = divmod(whole, 60)
    return f"{minutes}:{remaining:02d}"


def format_json(data: Dict[str, Any], indent: int = 2) -> str:
    """
    Format dictionary as pretty JSON string.

    Args:
        data: Dictionary to format
        indent: Indentation spaces

    Returns:
        Formatted JSON string
    """
    return json.dumps(data, indent=indent, ensure_ascii=False, default=str)


def token_preview(token: str | None, visible: int = 10) -> str:
    """Shorten a secret for log output."""
    if not token:
        return "<none>"
    return f"{token[:visible]}..."


def parse_timestamp(value: Any) -> float | None:
    """
    Convert an API timestamp to epoch seconds.

    Accepts ISO-8601 strings (with or without a trailing 'Z'),
    epoch milliseconds, and datetime objects.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        return float(value) / 1000.0
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()
