# PATH: core/format.py
"""
Formatting helpers for human-readable log lines.

Never raises on bad input: log formatting must not take down a poll loop.
"""

from typing import Union


def format_height(value: Union[int, str, None]) -> str:
    """
    Format a block height with thousands separators.

    Example:
        >>> format_height(21345678)
        '21,345,678'
        >>> format_height("1000")
        '1,000'
        >>> format_height(None)
        '?'
    """
    if value is None:
        return "?"

    try:
        return f"{int(value):,}"
    except (TypeError, ValueError):
        return str(value)


def short_address(address: str, length: int = 10) -> str:
    """Abbreviate a hex validator address for log lines."""
    if not address or len(address) <= length:
        return address or ""
    return f"{address[:length]}..."


def redact_url(url: str) -> str:
    """
    Strip query strings and credentials from an endpoint URL.

    RPC URLs often carry API keys, which must not end up in logs or alerts.
    """
    if not url:
        return ""

    base = url.split("?", 1)[0]
    scheme, sep, rest = base.partition("://")
    if not sep:
        return base

    if "@" in rest.split("/", 1)[0]:
        rest = rest.split("@", 1)[1]

    return f"{scheme}://{rest}"
