"""
Helper Utilities
================
Common utility functions used across the application.
"""

import re
import math
from typing import Any, Optional
from pathlib import Path


# Cover descriptions that mean "no numeric limit offered"
_NO_COVER_PATTERNS = ("not covered", "basic cover", "no cover", "n/a", "excluded")

_AMOUNT_PATTERN = re.compile(
    r'(\d+(?:,\d{3})*(?:\.\d+)?)\s*(million|thousand|mn|m|k)?(?![a-z])',
    re.IGNORECASE
)

_MULTIPLIERS = {
    "k": 1_000,
    "thousand": 1_000,
    "m": 1_000_000,
    "mn": 1_000_000,
    "million": 1_000_000,
}


def sanitize_filename(filename: str) -> str:
    """
    Sanitize a filename so it can be embedded in prompts and citations.

    Args:
        filename: Original filename or storage path

    Returns:
        Bare filename with path components and control characters removed
    """
    filename = Path(filename).name
    filename = re.sub(r'[\x00-\x1F\[\]]', '', filename)
    filename = re.sub(r'\s+', ' ', filename).strip()
    return filename or "document.pdf"


def parse_amount(value: Any) -> Optional[float]:
    """
    Parse a monetary amount such as "£10,000", "2M" or 8000.

    Returns:
        The numeric value, or None when no number can be found
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
        if not math.isfinite(number):
            return None
        return max(number, 0.0)

    match = _AMOUNT_PATTERN.search(str(value))
    if not match:
        return None

    number = float(match.group(1).replace(',', ''))
    suffix = (match.group(2) or "").lower()
    number *= _MULTIPLIERS.get(suffix, 1)
    # Digit runs past float range come out as inf
    if not math.isfinite(number):
        return None
    return number


def parse_limit(value: Any) -> float:
    """
    Parse a coverage limit into a number.

    Strings like "£2M", "£500K" and "£1,000,000" carry a number and an
    optional K/M multiplier. "Not Covered", "Basic Cover" and anything
    unparsable are 0. Dicts are read through their limit entry.

    Args:
        value: Raw limit from an extraction payload

    Returns:
        Limit as a float, never negative
    """
    if isinstance(value, dict):
        for key in ("limit", "headline_limit", "amount", "value"):
            if key in value:
                return parse_limit(value[key])
        return 0.0

    if isinstance(value, str):
        lowered = value.strip().lower()
        if not lowered or any(p in lowered for p in _NO_COVER_PATTERNS):
            return 0.0

    amount = parse_amount(value)
    return amount if amount is not None else 0.0


def format_limit(amount: Optional[float], symbol: str = "£") -> str:
    """
    Format a limit for display: £2.0M, £500K, £750.
    """
    if amount is None:
        return "N/A"
    if amount >= 1_000_000:
        return f"{symbol}{amount / 1_000_000:.1f}M"
    if amount >= 1_000:
        thousands = amount / 1_000
        if thousands == int(thousands):
            return f"{symbol}{thousands:.0f}K"
        return f"{symbol}{thousands:.1f}K"
    return f"{symbol}{amount:,.0f}"


def format_currency(amount: Optional[float], symbol: str = "£") -> str:
    if amount is None:
        return "N/A"
    return f"{symbol}{amount:,.2f}"


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 always going up (no banker's rounding)."""
    return int(math.floor(value + 0.5))


def normalize_carrier_name(name: Optional[str]) -> str:
    """
    Normalize a carrier name for grouping.

    "  AXA  Insurance. " and "axa insurance" map to the same key.
    """
    if not name:
        return ""
    text = re.sub(r'[.,]', '', str(name))
    return re.sub(r'\s+', ' ', text).strip().casefold()


def truncate_text(text: str, max_length: int = 500) -> str:
    """
    Truncate text to a maximum length with ellipsis.

    Args:
        text: Input text
        max_length: Maximum length

    Returns:
        Truncated text
    """
    if not text or len(text) <= max_length:
        return text

    return text[:max_length - 3] + "..."
