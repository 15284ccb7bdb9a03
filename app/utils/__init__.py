"""
Utilities Package
=================
Helper utilities and common functions.
"""

from .helpers import parse_limit, format_limit, parse_amount, normalize_carrier_name
from .json_decoder import decode

__all__ = [
    "parse_limit",
    "format_limit",
    "parse_amount",
    "normalize_carrier_name",
    "decode",
]
