"""
Models Package
==============
Pydantic models for request/response validation and data structures.
"""

from .models.scheme import (
    ComparisonRequest,
    ComparisonReport,
    ExtractionResult,
    FailedDocument,
    QuoteRanking,
    ProgressEvent,
)

__all__ = [
    "ComparisonRequest",
    "ComparisonReport",
    "ExtractionResult",
    "FailedDocument",
    "QuoteRanking",
    "ProgressEvent",
]
