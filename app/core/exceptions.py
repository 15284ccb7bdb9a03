"""
Pipeline Exceptions
===================
Typed failures raised across the document-to-decision pipeline.

Every error carries a stable ``code`` (stored in ``failed_documents``),
a ``user_message`` safe to show to brokers, and a ``retriable`` flag used
by the completion client when deciding whether to try again.
"""

from typing import Any, Dict, List, Optional


GENERIC_USER_MESSAGE = "Something went wrong while processing this document. Please try again."


class PipelineError(Exception):
    """Base class for every pipeline failure."""

    code = "pipeline_error"
    user_message = GENERIC_USER_MESSAGE
    retriable = False

    def __init__(self, message: str = "", *, user_message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.user_message,
            "detail": str(self),
        }


# ============================================================================
# FETCH STAGE
# ============================================================================

class DocumentNotFound(PipelineError):
    code = "document_not_found"
    user_message = "The document could not be found. It may have been deleted; please upload it again."

    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class SignedUrlError(PipelineError):
    code = "signed_url_error"
    user_message = "Could not get access to the stored document. Please try again in a moment."


class FetchError(PipelineError):
    code = "fetch_error"
    user_message = "Could not download the document from storage. Please try again."


class PayloadTooLarge(PipelineError):
    code = "payload_too_large"

    def __init__(self, size_bytes: Optional[int], limit_bytes: int):
        limit_mb = limit_bytes // (1024 * 1024)
        size = f"{size_bytes} bytes" if size_bytes is not None else "unknown size"
        super().__init__(
            f"Document exceeds {limit_mb}MB limit ({size})",
            user_message=f"Document too large (max {limit_mb}MB). Please compress it or split it into smaller files.",
        )
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


class UnreadableDocumentError(PipelineError):
    code = "unreadable_document"
    user_message = "The document could not be read. Make sure it is a text-based PDF and not password protected."


# ============================================================================
# AI STAGE
# ============================================================================

class AIInvocationError(PipelineError):
    """Non-success answer from the completion endpoint."""

    code = "ai_invocation_error"
    user_message = "The AI service is temporarily unavailable. Please retry this document."

    def __init__(self, message: str, *, status_code: Optional[int] = None, retriable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retriable = retriable


class AITimeout(AIInvocationError):
    code = "ai_timeout"
    user_message = "Processing timed out. Try a simpler document or split it into smaller files."

    def __init__(self, timeout_seconds: float):
        super().__init__(f"Completion call exceeded {timeout_seconds:.0f}s", retriable=True)
        self.timeout_seconds = timeout_seconds


class DecodeError(PipelineError):
    """Model output could not be repaired into JSON."""

    code = "decode_error"
    user_message = "The AI returned an answer we could not read. Please retry this document."
    MAX_SNIPPET = 500

    def __init__(self, raw_text: Any, reason: str = "no decoding strategy succeeded"):
        text = raw_text if isinstance(raw_text, str) else repr(raw_text)
        self.raw_text = text[: self.MAX_SNIPPET]
        self.reason = reason
        super().__init__(f"Could not decode model output: {reason}")


class SchemaValidationError(PipelineError):
    code = "schema_validation_error"
    user_message = "The AI answer was missing required information. Please retry this document."

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_fields = missing_fields or []


# ============================================================================
# REQUEST STAGE
# ============================================================================

class AllDocumentsFailedError(PipelineError):
    code = "all_documents_failed"
    user_message = "None of the documents could be processed. Check the individual errors and retry."

    def __init__(self, failed_documents: List[Any]):
        super().__init__(f"All {len(failed_documents)} documents failed extraction")
        self.failed_documents = failed_documents


class SectionSelectionEmpty(PipelineError):
    code = "section_selection_empty"
    user_message = "Select at least one coverage section to compare."


class PipelineCancelled(PipelineError):
    code = "pipeline_cancelled"
    user_message = "The comparison was stopped."


class ComparisonNotFound(PipelineError):
    code = "comparison_not_found"
    user_message = "That comparison no longer exists."

    def __init__(self, comparison_id: str):
        super().__init__(f"Comparison not found: {comparison_id}")
        self.comparison_id = comparison_id


def user_message_for(error: BaseException) -> str:
    """User-facing text for any exception, with a generic fallback."""
    if isinstance(error, PipelineError):
        return error.user_message
    return GENERIC_USER_MESSAGE


def error_code_for(error: BaseException) -> str:
    if isinstance(error, PipelineError):
        return error.code
    return PipelineError.code
