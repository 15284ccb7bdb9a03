"""
AI Extraction Orchestrator
==========================
Turns one fetched document into a validated ExtractionResult.

PIPELINE PER DOCUMENT:
1. Fingerprint = sha256(bytes) + document type + schema version
2. Cache hit -> return immediately (cached=True, no AI call)
3. Single-flight: concurrent requests for one fingerprint share one AI call
4. Page-tagged text extraction (PyMuPDF, worker thread)
5. Type-specific prompt (Quote vs PolicyWording schema)
6. Completion call (timeout + retry + model fallback in CompletionClient)
7. Resilient JSON decode; decode and schema failures are not retried
8. Schema validation, array coercion, cache write

BATCH:
Every document runs concurrently. Failures land in failed_documents and
only abort the request when nothing succeeded.
"""

import asyncio
import hashlib
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from app.core.config import settings
from app.core.exceptions import (
    AllDocumentsFailedError,
    PipelineCancelled,
    PipelineError,
    SchemaValidationError,
    error_code_for,
    user_message_for,
)
from app.models.scheme import (
    DocumentReference,
    DocumentType,
    ExtractionResult,
    ExtractionStatus,
    FailedDocument,
    ProgressLevel,
    RequestedDocument,
)
from app.services.ai_completion import CompletionClient, completion_client
from app.services.document_fetcher import FetchedDocument
from app.services.extraction_cache import ExtractionCache
from app.services.pdf_extractor import PDFExtractor, pdf_extractor
from app.utils.helpers import parse_amount, truncate_text
from app.utils.json_decoder import decode_object

logger = logging.getLogger(__name__)


# ============================================================================
# EXTRACTION SCHEMAS
# ============================================================================

QUOTE_REQUIRED_FIELDS = ("Insurer_Name", "Client_Name", "Product_Type", "Premium_Total_Annual")
QUOTE_ARRAY_FIELDS = ("Inclusions", "Exclusions_Summary", "subjectivities", "attack_points")

WORDING_REQUIRED_FIELDS = ("insurer_name", "exclusions")
WORDING_ARRAY_FIELDS = (
    "insuring_clauses",
    "definitions_notable",
    "exclusions",
    "conditions",
    "warranties",
    "endorsements",
    "limits",
    "sublimits",
    "deductibles_excesses",
    "evidence",
)

QUOTE_SYSTEM_PROMPT = (
    "You are an expert UK commercial insurance analyst. Extract structured data from "
    "insurance quote documents with complete accuracy. Record only what is printed in the "
    "document. Return only valid JSON."
)

QUOTE_USER_PROMPT = """Extract the quote below into the JSON structure shown.

RULES:
1. Record every headline limit exactly as written; never replace a headline limit with a sub-limit.
2. Use "No cover given" ONLY if the document states it or the section is entirely absent.
3. Capture subjectivities verbatim with deadlines and page references.
4. Premium_Total_Annual is a number (no currency symbols).
5. Every "source" object gives the page number from the [Page N] markers and a short snippet.

EXPECTED OUTPUT STRUCTURE:
{{
  "Insurer_Name": "string",
  "Client_Name": "string",
  "Product_Type": "string",
  "Policy_Number": "string",
  "Quote_Date": "YYYY-MM-DD",
  "Policy_Start_Date": "YYYY-MM-DD",
  "Premium_Total_Annual": number,
  "Premium_Currency": "GBP",
  "professional_indemnity": {{"limit": "GBP 5,000,000 e&e", "deductible": "string", "retroactive_date": "string", "source": {{"page": 1, "snippet": "string"}}}},
  "public_liability": {{"limit": "string", "deductible": "string", "source": {{"page": 1, "snippet": "string"}}}},
  "employers_liability": {{"limit": "string", "source": {{"page": 1, "snippet": "string"}}}},
  "product_liability": {{"limit": "string", "source": {{"page": 1, "snippet": "string"}}}},
  "cyber": {{"headline_limit": "string", "deductible": "string", "sub_limits": [{{"coverage": "string", "limit": "string"}}]}},
  "crime": {{"limit": "string"}},
  "property": {{"buildings": "string", "contents": "string"}},
  "directors_officers": {{"limit": "string"}},
  "territorial_limits": "string",
  "subjectivities": [{{"requirement": "string", "deadline": "string", "page_ref": 1}}],
  "Inclusions": ["string"],
  "Exclusions_Summary": ["string"],
  "attack_points": [{{"issue": "string", "value": "string", "benchmark": "string"}}]
}}

CLIENT: {client_name}
DOCUMENT: {filename}

DOCUMENT TEXT:
{text}
"""

WORDING_SYSTEM_PROMPT = (
    "You are a specialist insurance policy wording analyzer. Extract all fields accurately "
    "from the policy wording, with special attention to limits and sub-limits. "
    "Return only valid JSON."
)

WORDING_USER_PROMPT = """Extract the policy wording below into a JSON object with these fields:

- insurer_name: the insurance company issuing the policy
- form_name_or_code: policy form name or reference code
- version_date: version or effective date (YYYY-MM-DD)
- coverage_trigger: "claims made", "occurrence", ...
- insuring_clauses: [{{"title", "summary", "page_ref"}}]
- definitions_notable: [{{"term", "delta_from_market", "verbatim_excerpt", "page_ref"}}]
- exclusions: [string] (use [] when the wording has none)
- conditions: [string]
- warranties: [string]
- endorsements: [string]
- limits: [{{"limit_type", "amount", "currency", "description", "page_ref"}}]
- sublimits: [{{"coverage", "amount", "currency", "page_ref"}}]
- deductibles_excesses: [{{"applies_to", "amount", "currency", "page_ref"}}]
- territorial_limits: string
- governing_law_and_jurisdiction: string
- TLDR: three sentence plain-English summary
- evidence: [{{"field", "page_ref", "verbatim_excerpt"}}]

Page numbers come from the [Page N] markers.

DOCUMENT: {filename}

DOCUMENT TEXT:
{text}
"""


def compute_fingerprint(content: bytes, document_type: DocumentType, schema_version: str) -> str:
    """Content hash combined with everything that changes the extraction output."""
    digest = hashlib.sha256(content)
    digest.update(f"|{document_type.value}|{schema_version}".encode("utf-8"))
    return digest.hexdigest()


def build_extraction_prompt(
    document_type: DocumentType,
    text: str,
    filename: str,
    client_name: Optional[str] = None,
) -> Tuple[str, str]:
    """System and user prompt for one document."""
    text = truncate_text(text, settings.MAX_DOCUMENT_CHARS)
    if document_type == DocumentType.POLICY_WORDING:
        return WORDING_SYSTEM_PROMPT, WORDING_USER_PROMPT.format(filename=filename, text=text)
    return QUOTE_SYSTEM_PROMPT, QUOTE_USER_PROMPT.format(
        client_name=client_name or "Unknown",
        filename=filename,
        text=text,
    )


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _coerce_array(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [value]


def validate_payload(
    payload: Dict[str, Any],
    document_type: DocumentType,
    carrier_name: Optional[str] = None,
    client_name: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Check a decoded payload against its document-type schema.

    Known gaps are filled from request metadata (carrier, client); optional
    arrays are coerced to lists. Anything else missing is a schema failure.

    Raises:
        SchemaValidationError: Required fields missing
    """
    payload = dict(payload)

    if document_type == DocumentType.POLICY_WORDING:
        if _blank(payload.get("insurer_name")) and carrier_name:
            payload["insurer_name"] = carrier_name
        if "exclusions" not in payload and "Exclusions" in payload:
            payload["exclusions"] = payload.pop("Exclusions")
        required, arrays = WORDING_REQUIRED_FIELDS, WORDING_ARRAY_FIELDS
    else:
        if _blank(payload.get("Insurer_Name")) and carrier_name:
            payload["Insurer_Name"] = carrier_name
        if _blank(payload.get("Client_Name")) and client_name:
            payload["Client_Name"] = client_name
        if "Premium_Total_Annual" in payload:
            payload["Premium_Total_Annual"] = parse_amount(payload["Premium_Total_Annual"])
        required, arrays = QUOTE_REQUIRED_FIELDS, QUOTE_ARRAY_FIELDS

    missing = [
        field for field in required
        if field not in payload or (field not in arrays and _blank(payload[field]))
    ]
    if missing:
        raise SchemaValidationError(
            f"{document_type.value} extraction missing required fields: {', '.join(missing)}",
            missing_fields=missing,
        )

    for field in arrays:
        payload[field] = _coerce_array(payload.get(field))

    return payload


# ============================================================================
# ORCHESTRATOR
# ============================================================================

class ExtractionOrchestrator:
    """Cache-aware, de-duplicated AI extraction for quotes and policy wordings"""

    def __init__(
        self,
        completion: Optional[CompletionClient] = None,
        cache: Optional[ExtractionCache] = None,
        extractor: Optional[PDFExtractor] = None,
        schema_version: Optional[str] = None,
    ):
        self.completion = completion or completion_client
        self.cache = cache if cache is not None else ExtractionCache()
        self.extractor = extractor or pdf_extractor
        self.schema_version = schema_version or settings.EXTRACTION_SCHEMA_VERSION
        self._in_flight: Dict[str, asyncio.Task] = {}

    def fingerprint(self, document: FetchedDocument) -> str:
        return compute_fingerprint(document.content, document.reference.document_type, self.schema_version)

    @staticmethod
    def _relabel(result: ExtractionResult, reference: DocumentReference, cached: bool) -> ExtractionResult:
        return result.model_copy(update={
            "document_id": reference.id,
            "filename": reference.filename,
            "carrier_name": reference.carrier_name or result.carrier_name,
            "cached": cached,
        })

    async def extract(
        self,
        document: FetchedDocument,
        *,
        client_name: Optional[str] = None,
        context: Any = None,
    ) -> ExtractionResult:
        """
        Extract one fetched document.

        Raises:
            PipelineError subclasses for every known failure
        """
        reference = document.reference
        fingerprint = self.fingerprint(document)

        cached = await self.cache.get(fingerprint)
        if cached is not None:
            logger.info(f"⚡ Cache hit for {reference.filename} ({fingerprint[:12]})")
            if context is not None:
                context.emit("extract", f"Reused earlier extraction of {reference.filename}", document_id=reference.id)
            return self._relabel(cached, reference, cached=True)

        task = self._in_flight.get(fingerprint)
        if task is not None and not task.done():
            logger.info(f"🔗 Joining in-flight extraction for {reference.filename}")
            if context is not None:
                context.emit("extract", f"Waiting for a running extraction of {reference.filename}", document_id=reference.id)
            try:
                result = await asyncio.shield(task)
            except PipelineCancelled:
                # The run that owns the shared call was stopped, not this one
                if context is not None and context.cancelled:
                    raise
                if self._in_flight.get(fingerprint) is task:
                    del self._in_flight[fingerprint]
                logger.info(f"🔁 Shared extraction of {reference.filename} was cancelled, extracting again")
                return await self.extract(document, client_name=client_name, context=context)
            return self._relabel(result, reference, cached=True)

        if context is not None and context.cancelled:
            raise PipelineCancelled(f"Cancelled before extracting {reference.filename}")

        task = asyncio.ensure_future(self._run_extraction(document, fingerprint, client_name, context))
        self._in_flight[fingerprint] = task
        try:
            result = await asyncio.shield(task)
        finally:
            if self._in_flight.get(fingerprint) is task:
                del self._in_flight[fingerprint]
        return self._relabel(result, reference, cached=False)

    async def _run_extraction(
        self,
        document: FetchedDocument,
        fingerprint: str,
        client_name: Optional[str],
        context: Any,
    ) -> ExtractionResult:
        reference = document.reference
        if context is not None:
            context.emit("extract", f"Reading {reference.filename}", document_id=reference.id)

        text = await self.extractor.extract_text_async(document.content, reference.filename, reference.mime_type)
        system_prompt, user_prompt = build_extraction_prompt(
            reference.document_type, text, reference.filename, client_name
        )

        logger.info(f"🤖 Extracting {reference.document_type.value}: {reference.filename}")
        raw = await self.completion.complete(system_prompt, user_prompt, json_mode=True, context=context)

        payload = validate_payload(
            decode_object(raw),
            reference.document_type,
            carrier_name=reference.carrier_name,
            client_name=client_name,
        )
        insurer = payload.get("Insurer_Name") or payload.get("insurer_name")

        result = ExtractionResult(
            document_id=reference.id,
            filename=reference.filename,
            document_type=reference.document_type,
            carrier_name=reference.carrier_name or insurer,
            status=ExtractionStatus.SUCCESS,
            structured_payload=payload,
            fingerprint=fingerprint,
            schema_version=self.schema_version,
        )
        await self.cache.put(result)

        logger.info(f"✅ Extracted: {result.carrier_name or 'Unknown'} from {reference.filename}")
        if context is not None:
            context.emit("extract", f"Extracted {reference.filename}", document_id=reference.id)
        return result

    async def extract_batch(
        self,
        fetched: List[Tuple[RequestedDocument, Union[FetchedDocument, PipelineError]]],
        *,
        client_name: Optional[str] = None,
        context: Any = None,
    ) -> Tuple[List[ExtractionResult], List[FailedDocument]]:
        """
        Extract every fetched document concurrently.

        Args:
            fetched: (requested, FetchedDocument or the fetch error) pairs

        Returns:
            (successful results, failed documents)

        Raises:
            PipelineCancelled: The run was cancelled while the batch ran
            AllDocumentsFailedError: Not a single document succeeded
        """
        logger.info(f"🚀 Starting parallel extraction for {len(fetched)} documents")

        async def extract_single_document(requested: RequestedDocument, outcome):
            if isinstance(outcome, PipelineError):
                return requested, None, outcome
            try:
                return requested, await self.extract(outcome, client_name=client_name, context=context), None
            except Exception as e:
                if not isinstance(e, PipelineError):
                    logger.error(f"❌ Unexpected extraction failure for {requested.document_id}: {e}", exc_info=True)
                return requested, None, e

        outcomes = await asyncio.gather(*(
            extract_single_document(requested, outcome) for requested, outcome in fetched
        ))

        if context is not None and context.cancelled:
            raise PipelineCancelled("Comparison cancelled during extraction")

        results: List[ExtractionResult] = []
        failed: List[FailedDocument] = []
        for requested, result, error in outcomes:
            if error is None:
                results.append(result)
                continue
            logger.error(f"❌ Failed {requested.filename or requested.document_id}: {error}")
            failed.append(build_failed_document(requested, error))
            if context is not None:
                context.emit("extract", f"{requested.filename or requested.document_id}: {user_message_for(error)}",
                             level=ProgressLevel.ERROR, document_id=requested.document_id)

        if not results:
            raise AllDocumentsFailedError(failed)

        logger.info(f"✅ PARALLEL BATCH COMPLETE: {len(results)}/{len(fetched)} documents")
        if failed:
            logger.warning(f"⚠️ {len(failed)} documents failed extraction")
        return results, failed


def build_failed_document(requested: RequestedDocument, error: BaseException) -> FailedDocument:
    return FailedDocument(
        document_id=requested.document_id,
        filename=requested.filename or requested.document_id,
        document_type=requested.document_type,
        carrier=requested.carrier_name,
        error_code=error_code_for(error),
        message=user_message_for(error),
    )
