"""
Comparison Engine
=================
One aggregate AI call over every successful extraction in a request.

- Documents of the same carrier (quote + policy wording) are merged into a
  single carrier record before prompting
- structured mode: fixed-key JSON; missing arrays default to []
- comparison_report mode: Markdown with a fixed section order
- narrative mode: free Markdown analysis
- Every figure must carry a [Source: <filename>, <page>] citation

The engine is stateless: it always recomputes the whole comparison.
"""

import re
import json
import logging
from typing import Any, Dict, List, Optional, Set

from app.core.config import settings
from app.core.exceptions import SchemaValidationError
from app.models.scheme import (
    ComparisonMode,
    CoverageSection,
    DocumentType,
    ExtractionResult,
)
from app.services.ai_completion import CompletionClient, completion_client
from app.utils.helpers import normalize_carrier_name
from app.utils.json_decoder import decode_object, strip_markdown_fence

logger = logging.getLogger(__name__)


STRUCTURED_ARRAY_KEYS = (
    "insurers",
    "product_comparisons",
    "comparison_summary",
    "overall_findings",
    "failed_documents",
)

REPORT_SECTIONS = (
    "Financial Comparison",
    "Policy Structure Comparison",
    "Policy Wording Analysis",
    "Comparison Insights",
    "Executive Short Summary",
)

CITATION_PATTERN = re.compile(r'\[Source:\s*[^,\]]+,\s*[^\]]+\]')

CITATION_RULE = (
    "Every figure, limit, premium, exclusion or term you mention MUST be followed by a "
    "citation in exactly this format: [Source: <filename>, <page>] using the filenames "
    "listed in the data and the page numbers recorded in it."
)

SYSTEM_PROMPT = (
    "You are a senior UK commercial insurance broker preparing a client-ready comparison of "
    "insurer quotes and policy wordings. Be factual, compare like for like, and use only "
    "the extracted data you are given."
)

STRUCTURED_INSTRUCTIONS = """Return a JSON object with exactly these top-level keys:
{
  "insurers": [{"insurer_name": "string", "premium_total_annual": number, "documents": ["filename"], "key_terms": ["string"], "strengths": ["string"], "weaknesses": ["string"]}],
  "product_comparisons": [{"product": "string", "carrier_results": [{"carrier": "string", "key_terms": ["string"], "subjectivities": ["string"], "standout_points": ["string"], "standout_summary": "string"}], "broker_notes": "string"}],
  "comparison_summary": [{"insurer_name": "string", "summary": "string"}],
  "overall_findings": ["string"],
  "failed_documents": []
}
Use [] for any list you cannot fill. Use one "insurers" entry per carrier."""

REPORT_INSTRUCTIONS = """Write a Markdown report with exactly these sections, as level-2 headers, in this order:
## Financial Comparison
## Policy Structure Comparison
## Policy Wording Analysis
## Comparison Insights
## Executive Short Summary
Use Markdown tables where they help. Do not add other top-level sections."""

NARRATIVE_INSTRUCTIONS = """Write a concise Markdown narrative comparing the carriers for the client,
covering price, limits, exclusions and subjectivities, and finish with a recommendation."""


# ============================================================================
# CARRIER MERGING
# ============================================================================

def _carrier_of(result: ExtractionResult) -> str:
    payload = result.structured_payload
    return (
        result.carrier_name
        or payload.get("Insurer_Name")
        or payload.get("insurer_name")
        or result.filename
    )


def group_by_carrier(results: List[ExtractionResult]) -> List[Dict[str, Any]]:
    """
    Merge quote and policy wording extractions of one carrier into one record.

    Returns:
        Carrier records in first-seen order
    """
    records: Dict[str, Dict[str, Any]] = {}
    for result in results:
        carrier = _carrier_of(result)
        key = normalize_carrier_name(carrier)
        record = records.setdefault(key, {
            "carrier": carrier,
            "documents": [],
            "quotes": [],
            "policy_wordings": [],
        })
        record["documents"].append(result.filename)
        entry = {"filename": result.filename, **result.structured_payload}
        if result.document_type == DocumentType.POLICY_WORDING:
            record["policy_wordings"].append(entry)
        else:
            record["quotes"].append(entry)
    return list(records.values())


def _insurer_name(entry: Dict[str, Any]) -> str:
    for key in ("insurer_name", "insurer", "carrier", "name", "Insurer_Name"):
        if entry.get(key):
            return str(entry[key])
    return ""


def _merge_values(current: Any, incoming: Any) -> Any:
    if current in (None, "", [], {}):
        return incoming
    if isinstance(current, list) and isinstance(incoming, list):
        return current + [item for item in incoming if item not in current]
    if isinstance(current, dict) and isinstance(incoming, dict):
        merged = dict(current)
        for key, value in incoming.items():
            merged[key] = _merge_values(merged.get(key), value)
        return merged
    return current


def merge_insurers(insurers: List[Any]) -> List[Dict[str, Any]]:
    """Collapse insurer entries naming the same carrier into one record."""
    merged: Dict[str, Dict[str, Any]] = {}
    for entry in insurers:
        if not isinstance(entry, dict):
            continue
        name = _insurer_name(entry)
        key = normalize_carrier_name(name)
        if not key:
            continue
        if key not in merged:
            merged[key] = {**entry, "insurer_name": name}
        else:
            for field, value in entry.items():
                merged[key][field] = _merge_values(merged[key].get(field), value)
    return list(merged.values())


def extract_citations(text: str) -> List[str]:
    citations = []
    for match in CITATION_PATTERN.findall(text or ""):
        if match not in citations:
            citations.append(match)
    return citations


def missing_report_sections(markdown: str) -> List[str]:
    """Sections absent from the report, or present out of order."""
    missing = []
    position = 0
    for section in REPORT_SECTIONS:
        pattern = re.compile(
            rf'^\s*#{{1,6}}\s*(?:\d+[.)]\s*)?{re.escape(section)}\b.*$',
            re.IGNORECASE | re.MULTILINE,
        )
        match = pattern.search(markdown, position)
        if match is None:
            missing.append(section)
        else:
            position = match.end()
    return missing


# ============================================================================
# ENGINE
# ============================================================================

class ComparisonEngine:
    """Builds the aggregate prompt and validates the aggregate answer"""

    def __init__(self, completion: Optional[CompletionClient] = None):
        self.completion = completion or completion_client

    @staticmethod
    def build_prompt(
        carriers: List[Dict[str, Any]],
        sections: Set[CoverageSection],
        mode: ComparisonMode,
        client_name: Optional[str] = None,
        industry: Optional[str] = None,
        jurisdiction: Optional[str] = None,
    ) -> str:
        section_names = ", ".join(sorted(s.display_name for s in sections)) or "All sections in the documents"
        instructions = {
            ComparisonMode.STRUCTURED: STRUCTURED_INSTRUCTIONS,
            ComparisonMode.COMPARISON_REPORT: REPORT_INSTRUCTIONS,
            ComparisonMode.NARRATIVE: NARRATIVE_INSTRUCTIONS,
        }[mode]

        return "\n\n".join([
            f"CLIENT: {client_name or 'Unknown'}",
            f"INDUSTRY: {industry or 'Not specified'}",
            f"JURISDICTION: {jurisdiction or 'Not specified'}",
            f"COVERAGE SECTIONS TO COMPARE: {section_names}",
            f"CARRIERS ({len(carriers)}):",
            json.dumps(carriers, indent=2, default=str),
            CITATION_RULE,
            instructions,
        ])

    async def compare(
        self,
        results: List[ExtractionResult],
        *,
        sections: Set[CoverageSection],
        mode: ComparisonMode = ComparisonMode.STRUCTURED,
        client_name: Optional[str] = None,
        industry: Optional[str] = None,
        jurisdiction: Optional[str] = None,
        context: Any = None,
    ) -> Dict[str, Any]:
        """
        Compare every successful extraction of a request.

        Returns:
            Report fields: insurers, product_comparisons, comparison_summary,
            overall_findings, markdown_report, citations

        Raises:
            DecodeError: Structured answer could not be decoded
            SchemaValidationError: Answer lacks the required structure
            AIInvocationError / AITimeout: The aggregate call failed
        """
        successful = [r for r in results if r.succeeded]
        if not successful:
            raise SchemaValidationError("No successful extractions to compare")

        carriers = group_by_carrier(successful)
        logger.info(f"🔍 Comparing {len(carriers)} carriers from {len(successful)} documents ({mode.value})")
        if context is not None:
            context.emit("compare", f"Comparing {len(carriers)} carriers")

        prompt = self.build_prompt(carriers, sections, mode, client_name, industry, jurisdiction)
        raw = await self.completion.complete(
            SYSTEM_PROMPT,
            prompt,
            json_mode=mode == ComparisonMode.STRUCTURED,
            max_tokens=settings.COMPARISON_MAX_TOKENS,
            context=context,
        )

        if mode == ComparisonMode.STRUCTURED:
            return self._validate_structured(raw)
        return self._validate_markdown(raw, mode, carriers)

    @staticmethod
    def _validate_structured(raw: str) -> Dict[str, Any]:
        data = decode_object(raw)

        if "overall_findings" not in data and "overall_flags" in data:
            data["overall_findings"] = data.pop("overall_flags")

        for key in STRUCTURED_ARRAY_KEYS:
            value = data.get(key)
            if isinstance(value, dict) and key == "insurers":
                value = [
                    {"insurer_name": name, **entry} if isinstance(entry, dict) else {"insurer_name": name}
                    for name, entry in value.items()
                ]
            if not isinstance(value, list):
                if value is not None:
                    logger.warning(f"⚠️  Comparison key '{key}' is not a list, defaulting to []")
                value = []
            data[key] = value

        insurers = merge_insurers(data["insurers"])
        if not insurers:
            raise SchemaValidationError("Comparison returned no carrier data", missing_fields=["insurers"])

        text_blob = json.dumps(data, default=str)
        return {
            "insurers": insurers,
            "product_comparisons": data["product_comparisons"],
            "comparison_summary": data["comparison_summary"],
            "overall_findings": data["overall_findings"],
            "markdown_report": None,
            "citations": extract_citations(text_blob),
        }

    @staticmethod
    def _validate_markdown(raw: str, mode: ComparisonMode, carriers: List[Dict[str, Any]]) -> Dict[str, Any]:
        markdown = strip_markdown_fence(raw)
        if not markdown:
            raise SchemaValidationError("Comparison report is empty")

        if mode == ComparisonMode.COMPARISON_REPORT:
            missing = missing_report_sections(markdown)
            if missing:
                raise SchemaValidationError(
                    f"Comparison report missing sections: {', '.join(missing)}",
                    missing_fields=missing,
                )

        return {
            "insurers": [
                {"insurer_name": c["carrier"], "documents": c["documents"]} for c in carriers
            ],
            "product_comparisons": [],
            "comparison_summary": [],
            "overall_findings": [],
            "markdown_report": markdown,
            "citations": extract_citations(markdown),
        }


# Global engine
comparison_engine = ComparisonEngine()
