"""
Policy Wording Diff Engine
==========================
Compares extracted policy wordings: how complete each extraction is, which
exclusions every wording shares and which are unique to one insurer.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from app.models.scheme import DocumentType, ExtractionResult, PolicyWording, WordingAnalysis

logger = logging.getLogger(__name__)


# (points per populated field, fields)
COMPLETENESS_BUCKETS = (
    (5, ("insurer_name", "product_name", "jurisdiction", "territory")),   # basics, max 20
    (10, ("claims_basis", "limits", "deductibles")),                       # structure, max 30
    (10, ("exclusions", "conditions", "notable_terms")),                   # terms, max 30
    (10, ("definitions", "citations")),                                    # extras, max 20
)


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) > 0
    return True


def _as_text(item: Any, keys: Iterable[str]) -> Optional[str]:
    if isinstance(item, str):
        return item.strip() or None
    if isinstance(item, dict):
        for key in keys:
            if _present(item.get(key)):
                return str(item[key]).strip()
    return None


def _texts(items: Any, keys: Iterable[str] = ("title", "term", "text", "description", "name")) -> List[str]:
    if not isinstance(items, list):
        items = [items] if items else []
    texts = []
    for item in items:
        text = _as_text(item, keys)
        if text:
            texts.append(text)
    return texts


def policy_wording_from_payload(payload: Dict[str, Any], filename: str = "") -> PolicyWording:
    """Map a PolicyWording extraction payload onto the comparison model."""
    citations = []
    for entry in payload.get("evidence") or []:
        if isinstance(entry, dict) and entry.get("page_ref") is not None:
            citations.append(f"[Source: {filename}, {entry['page_ref']}]")
        elif isinstance(entry, str) and entry.strip():
            citations.append(entry.strip())

    wording = PolicyWording(
        insurer_name=payload.get("insurer_name") or None,
        product_name=payload.get("form_name_or_code") or None,
        jurisdiction=payload.get("governing_law_and_jurisdiction") or None,
        territory=payload.get("territorial_limits") or None,
        claims_basis=payload.get("coverage_trigger") or None,
        coverage_sections=_texts(payload.get("insuring_clauses"), ("title",)),
        limits=list(payload.get("limits") or []) + list(payload.get("sublimits") or []),
        deductibles=list(payload.get("deductibles_excesses") or []),
        exclusions=_texts(payload.get("exclusions")),
        conditions=_texts(payload.get("conditions")),
        notable_terms=_texts(payload.get("insuring_clauses"), ("summary", "title")) + _texts(payload.get("endorsements")),
        definitions=_texts(payload.get("definitions_notable"), ("term",)),
        citations=citations,
    )
    return wording.model_copy(update={"completeness_score": completeness_score(wording)})


def completeness_score(wording: PolicyWording) -> int:
    """
    0-100 score for how many structured fields a wording extraction populated.
    """
    score = 0
    for points, fields in COMPLETENESS_BUCKETS:
        for field in fields:
            if _present(getattr(wording, field)):
                score += points
    return min(score, 100)


def _dedupe(exclusions: List[str]) -> List[str]:
    seen = set()
    result = []
    for exclusion in exclusions:
        key = exclusion.casefold()
        if key not in seen:
            seen.add(key)
            result.append(exclusion)
    return result


def common_exclusions(wordings: List[PolicyWording]) -> List[str]:
    """
    Exclusions present in every wording (case-insensitive), in the first
    wording's casing and order.
    """
    if not wordings:
        return []

    other_sets = [{e.casefold() for e in w.exclusions} for w in wordings[1:]]
    return [
        exclusion for exclusion in _dedupe(wordings[0].exclusions)
        if all(exclusion.casefold() in others for others in other_sets)
    ]


def unique_exclusions(wording: PolicyWording, wordings: List[PolicyWording]) -> List[str]:
    """Exclusions of ``wording`` that no other wording in the set carries."""
    others = set()
    for other in wordings:
        if other is wording:
            continue
        others.update(e.casefold() for e in other.exclusions)

    return [e for e in _dedupe(wording.exclusions) if e.casefold() not in others]


def best_wording(wordings: List[PolicyWording]) -> Optional[PolicyWording]:
    """Most complete wording; the first one seen wins a tie."""
    best = None
    best_score = -1
    for wording in wordings:
        score = completeness_score(wording)
        if score > best_score:
            best, best_score = wording, score
    return best


def analyze_wordings(results: List[ExtractionResult]) -> Optional[WordingAnalysis]:
    """
    Build the wording analysis for a request.

    Returns:
        None when the request holds no successful policy wording
    """
    wording_results = [
        r for r in results
        if r.document_type == DocumentType.POLICY_WORDING and r.succeeded
    ]
    if not wording_results:
        return None
    wordings = [policy_wording_from_payload(r.structured_payload, r.filename) for r in wording_results]

    labels: List[str] = []
    for wording, result in zip(wordings, wording_results):
        label = wording.insurer_name or result.carrier_name or result.filename
        if label in labels:
            label = f"{label} ({result.filename})"
        labels.append(label)

    best = best_wording(wordings)
    analysis = WordingAnalysis(
        wordings=wordings,
        common_exclusions=common_exclusions(wordings),
        unique_exclusions={
            label: unique_exclusions(wording, wordings) for label, wording in zip(labels, wordings)
        },
        best_wording=labels[wordings.index(best)] if best is not None else None,
    )
    logger.info(
        f"📑 Wording analysis: {len(wordings)} wordings, "
        f"{len(analysis.common_exclusions)} common exclusions, best: {analysis.best_wording}"
    )
    return analysis
