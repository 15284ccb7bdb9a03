"""
Quote Scoring & Ranking
=======================
Pure arithmetic over extracted limits and premiums. No AI involvement.

SCORING METHODOLOGY:
- Coverage (60% of overall): weighted limit ratios against the best limit
  in the request
    Professional Indemnity 30 | Public Liability 25 | Employers Liability 20
    Cyber & Data 15 | Product Liability 10
- Price (40% of overall): cheapest quote gets full marks, dearest gets none;
  identical premiums all get full marks
- overall = clamp(round(coverage_raw + price_raw), 1, 100), half-up rounding

RANKING:
Highest overall first. Equal overall scores are ordered by coverage_raw,
then by submission order.
"""

import logging
from typing import Any, Dict, List, Optional

from app.models.scheme import (
    DocumentType,
    ExtractionResult,
    QuoteInput,
    QuoteRanking,
    RecommendationCategory,
)
from app.utils.helpers import format_currency, format_limit, parse_amount, parse_limit, round_half_up

logger = logging.getLogger(__name__)


COVERAGE_WEIGHTS: Dict[str, int] = {
    "professional_indemnity": 30,
    "public_liability": 25,
    "employers_liability": 20,
    "cyber": 15,
    "product_liability": 10,
}

COVERAGE_LABELS: Dict[str, str] = {
    "professional_indemnity": "Professional Indemnity",
    "public_liability": "Public Liability",
    "employers_liability": "Employers Liability",
    "cyber": "Cyber & Data",
    "product_liability": "Product Liability",
}

# Payload keys each category may be extracted under
COVERAGE_KEY_ALIASES: Dict[str, tuple] = {
    "professional_indemnity": ("professional_indemnity", "Professional_Indemnity", "pi"),
    "public_liability": ("public_liability", "public_products_liability", "Public_Liability"),
    "employers_liability": ("employers_liability", "Employers_Liability", "el"),
    "cyber": ("cyber", "cyber_data", "Cyber"),
    "product_liability": ("product_liability", "products_liability", "Product_Liability"),
}

COVERAGE_SHARE = 60
PRICE_SHARE = 40

RECOMMENDATION_THRESHOLDS = (
    (80, RecommendationCategory.HIGHLY_RECOMMENDED),
    (60, RecommendationCategory.RECOMMENDED),
    (40, RecommendationCategory.CONSIDER_WITH_CAUTION),
)


def extract_coverage_limits(payload: Dict[str, Any]) -> Dict[str, float]:
    """
    Read every scored category's limit from an extraction payload.

    Categories the quote does not mention score 0.
    """
    limits: Dict[str, float] = {}
    for category, aliases in COVERAGE_KEY_ALIASES.items():
        limit = 0.0
        for key in aliases:
            if key in payload and payload[key] is not None:
                limit = parse_limit(payload[key])
                break
        limits[category] = limit
    return limits


def quote_input_from_result(result: ExtractionResult) -> Optional[QuoteInput]:
    """Scoring input for a successful Quote extraction, or None if it has no premium."""
    payload = result.structured_payload
    premium = parse_amount(payload.get("Premium_Total_Annual"))
    if premium is None:
        logger.warning(f"⚠️  {result.filename} has no usable premium, excluded from ranking")
        return None
    return QuoteInput(
        quote_id=result.document_id,
        insurer_name=payload.get("Insurer_Name") or result.carrier_name or result.filename,
        premium_amount=premium,
        coverage_limits=extract_coverage_limits(payload),
    )


def recommendation_for(overall_score: int) -> RecommendationCategory:
    for threshold, category in RECOMMENDATION_THRESHOLDS:
        if overall_score >= threshold:
            return category
    return RecommendationCategory.NOT_RECOMMENDED


def score_quotes(quotes: List[QuoteInput]) -> List[QuoteRanking]:
    """
    Score and rank a set of quotes.

    Args:
        quotes: Quotes in submission order

    Returns:
        Rankings sorted by rank_position (1..N)
    """
    if not quotes:
        return []

    max_limits = {
        category: max(q.coverage_limits.get(category, 0.0) for q in quotes)
        for category in COVERAGE_WEIGHTS
    }
    premiums = [q.premium_amount for q in quotes]
    min_premium, max_premium = min(premiums), max(premiums)

    scored = []
    for index, quote in enumerate(quotes):
        weighted = 0.0
        ratios: Dict[str, float] = {}
        for category, weight in COVERAGE_WEIGHTS.items():
            best = max_limits[category]
            limit = quote.coverage_limits.get(category, 0.0)
            ratio = min(limit / best, 1.0) if best > 0 else 0.0
            ratios[category] = ratio
            weighted += ratio * weight

        coverage_raw = min(weighted * COVERAGE_SHARE / 100, float(COVERAGE_SHARE))

        if max_premium == min_premium:
            price_ratio = 1.0
        else:
            price_ratio = 1 - (quote.premium_amount - min_premium) / (max_premium - min_premium)
        price_raw = min(max(price_ratio, 0.0), 1.0) * PRICE_SHARE

        overall = max(1, min(100, round_half_up(coverage_raw + price_raw)))

        scored.append({
            "index": index,
            "quote": quote,
            "ratios": ratios,
            "coverage_raw": coverage_raw,
            "price_raw": price_raw,
            "overall": overall,
        })

    scored.sort(key=lambda s: (-s["overall"], -s["coverage_raw"], s["index"]))

    rankings = []
    for position, entry in enumerate(scored, start=1):
        quote = entry["quote"]
        strengths, concerns = _describe(quote, entry["ratios"], max_limits, min_premium, max_premium, len(quotes))
        rankings.append(QuoteRanking(
            quote_id=quote.quote_id,
            insurer_name=quote.insurer_name,
            premium_amount=quote.premium_amount,
            coverage_limits={c: quote.coverage_limits.get(c, 0.0) for c in COVERAGE_WEIGHTS},
            coverage_raw=round(entry["coverage_raw"], 4),
            price_raw=round(entry["price_raw"], 4),
            coverage_score=round_half_up(entry["coverage_raw"] * 100 / COVERAGE_SHARE),
            price_score=round_half_up(entry["price_raw"] * 100 / PRICE_SHARE),
            overall_score=entry["overall"],
            rank_position=position,
            recommendation_category=recommendation_for(entry["overall"]),
            strengths=strengths,
            concerns=concerns,
        ))

    summary = ", ".join(f"{r.rank_position}. {r.insurer_name} ({r.overall_score})" for r in rankings)
    logger.info(f"📊 Ranked {len(rankings)} quotes: {summary}")
    return rankings


def _describe(
    quote: QuoteInput,
    ratios: Dict[str, float],
    max_limits: Dict[str, float],
    min_premium: float,
    max_premium: float,
    quote_count: int,
):
    strengths: List[str] = []
    concerns: List[str] = []

    if quote_count > 1 and max_premium > min_premium:
        if quote.premium_amount == min_premium:
            strengths.append(f"Lowest premium in the comparison ({format_currency(quote.premium_amount)})")
        elif quote.premium_amount == max_premium:
            concerns.append(f"Highest premium in the comparison ({format_currency(quote.premium_amount)})")

    for category in COVERAGE_WEIGHTS:
        label = COVERAGE_LABELS[category]
        limit = quote.coverage_limits.get(category, 0.0)
        if max_limits[category] <= 0:
            continue
        if limit <= 0:
            concerns.append(f"No {label} limit found")
        elif ratios[category] >= 1.0 and quote_count > 1:
            strengths.append(f"Highest {label} limit ({format_limit(limit)})")
        elif ratios[category] < 0.5:
            concerns.append(
                f"{label} limit {format_limit(limit)} is under half the best offered ({format_limit(max_limits[category])})"
            )

    return strengths, concerns


def rank_extraction_results(results: List[ExtractionResult]) -> List[QuoteRanking]:
    """Rank the successful Quote extractions of a request, in submission order."""
    quotes = []
    for result in results:
        if result.document_type != DocumentType.QUOTE or not result.succeeded:
            continue
        quote = quote_input_from_result(result)
        if quote is not None:
            quotes.append(quote)
    return score_quotes(quotes)
