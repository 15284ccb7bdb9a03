"""Test deterministic quote scoring and ranking."""

import pytest

from app.models.scheme import DocumentType, QuoteInput, RecommendationCategory
from app.services.quote_ranker import (
    COVERAGE_WEIGHTS,
    extract_coverage_limits,
    rank_extraction_results,
    recommendation_for,
    score_quotes,
)
from tests.factories import make_result, quote_payload


def quote(quote_id, premium, **limits):
    return QuoteInput(quote_id=quote_id, insurer_name=quote_id.upper(), premium_amount=premium, coverage_limits=limits)


def test_weights_sum_to_one_hundred():
    assert sum(COVERAGE_WEIGHTS.values()) == 100


def test_cheaper_quote_with_half_the_pi_limit_ranks_first():
    rankings = score_quotes([
        quote("a", 10_000, professional_indemnity=2_000_000),
        quote("b", 8_000, professional_indemnity=1_000_000),
    ])
    by_id = {r.quote_id: r for r in rankings}

    # A: PI ratio 1 -> 30 * 0.6 = 18 coverage, dearest -> 0 price
    assert by_id["a"].coverage_raw == pytest.approx(18.0)
    assert by_id["a"].price_raw == 0
    assert by_id["a"].overall_score == 18

    # B: PI ratio 0.5 -> 15 * 0.6 = 9 coverage, cheapest -> 40 price
    assert by_id["b"].coverage_raw == pytest.approx(9.0)
    assert by_id["b"].price_raw == 40
    assert by_id["b"].overall_score == 49

    assert [r.quote_id for r in rankings] == ["b", "a"]
    assert [r.rank_position for r in rankings] == [1, 2]


def test_public_liability_adds_to_coverage():
    rankings = score_quotes([
        quote("a", 10_000, professional_indemnity=2_000_000, public_liability=1_000_000),
        quote("b", 8_000, professional_indemnity=1_000_000, public_liability=1_000_000),
    ])
    by_id = {r.quote_id: r for r in rankings}

    assert by_id["a"].overall_score == 33
    assert by_id["a"].coverage_score == 55
    assert by_id["a"].recommendation_category == RecommendationCategory.NOT_RECOMMENDED
    assert by_id["b"].overall_score == 64
    assert by_id["b"].coverage_score == 40
    assert by_id["b"].price_score == 100
    assert by_id["b"].recommendation_category == RecommendationCategory.RECOMMENDED
    assert rankings[0].quote_id == "b"


def test_identical_premiums_all_get_full_price_score():
    rankings = score_quotes([
        quote("a", 5_000, professional_indemnity=1_000_000),
        quote("b", 5_000, professional_indemnity=500_000),
    ])
    assert all(r.price_raw == 40 for r in rankings)


def test_single_quote_without_limits():
    [ranking] = score_quotes([quote("only", 1_200)])

    assert ranking.coverage_raw == 0
    assert ranking.price_raw == 40
    assert ranking.overall_score == 40
    assert ranking.rank_position == 1
    assert ranking.recommendation_category == RecommendationCategory.CONSIDER_WITH_CAUTION


def test_overall_score_never_below_one():
    rankings = score_quotes([quote("cheap", 100), quote("dear", 200)])
    dear = next(r for r in rankings if r.quote_id == "dear")
    assert dear.overall_score == 1


def test_equal_overall_scores_ordered_by_coverage():
    rankings = score_quotes([
        quote("first", 5_000, professional_indemnity=980_000),
        quote("second", 5_000, professional_indemnity=1_000_000),
    ])

    assert rankings[0].overall_score == rankings[1].overall_score == 58
    assert [r.quote_id for r in rankings] == ["second", "first"]


def test_identical_quotes_keep_submission_order():
    rankings = score_quotes([
        quote("x", 5_000, cyber=250_000),
        quote("y", 5_000, cyber=250_000),
        quote("z", 5_000, cyber=250_000),
    ])
    assert [r.quote_id for r in rankings] == ["x", "y", "z"]
    assert [r.rank_position for r in rankings] == [1, 2, 3]


def test_scores_stay_within_bounds():
    rankings = score_quotes([
        quote(str(i), 1_000 * (i + 1), professional_indemnity=250_000 * (i + 1), employers_liability=10_000_000)
        for i in range(6)
    ])
    for r in rankings:
        assert 0 <= r.coverage_raw <= 60
        assert 0 <= r.price_raw <= 40
        assert 1 <= r.overall_score <= 100


def test_empty_input():
    assert score_quotes([]) == []


@pytest.mark.parametrize("score,expected", [
    (100, RecommendationCategory.HIGHLY_RECOMMENDED),
    (80, RecommendationCategory.HIGHLY_RECOMMENDED),
    (79, RecommendationCategory.RECOMMENDED),
    (60, RecommendationCategory.RECOMMENDED),
    (59, RecommendationCategory.CONSIDER_WITH_CAUTION),
    (40, RecommendationCategory.CONSIDER_WITH_CAUTION),
    (39, RecommendationCategory.NOT_RECOMMENDED),
    (1, RecommendationCategory.NOT_RECOMMENDED),
])
def test_recommendation_thresholds(score, expected):
    assert recommendation_for(score) == expected


def test_extract_coverage_limits_from_payload():
    limits = extract_coverage_limits({
        "professional_indemnity": {"limit": "GBP 5,000,000 e&e"},
        "public_liability": "Not Covered",
        "cyber": {"headline_limit": "£500K", "sub_limits": []},
        "employers_liability": {"limit": "£10M"},
    })
    assert limits == {
        "professional_indemnity": 5_000_000,
        "public_liability": 0.0,
        "employers_liability": 10_000_000,
        "cyber": 500_000,
        "product_liability": 0.0,
    }


def test_strengths_and_concerns():
    rankings = score_quotes([
        quote("a", 10_000, professional_indemnity=2_000_000),
        quote("b", 8_000, professional_indemnity=500_000),
    ])
    by_id = {r.quote_id: r for r in rankings}

    assert any("Lowest premium" in s for s in by_id["b"].strengths)
    assert any("under half" in c for c in by_id["b"].concerns)
    assert any("Highest Professional Indemnity" in s for s in by_id["a"].strengths)
    assert any("Highest premium" in c for c in by_id["a"].concerns)


def test_rank_extraction_results_skips_wordings_and_missing_premiums():
    results = [
        make_result("axa", quote_payload("AXA", "£8,000", professional_indemnity={"limit": "£1M"})),
        make_result("wording", {"insurer_name": "AXA", "exclusions": []}, document_type=DocumentType.POLICY_WORDING),
        make_result("nopremium", {**quote_payload("Zurich", 0), "Premium_Total_Annual": None}),
        make_result("hiscox", quote_payload("Hiscox", 10_000, professional_indemnity={"limit": "£2M"})),
    ]

    rankings = rank_extraction_results(results)

    assert [r.quote_id for r in rankings] == ["axa", "hiscox"]
    assert rankings[0].insurer_name == "AXA"
    assert rankings[0].premium_amount == 8_000


def test_out_of_range_limit_is_treated_as_unparsable():
    results = [
        make_result("axa", quote_payload("AXA", 8_000, professional_indemnity={"limit": "£" + "9" * 400})),
        make_result("hiscox", quote_payload("Hiscox", 10_000, professional_indemnity={"limit": "£1M"})),
    ]

    rankings = rank_extraction_results(results)

    assert [(r.quote_id, r.overall_score) for r in rankings] == [("axa", 40), ("hiscox", 18)]
    assert rankings[0].coverage_limits["professional_indemnity"] == 0.0
