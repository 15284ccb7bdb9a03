"""Test policy wording comparison."""

from app.models.scheme import DocumentType, PolicyWording
from app.services.wording_diff_service import (
    analyze_wordings,
    best_wording,
    common_exclusions,
    completeness_score,
    policy_wording_from_payload,
    unique_exclusions,
)
from tests.factories import make_result, quote_payload


def test_common_exclusions_are_case_insensitive():
    first = PolicyWording(insurer_name="AXA", exclusions=["War", "Terrorism"])
    second = PolicyWording(insurer_name="Hiscox", exclusions=["war", "TERRORISM", "Flood"])

    assert common_exclusions([first, second]) == ["War", "Terrorism"]


def test_common_exclusions_without_duplicates():
    first = PolicyWording(exclusions=["War", "war", "Asbestos"])
    second = PolicyWording(exclusions=["WAR", "Asbestos"])

    assert common_exclusions([first, second]) == ["War", "Asbestos"]


def test_common_exclusions_empty_input():
    assert common_exclusions([]) == []


def test_unique_exclusions():
    first = PolicyWording(insurer_name="AXA", exclusions=["War", "Terrorism"])
    second = PolicyWording(insurer_name="Hiscox", exclusions=["war", "TERRORISM", "Flood"])
    wordings = [first, second]

    assert unique_exclusions(first, wordings) == []
    assert unique_exclusions(second, wordings) == ["Flood"]


def test_unique_exclusions_of_identical_wordings():
    first = PolicyWording(exclusions=["Pollution"])
    second = PolicyWording(exclusions=["Pollution"])

    assert unique_exclusions(first, [first, second]) == []


def test_completeness_score():
    assert completeness_score(PolicyWording()) == 0
    assert completeness_score(PolicyWording(insurer_name="AXA", exclusions=["War"])) == 15

    full = PolicyWording(
        insurer_name="AXA",
        product_name="PI Wording 2024",
        jurisdiction="England & Wales",
        territory="Worldwide excluding USA/Canada",
        claims_basis="Claims made",
        limits=[{"amount": 2_000_000}],
        deductibles=[{"amount": 5_000}],
        exclusions=["War"],
        conditions=["Notification within 30 days"],
        notable_terms=["Civil liability"],
        definitions=["Claim"],
        citations=["[Source: axa_wording.pdf, 3]"],
    )
    assert completeness_score(full) == 100


def test_best_wording_first_wins_a_tie():
    first = PolicyWording(insurer_name="AXA", exclusions=["War"])
    second = PolicyWording(insurer_name="Hiscox", exclusions=["Flood"])
    third = PolicyWording(insurer_name="Zurich")

    assert best_wording([first, second, third]) is first
    assert best_wording([]) is None


def test_policy_wording_from_payload():
    wording = policy_wording_from_payload({
        "insurer_name": "Hiscox",
        "form_name_or_code": "PI-2024",
        "coverage_trigger": "claims made",
        "governing_law_and_jurisdiction": "England & Wales",
        "territorial_limits": "Worldwide",
        "insuring_clauses": [{"title": "Civil liability", "summary": "Covers civil liability claims", "page_ref": 2}],
        "definitions_notable": [{"term": "Claim", "page_ref": 4}],
        "exclusions": ["War", {"title": "Sanctions"}],
        "conditions": ["Claims notification"],
        "limits": [{"limit_type": "aggregate", "amount": 2_000_000}],
        "sublimits": [{"coverage": "Defence costs", "amount": 250_000}],
        "deductibles_excesses": [{"applies_to": "each claim", "amount": 5_000}],
        "evidence": [{"field": "limits", "page_ref": 3}],
    }, filename="hiscox_wording.pdf")

    assert wording.product_name == "PI-2024"
    assert wording.claims_basis == "claims made"
    assert wording.coverage_sections == ["Civil liability"]
    assert wording.exclusions == ["War", "Sanctions"]
    assert len(wording.limits) == 2
    assert wording.definitions == ["Claim"]
    assert wording.notable_terms == ["Covers civil liability claims"]
    assert wording.citations == ["[Source: hiscox_wording.pdf, 3]"]
    assert wording.completeness_score == 100


def test_analyze_wordings():
    results = [
        make_result("axa-quote", quote_payload("AXA", 8_000)),
        make_result(
            "axa-wording",
            {"insurer_name": "AXA", "exclusions": ["War", "Terrorism", "Asbestos"]},
            document_type=DocumentType.POLICY_WORDING,
        ),
        make_result(
            "hiscox-wording",
            {"insurer_name": "Hiscox", "exclusions": ["war", "TERRORISM", "Flood"], "conditions": ["Notify"]},
            document_type=DocumentType.POLICY_WORDING,
        ),
    ]

    analysis = analyze_wordings(results)

    assert len(analysis.wordings) == 2
    assert analysis.common_exclusions == ["War", "Terrorism"]
    assert analysis.unique_exclusions == {"AXA": ["Asbestos"], "Hiscox": ["Flood"]}
    assert analysis.best_wording == "Hiscox"


def test_analyze_wordings_without_wordings():
    assert analyze_wordings([make_result("axa-quote", quote_payload("AXA", 8_000))]) is None
