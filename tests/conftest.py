"""Pytest configuration and shared fixtures."""

from typing import Dict

import pytest

from app.models.scheme import ComparisonMode, ComparisonRequest, CoverageSection, RequestedDocument
from app.services.ai_parser import ExtractionOrchestrator
from app.services.comparison_pipeline import ComparisonPipeline
from app.services.comparison_service import ComparisonEngine
from app.services.comparison_store import ComparisonStore
from app.services.extraction_cache import ExtractionCache
from tests.factories import FakeCompletion, make_fetcher, text_extractor


@pytest.fixture
def cache() -> ExtractionCache:
    return ExtractionCache()


@pytest.fixture
def store() -> ComparisonStore:
    return ComparisonStore()


@pytest.fixture
def build_pipeline(cache, store):
    """Factory wiring a ComparisonPipeline over fakes."""
    def build(objects: Dict[str, bytes], completion: FakeCompletion, max_bytes: int = 20 * 1024 * 1024):
        fetcher = make_fetcher(objects, max_bytes=max_bytes)
        orchestrator = ExtractionOrchestrator(
            completion=completion,
            cache=cache,
            extractor=text_extractor(),
            schema_version="v3",
        )
        engine = ComparisonEngine(completion)
        pipeline = ComparisonPipeline(fetcher, orchestrator, engine, store, require_sections=True)
        return pipeline

    return build


@pytest.fixture
def sample_request() -> ComparisonRequest:
    return ComparisonRequest(
        client_name="Acme Consulting Ltd",
        industry="Consulting",
        jurisdiction="England & Wales",
        selected_coverage_sections={CoverageSection.PROFESSIONAL_INDEMNITY},
        documents=[
            RequestedDocument(document_id="axa-quote", carrier_name="AXA", filename="axa.pdf"),
            RequestedDocument(document_id="hiscox-quote", carrier_name="Hiscox", filename="hiscox.pdf"),
            RequestedDocument(document_id="zurich-quote", carrier_name="Zurich", filename="zurich.pdf"),
        ],
        mode=ComparisonMode.STRUCTURED,
    )
