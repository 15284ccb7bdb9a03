"""Test scoped retry of a failed document."""

import json

import pytest

from app.core.exceptions import ComparisonNotFound, DocumentNotFound, SignedUrlError
from app.models.scheme import RequestedDocument
from app.services.progress_tracker import PipelineContext
from app.services.retry_service import RetryController
from tests.factories import FakeCompletion, payload_responder, quote_payload


PAYLOADS = {
    "axa.pdf": quote_payload("AXA", 10_000, professional_indemnity={"limit": "£2M"}),
    "hiscox.pdf": quote_payload("Hiscox", 8_000, professional_indemnity={"limit": "£1M"}),
    "zurich.pdf": quote_payload("Zurich", 9_000, professional_indemnity={"limit": "£1M"}),
    "zurich_v2.pdf": quote_payload("Zurich", 7_500, professional_indemnity={"limit": "£2M"}),
}

COMPARISON = json.dumps({"insurers": [{"insurer_name": "Carrier"}]})


def contents():
    return {
        "axa-quote": b"AXA quote",
        "hiscox-quote": b"Hiscox quote",
        "zurich-quote": b"x" * 4096,
        "zurich-quote-v2": b"Zurich compressed quote",
    }


async def failed_comparison(build_pipeline, sample_request, completion):
    pipeline = build_pipeline(contents(), completion, max_bytes=1024)
    report = await pipeline.run(sample_request, PipelineContext("job_retry", "cmp_retry"))
    assert [f.document_id for f in report.failed_documents] == ["zurich-quote"]
    return pipeline, RetryController(pipeline.fetcher, pipeline.orchestrator, pipeline, pipeline.store)


@pytest.mark.asyncio
async def test_retry_with_replacement_document(build_pipeline, sample_request, store):
    completion = FakeCompletion(payload_responder(PAYLOADS, COMPARISON))
    pipeline, controller = await failed_comparison(build_pipeline, sample_request, completion)
    calls_before = len(completion.calls)

    replacement = RequestedDocument(document_id="zurich-quote-v2", carrier_name="Zurich", filename="zurich_v2.pdf")
    report = await controller.retry_failed_document("cmp_retry", "zurich-quote", replacement)

    # Replacement extraction plus one comparison; the other two come from the cache
    assert len(completion.calls) == calls_before + 2
    assert report.failed_documents == []
    assert [d.document_id for d in report.documents_processed] == [
        "axa-quote", "hiscox-quote", "zurich-quote-v2",
    ]
    assert report.rankings[0].insurer_name == "Zurich"
    assert [d.document_id for d in report.request.documents] == [
        "axa-quote", "hiscox-quote", "zurich-quote-v2",
    ]
    assert (await store.get("cmp_retry")).failed_documents == []


@pytest.mark.asyncio
async def test_failed_replacement_leaves_comparison_untouched(build_pipeline, sample_request, store):
    completion = FakeCompletion(payload_responder(PAYLOADS, COMPARISON))
    pipeline, controller = await failed_comparison(build_pipeline, sample_request, completion)
    before = await store.get("cmp_retry")

    with pytest.raises(SignedUrlError):
        await controller.retry_failed_document(
            "cmp_retry", "zurich-quote", RequestedDocument(document_id="not-uploaded", filename="nope.pdf")
        )

    after = await store.get("cmp_retry")
    assert after is before
    assert [f.document_id for f in after.failed_documents] == ["zurich-quote"]


@pytest.mark.asyncio
async def test_retry_of_unknown_failure(build_pipeline, sample_request):
    completion = FakeCompletion(payload_responder(PAYLOADS, COMPARISON))
    _, controller = await failed_comparison(build_pipeline, sample_request, completion)

    with pytest.raises(DocumentNotFound):
        await controller.retry_failed_document("cmp_retry", "axa-quote")


@pytest.mark.asyncio
async def test_retry_of_unknown_comparison(build_pipeline, sample_request):
    completion = FakeCompletion(payload_responder(PAYLOADS, COMPARISON))
    _, controller = await failed_comparison(build_pipeline, sample_request, completion)

    with pytest.raises(ComparisonNotFound):
        await controller.retry_failed_document("cmp_missing", "zurich-quote")


@pytest.mark.asyncio
async def test_prior_result_evicted_from_cache_is_extracted_again(build_pipeline, sample_request, cache):
    completion = FakeCompletion(payload_responder(PAYLOADS, COMPARISON))
    pipeline, controller = await failed_comparison(build_pipeline, sample_request, completion)
    cache.clear()
    calls_before = len(completion.calls)

    replacement = RequestedDocument(document_id="zurich-quote-v2", carrier_name="Zurich", filename="zurich_v2.pdf")
    report = await controller.retry_failed_document("cmp_retry", "zurich-quote", replacement)

    # Replacement, both prior documents and the comparison
    assert len(completion.calls) == calls_before + 4
    assert len(report.documents_processed) == 3
