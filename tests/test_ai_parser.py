"""Test cache-aware extraction of quotes and policy wordings."""

import asyncio
import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from app.core.exceptions import (
    AllDocumentsFailedError,
    DecodeError,
    PayloadTooLarge,
    PipelineCancelled,
    SchemaValidationError,
)
from app.models.scheme import DocumentReference, DocumentType, RequestedDocument
from app.services.ai_completion import CompletionClient
from app.services.ai_parser import (
    ExtractionOrchestrator,
    build_extraction_prompt,
    compute_fingerprint,
    validate_payload,
)
from app.services.document_fetcher import FetchedDocument
from app.services.extraction_cache import ExtractionCache
from app.services.progress_tracker import PipelineContext
from tests.factories import FakeCompletion, quote_payload, text_extractor


def fetched(document_id, content, document_type=DocumentType.QUOTE, carrier=None):
    return FetchedDocument(
        reference=DocumentReference(
            id=document_id,
            filename=f"{document_id}.pdf",
            storage_path=document_id,
            carrier_name=carrier,
            document_type=document_type,
        ),
        content=content,
    )


def orchestrator_with(completion, cache=None):
    return ExtractionOrchestrator(
        completion=completion,
        cache=cache or ExtractionCache(),
        extractor=text_extractor(),
        schema_version="v3",
    )


# ============================================================================
# FINGERPRINT & PROMPTS
# ============================================================================

def test_fingerprint_depends_on_content_type_and_version():
    base = compute_fingerprint(b"abc", DocumentType.QUOTE, "v3")

    assert base == compute_fingerprint(b"abc", DocumentType.QUOTE, "v3")
    assert base != compute_fingerprint(b"abd", DocumentType.QUOTE, "v3")
    assert base != compute_fingerprint(b"abc", DocumentType.POLICY_WORDING, "v3")
    assert base != compute_fingerprint(b"abc", DocumentType.QUOTE, "v4")


def test_prompts_differ_by_document_type():
    quote_system, quote_user = build_extraction_prompt(DocumentType.QUOTE, "[Page 1]\ntext", "q.pdf", "Acme")
    wording_system, wording_user = build_extraction_prompt(DocumentType.POLICY_WORDING, "[Page 1]\ntext", "w.pdf")

    assert "Premium_Total_Annual" in quote_user
    assert "CLIENT: Acme" in quote_user
    assert "exclusions" in wording_user
    assert "Premium_Total_Annual" not in wording_user
    assert quote_system != wording_system


# ============================================================================
# VALIDATION
# ============================================================================

def test_validate_quote_fills_request_metadata_and_coerces_arrays():
    payload = validate_payload(
        {"Product_Type": "PI", "Premium_Total_Annual": "£8,000", "Inclusions": "Defence costs"},
        DocumentType.QUOTE,
        carrier_name="AXA",
        client_name="Acme",
    )

    assert payload["Insurer_Name"] == "AXA"
    assert payload["Client_Name"] == "Acme"
    assert payload["Premium_Total_Annual"] == 8000
    assert payload["Inclusions"] == ["Defence costs"]
    assert payload["subjectivities"] == []


def test_validate_quote_missing_premium():
    with pytest.raises(SchemaValidationError) as exc_info:
        validate_payload(
            {"Insurer_Name": "AXA", "Client_Name": "Acme", "Product_Type": "PI"},
            DocumentType.QUOTE,
        )
    assert exc_info.value.missing_fields == ["Premium_Total_Annual"]


def test_validate_wording_requires_exclusions_key():
    with pytest.raises(SchemaValidationError):
        validate_payload({"insurer_name": "AXA"}, DocumentType.POLICY_WORDING)

    payload = validate_payload({"insurer_name": "AXA", "exclusions": []}, DocumentType.POLICY_WORDING)
    assert payload["exclusions"] == []
    assert payload["limits"] == []


# ============================================================================
# ORCHESTRATOR
# ============================================================================

@pytest.mark.asyncio
async def test_extract_quote():
    completion = FakeCompletion(json.dumps(quote_payload("AXA Insurance", 8000)))
    orchestrator = orchestrator_with(completion)

    result = await orchestrator.extract(fetched("axa", b"AXA quote text"), client_name="Acme")

    assert result.succeeded
    assert result.carrier_name == "AXA Insurance"
    assert result.structured_payload["Premium_Total_Annual"] == 8000
    assert result.cached is False
    assert result.schema_version == "v3"
    assert "[Page 1]" in completion.calls[0]["user"]


@pytest.mark.asyncio
async def test_second_extraction_of_same_bytes_is_a_cache_hit():
    completion = FakeCompletion(json.dumps(quote_payload("AXA", 8000)))
    orchestrator = orchestrator_with(completion)

    first = await orchestrator.extract(fetched("axa-1", b"same bytes", carrier="AXA"))
    second = await orchestrator.extract(fetched("axa-2", b"same bytes", carrier="AXA"))

    assert len(completion.calls) == 1
    assert first.cached is False
    assert second.cached is True
    assert second.document_id == "axa-2"
    assert second.structured_payload == first.structured_payload


@pytest.mark.asyncio
async def test_same_bytes_as_other_document_type_is_not_a_cache_hit():
    def respond(system, user):
        if "Premium_Total_Annual" in user:
            return json.dumps(quote_payload("AXA", 8000))
        return json.dumps({"insurer_name": "AXA", "exclusions": ["War"]})

    completion = FakeCompletion(respond)
    orchestrator = orchestrator_with(completion)

    await orchestrator.extract(fetched("q", b"same bytes"))
    await orchestrator.extract(fetched("w", b"same bytes", document_type=DocumentType.POLICY_WORDING))

    assert len(completion.calls) == 2


@pytest.mark.asyncio
async def test_concurrent_extractions_share_one_call():
    release = asyncio.Event()

    class SlowCompletion(FakeCompletion):
        async def complete(self, system_prompt, user_prompt, **kwargs):
            self.calls.append({"user": user_prompt})
            await release.wait()
            return json.dumps(quote_payload("Hiscox", 9000))

    completion = SlowCompletion("")
    orchestrator = orchestrator_with(completion)

    tasks = [
        asyncio.ensure_future(orchestrator.extract(fetched(f"copy-{i}", b"identical")))
        for i in range(3)
    ]
    await asyncio.sleep(0.05)
    release.set()
    results = await asyncio.gather(*tasks)

    assert len(completion.calls) == 1
    assert [r.document_id for r in results] == ["copy-0", "copy-1", "copy-2"]
    assert sum(not r.cached for r in results) == 1


@pytest.mark.asyncio
async def test_undecodable_answer_is_not_cached():
    cache = ExtractionCache()
    orchestrator = orchestrator_with(FakeCompletion("I could not find a quote."), cache)

    with pytest.raises(DecodeError):
        await orchestrator.extract(fetched("bad", b"bad"))

    assert (await cache.get_stats())["total_cached"] == 0


@pytest.mark.asyncio
async def test_cancelled_context_stops_new_extractions():
    completion = FakeCompletion(json.dumps(quote_payload("AXA", 8000)))
    context = PipelineContext("job_x")
    context.cancel()

    with pytest.raises(PipelineCancelled):
        await orchestrator_with(completion).extract(fetched("axa", b"text"), context=context)

    assert completion.calls == []


# ============================================================================
# BATCH
# ============================================================================

@pytest.mark.asyncio
async def test_batch_collects_failures_without_aborting():
    def respond(system, user):
        if "DOCUMENT: broken.pdf" in user:
            return "not json"
        return json.dumps(quote_payload("Zurich", 7000))

    orchestrator = orchestrator_with(FakeCompletion(respond))
    batch = [
        (RequestedDocument(document_id="good", carrier_name="Zurich", filename="good.pdf"), fetched("good", b"good")),
        (RequestedDocument(document_id="broken", filename="broken.pdf"), fetched("broken", b"broken")),
        (RequestedDocument(document_id="huge", carrier_name="AXA", filename="huge.pdf"),
         PayloadTooLarge(30 * 1024 * 1024, 20 * 1024 * 1024)),
    ]

    results, failed = await orchestrator.extract_batch(batch, client_name="Acme")

    assert [r.document_id for r in results] == ["good"]
    assert {f.document_id: f.error_code for f in failed} == {
        "broken": "decode_error",
        "huge": "payload_too_large",
    }
    huge = next(f for f in failed if f.document_id == "huge")
    assert huge.carrier == "AXA"
    assert huge.message.startswith("Document too large (max 20MB)")


@pytest.mark.asyncio
async def test_batch_where_everything_fails():
    orchestrator = orchestrator_with(FakeCompletion("{}"))
    batch = [(RequestedDocument(document_id="a"), fetched("a", b"a"))]

    with pytest.raises(AllDocumentsFailedError) as exc_info:
        await orchestrator.extract_batch(batch)

    assert exc_info.value.failed_documents[0].error_code == "schema_validation_error"


@pytest.mark.asyncio
async def test_stopping_one_run_does_not_fail_a_run_sharing_its_extraction():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    started, release = asyncio.Event(), asyncio.Event()
    answers = iter([None, json.dumps(quote_payload("AXA", 8000))])

    async def create(**kwargs):
        content = next(answers)
        if content is None:
            started.set()
            await release.wait()
            raise openai.APIConnectionError(request=request)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

    openai_client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    completion = CompletionClient(
        openai_client, models=["primary"], timeout=5.0, max_retries=3, retry_base_delay=0, temperature=0
    )
    orchestrator = orchestrator_with(completion)
    stopped, running = PipelineContext("job_stopped"), PipelineContext("job_running")

    first = asyncio.ensure_future(orchestrator.extract(fetched("axa-1", b"shared bytes"), context=stopped))
    await started.wait()
    second = asyncio.ensure_future(orchestrator.extract(fetched("axa-2", b"shared bytes"), context=running))
    await asyncio.sleep(0.01)

    stopped.cancel()
    release.set()

    with pytest.raises(PipelineCancelled):
        await first
    result = await second

    assert result.succeeded
    assert result.document_id == "axa-2"
    assert result.cached is False
    assert not running.cancelled
    assert any(event.document_id == "axa-2" for event in running.events)
