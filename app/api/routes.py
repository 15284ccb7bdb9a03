"""
API ROUTES - Document-to-Decision Pipeline
==========================================
- POST /api/compare starts a comparison job and returns immediately
- Progress, result and cancellation are addressed by job_id
- Stored comparisons are addressed by comparison_id
- A failed document can be retried without re-running the others
- POST /api/rankings exposes the deterministic scoring on its own
"""

from fastapi import APIRouter, BackgroundTasks, Body, HTTPException
from fastapi.responses import JSONResponse
from typing import List, Optional
import logging
import uuid
from datetime import datetime

from app.core.config import settings
from app.core.exceptions import (
    PipelineCancelled,
    PipelineError,
    SectionSelectionEmpty,
    user_message_for,
)
from app.models.scheme import (
    ComparisonRequest,
    HealthResponse,
    QuoteInput,
    RequestedDocument,
)
from app.services.ai_parser import ExtractionOrchestrator
from app.services.comparison_pipeline import ComparisonPipeline, generate_comparison_id
from app.services.comparison_service import comparison_engine
from app.services.comparison_store import ComparisonStore
from app.services.document_fetcher import DocumentFetcher
from app.services.extraction_cache import ExtractionCache
from app.services.mongodb_service import mongodb_service
from app.services.progress_tracker import progress_tracker
from app.services.quote_ranker import score_quotes
from app.services.retry_service import RetryController
from app.utils.response_formatter import response_formatter

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["Comparison Pipeline"])


# ============================================================================
# SERVICE WIRING
# ============================================================================

_storage_backend = mongodb_service if settings.ENABLE_STORAGE else None

document_fetcher = DocumentFetcher(_storage_backend)
extraction_cache = ExtractionCache(_storage_backend)
extraction_orchestrator = ExtractionOrchestrator(cache=extraction_cache)
comparison_store = ComparisonStore(_storage_backend)
comparison_pipeline = ComparisonPipeline(
    document_fetcher, extraction_orchestrator, comparison_engine, comparison_store
)
retry_controller = RetryController(
    document_fetcher, extraction_orchestrator, comparison_pipeline, comparison_store
)


# ============================================================================
# ERROR MAPPING
# ============================================================================

ERROR_STATUS = {
    "document_not_found": 404,
    "comparison_not_found": 404,
    "section_selection_empty": 400,
    "payload_too_large": 413,
    "unreadable_document": 422,
    "signed_url_error": 502,
    "fetch_error": 502,
    "schema_validation_error": 502,
    "decode_error": 502,
    "ai_invocation_error": 502,
    "all_documents_failed": 502,
    "ai_timeout": 504,
    "pipeline_cancelled": 409,
}


def _status_for(error_code: Optional[str]) -> int:
    return ERROR_STATUS.get(error_code or "", 500)


def _http_error(error: PipelineError) -> HTTPException:
    return HTTPException(status_code=_status_for(error.code), detail=error.to_dict())


# ============================================================================
# COMPARISON JOBS
# ============================================================================


@router.post("/compare", status_code=202)
async def start_comparison(request: ComparisonRequest, background_tasks: BackgroundTasks):
    """
    Start a comparison job.

    The pipeline runs in the background; poll /api/progress/{job_id} and
    collect the report from /api/jobs/{job_id}/result.
    """
    if comparison_pipeline.require_sections and not request.selected_coverage_sections:
        raise _http_error(SectionSelectionEmpty("No coverage section selected"))

    comparison_id = generate_comparison_id()
    job_id = f"job_{uuid.uuid4().hex[:12]}"
    progress_tracker.initialize_progress(job_id, len(request.documents), comparison_id)

    logger.info(f"🆔 Job {job_id} → {comparison_id} ({len(request.documents)} documents)")
    background_tasks.add_task(
        comparison_pipeline.run_tracked, job_id, request, comparison_id, progress_tracker
    )

    return {"job_id": job_id, "comparison_id": comparison_id, "status": "processing"}


@router.get("/progress/{job_id}")
async def get_progress(job_id: str):
    """
    Get current progress for a job.

    Returns:
        Progress data with percentage, current step and the event stream
    """
    progress = progress_tracker.get_progress(job_id)

    if not progress:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")

    return JSONResponse(content=progress)


@router.get("/jobs/{job_id}/result")
async def get_job_result(job_id: str):
    """Finished report of a job, or its user-facing error."""
    progress = progress_tracker.get_progress(job_id)
    if not progress:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")

    status = progress["status"]
    if status == "processing":
        return JSONResponse(
            status_code=202,
            content={"job_id": job_id, "status": status, "percentage": progress["percentage"]},
        )
    if status == "cancelled":
        raise _http_error(PipelineCancelled(f"Job {job_id} was cancelled"))
    if status == "error":
        raise HTTPException(
            status_code=_status_for(progress.get("error_code")),
            detail={
                "error": progress.get("error_code"),
                "message": progress.get("error_message"),
                **(progress.get("error_details") or {}),
            },
        )

    comparison_id = progress["comparison_id"]
    try:
        report = await comparison_store.require(comparison_id)
    except PipelineError as e:
        raise _http_error(e)
    return JSONResponse(content={"job_id": job_id, **response_formatter.format_comparison_report(report)})


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str):
    """Stop a running job; late results are discarded."""
    if progress_tracker.get_progress(job_id) is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")

    if not progress_tracker.cancel(job_id):
        raise HTTPException(status_code=409, detail=f"Job {job_id} is no longer running")

    return {"job_id": job_id, "status": "cancelled"}


# ============================================================================
# STORED COMPARISONS
# ============================================================================


@router.get("/comparisons/{comparison_id}")
async def get_comparison(comparison_id: str):
    try:
        report = await comparison_store.require(comparison_id)
    except PipelineError as e:
        raise _http_error(e)
    return JSONResponse(content=response_formatter.format_comparison_report(report))


@router.post("/comparisons/{comparison_id}/documents/{document_id}/retry")
async def retry_failed_document(
    comparison_id: str,
    document_id: str,
    replacement: Optional[RequestedDocument] = Body(None),
):
    """
    Retry one failed document of a comparison.

    Args:
        comparison_id: Stored comparison
        document_id: Entry of failed_documents to resolve
        replacement: Optional new document; defaults to the original one
    """
    try:
        report = await retry_controller.retry_failed_document(comparison_id, document_id, replacement)
    except PipelineError as e:
        logger.error(f"❌ Retry of {document_id} in {comparison_id} failed: {e}")
        raise _http_error(e)
    return JSONResponse(content=response_formatter.format_comparison_report(report))


# ============================================================================
# SCORING
# ============================================================================


@router.post("/rankings")
async def rank_quotes(quotes: List[QuoteInput]):
    """Deterministic scoring and ranking of quote inputs."""
    if not quotes:
        raise HTTPException(status_code=400, detail="At least one quote is required")

    rankings = score_quotes(quotes)
    return {
        "rankings": [ranking.model_dump(mode="json") for ranking in rankings],
        "ranked_quotes": response_formatter.format_rankings(rankings),
    }


# ============================================================================
# DIAGNOSTICS
# ============================================================================


@router.get("/cache/stats")
async def cache_stats():
    try:
        stats = await extraction_cache.get_stats()
    except Exception as e:
        logger.error(f"❌ Cache stats failed: {e}")
        raise HTTPException(status_code=500, detail=user_message_for(e))

    return {
        "cache": stats,
        "jobs": progress_tracker.get_stats(),
        "timestamp": datetime.now().isoformat(),
    }


@router.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse(
        status="healthy",
        version=settings.APP_VERSION,
        timestamp=datetime.now().isoformat(),
        storage_enabled=mongodb_service.is_connected,
        ai_model=settings.AI_MODEL,
    )
