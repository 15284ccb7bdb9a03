"""
Comparison Pipeline
===================
Document ids in, ranked and cited ComparisonReport out.

FLOW:
1. Coverage section check
2. Fetch every document concurrently (Document Fetcher)
3. Extract every fetched document concurrently (Extraction Orchestrator)
4. Aggregate comparison (Comparison Engine)
5. Deterministic ranking (Scoring Module) + wording diff
6. Persist

Per-document failures travel in failed_documents. Cancellation stops
new AI calls; whatever finishes afterwards is discarded.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from app.core.config import settings
from app.core.exceptions import (
    AllDocumentsFailedError,
    PipelineCancelled,
    PipelineError,
    SectionSelectionEmpty,
    error_code_for,
    user_message_for,
)
from app.models.scheme import (
    ComparisonReport,
    ComparisonRequest,
    ExtractionResult,
    FailedDocument,
    ProcessedDocument,
    ProgressLevel,
)
from app.services.ai_parser import ExtractionOrchestrator
from app.services.comparison_service import ComparisonEngine
from app.services.comparison_store import ComparisonStore
from app.services.document_fetcher import DocumentFetcher
from app.services.progress_tracker import PipelineContext, ProgressTracker
from app.services.quote_ranker import rank_extraction_results
from app.services.wording_diff_service import analyze_wordings

logger = logging.getLogger(__name__)


def generate_comparison_id() -> str:
    """Generate unique comparison ID"""
    timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
    return f"cmp_{timestamp}_{uuid.uuid4().hex[:12]}"


def order_by_request(results: List[ExtractionResult], request: ComparisonRequest) -> List[ExtractionResult]:
    """Put results back into submission order; scoring ties fall back on it."""
    positions = {doc.document_id: index for index, doc in enumerate(request.documents)}
    return sorted(results, key=lambda r: positions.get(r.document_id, len(positions)))


class ComparisonPipeline:
    """Runs a ComparisonRequest end to end"""

    def __init__(
        self,
        fetcher: DocumentFetcher,
        orchestrator: ExtractionOrchestrator,
        engine: ComparisonEngine,
        store: ComparisonStore,
        require_sections: Optional[bool] = None,
    ):
        self.fetcher = fetcher
        self.orchestrator = orchestrator
        self.engine = engine
        self.store = store
        self.require_sections = (
            settings.REQUIRE_COVERAGE_SECTIONS if require_sections is None else require_sections
        )

    async def run(
        self,
        request: ComparisonRequest,
        context: PipelineContext,
        comparison_id: Optional[str] = None,
    ) -> ComparisonReport:
        """
        Run the full document-to-decision flow.

        Raises:
            SectionSelectionEmpty: No coverage section selected
            AllDocumentsFailedError: Every document failed
            PipelineCancelled: The run was cancelled
            DecodeError / SchemaValidationError / AIInvocationError: Aggregate stage failed
        """
        comparison_id = comparison_id or context.comparison_id or generate_comparison_id()

        if self.require_sections and not request.selected_coverage_sections:
            raise SectionSelectionEmpty("At least one coverage section must be selected")

        logger.info("")
        logger.info("=" * 80)
        logger.info(f"🚀 COMPARISON {comparison_id}: {len(request.documents)} documents, mode={request.mode.value}")
        logger.info("=" * 80)
        context.emit("start", f"Starting comparison of {len(request.documents)} documents")

        context.emit("fetch", f"Fetching {len(request.documents)} documents")
        fetched = await self.fetcher.fetch_many(request.documents)
        context.raise_if_cancelled()

        results, failed = await self.orchestrator.extract_batch(
            fetched,
            client_name=request.client_name,
            context=context,
        )
        context.raise_if_cancelled()

        report = await self.build_report(comparison_id, request, results, failed, context)
        context.raise_if_cancelled()

        context.emit("persist", "Saving comparison")
        await self.store.save(report)

        context.emit(
            "complete",
            f"Comparison ready ({len(results)} processed, {len(failed)} failed)",
            level=ProgressLevel.SUCCESS,
        )
        logger.info(f"✅ COMPARISON COMPLETE: {comparison_id}")
        return report

    async def build_report(
        self,
        comparison_id: str,
        request: ComparisonRequest,
        results: List[ExtractionResult],
        failed: List[FailedDocument],
        context: PipelineContext,
    ) -> ComparisonReport:
        """Comparison, ranking and wording diff over a full set of successful results."""
        results = order_by_request(results, request)

        outcome = await self.engine.compare(
            results,
            sections=request.selected_coverage_sections,
            mode=request.mode,
            client_name=request.client_name,
            industry=request.industry,
            jurisdiction=request.jurisdiction,
            context=context,
        )
        context.raise_if_cancelled()

        context.emit("score", "Scoring and ranking quotes")
        rankings = rank_extraction_results(results)
        wording_analysis = analyze_wordings(results)

        return ComparisonReport(
            comparison_id=comparison_id,
            mode=request.mode,
            client_name=request.client_name,
            insurers=outcome["insurers"],
            product_comparisons=outcome["product_comparisons"],
            comparison_summary=outcome["comparison_summary"],
            overall_findings=outcome["overall_findings"],
            markdown_report=outcome["markdown_report"],
            citations=outcome["citations"],
            # Always our own accounting, never the model's
            failed_documents=failed,
            rankings=rankings,
            wording_analysis=wording_analysis,
            documents_processed=[
                ProcessedDocument(
                    document_id=r.document_id,
                    filename=r.filename,
                    document_type=r.document_type,
                    carrier_name=r.carrier_name,
                    fingerprint=r.fingerprint,
                )
                for r in results
            ],
            request=request,
        )

    async def run_tracked(
        self,
        job_id: str,
        request: ComparisonRequest,
        comparison_id: str,
        tracker: ProgressTracker,
    ) -> None:
        """Background-task entry point: run and report into the progress tracker."""
        context = tracker.get_context(job_id)
        if context is None:
            context = tracker.initialize_progress(job_id, len(request.documents), comparison_id)

        try:
            await self.run(request, context, comparison_id)
            tracker.mark_completed(job_id, comparison_id)
        except PipelineCancelled:
            logger.info(f"🛑 Job {job_id} stopped, results discarded")
        except AllDocumentsFailedError as e:
            tracker.mark_error(
                job_id,
                e.user_message,
                error_code=e.code,
                details={"failed_documents": [f.model_dump(mode="json") for f in e.failed_documents]},
            )
        except PipelineError as e:
            tracker.mark_error(job_id, e.user_message, error_code=e.code)
        except Exception as e:
            logger.error(f"❌ Unexpected pipeline failure for job {job_id}: {e}", exc_info=True)
            tracker.mark_error(job_id, user_message_for(e), error_code=error_code_for(e))
