"""
Retry/Resume Controller
=======================
Repairs one failed document of an existing comparison without re-running
the others:

1. Extract the replacement exactly like a normal batch document
2. Reload every prior successful extraction (cache, by fingerprint)
3. Re-run the whole comparison over the merged set
4. Drop the resolved entry from failed_documents and save

A failed replacement raises its typed error and leaves the stored
comparison untouched.
"""

import logging
from typing import List, Optional

from app.core.exceptions import DocumentNotFound
from app.models.scheme import (
    ComparisonReport,
    ExtractionResult,
    ProcessedDocument,
    RequestedDocument,
)
from app.services.ai_parser import ExtractionOrchestrator
from app.services.comparison_pipeline import ComparisonPipeline
from app.services.comparison_store import ComparisonStore
from app.services.document_fetcher import DocumentFetcher
from app.services.progress_tracker import PipelineContext

logger = logging.getLogger(__name__)


class RetryController:
    """Scoped retry of a single failed document"""

    def __init__(
        self,
        fetcher: DocumentFetcher,
        orchestrator: ExtractionOrchestrator,
        pipeline: ComparisonPipeline,
        store: ComparisonStore,
    ):
        self.fetcher = fetcher
        self.orchestrator = orchestrator
        self.pipeline = pipeline
        self.store = store

    async def replace_document(
        self,
        document: RequestedDocument,
        *,
        client_name: Optional[str] = None,
        context: Optional[PipelineContext] = None,
    ) -> ExtractionResult:
        """
        Fetch and extract a single document.

        Raises:
            PipelineError subclasses, exactly as a batch document would fail
        """
        fetched = await self.fetcher.fetch(document.document_id, document)
        return await self.orchestrator.extract(fetched, client_name=client_name, context=context)

    async def _load_prior_result(
        self,
        processed: ProcessedDocument,
        client_name: Optional[str],
        context: PipelineContext,
    ) -> ExtractionResult:
        cached = await self.orchestrator.cache.get(processed.fingerprint)
        if cached is not None:
            return cached.model_copy(update={
                "document_id": processed.document_id,
                "filename": processed.filename,
                "carrier_name": processed.carrier_name or cached.carrier_name,
            })

        logger.warning(f"⚠️  {processed.filename} no longer cached, extracting again")
        return await self.replace_document(
            RequestedDocument(
                document_id=processed.document_id,
                carrier_name=processed.carrier_name,
                document_type=processed.document_type,
                filename=processed.filename,
            ),
            client_name=client_name,
            context=context,
        )

    async def retry_failed_document(
        self,
        comparison_id: str,
        failed_document_id: str,
        replacement: Optional[RequestedDocument] = None,
    ) -> ComparisonReport:
        """
        Replace a failed document and rebuild the comparison.

        Args:
            comparison_id: Stored comparison to repair
            failed_document_id: Entry in failed_documents being resolved
            replacement: New document; defaults to retrying the original one

        Returns:
            The updated, persisted ComparisonReport
        """
        report = await self.store.require(comparison_id)

        failed_entry = next(
            (f for f in report.failed_documents if f.document_id == failed_document_id), None
        )
        if failed_entry is None:
            raise DocumentNotFound(failed_document_id)

        if replacement is None:
            replacement = RequestedDocument(
                document_id=failed_entry.document_id,
                carrier_name=failed_entry.carrier,
                document_type=failed_entry.document_type,
                filename=failed_entry.filename,
            )

        request = report.request
        if request is None:
            raise DocumentNotFound(comparison_id)

        logger.info(f"🔁 Retrying {failed_entry.filename} in {comparison_id} with {replacement.document_id}")
        context = PipelineContext(job_id=f"retry_{comparison_id}", comparison_id=comparison_id)

        new_result = await self.replace_document(
            replacement, client_name=request.client_name, context=context
        )

        prior: List[ExtractionResult] = []
        for processed in report.documents_processed:
            if processed.document_id in (failed_document_id, new_result.document_id):
                continue
            prior.append(await self._load_prior_result(processed, request.client_name, context))

        updated_request = request.model_copy(update={
            "documents": [
                replacement if doc.document_id == failed_document_id else doc
                for doc in request.documents
            ]
        })
        remaining_failed = [
            f for f in report.failed_documents if f.document_id != failed_document_id
        ]

        updated = await self.pipeline.build_report(
            comparison_id,
            updated_request,
            prior + [new_result],
            remaining_failed,
            context,
        )
        await self.store.save(updated)

        logger.info(f"✅ Retry resolved {failed_entry.filename}; {len(remaining_failed)} failures remain")
        return updated
