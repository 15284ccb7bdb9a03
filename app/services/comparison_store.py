"""
Comparison Store
================
Finalized comparison reports, kept in memory and persisted to MongoDB when
storage is enabled.
"""

import logging
from typing import Any, Dict, Optional

from app.core.exceptions import ComparisonNotFound
from app.models.scheme import ComparisonReport

logger = logging.getLogger(__name__)


class ComparisonStore:
    """Save and load ComparisonReports by comparison_id"""

    def __init__(self, backend: Any = None):
        self.backend = backend
        self._reports: Dict[str, ComparisonReport] = {}

    def _backend_ready(self) -> bool:
        return self.backend is not None and getattr(self.backend, "is_connected", True)

    async def save(self, report: ComparisonReport) -> None:
        self._reports[report.comparison_id] = report
        if self._backend_ready():
            await self.backend.save_comparison(report.comparison_id, report.model_dump(mode="json"))

    async def get(self, comparison_id: str) -> Optional[ComparisonReport]:
        report = self._reports.get(comparison_id)
        if report is not None or not self._backend_ready():
            return report

        document = await self.backend.get_comparison(comparison_id)
        if not document:
            return None
        report = ComparisonReport(**document)
        self._reports[comparison_id] = report
        return report

    async def require(self, comparison_id: str) -> ComparisonReport:
        report = await self.get(comparison_id)
        if report is None:
            raise ComparisonNotFound(comparison_id)
        return report
