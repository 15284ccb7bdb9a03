"""
Extraction Cache
================
Successful extraction results keyed by fingerprint, held in memory and,
when storage is enabled, in MongoDB. A cache failure is always a miss.
"""

import logging
from collections import Counter
from typing import Any, Dict, Optional

from app.models.scheme import ExtractionResult

logger = logging.getLogger(__name__)


class ExtractionCache:
    """Read-before-write cache in front of the AI extraction call"""

    def __init__(self, backend: Any = None):
        self.backend = backend
        self._entries: Dict[str, ExtractionResult] = {}
        self._use_counts: Counter = Counter()

    def _backend_ready(self) -> bool:
        return self.backend is not None and getattr(self.backend, "is_connected", True)

    async def get(self, fingerprint: str) -> Optional[ExtractionResult]:
        """
        Look up a successful extraction.

        Returns:
            The cached result (``cached=True``) or None on a miss or cache error
        """
        entry = self._entries.get(fingerprint)
        if entry is not None:
            self._use_counts[fingerprint] += 1
            if self._backend_ready():
                await self._touch_backend(fingerprint)
            return entry.model_copy(update={"cached": True})

        if not self._backend_ready():
            return None

        try:
            document = await self.backend.get_cached_extraction(fingerprint)
        except Exception as e:
            logger.warning(f"⚠️  Cache read failed for {fingerprint[:12]}, treating as miss: {e}")
            return None
        if not document:
            return None

        try:
            entry = ExtractionResult(**{
                key: value for key, value in document.items()
                if key in ExtractionResult.model_fields
            })
        except ValueError as e:
            logger.warning(f"⚠️  Ignoring unreadable cache entry {fingerprint[:12]}: {e}")
            return None

        self._entries[fingerprint] = entry.model_copy(update={"cached": False})
        self._use_counts[fingerprint] += 1
        return entry.model_copy(update={"cached": True})

    async def _touch_backend(self, fingerprint: str) -> None:
        try:
            await self.backend.get_cached_extraction(fingerprint)
        except Exception as e:
            logger.warning(f"⚠️  Cache usage update failed for {fingerprint[:12]}: {e}")

    async def put(self, result: ExtractionResult) -> None:
        """Store a successful extraction. Failures are logged, never raised."""
        if not result.succeeded:
            return

        stored = result.model_copy(update={"cached": False})
        self._entries[result.fingerprint] = stored

        if not self._backend_ready():
            return
        try:
            await self.backend.save_cached_extraction(
                result.fingerprint,
                stored.model_dump(mode="json", exclude={"cached"}),
            )
        except Exception as e:
            logger.warning(f"⚠️  Cache write failed for {result.fingerprint[:12]}: {e}")

    async def get_stats(self) -> Dict[str, Any]:
        """totalCached / totalHits / topInsurers summary."""
        if self._backend_ready():
            try:
                return await self.backend.get_cache_stats()
            except Exception as e:
                logger.warning(f"⚠️  Cache stats unavailable from storage: {e}")

        insurers = Counter(
            entry.carrier_name for entry in self._entries.values() if entry.carrier_name
        )
        return {
            "total_cached": len(self._entries),
            "total_hits": sum(self._use_counts.values()),
            "top_insurers": [
                {"insurer": name, "count": count} for name, count in insurers.most_common(5)
            ],
        }

    def clear(self) -> None:
        self._entries.clear()
        self._use_counts.clear()
