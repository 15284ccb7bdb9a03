"""
MongoDB Service
===============
Persistence for the pipeline:
- documents:        stored document references (storage path, size, carrier)
- extraction_cache: successful extraction results keyed by fingerprint
- comparisons:      finalized comparison reports
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument
from pymongo.errors import ConnectionFailure

from app.core.config import settings
from app.models.scheme import DocumentReference

logger = logging.getLogger(__name__)


class MongoDBService:
    """
    Motor-backed store for document references, cached extractions
    and comparison reports.
    """

    def __init__(self):
        self.client = None
        self.database = None

        # Collections
        self.documents_collection = None
        self.extraction_cache_collection = None
        self.comparisons_collection = None

    @property
    def is_connected(self) -> bool:
        return self.database is not None

    async def connect(self):
        """Connect to MongoDB and initialize collections"""
        try:
            logger.info(f"🔌 Connecting to MongoDB database: {settings.MONGODB_DATABASE}")

            self.client = AsyncIOMotorClient(settings.MONGODB_URL)
            self.database = self.client[settings.MONGODB_DATABASE]

            self.documents_collection = self.database.documents
            self.extraction_cache_collection = self.database.extraction_cache
            self.comparisons_collection = self.database.comparisons

            # Test connection
            await self.client.admin.command('ping')
            logger.info("✅ Successfully connected to MongoDB")

            await self._create_indexes()

        except ConnectionFailure as e:
            logger.error(f"❌ Failed to connect to MongoDB: {e}")
            self.database = None
            raise
        except Exception as e:
            logger.error(f"❌ Unexpected error connecting to MongoDB: {e}")
            self.database = None
            raise

    async def _create_indexes(self):
        """Create database indexes"""
        try:
            await self.documents_collection.create_index("id", unique=True)

            await self.extraction_cache_collection.create_index("fingerprint", unique=True)
            await self.extraction_cache_collection.create_index("last_used_at")

            await self.comparisons_collection.create_index("comparison_id", unique=True)
            await self.comparisons_collection.create_index("created_at")

            logger.info("✅ Database indexes created successfully")

        except Exception as e:
            logger.error(f"⚠️  Error creating indexes: {e}")

    async def disconnect(self):
        """Disconnect from MongoDB"""
        if self.client:
            self.client.close()
            self.database = None
            logger.info("🔌 Disconnected from MongoDB")

    # =========================================================================
    # DOCUMENT REFERENCES
    # =========================================================================

    async def get_document_reference(self, document_id: str) -> Optional[DocumentReference]:
        """
        Look up a stored document.

        Args:
            document_id: Document identifier

        Returns:
            DocumentReference or None if no such document exists
        """
        query: Dict[str, Any] = {"id": document_id}
        if ObjectId.is_valid(document_id):
            # Uploads made by the web app are keyed by ObjectId only
            query = {"$or": [{"id": document_id}, {"_id": ObjectId(document_id)}]}

        document = await self.documents_collection.find_one(query)
        if not document:
            return None
        document["id"] = document.get("id") or str(document["_id"])
        document.pop("_id", None)
        return DocumentReference(**document)

    # =========================================================================
    # EXTRACTION CACHE
    # =========================================================================

    async def get_cached_extraction(self, fingerprint: str) -> Optional[Dict[str, Any]]:
        """Fetch a cache entry and bump its usage counters."""
        document = await self.extraction_cache_collection.find_one_and_update(
            {"fingerprint": fingerprint},
            {"$inc": {"use_count": 1}, "$set": {"last_used_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not document:
            return None
        document.pop("_id", None)
        return document

    async def save_cached_extraction(self, fingerprint: str, result: Dict[str, Any]) -> None:
        now = datetime.utcnow()
        await self.extraction_cache_collection.update_one(
            {"fingerprint": fingerprint},
            {
                "$set": {**result, "fingerprint": fingerprint, "last_used_at": now},
                "$setOnInsert": {"created_at": now, "use_count": 0},
            },
            upsert=True,
        )
        logger.info(f"💾 Cached extraction {fingerprint[:12]}...")

    async def get_cache_stats(self, top: int = 5) -> Dict[str, Any]:
        """
        Cache usage summary.

        Returns:
            total_cached, total_hits and the insurers seen most often
        """
        total_cached = await self.extraction_cache_collection.count_documents({})

        hits_cursor = self.extraction_cache_collection.aggregate([
            {"$group": {"_id": None, "hits": {"$sum": "$use_count"}}}
        ])
        hits = await hits_cursor.to_list(length=1)

        insurers_cursor = self.extraction_cache_collection.aggregate([
            {"$match": {"carrier_name": {"$ne": None}}},
            {"$group": {"_id": "$carrier_name", "count": {"$sum": 1}}},
            {"$sort": {"count": -1}},
            {"$limit": top},
        ])
        top_insurers = [
            {"insurer": row["_id"], "count": row["count"]}
            async for row in insurers_cursor
        ]

        return {
            "total_cached": total_cached,
            "total_hits": hits[0]["hits"] if hits else 0,
            "top_insurers": top_insurers,
        }

    # =========================================================================
    # COMPARISON REPORTS
    # =========================================================================

    async def save_comparison(self, comparison_id: str, report: Dict[str, Any]) -> None:
        try:
            await self.comparisons_collection.update_one(
                {"comparison_id": comparison_id},
                {"$set": {**report, "comparison_id": comparison_id, "updated_at": datetime.utcnow()}},
                upsert=True,
            )
            logger.info(f"✅ Saved comparison: {comparison_id}")
        except Exception as e:
            logger.error(f"❌ Error saving comparison {comparison_id}: {e}")
            raise

    async def get_comparison(self, comparison_id: str) -> Optional[Dict[str, Any]]:
        document = await self.comparisons_collection.find_one({"comparison_id": comparison_id})
        if not document:
            return None
        document.pop("_id", None)
        document.pop("updated_at", None)
        return document

    async def get_recent_comparisons(self, limit: int = 10) -> List[Dict[str, Any]]:
        cursor = self.comparisons_collection.find(
            {}, {"_id": 0, "comparison_id": 1, "client_name": 1, "mode": 1, "created_at": 1}
        ).sort("created_at", -1).limit(limit)
        return [document async for document in cursor]


# Global instance
mongodb_service = MongoDBService()
