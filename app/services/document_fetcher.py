"""
Document Fetcher
================
Resolves a document id to its bytes:
1. Look up the stored DocumentReference
2. Reject oversize documents before touching the network
3. Obtain a short-lived signed URL from object storage
4. Stream the bytes, enforcing the hard size cap
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple

import httpx

from app.core.config import settings
from app.core.exceptions import (
    DocumentNotFound,
    FetchError,
    PayloadTooLarge,
    PipelineError,
    SignedUrlError,
)
from app.models.scheme import DocumentReference, RequestedDocument
from app.utils.helpers import sanitize_filename

logger = logging.getLogger(__name__)


class DocumentRepository(Protocol):
    async def get_document_reference(self, document_id: str) -> Optional[DocumentReference]:
        ...


@dataclass(frozen=True)
class FetchedDocument:
    reference: DocumentReference
    content: bytes


class DocumentFetcher:
    """Fetches document bytes from Supabase storage through signed URLs"""

    def __init__(
        self,
        repository: Optional[DocumentRepository] = None,
        *,
        supabase_url: Optional[str] = None,
        service_role_key: Optional[str] = None,
        bucket: Optional[str] = None,
        max_bytes: Optional[int] = None,
        signed_url_ttl: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.repository = repository
        self.url = (supabase_url if supabase_url is not None else settings.SUPABASE_URL).rstrip("/")
        self.service_role_key = service_role_key if service_role_key is not None else settings.SUPABASE_SERVICE_ROLE_KEY
        self.bucket = bucket or settings.STORAGE_BUCKET
        self.max_bytes = max_bytes or settings.MAX_FILE_SIZE
        self.signed_url_ttl = signed_url_ttl or settings.SIGNED_URL_TTL_SECONDS
        self.timeout = timeout or settings.FETCH_TIMEOUT_SECONDS
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {self.service_role_key}",
            "apikey": self.service_role_key,
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    # =========================================================================
    # REFERENCE LOOKUP
    # =========================================================================

    async def get_reference(
        self,
        document_id: str,
        requested: Optional[RequestedDocument] = None,
    ) -> DocumentReference:
        """
        Resolve the stored reference for a document.

        Without a document store, the request itself describes the document
        and its id is used as the storage path.
        """
        if self.repository is None or not getattr(self.repository, "is_connected", True):
            if requested is None:
                raise DocumentNotFound(document_id)
            return DocumentReference(
                id=document_id,
                filename=sanitize_filename(requested.filename or document_id),
                storage_path=document_id,
                carrier_name=requested.carrier_name,
                document_type=requested.document_type,
            )

        try:
            reference = await self.repository.get_document_reference(document_id)
        except PipelineError:
            raise
        except Exception as e:
            logger.error(f"❌ Document lookup failed for {document_id}: {e}")
            raise FetchError(f"Document lookup failed for {document_id}: {e}") from e
        if reference is None:
            raise DocumentNotFound(document_id)

        if requested is not None:
            # Request-side carrier/type override what was stored at upload time
            updates: Dict[str, Any] = {"document_type": requested.document_type}
            if requested.carrier_name:
                updates["carrier_name"] = requested.carrier_name
            reference = reference.model_copy(update=updates)
        return reference

    # =========================================================================
    # STORAGE ACCESS
    # =========================================================================

    async def get_signed_url(self, client: httpx.AsyncClient, storage_path: str) -> str:
        """
        Generate a short-lived signed URL for an object.

        Raises:
            SignedUrlError: If storage refuses or returns no URL
        """
        url = f"{self.url}/storage/v1/object/sign/{self.bucket}/{storage_path}"
        try:
            response = await client.post(
                url,
                headers=self.headers,
                json={"expiresIn": self.signed_url_ttl},
            )
        except httpx.HTTPError as e:
            raise SignedUrlError(f"Signed URL request failed for {storage_path}: {e}") from e

        if response.status_code != 200:
            logger.error(f"❌ Signed URL generation failed ({response.status_code}): {response.text[:200]}")
            raise SignedUrlError(f"Signed URL generation failed with status {response.status_code}")

        try:
            signed_path = response.json().get("signedURL")
        except ValueError as e:
            raise SignedUrlError("Storage returned an unreadable signed URL response") from e
        if not signed_path:
            raise SignedUrlError("Storage response did not contain signedURL")

        # Supabase returns a path relative to the storage API root
        if signed_path.startswith("/"):
            if not signed_path.startswith("/storage/v1"):
                signed_path = f"/storage/v1{signed_path}"
            return f"{self.url}{signed_path}"
        return signed_path

    async def download(self, client: httpx.AsyncClient, signed_url: str, filename: str) -> bytes:
        """
        Stream an object, aborting as soon as it exceeds the size cap.

        Raises:
            PayloadTooLarge: Declared or streamed size above the cap
            FetchError: Transport failure, non-2xx status or empty body
        """
        try:
            async with client.stream("GET", signed_url) as response:
                if response.status_code >= 400:
                    raise FetchError(f"Download of {filename} failed with status {response.status_code}")

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise PayloadTooLarge(int(declared), self.max_bytes)

                chunks = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > self.max_bytes:
                        raise PayloadTooLarge(received, self.max_bytes)
                    chunks.append(chunk)
        except httpx.HTTPError as e:
            raise FetchError(f"Download of {filename} failed: {e}") from e

        if received == 0:
            raise FetchError(f"Downloaded document {filename} is empty")
        return b"".join(chunks)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def fetch(
        self,
        document_id: str,
        requested: Optional[RequestedDocument] = None,
    ) -> FetchedDocument:
        reference = await self.get_reference(document_id, requested)

        if reference.size_bytes is not None and reference.size_bytes > self.max_bytes:
            logger.warning(f"⚠️  {reference.filename} declares {reference.size_bytes} bytes, over the cap")
            raise PayloadTooLarge(reference.size_bytes, self.max_bytes)

        async with self._client() as client:
            signed_url = await self.get_signed_url(client, reference.storage_path)
            content = await self.download(client, signed_url, reference.filename)

        logger.info(f"📥 Fetched {reference.filename} ({len(content):,} bytes)")
        return FetchedDocument(reference=reference, content=content)

    async def resolve(self, document_id: str) -> bytes:
        """Document id to bytes."""
        fetched = await self.fetch(document_id)
        return fetched.content

    async def fetch_many(
        self,
        documents: List[RequestedDocument],
    ) -> List[Tuple[RequestedDocument, Any]]:
        """
        Fetch every document concurrently.

        Returns:
            (requested, FetchedDocument or PipelineError) pairs; one failure
            never cancels the other fetches
        """
        async def fetch_one(requested: RequestedDocument):
            try:
                return requested, await self.fetch(requested.document_id, requested)
            except PipelineError as e:
                logger.error(f"❌ Fetch failed for {requested.document_id}: {e}")
                return requested, e
            except Exception as e:
                logger.error(f"❌ Unexpected fetch error for {requested.document_id}: {e}")
                return requested, FetchError(f"Fetch of {requested.document_id} failed: {e}")

        return list(await asyncio.gather(*(fetch_one(d) for d in documents)))
