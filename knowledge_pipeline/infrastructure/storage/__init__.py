"""
Document Storage Infrastructure
================================

Fetches uploaded document files by their storage address.

The canonical address is ``settings.storage_bucket`` + the document's
``file_path``. Older uploads were written under other bucket names and path
prefixes; ``DocumentFileResolver`` tries a bounded list of those legacy
locations after the canonical one misses, when
``settings.storage_legacy_resolution`` is enabled.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import httpx

from knowledge_pipeline.config import settings
from knowledge_pipeline.core import StorageException, ConfigurationException
from knowledge_pipeline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class StoredFile:
    """File bytes plus the location they were found at."""
    data: bytes
    bucket: str
    path: str
    attempted_locations: List[str] = field(default_factory=list)

    @property
    def location(self) -> str:
        return f"{self.bucket}/{self.path}"

    @property
    def used_legacy_location(self) -> bool:
        return len(self.attempted_locations) > 1


class IDocumentStorage(ABC):
    """Interface for a bucket/path addressed file store."""

    @abstractmethod
    async def read(self, bucket: str, path: str) -> Optional[bytes]:
        """
        Return file bytes, or None when nothing exists at the address.

        Raises:
            StorageException: On transport errors
        """

    async def close(self) -> None:
        """Release held resources."""


class LocalDocumentStorage(IDocumentStorage):
    """Buckets as directories below a local root."""

    def __init__(self, root: Optional[Path] = None):
        self._root = Path(root or settings.storage_root).resolve()

    def _resolve(self, bucket: str, path: str) -> Optional[Path]:
        candidate = (self._root / bucket / path).resolve()
        # Reject addresses that escape the storage root
        if self._root not in candidate.parents:
            return None
        return candidate

    async def read(self, bucket: str, path: str) -> Optional[bytes]:
        target = self._resolve(bucket, path)
        if target is None or not target.is_file():
            return None
        try:
            return await asyncio.to_thread(target.read_bytes)
        except OSError as e:
            raise StorageException(f"Failed to read {bucket}/{path}: {e}")


class HTTPDocumentStorage(IDocumentStorage):
    """Object storage exposing ``GET {base_url}/object/{bucket}/{path}``."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self._base_url = (base_url or settings.storage_base_url or "").rstrip("/")
        if not self._base_url:
            raise ConfigurationException("STORAGE_BASE_URL not configured for http storage")
        self._api_key = api_key or settings.storage_api_key
        self._timeout = timeout or settings.storage_timeout_seconds
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
            self._http_client = httpx.AsyncClient(timeout=self._timeout, headers=headers)
        return self._http_client

    async def read(self, bucket: str, path: str) -> Optional[bytes]:
        client = await self._get_client()
        url = f"{self._base_url}/object/{bucket}/{path}"
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            raise StorageException(f"Request for {bucket}/{path} failed: {e}")

        if response.status_code in (400, 404):
            return None
        if response.status_code != 200:
            raise StorageException(
                f"Storage returned {response.status_code} for {bucket}/{path}",
                details={"status_code": response.status_code}
            )
        return response.content

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


def _path_variants(path: str, prefixes: List[str]) -> List[str]:
    """Same file addressed with and without each legacy prefix."""
    variants = [path]
    for prefix in prefixes:
        marker = prefix.strip("/") + "/"
        if path.startswith(marker):
            variants.append(path[len(marker):])
        else:
            variants.append(marker + path)
    return variants


def candidate_locations(
    file_path: str,
    primary_bucket: str,
    legacy_buckets: Optional[List[str]] = None,
    legacy_prefixes: Optional[List[str]] = None,
    legacy_resolution: bool = True,
    max_attempts: int = 3
) -> List[Tuple[str, str]]:
    """
    Ordered, de-duplicated ``(bucket, path)`` pairs to try for a file path.

    A path that starts with a known bucket name is split so that bucket is
    tried first.
    """
    path = file_path.lstrip("/")
    known_buckets = [primary_bucket] + list(legacy_buckets or [])
    first_segment, _, remainder = path.partition("/")

    candidates: List[Tuple[str, str]] = []
    if remainder and first_segment in known_buckets:
        candidates.append((first_segment, remainder))
        path = remainder
    candidates.append((primary_bucket, path))

    if legacy_resolution:
        for variant in _path_variants(path, list(legacy_prefixes or [])):
            for bucket in known_buckets:
                candidates.append((bucket, variant))

    unique: List[Tuple[str, str]] = []
    for candidate in candidates:
        if candidate not in unique:
            unique.append(candidate)
    return unique[:max_attempts]


class DocumentFileResolver:
    """Reads a document file from the first storage location that has it."""

    def __init__(self, storage: IDocumentStorage):
        self._storage = storage

    async def fetch(self, file_path: str) -> StoredFile:
        """
        Fetch a document file.

        Raises:
            StorageException: When no candidate location holds the file;
                ``attempted_locations`` lists every address tried
        """
        candidates = candidate_locations(
            file_path,
            primary_bucket=settings.storage_bucket,
            legacy_buckets=settings.storage_legacy_buckets,
            legacy_prefixes=settings.storage_legacy_prefixes,
            legacy_resolution=settings.storage_legacy_resolution,
            max_attempts=settings.storage_max_attempts
        )

        attempted: List[str] = []
        errors: List[str] = []
        for bucket, path in candidates:
            attempted.append(f"{bucket}/{path}")
            try:
                data = await self._storage.read(bucket, path)
            except StorageException as e:
                errors.append(e.message)
                continue
            if data is not None:
                if len(attempted) > 1:
                    logger.warning(
                        "Document found at legacy storage location",
                        extra={"file_path": file_path, "location": f"{bucket}/{path}"}
                    )
                return StoredFile(data=data, bucket=bucket, path=path, attempted_locations=attempted)

        raise StorageException(
            f"File not found in storage: {file_path}",
            attempted_locations=attempted,
            details={"errors": errors} if errors else None
        )


def create_document_storage() -> IDocumentStorage:
    """Storage backend selected by ``settings.storage_backend``."""
    if settings.storage_backend == "http":
        return HTTPDocumentStorage()
    return LocalDocumentStorage()


# Global storage instance, shared so requests reuse one connection pool
_document_storage: Optional[IDocumentStorage] = None


def get_document_storage() -> IDocumentStorage:
    """Get or create the global document storage."""
    global _document_storage
    if _document_storage is None:
        _document_storage = create_document_storage()
    return _document_storage


async def close_document_storage() -> None:
    global _document_storage
    if _document_storage is not None:
        await _document_storage.close()
        _document_storage = None
