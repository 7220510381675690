"""
Vector Store Infrastructure
============================

Similarity search over chunk embeddings.

Two implementations of ``IChunkVectorIndex``:
- MilvusChunkIndex: Zilliz Cloud / Milvus collection mirroring chunk vectors
- DatabaseChunkIndex: cosine similarity over embeddings stored with the chunks

Both only return chunk identifiers and scores. Callers hydrate the chunk text
from SQL, filtered by organization, so a stale mirror can never leak another
processing generation or another organization's content.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

import numpy as np
from pymilvus import DataType, MilvusClient

from knowledge_pipeline.config import settings
from knowledge_pipeline.core import VectorStoreException
from knowledge_pipeline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ChunkVector:
    """One chunk embedding to mirror into the index."""
    chunk_id: str
    document_id: str
    organization_id: str
    embedding: List[float]


@dataclass
class VectorHit:
    """Chunk id and cosine similarity returned by a search."""
    chunk_id: str
    score: float


class IChunkVectorIndex(ABC):
    """Interface for chunk similarity search."""

    @abstractmethod
    async def replace_document(
        self,
        organization_id: str,
        document_id: str,
        vectors: List[ChunkVector]
    ) -> None:
        """Replace every vector of a document with a new set."""

    @abstractmethod
    async def search(
        self,
        organization_id: str,
        query_embedding: List[float],
        top_k: int,
        threshold: float
    ) -> List[VectorHit]:
        """Return the closest chunks of one organization above ``threshold``."""


def cosine_scores(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` against each row of ``matrix``."""
    q = np.asarray(query, dtype=np.float32)
    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * q_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, matrix @ q / denom, 0.0)
    return scores


class DatabaseChunkIndex(IChunkVectorIndex):
    """
    Cosine similarity over embeddings stored in the chunk table.

    ``load_embeddings`` returns ``(chunk_id, embedding)`` pairs for one
    organization; writes are no-ops since the chunk rows are the index.
    """

    def __init__(
        self,
        load_embeddings: Callable[[str], Awaitable[List[Tuple[str, List[float]]]]]
    ):
        self._load_embeddings = load_embeddings

    async def replace_document(
        self,
        organization_id: str,
        document_id: str,
        vectors: List[ChunkVector]
    ) -> None:
        return None

    async def search(
        self,
        organization_id: str,
        query_embedding: List[float],
        top_k: int,
        threshold: float
    ) -> List[VectorHit]:
        pairs = [
            (chunk_id, embedding)
            for chunk_id, embedding in await self._load_embeddings(organization_id)
            if embedding and len(embedding) == len(query_embedding)
        ]
        if not pairs:
            return []

        matrix = np.asarray([embedding for _, embedding in pairs], dtype=np.float32)
        scores = cosine_scores(query_embedding, matrix)

        hits = [
            VectorHit(chunk_id=pairs[i][0], score=float(scores[i]))
            for i in range(len(pairs))
            if scores[i] >= threshold
        ]
        hits.sort(key=lambda hit: (-hit.score, hit.chunk_id))
        return hits[:top_k]


class MilvusChunkIndex(IChunkVectorIndex):
    """
    Zilliz Cloud (Managed Milvus) implementation of the chunk index.

    Collection schema: ``id`` (chunk id, primary), ``vector``,
    ``organization_id``, ``document_id``. Every search carries an
    organization filter expression.
    """

    def __init__(
        self,
        collection_name: Optional[str] = None,
        uri: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[MilvusClient] = None
    ):
        self._collection_name = collection_name or settings.milvus_collection_name
        self._dimension = settings.embedding_dimension
        self._uri = uri or settings.zilliz_uri
        self._api_key = api_key or settings.zilliz_api_key
        self._client = client
        self._initialized = False

    async def initialize(self) -> None:
        """Connect and create the collection if it does not exist."""
        if self._initialized:
            return

        if self._client is None:
            if not self._uri:
                raise VectorStoreException("ZILLIZ_URI not configured")
            try:
                self._client = MilvusClient(uri=self._uri, token=self._api_key or None)
            except Exception as e:
                raise VectorStoreException(f"Failed to connect to Milvus: {str(e)}")

        try:
            exists = await asyncio.to_thread(self._client.has_collection, self._collection_name)
            if not exists:
                await asyncio.to_thread(self._create_collection)
        except Exception as e:
            raise VectorStoreException(f"Failed to initialize Milvus: {str(e)}")

        self._initialized = True
        logger.info(
            "Milvus chunk index ready",
            extra={"collection": self._collection_name, "dimension": self._dimension}
        )

    def _create_collection(self) -> None:
        schema = MilvusClient.create_schema(auto_id=False, enable_dynamic_field=False)
        schema.add_field(field_name="id", datatype=DataType.VARCHAR, is_primary=True, max_length=64)
        schema.add_field(field_name="vector", datatype=DataType.FLOAT_VECTOR, dim=self._dimension)
        schema.add_field(field_name="organization_id", datatype=DataType.VARCHAR, max_length=64)
        schema.add_field(field_name="document_id", datatype=DataType.VARCHAR, max_length=64)

        index_params = self._client.prepare_index_params()
        index_params.add_index(field_name="vector", index_type="AUTOINDEX", metric_type="COSINE")

        self._client.create_collection(
            collection_name=self._collection_name,
            schema=schema,
            index_params=index_params
        )

    @staticmethod
    def _quote(value: str) -> str:
        return '"' + str(value).replace("\\", "\\\\").replace('"', '\\"') + '"'

    async def replace_document(
        self,
        organization_id: str,
        document_id: str,
        vectors: List[ChunkVector]
    ) -> None:
        """
        Delete the document's previous vectors, then insert the new set.

        Raises:
            VectorStoreException: If Milvus rejects either step
        """
        await self.initialize()

        expr = (
            f"organization_id == {self._quote(organization_id)} "
            f"and document_id == {self._quote(document_id)}"
        )
        data = [
            {
                "id": v.chunk_id,
                "vector": v.embedding,
                "organization_id": v.organization_id,
                "document_id": v.document_id,
            }
            for v in vectors
        ]

        try:
            await asyncio.to_thread(self._client.delete, collection_name=self._collection_name, filter=expr)
            if data:
                await asyncio.to_thread(self._client.insert, collection_name=self._collection_name, data=data)
        except Exception as e:
            raise VectorStoreException(
                f"Failed to replace document vectors: {str(e)}",
                {"document_id": document_id}
            )

    async def search(
        self,
        organization_id: str,
        query_embedding: List[float],
        top_k: int,
        threshold: float
    ) -> List[VectorHit]:
        """
        Search one organization's chunks.

        Raises:
            VectorStoreException: If search fails
        """
        await self.initialize()

        try:
            results = await asyncio.to_thread(
                self._client.search,
                collection_name=self._collection_name,
                data=[query_embedding],
                limit=top_k,
                filter=f"organization_id == {self._quote(organization_id)}",
                output_fields=["document_id"],
                search_params={"metric_type": "COSINE"}
            )
        except Exception as e:
            raise VectorStoreException(f"Search failed: {str(e)}")

        hits: List[VectorHit] = []
        if results and len(results) > 0:
            for hit in results[0]:
                score = float(hit["distance"])
                if score >= threshold:
                    hits.append(VectorHit(chunk_id=str(hit["id"]), score=score))
        return hits


# Global Milvus index instance, shared across requests
_milvus_index: Optional[MilvusChunkIndex] = None


def get_milvus_index() -> MilvusChunkIndex:
    """Get or create the global Milvus index."""
    global _milvus_index
    if _milvus_index is None:
        _milvus_index = MilvusChunkIndex()
    return _milvus_index


def create_chunk_vector_index(
    load_embeddings: Callable[[str], Awaitable[List[Tuple[str, List[float]]]]]
) -> IChunkVectorIndex:
    """
    Index selected by ``settings.vector_backend``.

    ``load_embeddings`` backs the in-database index and is ignored for Milvus.
    """
    if settings.vector_backend == "milvus":
        return get_milvus_index()
    return DatabaseChunkIndex(load_embeddings)
