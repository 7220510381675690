"""Pytest configuration and shared fixtures.

In-memory implementations of the repository interfaces so services can be
tested without PostgreSQL.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from knowledge_pipeline.assistant.application.interfaces import (
    IConversationRepository,
    IFollowUpNotifier,
    IGapTicketRepository,
)
from knowledge_pipeline.assistant.domain import ConversationTurn, GapTicket
from knowledge_pipeline.config import GapTicketStatus, ProcessingStatus
from knowledge_pipeline.infrastructure.database import Base
from knowledge_pipeline.infrastructure.llm import EmbeddingResult, ILLMClient, ChatCompletionResult
from knowledge_pipeline.infrastructure.storage import DocumentFileResolver, IDocumentStorage
from knowledge_pipeline.ingestion.application.interfaces import (
    IApprovedChunkRepository,
    IChunkRepository,
    IDocumentRepository,
)
from knowledge_pipeline.ingestion.application.services import ChunkEmbedder, DocumentProcessingService
from knowledge_pipeline.ingestion.domain import ApprovedChunk, Chunk, Document
from knowledge_pipeline.retrieval.domain import RetrievedChunk

ORG_ID = "0d5c8e9a-7f3b-4a61-b1e2-93c4d5e6f708"


# ========== Ingestion fakes ==========

class InMemoryDocumentRepository(IDocumentRepository):
    def __init__(self):
        self.documents: Dict[str, Document] = {}
        self.commits = 0
        self.rollbacks = 0

    def add(self, document: Document) -> Document:
        self.documents[document.id] = document
        return document

    async def get(self, document_id: str, organization_id: Optional[str] = None) -> Optional[Document]:
        document = self.documents.get(document_id)
        if document is None or (organization_id and document.organization_id != organization_id):
            return None
        return document

    async def mark_processing(self, document_id: str, started_at: datetime) -> None:
        self.documents[document_id].processing_status = ProcessingStatus.PROCESSING

    async def mark_completed(
        self,
        document_id: str,
        total_chunks: int,
        metadata: Dict[str, Any],
        processed_at: datetime
    ) -> None:
        document = self.documents[document_id]
        document.processing_status = ProcessingStatus.COMPLETED
        document.total_chunks = total_chunks
        document.metadata = {**document.metadata, **metadata}
        document.metadata.pop("error", None)
        document.processed_at = processed_at

    async def mark_failed(self, document_id: str, error: str, metadata: Dict[str, Any]) -> None:
        document = self.documents[document_id]
        document.processing_status = ProcessingStatus.FAILED
        document.metadata = {**document.metadata, **metadata, "error": error}

    async def count_completed(self, organization_id: str) -> int:
        return sum(
            1 for d in self.documents.values()
            if d.organization_id == organization_id and d.is_completed
        )

    async def list_ids_by_status(self, organization_id: str, statuses: List[str], limit: int = 100) -> List[str]:
        return [
            d.id for d in self.documents.values()
            if d.organization_id == organization_id and d.processing_status in statuses
        ][:limit]

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1


class InMemoryChunkRepository(IChunkRepository):
    def __init__(self, documents: InMemoryDocumentRepository):
        self._documents = documents
        self.chunks: Dict[str, List[Chunk]] = {}
        self.persist = True

    async def replace_for_document(self, organization_id: str, document_id: str, chunks: List[Chunk]) -> int:
        stored = []
        for chunk in chunks:
            chunk.id = chunk.id or str(uuid4())
            stored.append(chunk)
        self.chunks[document_id] = stored if self.persist else []
        return len(self.chunks[document_id])

    async def count_for_document(self, organization_id: str, document_id: str) -> int:
        return len(self.chunks.get(document_id, []))

    async def list_for_document(self, organization_id: str, document_id: str) -> List[Chunk]:
        return sorted(self.chunks.get(document_id, []), key=lambda c: c.chunk_index)

    def _retrieved(self, chunk: Chunk) -> RetrievedChunk:
        document = self._documents.documents.get(chunk.document_id)
        return RetrievedChunk(
            chunk_id=chunk.id,
            document_id=chunk.document_id,
            organization_id=chunk.organization_id,
            chunk_index=chunk.chunk_index,
            content=chunk.content,
            document_title=document.title if document else "",
            document_type=document.document_type if document else None,
            page_label=chunk.page_label,
            tags=list(chunk.tags),
            metadata=dict(chunk.metadata),
            embedding=chunk.embedding,
        )

    def _all(self, organization_id: str) -> List[Chunk]:
        return [c for chunks in self.chunks.values() for c in chunks if c.organization_id == organization_id]

    async def get_many(self, organization_id: str, chunk_ids: List[str]) -> List[RetrievedChunk]:
        wanted = set(chunk_ids)
        return [self._retrieved(c) for c in self._all(organization_id) if c.id in wanted]

    async def keyword_search(self, organization_id: str, text: str, limit: int) -> List[RetrievedChunk]:
        hits = [c for c in self._all(organization_id) if text.lower() in c.content.lower()]
        return [self._retrieved(c) for c in hits][:limit]

    async def list_embedded(self, organization_id: str) -> List[RetrievedChunk]:
        return [self._retrieved(c) for c in self._all(organization_id) if c.embedding]


class InMemoryApprovedChunkRepository(IApprovedChunkRepository):
    def __init__(self):
        self.entries: Dict[str, List[ApprovedChunk]] = {}

    async def list_for_document(self, organization_id: str, document_id: str) -> List[ApprovedChunk]:
        return sorted(self.entries.get(document_id, []), key=lambda c: c.chunk_index)


class InMemoryStorage(IDocumentStorage):
    def __init__(self, files: Optional[Dict[Tuple[str, str], bytes]] = None):
        self.files = dict(files or {})
        self.reads: List[Tuple[str, str]] = []

    async def read(self, bucket: str, path: str) -> Optional[bytes]:
        self.reads.append((bucket, path))
        return self.files.get((bucket, path))


class StubEmbeddingClient(ILLMClient):
    """Fixed-dimension embeddings; counts calls."""

    def __init__(self, vector: Optional[List[float]] = None, fail: bool = False):
        self.vector = vector or [0.1, 0.2, 0.3, 0.4]
        self.fail = fail
        self.calls = 0

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        self.calls += 1
        if self.fail:
            raise RuntimeError("embedding provider unavailable")
        return EmbeddingResult(embedding=list(self.vector), model="stub")

    async def chat_completion(self, messages, temperature=0.3, max_tokens=1000, operation="chat_completion"):
        return ChatCompletionResult(
            content="stub answer",
            model="stub",
            prompt_tokens=1,
            completion_tokens=1,
            latency_ms=1,
            response_id="resp-stub",
        )


# ========== Assistant fakes ==========

class InMemoryGapTicketRepository(IGapTicketRepository):
    def __init__(self):
        self.tickets: Dict[str, GapTicket] = {}

    async def create(self, ticket: GapTicket) -> GapTicket:
        ticket.id = str(uuid4())
        self.tickets[ticket.id] = ticket
        return ticket

    async def get(self, ticket_id: str) -> Optional[GapTicket]:
        return self.tickets.get(ticket_id)

    async def list_undispatched(self, limit: int = 50) -> List[GapTicket]:
        return [
            t for t in self.tickets.values()
            if t.status == GapTicketStatus.PENDING and not t.notification_dispatched
        ][:limit]

    async def mark_dispatched(self, ticket_id: str, dispatched_at: datetime) -> bool:
        ticket = self.tickets.get(ticket_id)
        if ticket is None or ticket.status != GapTicketStatus.PENDING or ticket.notification_dispatched:
            return False
        ticket.status = GapTicketStatus.SCHEDULED
        ticket.notification_dispatched = True
        ticket.notification_dispatched_at = dispatched_at
        return True


class InMemoryConversationRepository(IConversationRepository):
    def __init__(self):
        self.turns: List[ConversationTurn] = []

    async def append(self, turn: ConversationTurn) -> ConversationTurn:
        turn.id = str(uuid4())
        self.turns.append(turn)
        return turn

    async def recent(self, organization_id: str, limit: int, user_id: Optional[str] = None) -> List[ConversationTurn]:
        matching = [
            t for t in self.turns
            if t.organization_id == organization_id and (user_id is None or t.user_id == user_id)
        ]
        return list(reversed(matching))[:limit]


class RecordingNotifier(IFollowUpNotifier):
    def __init__(self, accept: bool = True):
        self.accept = accept
        self.dispatched: List[str] = []

    async def dispatch(self, ticket: GapTicket) -> bool:
        self.dispatched.append(ticket.id)
        return self.accept


# ========== Fixtures ==========

@pytest.fixture
def org_id() -> str:
    return ORG_ID


@pytest.fixture
def document_repo() -> InMemoryDocumentRepository:
    return InMemoryDocumentRepository()


@pytest.fixture
def chunk_repo(document_repo) -> InMemoryChunkRepository:
    return InMemoryChunkRepository(document_repo)


@pytest.fixture
def approved_repo() -> InMemoryApprovedChunkRepository:
    return InMemoryApprovedChunkRepository()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def embedding_client() -> StubEmbeddingClient:
    return StubEmbeddingClient()


@pytest.fixture
def make_document(document_repo):
    """Factory adding a document to the in-memory repository."""

    def _make(**overrides) -> Document:
        values = dict(
            id=str(uuid4()),
            organization_id=ORG_ID,
            title="Leadership Standard",
            file_name="leadership.txt",
            file_path="org/leadership.txt",
            mime_type="text/plain",
            document_type="standard",
        )
        values.update(overrides)
        return document_repo.add(Document(**values))

    return _make


@pytest.fixture
def processing_service(document_repo, chunk_repo, approved_repo, storage, embedding_client):
    return DocumentProcessingService(
        document_repository=document_repo,
        chunk_repository=chunk_repo,
        approved_chunk_repository=approved_repo,
        file_resolver=DocumentFileResolver(storage),
        embedder=ChunkEmbedder(embedding_client),
    )


@pytest.fixture
def ticket_repo() -> InMemoryGapTicketRepository:
    return InMemoryGapTicketRepository()


@pytest.fixture
def conversation_repo() -> InMemoryConversationRepository:
    return InMemoryConversationRepository()


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)


# ========== SQLite-backed sessions ==========

@pytest_asyncio.fixture
async def sqlite_engine(tmp_path):
    """File-backed aiosqlite engine where ``begin_nested`` emits real SAVEPOINTs."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def sqlite_session(sqlite_engine) -> AsyncSession:
    session_maker = async_sessionmaker(bind=sqlite_engine, expire_on_commit=False, autoflush=False)
    async with session_maker() as session:
        yield session


async def create_tables_for(engine, *models) -> None:
    """Create only the given models' tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, tables=[model.__table__ for model in models])
