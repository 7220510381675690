"""Tests for chunk search and context assembly."""

import asyncio
import logging
from typing import Dict, List, Optional

import pytest

from knowledge_pipeline.config import ExtractionMethod, KnowledgeTier, ProcessingStatus
from knowledge_pipeline.infrastructure.vectorstore import VectorHit
from knowledge_pipeline.ingestion.domain import Chunk
from knowledge_pipeline.retrieval.application.services import (
    SECTION_AUTHORITATIVE,
    SECTION_GENERAL,
    ChunkSearchService,
    ContextAssembler,
    item_section_title,
)
from knowledge_pipeline.retrieval.domain import NO_RELEVANT_CONTENT, RetrievedChunk

from tests.conftest import ORG_ID, InMemoryChunkRepository, StubEmbeddingClient


def hit(
    chunk_id: str,
    score: float,
    content: str = "Gate staff inspect vehicles leaving the plant.",
    title: str = "Gate Procedure",
    document_type: Optional[str] = None,
    chunk_index: int = 0,
    metadata: Optional[dict] = None,
) -> RetrievedChunk:
    return RetrievedChunk(
        chunk_id=chunk_id,
        document_id=f"doc-{chunk_id}",
        organization_id=ORG_ID,
        chunk_index=chunk_index,
        content=content,
        document_title=title,
        document_type=document_type,
        metadata=metadata or {},
        score=score,
    )


class StubSearch:
    """Returns fixed hits per query variant; ``default`` for any other variant."""

    def __init__(self, by_variant: Optional[Dict[str, List[RetrievedChunk]]] = None, default=None, fail=False):
        self.by_variant = by_variant or {}
        self.default = default or []
        self.fail = fail
        self.variants: List[str] = []
        self._rows: Dict[str, RetrievedChunk] = {}

    async def prepare(self, organization_id: str) -> None:
        return None

    async def find(self, organization_id: str, query: str, top_k=None, threshold=None) -> List[VectorHit]:
        self.variants.append(query)
        if self.fail:
            raise RuntimeError("index offline")
        hits = list(self.by_variant.get(query, self.default))
        for chunk in hits:
            self._rows[chunk.chunk_id] = chunk
        return [VectorHit(chunk_id=chunk.chunk_id, score=chunk.score) for chunk in hits]

    async def hydrate(self, organization_id: str, scores: Dict[str, float]) -> List[RetrievedChunk]:
        return [self._rows[chunk_id].with_score(score) for chunk_id, score in scores.items()]


@pytest.fixture
def assemble(chunk_repo, document_repo):
    async def _assemble(search, query="gate inspections", **kwargs):
        assembler = ContextAssembler(search, chunk_repo, document_repo)
        return await assembler.assemble(query, ORG_ID, **kwargs)

    return _assemble


class TestContextAssembler:

    @pytest.mark.asyncio
    async def test_duplicate_hits_keep_their_best_score(self, assemble):
        search = StubSearch(
            by_variant={
                "gate inspections": [hit("a", 0.4), hit("b", 0.7, title="Escort Rules")],
                "gate inspections audit": [hit("a", 0.9)],
            }
        )

        context = await assemble(search)

        assert [s.chunk_id for s in context.sources] == ["a", "b"]
        assert context.sources[0].score == 0.9
        assert context.search_method == "semantic"
        assert context.chunk_count == 2

    @pytest.mark.asyncio
    async def test_ties_are_ordered_by_title_then_index(self, assemble):
        hits = [
            hit("z", 0.5, title="Beta", chunk_index=1),
            hit("y", 0.5, title="Alpha", chunk_index=3),
            hit("x", 0.5, title="Beta", chunk_index=0),
        ]

        first = await assemble(StubSearch(default=hits))
        second = await assemble(StubSearch(default=list(reversed(hits))))

        assert [s.chunk_id for s in first.sources] == ["y", "x", "z"]
        assert first.text == second.text

    @pytest.mark.asyncio
    async def test_item_content_leads_the_context(self, assemble):
        hits = [
            hit("general", 0.95),
            hit("item", 0.3, content="MPS 7 requires dual control of the vault."),
            hit("other-item", 0.9, content="MPS 17 covers perimeter lighting."),
        ]

        context = await assemble(StubSearch(default=hits), target_item_number=7)

        assert context.sources[0].chunk_id == "item"
        assert context.sources[0].section == item_section_title(7)
        assert context.text.startswith("## ITEM-SPECIFIC CONTENT (MPS 7)")
        assert context.item_content_found
        assert not context.missing_item_content

    @pytest.mark.asyncio
    async def test_missing_item_content_is_flagged(self, assemble, make_document, caplog):
        make_document(processing_status=ProcessingStatus.COMPLETED)

        with caplog.at_level(logging.WARNING):
            context = await assemble(StubSearch(default=[hit("general", 0.8)]), target_item_number=7)

        assert context.missing_item_content
        assert not context.item_content_found
        assert "No item-specific content found for MPS 7" in caplog.text

    @pytest.mark.asyncio
    async def test_no_completed_documents_means_no_missing_flag(self, assemble):
        context = await assemble(StubSearch(default=[hit("general", 0.8)]), target_item_number=7)

        assert not context.missing_item_content

    @pytest.mark.asyncio
    async def test_authoritative_documents_get_their_own_section(self, assemble):
        hits = [hit("std", 0.3, title="Security Standard", document_type="standard"), hit("gen", 0.9)]

        context = await assemble(StubSearch(default=hits))

        assert [s.section for s in context.sources] == [SECTION_AUTHORITATIVE, SECTION_GENERAL]
        assert context.text.index("## AUTHORITATIVE REFERENCE SOURCES") < context.text.index("## GENERAL")

    @pytest.mark.asyncio
    async def test_general_section_is_capped(self, assemble):
        hits = [hit(f"c{i}", 0.9 - i * 0.05, title=f"Doc {i}") for i in range(8)]

        context = await assemble(StubSearch(default=hits))

        assert len(context.sources) == 5
        assert [s.chunk_id for s in context.sources] == ["c0", "c1", "c2", "c3", "c4"]

    @pytest.mark.asyncio
    async def test_external_awareness_context_is_labelled(self, assemble):
        context = await assemble(StubSearch(default=[hit("a", 0.8)]), tier=KnowledgeTier.EXTERNAL_AWARENESS)

        assert context.text.startswith(
            "[ADVISORY ONLY] External awareness material; not for compliance scoring."
        )

    @pytest.mark.asyncio
    async def test_internal_secure_drops_degraded_sources(self, assemble):
        hits = [
            hit("clean", 0.5),
            hit("synthetic", 0.9, metadata={"synthetic_fallback": True}),
            hit("raw", 0.8, metadata={"extraction_method": ExtractionMethod.DOCX_RAW_FALLBACK}),
        ]

        secure = await assemble(StubSearch(default=hits), tier=KnowledgeTier.INTERNAL_SECURE)
        standard = await assemble(StubSearch(default=hits))

        assert [s.chunk_id for s in secure.sources] == ["clean"]
        assert len(standard.sources) == 3

    @pytest.mark.asyncio
    async def test_keyword_fallback_when_semantic_search_is_empty(self, assemble, make_document, chunk_repo):
        document = make_document()
        chunk_repo.chunks[document.id] = [
            Chunk.build(document.id, ORG_ID, 0, "Gate inspections happen at every shift change."),
        ]
        chunk_repo.chunks[document.id][0].id = "kw-1"

        context = await assemble(StubSearch())

        assert context.search_method == "keyword"
        assert [s.chunk_id for s in context.sources] == ["kw-1"]
        assert context.sources[0].score == 0.5

    @pytest.mark.asyncio
    async def test_nothing_found_returns_sentinel(self, assemble):
        context = await assemble(StubSearch(fail=True))

        assert context.text == NO_RELEVANT_CONTENT
        assert not context.has_content
        assert context.search_method == "none"
        assert context.sources == []

    @pytest.mark.asyncio
    async def test_item_variants_are_searched(self, assemble):
        search = StubSearch()

        await assemble(search, domain="Security", target_item_number=7)

        assert search.variants[0] == "MPS 7"
        assert "Security MPS 7" in search.variants


class TestChunkSearchService:

    @pytest.mark.asyncio
    async def test_database_index_ranks_by_cosine_similarity(self, chunk_repo, make_document):
        document = make_document()
        close = Chunk.build(document.id, ORG_ID, 0, "Vault access requires two keyholders.")
        close.id = "close"
        close.embedding = [0.1, 0.2, 0.3, 0.4]
        far = Chunk.build(document.id, ORG_ID, 1, "Canteen opening hours.")
        far.id = "far"
        far.embedding = [0.4, -0.3, 0.2, -0.1]
        unembedded = Chunk.build(document.id, ORG_ID, 2, "No vector here.")
        unembedded.id = "none"
        chunk_repo.chunks[document.id] = [close, far, unembedded]

        service = ChunkSearchService(chunk_repo, StubEmbeddingClient())
        results = await service.search(ORG_ID, "vault access")

        assert [r.chunk_id for r in results] == ["close"]
        assert results[0].score == pytest.approx(1.0)
        assert results[0].document_title == "Leadership Standard"

    @pytest.mark.asyncio
    async def test_other_organizations_are_not_searched(self, chunk_repo, make_document):
        document = make_document(organization_id="9f1e2d3c-4b5a-4c6d-8e7f-0a1b2c3d4e5f")
        chunk = Chunk.build(document.id, document.organization_id, 0, "Vault access requires two keyholders.")
        chunk.id = "foreign"
        chunk.embedding = [0.1, 0.2, 0.3, 0.4]
        chunk_repo.chunks[document.id] = [chunk]

        results = await ChunkSearchService(chunk_repo, StubEmbeddingClient()).search(ORG_ID, "vault access")

        assert results == []


class OneStatementChunkRepository(InMemoryChunkRepository):
    """Chunk store that, like a database session, serves one statement at a time."""

    def __init__(self, documents):
        super().__init__(documents)
        self.busy = False
        self.statements: List[str] = []

    async def _execute(self, name: str) -> None:
        if self.busy:
            raise RuntimeError("another operation is in progress")
        self.busy = True
        self.statements.append(name)
        await asyncio.sleep(0.01)
        self.busy = False

    async def get_many(self, organization_id, chunk_ids):
        await self._execute("get_many")
        return await super().get_many(organization_id, chunk_ids)

    async def keyword_search(self, organization_id, text, limit):
        await self._execute("keyword_search")
        return await super().keyword_search(organization_id, text, limit)

    async def list_embedded(self, organization_id):
        await self._execute("list_embedded")
        return await super().list_embedded(organization_id)


class TestSemanticRetrieval:

    @pytest.fixture
    def store(self, document_repo, make_document):
        repository = OneStatementChunkRepository(document_repo)
        document = make_document()
        vectors = {
            "v-close": [0.1, 0.2, 0.3, 0.4],
            "v-near": [0.1, 0.2, 0.3, 0.1],
            "v-mid": [0.4, 0.1, 0.1, 0.4],
        }
        chunks = []
        for index, (chunk_id, vector) in enumerate(vectors.items()):
            chunk = Chunk.build(document.id, ORG_ID, index, f"Vault access rule {index} for keyholders.")
            chunk.id = chunk_id
            chunk.embedding = vector
            chunks.append(chunk)
        repository.chunks[document.id] = chunks
        return repository

    def assembler(self, store, document_repo) -> ContextAssembler:
        return ContextAssembler(ChunkSearchService(store, StubEmbeddingClient()), store, document_repo)

    @pytest.mark.asyncio
    async def test_variants_do_not_share_the_session_concurrently(self, store, document_repo):
        context = await self.assembler(store, document_repo).assemble(
            "vault access", ORG_ID, domain="Security", target_item_number=7
        )

        assert store.statements == ["list_embedded", "get_many"]
        assert context.search_method == "semantic"
        assert [s.chunk_id for s in context.sources] == ["v-close", "v-near", "v-mid"]

    @pytest.mark.asyncio
    async def test_same_query_assembles_identically(self, store, document_repo):
        first = await self.assembler(store, document_repo).assemble("vault access", ORG_ID, domain="Security")
        second = await self.assembler(store, document_repo).assemble("vault access", ORG_ID, domain="Security")

        assert first.text == second.text
        assert first.sources == second.sources
        assert first.search_method == second.search_method == "semantic"
