"""
Retrieval Application Services
==============================

- KnowledgeTierService: classifies a request once and returns its policy
- ChunkSearchService: embeds query variants, searches the vector index and
  hydrates hits from SQL
- ContextAssembler: fans out query variants, ranks hits and builds the
  sectioned context block
"""

import asyncio
from typing import Dict, List, Optional, Tuple

from knowledge_pipeline.config import KnowledgeTier, settings
from knowledge_pipeline.infrastructure.llm import ILLMClient
from knowledge_pipeline.infrastructure.vectorstore import (
    DatabaseChunkIndex,
    IChunkVectorIndex,
    VectorHit,
    create_chunk_vector_index,
)
from knowledge_pipeline.ingestion.application.interfaces import IChunkRepository, IDocumentRepository
from knowledge_pipeline.retrieval.domain import (
    NO_RELEVANT_CONTENT,
    AssembledContext,
    ContextSource,
    RetrievedChunk,
    TierPolicy,
    build_query_variants,
    classify_knowledge_tier,
    is_framework_content,
    item_pattern,
    policy_for,
)
from knowledge_pipeline.retrieval.infrastructure.tier_config import TierConfigManager
from knowledge_pipeline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

SECTION_AUTHORITATIVE = "AUTHORITATIVE REFERENCE SOURCES"
SECTION_FRAMEWORK = "FRAMEWORK & LEVEL DEFINITIONS"
SECTION_GENERAL = "GENERAL RELEVANT CONTENT"


def item_section_title(item_number: int) -> str:
    return f"ITEM-SPECIFIC CONTENT (MPS {item_number})"


class KnowledgeTierService:
    """Classifies request contexts with the current keyword lists."""

    def __init__(self, config_manager: TierConfigManager):
        self._config_manager = config_manager

    def classify(self, context: str) -> Tuple[str, TierPolicy]:
        tier = classify_knowledge_tier(context, self._config_manager.keywords)
        return tier, policy_for(tier)


class ChunkSearchService:
    """
    Similarity search for one organization.

    Only ``find`` is safe to run concurrently: ``prepare`` and ``hydrate``
    use the repository session, which serves one statement at a time.
    """

    def __init__(
        self,
        chunk_repository: IChunkRepository,
        embedding_client: ILLMClient,
        vector_index: Optional[IChunkVectorIndex] = None
    ):
        self._chunks = chunk_repository
        self._embedding_client = embedding_client
        self._embedding_cache: Dict[str, List[Tuple[str, List[float]]]] = {}
        self._index = vector_index or create_chunk_vector_index(self._load_embeddings)

    async def _load_embeddings(self, organization_id: str) -> List[Tuple[str, List[float]]]:
        if organization_id not in self._embedding_cache:
            embedded = await self._chunks.list_embedded(organization_id)
            self._embedding_cache[organization_id] = [(c.chunk_id, c.embedding) for c in embedded]
        return self._embedding_cache[organization_id]

    async def prepare(self, organization_id: str) -> None:
        """Load stored embeddings before any concurrent ``find``."""
        if isinstance(self._index, DatabaseChunkIndex):
            await self._load_embeddings(organization_id)

    async def find(
        self,
        organization_id: str,
        query: str,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None
    ) -> List[VectorHit]:
        """
        Embed one query variant and search the index.

        Raises:
            LLMException: If the query embedding fails
            VectorStoreException: If the index search fails
        """
        embedding = await self._embedding_client.generate_embedding(query)
        return await self._index.search(
            organization_id,
            embedding.embedding,
            top_k or settings.search_results_per_variant,
            settings.similarity_threshold if threshold is None else threshold
        )

    async def hydrate(self, organization_id: str, scores: Dict[str, float]) -> List[RetrievedChunk]:
        """Load chunk rows for scored ids; ids outside the organization are dropped."""
        if not scores:
            return []
        hydrated = await self._chunks.get_many(organization_id, list(scores))
        return [chunk.with_score(scores[chunk.chunk_id]) for chunk in hydrated if chunk.chunk_id in scores]

    async def search(
        self,
        organization_id: str,
        query: str,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None
    ) -> List[RetrievedChunk]:
        """Search a single query string end to end."""
        await self.prepare(organization_id)
        hits = await self.find(organization_id, query, top_k, threshold)
        return await self.hydrate(organization_id, {hit.chunk_id: hit.score for hit in hits})


class ContextAssembler:
    """
    Builds the grounded context block for a query.

    Ranking is deterministic: item matches first, then score, then document
    title, then chunk index.
    """

    def __init__(
        self,
        search_service: ChunkSearchService,
        chunk_repository: IChunkRepository,
        document_repository: IDocumentRepository
    ):
        self._search = search_service
        self._chunks = chunk_repository
        self._documents = document_repository

    async def assemble(
        self,
        query: str,
        organization_id: str,
        domain: Optional[str] = None,
        target_item_number: Optional[int] = None,
        tier: Optional[str] = None
    ) -> AssembledContext:
        """
        Assemble context for a query.

        Args:
            query: User query
            organization_id: Organization whose chunks are searched
            domain: Optional domain label used in item-specific variants
            target_item_number: Item (``MPS <n>``) the query is about
            tier: Knowledge tier chosen for the request

        Returns:
            AssembledContext; ``text`` is NO_RELEVANT_CONTENT when nothing matched
        """
        tier = tier or KnowledgeTier.ORGANIZATIONAL_CONTEXT
        policy = policy_for(tier)

        variants = build_query_variants(query, domain, target_item_number, settings.search_variant_limit)
        best: Dict[str, RetrievedChunk] = {
            chunk.chunk_id: chunk for chunk in await self._semantic_search(organization_id, variants)
        }

        search_method = "semantic"
        if not best:
            for hit in await self._keyword_fallback(organization_id, query, target_item_number):
                best.setdefault(hit.chunk_id, hit)
            search_method = "keyword" if best else "none"

        candidates = list(best.values())
        if policy.exclude_degraded_sources:
            candidates = [c for c in candidates if not c.is_synthetic_or_degraded]

        pattern = item_pattern(target_item_number) if target_item_number is not None else None

        def matches_item(chunk: RetrievedChunk) -> bool:
            if pattern is None:
                return False
            if str(chunk.metadata.get("mps_number", "")) == str(target_item_number):
                return True
            return bool(pattern.search(chunk.content) or pattern.search(chunk.document_title))

        ranked = sorted(
            candidates,
            key=lambda c: (not matches_item(c), -c.score, c.document_title, c.chunk_index, c.chunk_id)
        )

        item_chunks = [c for c in ranked if matches_item(c)]
        authoritative, framework, general = [], [], []
        for chunk in ranked:
            if matches_item(chunk):
                continue
            if chunk.document_type in settings.authoritative_document_types or "authoritative" in chunk.tags:
                authoritative.append(chunk)
            elif is_framework_content(chunk.content):
                framework.append(chunk)
            else:
                general.append(chunk)

        sections: List[Tuple[str, List[RetrievedChunk]]] = []
        if target_item_number is not None:
            sections.append((item_section_title(target_item_number), item_chunks))
        sections.extend([
            (SECTION_AUTHORITATIVE, authoritative),
            (SECTION_FRAMEWORK, framework),
            (SECTION_GENERAL, general[:settings.general_section_limit]),
        ])

        text, sources = self._render(sections, policy)

        missing_item_content = False
        if target_item_number is not None and not item_chunks:
            completed = await self._documents.count_completed(organization_id)
            if completed:
                missing_item_content = True
                logger.warning(
                    f"No item-specific content found for MPS {target_item_number}",
                    extra={
                        "organization_id": organization_id,
                        "target_item_number": target_item_number,
                        "completed_documents": completed,
                    }
                )

        logger.info(
            "Context assembled",
            extra={
                "organization_id": organization_id,
                "tier": tier,
                "search_method": search_method,
                "variants": len(variants),
                "chunks": len(sources),
                "document_titles": sorted({s.title for s in sources}),
            }
        )

        return AssembledContext(
            text=text,
            tier=tier,
            sources=sources,
            search_method=search_method,
            item_content_found=bool(item_chunks),
            missing_item_content=missing_item_content,
            chunk_count=len(sources),
        )

    async def _semantic_search(self, organization_id: str, variants: List[str]) -> List[RetrievedChunk]:
        """Variants fan out concurrently; session work runs once before and once after."""
        try:
            await self._search.prepare(organization_id)
        except Exception as e:
            logger.warning(
                "Embedding preload failed",
                extra={"organization_id": organization_id, "error": str(e), "error_type": type(e).__name__}
            )
            return []

        results = await asyncio.gather(*(self._find_variant(organization_id, v) for v in variants))

        scores: Dict[str, float] = {}
        for hits in results:
            for hit in hits:
                if hit.score > scores.get(hit.chunk_id, float("-inf")):
                    scores[hit.chunk_id] = hit.score

        try:
            return await self._search.hydrate(organization_id, scores)
        except Exception as e:
            logger.warning(
                "Chunk hydration failed",
                extra={"organization_id": organization_id, "error": str(e), "error_type": type(e).__name__}
            )
            return []

    async def _find_variant(self, organization_id: str, variant: str) -> List[VectorHit]:
        try:
            return await self._search.find(organization_id, variant)
        except Exception as e:
            logger.warning(
                "Search variant failed",
                extra={"variant": variant, "error": str(e), "error_type": type(e).__name__}
            )
            return []

    async def _keyword_fallback(
        self,
        organization_id: str,
        query: str,
        target_item_number: Optional[int]
    ) -> List[RetrievedChunk]:
        terms = [query.strip()]
        if target_item_number is not None:
            terms.append(f"MPS {target_item_number}")

        found: List[RetrievedChunk] = []
        for term in terms:
            if not term:
                continue
            try:
                hits = await self._chunks.keyword_search(organization_id, term, settings.keyword_fallback_limit)
            except Exception as e:
                logger.warning("Keyword fallback failed", extra={"term": term, "error": str(e)})
                continue
            found.extend(hit.with_score(settings.keyword_fallback_score) for hit in hits)
        return found

    @staticmethod
    def _render(
        sections: List[Tuple[str, List[RetrievedChunk]]],
        policy: TierPolicy
    ) -> Tuple[str, List[ContextSource]]:
        """Section headers plus ``### title`` entries, capped at context_max_chars."""
        limit = settings.context_max_chars
        parts: List[str] = []
        sources: List[ContextSource] = []
        used = 0

        if policy.context_label:
            label = f"[{policy.context_label}] External awareness material; not for compliance scoring."
            parts.append(label)
            used += len(label)

        for header, chunks in sections:
            if not chunks:
                continue
            header_text = f"## {header}"
            if used + len(header_text) + 2 > limit:
                break
            section_parts = [header_text]
            section_used = len(header_text) + 2
            for chunk in chunks:
                entry = f"### {chunk.document_title or 'Untitled document'}\n{chunk.content}"
                if used + section_used + len(entry) + 2 > limit:
                    break
                section_parts.append(entry)
                section_used += len(entry) + 2
                sources.append(ContextSource(
                    document_id=chunk.document_id,
                    title=chunk.document_title,
                    chunk_id=chunk.chunk_id,
                    section=header,
                    score=chunk.score,
                ))
            if len(section_parts) > 1:
                parts.append("\n\n".join(section_parts))
                used += section_used

        if not sources:
            return NO_RELEVANT_CONTENT, []
        return "\n\n".join(parts), sources
