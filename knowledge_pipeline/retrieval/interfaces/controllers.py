"""
Retrieval Controllers (API Routes)
==================================

FastAPI routes for context assembly and knowledge-tier classification.

Controllers are thin - they delegate to application services.
"""

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_pipeline.infrastructure.database import get_session
from knowledge_pipeline.infrastructure.llm import create_embedding_client
from knowledge_pipeline.ingestion.infrastructure import SQLAlchemyChunkRepository, SQLAlchemyDocumentRepository
from knowledge_pipeline.retrieval.application import (
    ChunkSearchService,
    ContextAssembler,
    ContextRequest,
    ContextResponse,
    KnowledgeTierService,
    TierPolicyResponse,
    TierRequest,
    TierResponse,
)
from knowledge_pipeline.retrieval.infrastructure import get_tier_config_manager

router = APIRouter(prefix="/retrieval", tags=["Knowledge Retrieval"])


# ========== Example payloads for Swagger ==========

CONTEXT_REQUEST_EXAMPLE = {
    "query": "What evidence is required for leadership accountability?",
    "organizationId": "0d5c8e9a-7f3b-4a61-b1e2-93c4d5e6f708",
    "domain": "Leadership & Governance",
    "targetItemNumber": 7
}

CONTEXT_RESPONSE_EXAMPLE = {
    "context": "## ITEM-SPECIFIC CONTENT (MPS 7)\n\n### Leadership Standard\nMPS 7 requires ...",
    "sources": [
        {
            "document_id": "5b0c1f9e-2a47-4e0f-9a55-3f1e8a0f6c21",
            "title": "Leadership Standard",
            "chunk_id": "a9f3e2d1-4c5b-46a7-8e9f-0a1b2c3d4e5f",
            "section": "ITEM-SPECIFIC CONTENT (MPS 7)",
            "score": 0.83
        }
    ],
    "search_method": "semantic",
    "item_content_found": True,
    "missing_item_content": False,
    "tier": "INTERNAL_SECURE"
}


# ========== Dependencies ==========

def get_tier_service() -> KnowledgeTierService:
    """Get knowledge tier service backed by the hot-reloaded keyword file."""
    return KnowledgeTierService(get_tier_config_manager())


async def get_context_assembler(
    session: AsyncSession = Depends(get_session)
) -> ContextAssembler:
    """Get context assembler instance."""
    chunk_repo = SQLAlchemyChunkRepository(session)
    return ContextAssembler(
        search_service=ChunkSearchService(chunk_repo, create_embedding_client()),
        chunk_repository=chunk_repo,
        document_repository=SQLAlchemyDocumentRepository(session),
    )


# ========== Route Handlers ==========

@router.post(
    "/context",
    response_model=ContextResponse,
    summary="Assemble grounded context for a query",
    description="""
    Search the organization's chunks with several query variants and build a
    sectioned context block:

    1. `ITEM-SPECIFIC CONTENT (MPS n)` when `target_item_number` is given
    2. `AUTHORITATIVE REFERENCE SOURCES`
    3. `FRAMEWORK & LEVEL DEFINITIONS`
    4. `GENERAL RELEVANT CONTENT` (top 5)

    Falls back to keyword search when similarity search finds nothing. Returns
    `NO_RELEVANT_CONTENT` as the context when nothing matched.
    `missing_item_content` is true when an item was requested, none of its
    content exists, and the organization has processed documents.
    """,
    responses={
        200: {
            "description": "Assembled context",
            "content": {"application/json": {"example": CONTEXT_RESPONSE_EXAMPLE}}
        }
    }
)
async def assemble_context(
    request: ContextRequest = Body(..., examples=[CONTEXT_REQUEST_EXAMPLE]),
    assembler: ContextAssembler = Depends(get_context_assembler),
    tier_service: KnowledgeTierService = Depends(get_tier_service)
):
    tier = request.tier or tier_service.classify(request.query)[0]
    assembled = await assembler.assemble(
        request.query,
        request.organization_id,
        domain=request.domain,
        target_item_number=request.target_item_number,
        tier=tier,
    )
    return ContextResponse.from_context(assembled)


@router.post(
    "/tier",
    response_model=TierResponse,
    summary="Classify a request into a knowledge tier",
    description="""
    Case-insensitive keyword match against the tier keyword file.
    `INTERNAL_SECURE` wins over `EXTERNAL_AWARENESS`; anything else is
    `ORGANIZATIONAL_CONTEXT`.
    """
)
async def classify_tier(
    request: TierRequest,
    tier_service: KnowledgeTierService = Depends(get_tier_service)
):
    tier, policy = tier_service.classify(request.context)
    return TierResponse(tier=tier, policy=TierPolicyResponse.from_policy(policy))


# Export router for inclusion in main app
retrieval_router = router
