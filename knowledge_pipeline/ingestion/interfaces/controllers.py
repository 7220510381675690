"""
Ingestion Controllers (API Routes)
==================================

FastAPI routes for the document processing trigger and status view.

Controllers are thin - they delegate to application services.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_pipeline.config import settings
from knowledge_pipeline.core import ResourceNotFoundException
from knowledge_pipeline.infrastructure.database import get_session
from knowledge_pipeline.infrastructure.llm import create_embedding_client
from knowledge_pipeline.infrastructure.storage import DocumentFileResolver, get_document_storage
from knowledge_pipeline.infrastructure.vectorstore import get_milvus_index
from knowledge_pipeline.ingestion.application import (
    ChunkEmbedder,
    DocumentProcessingService,
    DocumentStatusResponse,
    ProcessDocumentRequest,
    ProcessDocumentResponse,
)
from knowledge_pipeline.ingestion.infrastructure import (
    SQLAlchemyApprovedChunkRepository,
    SQLAlchemyChunkRepository,
    SQLAlchemyDocumentRepository,
)
from knowledge_pipeline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/ingestion", tags=["Document Ingestion"])


# ========== Example payloads for Swagger ==========

PROCESS_REQUEST_EXAMPLE = {
    "documentId": "5b0c1f9e-2a47-4e0f-9a55-3f1e8a0f6c21",
    "forceReprocess": False,
    "emergencyChunking": False,
    "governanceDocument": False,
    "dryRun": False
}

PROCESS_RESPONSE_EXAMPLE = {
    "document_id": "5b0c1f9e-2a47-4e0f-9a55-3f1e8a0f6c21",
    "status": "completed",
    "total_chunks": 12,
    "extraction_method": "docx_structured",
    "reused_from_tester": False,
    "embedded_chunks": 12,
    "error": None,
    "dry_run": False,
    "preview": []
}

DRY_RUN_RESPONSE_EXAMPLE = {
    "document_id": "5b0c1f9e-2a47-4e0f-9a55-3f1e8a0f6c21",
    "status": "dry_run",
    "total_chunks": 12,
    "extraction_method": "pptx_slides",
    "reused_from_tester": False,
    "embedded_chunks": 0,
    "error": None,
    "dry_run": True,
    "preview": [
        {"chunk_index": 0, "length": 1874, "preview": "--- Slide 1 ---\nDMS plant induction..."}
    ]
}


# ========== Dependencies ==========

async def get_processing_service(
    session: AsyncSession = Depends(get_session)
) -> DocumentProcessingService:
    """Get document processing service instance."""
    return DocumentProcessingService(
        document_repository=SQLAlchemyDocumentRepository(session),
        chunk_repository=SQLAlchemyChunkRepository(session),
        approved_chunk_repository=SQLAlchemyApprovedChunkRepository(session),
        file_resolver=DocumentFileResolver(get_document_storage()),
        embedder=ChunkEmbedder(create_embedding_client()),
        vector_index=get_milvus_index() if settings.vector_backend == "milvus" else None,
    )


async def get_document_repository(
    session: AsyncSession = Depends(get_session)
) -> SQLAlchemyDocumentRepository:
    return SQLAlchemyDocumentRepository(session)


async def get_chunk_repository(
    session: AsyncSession = Depends(get_session)
) -> SQLAlchemyChunkRepository:
    return SQLAlchemyChunkRepository(session)


# ========== Route Handlers ==========

@router.post(
    "/process",
    response_model=ProcessDocumentResponse,
    summary="Process an uploaded document",
    description="""
    Run the ingestion pipeline for one uploaded document:
    fetch -> extract -> quality gate -> chunk -> embed -> store.

    The run ends with the document `completed` (at least one chunk stored) or
    `failed` with the reason recorded in its metadata; the response reports
    the same outcome with HTTP 200.

    **Flags** (snake_case or camelCase):
    - `force_reprocess`: re-run a document that is already `completed`;
      otherwise such a document is reported as `skipped`
    - `emergency_chunking`: skip the quality gate and embeddings, accept
      chunks down to 30 characters
    - `governance_document`: apply relaxed governance quality thresholds
    - `dry_run`: extract and split only; returns the chunk count and the first
      three chunk previews without writing anything

    **Example Request**:
    ```json
    {
        "documentId": "5b0c1f9e-2a47-4e0f-9a55-3f1e8a0f6c21",
        "forceReprocess": true
    }
    ```
    """,
    responses={
        200: {
            "description": "Processing outcome",
            "content": {
                "application/json": {
                    "examples": {
                        "completed": {"value": PROCESS_RESPONSE_EXAMPLE},
                        "dry_run": {"value": DRY_RUN_RESPONSE_EXAMPLE},
                    }
                }
            }
        },
        404: {"description": "Document not found"}
    }
)
async def process_document(
    request: ProcessDocumentRequest = Body(..., examples=[PROCESS_REQUEST_EXAMPLE]),
    service: DocumentProcessingService = Depends(get_processing_service)
):
    outcome = await service.process(
        request.document_id,
        request.to_options(),
        organization_id=request.organization_id
    )
    return ProcessDocumentResponse.from_outcome(outcome)


@router.get(
    "/documents/{document_id}",
    response_model=DocumentStatusResponse,
    summary="Get document processing status",
    description="""
    Processing status of a document, its recorded chunk total, the number of
    chunks currently stored, and the audit metadata of the last run
    (extraction method, quality report, storage location, error).
    """,
    responses={404: {"description": "Document not found"}}
)
async def get_document_status(
    document_id: str,
    organization_id: Optional[str] = Query(None, description="Owning organization"),
    documents: SQLAlchemyDocumentRepository = Depends(get_document_repository),
    chunks: SQLAlchemyChunkRepository = Depends(get_chunk_repository)
):
    document = await documents.get(document_id, organization_id)
    if document is None:
        raise ResourceNotFoundException("Document", document_id)

    stored = await chunks.count_for_document(document.organization_id, document.id)
    return DocumentStatusResponse.from_document(document, stored)


# Export router for inclusion in main app
ingestion_router = router
