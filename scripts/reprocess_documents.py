#!/usr/bin/env python3
"""
Reprocess Documents
===================

Re-runs the ingestion pipeline for an organization's ``pending`` or
``failed`` documents.

Usage:
    python scripts/reprocess_documents.py <organization_id> [--status failed] [--limit 50] [--emergency]
"""

import argparse
import asyncio

from knowledge_pipeline.config import ProcessingStatus, settings
from knowledge_pipeline.infrastructure.database import close_database, get_session_context, init_database
from knowledge_pipeline.infrastructure.llm import create_embedding_client
from knowledge_pipeline.infrastructure.storage import DocumentFileResolver, close_document_storage, get_document_storage
from knowledge_pipeline.infrastructure.vectorstore import get_milvus_index
from knowledge_pipeline.ingestion.application.services import ChunkEmbedder, DocumentProcessingService
from knowledge_pipeline.ingestion.domain import ProcessingOptions
from knowledge_pipeline.ingestion.infrastructure import (
    SQLAlchemyApprovedChunkRepository,
    SQLAlchemyChunkRepository,
    SQLAlchemyDocumentRepository,
)
from knowledge_pipeline.shared.infrastructure.logging import setup_logging


async def reprocess(organization_id: str, statuses: list, limit: int, emergency: bool) -> None:
    async with get_session_context() as session:
        document_ids = await SQLAlchemyDocumentRepository(session).list_ids_by_status(
            organization_id, statuses, limit
        )

    print(f"Found {len(document_ids)} documents ({', '.join(statuses)})")

    options = ProcessingOptions(force_reprocess=True, emergency_chunking=emergency)
    embedder = ChunkEmbedder(create_embedding_client())
    resolver = DocumentFileResolver(get_document_storage())
    vector_index = get_milvus_index() if settings.vector_backend == "milvus" else None

    completed = 0
    # One session per document so a failed run never touches the others
    for document_id in document_ids:
        async with get_session_context() as session:
            service = DocumentProcessingService(
                document_repository=SQLAlchemyDocumentRepository(session),
                chunk_repository=SQLAlchemyChunkRepository(session),
                approved_chunk_repository=SQLAlchemyApprovedChunkRepository(session),
                file_resolver=resolver,
                embedder=embedder,
                vector_index=vector_index,
            )
            outcome = await service.process(document_id, options, organization_id=organization_id)

        print(f"  {document_id}: {outcome.status} ({outcome.total_chunks} chunks) {outcome.error or ''}")
        if outcome.status == ProcessingStatus.COMPLETED:
            completed += 1

    print(f"Done: {completed}/{len(document_ids)} completed")


async def main():
    parser = argparse.ArgumentParser(description="Reprocess pending or failed documents")
    parser.add_argument("organization_id", help="Organization UUID")
    parser.add_argument(
        "--status",
        action="append",
        choices=[ProcessingStatus.PENDING, ProcessingStatus.FAILED],
        help="Status to reprocess (repeatable, default: pending and failed)"
    )
    parser.add_argument("--limit", type=int, default=100, help="Maximum documents to reprocess")
    parser.add_argument("--emergency", action="store_true", help="Relaxed chunking, no quality gate or embeddings")
    args = parser.parse_args()

    setup_logging(settings.log_level, settings.environment)
    init_database()
    try:
        await reprocess(
            args.organization_id,
            args.status or [ProcessingStatus.PENDING, ProcessingStatus.FAILED],
            args.limit,
            args.emergency,
        )
    finally:
        await close_document_storage()
        await close_database()


if __name__ == "__main__":
    asyncio.run(main())
