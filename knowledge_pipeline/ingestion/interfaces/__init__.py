"""
Ingestion Interfaces Layer
==========================

FastAPI controllers for the ingestion module.
"""

from knowledge_pipeline.ingestion.interfaces.controllers import ingestion_router

__all__ = ["ingestion_router"]
