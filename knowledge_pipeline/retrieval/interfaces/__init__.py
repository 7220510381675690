"""
Retrieval Interfaces Layer
==========================

FastAPI controllers for the retrieval module.
"""

from knowledge_pipeline.retrieval.interfaces.controllers import retrieval_router

__all__ = ["retrieval_router"]
