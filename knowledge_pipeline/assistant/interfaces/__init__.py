"""
Assistant Interfaces Layer
==========================

FastAPI routes for the assistant module.
"""

from knowledge_pipeline.assistant.interfaces.controllers import assistant_router

__all__ = ["assistant_router"]
