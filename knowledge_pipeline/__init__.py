"""
Knowledge Pipeline
==================

Document ingestion and knowledge retrieval service for compliance assessments.

Bounded contexts:
- ingestion: extraction, chunking, embedding and chunk persistence
- retrieval: knowledge-tier classification and context assembly
- assistant: gap tracking, conversation state and grounded answers
"""

__version__ = "1.0.0"
