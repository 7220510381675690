"""
Document Ingestion Module
=========================

Bounded Context for turning uploaded documents into stored, embedded chunks.

Responsibilities:
- Fetch document files from storage (with legacy location resolution)
- Extract text from Word, slide deck, PDF, binary and text formats
- Reject low-quality text before it reaches the knowledge base
- Split text into overlapping chunks, or reuse reviewer-approved chunks
- Generate embeddings and replace a document's chunk set atomically
"""
