"""
Knowledge Retrieval Module
==========================

Bounded Context for turning a user query into grounded answer context.

Responsibilities:
- Route each request to a knowledge tier (secure, organizational, external)
- Search an organization's chunks with several query variants
- Rank item-specific and authoritative content first
- Assemble a bounded, sectioned context block for the assistant
"""
