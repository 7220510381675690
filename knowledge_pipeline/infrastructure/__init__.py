"""
Infrastructure
==============

Adapters shared by the bounded contexts:
- database: async SQLAlchemy engine and sessions
- llm: embedding and chat completion clients
- storage: document binary storage
- vectorstore: chunk similarity indexes
"""
