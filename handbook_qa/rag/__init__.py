"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Word-based page chunking with overlap
- Embedding generation
- Vector storage (Supabase or local FAISS) and similarity retrieval
- Prompt building and grounded answer synthesis
- Query-time and ingestion-time orchestration
"""
