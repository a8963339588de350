"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Document chunking with overlap
- FAISS vector storage joined with SQLite chunk rows
- Semantic retrieval
- Context assembly with citations
- Ingestion and query orchestration
"""
