"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Sentence-aware chunking with word overlap
- Embedding generation with a degraded fallback
- Similarity ranking (NumPy cosine scan, FAISS swap-in)
- Citation-aware prompt composition
- Document ingestion and query-time retrieval
"""
