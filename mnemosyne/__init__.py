"""mnemosyne -- document ingestion and vector storage for retrieval-augmented generation.

Chunk documents, embed them, store the vectors in one of three
interchangeable backends (JSON file, embedded SQLite, PostgreSQL +
pgvector) and migrate between backends without losing a chunk.
"""

__version__ = "0.1.0"
