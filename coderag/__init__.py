"""
Retrieval-augmented question answering over cloned GitHub repositories.

This package walks cloned repositories, splits source and documentation files
into overlapping token windows, embeds each window with a local Hugging Face
encoder (or an Ollama endpoint), stores the vectors in a Chroma collection
configured for cosine distance, and answers questions by retrieving the
closest chunks and handing them to a text-generation model.

The key exported symbols are:

* ``Settings`` – configuration built once from the environment.
* ``FileFilter`` / ``RepositoryWalker`` – choose and read repository files.
* ``Chunker`` – break a document into overlapping token chunks.
* ``TransformersEmbedder`` / ``OllamaEmbedder`` – produce L2-normalized
  embeddings.
* ``ChromaVectorStore`` – collection reset, paced upserts and search.
* ``IndexingOrchestrator`` – the per-repository indexing run.
* ``QueryOrchestrator`` – retrieve context and generate an answer.
"""

from .config import (
    CHUNK_OVERLAP,
    CHUNK_TOKENS,
    COLLECTION_NAME,
    EMBED_DIMS,
    EMBED_MODEL,
    Settings,
)
from .chunker import Chunker, token_windows
from .chroma_store import ChromaVectorStore, get_client
from .embedder import TransformersEmbedder, build_embedder
from .filters import FileFilter
from .generation import GenerationClient, build_prompt
from .git_sync import fetch_or_update
from .indexer import IndexingOrchestrator, IndexingReport, RepositoryStats
from .models import Chunk, Document, DocumentMetadata, QueryAnswer, RepositoryDescriptor, SearchHit
from .ollama_embedder import OllamaEmbedder
from .pipeline import Pipeline
from .retriever import QueryOrchestrator, build_context
from .walker import RepositoryWalker

__all__ = [
    # Configuration constants
    "CHUNK_OVERLAP",
    "CHUNK_TOKENS",
    "COLLECTION_NAME",
    "EMBED_DIMS",
    "EMBED_MODEL",
    "Settings",
    # Data model
    "Chunk",
    "Document",
    "DocumentMetadata",
    "QueryAnswer",
    "RepositoryDescriptor",
    "SearchHit",
    # Components
    "FileFilter",
    "RepositoryWalker",
    "Chunker",
    "token_windows",
    "TransformersEmbedder",
    "OllamaEmbedder",
    "build_embedder",
    "ChromaVectorStore",
    "get_client",
    "GenerationClient",
    "build_prompt",
    "fetch_or_update",
    # Orchestration
    "IndexingOrchestrator",
    "IndexingReport",
    "RepositoryStats",
    "QueryOrchestrator",
    "build_context",
    "Pipeline",
]
