"""
Configuration for the indexing and query pipelines.

All hyperparameters live here so they can be consistently imported across the
code base.  ``Settings.from_env()`` is the only place that reads the process
environment; the resulting value is built once at startup and handed to each
component's constructor.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from .errors import ConfigurationError
from .models import RepositoryDescriptor

logger = logging.getLogger(__name__)

# Name of the collection that holds every indexed repository.
COLLECTION_NAME = "github_code"

# Hugging Face identifier of the embedding model. multilingual-e5-large
# produces 1024-dimensional vectors.
EMBED_MODEL = "intfloat/multilingual-e5-large"
EMBED_DIMS = 1024

# Token window and overlap used by the chunker.
CHUNK_TOKENS = 1000
CHUNK_OVERLAP = 200

OLLAMA_EMBED_URL = "http://localhost:11434/api/embed"

LLM_MODEL = "mistralai/Mixtral-8x7B-Instruct-v0.1"
HF_INFERENCE_URL = "https://api-inference.huggingface.co/models"

CODE_EXTENSIONS = frozenset(
    {
        ".js",
        ".ts",
        ".jsx",
        ".tsx",
        ".html",
        ".css",
        ".py",
        ".java",
        ".go",
        ".rs",
        ".c",
        ".cpp",
        ".h",
    }
)
DOC_EXTENSIONS = frozenset({".md", ".txt", ".rst"})
EXCLUDED_DIRS = frozenset({".git", "node_modules", "__pycache__", "venv", "dist", "build"})

_SAFE_NAME = re.compile(r"^[A-Za-z0-9._-]+$")


@dataclass(frozen=True)
class FilterConfig:
    code_extensions: FrozenSet[str] = CODE_EXTENSIONS
    doc_extensions: FrozenSet[str] = DOC_EXTENSIONS
    excluded_dirs: FrozenSet[str] = EXCLUDED_DIRS


@dataclass(frozen=True)
class StoreConfig:
    """Vector store connection and write-pacing parameters."""

    collection_name: str = COLLECTION_NAME
    chroma_host: str = ""  # empty = embedded mode
    chroma_port: int = 8000
    persist_dir: str = "./data/chroma"
    upsert_delay_s: float = 0.1
    retry_backoff_s: float = 2.0
    max_upsert_attempts: int = 2
    large_payload_bytes: int = 10_000
    search_limit: int = 5


@dataclass(frozen=True)
class EmbeddingConfig:
    provider: str = "transformers"  # "transformers" or "ollama"
    model: str = EMBED_MODEL
    dims: int = EMBED_DIMS
    ollama_url: str = OLLAMA_EMBED_URL
    timeout_s: float = 120.0


@dataclass(frozen=True)
class ChunkingConfig:
    chunk_tokens: int = CHUNK_TOKENS
    chunk_overlap: int = CHUNK_OVERLAP
    tokenizer_model: str = EMBED_MODEL

    def __post_init__(self) -> None:
        if self.chunk_tokens <= 0:
            raise ConfigurationError("CHUNK_TOKENS must be positive")
        if not 0 <= self.chunk_overlap < self.chunk_tokens:
            raise ConfigurationError("CHUNK_OVERLAP must be >= 0 and smaller than CHUNK_TOKENS")


@dataclass(frozen=True)
class IndexingConfig:
    repos_dir: str = "./github_repos"
    batch_size: int = 1
    batch_delay_s: float = 0.5


@dataclass(frozen=True)
class GenerationConfig:
    model: str = LLM_MODEL
    base_url: str = HF_INFERENCE_URL
    token: Optional[str] = field(default=None, repr=False)
    max_new_tokens: int = 1024
    temperature: float = 0.1
    top_p: float = 0.95
    timeout_s: float = 120.0


@dataclass(frozen=True)
class Settings:
    """Top-level application configuration."""

    repositories: List[RepositoryDescriptor] = field(default_factory=list)
    store: StoreConfig = field(default_factory=StoreConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    indexing: IndexingConfig = field(default_factory=IndexingConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)
    query_timeout_s: float = 120.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        raw_repos = env.get("GITHUB_REPOS")
        if not raw_repos:
            raise ConfigurationError("No repositories configured in GITHUB_REPOS")

        embed_model = env.get("EMBEDDING_MODEL", EMBED_MODEL)
        return cls(
            repositories=parse_repositories(raw_repos),
            store=StoreConfig(
                collection_name=env.get("COLLECTION_NAME", COLLECTION_NAME),
                chroma_host=env.get("CHROMA_HOST", ""),
                chroma_port=_int(env, "CHROMA_PORT", 8000),
                persist_dir=env.get("CHROMA_PERSIST_DIR", "./data/chroma"),
                upsert_delay_s=_int(env, "UPSERT_DELAY_MS", 100) / 1000.0,
                retry_backoff_s=_int(env, "UPSERT_RETRY_BACKOFF_MS", 2000) / 1000.0,
                max_upsert_attempts=_int(env, "UPSERT_MAX_ATTEMPTS", 2),
                large_payload_bytes=_int(env, "LARGE_PAYLOAD_BYTES", 10_000),
                search_limit=_int(env, "SEARCH_LIMIT", 5),
            ),
            embedding=EmbeddingConfig(
                provider=env.get("EMBEDDING_PROVIDER", "transformers"),
                model=embed_model,
                dims=_int(env, "EMBED_DIMS", EMBED_DIMS),
                ollama_url=env.get("OLLAMA_EMBED_URL", OLLAMA_EMBED_URL),
            ),
            chunking=ChunkingConfig(
                chunk_tokens=_int(env, "CHUNK_TOKENS", CHUNK_TOKENS),
                chunk_overlap=_int(env, "CHUNK_OVERLAP", CHUNK_OVERLAP),
                tokenizer_model=env.get("TOKENIZER_MODEL", embed_model),
            ),
            indexing=IndexingConfig(
                repos_dir=env.get("REPOS_DIR", "./github_repos"),
                batch_size=max(1, _int(env, "BATCH_SIZE", 1)),
                batch_delay_s=_int(env, "DELAY_BETWEEN_BATCHES", 500) / 1000.0,
            ),
            generation=GenerationConfig(
                model=env.get("LLM_MODEL", LLM_MODEL),
                base_url=env.get("HF_INFERENCE_URL", HF_INFERENCE_URL),
                token=env.get("HF_TOKEN") or None,
            ),
            query_timeout_s=float(_int(env, "QUERY_TIMEOUT_S", 120)),
            log_level=env.get("LOG_LEVEL", "INFO"),
        )

    def redacted(self) -> Dict[str, Any]:
        """Return a loggable summary with secrets masked."""
        return {
            "repositories": [repo.name for repo in self.repositories],
            "collection": self.store.collection_name,
            "chroma": self.store.chroma_host or self.store.persist_dir,
            "embedding_provider": self.embedding.provider,
            "embedding_model": self.embedding.model,
            "llm_model": self.generation.model,
            "hf_token": "***" if self.generation.token else "NOT SET",
        }


def parse_repositories(raw: str) -> List[RepositoryDescriptor]:
    """Parse the ``GITHUB_REPOS`` JSON list.

    A malformed document is fatal.  Individual entries that lack a name or
    url, use a name that is not safe as a directory name, or repeat an
    earlier name are skipped with a warning.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"GITHUB_REPOS is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise ConfigurationError("GITHUB_REPOS must be a JSON list of {name, url} objects")

    repos: List[RepositoryDescriptor] = []
    seen = set()
    for entry in data:
        if not isinstance(entry, dict):
            logger.warning("Ignoring malformed repository entry of type %s", type(entry).__name__)
            continue
        name = entry.get("name")
        url = entry.get("url")
        if not isinstance(name, str) or not name or not isinstance(url, str) or not url:
            logger.warning("Ignoring repository entry without name or url (name=%r)", name)
            continue
        if not is_safe_name(name):
            logger.warning("Ignoring repository with unsafe name: %r", name)
            continue
        if name in seen:
            logger.warning("Ignoring duplicate repository name: %s", name)
            continue
        seen.add(name)
        repos.append(RepositoryDescriptor(name=name, url=url))
    return repos


def is_safe_name(name: str) -> bool:
    return bool(_SAFE_NAME.match(name)) and name not in (".", "..")


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    value = env.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}") from exc
