"""Core data models for repositories, documents, chunks and search hits."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Union

PointId = Union[int, str]


@dataclass(frozen=True)
class RepositoryDescriptor:
    """A repository to index; ``name`` doubles as its local directory name."""

    name: str
    url: str


@dataclass(frozen=True)
class DocumentMetadata:
    repo: str
    path: str  # relative to the repository root, "/" separated
    size: int
    modified: datetime

    def as_payload(self) -> Dict[str, Any]:
        return {
            "repo": self.repo,
            "path": self.path,
            "size": self.size,
            "modified": self.modified.isoformat(),
        }


@dataclass(frozen=True)
class Document:
    """One qualifying file read from a repository."""

    content: str
    metadata: DocumentMetadata


@dataclass(frozen=True)
class Chunk:
    """A token-bounded window of a document.

    ``metadata`` is the source document's metadata, shared unchanged by all
    chunks of that document.
    """

    content: str
    metadata: DocumentMetadata
    chunk_index: int = 0
    token_start: int = 0
    token_end: int = 0
    char_start: int = 0
    char_end: int = 0

    def as_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"content": self.content}
        payload.update(self.metadata.as_payload())
        payload["chunk_index"] = self.chunk_index
        payload["token_start"] = self.token_start
        payload["token_end"] = self.token_end
        payload["char_start"] = self.char_start
        payload["char_end"] = self.char_end
        return payload


@dataclass
class SearchHit:
    score: float
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def content(self) -> str:
        return self.payload.get("content", "")


@dataclass
class QueryAnswer:
    answer: str
    context: str
    hits: List[SearchHit] = field(default_factory=list)
