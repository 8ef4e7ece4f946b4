"""Wiring of the pipeline components from a single ``Settings`` value."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

from .chroma_store import ChromaVectorStore
from .config import Settings
from .embedder import build_embedder
from .errors import IndexingInProgressError
from .generation import GenerationClient
from .indexer import IndexingOrchestrator, IndexingReport
from .models import QueryAnswer
from .retriever import QueryOrchestrator


@dataclass
class Pipeline:
    settings: Settings
    embedder: Any
    store: Any
    generator: Optional[Any] = None
    _query: Optional[QueryOrchestrator] = field(default=None, init=False, repr=False)
    _index_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Pipeline":
        return cls(
            settings=settings,
            embedder=build_embedder(settings.embedding, max_length=settings.chunking.chunk_tokens),
            store=ChromaVectorStore.from_config(settings.store),
        )

    async def initialize(self) -> None:
        await self.embedder.initialize()

    def indexer(self) -> IndexingOrchestrator:
        return IndexingOrchestrator.from_settings(self.settings, self.embedder, self.store)

    async def index(self) -> IndexingReport:
        """Run a full re-index; only one run may write to the collection at a time."""
        if self._index_lock.locked():
            raise IndexingInProgressError("An indexing run is already in progress")
        async with self._index_lock:
            await self.initialize()
            return await self.indexer().run(self.settings.repositories)

    @property
    def query(self) -> QueryOrchestrator:
        # The generation client needs HF_TOKEN, which indexing alone does not.
        if self._query is None:
            if self.generator is None:
                self.generator = GenerationClient(self.settings.generation)
            self._query = QueryOrchestrator.from_settings(self.settings, self.embedder, self.store, self.generator)
        return self._query

    async def answer(self, question: str) -> QueryAnswer:
        await self.initialize()
        return await self.query.answer(question)
