"""
Query-time retrieval and answering.

The question is embedded with the same model used at indexing time, the
closest chunks are fetched from the collection, and their contents are
assembled into a context block for the generation service.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Sequence

from .config import COLLECTION_NAME, Settings
from .errors import EmbeddingNotInitializedError, InvalidQuestionError, NoRelevantContextError, QueryTimeoutError
from .models import QueryAnswer, RepositoryDescriptor, SearchHit

logger = logging.getLogger(__name__)


def format_hit(hit: SearchHit) -> str:
    payload = hit.payload
    return f"{payload.get('repo', '')}/{payload.get('path', '')}\n\n{hit.content}\n---"


def build_context(hits: Sequence[SearchHit]) -> str:
    """Concatenate hits, best first, into the context handed to the model."""
    ordered = sorted(hits, key=lambda hit: hit.score, reverse=True)
    return "\n\n".join(format_hit(hit) for hit in ordered)


def format_repo_list(repositories: Sequence[RepositoryDescriptor]) -> str:
    return "\n".join(f"- {repo.name}" for repo in repositories)


class QueryOrchestrator:
    def __init__(
        self,
        embedder: Any,
        store: Any,
        generator: Any,
        repositories: Sequence[RepositoryDescriptor] = (),
        collection_name: str = COLLECTION_NAME,
        limit: int = 5,
        timeout_s: Optional[float] = None,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.generator = generator
        self.repositories = list(repositories)
        self.collection_name = collection_name
        self.limit = limit
        self.timeout_s = timeout_s

    @classmethod
    def from_settings(cls, settings: Settings, embedder: Any, store: Any, generator: Any) -> "QueryOrchestrator":
        return cls(
            embedder=embedder,
            store=store,
            generator=generator,
            repositories=settings.repositories,
            collection_name=settings.store.collection_name,
            limit=settings.store.search_limit,
            timeout_s=settings.query_timeout_s,
        )

    async def retrieve(self, question: str) -> List[SearchHit]:
        """Embed ``question`` and return the closest chunks, best first."""
        if not isinstance(question, str) or not question.strip():
            raise InvalidQuestionError("Question must be a non-empty string")
        if not self.embedder.is_ready():
            raise EmbeddingNotInitializedError("Embedding model not initialized. Call initialize() first.")

        vector = await self.embedder.embed(question)
        hits = await self.store.search(self.collection_name, vector, self.limit)
        logger.info(f"Search results: {len(hits)}")
        return hits

    async def answer(self, question: str, timeout_s: Optional[float] = None) -> QueryAnswer:
        """Answer ``question`` from the indexed repositories.

        Raises ``NoRelevantContextError`` when the search finds nothing and
        ``QueryTimeoutError`` when the whole call exceeds the timeout.
        """
        timeout = self.timeout_s if timeout_s is None else timeout_s
        if not timeout:
            return await self._answer(question)
        try:
            return await asyncio.wait_for(self._answer(question), timeout)
        except asyncio.TimeoutError as exc:
            raise QueryTimeoutError(timeout) from exc

    async def _answer(self, question: str) -> QueryAnswer:
        hits = await self.retrieve(question)
        if not hits:
            raise NoRelevantContextError(self.collection_name)

        context = build_context(hits)
        repo_list = format_repo_list(self.repositories)
        text = await self.generator.generate_answer(question.strip(), context, repo_list)
        logger.info("Answer generated")
        return QueryAnswer(answer=text.strip(), context=context, hits=hits)
