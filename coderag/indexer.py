"""
Repository indexing pipeline.

For each configured repository, in order: clone or pull it, walk its files,
chunk every document, embed every chunk and upsert the result into the
vector store.  The target collection is reset once at the start of the run,
so every run fully replaces the previous index.

Failures are contained at two levels.  A chunk that cannot be embedded is
skipped.  Anything else that goes wrong inside one repository is logged with
the repository name and the run moves on to the next one.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Iterator, List, Optional, Sequence

from .chunker import Chunker
from .config import COLLECTION_NAME, EMBED_DIMS, Settings
from .errors import ConfigurationError, EmbeddingError, EmbeddingNotInitializedError
from .filters import FileFilter
from .git_sync import fetch_or_update, redact_url
from .models import Document, RepositoryDescriptor
from .walker import RepositoryWalker

logger = logging.getLogger(__name__)

FetchFn = Callable[[str, str], Awaitable[bool]]


@dataclass
class RepositoryStats:
    name: str
    status: str = "pending"  # indexed | empty | fetch_failed | failed | skipped
    documents: int = 0
    chunks: int = 0
    points: int = 0
    skipped_chunks: int = 0
    error: Optional[str] = None


@dataclass
class IndexingReport:
    collection: str
    repositories: List[RepositoryStats] = field(default_factory=list)
    stopped_early: bool = False

    @property
    def total_documents(self) -> int:
        return sum(r.documents for r in self.repositories)

    @property
    def total_chunks(self) -> int:
        return sum(r.chunks for r in self.repositories)

    @property
    def total_points(self) -> int:
        return sum(r.points for r in self.repositories)

    def as_dict(self) -> dict:
        return {
            "collection": self.collection,
            "documents_indexed": self.total_documents,
            "chunks_indexed": self.total_chunks,
            "points_upserted": self.total_points,
            "stopped_early": self.stopped_early,
            "repositories": [vars(r) for r in self.repositories],
        }


class IndexingOrchestrator:
    def __init__(
        self,
        embedder: Any,
        store: Any,
        chunker: Optional[Chunker] = None,
        walker: Optional[RepositoryWalker] = None,
        fetch: FetchFn = fetch_or_update,
        collection_name: str = COLLECTION_NAME,
        repos_dir: str = "./github_repos",
        batch_size: int = 1,
        batch_delay_s: float = 0.5,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.chunker = chunker or Chunker()
        self.walker = walker or RepositoryWalker()
        self.fetch = fetch
        self.collection_name = collection_name
        self.repos_dir = repos_dir
        self.batch_size = max(1, batch_size)
        self.batch_delay_s = batch_delay_s
        self._sleep = sleep or asyncio.sleep
        self._next_id = 0
        self._upserts = 0
        self._stop_requested = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        embedder: Any,
        store: Any,
        chunker: Optional[Chunker] = None,
        fetch: FetchFn = fetch_or_update,
    ) -> "IndexingOrchestrator":
        return cls(
            embedder=embedder,
            store=store,
            chunker=chunker or Chunker.from_config(settings.chunking),
            walker=RepositoryWalker(FileFilter.from_config(settings.filters)),
            fetch=fetch,
            collection_name=settings.store.collection_name,
            repos_dir=settings.indexing.repos_dir,
            batch_size=settings.indexing.batch_size,
            batch_delay_s=settings.indexing.batch_delay_s,
        )

    def request_stop(self) -> None:
        """Stop once the repository currently being indexed is finished."""
        self._stop_requested = True

    async def run(self, repositories: Sequence[RepositoryDescriptor]) -> IndexingReport:
        if not self.embedder.is_ready():
            raise EmbeddingNotInitializedError("Embedding model not initialized. Call initialize() first.")

        await self.chunker.initialize()
        vector_size = getattr(self.embedder, "dimension", None) or EMBED_DIMS
        await self.store.initialize_collection(self.collection_name, vector_size)

        self._next_id = 0
        self._upserts = 0
        self._stop_requested = False
        report = IndexingReport(collection=self.collection_name)

        for repo in repositories:
            if self._stop_requested:
                logger.info("Stop requested, not indexing remaining repositories")
                report.stopped_early = True
                break
            logger.info(f"Indexing repository {repo.name}...")
            report.repositories.append(await self._index_repository(repo))

        logger.info(
            f"Indexed {report.total_documents} documents into {report.total_points} points "
            f"in '{self.collection_name}'"
        )
        return report

    async def _index_repository(self, repo: RepositoryDescriptor) -> RepositoryStats:
        stats = RepositoryStats(name=repo.name)
        local_path = os.path.join(self.repos_dir, repo.name)
        try:
            if not await self.fetch(repo.url, local_path):
                logger.error(f"Could not fetch {repo.name} from {redact_url(repo.url)}, skipping")
                stats.status = "fetch_failed"
                return stats

            documents = self._counted(self.walker.walk(local_path, repo.name), stats)
            for chunk in self.chunker.split_documents(documents):
                stats.chunks += 1
                try:
                    vector = await self.embedder.embed(chunk.content)
                except EmbeddingNotInitializedError:
                    raise
                except EmbeddingError as exc:
                    stats.skipped_chunks += 1
                    logger.warning(f"Skipping chunk {chunk.chunk_index} of {repo.name}/{chunk.metadata.path}: {exc}")
                    continue

                await self._pace()
                point_id = self._next_id
                self._next_id += 1
                await self.store.upsert(self.collection_name, point_id, vector, chunk.as_payload())
                self._upserts += 1
                stats.points += 1
        except (EmbeddingNotInitializedError, ConfigurationError):
            raise
        except Exception as exc:
            logger.exception(f"Error processing {repo.name}: {exc}")
            stats.status = "failed"
            stats.error = str(exc)
            return stats

        if stats.documents == 0:
            logger.warning(f"No documents found for {repo.name}")
            stats.status = "empty"
        else:
            logger.info(f"{stats.documents} documents, {stats.points} points indexed from {repo.name}")
            stats.status = "indexed"
        return stats

    async def _pace(self) -> None:
        # Courtesy delay between batches, on top of the store's own rate limit.
        if self._upserts and self._upserts % self.batch_size == 0:
            logger.debug(f"Batch {self._upserts // self.batch_size} processed")
            if self.batch_delay_s > 0:
                await self._sleep(self.batch_delay_s)

    @staticmethod
    def _counted(documents: Iterable[Document], stats: RepositoryStats) -> Iterator[Document]:
        for document in documents:
            stats.documents += 1
            yield document
