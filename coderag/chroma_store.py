"""
Chroma-backed vector store client.

Owns the lifecycle of a named collection (reset, then populate) and wraps the
two data-path calls the pipeline needs:

* ``upsert`` writes one point at a time behind a fixed inter-call delay, and
  retries a bounded number of times when the failure is a transient socket
  error.  Any other failure surfaces immediately.
* ``search`` returns the closest points by cosine similarity with their full
  payload, best first.

Chroma runs either embedded (``PersistentClient``) or against a Chroma server
(``HttpClient``).  Collections are created with ``hnsw:space=cosine`` so the
L2-normalized vectors produced by the embedders compare by cosine similarity.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

import chromadb
from chromadb.config import Settings
from chromadb.errors import ChromaError, NotFoundError

from .config import EMBED_DIMS, StoreConfig
from .errors import (
    CollectionNotFoundError,
    UpsertError,
    VectorDimensionError,
    VectorStoreError,
    is_transient_network_error,
)
from .models import PointId, SearchHit

logger = logging.getLogger(__name__)

# Embedded clients may still report a missing collection as ValueError.
_MISSING_COLLECTION_ERRORS = (ValueError, NotFoundError)


def get_client(
    chroma_host: str = "",
    chroma_port: int = 8000,
    persist_dir: Optional[str] = "data/chroma",
) -> Any:
    """Return a Chroma client for a server when ``chroma_host`` is set, else embedded."""
    if chroma_host:
        logger.info(f"Chroma: connected to {chroma_host}:{chroma_port}")
        return chromadb.HttpClient(
            host=chroma_host, port=chroma_port, settings=Settings(anonymized_telemetry=False)
        )
    if persist_dir:
        Path(persist_dir).mkdir(parents=True, exist_ok=True)
        logger.info(f"Chroma: persistent at {persist_dir}")
        return chromadb.PersistentClient(path=persist_dir, settings=Settings(anonymized_telemetry=False))
    logger.info("Chroma: ephemeral (in-memory)")
    return chromadb.EphemeralClient(settings=Settings(anonymized_telemetry=False))


def payload_size(point_id: PointId, vector: Sequence[float], payload: Mapping[str, Any]) -> int:
    """Serialized byte length of the point as it goes over the wire."""
    body = json.dumps({"id": point_id, "vector": list(vector), "payload": payload}, default=str)
    return len(body.encode("utf-8"))


def _to_metadata(payload: Mapping[str, Any]) -> Dict[str, Any]:
    # Chroma metadata values must be scalars; nested values are stored as JSON.
    metadata: Dict[str, Any] = {}
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            metadata[key] = value
        elif isinstance(value, datetime):
            metadata[key] = value.isoformat()
        else:
            metadata[key] = json.dumps(value, default=str)
    return metadata


def _modified_epoch(payload: Mapping[str, Any]) -> int:
    modified = payload.get("modified")
    if isinstance(modified, datetime):
        return int(modified.timestamp())
    if isinstance(modified, str):
        try:
            return int(datetime.fromisoformat(modified).timestamp())
        except ValueError:
            return 0
    if isinstance(modified, (int, float)):
        return int(modified)
    return 0


class ChromaVectorStore:
    """Vector store client with collection reset, paced upserts and search."""

    def __init__(
        self,
        client: Any = None,
        upsert_delay_s: float = 0.1,
        retry_backoff_s: float = 2.0,
        max_upsert_attempts: int = 2,
        large_payload_bytes: int = 10_000,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        if max_upsert_attempts < 1:
            raise ValueError("max_upsert_attempts must be at least 1")
        self._client = client if client is not None else get_client()
        self.upsert_delay_s = upsert_delay_s
        self.retry_backoff_s = retry_backoff_s
        self.max_upsert_attempts = max_upsert_attempts
        self.large_payload_bytes = large_payload_bytes
        self._sleep = sleep or asyncio.sleep
        self._collections: Dict[str, Any] = {}

    @classmethod
    def from_config(cls, config: StoreConfig, client: Any = None) -> "ChromaVectorStore":
        if client is None:
            client = get_client(config.chroma_host, config.chroma_port, config.persist_dir)
        return cls(
            client=client,
            upsert_delay_s=config.upsert_delay_s,
            retry_backoff_s=config.retry_backoff_s,
            max_upsert_attempts=config.max_upsert_attempts,
            large_payload_bytes=config.large_payload_bytes,
        )

    async def initialize_collection(self, collection_name: str, vector_size: int = EMBED_DIMS) -> None:
        """Drop ``collection_name`` if present and create it empty.

        A missing collection is the normal state on a first run and is only
        logged at debug level.
        """
        self._collections.pop(collection_name, None)
        try:
            await asyncio.to_thread(self._client.delete_collection, collection_name)
            logger.info(f"Existing collection '{collection_name}' deleted")
        except _MISSING_COLLECTION_ERRORS as exc:
            logger.debug(f"No existing collection '{collection_name}' to delete: {exc}")
        except ChromaError as exc:
            raise VectorStoreError(f"Failed to reset collection '{collection_name}': {exc}") from exc

        try:
            collection = await asyncio.to_thread(
                self._client.create_collection,
                name=collection_name,
                metadata={"hnsw:space": "cosine", "dimension": vector_size},
                embedding_function=None,
            )
        except Exception as exc:
            raise VectorStoreError(f"Failed to create collection '{collection_name}': {exc}") from exc
        self._collections[collection_name] = collection
        logger.info(f"Collection '{collection_name}' created (dim={vector_size}, cosine)")

    async def _get_collection(self, collection_name: str, use_cache: bool = True) -> Any:
        if use_cache and collection_name in self._collections:
            return self._collections[collection_name]
        try:
            collection = await asyncio.to_thread(
                self._client.get_collection, name=collection_name, embedding_function=None
            )
        except _MISSING_COLLECTION_ERRORS as exc:
            raise CollectionNotFoundError(collection_name) from exc
        except ChromaError as exc:
            raise VectorStoreError(f"Cannot open collection '{collection_name}': {exc}") from exc
        self._collections[collection_name] = collection
        return collection

    async def upsert(
        self,
        collection_name: str,
        point_id: PointId,
        vector: Sequence[float],
        payload: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """Insert or replace a single point keyed by ``point_id``.

        ``_size`` (serialized size) and ``_timestamp`` (source modification
        time, epoch seconds) are added to the stored payload.  Oversized points
        are logged but still written.
        """
        vector = [float(x) for x in vector]
        size = payload_size(point_id, vector, payload)
        if size > self.large_payload_bytes:
            logger.warning(f"Large document detected ({size} bytes) for point {point_id}, splitting recommended")

        stored = dict(payload)
        stored["_size"] = size
        stored["_timestamp"] = _modified_epoch(payload)
        document = str(stored.pop("content", ""))
        metadata = _to_metadata(stored)

        collection = await self._get_collection(collection_name)
        expected = (collection.metadata or {}).get("dimension")
        if expected is not None and int(expected) != len(vector):
            raise VectorDimensionError(int(expected), len(vector))

        for attempt in range(1, self.max_upsert_attempts + 1):
            await self._sleep(self.upsert_delay_s)
            try:
                await asyncio.to_thread(
                    collection.upsert,
                    ids=[str(point_id)],
                    embeddings=[vector],
                    documents=[document],
                    metadatas=[metadata],
                )
            except Exception as exc:
                if not is_transient_network_error(exc):
                    raise UpsertError(point_id, str(exc)) from exc
                if attempt == self.max_upsert_attempts:
                    logger.error(f"Socket error persisted after {attempt} attempts for point {point_id} ({size} bytes)")
                    raise UpsertError(point_id, str(exc)) from exc
                backoff = self.retry_backoff_s * (2 ** (attempt - 1))
                logger.warning(f"Socket error on point {point_id} ({size} bytes), retrying in {backoff:g}s")
                await self._sleep(backoff)
                continue

            logger.debug(f"Point {point_id} upserted ({size} bytes)")
            return {"id": point_id, "size": size, "attempts": attempt}

        raise UpsertError(point_id, "no attempt made")  # pragma: no cover

    async def search(
        self,
        collection_name: str,
        vector: Sequence[float],
        limit: int = 5,
    ) -> List[SearchHit]:
        """Return up to ``limit`` points ordered by descending cosine similarity."""
        collection = await self._get_collection(collection_name, use_cache=False)
        try:
            total = await asyncio.to_thread(collection.count)
            n = min(limit, total)
            if n <= 0:
                return []
            results = await asyncio.to_thread(
                collection.query,
                query_embeddings=[[float(x) for x in vector]],
                n_results=n,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            logger.error(f"Search in '{collection_name}' failed: {exc}")
            raise VectorStoreError(f"Search in '{collection_name}' failed: {exc}") from exc

        hits: List[SearchHit] = []
        ids = results["ids"][0] if results.get("ids") else []
        for i, point_id in enumerate(ids):
            distance = results["distances"][0][i]
            payload = dict(results["metadatas"][0][i] or {})
            payload["content"] = results["documents"][0][i] or ""
            payload["id"] = point_id
            # cosine distance -> similarity
            hits.append(SearchHit(score=1.0 - float(distance), payload=payload))

        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits

    async def count(self, collection_name: str) -> int:
        collection = await self._get_collection(collection_name, use_cache=False)
        return await asyncio.to_thread(collection.count)
