"""
Embedding client for the Ollama embed API with enforced normalization.

Vectors come back from Ollama already pooled; this client checks their
dimension against the configured value and L2-normalizes them so the output
contract matches the local ``TransformersEmbedder``.
"""

from __future__ import annotations

import asyncio
import math
from typing import Any, Dict, List

import requests

from .config import EMBED_DIMS, OLLAMA_EMBED_URL
from .errors import EmbeddingError, EmbeddingNotInitializedError


def _l2_normalize(vec: List[float]) -> List[float]:
    """Return a new list with the vector scaled to unit length."""
    norm = math.sqrt(sum(x * x for x in vec))
    if norm == 0.0:
        return vec
    return [x / norm for x in vec]


class OllamaEmbedder:
    def __init__(
        self,
        model: str,
        dims: int = EMBED_DIMS,
        url: str = OLLAMA_EMBED_URL,
        timeout_s: float = 120.0,
        session: Any = None,
    ) -> None:
        self.model = model
        self.dims = dims
        self.url = url
        self.timeout_s = timeout_s
        self._session = session or requests.Session()
        self._ready = False

    @property
    def dimension(self) -> int:
        return self.dims

    async def initialize(self) -> None:
        """Probe the endpoint once so misconfiguration shows up at startup."""
        if self._ready:
            return
        await asyncio.to_thread(self._request, ["ping"])
        self._ready = True

    def is_ready(self) -> bool:
        return self._ready

    async def embed(self, text: str) -> List[float]:
        if not self._ready:
            raise EmbeddingNotInitializedError("Embedding model not initialized. Call initialize() first.")
        return (await asyncio.to_thread(self._request, [text]))[0]

    def _request(self, texts: List[str]) -> List[List[float]]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "input": texts,
            "dimensions": self.dims,
            "truncate": True,
        }
        try:
            resp = self._session.post(self.url, json=payload, timeout=self.timeout_s)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise EmbeddingError(f"Ollama embed request failed: {exc}") from exc

        try:
            data = resp.json()
        except ValueError as exc:
            raise EmbeddingError(f"Ollama embed response is not JSON: {exc}") from exc
        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        if not isinstance(embeddings, list) or len(embeddings) != len(texts):
            raise EmbeddingError("Ollama embed response missing 'embeddings' list")

        results: List[List[float]] = []
        for vec in embeddings:
            if not isinstance(vec, list):
                raise EmbeddingError("Unexpected embedding format")
            if len(vec) != self.dims:
                raise EmbeddingError(f"Unexpected embedding dimension {len(vec)} != {self.dims}")
            results.append(_l2_normalize([float(x) for x in vec]))
        return results
