"""
Local embedding provider built on Hugging Face ``transformers``.

The model's token-level hidden states are mean-pooled under the attention
mask and L2-normalized, so callers always receive unit-length vectors that are
ready for cosine similarity.  Loading and inference are blocking and run in a
worker thread; the public methods are coroutines.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

import torch
import torch.nn.functional as F
from transformers import AutoModel, AutoTokenizer

from .config import EMBED_MODEL, EmbeddingConfig
from .errors import ConfigurationError, EmbeddingError, EmbeddingNotInitializedError

logger = logging.getLogger(__name__)


def mean_pool(last_hidden_state: torch.Tensor, attention_mask: torch.Tensor) -> torch.Tensor:
    """Average token embeddings, ignoring padding positions."""
    mask = attention_mask.unsqueeze(-1).to(last_hidden_state.dtype)
    summed = (last_hidden_state * mask).sum(dim=1)
    counts = mask.sum(dim=1).clamp(min=1e-9)
    return summed / counts


class TransformersEmbedder:
    """Embedding client for a Hugging Face encoder model.

    ``initialize`` must be awaited once before ``embed``.  Calling ``embed``
    first raises ``EmbeddingNotInitializedError`` rather than failing deep
    inside the model call.
    """

    def __init__(
        self,
        model_name: str = EMBED_MODEL,
        device: Optional[str] = None,
        max_length: Optional[int] = None,
    ) -> None:
        self.model_name = model_name
        self.device = device or ("cuda" if torch.cuda.is_available() else "cpu")
        self.max_length = max_length
        self._tokenizer: Any = None
        self._model: Any = None

    async def initialize(self) -> None:
        if self.is_ready():
            return
        logger.info(f"Loading embedding model: {self.model_name}")
        try:
            await asyncio.to_thread(self._load)
        except Exception as exc:
            logger.error(f"Failed to load embedding model {self.model_name}: {exc}")
            raise EmbeddingError(f"Embedding model initialization failed: {exc}") from exc
        logger.info("Embedding model loaded successfully")
        if self.max_length and self.max_length > self.input_limit:
            logger.warning(
                f"Chunks of up to {self.max_length} tokens exceed the {self.input_limit}-token input "
                f"limit of {self.model_name}; the tail of longer chunks is not embedded"
            )

    def _load(self) -> None:
        tokenizer = AutoTokenizer.from_pretrained(self.model_name, use_fast=True)
        model = AutoModel.from_pretrained(self.model_name)
        model.to(self.device)
        model.eval()
        self._tokenizer = tokenizer
        self._model = model

    def is_ready(self) -> bool:
        return self._model is not None and self._tokenizer is not None

    @property
    def input_limit(self) -> int:
        """Longest input, in tokens, the loaded tokenizer accepts."""
        limit = getattr(self._tokenizer, "model_max_length", 512)
        # Some tokenizers report a sentinel ~1e30 when no limit is configured.
        return 512 if limit > 100_000 else int(limit)

    @property
    def dimension(self) -> int:
        if not self.is_ready():
            raise EmbeddingNotInitializedError("Embedding model not initialized. Call initialize() first.")
        return int(self._model.config.hidden_size)

    async def embed(self, text: str) -> List[float]:
        """Return the normalized embedding of ``text``."""
        if not self.is_ready():
            raise EmbeddingNotInitializedError("Embedding model not initialized. Call initialize() first.")
        try:
            return await asyncio.to_thread(self._embed_sync, text)
        except Exception as exc:
            raise EmbeddingError(f"Failed to generate embedding: {exc}") from exc

    def _embed_sync(self, text: str) -> List[float]:
        max_length = min(self.max_length, self.input_limit) if self.max_length else self.input_limit
        encoded = self._tokenizer(
            [text],
            padding=True,
            truncation=True,
            max_length=max_length,
            return_tensors="pt",
        )
        encoded = {key: value.to(self.device) for key, value in encoded.items()}
        with torch.no_grad():
            output = self._model(**encoded)
        pooled = mean_pool(output.last_hidden_state, encoded["attention_mask"])
        normalized = F.normalize(pooled, p=2, dim=1)
        return normalized[0].cpu().tolist()


def build_embedder(config: EmbeddingConfig, max_length: Optional[int] = None) -> Any:
    """Create the embedding client selected by ``config.provider``.

    ``max_length`` is the longest chunk, in tokens, the client should embed
    whole; the local model still caps it at its own input limit.
    """
    provider = config.provider.lower()
    if provider == "transformers":
        return TransformersEmbedder(model_name=config.model, max_length=max_length)
    if provider == "ollama":
        from .ollama_embedder import OllamaEmbedder

        return OllamaEmbedder(
            model=config.model,
            dims=config.dims,
            url=config.ollama_url,
            timeout_s=config.timeout_s,
        )
    raise ConfigurationError(
        f"Unknown embedding provider: {config.provider!r}. Supported: 'transformers', 'ollama'"
    )
