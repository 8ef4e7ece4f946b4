"""
Token-based chunking of documents into fixed-size overlapping segments.

Token boundaries come from the Hugging Face tokenizer of the embedding model so
chunk sizes line up with what the model actually sees.  Chunk text is cut from
the original string using the tokenizer's character offsets rather than by
decoding token ids, which keeps every character of the document (whitespace
included) in exactly the chunks that cover it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Iterator, List, Optional, Tuple

from transformers import AutoTokenizer

from .config import CHUNK_OVERLAP, CHUNK_TOKENS, EMBED_MODEL, ChunkingConfig
from .errors import ConfigurationError
from .models import Chunk, Document

logger = logging.getLogger(__name__)

Span = Tuple[int, int]


def token_windows(total_tokens: int, chunk_tokens: int, overlap_tokens: int) -> List[Span]:
    """Return the ``[start, end)`` token ranges covering ``total_tokens`` tokens.

    Each window holds at most ``chunk_tokens`` tokens and starts
    ``chunk_tokens - overlap_tokens`` after the previous one; the last window
    may be shorter.
    """
    if not 0 <= overlap_tokens < chunk_tokens:
        raise ValueError("overlap_tokens must be >= 0 and smaller than chunk_tokens")

    windows: List[Span] = []
    start = 0
    while start < total_tokens:
        end = min(start + chunk_tokens, total_tokens)
        windows.append((start, end))
        if end == total_tokens:
            break
        # Slide the window forward with overlap
        start = end - overlap_tokens
    return windows


class Chunker:
    def __init__(
        self,
        tokenizer: Any = None,
        chunk_tokens: int = CHUNK_TOKENS,
        overlap_tokens: int = CHUNK_OVERLAP,
        tokenizer_model: str = EMBED_MODEL,
    ) -> None:
        if not 0 <= overlap_tokens < chunk_tokens:
            raise ValueError("overlap_tokens must be >= 0 and smaller than chunk_tokens")
        self._tokenizer = tokenizer
        self.chunk_tokens = chunk_tokens
        self.overlap_tokens = overlap_tokens
        self.tokenizer_model = tokenizer_model

    @classmethod
    def from_config(cls, config: ChunkingConfig, tokenizer: Any = None) -> "Chunker":
        return cls(
            tokenizer=tokenizer,
            chunk_tokens=config.chunk_tokens,
            overlap_tokens=config.chunk_overlap,
            tokenizer_model=config.tokenizer_model,
        )

    async def initialize(self) -> None:
        """Load the tokenizer now; raises ``ConfigurationError`` if it cannot be loaded."""
        if self._tokenizer is None:
            await asyncio.to_thread(self._load_tokenizer)

    def _load_tokenizer(self) -> None:
        logger.info(f"Loading tokenizer {self.tokenizer_model}")
        try:
            self._tokenizer = AutoTokenizer.from_pretrained(self.tokenizer_model, use_fast=True)
        except Exception as exc:
            raise ConfigurationError(f"Cannot load tokenizer {self.tokenizer_model}: {exc}") from exc

    @property
    def tokenizer(self) -> Any:
        """Lazy-load the fast tokenizer on first access."""
        if self._tokenizer is None:
            self._load_tokenizer()
        return self._tokenizer

    def token_offsets(self, text: str) -> List[Span]:
        """Character span of every token in ``text``, without special tokens."""
        encoding = self.tokenizer(
            text,
            add_special_tokens=False,
            return_offsets_mapping=True,
            return_attention_mask=False,
            verbose=False,
        )
        return [(int(a), int(b)) for a, b in encoding["offset_mapping"]]

    def split(
        self,
        document: Document,
        chunk_tokens: Optional[int] = None,
        overlap_tokens: Optional[int] = None,
    ) -> List[Chunk]:
        """Split one document into overlapping token windows.

        A document shorter than the window yields a single chunk equal to the
        whole document; a whitespace-only document yields none.
        """
        size = self.chunk_tokens if chunk_tokens is None else chunk_tokens
        overlap = self.overlap_tokens if overlap_tokens is None else overlap_tokens

        text = document.content
        offsets = self.token_offsets(text)
        total = len(offsets)

        chunks: List[Chunk] = []
        for start, end in token_windows(total, size, overlap):
            char_start = 0 if start == 0 else offsets[start][0]
            char_end = len(text) if end == total else offsets[end][0]
            content = text[char_start:max(char_start, char_end)]
            if not content:
                continue
            chunks.append(
                Chunk(
                    content=content,
                    metadata=document.metadata,
                    chunk_index=len(chunks),
                    token_start=start,
                    token_end=end,
                    char_start=char_start,
                    char_end=char_start + len(content),
                )
            )
        return chunks

    def split_documents(self, documents: Iterable[Document]) -> Iterator[Chunk]:
        """Chunk a stream of documents, skipping any document that cannot be tokenized."""
        for document in documents:
            try:
                chunks = self.split(document)
            except ConfigurationError:
                raise
            except Exception as exc:
                logger.warning(
                    f"Failed to chunk {document.metadata.repo}/{document.metadata.path}: {exc}"
                )
                continue
            yield from chunks
