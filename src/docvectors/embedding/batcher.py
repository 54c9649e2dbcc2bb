"""Batched embedding of pending fragments.

Fragments from every document that needs recomputing are queued in the
order they are produced. Once the queue holds `batch_size * max_concurrency`
items the complete batches are dispatched to a small thread pool; results
are collected in submission order, so the produced entries always follow
the queue order (document enumeration order, then fragment order).
"""

from __future__ import annotations

import logging
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Deque, Iterable, List, Protocol, Sequence

import numpy as np

from docvectors.errors import EmbeddingProviderError
from docvectors.models import Document, Fragment, IndexEntry

LOGGER = logging.getLogger(__name__)

BATCH_SIZE = 16
MAX_CONCURRENCY = 2


class TextEmbedder(Protocol):
    def embed(self, texts: Sequence[str]) -> np.ndarray: ...


@dataclass(slots=True)
class PendingFragment:
    """Fragment waiting for its vector, with its document's context."""

    fragment: Fragment
    title: str
    description: str
    mtime: int

    @classmethod
    def from_document(cls, document: Document, fragment: Fragment) -> "PendingFragment":
        return cls(
            fragment=fragment,
            title=document.title,
            description=document.description,
            mtime=document.mtime,
        )

    @property
    def text(self) -> str:
        return f"{self.title}. {self.description}. {self.fragment.text}"

    def to_entry(self, vector: np.ndarray) -> IndexEntry:
        return IndexEntry(
            id=self.fragment.id,
            slug=self.fragment.slug,
            title=self.title,
            description=self.description,
            mtime=self.mtime,
            vector=np.asarray(vector, dtype="float32").tolist(),
        )


class EmbeddingBatcher:
    """Queue fragments and turn them into index entries batch by batch."""

    def __init__(
        self,
        embedder: TextEmbedder,
        *,
        batch_size: int = BATCH_SIZE,
        max_concurrency: int = MAX_CONCURRENCY,
        retries: int = 0,
        retry_backoff: float = 0.5,
    ) -> None:
        if batch_size < 1 or max_concurrency < 1:
            raise ValueError("batch_size and max_concurrency must be positive")
        self.embedder = embedder
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.retries = max(retries, 0)
        self.retry_backoff = retry_backoff
        self._queue: Deque[PendingFragment] = deque()
        self._entries: List[IndexEntry] = []
        self._executor: ThreadPoolExecutor | None = None
        self.batches_sent = 0

    @property
    def flush_threshold(self) -> int:
        return self.batch_size * self.max_concurrency

    @property
    def pending(self) -> int:
        return len(self._queue)

    def add(self, document: Document, fragments: Iterable[Fragment]) -> None:
        """Queue a document's fragments, flushing when the queue is full."""
        for fragment in fragments:
            self._queue.append(PendingFragment.from_document(document, fragment))

        if len(self._queue) >= self.flush_threshold:
            self._flush(final=False)

    def finish(self) -> List[IndexEntry]:
        """Embed whatever is still queued and return all entries in order."""
        try:
            self._flush(final=True)
        finally:
            self.close()
        return list(self._entries)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _take_batches(self, final: bool) -> List[List[PendingFragment]]:
        batches = []
        while len(self._queue) >= self.batch_size or (final and self._queue):
            count = min(self.batch_size, len(self._queue))
            batches.append([self._queue.popleft() for _ in range(count)])
        return batches

    def _flush(self, *, final: bool) -> None:
        batches = self._take_batches(final)
        if not batches:
            return

        LOGGER.debug(
            "Embedding %d batch(es), %d fragment(s) left queued",
            len(batches),
            len(self._queue),
        )
        if self.max_concurrency == 1 or len(batches) == 1:
            results = [self._embed_batch(batch) for batch in batches]
        else:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_concurrency, thread_name_prefix="embed"
                )
            # map() yields in submission order whatever the completion order.
            results = list(self._executor.map(self._embed_batch, batches))

        self.batches_sent += len(batches)
        for entries in results:
            self._entries.extend(entries)

    def _embed_batch(self, batch: List[PendingFragment]) -> List[IndexEntry]:
        texts = [item.text for item in batch]
        attempt = 0
        while True:
            try:
                vectors = np.asarray(self.embedder.embed(texts))
                break
            except Exception as exc:
                if attempt >= self.retries:
                    raise EmbeddingProviderError(
                        f"Embedding failed for batch starting at {batch[0].fragment.id}: {exc}"
                    ) from exc
                delay = self.retry_backoff * (2**attempt)
                LOGGER.warning(
                    "Embedding attempt %d failed (%s), retrying in %.2fs", attempt + 1, exc, delay
                )
                time.sleep(delay)
                attempt += 1

        if vectors.ndim != 2 or vectors.shape[0] != len(batch):
            raise EmbeddingProviderError(
                f"Provider returned {vectors.shape[0] if vectors.ndim else 0} vectors "
                f"for {len(batch)} texts"
            )
        return [item.to_entry(vector) for item, vector in zip(batch, vectors)]
