"""Tests for EmbeddingBatcher."""

from __future__ import annotations

import threading
import time
from typing import Sequence
from unittest.mock import Mock, patch

import numpy as np
import pytest

from conftest import FakeEmbedder
from docvectors.embedding.batcher import EmbeddingBatcher, PendingFragment
from docvectors.errors import EmbeddingProviderError
from docvectors.models import Document, Fragment
from docvectors.utils.text import fragment_id


def make_document(slug: str, *, title: str = "Title", description: str = "Desc") -> Document:
    return Document(slug=slug, title=title, description=description, draft=False, mtime=7, body="")


def make_fragments(slug: str, count: int) -> list[Fragment]:
    return [
        Fragment(id=fragment_id(slug, i), slug=slug, index=i, text=f"{slug} paragraph {i}")
        for i in range(count)
    ]


class TestPendingFragment:
    """Test PendingFragment."""

    def test_text_prepends_context(self) -> None:
        """Title and description are prepended to the paragraph."""
        document = make_document("a", title="Guide", description="How to")
        pending = PendingFragment.from_document(document, make_fragments("a", 1)[0])

        assert pending.text == "Guide. How to. a paragraph 0"

    def test_to_entry(self) -> None:
        """Entries copy document metadata and widen the vector to floats."""
        document = make_document("a")
        pending = PendingFragment.from_document(document, make_fragments("a", 1)[0])

        entry = pending.to_entry(np.array([0.6, 0.8], dtype="float32"))

        assert entry.id == "a#para-0"
        assert entry.slug == "a"
        assert entry.mtime == 7
        assert all(isinstance(v, float) for v in entry.vector)
        assert entry.vector == pytest.approx([0.6, 0.8])


class TestEmbeddingBatcher:
    """Test batching, ordering and failure handling."""

    def test_rejects_invalid_sizes(self, fake_embedder: FakeEmbedder) -> None:
        """Batch size and concurrency must be positive."""
        with pytest.raises(ValueError):
            EmbeddingBatcher(fake_embedder, batch_size=0)
        with pytest.raises(ValueError):
            EmbeddingBatcher(fake_embedder, max_concurrency=0)

    def test_no_flush_below_threshold(self, fake_embedder: FakeEmbedder) -> None:
        """Nothing is embedded until the queue reaches batch_size * max_concurrency."""
        batcher = EmbeddingBatcher(fake_embedder, batch_size=16, max_concurrency=2)
        batcher.add(make_document("a"), make_fragments("a", 31))

        assert fake_embedder.calls == []
        assert batcher.pending == 31

    def test_flush_at_threshold(self, fake_embedder: FakeEmbedder) -> None:
        """Reaching the threshold embeds full batches."""
        batcher = EmbeddingBatcher(fake_embedder, batch_size=16, max_concurrency=2)
        batcher.add(make_document("a"), make_fragments("a", 32))

        assert [len(call) for call in fake_embedder.calls] == [16, 16]
        assert batcher.pending == 0
        batcher.close()

    def test_partial_batch_waits_for_finish(self, fake_embedder: FakeEmbedder) -> None:
        """Leftovers smaller than a batch stay queued until finish()."""
        batcher = EmbeddingBatcher(fake_embedder, batch_size=4, max_concurrency=2)
        batcher.add(make_document("a"), make_fragments("a", 10))

        assert batcher.pending == 2
        entries = batcher.finish()

        assert len(entries) == 10
        assert [len(call) for call in fake_embedder.calls] == [4, 4, 2]

    def test_order_preserved_across_documents(self, fake_embedder: FakeEmbedder) -> None:
        """Entries follow push order: documents, then fragments."""
        batcher = EmbeddingBatcher(fake_embedder, batch_size=3, max_concurrency=2)
        batcher.add(make_document("a"), make_fragments("a", 4))
        batcher.add(make_document("b"), make_fragments("b", 5))
        batcher.add(make_document("c"), make_fragments("c", 2))

        entries = batcher.finish()

        expected = [f.id for f in make_fragments("a", 4) + make_fragments("b", 5) + make_fragments("c", 2)]
        assert [e.id for e in entries] == expected

    def test_vectors_aligned_with_inputs(self, fake_embedder: FakeEmbedder) -> None:
        """The i-th vector belongs to the i-th fragment."""
        batcher = EmbeddingBatcher(fake_embedder, batch_size=2, max_concurrency=1)
        document = make_document("a")
        fragments = make_fragments("a", 3)
        batcher.add(document, fragments)

        entries = batcher.finish()

        for fragment, entry in zip(fragments, entries):
            text = PendingFragment.from_document(document, fragment).text
            expected = FakeEmbedder().embed([text])[0]
            assert entry.vector == pytest.approx(expected.tolist())

    def test_unit_norm_vectors(self, fake_embedder: FakeEmbedder) -> None:
        """Vectors keep the provider's dimension and unit length."""
        batcher = EmbeddingBatcher(fake_embedder)
        batcher.add(make_document("a"), make_fragments("a", 5))

        for entry in batcher.finish():
            assert len(entry.vector) == fake_embedder.dimension
            assert np.linalg.norm(entry.vector) == pytest.approx(1.0, abs=1e-5)

    def test_order_preserved_when_batches_finish_out_of_order(self) -> None:
        """A slow first batch does not let later results overtake it."""

        class SlowFirst(FakeEmbedder):
            def __init__(self) -> None:
                super().__init__()
                self._lock = threading.Lock()
                self._first = True

            def embed(self, texts: Sequence[str]) -> np.ndarray:
                with self._lock:
                    first, self._first = self._first, False
                if first:
                    time.sleep(0.05)
                return super().embed(texts)

        batcher = EmbeddingBatcher(SlowFirst(), batch_size=2, max_concurrency=2)
        batcher.add(make_document("a"), make_fragments("a", 4))

        entries = batcher.finish()

        assert [e.id for e in entries] == [f.id for f in make_fragments("a", 4)]

    def test_batches_sent_counts_concurrent_flushes(self, fake_embedder: FakeEmbedder) -> None:
        """Batches embedded on worker threads are all counted."""
        batcher = EmbeddingBatcher(fake_embedder, batch_size=4, max_concurrency=2)
        batcher.add(make_document("a"), make_fragments("a", 10))

        entries = batcher.finish()

        assert len(entries) == 10
        assert batcher.batches_sent == 3
        assert batcher.batches_sent == len(fake_embedder.calls)

    def test_empty_finish(self, fake_embedder: FakeEmbedder) -> None:
        """No fragments means no provider calls."""
        batcher = EmbeddingBatcher(fake_embedder)
        assert batcher.finish() == []
        assert fake_embedder.calls == []

    def test_provider_error_is_fatal(self) -> None:
        """Provider exceptions surface as EmbeddingProviderError."""
        embedder = Mock()
        embedder.embed.side_effect = RuntimeError("inference failed")
        batcher = EmbeddingBatcher(embedder, batch_size=2, max_concurrency=1)
        batcher.add(make_document("a"), make_fragments("a", 1))

        with pytest.raises(EmbeddingProviderError, match="inference failed"):
            batcher.finish()

    def test_length_mismatch_is_fatal(self) -> None:
        """A provider returning the wrong number of vectors aborts."""
        embedder = Mock()
        embedder.embed.return_value = np.zeros((1, 4), dtype="float32")
        batcher = EmbeddingBatcher(embedder, batch_size=4, max_concurrency=1)
        batcher.add(make_document("a"), make_fragments("a", 3))

        with pytest.raises(EmbeddingProviderError):
            batcher.finish()

    @patch("docvectors.embedding.batcher.time.sleep")
    def test_retry_then_succeed(self, mock_sleep: Mock) -> None:
        """Transient failures are retried with exponential backoff."""
        fake = FakeEmbedder()
        embedder = Mock()
        embedder.embed.side_effect = [RuntimeError("busy"), RuntimeError("busy"), fake.embed(["x"])]
        batcher = EmbeddingBatcher(
            embedder, batch_size=1, max_concurrency=1, retries=2, retry_backoff=0.1
        )
        batcher.add(make_document("a"), make_fragments("a", 1))

        entries = batcher.finish()

        assert len(entries) == 1
        assert embedder.embed.call_count == 3
        assert [call.args[0] for call in mock_sleep.call_args_list] == pytest.approx([0.1, 0.2])

    @patch("docvectors.embedding.batcher.time.sleep")
    def test_retries_exhausted(self, mock_sleep: Mock) -> None:
        """After the last retry the error is fatal."""
        embedder = Mock()
        embedder.embed.side_effect = RuntimeError("down")
        batcher = EmbeddingBatcher(embedder, batch_size=1, max_concurrency=1, retries=1)
        batcher.add(make_document("a"), make_fragments("a", 1))

        with pytest.raises(EmbeddingProviderError):
            batcher.finish()
        assert embedder.embed.call_count == 2
