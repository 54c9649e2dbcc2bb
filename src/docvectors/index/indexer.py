"""Document indexing pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from docvectors.embedding.batcher import BATCH_SIZE, MAX_CONCURRENCY, EmbeddingBatcher, TextEmbedder
from docvectors.errors import MalformedDocumentError
from docvectors.index.assembler import IndexAssembler
from docvectors.index.changes import ChangeDetector, Decision, PreviousIndex
from docvectors.index.storage import JsonIndexStore
from docvectors.ingestion.markdown_loader import load_document, markdown_to_plain
from docvectors.utils.files import iter_markdown_paths
from docvectors.utils.text import MIN_FRAGMENT_CHARS, chunk_paragraphs

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class BuildStats:
    recomputed: int = 0
    skipped: int = 0
    purged: int = 0
    failed: int = 0
    fragments: int = 0
    entries: int = 0
    processed_files: list[Path] = field(default_factory=list)

    def increment(self, status: str, path: Path) -> None:
        if status == "recomputed":
            self.recomputed += 1
        elif status == "skipped":
            self.skipped += 1
        elif status == "purged":
            self.purged += 1
        else:
            self.failed += 1
        self.processed_files.append(path)


class Indexer:
    """Coordinates an incremental build of the semantic index.

    Documents are visited in enumeration order. Unchanged documents keep
    their previous entries, drafts are dropped, everything else is chunked
    and embedded. The artifact is written only after every batch succeeded.
    """

    def __init__(
        self,
        embedder: TextEmbedder,
        store: JsonIndexStore,
        *,
        batch_size: int = BATCH_SIZE,
        max_concurrency: int = MAX_CONCURRENCY,
        min_chars: int = MIN_FRAGMENT_CHARS,
        private_prefix: str = "_",
        retries: int = 0,
        on_start: Optional[Callable[[int], None]] = None,
        on_progress: Optional[Callable[[Path], None]] = None,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.min_chars = min_chars
        self.private_prefix = private_prefix
        self.retries = retries
        self.on_start = on_start
        self.on_progress = on_progress

    def find_documents(self, root: Path) -> List[Path]:
        return list(iter_markdown_paths(root, private_prefix=self.private_prefix))

    def load_previous(self) -> PreviousIndex:
        previous = self.store.load_previous()
        dimension = getattr(self.embedder, "dimension", None)
        if not isinstance(dimension, int) or not len(previous):
            return previous

        for slug in previous.documents:
            for entry in previous.entries(slug):
                if len(entry.vector) != dimension:
                    LOGGER.warning(
                        "Previous index has %d-dimensional vectors, model produces %d; "
                        "rebuilding everything",
                        len(entry.vector),
                        dimension,
                    )
                    return PreviousIndex()
        return previous

    def build(self, root: Path) -> BuildStats:
        """Index every Markdown document under `root` and write the artifact.

        Raises:
            SourceAccessError: a document cannot be listed or read.
            EmbeddingProviderError: the embedding model failed on a batch.
            IndexAssemblyError: the merged entries are inconsistent.
        """
        paths = self.find_documents(root)
        if not paths:
            LOGGER.warning("No Markdown documents found under %s", root)
        if self.on_start is not None:
            self.on_start(len(paths))

        detector = ChangeDetector(self.load_previous())
        assembler = IndexAssembler()
        batcher = EmbeddingBatcher(
            self.embedder,
            batch_size=self.batch_size,
            max_concurrency=self.max_concurrency,
            retries=self.retries,
        )
        stats = BuildStats()
        seen: dict[str, Path] = {}

        try:
            for path in paths:
                status = self._index_single(path, root, detector, assembler, batcher, seen, stats)
                stats.increment(status, path)
                if self.on_progress is not None:
                    self.on_progress(path)
            fresh = batcher.finish()
        finally:
            batcher.close()

        entries = assembler.assemble(fresh)
        self.store.write(entries)
        stats.entries = len(entries)
        LOGGER.info(
            "Recomputed %d, skipped %d, purged %d, failed %d documents (%d batches)",
            stats.recomputed,
            stats.skipped,
            stats.purged,
            stats.failed,
            batcher.batches_sent,
        )
        return stats

    def _index_single(
        self,
        path: Path,
        root: Path,
        detector: ChangeDetector,
        assembler: IndexAssembler,
        batcher: EmbeddingBatcher,
        seen: dict[str, Path],
        stats: BuildStats,
    ) -> str:
        """Route one document and return its status."""
        try:
            document = load_document(path, root)
            if document.slug in seen:
                raise MalformedDocumentError(
                    path, f"slug {document.slug!r} already used by {seen[document.slug]}"
                )
        except MalformedDocumentError as exc:
            LOGGER.warning("Skipping document: %s", exc)
            return "failed"
        seen[document.slug] = path

        decision = detector.decide(document)
        if decision is Decision.PURGE:
            LOGGER.debug("Draft, not indexed: %s", document.slug)
            return "purged"

        if decision is Decision.SKIP:
            LOGGER.debug("Unchanged: %s", document.slug)
            assembler.add_carried(document.slug, detector.carried_entries(document))
            return "skipped"

        fragments = chunk_paragraphs(
            markdown_to_plain(document.body), document.slug, min_chars=self.min_chars
        )
        if not fragments:
            LOGGER.debug("No fragments long enough in %s", document.slug)
        assembler.add_pending(document.slug)
        batcher.add(document, fragments)
        stats.fragments += len(fragments)
        return "recomputed"
