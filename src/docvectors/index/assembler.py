"""Merge carried-over and freshly computed entries into the final index."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Tuple

from docvectors.errors import IndexAssemblyError
from docvectors.models import IndexEntry

LOGGER = logging.getLogger(__name__)


class IndexAssembler:
    """Keep one slot per indexed document, in enumeration order.

    A slot either holds entries carried from the previous build or waits for
    entries produced by the embedding batcher. `assemble` fills the waiting
    slots so the result reads as if every document had been embedded fresh.
    """

    def __init__(self) -> None:
        self._slots: List[Tuple[str, List[IndexEntry] | None]] = []
        self._slugs: set[str] = set()

    def __len__(self) -> int:
        return len(self._slots)

    def _claim(self, slug: str) -> None:
        if slug in self._slugs:
            raise IndexAssemblyError(f"Document {slug!r} added twice")
        self._slugs.add(slug)

    def add_carried(self, slug: str, entries: Iterable[IndexEntry]) -> None:
        self._claim(slug)
        self._slots.append((slug, list(entries)))

    def add_pending(self, slug: str) -> None:
        self._claim(slug)
        self._slots.append((slug, None))

    def assemble(self, fresh: Iterable[IndexEntry] = ()) -> List[IndexEntry]:
        """Return every entry grouped by document, then by fragment order."""
        produced: Dict[str, List[IndexEntry]] = {}
        for entry in fresh:
            produced.setdefault(entry.slug, []).append(entry)

        pending = {slug for slug, carried in self._slots if carried is None}
        unexpected = set(produced) - pending
        if unexpected:
            raise IndexAssemblyError(
                f"Fresh entries for documents that were not scheduled: {sorted(unexpected)}"
            )

        result: List[IndexEntry] = []
        for slug, carried in self._slots:
            result.extend(carried if carried is not None else produced.get(slug, []))

        _validate(result)
        LOGGER.debug("Assembled %d entries from %d documents", len(result), len(self._slots))
        return result


def _validate(entries: List[IndexEntry]) -> None:
    seen: set[str] = set()
    dimension: int | None = None
    for entry in entries:
        if entry.id in seen:
            raise IndexAssemblyError(f"Duplicate entry id {entry.id!r}")
        seen.add(entry.id)

        if dimension is None:
            dimension = len(entry.vector)
        elif len(entry.vector) != dimension:
            raise IndexAssemblyError(
                f"Entry {entry.id!r} has {len(entry.vector)} dimensions, expected {dimension}"
            )
