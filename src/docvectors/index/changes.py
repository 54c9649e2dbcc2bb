"""Change detection against the previous build."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from docvectors.models import Document, IndexEntry

LOGGER = logging.getLogger(__name__)


class Decision(enum.Enum):
    SKIP = "skip"
    RECOMPUTE = "recompute"
    PURGE = "purge"


@dataclass(slots=True)
class PreviousDocument:
    mtime: int
    entries: List[IndexEntry] = field(default_factory=list)


@dataclass(slots=True)
class PreviousIndex:
    """Per-slug view of the last successful build."""

    documents: Dict[str, PreviousDocument] = field(default_factory=dict)

    @classmethod
    def from_entries(cls, entries: Iterable[IndexEntry]) -> "PreviousIndex":
        documents: Dict[str, PreviousDocument] = {}
        for entry in entries:
            previous = documents.get(entry.slug)
            if previous is None:
                documents[entry.slug] = PreviousDocument(mtime=entry.mtime, entries=[entry])
            else:
                previous.mtime = max(previous.mtime, entry.mtime)
                previous.entries.append(entry)
        return cls(documents)

    def __len__(self) -> int:
        return len(self.documents)

    def __contains__(self, slug: object) -> bool:
        return slug in self.documents

    def mtime(self, slug: str) -> int | None:
        previous = self.documents.get(slug)
        return previous.mtime if previous is not None else None

    def entries(self, slug: str) -> List[IndexEntry]:
        previous = self.documents.get(slug)
        return list(previous.entries) if previous is not None else []


class ChangeDetector:
    """Decide per document whether its vectors must be recomputed."""

    def __init__(self, previous: PreviousIndex | None = None) -> None:
        self.previous = previous if previous is not None else PreviousIndex()

    def decide(self, document: Document) -> Decision:
        if document.draft:
            if document.slug in self.previous:
                LOGGER.info("Draft %s: dropping its previously indexed entries", document.slug)
            return Decision.PURGE
        if self.previous.mtime(document.slug) == document.mtime:
            return Decision.SKIP
        return Decision.RECOMPUTE

    def carried_entries(self, document: Document) -> List[IndexEntry]:
        """Entries carried verbatim into the new index for a skipped document."""
        if document.draft or self.previous.mtime(document.slug) != document.mtime:
            return []
        return self.previous.entries(document.slug)
