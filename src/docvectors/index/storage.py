"""JSON artifact persistence."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator, List, Sequence

from docvectors.index.changes import PreviousIndex
from docvectors.models import IndexEntry

LOGGER = logging.getLogger(__name__)


class JsonIndexStore:
    """Reads and atomically replaces the semantic index artifact."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load_entries(self) -> List[IndexEntry]:
        """Return the entries of the current artifact.

        A missing artifact yields no entries. An unreadable or corrupt one is
        logged and also yields none, which forces a full rebuild.
        """
        if not self.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                raise ValueError("top-level value is not a list")
            return [IndexEntry.from_dict(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("Ignoring unreadable previous index %s: %s", self.path, exc)
            return []

    def load_previous(self) -> PreviousIndex:
        return PreviousIndex.from_entries(self.load_entries())

    @contextmanager
    def _atomic_writer(self) -> Iterator[IO[str]]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            suffix=".tmp",
            delete=False,
        )
        try:
            with handle:
                yield handle
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(handle.name, 0o644)
            os.replace(handle.name, self.path)
        except BaseException:
            Path(handle.name).unlink(missing_ok=True)
            raise

    def write(self, entries: Sequence[IndexEntry]) -> None:
        """Serialize `entries`, replacing the artifact only once fully written."""
        with self._atomic_writer() as handle:
            json.dump([entry.to_dict() for entry in entries], handle, separators=(",", ":"))
        LOGGER.info("Wrote %d entries to %s", len(entries), self.path)
