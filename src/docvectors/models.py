"""Core docvectors data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List


@dataclass(slots=True)
class Document:
    """A loaded Markdown document with its resolved identity."""

    slug: str
    title: str
    description: str
    draft: bool
    mtime: int
    body: str
    path: Path | None = None


@dataclass(slots=True)
class Fragment:
    """Paragraph of plain text addressable inside its document."""

    id: str
    slug: str
    index: int
    text: str


@dataclass(slots=True)
class IndexEntry:
    """One record of the semantic index artifact."""

    id: str
    slug: str
    title: str
    description: str
    mtime: int
    vector: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "mtime": self.mtime,
            "vector": self.vector,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexEntry":
        return cls(
            id=str(data["id"]),
            slug=str(data["slug"]),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            mtime=int(data["mtime"]),
            vector=[float(value) for value in data.get("vector", [])],
        )
