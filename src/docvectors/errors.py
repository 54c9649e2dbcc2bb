"""Exceptions raised while building the semantic index."""

from __future__ import annotations

from pathlib import Path


class DocVectorsError(Exception):
    """Base class for every docvectors failure."""


class SourceAccessError(DocVectorsError):
    """A document could not be listed, stat'ed or read. Aborts the build."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Cannot access {path}: {reason}")
        self.path = path


class MalformedDocumentError(DocVectorsError):
    """A document could not be parsed. The build skips it and carries on."""

    def __init__(self, path: Path | None, reason: str) -> None:
        where = str(path) if path is not None else "<document>"
        super().__init__(f"Malformed document {where}: {reason}")
        self.path = path


class EmbeddingProviderError(DocVectorsError):
    """Model loading or inference failed. Aborts the build."""


class IndexAssemblyError(DocVectorsError):
    """Assembled entries have duplicate ids or mixed dimensions. Aborts the build."""
