"""Utility helpers for working with files."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

from docvectors.errors import SourceAccessError

MARKDOWN_SUFFIXES = (".md", ".mdx")


def iter_markdown_paths(root: Path, *, private_prefix: str = "_") -> Iterator[Path]:
    """Yield Markdown files under `root` in sorted order.

    Files whose name starts with `private_prefix` are skipped.
    """
    if not root.exists():
        raise SourceAccessError(root, "corpus directory does not exist")
    if root.is_file():
        candidates = [root]
    else:
        try:
            candidates = sorted(child for child in root.rglob("*") if child.is_file())
        except OSError as exc:
            raise SourceAccessError(root, str(exc)) from exc

    for path in candidates:
        if path.suffix.lower() not in MARKDOWN_SUFFIXES:
            continue
        if private_prefix and path.name.startswith(private_prefix):
            continue
        yield path


def mtime_millis(path: Path) -> int:
    """Last modification time of `path` in integer epoch milliseconds."""
    try:
        return path.stat().st_mtime_ns // 1_000_000
    except OSError as exc:
        raise SourceAccessError(path, str(exc)) from exc
