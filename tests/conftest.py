"""Shared fixtures: a deterministic fake embedder and a Markdown corpus writer."""

from __future__ import annotations

import os
import zlib
from pathlib import Path
from typing import Callable, List, Sequence

import numpy as np
import pytest
import yaml

FAKE_DIMENSION = 8


class FakeEmbedder:
    """Stands in for `EmbeddingModel`: unit vectors derived from the text."""

    def __init__(self, dimension: int = FAKE_DIMENSION) -> None:
        self.dimension = dimension
        self.calls: List[List[str]] = []

    @property
    def texts(self) -> List[str]:
        return [text for call in self.calls for text in call]

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        batch = list(texts)
        self.calls.append(batch)
        rows = []
        for text in batch:
            rng = np.random.default_rng(zlib.crc32(text.encode("utf-8")))
            vector = rng.normal(size=self.dimension)
            rows.append(vector / np.linalg.norm(vector))
        return np.asarray(rows, dtype="float32").reshape(len(batch), self.dimension)


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


def paragraph(label: str) -> str:
    """A paragraph comfortably above the minimum fragment length."""
    return f"{label} is discussed here in enough detail to be worth embedding on its own."


@pytest.fixture
def write_markdown(tmp_path: Path) -> Callable[..., Path]:
    """Write `<tmp>/content/<relative>` with optional front matter and a fixed mtime."""
    root = tmp_path / "content"
    root.mkdir()

    def _write(relative: str, body: str, *, mtime_ms: int = 1_000_000, **front: object) -> Path:
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        header = f"---\n{yaml.safe_dump(front, sort_keys=False)}---\n" if front else ""
        path.write_text(header + body, encoding="utf-8")
        os.utime(path, ns=(mtime_ms * 1_000_000, mtime_ms * 1_000_000))
        return path

    return _write


@pytest.fixture
def content_root(tmp_path: Path, write_markdown: Callable[..., Path]) -> Path:
    return tmp_path / "content"
