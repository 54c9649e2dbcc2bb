"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from docvectors.embedding.encoder import DEFAULT_MODEL

DEFAULT_CONTENT_DIR = Path("src/data/blog")
DEFAULT_OUTPUT_PATH = Path("public/semantic-index.json")
DEFAULT_MODELS_DIR = Path("public/models")


def _resolve(path: Path, base_dir: Path | None) -> Path:
    if Path(path).is_absolute() or base_dir is None:
        return Path(path)
    return base_dir / path


@dataclass(slots=True)
class AppConfig:
    content_dir: Path = DEFAULT_CONTENT_DIR
    output_path: Path = DEFAULT_OUTPUT_PATH
    models_dir: Path = DEFAULT_MODELS_DIR
    model_name: str = DEFAULT_MODEL
    batch_size: int = 16
    max_concurrency: int = 2
    min_chars: int = 40
    private_prefix: str = "_"
    retries: int = 0

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

    @property
    def flush_threshold(self) -> int:
        """Queue length that forces pending fragments to be embedded."""
        return self.batch_size * self.max_concurrency

    def resolve_content_dir(self, base_dir: Path | None = None) -> Path:
        return _resolve(self.content_dir, base_dir)

    def resolve_output_path(self, base_dir: Path | None = None) -> Path:
        return _resolve(self.output_path, base_dir)

    def resolve_models_dir(self, base_dir: Path | None = None) -> Path:
        return _resolve(self.models_dir, base_dir)
