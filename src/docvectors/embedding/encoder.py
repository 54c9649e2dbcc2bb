"""Embedding model management."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Literal, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

from docvectors.errors import EmbeddingProviderError

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

logger = logging.getLogger(__name__)


def _check_gpu_availability() -> tuple[bool, str | None]:
    """Check if a GPU is usable by PyTorch.

    Returns:
        (has_gpu, device) where device is "cuda", "mps" or None.
    """
    try:
        import torch

        if torch.cuda.is_available():
            logger.debug(f"CUDA GPU detected: {torch.cuda.get_device_name(0)}")
            return (True, "cuda")

        if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
            logger.debug("Apple MPS GPU detected")
            return (True, "mps")

        logger.debug("No GPU detected, will use CPU")
        return (False, None)
    except ImportError:
        logger.debug("PyTorch not available for GPU detection")
        return (False, None)
    except Exception as e:
        logger.debug(f"GPU detection failed: {e}")
        return (False, None)


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 16
    normalize: bool = True
    pooling: Literal["mean"] = "mean"
    backend: Literal["torch"] = "torch"
    device: str | None = None


class EmbeddingModel:
    """Thin wrapper around `SentenceTransformer` producing unit-length vectors.

    The model is expensive to load: create one per build, share it across
    every batch, and release it with `close()` (or use it as a context
    manager).
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()

        if self.config.device is None:
            _, self.config.device = _check_gpu_availability()

        try:
            self._model: SentenceTransformer | None = self._load_model()
        except Exception as exc:
            raise EmbeddingProviderError(
                f"Failed to load model {self.config.model_name!r}: {exc}"
            ) from exc

        logger.info(
            f"Loaded model {self.config.model_name} | Backend: {self.config.backend}"
            + (f" | Device: {self.config.device}" if self.config.device else "")
        )
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        self._check_pooling()

    def _load_model(self) -> SentenceTransformer:
        return SentenceTransformer(
            self.config.model_name,
            backend=self.config.backend,
            device=self.config.device,
        )

    def _check_pooling(self) -> None:
        """Reject models whose pooling layer does not match `config.pooling`."""
        wanted = f"pooling_mode_{self.config.pooling}_tokens"
        for module in self._model:
            if not hasattr(module, "pooling_mode_mean_tokens"):
                continue
            if not getattr(module, wanted, False):
                raise EmbeddingProviderError(
                    f"Model {self.config.model_name!r} does not use {self.config.pooling} pooling"
                )
            return
        raise EmbeddingProviderError(
            f"Model {self.config.model_name!r} has no pooling layer to check"
        )

    @property
    def model(self) -> SentenceTransformer:
        if self._model is None:
            raise EmbeddingProviderError("Embedding model has been released")
        return self._model

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return float32 embeddings for input texts, one row per text."""
        sentences = list(texts)
        if not sentences:
            return np.zeros((0, self.dimension), dtype="float32")
        embeddings = self.model.encode(
            sentences,
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return embeddings.astype("float32", copy=False)

    def export(self, destination: Path) -> bool:
        """Save the model under `destination` unless it is already there.

        Returns True when files were written.
        """
        destination = Path(destination)
        if destination.exists() and any(destination.iterdir()):
            logger.debug("Model already exported to %s", destination)
            return False

        destination.parent.mkdir(parents=True, exist_ok=True)
        staging = destination.with_name(destination.name + ".partial")
        shutil.rmtree(staging, ignore_errors=True)
        try:
            self.model.save(str(staging))
            staging.replace(destination)
        except Exception:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        logger.info("Exported model %s to %s", self.config.model_name, destination)
        return True

    def close(self) -> None:
        """Drop the underlying model so its memory can be reclaimed."""
        self._model = None

    def __enter__(self) -> "EmbeddingModel":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
