"""Embedding worker: one model, one tokenizer, one caller at a time.

A worker composes the batch encoder, the ONNX inference runner and the
pooling step into a single ``generate`` call.  It is synchronous and
CPU-bound; async callers go through ``EmbeddingPool.agenerate`` which hands
the work to a thread.

Workers start ``UNINITIALIZED`` and move to ``READY`` when their model is
loaded, either explicitly via :meth:`EmbeddingWorker.initialize` (the pool
does this inside ``acquire``) or implicitly on the first ``generate``.
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable, Sequence

from embedpool.config import Settings
from embedpool.errors import InferenceError, InitializationError
from embedpool.services.artifacts import ensure_model_artifacts
from embedpool.services.encoder import iter_batches
from embedpool.services.inference import InferenceRunner
from embedpool.services.pooling import l2_normalize, mean_pool, to_vectors
from embedpool.services.tokenizer import TokenizerAdapter

logger = logging.getLogger(__name__)

ModelLoader = Callable[[], tuple[InferenceRunner, TokenizerAdapter]]


class WorkerState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"


def load_model(settings: Settings) -> tuple[InferenceRunner, TokenizerAdapter]:
    """Fetch the artifacts if needed and load a fresh runner and tokenizer."""
    paths = ensure_model_artifacts(settings)
    runner = InferenceRunner.from_path(paths.model_path, intra_op_threads=settings.intra_op_threads)
    try:
        tokenizer = TokenizerAdapter.from_file(
            paths.tokenizer_path, max_length=settings.max_sequence_length
        )
    except Exception as e:
        raise InitializationError(f"Failed to load tokenizer {paths.tokenizer_path}: {e}") from e
    return runner, tokenizer


class EmbeddingWorker:
    """Produces L2-normalised sentence embeddings from one loaded model.

    Parameters
    ----------
    loader:
        Zero-argument callable returning ``(InferenceRunner, TokenizerAdapter)``.
        Called once, on initialization.
    batch_size:
        Texts per forward pass.
    max_length:
        Every sequence is padded or truncated to this many tokens.
    dimension:
        Expected embedding width; output of any other width is an
        :class:`InferenceError`.
    """

    def __init__(
        self,
        loader: ModelLoader,
        *,
        batch_size: int = 32,
        max_length: int = 256,
        dimension: int = 384,
    ) -> None:
        self._loader = loader
        self.batch_size = batch_size
        self.max_length = max_length
        self.dimension = dimension
        self.runner: InferenceRunner | None = None
        self.tokenizer: TokenizerAdapter | None = None
        self.state = WorkerState.UNINITIALIZED

    @classmethod
    def from_settings(cls, settings: Settings) -> EmbeddingWorker:
        return cls(
            lambda: load_model(settings),
            batch_size=settings.batch_size,
            max_length=settings.max_sequence_length,
            dimension=settings.embedding_dimension,
        )

    @property
    def ready(self) -> bool:
        return self.state is WorkerState.READY

    def initialize(self) -> None:
        """Load model and tokenizer.  A no-op once the worker is ready.

        Raises
        ------
        InitializationError
            If loading fails; the worker stays ``UNINITIALIZED``.
        """
        if self.ready:
            return
        start = time.monotonic()
        try:
            runner, tokenizer = self._loader()
        except InitializationError:
            raise
        except Exception as e:
            raise InitializationError(f"Worker initialization failed: {e}") from e

        self.runner = runner
        self.tokenizer = tokenizer
        self.state = WorkerState.READY
        logger.info("Embedding worker ready in %.2fs", time.monotonic() - start)

    def generate(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*, returning one vector per text in input order."""
        self.initialize()
        runner, tokenizer = self.runner, self.tokenizer

        vectors: list[list[float]] = []
        for batch in iter_batches(tokenizer, texts, self.batch_size, self.max_length):
            hidden = runner.run(batch)
            try:
                pooled = l2_normalize(mean_pool(hidden, batch.attention_mask))
            except (ValueError, FloatingPointError) as e:
                raise InferenceError(f"Pooling failed: {e}") from e
            if pooled.shape[1] != self.dimension:
                raise InferenceError(
                    f"Model produced {pooled.shape[1]}-d embeddings, expected {self.dimension}"
                )
            vectors.extend(to_vectors(pooled))
        return vectors

