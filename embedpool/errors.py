"""Error taxonomy for embedding generation.

Every error carries a ``phase`` so callers (and the HTTP layer) can tell an
initialization failure from an inference failure or a checkout timeout.
"""

from __future__ import annotations


class EmbeddingError(Exception):
    phase = "embedding"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class InitializationError(EmbeddingError):
    """Model or tokenizer could not be loaded for a worker."""

    phase = "initialization"


class ModelDownloadError(InitializationError):
    """The model archive could not be fetched or verified."""


class InferenceError(EmbeddingError):
    """The forward pass failed or produced output of the wrong shape."""

    phase = "inference"


class CheckoutTimeoutError(EmbeddingError, TimeoutError):
    """No worker became idle within the checkout timeout."""

    phase = "timeout"


class PoolClosedError(EmbeddingError):
    phase = "pool"


class EmptyInputError(EmbeddingError, ValueError):
    phase = "input"
