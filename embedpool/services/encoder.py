"""Batch encoder: texts to fixed-shape integer tensors.

Texts are grouped into consecutive chunks, tokenised, and every sequence is
padded or truncated to exactly ``max_length`` so each chunk becomes one
rectangular ``(n, max_length)`` tensor.  Texts longer than ``max_length``
tokens are truncated silently; this matches the reference model and is
intended.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import NamedTuple

import numpy as np

from embedpool.services.tokenizer import TokenizerAdapter

logger = logging.getLogger(__name__)

PAD_ID = 0


class EncodedBatch(NamedTuple):
    input_ids: np.ndarray
    attention_mask: np.ndarray
    token_type_ids: np.ndarray


def pad_to_length(values: Sequence[int], length: int, pad_value: int = PAD_ID) -> list[int]:
    """Truncate *values* from the end or right-pad them to exactly *length*."""
    if len(values) >= length:
        return list(values[:length])
    return list(values) + [pad_value] * (length - len(values))


def chunked(texts: Sequence[str], size: int) -> Iterator[list[str]]:
    """Yield consecutive chunks of at most *size* items, preserving order."""
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    for start in range(0, len(texts), size):
        yield list(texts[start : start + size])


def encode_texts(tokenizer: TokenizerAdapter, texts: Sequence[str], max_length: int) -> EncodedBatch:
    """Tokenise one chunk of *texts* into padded id, mask and segment tensors."""
    encodings = tokenizer.encode_batch(list(texts))

    truncated = sum(1 for enc in encodings if enc.truncated)
    if truncated:
        logger.debug("Truncated %d of %d texts to %d tokens", truncated, len(encodings), max_length)

    input_ids = np.array(
        [pad_to_length(enc.ids, max_length) for enc in encodings], dtype=np.int64
    ).reshape(len(encodings), max_length)
    attention_mask = np.array(
        [pad_to_length(enc.attention_mask, max_length) for enc in encodings], dtype=np.int64
    ).reshape(len(encodings), max_length)
    # Single-segment input only.
    token_type_ids = np.zeros_like(input_ids)

    return EncodedBatch(input_ids, attention_mask, token_type_ids)


def iter_batches(
    tokenizer: TokenizerAdapter,
    texts: Sequence[str],
    batch_size: int = 32,
    max_length: int = 256,
) -> Iterator[EncodedBatch]:
    """Encode *texts* as a sequence of batches of at most *batch_size* rows."""
    for chunk in chunked(texts, batch_size):
        yield encode_texts(tokenizer, chunk, max_length)
