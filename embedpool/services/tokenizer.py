"""Thin adapter over a HuggingFace ``tokenizers.Tokenizer``.

Exposes the only contract the pipeline needs: text in, token ids and an
attention mask out, truncated to the configured maximum length.
"""

from __future__ import annotations

from pathlib import Path
from typing import NamedTuple

from tokenizers import Tokenizer


class TokenEncoding(NamedTuple):
    ids: list[int]
    attention_mask: list[int]
    truncated: bool = False


def _to_encoding(encoding) -> TokenEncoding:
    # Truncated encodings keep the cut-off tail in ``overflowing``.
    return TokenEncoding(
        list(encoding.ids),
        list(encoding.attention_mask),
        truncated=bool(encoding.overflowing),
    )


class TokenizerAdapter:
    """Wraps a tokenizer with truncation enabled and built-in padding disabled.

    Padding is left to the batch encoder so every batch is padded to the
    same fixed length regardless of what the tokenizer file configures.
    """

    def __init__(self, tokenizer: Tokenizer, max_length: int = 256) -> None:
        self.max_length = max_length
        self._tokenizer = tokenizer
        self._tokenizer.enable_truncation(max_length=max_length)
        self._tokenizer.no_padding()

    @classmethod
    def from_file(cls, path: str | Path, max_length: int = 256) -> TokenizerAdapter:
        return cls(Tokenizer.from_file(str(path)), max_length=max_length)

    def encode(self, text: str) -> TokenEncoding:
        encoding = self._tokenizer.encode(text)
        return _to_encoding(encoding)

    def encode_batch(self, texts: list[str]) -> list[TokenEncoding]:
        """Encode *texts* in order."""
        return [_to_encoding(enc) for enc in self._tokenizer.encode_batch(texts)]
