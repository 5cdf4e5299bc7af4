"""Tests for the TokenizerAdapter."""

import pytest

from embedpool.services.tokenizer import TokenizerAdapter

from tiny_model import build_tokenizer


@pytest.fixture
def adapter() -> TokenizerAdapter:
    return TokenizerAdapter(build_tokenizer(), max_length=8)


def test_encode_adds_special_tokens(adapter):
    enc = adapter.encode("hello world")
    vocab = build_tokenizer().get_vocab()

    assert enc.ids == [vocab["[CLS]"], vocab["hello"], vocab["world"], vocab["[SEP]"]]
    assert enc.attention_mask == [1, 1, 1, 1]
    assert enc.truncated is False


def test_encode_unknown_word_maps_to_unk(adapter):
    enc = adapter.encode("zebra")
    vocab = build_tokenizer().get_vocab()
    assert vocab["[UNK]"] in enc.ids


def test_encode_truncates_to_max_length(adapter):
    enc = adapter.encode(" ".join(["cat"] * 20))

    assert len(enc.ids) == 8
    assert len(enc.attention_mask) == 8
    assert enc.truncated is True


def test_encode_does_not_pad(adapter):
    enc = adapter.encode("cat")
    assert len(enc.ids) == 3


def test_encode_empty_text(adapter):
    enc = adapter.encode("")
    # Only [CLS] and [SEP] remain
    assert len(enc.ids) == 2
    assert enc.attention_mask == [1, 1]


def test_encode_batch_preserves_order(adapter):
    texts = ["cat", "dog sat", "the quantum physics"]
    batch = adapter.encode_batch(texts)

    assert [len(e.ids) for e in batch] == [3, 4, 5]
    assert batch == [adapter.encode(t) for t in texts]


def test_from_file_applies_truncation(tmp_path):
    path = tmp_path / "tokenizer.json"
    tokenizer = build_tokenizer()
    tokenizer.enable_padding(length=64)
    tokenizer.save(str(path))

    adapter = TokenizerAdapter.from_file(path, max_length=5)
    enc = adapter.encode("the cat sat on the mat")

    # Padding from the file is disabled; truncation comes from max_length
    assert len(enc.ids) == 5
    assert adapter.max_length == 5
