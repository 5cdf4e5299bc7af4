"""Shared fixtures.

The tiny model from ``tiny_model`` is laid out exactly like the cached
reference model (``<cache_dir>/<model_name>/onnx/{model.onnx,tokenizer.json}``)
so the full pipeline runs offline.
"""

from __future__ import annotations

import io
import tarfile
from pathlib import Path

import pytest

from embedpool.config import Settings
from embedpool.services.embedder import EmbeddingWorker
from tiny_model import write_model_files

MODEL_NAME = "tiny-test-model"


@pytest.fixture(scope="session")
def model_cache(tmp_path_factory) -> Path:
    """Cache root that already holds the tiny model under ``MODEL_NAME``."""
    root = tmp_path_factory.mktemp("onnx_models")
    write_model_files(root / MODEL_NAME / "onnx")
    return root


@pytest.fixture(scope="session")
def model_archive(tmp_path_factory) -> bytes:
    """The tiny model packed as ``onnx.tar.gz`` bytes, like the published archive."""
    staging = tmp_path_factory.mktemp("archive")
    write_model_files(staging / "onnx")
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        tar.add(staging / "onnx", arcname="onnx")
    return buffer.getvalue()


@pytest.fixture
def tiny_settings(model_cache: Path) -> Settings:
    return Settings(
        cache_dir=model_cache,
        model_name=MODEL_NAME,
        model_url="https://models.invalid/tiny/onnx.tar.gz",
        pool_size=2,
        checkout_timeout=5.0,
    )


@pytest.fixture
def worker_factory(tiny_settings: Settings):
    return lambda: EmbeddingWorker.from_settings(tiny_settings)


@pytest.fixture
def worker(worker_factory) -> EmbeddingWorker:
    return worker_factory()
