"""Model artifact retrieval and on-disk caching.

The ONNX model and its ``tokenizer.json`` ship together as a tarball.  On
first use the archive is downloaded into the cache directory and unpacked;
every later call finds the files in place and returns immediately.

Several workers (and possibly several processes) may ask for the artifacts
at once.  Within a process a lock serialises the check-then-download step.
Across processes every write goes to a temporary name first and is moved
into place atomically, so a second concurrent download is wasted work but
never corrupts the cache.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tarfile
import tempfile
import threading
import time
from pathlib import Path
from typing import NamedTuple

import httpx

from embedpool.config import Settings
from embedpool.errors import InitializationError, ModelDownloadError

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "onnx.tar.gz"
EXTRACTED_DIR = "onnx"
MODEL_FILE = "model.onnx"
TOKENIZER_FILE = "tokenizer.json"

_download_lock = threading.Lock()


class ModelArtifacts(NamedTuple):
    model_path: Path
    tokenizer_path: Path


def artifact_paths(model_dir: Path) -> ModelArtifacts:
    """Deterministic locations of the model and tokenizer under *model_dir*."""
    base = model_dir / EXTRACTED_DIR
    return ModelArtifacts(model_path=base / MODEL_FILE, tokenizer_path=base / TOKENIZER_FILE)


def _artifacts_present(paths: ModelArtifacts) -> bool:
    return paths.model_path.is_file() and paths.tokenizer_path.is_file()


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as fh:
        for block in iter(lambda: fh.read(1 << 20), b""):
            digest.update(block)
    return digest.hexdigest()


def _verify_checksum(path: Path, expected: str) -> bool:
    if not expected:
        return True
    actual = _sha256(path)
    if actual != expected.lower():
        logger.warning("Checksum mismatch for %s: expected %s, got %s", path, expected, actual)
        return False
    return True


def download_archive(url: str, destination: Path, *, timeout: float = 120.0, sha256: str = "") -> Path:
    """Stream *url* into *destination*, replacing it atomically on success.

    Raises
    ------
    ModelDownloadError
        On any transport error, non-2xx response, or checksum mismatch.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=destination.parent, suffix=".part")
    tmp_path = Path(tmp_name)
    start = time.monotonic()
    logger.info("Downloading model archive from %s", url)
    try:
        with os.fdopen(fd, "wb") as fh:
            with httpx.stream("GET", url, timeout=timeout, follow_redirects=True) as response:
                response.raise_for_status()
                for chunk in response.iter_bytes():
                    fh.write(chunk)
        if not _verify_checksum(tmp_path, sha256):
            raise ModelDownloadError(f"Downloaded archive from {url} failed checksum verification")
        os.replace(tmp_path, destination)
    except httpx.HTTPStatusError as e:
        raise ModelDownloadError(
            f"Failed to download model: {url} returned {e.response.status_code}"
        ) from e
    except httpx.HTTPError as e:
        raise ModelDownloadError(f"Failed to download model from {url}: {e}") from e
    finally:
        tmp_path.unlink(missing_ok=True)

    logger.info(
        "Downloaded %s (%.1f MiB) in %.1fs",
        destination.name,
        destination.stat().st_size / (1 << 20),
        time.monotonic() - start,
    )
    return destination


def extract_archive(archive: Path, model_dir: Path) -> None:
    """Unpack *archive* so that ``model_dir/onnx`` holds the model files.

    Extraction happens in a scratch directory that is renamed into place.  If
    another process won the race the scratch copy is simply discarded; a
    leftover directory missing model files is replaced.
    """
    target = model_dir / EXTRACTED_DIR
    scratch = Path(tempfile.mkdtemp(dir=model_dir, prefix=".extract-"))
    try:
        try:
            with tarfile.open(archive, "r:gz") as tar:
                tar.extractall(scratch, filter="data")
        except (tarfile.TarError, EOFError, OSError) as e:
            raise InitializationError(f"Unsupported or corrupt model archive {archive}: {e}") from e

        extracted = scratch / EXTRACTED_DIR
        if not extracted.is_dir():
            raise InitializationError(f"Model archive {archive} has no '{EXTRACTED_DIR}/' directory")

        try:
            os.rename(extracted, target)
        except OSError:
            if not target.is_dir():
                raise
            if _artifacts_present(artifact_paths(model_dir)):
                logger.info("Model directory %s appeared concurrently, keeping existing copy.", target)
                return
            logger.warning("Removing incomplete model directory %s", target)
            shutil.rmtree(target)
            os.rename(extracted, target)
    finally:
        shutil.rmtree(scratch, ignore_errors=True)


def ensure_model_artifacts(settings: Settings) -> ModelArtifacts:
    """Download and unpack the model if it is not cached yet.

    Safe to call from any number of threads; at most one download runs per
    process.  Returns the paths of the loadable model and tokenizer files.
    """
    model_dir = settings.model_dir
    paths = artifact_paths(model_dir)
    if _artifacts_present(paths):
        return paths

    with _download_lock:
        # Another thread may have finished while we waited.
        if _artifacts_present(paths):
            return paths

        try:
            model_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InitializationError(f"Cannot create model cache directory {model_dir}: {e}") from e

        archive = model_dir / ARCHIVE_NAME
        if archive.is_file() and not _verify_checksum(archive, settings.model_sha256):
            archive.unlink()
        if not archive.is_file():
            download_archive(
                settings.model_url,
                archive,
                timeout=settings.download_timeout,
                sha256=settings.model_sha256,
            )

        extract_archive(archive, model_dir)

        if not _artifacts_present(paths):
            raise InitializationError(
                f"Model archive did not contain {MODEL_FILE} and {TOKENIZER_FILE} under {paths.model_path.parent}"
            )
        logger.info("Model '%s' ready in %s", settings.model_name, paths.model_path.parent)
    return paths
