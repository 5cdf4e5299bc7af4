import logging
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_MODEL_URL = "https://chroma-onnx-models.s3.amazonaws.com/all-MiniLM-L6-v2/onnx.tar.gz"


def _default_pool_size() -> int:
    return os.cpu_count() or 1


class Settings(BaseSettings):
    # Model artifact
    model_name: str = "all-MiniLM-L6-v2"
    model_url: str = DEFAULT_MODEL_URL
    model_sha256: str = ""
    cache_dir: Path = Path("~/.cache/chroma/onnx_models").expanduser()
    download_timeout: float = 120.0

    # Embedding
    embedding_dimension: int = 384
    max_sequence_length: int = Field(default=256, ge=1)
    batch_size: int = Field(default=32, ge=1)
    intra_op_threads: int = Field(default=1, ge=1)

    # Pool
    pool_size: int = Field(default_factory=_default_pool_size, ge=1)
    checkout_timeout: float = Field(default=60.0, gt=0)

    # Qdrant
    qdrant_host: str = "localhost"
    qdrant_port: int = 6333
    qdrant_api_key: str = ""
    qdrant_url: str = ""
    collection_name: str = "documents"

    # App
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    cors_origins: list[str] = ["http://localhost:5173"]

    model_config = {"env_file": ".env", "extra": "ignore", "protected_namespaces": ()}

    @property
    def model_dir(self) -> Path:
        """Cache directory for the configured model, keyed by model name."""
        return self.cache_dir.expanduser() / self.model_name


settings = Settings()

if settings.pool_size > _default_pool_size():
    logger.warning(
        "POOL_SIZE=%d exceeds the %d available cores; workers will contend for CPU.",
        settings.pool_size,
        _default_pool_size(),
    )
