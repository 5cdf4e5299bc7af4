"""HTTP front end for the embedding pool and its document store."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from embedpool.api.routes import router as api_router
from embedpool.config import settings
from embedpool.errors import (
    CheckoutTimeoutError,
    EmbeddingError,
    EmptyInputError,
    InferenceError,
    InitializationError,
    PoolClosedError,
)
from embedpool.models.schemas import HealthResponse
from embedpool.services.pool import EmbeddingPool
from embedpool.services.vector_store import DocumentStore, connect

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[EmbeddingError], int] = {
    CheckoutTimeoutError: 503,
    InitializationError: 503,
    PoolClosedError: 503,
    InferenceError: 500,
    EmptyInputError: 422,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Workers load their models lazily on first checkout.
    pool = EmbeddingPool(settings=settings)
    qdrant_client = connect(settings)
    document_store = DocumentStore(
        qdrant_client,
        embedder=pool,
        collection_name=settings.collection_name,
        vector_size=settings.embedding_dimension,
    )
    try:
        await document_store.create_collection()
    except Exception:
        logger.exception("Could not create collection '%s'; continuing.", settings.collection_name)

    app.state.pool = pool
    app.state.document_store = document_store
    app.state.qdrant_client = qdrant_client
    logger.info(
        "Embedding pool ready: %d workers, model %s", settings.pool_size, settings.model_name
    )
    try:
        yield
    finally:
        pool.close()
        await qdrant_client.close()
        logger.info("Embedding pool closed.")


app = FastAPI(title="embedpool", version="0.1.0", lifespan=lifespan)
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log request method, path, and response time."""
    start = time.monotonic()
    response = await call_next(request)
    elapsed = (time.monotonic() - start) * 1000
    logger.info(
        "%s %s %d (%.1fms)", request.method, request.url.path, response.status_code, elapsed
    )
    return response


@app.exception_handler(EmbeddingError)
async def embedding_exception_handler(request: Request, exc: EmbeddingError):
    """Return the failing phase alongside a status matching the error kind."""
    status_code = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)),
        500,
    )
    headers = None
    if isinstance(exc, CheckoutTimeoutError):
        headers = {"Retry-After": "1"}
    logger.warning(
        "Embedding %s failure on %s %s: %s",
        exc.phase,
        request.method,
        request.url.path,
        exc.message,
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "phase": exc.phase},
        headers=headers,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return clean JSON for unhandled exceptions."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.get("/api/health", response_model=HealthResponse)
async def health():
    pool_stats = app.state.pool.stats() if hasattr(app.state, "pool") else None
    try:
        documents = await app.state.document_store.count()
        store_ok = True
    except Exception:
        logger.warning("Document count failed during health check", exc_info=True)
        documents, store_ok = 0, False

    pool_ok = pool_stats is not None and not pool_stats.closed
    return HealthResponse(
        status="ok" if pool_ok and store_ok else "degraded",
        pool=pool_stats,
        qdrant_connected=store_ok,
        documents=documents,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.app_host, port=settings.app_port)
