"""FastAPI dependency injection providers."""

from fastapi import Request

from embedpool.services.pool import EmbeddingPool
from embedpool.services.vector_store import DocumentStore


def get_pool(request: Request) -> EmbeddingPool:
    return request.app.state.pool


def get_document_store(request: Request) -> DocumentStore:
    return request.app.state.document_store
