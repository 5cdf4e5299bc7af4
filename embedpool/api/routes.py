"""API route definitions."""

import time

from fastapi import APIRouter, Depends, HTTPException

from embedpool.api.dependencies import get_document_store, get_pool
from embedpool.config import settings
from embedpool.models.schemas import (
    AddDocumentsRequest,
    DeleteDocumentsRequest,
    DocumentsResponse,
    EmbedRequest,
    EmbedResponse,
    GetDocumentsResponse,
    QueryRequest,
    QueryResponse,
    UpdateDocumentsRequest,
)
from embedpool.services.pool import EmbeddingPool
from embedpool.services.vector_store import DocumentStore

router = APIRouter(prefix="/api")


@router.post("/embeddings", response_model=EmbedResponse)
async def embed(body: EmbedRequest, pool: EmbeddingPool = Depends(get_pool)):
    """Generate one normalised embedding per input text, in input order."""
    start = time.monotonic()
    vectors = await pool.agenerate(body.texts)
    elapsed_ms = (time.monotonic() - start) * 1000

    return EmbedResponse(
        embeddings=vectors,
        dimension=len(vectors[0]) if vectors else 0,
        model=settings.model_name,
        elapsed_ms=round(elapsed_ms, 1),
    )


@router.post("/documents", response_model=DocumentsResponse)
async def add_documents(
    body: AddDocumentsRequest,
    store: DocumentStore = Depends(get_document_store),
):
    """Add documents, embedding any that arrive without vectors."""
    try:
        count = await store.add(
            ids=body.ids,
            documents=body.documents,
            embeddings=body.embeddings,
            metadatas=body.metadatas,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return DocumentsResponse(status="added", count=count)


@router.post("/documents/update", response_model=DocumentsResponse)
async def update_documents(
    body: UpdateDocumentsRequest,
    store: DocumentStore = Depends(get_document_store),
):
    try:
        count = await store.update(
            ids=body.ids,
            documents=body.documents,
            embeddings=body.embeddings,
            metadatas=body.metadatas,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return DocumentsResponse(status="updated", count=count)


@router.post("/documents/delete", response_model=DocumentsResponse)
async def delete_documents(
    body: DeleteDocumentsRequest,
    store: DocumentStore = Depends(get_document_store),
):
    await store.delete(body.ids)
    return DocumentsResponse(status="deleted", count=len(body.ids))


@router.get("/documents", response_model=GetDocumentsResponse)
async def get_documents(ids: str, store: DocumentStore = Depends(get_document_store)):
    """Fetch documents by a comma-separated list of ids."""
    wanted = [doc_id for doc_id in ids.split(",") if doc_id]
    if not wanted:
        raise HTTPException(status_code=400, detail="At least one id is required")
    return GetDocumentsResponse(documents=await store.get(wanted))


@router.post("/query", response_model=QueryResponse)
async def query(body: QueryRequest, store: DocumentStore = Depends(get_document_store)):
    """Nearest-neighbour search by query text or precomputed embedding."""
    try:
        results = await store.query(
            query_texts=body.query_texts,
            query_embeddings=body.query_embeddings,
            n_results=body.n_results,
            where=body.where,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return QueryResponse(results=results)
