"""Document store on Qdrant that embeds documents and queries on demand.

The store only consumes embedding vectors; generation is delegated to an
embedder exposing ``async agenerate(texts) -> list[list[float]]`` (normally
an :class:`~embedpool.services.pool.EmbeddingPool`).  Any call that supplies
documents or query texts without precomputed embeddings gets them generated
in a single batch.
"""

import logging
import uuid
from typing import Protocol

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PointIdsList,
    PointStruct,
    VectorParams,
)

from embedpool.models.domain import QueryResult, StoredDocument

logger = logging.getLogger(__name__)

_ID_NAMESPACE = uuid.UUID("6f0f5c4e-3f7b-4a53-9a55-3c1c2b8a9d11")


class Embedder(Protocol):
    async def agenerate(self, texts: list[str]) -> list[list[float]]: ...


def connect(settings) -> AsyncQdrantClient:
    """Build an async client from a URL when one is set, else host and port."""
    api_key = settings.qdrant_api_key or None
    if settings.qdrant_url:
        return AsyncQdrantClient(url=settings.qdrant_url, api_key=api_key)
    return AsyncQdrantClient(host=settings.qdrant_host, port=settings.qdrant_port, api_key=api_key)


def point_id(doc_id: str) -> str:
    """Map an arbitrary string id onto a stable Qdrant UUID point id."""
    return str(uuid.uuid5(_ID_NAMESPACE, doc_id))


def build_filter(where: dict | None) -> Filter | None:
    """Translate ``{"key": value, ...}`` into an all-must-match metadata filter."""
    if not where:
        return None
    return Filter(
        must=[
            FieldCondition(key=f"metadata.{key}", match=MatchValue(value=value))
            for key, value in where.items()
        ]
    )


class DocumentStore:
    """Manages one Qdrant collection of documents with a single cosine vector."""

    def __init__(
        self,
        client: AsyncQdrantClient,
        embedder: Embedder,
        collection_name: str = "documents",
        vector_size: int = 384,
    ) -> None:
        self.client = client
        self.embedder = embedder
        self.collection_name = collection_name
        self.vector_size = vector_size

    async def create_collection(self) -> None:
        """Create the collection if it doesn't exist. Idempotent."""
        if await self.client.collection_exists(self.collection_name):
            logger.info("Collection '%s' already exists, skipping creation.", self.collection_name)
            return

        await self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
        )
        logger.info("Created collection '%s'.", self.collection_name)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_vectors(self, embeddings: list[list[float]]) -> None:
        for vector in embeddings:
            if len(vector) != self.vector_size:
                raise ValueError(
                    f"Embedding has {len(vector)} dimensions, collection expects {self.vector_size}"
                )

    async def _resolve_embeddings(
        self,
        count: int,
        documents: list[str] | None,
        embeddings: list[list[float]] | None,
    ) -> list[list[float]]:
        if embeddings is None and documents is None:
            raise ValueError("Either embeddings or documents must be provided")
        for name, values in (("documents", documents), ("embeddings", embeddings)):
            if values is not None and len(values) != count:
                raise ValueError(f"{name} has {len(values)} entries, expected {count}")
        if embeddings is None:
            embeddings = await self.embedder.agenerate(documents)
        self._check_vectors(embeddings)
        return embeddings

    @staticmethod
    def _to_document(record, with_vector: bool = False) -> StoredDocument:
        payload = record.payload or {}
        vector = record.vector if with_vector else None
        return StoredDocument(
            id=payload.get("id", str(record.id)),
            document=payload.get("document"),
            metadata=payload.get("metadata") or {},
            embedding=list(vector) if vector is not None else None,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def add(
        self,
        ids: list[str],
        documents: list[str] | None = None,
        embeddings: list[list[float]] | None = None,
        metadatas: list[dict] | None = None,
    ) -> int:
        """Upsert documents, generating embeddings for them when not supplied."""
        if not ids:
            return 0
        if metadatas is not None and len(metadatas) != len(ids):
            raise ValueError(f"metadatas has {len(metadatas)} entries, expected {len(ids)}")
        vectors = await self._resolve_embeddings(len(ids), documents, embeddings)

        points = [
            PointStruct(
                id=point_id(doc_id),
                vector=vectors[i],
                payload={
                    "id": doc_id,
                    "document": documents[i] if documents is not None else None,
                    "metadata": metadatas[i] if metadatas is not None else {},
                },
            )
            for i, doc_id in enumerate(ids)
        ]
        await self.client.upsert(collection_name=self.collection_name, points=points)
        logger.debug("Upserted %d documents into '%s'.", len(points), self.collection_name)
        return len(points)

    async def update(
        self,
        ids: list[str],
        documents: list[str] | None = None,
        embeddings: list[list[float]] | None = None,
        metadatas: list[dict] | None = None,
    ) -> int:
        """Update existing documents; unknown ids are skipped.

        Changed documents are re-embedded unless embeddings are supplied.
        Fields not given keep their stored values.
        """
        if metadatas is not None and len(metadatas) != len(ids):
            raise ValueError(f"metadatas has {len(metadatas)} entries, expected {len(ids)}")
        existing = {doc.id: doc for doc in await self.get(ids, with_vectors=True)}
        missing = [doc_id for doc_id in ids if doc_id not in existing]
        if missing:
            logger.warning("Skipping update of unknown ids in '%s': %s", self.collection_name, missing)

        vectors: list[list[float]] | None = None
        if embeddings is not None or documents is not None:
            vectors = await self._resolve_embeddings(len(ids), documents, embeddings)

        points: list[PointStruct] = []
        for i, doc_id in enumerate(ids):
            current = existing.get(doc_id)
            if current is None:
                continue
            points.append(
                PointStruct(
                    id=point_id(doc_id),
                    vector=vectors[i] if vectors is not None else current.embedding,
                    payload={
                        "id": doc_id,
                        "document": documents[i] if documents is not None else current.document,
                        "metadata": metadatas[i] if metadatas is not None else current.metadata,
                    },
                )
            )
        if points:
            await self.client.upsert(collection_name=self.collection_name, points=points)
        return len(points)

    async def get(self, ids: list[str], *, with_vectors: bool = False) -> list[StoredDocument]:
        """Fetch documents by id, in the requested order; unknown ids are omitted."""
        records = await self.client.retrieve(
            collection_name=self.collection_name,
            ids=[point_id(doc_id) for doc_id in ids],
            with_payload=True,
            with_vectors=with_vectors,
        )
        by_id = {doc.id: doc for doc in (self._to_document(r, with_vectors) for r in records)}
        return [by_id[doc_id] for doc_id in ids if doc_id in by_id]

    async def delete(self, ids: list[str]) -> None:
        await self.client.delete(
            collection_name=self.collection_name,
            points_selector=PointIdsList(points=[point_id(doc_id) for doc_id in ids]),
        )
        logger.debug("Deleted %d documents from '%s'.", len(ids), self.collection_name)

    async def count(self) -> int:
        result = await self.client.count(collection_name=self.collection_name, exact=True)
        return result.count

    async def query(
        self,
        query_texts: list[str] | None = None,
        query_embeddings: list[list[float]] | None = None,
        n_results: int = 10,
        where: dict | None = None,
    ) -> list[QueryResult]:
        """Nearest-neighbour search, one :class:`QueryResult` per query."""
        if query_embeddings is None:
            if not query_texts:
                raise ValueError("Either query_texts or query_embeddings must be provided")
            query_embeddings = await self.embedder.agenerate(query_texts)
        self._check_vectors(query_embeddings)

        query_filter = build_filter(where)
        results: list[QueryResult] = []
        for vector in query_embeddings:
            response = await self.client.query_points(
                collection_name=self.collection_name,
                query=vector,
                query_filter=query_filter,
                limit=n_results,
                with_payload=True,
            )
            result = QueryResult()
            for point in response.points:
                doc = self._to_document(point)
                result.ids.append(doc.id)
                result.documents.append(doc.document)
                result.metadatas.append(doc.metadata)
                result.scores.append(point.score)
            results.append(result)
        return results
