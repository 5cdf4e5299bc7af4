from pydantic import BaseModel, Field, model_validator

from embedpool.models.domain import PoolStats, QueryResult, StoredDocument


class EmbedRequest(BaseModel):
    texts: list[str] = Field(min_length=1)


class EmbedResponse(BaseModel):
    embeddings: list[list[float]]
    dimension: int
    model: str
    elapsed_ms: float = 0


class UpdateDocumentsRequest(BaseModel):
    ids: list[str] = Field(min_length=1)
    documents: list[str] | None = None
    embeddings: list[list[float]] | None = None
    metadatas: list[dict] | None = None

    @model_validator(mode="after")
    def validate_lengths(self):
        for name in ("documents", "embeddings", "metadatas"):
            values = getattr(self, name)
            if values is not None and len(values) != len(self.ids):
                raise ValueError(f"{name} has {len(values)} entries, expected {len(self.ids)}")
        return self


class AddDocumentsRequest(UpdateDocumentsRequest):
    @model_validator(mode="after")
    def validate_content(self) -> "AddDocumentsRequest":
        if self.documents is None and self.embeddings is None:
            raise ValueError("Either documents or embeddings must be provided")
        return self


class DeleteDocumentsRequest(BaseModel):
    ids: list[str] = Field(min_length=1)


class DocumentsResponse(BaseModel):
    status: str
    count: int


class QueryRequest(BaseModel):
    query_texts: list[str] | None = None
    query_embeddings: list[list[float]] | None = None
    n_results: int = Field(default=10, ge=1, le=100)
    where: dict | None = None

    @model_validator(mode="after")
    def validate_query(self) -> "QueryRequest":
        if not self.query_texts and not self.query_embeddings:
            raise ValueError("Either query_texts or query_embeddings must be provided")
        return self


class QueryResponse(BaseModel):
    results: list[QueryResult]


class GetDocumentsResponse(BaseModel):
    documents: list[StoredDocument]


class HealthResponse(BaseModel):
    status: str
    pool: PoolStats | None = None
    qdrant_connected: bool = True
    documents: int = 0
