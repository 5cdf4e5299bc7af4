from pydantic import BaseModel


class PoolStats(BaseModel):
    size: int
    idle: int
    busy: int
    ready: int
    closed: bool = False


class StoredDocument(BaseModel):
    id: str
    document: str | None = None
    metadata: dict = {}
    embedding: list[float] | None = None


class QueryResult(BaseModel):
    """Matches for one query, best first."""

    ids: list[str] = []
    documents: list[str | None] = []
    metadatas: list[dict] = []
    scores: list[float] = []
