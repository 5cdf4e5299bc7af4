#!/usr/bin/env python3
"""Load documents from a JSON Lines file into the Qdrant document collection.

Each line is ``{"id": "...", "text": "...", "metadata": {...}}``; ``metadata``
is optional.

Usage:
    python scripts/index_documents.py docs.jsonl
    python scripts/index_documents.py docs.jsonl --batch 128
    python scripts/index_documents.py docs.jsonl --dry-run
"""

import argparse
import asyncio
import json
import logging
from pathlib import Path

from tqdm import tqdm

from embedpool.config import settings
from embedpool.services.pool import EmbeddingPool
from embedpool.services.vector_store import DocumentStore, connect

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


def load_documents(path: Path) -> list[dict]:
    documents: list[dict] = []
    with path.open(encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            record = json.loads(line)
            if "id" not in record or "text" not in record:
                raise ValueError(f"{path}:{lineno}: each record needs 'id' and 'text'")
            documents.append(record)
    return documents


async def run(path: Path, batch: int, dry_run: bool) -> None:
    documents = load_documents(path)
    logger.info("Loaded %d documents from %s", len(documents), path)

    with EmbeddingPool(settings=settings) as pool:
        if dry_run:
            for start in tqdm(range(0, len(documents), batch), desc="Embedding (dry run)"):
                chunk = documents[start : start + batch]
                await pool.agenerate([d["text"] for d in chunk])
            logger.info("Dry run complete; nothing written.")
            return

        client = connect(settings)
        try:
            store = DocumentStore(
                client,
                embedder=pool,
                collection_name=settings.collection_name,
                vector_size=settings.embedding_dimension,
            )
            await store.create_collection()

            indexed = 0
            for start in tqdm(range(0, len(documents), batch), desc="Indexing"):
                chunk = documents[start : start + batch]
                indexed += await store.add(
                    ids=[str(d["id"]) for d in chunk],
                    documents=[d["text"] for d in chunk],
                    metadatas=[d.get("metadata") or {} for d in chunk],
                )
            logger.info("Indexed %d documents; collection now holds %d.", indexed, await store.count())
        finally:
            await client.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Index JSONL documents into Qdrant")
    parser.add_argument("input", type=Path)
    parser.add_argument("--batch", type=int, default=64, help="Documents per upsert")
    parser.add_argument("--dry-run", action="store_true", help="Embed only, don't write")
    args = parser.parse_args()

    asyncio.run(run(args.input, args.batch, args.dry_run))


if __name__ == "__main__":
    main()
