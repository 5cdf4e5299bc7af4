#!/usr/bin/env python3
"""Embed every line of a text file and write the vectors as JSON Lines.

Usage:
    python scripts/embed_file.py input.txt
    python scripts/embed_file.py input.txt --output vectors.jsonl --pool-size 4
"""

import argparse
import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from tqdm import tqdm

from embedpool.config import settings
from embedpool.services.encoder import chunked
from embedpool.services.pool import EmbeddingPool

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


def read_texts(path: Path, skip_blank: bool = True) -> list[str]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [line for line in lines if line.strip()] if skip_blank else lines


def main() -> int:
    parser = argparse.ArgumentParser(description="Embed a text file line by line")
    parser.add_argument("input", type=Path, help="UTF-8 text file, one text per line")
    parser.add_argument("--output", type=Path, help="JSONL destination (default: stdout)")
    parser.add_argument("--pool-size", type=int, default=settings.pool_size)
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=settings.batch_size * 4,
        help="Texts per pool request",
    )
    parser.add_argument("--keep-blank", action="store_true", help="Embed blank lines too")
    args = parser.parse_args()

    texts = read_texts(args.input, skip_blank=not args.keep_blank)
    if not texts:
        logger.error("No texts found in %s", args.input)
        return 1

    chunks = list(chunked(texts, args.chunk_size))
    logger.info("Embedding %d texts in %d requests", len(texts), len(chunks))

    out = args.output.open("w", encoding="utf-8") if args.output else sys.stdout
    try:
        with EmbeddingPool(pool_size=args.pool_size, settings=settings) as pool:
            with ThreadPoolExecutor(max_workers=args.pool_size) as executor:
                results = executor.map(pool.generate, chunks)
                with tqdm(total=len(texts), desc="Embedding", unit="text") as progress:
                    for chunk, vectors in zip(chunks, results):
                        for text, vector in zip(chunk, vectors):
                            out.write(json.dumps({"text": text, "embedding": vector}) + "\n")
                        progress.update(len(chunk))
    finally:
        if out is not sys.stdout:
            out.close()

    logger.info("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
