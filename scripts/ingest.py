#!/usr/bin/env python
"""Bulk-ingest extracted regulation text into the passage store.

Usage:
    python scripts/ingest.py docs/                 # Ingest every .txt under docs/
    python scripts/ingest.py uu-1-1970.txt         # Ingest a single file
    python scripts/ingest.py docs/ --rebuild       # Delete all documents first
"""
import argparse
import asyncio
import sys
import time
from pathlib import Path
from typing import List

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from siasef import config
from siasef.db import PassageStore
from siasef.errors import EmptyExtractionError
from siasef.llm_client import create_provider
from siasef.rag.embedder import Embedder
from siasef.rag.ingest import IngestPipeline
import structlog

logger = structlog.get_logger()


def collect_files(paths: List[Path]) -> List[Path]:
    """Expand directories to the .txt files beneath them, sorted."""
    files: List[Path] = []
    for path in paths:
        if path.is_dir():
            files.extend(sorted(path.rglob("*.txt")))
        elif path.is_file():
            files.append(path)
        else:
            raise FileNotFoundError(f"No such file or directory: {path}")
    return files


async def ingest_files(pipeline: IngestPipeline, files: List[Path]) -> dict:
    """Ingest each file, printing one line per file, and return run totals."""
    failed = 0

    for i, file_path in enumerate(files, start=1):
        prefix = f"[{i}/{len(files)}] {file_path.name}"
        try:
            text = file_path.read_text(encoding="utf-8-sig")
            result = await pipeline.ingest_document(file_path.name, text, file_type="text/plain")
        except (EmptyExtractionError, UnicodeDecodeError) as e:
            failed += 1
            print(f"{prefix}: skipped ({e})")
            logger.warning("file_skipped", file_path=str(file_path), error=str(e))
            continue
        except Exception as e:
            failed += 1
            print(f"{prefix}: failed ({e})")
            logger.error("file_ingestion_failed", file_path=str(file_path), error=str(e))
            continue

        line = f"{prefix}: {result.chunk_count} passages"
        if result.degraded_count:
            line += f", {result.degraded_count} degraded"
        print(line)

    stats = pipeline.get_stats()
    stats["files_processed"] = stats.pop("documents_processed")
    stats["files_failed"] = failed
    return stats


def summarize(stats: dict, elapsed: float) -> str:
    summary = (
        f"{stats['files_processed']} ingested, {stats['files_failed']} failed, "
        f"{stats['chunks_created']} passages in {elapsed:.1f}s"
    )
    if stats["embeddings_degraded"]:
        summary += (
            f"\n{stats['embeddings_degraded']} passages use fallback vectors; "
            "re-ingest once the embedding provider is reachable"
        )
    return summary


async def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Ingest extracted .txt documents for retrieval",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/ingest.py docs/               # Ingest a directory
  python scripts/ingest.py docs/ --rebuild     # Replace the whole corpus
        """,
    )

    parser.add_argument("paths", nargs="+", type=Path, help="Files or directories to ingest")

    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Delete every existing document before ingesting",
    )

    args = parser.parse_args()

    try:
        files = collect_files(args.paths)
        store = PassageStore()

        if args.rebuild:
            for document in store.list_documents():
                store.delete_document(document.id)
            print(f"Cleared existing documents from {config.DB_PATH}")

        print(f"Ingesting {len(files)} files with {config.LLM_PROVIDER}")
        started = time.monotonic()

        pipeline = IngestPipeline(store, Embedder(create_provider()))
        stats = await ingest_files(pipeline, files)

        print(summarize(stats, time.monotonic() - started))

        if stats["files_failed"] > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("Ingestion cancelled")
        sys.exit(1)

    except FileNotFoundError as e:
        print(f"Error: {e}")
        sys.exit(1)

    except Exception as e:
        print(f"Error: {e}")
        logger.error("ingest_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
