#!/usr/bin/env python
"""Ingest extracted handbook text into the vector store.

Each document is a .txt file holding its pages' text, separated by form
feed characters. The file stem becomes the stored document name.

Usage:
    python scripts/ingest.py pages/               # Ingest, replacing earlier versions
    python scripts/ingest.py pages/ --no-replace  # Append without deleting old chunks
    python scripts/ingest.py pages/ --verbose     # One line per chunk
"""
import argparse
import asyncio
import dataclasses
import sys
from datetime import datetime
from pathlib import Path

import structlog

from handbook_qa.config import Settings
from handbook_qa.errors import ConfigurationError
from handbook_qa.llm_client import OpenAIClient
from handbook_qa.log_config import configure_logging
from handbook_qa.rag.chunker import PageChunker
from handbook_qa.rag.embedder import OpenAIEmbedder
from handbook_qa.rag.ingest import IngestPipeline, IngestStats
from handbook_qa.rag.models import Chunk
from handbook_qa.rag.pipeline import build_vector_store

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, chunk: Chunk):
        label = f"{chunk.source_document[:30]} p.{chunk.page_number}"
        if self.verbose:
            print(f"  [{current}/{total}] {label} #{chunk.chunk_index}")
            return

        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)
        end = "\n" if current == total else ""
        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {label:<36}",
            end=end,
            flush=True,
        )

    def finish(self, stats: IngestStats):
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"\n{'=' * 60}")
        print("  INGESTION COMPLETE")
        print(f"{'=' * 60}\n")
        print(f"  Documents processed: {stats.documents_processed}")
        print(f"  Documents failed:    {stats.documents_failed}")
        print(f"  Total chunks:        {stats.chunks_generated}")
        print(f"  Successfully saved:  {stats.chunks_saved}")
        print(f"  Errors:              {stats.errors}")
        print(f"  Time elapsed:        {elapsed_seconds:.1f}s")
        print(f"\n{'=' * 60}\n")

        if stats.errors > 0:
            print("WARNING: Some chunks failed to process. Check the logs above.\n")
        else:
            print("All chunks ingested successfully!\n")


async def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Ingest extracted handbook text into the vector store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "source_dir",
        type=Path,
        help="Directory of .txt files (pages separated by form feeds)",
    )
    parser.add_argument(
        "--replace",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Delete a document's existing chunks before ingesting it (default: on)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Override DATA_DIR (local FAISS index and SQLite files)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show one progress line per chunk",
    )
    args = parser.parse_args()

    settings = Settings.from_env()
    configure_logging(level=settings.log_level, json_logs=False)
    if args.data_dir is not None:
        settings = dataclasses.replace(settings, data_dir=args.data_dir)

    progress = ProgressReporter(verbose=args.verbose)

    try:
        settings.validate()

        print("\nConfiguration:")
        print(f"   Source directory: {args.source_dir}")
        print(f"   Vector backend:   {settings.vector_backend}")
        print(f"   Embedding model:  {settings.embedding_model}")
        print(
            f"   Chunk words:      {settings.chunk_min_words}-{settings.chunk_max_words} "
            f"(target {settings.chunk_target_words}, overlap {settings.chunk_overlap_words})"
        )

        client = OpenAIClient(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.http_timeout,
        )
        pipeline = IngestPipeline(
            embedder=OpenAIEmbedder(
                client,
                model=settings.embedding_model,
                dimension=settings.embedding_dim,
            ),
            store=build_vector_store(settings),
            chunker=PageChunker(
                target_words=settings.chunk_target_words,
                min_words=settings.chunk_min_words,
                max_words=settings.chunk_max_words,
                overlap_words=settings.chunk_overlap_words,
            ),
            embedding_model=settings.embedding_model,
            db_path=settings.db_path,
        )

        progress.start("Handbook Ingestion")
        stats = await pipeline.ingest_directory(
            args.source_dir,
            replace=args.replace,
            progress_callback=progress.update,
        )
        progress.finish(stats)

        if stats.errors > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nIngestion cancelled by user.\n")
        sys.exit(1)

    except (ConfigurationError, FileNotFoundError, ValueError) as e:
        print(f"\nERROR: {e}\n")
        sys.exit(1)

    except Exception as e:
        print(f"\nERROR: {e}\n")
        logger.error("ingest_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
