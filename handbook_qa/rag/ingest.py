"""Ingest pipeline for indexing handbook text.

Orchestrates:
- Page-text discovery (one .txt per document, pages separated by form feeds)
- Word-based chunking
- Embedding generation
- Chunk record persistence

A failing chunk is counted and skipped; a failing document is counted and
the run moves on. Partial ingestion is a valid outcome.
"""
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import structlog

from handbook_qa import config, db
from handbook_qa.rag.chunker import PageChunker
from handbook_qa.rag.embedder import Embedder
from handbook_qa.rag.models import Chunk, PageText
from handbook_qa.rag.retriever import VectorStore

logger = structlog.get_logger()

PAGE_BREAK = "\f"

# (current, total, chunk)
ProgressCallback = Callable[[int, int, Chunk], None]


@dataclass
class IngestStats:
    """Totals reported by an ingestion run."""

    documents_processed: int = 0
    documents_failed: int = 0
    chunks_generated: int = 0
    chunks_saved: int = 0
    errors: int = 0

    def merge(self, other: "IngestStats") -> None:
        self.documents_processed += other.documents_processed
        self.documents_failed += other.documents_failed
        self.chunks_generated += other.chunks_generated
        self.chunks_saved += other.chunks_saved
        self.errors += other.errors

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def load_pages(file_path: Path) -> List[PageText]:
    """Read pre-extracted page text from a file.

    Pages are separated by form feed characters and numbered from 1;
    blank pages are skipped but still consume a page number.
    """
    text = Path(file_path).read_text(encoding="utf-8")
    return [
        PageText(page_number=number, text=page.strip())
        for number, page in enumerate(text.split(PAGE_BREAK), 1)
        if page.strip()
    ]


class IngestPipeline:
    """Pipeline for ingesting handbook text into the vector store."""

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        chunker: Optional[PageChunker] = None,
        embedding_model: str = None,
        db_path: Optional[Path] = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            embedder: Chunk embedder (same model as query time)
            store: Destination vector store
            chunker: Page chunker (default: word bounds from config)
            embedding_model: Model name recorded with the run (default from config)
            db_path: SQLite database for run bookkeeping (default: db.DB_PATH)
        """
        self.embedder = embedder
        self.store = store
        self.chunker = chunker or PageChunker()
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.db_path = db_path

        logger.info(
            "ingest_pipeline_initialized",
            embedding_model=self.embedding_model,
            min_words=self.chunker.min_words,
            max_words=self.chunker.max_words,
            overlap_words=self.chunker.overlap_words,
        )

    def discover_documents(self, source_dir: Path) -> List[Path]:
        """Find page-text files in a directory.

        Raises:
            FileNotFoundError: If the directory doesn't exist
        """
        source_dir = Path(source_dir)
        if not source_dir.exists():
            raise FileNotFoundError(f"Source directory not found: {source_dir}")

        files = sorted(p for p in source_dir.iterdir() if p.suffix.lower() == ".txt")
        logger.info("documents_discovered", count=len(files), source_dir=str(source_dir))
        return files

    def _log_chunk_failure(self, doc_name: str, chunk: Chunk, error: Exception) -> None:
        logger.error(
            "chunk_ingestion_failed",
            doc_name=doc_name,
            page=chunk.page_number,
            chunk_index=chunk.chunk_index,
            error=str(error),
            error_type=type(error).__name__,
        )

    async def ingest_document(
        self,
        doc_name: str,
        pages: Iterable[PageText],
        replace: bool = True,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> IngestStats:
        """Chunk, embed and store one document.

        Args:
            doc_name: Document identifier stored with every chunk
            pages: Extracted page texts
            replace: Delete the document's existing chunks before storing the new ones
            progress_callback: Called after each chunk is embedded with (current, total, chunk)

        Returns:
            Stats for this document

        Raises:
            Exception: If deleting the previous version fails
        """
        stats = IngestStats()
        chunks = self.chunker.chunk_pages(list(pages), doc_name)
        stats.chunks_generated = len(chunks)

        # Embed everything before touching the store
        embedded = []
        for position, chunk in enumerate(chunks, 1):
            try:
                embedded.append((chunk, await self.embedder.embed(chunk.content)))
            except Exception as e:
                stats.errors += 1
                self._log_chunk_failure(doc_name, chunk, e)

            if progress_callback:
                progress_callback(position, len(chunks), chunk)

        stats.documents_processed = 1

        if not embedded:
            logger.warning(
                "document_not_replaced",
                doc_name=doc_name,
                chunks_generated=stats.chunks_generated,
                errors=stats.errors,
            )
            return stats

        if replace:
            removed = await self.store.delete_document(doc_name)
            if removed:
                logger.info("previous_chunks_removed", doc_name=doc_name, count=removed)

        for chunk, embedding in embedded:
            try:
                await self.store.insert(chunk.to_record(embedding))
                stats.chunks_saved += 1
            except Exception as e:
                stats.errors += 1
                self._log_chunk_failure(doc_name, chunk, e)

        logger.info("document_ingested", doc_name=doc_name, **stats.to_dict())
        return stats

    async def ingest_directory(
        self,
        source_dir: Path,
        replace: bool = True,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> IngestStats:
        """Ingest every page-text file in a directory.

        Args:
            source_dir: Directory of .txt files, one per document
            replace: Replace documents that were ingested before
            progress_callback: Called after each chunk with (current, total, chunk)

        Returns:
            Totals for the whole run

        Raises:
            FileNotFoundError: If the directory doesn't exist
        """
        logger.info("starting_ingest", source_dir=str(source_dir), replace=replace)

        totals = IngestStats()

        for file_path in self.discover_documents(source_dir):
            try:
                pages = load_pages(file_path)
                stats = await self.ingest_document(
                    file_path.stem,
                    pages,
                    replace=replace,
                    progress_callback=progress_callback,
                )
                totals.merge(stats)

            except Exception as e:
                logger.error(
                    "document_ingestion_failed",
                    path=str(file_path),
                    error=str(e),
                )
                totals.documents_failed += 1
                totals.errors += 1

        await self.store.flush()

        db.init_database(self.db_path)
        db.insert_ingest_run(
            embedding_model=self.embedding_model,
            documents_processed=totals.documents_processed,
            documents_failed=totals.documents_failed,
            chunks_generated=totals.chunks_generated,
            chunks_saved=totals.chunks_saved,
            errors=totals.errors,
            metadata={
                "source_dir": str(source_dir),
                "min_words": self.chunker.min_words,
                "max_words": self.chunker.max_words,
                "overlap_words": self.chunker.overlap_words,
            },
            db_path=self.db_path,
        )

        logger.info("ingest_completed", **totals.to_dict())
        return totals
