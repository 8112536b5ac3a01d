"""Word-based text chunking with overlap for the RAG pipeline.

Pages are split on paragraph and sentence boundaries, then sentences are
packed greedily into chunks whose size is measured in words. Consecutive
chunks share a fixed number of trailing words so that a passage cut at a
boundary is still retrievable from either side.
"""
import re
from typing import Dict, List

import structlog

from handbook_qa import config
from handbook_qa.rag.models import Chunk, PageText

logger = structlog.get_logger()

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
# Punctuation-terminated segments, plus a trailing unterminated fragment
SENTENCE = re.compile(r"[^.!?]*[.!?]+|[^.!?]+$")


def split_paragraphs(text: str) -> List[str]:
    """Split text on blank lines, dropping empty paragraphs."""
    return [p for p in PARAGRAPH_BREAK.split(text) if p.strip()]


def split_sentences(paragraph: str) -> List[str]:
    """Split a paragraph into trimmed, non-empty sentences."""
    sentences = SENTENCE.findall(paragraph) or [paragraph]
    return [s.strip() for s in sentences if s.strip()]


class PageChunker:
    """Sentence-packing chunker bounded by word counts."""

    def __init__(
        self,
        target_words: int = None,
        min_words: int = None,
        max_words: int = None,
        overlap_words: int = None,
    ):
        """Initialize the chunker.

        Args:
            target_words: Preferred chunk size in words (default from config)
            min_words: A chunk is never closed below this size (default from config)
            max_words: Adding a sentence past this size closes the chunk (default from config)
            overlap_words: Trailing words carried into the next chunk (default from config)

        Raises:
            ValueError: If the bounds are inconsistent
        """
        self.target_words = target_words if target_words is not None else config.CHUNK_TARGET_WORDS
        self.min_words = min_words if min_words is not None else config.CHUNK_MIN_WORDS
        self.max_words = max_words if max_words is not None else config.CHUNK_MAX_WORDS
        self.overlap_words = (
            overlap_words if overlap_words is not None else config.CHUNK_OVERLAP_WORDS
        )

        if self.min_words < 1 or self.max_words < self.min_words:
            raise ValueError(
                f"Invalid word bounds: min={self.min_words}, max={self.max_words}"
            )
        if not self.min_words <= self.target_words <= self.max_words:
            raise ValueError(
                f"Target ({self.target_words}) must lie within "
                f"[{self.min_words}, {self.max_words}]"
            )
        if not 0 <= self.overlap_words < self.min_words:
            raise ValueError(
                f"Overlap ({self.overlap_words}) must be non-negative and less than "
                f"min words ({self.min_words})"
            )

    def chunk_page(self, page: PageText, source_document: str = "") -> List[Chunk]:
        """Split one page into overlapping chunks.

        Args:
            page: Page number and raw text
            source_document: Identifier of the document the page belongs to

        Returns:
            Chunks in emission order, chunk_index starting at 0
        """
        chunks: List[Chunk] = []
        buffer: List[str] = []
        word_count = 0

        def emit(words: List[str]) -> None:
            content = " ".join(words).strip()
            if content:
                chunks.append(
                    Chunk(
                        source_document=source_document,
                        page_number=page.page_number,
                        chunk_index=len(chunks),
                        content=content,
                    )
                )

        for paragraph in split_paragraphs(page.text):
            for sentence in split_sentences(paragraph):
                sentence_words = len(sentence.split())

                if (
                    word_count + sentence_words > self.max_words
                    and word_count >= self.min_words
                ):
                    emit(buffer)

                    # Seed the next chunk with the tail of the one just closed
                    closed_words = " ".join(buffer).split()
                    overlap = closed_words[-self.overlap_words:] if self.overlap_words else []

                    buffer = overlap + [sentence]
                    word_count = len(overlap) + sentence_words
                else:
                    buffer.append(sentence)
                    word_count += sentence_words

        if buffer:
            emit(buffer)

        logger.debug(
            "page_chunked",
            source_document=source_document,
            page=page.page_number,
            chunk_count=len(chunks),
        )

        return chunks

    def chunk_pages(self, pages: List[PageText], source_document: str) -> List[Chunk]:
        """Chunk every page of a document; chunk_index restarts on each page."""
        chunks: List[Chunk] = []
        for page in pages:
            chunks.extend(self.chunk_page(page, source_document))

        logger.info(
            "document_chunked",
            source_document=source_document,
            page_count=len(pages),
            chunk_count=len(chunks),
        )
        return chunks

    def get_chunk_stats(self, chunks: List[Chunk]) -> Dict[str, int]:
        """Get word-count statistics about a set of chunks."""
        if not chunks:
            return {
                "chunk_count": 0,
                "total_words": 0,
                "avg_chunk_words": 0,
                "min_chunk_words": 0,
                "max_chunk_words": 0,
                "overlap": self.overlap_words,
            }

        sizes = [c.word_count for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_words": sum(sizes),
            "avg_chunk_words": sum(sizes) // len(chunks),
            "min_chunk_words": min(sizes),
            "max_chunk_words": max(sizes),
            "overlap": self.overlap_words,
        }


def chunk_page(
    page: PageText,
    source_document: str = "",
    target_words: int = None,
    min_words: int = None,
    max_words: int = None,
    overlap_words: int = None,
) -> List[Chunk]:
    """Chunk a single page (convenience function)."""
    chunker = PageChunker(
        target_words=target_words,
        min_words=min_words,
        max_words=max_words,
        overlap_words=overlap_words,
    )
    return chunker.chunk_page(page, source_document)
