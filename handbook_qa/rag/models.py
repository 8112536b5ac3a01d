"""Data structures passed between ingestion, retrieval and synthesis."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class PageText:
    """Extracted text of one physical page."""

    page_number: int
    text: str


@dataclass(frozen=True)
class Chunk:
    """A bounded span of one page's text; the unit stored and retrieved."""

    source_document: str
    page_number: int
    chunk_index: int
    content: str

    @property
    def word_count(self) -> int:
        return len(self.content.split())

    def to_record(self, embedding: List[float]) -> Dict[str, Any]:
        """Build the persisted chunk record."""
        return {
            "doc_name": self.source_document,
            "page": self.page_number,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "embedding": embedding,
        }


@dataclass(frozen=True)
class RetrievedChunk:
    """A stored chunk returned by similarity search."""

    source_document: str
    page_number: int
    content: str
    similarity: float
    chunk_index: Optional[int] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "RetrievedChunk":
        """Build from a search record ``{doc_name, page, content, similarity}``."""
        chunk_index = record.get("chunk_index")
        return cls(
            source_document=str(record["doc_name"]),
            page_number=int(record["page"]),
            content=str(record["content"]),
            similarity=float(record.get("similarity") or 0.0),
            chunk_index=int(chunk_index) if chunk_index is not None else None,
        )


@dataclass(frozen=True)
class Source:
    """Caller-facing citation with a human-readable document label."""

    doc_name: str
    page: int
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"doc_name": self.doc_name, "page": self.page, "content": self.content}


@dataclass(frozen=True)
class AnswerResult:
    """Answer text plus the sources it was grounded on, in retrieval order."""

    answer: str
    sources: List[Source] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "sources": [source.to_dict() for source in self.sources],
        }
