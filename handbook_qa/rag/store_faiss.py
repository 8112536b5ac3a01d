"""Local FAISS vector store for offline use and development.

Handles:
- Cosine similarity via inner product over L2-normalized vectors
- Index persistence with dimension validation on load
- Chunk text in SQLite, where the row id doubles as the FAISS vector id
"""
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import faiss
import numpy as np
import structlog

from handbook_qa import config, db

logger = structlog.get_logger()


def _normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True) + 1e-12
    return vectors / norms


class FAISSVectorStore:
    """FAISS-backed implementation of the vector store contract."""

    def __init__(
        self,
        index_dir: Path = None,
        dimension: int = None,
        embedding_model: str = None,
    ):
        """Initialize the FAISS vector store.

        Args:
            index_dir: Directory for the index, metadata and SQLite files (default: DATA_DIR)
            dimension: Embedding dimension (default from config)
            embedding_model: Embedding model name recorded in metadata (default from config)
        """
        self.index_dir = Path(index_dir or config.DATA_DIR)
        self.dimension = dimension or config.EMBEDDING_DIM
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL

        self.index_path = self.index_dir / "vectors.index"
        self.metadata_path = self.index_dir / "metadata.json"
        self.db_path = self.index_dir / "handbook.sqlite"

        self.index: Optional[faiss.Index] = None
        self.metadata: Dict[str, Any] = {}

        logger.info(
            "faiss_store_initialized",
            index_dir=str(self.index_dir),
            dimension=self.dimension,
        )

    def init_new_index(self) -> None:
        """Create an empty index for the configured dimension."""
        self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(self.dimension))
        self.metadata = {
            "embedding_model": self.embedding_model,
            "embedding_dimension": self.dimension,
            "index_type": "IndexIDMap2(IndexFlatIP)",
            "vector_count": 0,
        }
        db.init_database(self.db_path)

        logger.info("faiss_index_initialized", dimension=self.dimension)

    def load_index(self) -> None:
        """Load an existing index from disk.

        Raises:
            FileNotFoundError: If index files don't exist
            ValueError: If the stored dimension or model differs from the configured one
            RuntimeError: If loading fails
        """
        if not self.index_path.exists():
            raise FileNotFoundError(f"Index not found: {self.index_path}")

        if not self.metadata_path.exists():
            raise FileNotFoundError(f"Metadata not found: {self.metadata_path}")

        try:
            with open(self.metadata_path, "r") as f:
                self.metadata = json.load(f)
        except (OSError, ValueError) as e:
            raise RuntimeError(f"Failed to load metadata: {e}") from e

        stored_model = self.metadata.get("embedding_model")
        stored_dim = self.metadata.get("embedding_dimension")

        if stored_dim != self.dimension or stored_model != self.embedding_model:
            raise ValueError(
                f"Index was built with {stored_model} (dim={stored_dim}), but the "
                f"configured model is {self.embedding_model} (dim={self.dimension}). "
                "Please re-ingest."
            )

        try:
            self.index = faiss.read_index(str(self.index_path))
        except RuntimeError as e:
            raise RuntimeError(f"Failed to load FAISS index: {e}") from e

        db.init_database(self.db_path)

        logger.info(
            "faiss_index_loaded",
            dimension=self.dimension,
            vector_count=self.index.ntotal,
            model=stored_model,
        )

    def init_or_load(self) -> None:
        """Load the index from disk if present, otherwise create a new one."""
        if self.index_path.exists() and self.metadata_path.exists():
            self.load_index()
        else:
            self.init_new_index()

    def _ensure_index(self) -> faiss.Index:
        if self.index is None:
            self.init_or_load()
        return self.index

    def _as_matrix(self, embedding: List[float], what: str) -> np.ndarray:
        vector = np.array([embedding], dtype=np.float32)
        if vector.shape[1] != self.dimension:
            raise ValueError(
                f"{what} dimension mismatch: expected {self.dimension}, "
                f"got {vector.shape[1]}"
            )
        return _normalize(vector)

    async def insert(self, record: Dict[str, Any]) -> None:
        """Add one chunk record.

        Raises:
            ValueError: If the embedding dimension is wrong
        """
        index = self._ensure_index()
        vector = self._as_matrix(record["embedding"], "Embedding")

        # Re-ingesting a chunk replaces its row, so drop the old vector first
        existing = db.find_chunk_id(
            record["doc_name"], record["page"], record["chunk_index"], self.db_path
        )
        if existing is not None:
            index.remove_ids(np.array([existing], dtype=np.int64))

        chunk_id = db.insert_chunk(
            doc_name=record["doc_name"],
            page=record["page"],
            chunk_index=record["chunk_index"],
            content=record["content"],
            db_path=self.db_path,
        )
        index.add_with_ids(vector, np.array([chunk_id], dtype=np.int64))

    async def search(self, query_embedding: List[float], k: int) -> List[Dict[str, Any]]:
        """Return the k most similar chunks, most similar first.

        Raises:
            ValueError: If the query dimension is wrong
        """
        index = self._ensure_index()
        query = self._as_matrix(query_embedding, "Query")

        top_k = min(k, index.ntotal)
        if top_k == 0:
            return []

        similarities, ids = index.search(query, top_k)
        hits = [
            (int(chunk_id), float(score))
            for chunk_id, score in zip(ids[0].tolist(), similarities[0].tolist())
            if chunk_id != -1
        ]
        rows = db.get_chunks_by_ids([chunk_id for chunk_id, _ in hits], self.db_path)

        results = []
        for chunk_id, score in hits:
            row = rows.get(chunk_id)
            if row is None:
                logger.warning("vector_without_chunk_row", vector_id=chunk_id)
                continue
            results.append({
                "doc_name": row["doc_name"],
                "page": row["page"],
                "chunk_index": row["chunk_index"],
                "content": row["content"],
                "similarity": score,
            })

        logger.info("vector_search_completed", top_k=top_k, results_found=len(results))
        return results

    async def delete_document(self, doc_name: str) -> int:
        """Remove every chunk of a document from the index and the database."""
        index = self._ensure_index()
        ids = db.delete_document_chunks(doc_name, self.db_path)
        if ids:
            index.remove_ids(np.array(ids, dtype=np.int64))
        return len(ids)

    async def flush(self) -> None:
        """Save the index and metadata to disk."""
        self.save_index()

    def save_index(self) -> None:
        """Save FAISS index and metadata to disk.

        Raises:
            RuntimeError: If there is no index to save
        """
        if self.index is None:
            raise RuntimeError("No index to save. Initialize or load an index first.")

        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.metadata["vector_count"] = self.index.ntotal

        faiss.write_index(self.index, str(self.index_path))
        with open(self.metadata_path, "w") as f:
            json.dump(self.metadata, f, indent=2)

        logger.info(
            "faiss_index_saved",
            index_path=str(self.index_path),
            vector_count=self.index.ntotal,
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the vector store."""
        if self.index is None:
            return {"initialized": False, "vector_count": 0, "dimension": self.dimension}

        return {
            "initialized": True,
            "vector_count": self.index.ntotal,
            "dimension": self.dimension,
            "embedding_model": self.embedding_model,
            "index_exists_on_disk": self.index_path.exists(),
        }
