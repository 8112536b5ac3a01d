"""SQLite helpers for the local store and run bookkeeping.

SQLite database for storing:
- Chunk rows for the local FAISS backend (row id == FAISS vector id)
- Ingestion run summaries
- Per-question query logs
"""
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from handbook_qa import config

logger = structlog.get_logger()

DB_PATH = config.DATA_DIR / "handbook.sqlite"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    conn = sqlite3.connect(db_path or DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_database(db_path: Optional[Path] = None) -> None:
    """Initialize the database schema.

    Creates tables if they don't exist:
    - chunks: chunk text and location, keyed by FAISS vector id
    - ingest_runs: one row per ingestion run
    - query_logs: one row per answered (or failed) question
    """
    db_path = Path(db_path or DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                doc_name TEXT NOT NULL,
                page INTEGER NOT NULL,
                chunk_index INTEGER NOT NULL,
                content TEXT NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE(doc_name, page, chunk_index)
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_chunks_doc_name
            ON chunks(doc_name)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS ingest_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ingested_at TEXT NOT NULL,
                embedding_model TEXT NOT NULL,
                documents_processed INTEGER NOT NULL,
                documents_failed INTEGER NOT NULL,
                chunks_generated INTEGER NOT NULL,
                chunks_saved INTEGER NOT NULL,
                errors INTEGER NOT NULL,
                metadata_json TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS query_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT NOT NULL,
                question TEXT NOT NULL,
                answer TEXT,
                sources_count INTEGER,
                ip_address TEXT,
                user_agent TEXT,
                referer TEXT,
                country TEXT,
                city TEXT,
                region TEXT,
                latitude REAL,
                longitude REAL,
                latency_ms INTEGER,
                error TEXT,
                success INTEGER NOT NULL
            )
        """)

        conn.commit()
        logger.info("database_initialized", db_path=str(db_path))

    except Exception as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


def insert_chunk(
    doc_name: str,
    page: int,
    chunk_index: int,
    content: str,
    db_path: Optional[Path] = None,
) -> int:
    """Insert (or replace) a chunk row.

    Returns:
        Row id of the chunk, used as its vector id
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            INSERT OR REPLACE INTO chunks (
                doc_name, page, chunk_index, content, created_at
            ) VALUES (?, ?, ?, ?, ?)
        """, (doc_name, page, chunk_index, content, _utcnow()))

        conn.commit()
        return cursor.lastrowid

    except Exception as e:
        conn.rollback()
        logger.error("chunk_insert_failed", error=str(e), doc_name=doc_name)
        raise
    finally:
        conn.close()


def find_chunk_id(
    doc_name: str,
    page: int,
    chunk_index: int,
    db_path: Optional[Path] = None,
) -> Optional[int]:
    """Look up the row id of an existing chunk, if any."""
    conn = get_connection(db_path)
    try:
        row = conn.execute(
            "SELECT id FROM chunks WHERE doc_name = ? AND page = ? AND chunk_index = ?",
            (doc_name, page, chunk_index),
        ).fetchone()
        return row["id"] if row else None
    finally:
        conn.close()


def get_chunks_by_ids(
    chunk_ids: List[int], db_path: Optional[Path] = None
) -> Dict[int, Dict[str, Any]]:
    """Retrieve chunks by row id.

    Returns:
        Mapping of row id to chunk dictionary
    """
    if not chunk_ids:
        return {}

    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        placeholders = ",".join("?" * len(chunk_ids))
        cursor.execute(f"""
            SELECT id, doc_name, page, chunk_index, content
            FROM chunks
            WHERE id IN ({placeholders})
        """, chunk_ids)

        return {row["id"]: dict(row) for row in cursor.fetchall()}

    except Exception as e:
        logger.error("chunks_retrieval_failed", error=str(e))
        raise
    finally:
        conn.close()


def delete_document_chunks(doc_name: str, db_path: Optional[Path] = None) -> List[int]:
    """Delete all chunks of a document.

    Returns:
        Row ids of the deleted chunks
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("SELECT id FROM chunks WHERE doc_name = ?", (doc_name,))
        ids = [row["id"] for row in cursor.fetchall()]

        cursor.execute("DELETE FROM chunks WHERE doc_name = ?", (doc_name,))
        conn.commit()

        logger.info("document_chunks_deleted", doc_name=doc_name, count=len(ids))
        return ids

    except Exception as e:
        conn.rollback()
        logger.error("document_chunks_delete_failed", error=str(e), doc_name=doc_name)
        raise
    finally:
        conn.close()


def get_chunk_count(db_path: Optional[Path] = None) -> int:
    """Get the total number of chunks in the database."""
    conn = get_connection(db_path)
    try:
        return conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
    finally:
        conn.close()


def insert_ingest_run(
    embedding_model: str,
    documents_processed: int,
    documents_failed: int,
    chunks_generated: int,
    chunks_saved: int,
    errors: int,
    metadata: Optional[Dict[str, Any]] = None,
    db_path: Optional[Path] = None,
) -> int:
    """Record an ingestion run.

    Returns:
        ID of the inserted row
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            INSERT INTO ingest_runs (
                ingested_at, embedding_model, documents_processed,
                documents_failed, chunks_generated, chunks_saved,
                errors, metadata_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            _utcnow(),
            embedding_model,
            documents_processed,
            documents_failed,
            chunks_generated,
            chunks_saved,
            errors,
            json.dumps(metadata) if metadata else None,
        ))

        conn.commit()
        row_id = cursor.lastrowid
        logger.info("ingest_run_recorded", id=row_id, chunks_saved=chunks_saved)
        return row_id

    except Exception as e:
        conn.rollback()
        logger.error("ingest_run_insert_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_latest_ingest_run(db_path: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    """Get the most recent ingestion run, or None."""
    conn = get_connection(db_path)
    try:
        row = conn.execute("SELECT * FROM ingest_runs ORDER BY id DESC LIMIT 1").fetchone()
        if not row:
            return None
        run = dict(row)
        if run["metadata_json"]:
            run["metadata"] = json.loads(run["metadata_json"])
        return run
    finally:
        conn.close()


QUERY_LOG_FIELDS = (
    "question", "answer", "sources_count", "ip_address", "user_agent",
    "referer", "country", "city", "region", "latitude", "longitude",
    "latency_ms", "error", "success",
)


def insert_query_log(entry: Dict[str, Any], db_path: Optional[Path] = None) -> int:
    """Insert one query log row; unknown keys are ignored.

    Returns:
        ID of the inserted row
    """
    values = [entry.get(name) for name in QUERY_LOG_FIELDS]
    values[QUERY_LOG_FIELDS.index("success")] = int(bool(entry.get("success")))

    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        columns = ", ".join(("created_at",) + QUERY_LOG_FIELDS)
        placeholders = ", ".join("?" * (len(QUERY_LOG_FIELDS) + 1))
        cursor.execute(
            f"INSERT INTO query_logs ({columns}) VALUES ({placeholders})",
            [_utcnow()] + values,
        )
        conn.commit()
        return cursor.lastrowid

    except Exception as e:
        conn.rollback()
        logger.error("query_log_insert_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_query_logs(limit: int = 50, db_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    """Get the most recent query logs, newest first."""
    conn = get_connection(db_path)
    try:
        rows = conn.execute(
            "SELECT * FROM query_logs ORDER BY id DESC LIMIT ?", (limit,)
        ).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()
