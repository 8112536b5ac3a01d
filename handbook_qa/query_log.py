"""Per-question logging, fed by the pipeline's QueryEvents.

Recording is fire-and-forget: a failure to write a log row is reported
through structlog and never reaches the request.
"""
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import structlog

from handbook_qa import db
from handbook_qa.rag.pipeline import QueryEvent

logger = structlog.get_logger()


def _float_or_none(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def extract_user_info(headers: Mapping[str, str]) -> Dict[str, Any]:
    """Pull client details out of request headers.

    Vercel supplies geo information via ``x-vercel-ip-*`` headers; they are
    simply absent elsewhere.
    """
    forwarded = headers.get("x-forwarded-for") or ""
    ip_address = forwarded.split(",")[0].strip() or headers.get("x-real-ip") or None

    info = {
        "ip_address": ip_address,
        "user_agent": headers.get("user-agent") or None,
        "referer": headers.get("referer") or None,
        "country": headers.get("x-vercel-ip-country") or None,
        "city": headers.get("x-vercel-ip-city") or None,
        "region": headers.get("x-vercel-ip-country-region") or None,
        "latitude": _float_or_none(headers.get("x-vercel-ip-latitude")),
        "longitude": _float_or_none(headers.get("x-vercel-ip-longitude")),
    }
    return {key: value for key, value in info.items() if value is not None}


class QueryLogger:
    """QueryEvent listener that stores one row per question in SQLite."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path
        db.init_database(db_path)

    def __call__(self, event: QueryEvent) -> None:
        self.record(event)

    def record(self, event: QueryEvent) -> None:
        entry = {
            **event.metadata,
            "question": event.question,
            "answer": event.answer,
            "sources_count": event.sources_count,
            "latency_ms": event.latency_ms,
            "error": event.error,
            "success": event.success,
        }
        try:
            db.insert_query_log(entry, self.db_path)
        except Exception as e:
            logger.error("query_logging_error", error=str(e))
            return

        logger.info(
            "query_logged",
            success=event.success,
            latency_ms=event.latency_ms,
            sources_count=event.sources_count,
        )
