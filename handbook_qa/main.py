"""Quart application exposing the handbook Q&A pipeline."""
import time
from typing import Any, Dict, Optional

import structlog
from pydantic import BaseModel, StrictStr
from pydantic import ValidationError as RequestValidationError
from quart import Quart, jsonify, request

from handbook_qa import errors
from handbook_qa.config import Settings, mask_value
from handbook_qa.log_config import configure_logging
from handbook_qa.query_log import QueryLogger, extract_user_info
from handbook_qa.rag.pipeline import RagPipeline

configure_logging(level=Settings.from_env().log_level)

logger = structlog.get_logger()

app = Quart(__name__)


class AskRequest(BaseModel):
    """Body of POST /api/ask."""

    question: StrictStr


# Built on first use so the app can start (and report) without credentials
_pipeline: Optional[RagPipeline] = None


def get_pipeline() -> RagPipeline:
    """Get or create the singleton pipeline.

    Raises:
        ConfigurationError: If required credentials are missing
    """
    global _pipeline
    if _pipeline is None:
        settings = Settings.from_env()
        pipeline = RagPipeline.from_settings(settings)
        pipeline.add_listener(QueryLogger(settings.db_path))
        _pipeline = pipeline
    return _pipeline


@app.route("/api/ask", methods=["POST"])
async def ask():
    """Answer a question from the handbooks.

    Expects JSON body:
    {
        "question": "What is the cell phone policy?"
    }

    Returns JSON:
    {
        "answer": "answer text",
        "sources": [{"doc_name": "...", "page": 12, "content": "..."}]
    }
    """
    data = await request.get_json(silent=True)

    try:
        body = AskRequest.model_validate(data if isinstance(data, dict) else {})
    except RequestValidationError:
        return jsonify({"error": "Missing or invalid 'question' field"}), 400

    question = body.question.strip()
    if not question:
        return jsonify({"error": "Question cannot be empty"}), 400

    try:
        pipeline = get_pipeline()
        result = await pipeline.answer(
            question, metadata=extract_user_info(request.headers)
        )
        return jsonify(result.to_dict())

    except errors.ConfigurationError as e:
        logger.error("pipeline_not_configured", error=str(e))
        return jsonify({"error": "Server is not configured", "details": str(e)}), 500

    except errors.RequestTimeoutError as e:
        return jsonify({"error": "The request timed out", "details": str(e)}), 504

    except errors.ServiceError as e:
        return jsonify({
            "error": "Failed to answer question",
            "details": str(e),
            "status": e.status,
            "code": e.code,
        }), 502

    except Exception as e:
        logger.error("ask_endpoint_error", error=str(e), error_type=type(e).__name__)
        return jsonify({
            "error": "An error occurred processing your request. Please try again."
        }), 500


async def _timed_check(check) -> Dict[str, Any]:
    start = time.perf_counter()
    result: Dict[str, Any] = {"success": False, "error": None, "latency_ms": None}
    try:
        detail = await check()
        result["success"] = True
        if detail is not None:
            result.update(detail)
    except Exception as e:
        result["error"] = str(e)
    result["latency_ms"] = int((time.perf_counter() - start) * 1000)
    return result


@app.route("/api/debug")
async def debug():
    """Report masked configuration and live checks of the external services."""
    settings = Settings.from_env()

    results: Dict[str, Any] = {
        "env": {
            "OPENAI_API_KEY": mask_value(settings.openai_api_key),
            "SUPABASE_URL": mask_value(settings.supabase_url, 20),
            "SUPABASE_SERVICE_ROLE_KEY": mask_value(settings.supabase_service_role_key),
            "VECTOR_BACKEND": settings.vector_backend,
        },
        "tests": {},
    }

    try:
        pipeline = get_pipeline()
    except errors.ConfigurationError as e:
        results["error"] = str(e)
        return jsonify(results), 503

    state: Dict[str, Any] = {}

    async def check_embedding():
        state["vector"] = await pipeline.embedder.embed("test")
        return {"dimension": len(state["vector"])}

    async def check_retrieval():
        if "vector" not in state:
            raise RuntimeError("skipped: embedding check failed")
        chunks = await pipeline.retriever.retrieve(state["vector"], 1)
        return {"row_count": len(chunks)}

    results["tests"]["embedding"] = await _timed_check(check_embedding)
    results["tests"]["retrieval"] = await _timed_check(check_retrieval)

    healthy = all(test["success"] for test in results["tests"].values())
    return jsonify(results), 200 if healthy else 503


@app.route("/health/live")
async def health_live():
    """Liveness probe - check if app is running."""
    return jsonify({"status": "alive"}), 200


@app.errorhandler(404)
async def not_found(error):
    """Handle 404 errors."""
    return jsonify({"error": "Not found"}), 404


if __name__ == "__main__":
    # For development - serve with hypercorn in production
    app.run(host="0.0.0.0", port=5000, debug=True)
