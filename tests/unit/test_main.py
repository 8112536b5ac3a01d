"""Tests for the Quart HTTP surface."""
import asyncio

import pytest

from handbook_qa import main
from handbook_qa.errors import RetrievalServiceError

from .conftest import FakeStore


@pytest.fixture
def client():
    return main.app.test_client()


@pytest.fixture
def use_pipeline(monkeypatch):
    def _use(pipeline):
        monkeypatch.setattr(main, "_pipeline", pipeline)
        return pipeline

    return _use


def post_ask(client, **kwargs):
    async def _post():
        response = await client.post("/api/ask", **kwargs)
        if main._pipeline is not None:
            await main._pipeline.drain_listeners()
        return response.status_code, await response.get_json()

    return asyncio.run(_post())


def get(client, path):
    async def _get():
        response = await client.get(path)
        return response.status_code, await response.get_json()

    return asyncio.run(_get())


def test_ask_returns_answer_and_sources(client, use_pipeline, make_pipeline, handbook_results):
    events = []
    pipeline = use_pipeline(make_pipeline(FakeStore(handbook_results)))
    pipeline.add_listener(events.append)

    status, body = post_ask(
        client,
        json={"question": "What is the cell phone policy?"},
        headers={"x-forwarded-for": "203.0.113.9", "user-agent": "pytest"},
    )

    assert status == 200
    assert body["answer"] == "Phones must be off during class [1]."
    assert body["sources"][0] == {
        "doc_name": "High School Handbook (English)",
        "page": 12,
        "content": "Cell phones must be silenced and stored during instructional time.",
    }
    assert events[0].metadata["ip_address"] == "203.0.113.9"
    assert events[0].metadata["user_agent"] == "pytest"


def test_ask_with_no_matches(client, use_pipeline, make_pipeline):
    use_pipeline(make_pipeline(FakeStore([])))

    status, body = post_ask(client, json={"question": "Is there a pool?"})

    assert status == 200
    assert body["sources"] == []


@pytest.mark.parametrize(
    "kwargs",
    [
        {"json": {}},
        {"json": {"question": 42}},
        {"json": ["question"]},
        {"data": "not json", "headers": {"content-type": "application/json"}},
    ],
)
def test_ask_rejects_missing_question(client, use_pipeline, make_pipeline, kwargs):
    use_pipeline(make_pipeline(FakeStore([])))

    status, body = post_ask(client, **kwargs)

    assert status == 400
    assert body["error"] == "Missing or invalid 'question' field"


def test_ask_rejects_blank_question(client, use_pipeline, make_pipeline, embedder):
    use_pipeline(make_pipeline(FakeStore([])))

    status, body = post_ask(client, json={"question": "   "})

    assert status == 400
    assert body["error"] == "Question cannot be empty"
    assert embedder.calls == []


def test_service_failure_is_reported_with_code(client, use_pipeline, make_pipeline):
    class RejectingStore(FakeStore):
        async def search(self, query_embedding, k):
            raise RetrievalServiceError("Could not find the function", status=404, code="PGRST202")

    use_pipeline(make_pipeline(RejectingStore()))

    status, body = post_ask(client, json={"question": "Phones?"})

    assert status == 502
    assert body["status"] == 404
    assert body["code"] == "PGRST202"
    assert "Could not find the function" in body["details"]


def test_timeout_maps_to_504(client, use_pipeline, make_pipeline):
    class SlowStore(FakeStore):
        async def search(self, query_embedding, k):
            await asyncio.sleep(5)
            return []

    use_pipeline(make_pipeline(SlowStore(), timeout=0.05))

    status, body = post_ask(client, json={"question": "Phones?"})

    assert status == 504


def test_unconfigured_server(client, monkeypatch):
    monkeypatch.setattr(main, "_pipeline", None)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    status, body = post_ask(client, json={"question": "Phones?"})

    assert status == 500
    assert body["error"] == "Server is not configured"
    assert "OPENAI_API_KEY" in body["details"]


def test_debug_reports_checks(client, use_pipeline, make_pipeline, handbook_results, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-abcdefghijklmnop")
    use_pipeline(make_pipeline(FakeStore(handbook_results)))

    status, body = get(client, "/api/debug")

    assert status == 200
    assert body["env"]["OPENAI_API_KEY"] == "set (sk-abcdefg***)"
    assert body["tests"]["embedding"]["success"] is True
    assert body["tests"]["embedding"]["dimension"] == 4
    assert body["tests"]["retrieval"]["row_count"] == 1


def test_debug_without_configuration(client, monkeypatch):
    monkeypatch.setattr(main, "_pipeline", None)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    status, body = get(client, "/api/debug")

    assert status == 503
    assert body["env"]["OPENAI_API_KEY"] == "NOT SET"
    assert "OPENAI_API_KEY" in body["error"]


def test_health_and_not_found(client):
    assert get(client, "/health/live") == (200, {"status": "alive"})
    assert get(client, "/nope")[0] == 404
