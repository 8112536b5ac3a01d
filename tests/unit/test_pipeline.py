"""Tests for question answering orchestration."""
import asyncio
import threading
import time

import pytest

from handbook_qa.errors import (
    EmbeddingServiceError,
    GenerationServiceError,
    RequestTimeoutError,
    ValidationError,
)
from handbook_qa.rag.pipeline import NO_RESULTS_ANSWER

from .conftest import FakeStore, answer_and_drain


def test_cell_phone_question_is_answered_with_sources(
    make_pipeline, embedder, synthesizer, handbook_results
):
    pipeline = make_pipeline(FakeStore(handbook_results))

    result = asyncio.run(pipeline.answer("What is the cell phone policy?"))

    assert result.answer == "Phones must be off during class [1]."
    assert [(s.doc_name, s.page) for s in result.sources] == [
        ("High School Handbook (English)", 12),
        ("High School Handbook (English)", 45),
    ]
    assert result.sources[0].content.startswith("Cell phones must be silenced")
    assert embedder.calls == ["What is the cell phone policy?"]

    prompt = synthesizer.prompts[0]
    assert "[1] (High School Handbook (English), p.12)" in prompt
    assert "[2] (High School Handbook (English), p.45)" in prompt
    assert prompt.endswith("QUESTION:\nWhat is the cell phone policy?")


def test_sources_follow_retrieval_order(make_pipeline, handbook_results):
    reordered = list(reversed(handbook_results))
    pipeline = make_pipeline(FakeStore(reordered))

    result = asyncio.run(pipeline.answer("Phones?"))

    assert [s.page for s in result.sources] == [12, 45]


def test_no_results_skips_generation(make_pipeline, synthesizer):
    pipeline = make_pipeline(FakeStore([]))

    result = asyncio.run(pipeline.answer("Is there a pool?"))

    assert result.answer == NO_RESULTS_ANSWER
    assert result.sources == []
    assert synthesizer.prompts == []


def test_top_k_reaches_the_store(make_pipeline, handbook_results):
    store = FakeStore(handbook_results)
    pipeline = make_pipeline(store, top_k=1)

    result = asyncio.run(pipeline.answer("Phones?"))

    assert store.searches == [1]
    assert len(result.sources) == 1


@pytest.mark.parametrize("question", ["", "   ", "\n\t", None])
def test_empty_question_is_rejected(make_pipeline, embedder, question):
    pipeline = make_pipeline(FakeStore())

    with pytest.raises(ValidationError):
        asyncio.run(pipeline.answer(question))

    assert embedder.calls == []


def test_question_is_trimmed(make_pipeline, embedder, handbook_results):
    pipeline = make_pipeline(FakeStore(handbook_results))

    asyncio.run(pipeline.answer("  When does school start?  "))

    assert embedder.calls == ["When does school start?"]


def test_listeners_receive_success_event(make_pipeline, handbook_results):
    events = []
    pipeline = make_pipeline(FakeStore(handbook_results))
    pipeline.add_listener(events.append)

    answer_and_drain(pipeline, "Phones?", metadata={"ip_address": "203.0.113.9"})

    assert len(events) == 1
    event = events[0]
    assert event.success is True
    assert event.question == "Phones?"
    assert event.sources_count == 2
    assert event.answer == "Phones must be off during class [1]."
    assert event.metadata == {"ip_address": "203.0.113.9"}
    assert event.latency_ms >= 0


def test_service_failure_propagates_and_is_reported(make_pipeline, handbook_results):
    events = []

    class FailingSynthesizer:
        async def synthesize(self, prompt):
            raise GenerationServiceError("rate limited", status=429, code="rate_limit_exceeded")

    pipeline = make_pipeline(FakeStore(handbook_results))
    pipeline.synthesizer = FailingSynthesizer()
    pipeline.add_listener(events.append)

    with pytest.raises(GenerationServiceError) as exc_info:
        answer_and_drain(pipeline, "Phones?")

    assert exc_info.value.status == 429
    assert [e.success for e in events] == [False]
    assert "rate limited" in events[0].error


def test_embedding_failure_stops_before_retrieval(make_pipeline, handbook_results):
    from .conftest import FakeEmbedder

    store = FakeStore(handbook_results)
    pipeline = make_pipeline(store)
    pipeline.embedder = FakeEmbedder(fail_on="Phones")

    with pytest.raises(EmbeddingServiceError):
        asyncio.run(pipeline.answer("Phones?"))

    assert store.searches == []


def test_failing_listener_does_not_fail_the_request(make_pipeline, handbook_results):
    seen = []

    def broken(event):
        raise RuntimeError("log database locked")

    pipeline = make_pipeline(FakeStore(handbook_results))
    pipeline.add_listener(broken)
    pipeline.add_listener(seen.append)

    result = answer_and_drain(pipeline, "Phones?")

    assert result.sources
    assert len(seen) == 1


def test_slow_chain_times_out(make_pipeline, handbook_results):
    events = []

    class SlowSynthesizer:
        async def synthesize(self, prompt):
            await asyncio.sleep(5)
            return "too late"

    pipeline = make_pipeline(FakeStore(handbook_results), timeout=0.05)
    pipeline.synthesizer = SlowSynthesizer()
    pipeline.add_listener(events.append)

    with pytest.raises(RequestTimeoutError):
        answer_and_drain(pipeline, "Phones?")

    assert [e.success for e in events] == [False]


def test_slow_listener_does_not_delay_the_answer(make_pipeline, handbook_results):
    events = []

    def slow(event):
        time.sleep(0.5)
        events.append(event)

    pipeline = make_pipeline(FakeStore(handbook_results))
    pipeline.add_listener(slow)

    async def run():
        start = time.perf_counter()
        result = await pipeline.answer("Phones?")
        elapsed = time.perf_counter() - start
        await pipeline.drain_listeners()
        return result, elapsed

    result, elapsed = asyncio.run(run())

    assert result.sources
    assert elapsed < 0.4
    assert len(events) == 1


def test_listeners_run_off_the_event_loop_thread(make_pipeline, handbook_results):
    threads = []
    pipeline = make_pipeline(FakeStore(handbook_results))
    pipeline.add_listener(lambda event: threads.append(threading.get_ident()))

    answer_and_drain(pipeline, "Phones?")

    assert threads and threads[0] != threading.get_ident()


def test_zero_top_k_is_not_replaced_by_default(make_pipeline, handbook_results):
    pipeline = make_pipeline(FakeStore(handbook_results), top_k=0)

    assert pipeline.top_k == 0
    with pytest.raises(ValueError):
        asyncio.run(pipeline.answer("Phones?"))
