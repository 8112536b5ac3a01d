"""Shared fixtures: in-memory stand-ins for the external services."""
import asyncio
from typing import Any, Dict, List

import pytest

from handbook_qa.rag.pipeline import RagPipeline
from handbook_qa.rag.retriever import SimilarityRetriever


class FakeEmbedder:
    """Deterministic embedder that records what it was asked to embed."""

    def __init__(self, fail_on: str = None):
        self.calls: List[str] = []
        self.fail_on = fail_on

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail_on is not None and self.fail_on in text:
            from handbook_qa.errors import EmbeddingServiceError

            raise EmbeddingServiceError("boom", status=500, code="server_error")
        return [float(len(text) % 7 + 1), 1.0, 0.5, 0.25]


class FakeStore:
    """Vector store returning canned search results."""

    def __init__(self, results: List[Dict[str, Any]] = None):
        self.results = results or []
        self.inserted: List[Dict[str, Any]] = []
        self.deleted: List[str] = []
        self.searches: List[int] = []
        self.flushed = 0

    async def search(self, query_embedding, k):
        self.searches.append(k)
        return list(self.results)

    async def insert(self, record):
        self.inserted.append(record)

    async def delete_document(self, doc_name):
        self.deleted.append(doc_name)
        before = len(self.inserted)
        self.inserted = [r for r in self.inserted if r["doc_name"] != doc_name]
        return before - len(self.inserted)

    async def flush(self):
        self.flushed += 1


class FakeSynthesizer:
    """Synthesizer that records prompts and returns a fixed answer."""

    def __init__(self, answer: str = "Phones must be off during class [1]."):
        self.answer = answer
        self.prompts: List[str] = []

    async def synthesize(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.answer


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def make_pipeline(embedder, synthesizer):
    def _make(store, **kwargs):
        return RagPipeline(
            embedder=embedder,
            retriever=SimilarityRetriever(store),
            synthesizer=synthesizer,
            **kwargs,
        )

    return _make


@pytest.fixture
def handbook_results():
    return [
        {
            "doc_name": "LincolnHandbook2025HighSchoolEnglish1755706408612_8FBfTt",
            "page": 12,
            "content": "Cell phones must be silenced and stored during instructional time.",
            "similarity": 0.82,
        },
        {
            "doc_name": "LincolnHandbook2025HighSchoolEnglish1755706408612_8FBfTt",
            "page": 45,
            "content": "Confiscated phones are returned to a parent or guardian.",
            "similarity": 0.77,
        },
    ]


def answer_and_drain(pipeline, question, **kwargs):
    """Answer a question, then wait for the listeners it dispatched."""

    async def _run():
        try:
            return await pipeline.answer(question, **kwargs)
        finally:
            await pipeline.drain_listeners()

    return asyncio.run(_run())
