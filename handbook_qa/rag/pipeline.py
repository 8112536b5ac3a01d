"""Query-time orchestration: embed, retrieve, prompt, synthesize.

Every question runs as an isolated chain of awaited calls. Nothing is
cached or retried; failures from the external services propagate to the
caller unchanged. Listeners registered with ``add_listener`` receive a
``QueryEvent`` once per question, on success and on failure; they run in
worker threads after the answer is ready and never delay or fail it.
"""
import asyncio
import functools
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

import structlog

from handbook_qa import config
from handbook_qa.config import Settings
from handbook_qa.errors import RequestTimeoutError, ValidationError
from handbook_qa.llm_client import OpenAIClient
from handbook_qa.rag.embedder import Embedder, OpenAIEmbedder
from handbook_qa.rag.models import AnswerResult, RetrievedChunk, Source
from handbook_qa.rag.prompt import DocNameNormalizer, HandbookNameNormalizer, build_prompt
from handbook_qa.rag.retriever import SimilarityRetriever, VectorStore
from handbook_qa.rag.synthesizer import AnswerSynthesizer, Synthesizer

logger = structlog.get_logger()

NO_RESULTS_ANSWER = (
    "I couldn't find any relevant information in the handbooks to answer your question."
)


@dataclass
class QueryEvent:
    """Outcome of one question, handed to listeners."""

    question: str
    success: bool
    latency_ms: int
    answer: Optional[str] = None
    sources_count: int = 0
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


QueryListener = Callable[[QueryEvent], None]


def build_vector_store(settings: Settings) -> VectorStore:
    """Create the vector store selected by ``settings.vector_backend``."""
    if settings.vector_backend == "faiss":
        from handbook_qa.rag.store_faiss import FAISSVectorStore

        return FAISSVectorStore(
            index_dir=settings.data_dir,
            dimension=settings.embedding_dim,
            embedding_model=settings.embedding_model,
        )

    from handbook_qa.rag.store_supabase import SupabaseVectorStore

    return SupabaseVectorStore(
        url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
        timeout=settings.http_timeout,
    )


class RagPipeline:
    """Answers questions from retrieved handbook passages."""

    def __init__(
        self,
        embedder: Embedder,
        retriever: SimilarityRetriever,
        synthesizer: Synthesizer,
        normalizer: DocNameNormalizer = None,
        top_k: int = None,
        timeout: float = None,
    ):
        """Initialize the pipeline.

        Args:
            embedder: Question embedder (same model as ingestion)
            retriever: Similarity retriever over stored chunks
            synthesizer: Grounded answer generator
            normalizer: Document label policy (default: HandbookNameNormalizer)
            top_k: Chunks retrieved per question (default from config)
            timeout: Wall-clock budget per question in seconds (default from config)
        """
        self.embedder = embedder
        self.retriever = retriever
        self.synthesizer = synthesizer
        self.normalizer = normalizer or HandbookNameNormalizer()
        self.top_k = top_k if top_k is not None else config.RETRIEVAL_TOP_K
        self.timeout = timeout if timeout is not None else config.REQUEST_TIMEOUT
        self.listeners: List[QueryListener] = []
        self._listener_tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RagPipeline":
        """Wire the OpenAI clients and the configured vector store.

        Raises:
            ConfigurationError: If required credentials are missing
        """
        settings.validate()

        client = OpenAIClient(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.http_timeout,
        )

        return cls(
            embedder=OpenAIEmbedder(
                client,
                model=settings.embedding_model,
                dimension=settings.embedding_dim,
            ),
            retriever=SimilarityRetriever(build_vector_store(settings)),
            synthesizer=AnswerSynthesizer(
                client,
                model=settings.chat_model,
                temperature=settings.temperature,
                corpus_name=settings.corpus_name,
            ),
            normalizer=HandbookNameNormalizer(settings.handbook_prefix),
            top_k=settings.top_k,
            timeout=settings.request_timeout,
        )

    def add_listener(self, listener: QueryListener) -> None:
        """Register a callback for QueryEvents."""
        self.listeners.append(listener)

    def _emit(self, event: QueryEvent) -> None:
        # Listeners run in worker threads so blocking I/O stays off the request path
        for listener in self.listeners:
            task = asyncio.create_task(asyncio.to_thread(listener, event))
            self._listener_tasks.add(task)
            task.add_done_callback(functools.partial(self._listener_done, listener))

    def _listener_done(self, listener: QueryListener, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(
                "query_listener_failed",
                listener=getattr(listener, "__name__", type(listener).__name__),
                error=str(error),
            )

    async def drain_listeners(self) -> None:
        """Wait until every dispatched listener call has finished."""
        if self._listener_tasks:
            await asyncio.gather(*self._listener_tasks, return_exceptions=True)

    def to_sources(self, chunks: List[RetrievedChunk]) -> List[Source]:
        """Convert retrieved chunks to caller-facing sources, preserving order."""
        return [
            Source(
                doc_name=self.normalizer(chunk.source_document),
                page=chunk.page_number,
                content=chunk.content,
            )
            for chunk in chunks
        ]

    async def _run(self, question: str) -> AnswerResult:
        embedding = await self.embedder.embed(question)

        chunks = await self.retriever.retrieve(embedding, self.top_k)

        if not chunks:
            logger.info("no_relevant_chunks", question_preview=question[:100])
            return AnswerResult(answer=NO_RESULTS_ANSWER, sources=[])

        prompt = build_prompt(chunks, question, self.normalizer)
        answer = await self.synthesizer.synthesize(prompt)

        return AnswerResult(answer=answer, sources=self.to_sources(chunks))

    async def answer(
        self,
        question: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AnswerResult:
        """Answer a question from the handbooks.

        Args:
            question: The user's question
            metadata: Request details passed through to listeners (ip, user agent, ...)

        Returns:
            AnswerResult with the answer and its sources in retrieval order

        Raises:
            ValidationError: If the question is empty
            EmbeddingServiceError, RetrievalServiceError, GenerationServiceError:
                If an external service fails
            RequestTimeoutError: If the whole chain exceeds the time budget
        """
        question = (question or "").strip()
        if not question:
            raise ValidationError("Question cannot be empty")

        metadata = metadata or {}
        start = time.perf_counter()

        def elapsed_ms() -> int:
            return int((time.perf_counter() - start) * 1000)

        logger.info("question_received", question_preview=question[:100])

        try:
            async with asyncio.timeout(self.timeout):
                result = await self._run(question)

        except TimeoutError as e:
            error = RequestTimeoutError(
                f"Answering took longer than {self.timeout:.0f}s"
            )
            logger.error("question_timed_out", timeout=self.timeout)
            self._emit(QueryEvent(
                question=question,
                success=False,
                latency_ms=elapsed_ms(),
                error=str(error),
                metadata=metadata,
            ))
            raise error from e

        except Exception as e:
            logger.error(
                "question_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            self._emit(QueryEvent(
                question=question,
                success=False,
                latency_ms=elapsed_ms(),
                error=str(e),
                metadata=metadata,
            ))
            raise

        latency = elapsed_ms()
        logger.info(
            "question_answered",
            sources_count=len(result.sources),
            latency_ms=latency,
        )
        self._emit(QueryEvent(
            question=question,
            success=True,
            latency_ms=latency,
            answer=result.answer,
            sources_count=len(result.sources),
            metadata=metadata,
        ))

        return result
