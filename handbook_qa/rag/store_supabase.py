"""Supabase (pgvector) vector store accessed through PostgREST.

Expects a ``handbook_chunks`` table and a ``match_handbook_chunks`` SQL
function that orders rows by cosine similarity to ``query_embedding``.
"""
from typing import Any, Dict, List, Optional

import httpx
import structlog

from handbook_qa import config
from handbook_qa.errors import RetrievalServiceError
from handbook_qa.llm_client import describe_http_error

logger = structlog.get_logger()

CHUNKS_TABLE = "handbook_chunks"
MATCH_FUNCTION = "match_handbook_chunks"


def format_vector(embedding: List[float]) -> str:
    """Render a vector in pgvector's text format."""
    return "[" + ",".join(repr(float(x)) for x in embedding) + "]"


class SupabaseVectorStore:
    """Vector store backed by a Supabase project."""

    def __init__(
        self,
        url: str,
        service_role_key: str,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the store.

        Args:
            url: Supabase project URL
            service_role_key: Service role key; server-side use only
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.url = url.rstrip("/")
        self.service_role_key = service_role_key
        self.timeout = timeout or config.HTTP_TIMEOUT
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{self.url}/rest/v1",
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "apikey": self.service_role_key,
                "Authorization": f"Bearer {self.service_role_key}",
            },
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response
        except httpx.HTTPError as e:
            status, code, message = describe_http_error(e)
            logger.error(
                "supabase_request_failed",
                method=method,
                path=path,
                status=status,
                code=code,
                error=message,
            )
            raise RetrievalServiceError(message, status=status, code=code) from e

    async def search(self, query_embedding: List[float], k: int) -> List[Dict[str, Any]]:
        """Call the similarity RPC.

        Raises:
            RetrievalServiceError: If the RPC fails
        """
        response = await self._request(
            "POST",
            f"/rpc/{MATCH_FUNCTION}",
            json={
                "query_embedding": format_vector(query_embedding),
                "match_count": k,
            },
        )
        data = response.json() or []

        logger.info("supabase_search_completed", top_k=k, results_found=len(data))
        return data

    async def insert(self, record: Dict[str, Any]) -> None:
        """Insert one chunk row.

        Raises:
            RetrievalServiceError: If the insert is rejected
        """
        await self._request(
            "POST",
            f"/{CHUNKS_TABLE}",
            json=record,
            headers={"Prefer": "return=minimal"},
        )

    async def delete_document(self, doc_name: str) -> int:
        """Delete every chunk row of a document.

        Raises:
            RetrievalServiceError: If the delete is rejected
        """
        response = await self._request(
            "DELETE",
            f"/{CHUNKS_TABLE}",
            params={"doc_name": f"eq.{doc_name}"},
            headers={"Prefer": "return=representation"},
        )
        deleted = len(response.json() or []) if response.content else 0

        logger.info("supabase_document_deleted", doc_name=doc_name, chunks_deleted=deleted)
        return deleted

    async def flush(self) -> None:
        """Rows are durable on insert; nothing to do."""
