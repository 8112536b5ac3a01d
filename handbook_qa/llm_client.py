"""OpenAI-compatible API client wrapper with error handling."""
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx
import structlog

from handbook_qa import config

logger = structlog.get_logger()


def describe_http_error(
    error: Exception,
) -> Tuple[Union[int, str], str, str]:
    """Pull status, error code and message out of an httpx failure.

    Args:
        error: Exception raised by an httpx call

    Returns:
        Tuple of (status, code, message); unknown parts are "unknown"
    """
    if isinstance(error, httpx.TimeoutException):
        return "timeout", "timeout", str(error) or "request timed out"

    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        status: Union[int, str] = response.status_code
        code = "unknown"
        message = response.reason_phrase or str(error)
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict):
            # OpenAI: {"error": {"message", "code", "type"}}
            # PostgREST: {"message", "code", "details", "hint"}
            detail = body.get("error") if isinstance(body.get("error"), dict) else body
            code = str(detail.get("code") or detail.get("type") or "unknown")
            message = detail.get("message") or message
        return status, code, message

    if isinstance(error, httpx.RequestError):
        return "unknown", type(error).__name__, str(error) or type(error).__name__

    return "unknown", "unknown", str(error)


class OpenAIClient:
    """Async client for the OpenAI REST API (or any compatible server)."""

    def __init__(
        self,
        api_key: str,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            api_key: Bearer credential
            base_url: API base URL (defaults to config.OPENAI_BASE_URL)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key
        self.base_url = (base_url or config.OPENAI_BASE_URL).rstrip("/")
        self.timeout = timeout or config.HTTP_TIMEOUT
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send a chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to config.CHAT_MODEL)
            temperature: Sampling temperature

        Returns:
            Response dict with 'choices'

        Raises:
            httpx.HTTPError: On API errors or timeouts
        """
        model = model or config.CHAT_MODEL

        payload: Dict[str, Any] = {"model": model, "messages": messages}
        if temperature is not None:
            payload["temperature"] = temperature

        try:
            async with self._client() as client:
                logger.info(
                    "openai_chat_request",
                    model=model,
                    message_count=len(messages),
                )

                response = await client.post("/chat/completions", json=payload)
                response.raise_for_status()
                data = response.json()

                logger.info(
                    "openai_chat_response",
                    model=model,
                    choices=len(data.get("choices") or []),
                )

                return data

        except httpx.HTTPError as e:
            status, code, _ = describe_http_error(e)
            logger.error("openai_chat_error", error=str(e), status=status, code=code)
            raise

    async def embeddings(self, text: str, model: str = None) -> Dict[str, Any]:
        """Generate an embedding for a text.

        Args:
            text: Text to embed
            model: Model to use (defaults to config.EMBEDDING_MODEL)

        Returns:
            Response dict with 'data' list of embeddings

        Raises:
            httpx.HTTPError: On API errors or timeouts
        """
        model = model or config.EMBEDDING_MODEL

        try:
            async with self._client() as client:
                logger.debug(
                    "openai_embedding_request",
                    model=model,
                    text_length=len(text),
                )

                response = await client.post(
                    "/embeddings", json={"model": model, "input": text}
                )
                response.raise_for_status()
                return response.json()

        except httpx.HTTPError as e:
            status, code, _ = describe_http_error(e)
            logger.error("openai_embedding_error", error=str(e), status=status, code=code)
            raise
