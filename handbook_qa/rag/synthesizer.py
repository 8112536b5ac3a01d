"""Grounded answer generation through the chat completions endpoint."""
from typing import Protocol

import httpx
import structlog

from handbook_qa import config
from handbook_qa.errors import GenerationServiceError
from handbook_qa.llm_client import OpenAIClient, describe_http_error

logger = structlog.get_logger()

NO_RESPONSE = "No response from model."


def grounding_instruction(corpus_name: str = None) -> str:
    """System instruction restricting answers to the supplied context."""
    corpus_name = corpus_name or config.CORPUS_NAME
    return (
        f"You are a helpful assistant that answers questions about {corpus_name}. "
        "Answer ONLY using the provided context. "
        "If the context doesn't contain enough information to answer, say so honestly. "
        "Do not invent rules or policies that aren't in the provided context. "
        "Be concise and cite which source number(s) you're using when relevant."
    )


class Synthesizer(Protocol):
    """Anything that turns a grounded prompt into answer text."""

    async def synthesize(self, prompt: str) -> str:
        ...


class AnswerSynthesizer:
    """Chat-completion synthesizer with low-temperature sampling."""

    def __init__(
        self,
        client: OpenAIClient,
        model: str = None,
        temperature: float = None,
        corpus_name: str = None,
    ):
        self.client = client
        self.model = model or config.CHAT_MODEL
        self.temperature = temperature if temperature is not None else config.TEMPERATURE
        self.system_prompt = grounding_instruction(corpus_name)

    async def synthesize(self, prompt: str) -> str:
        """Generate an answer for a prompt built by ``build_prompt``.

        Returns:
            Answer text, or NO_RESPONSE when the model returned nothing

        Raises:
            GenerationServiceError: On remote errors or timeouts
        """
        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": prompt},
        ]

        try:
            response = await self.client.chat(
                messages, model=self.model, temperature=self.temperature
            )
        except httpx.HTTPError as e:
            status, code, message = describe_http_error(e)
            raise GenerationServiceError(message, status=status, code=code) from e
        except ValueError as e:
            raise GenerationServiceError(
                f"Chat completion response is not valid JSON: {e}",
                status=200,
                code="bad_response",
            ) from e

        if not isinstance(response, dict):
            raise GenerationServiceError(
                "Unexpected chat completion response format",
                status=200,
                code="bad_response",
            )

        choices = response.get("choices") or []
        content = None
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            if isinstance(message, dict):
                content = message.get("content")

        if not isinstance(content, str) or not content:
            logger.warning("empty_model_response", model=self.model)
            return NO_RESPONSE

        return content
