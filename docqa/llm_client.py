"""Ollama client wrapper for embeddings and chat, with error handling."""
import math

import httpx
from typing import List, Dict, Optional
import structlog

from docqa import config
from docqa.errors import EmbeddingError, SynthesisError

logger = structlog.get_logger()


def _json_object(response: httpx.Response, error_cls, event: str) -> Dict:
    """Decode a JSON object body, raising error_cls for anything else."""
    try:
        data = response.json()
    except ValueError as e:
        logger.error(event, error=str(e), status_code=response.status_code)
        raise error_cls(f"Ollama returned a non-JSON body: {e}") from e

    if not isinstance(data, dict):
        logger.error(event, body_type=type(data).__name__)
        raise error_cls(f"Ollama returned {type(data).__name__}, expected an object")

    return data


class OllamaClient:
    """Async client for the Ollama embeddings and chat endpoints."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        embedding_model: str = None,
        chat_model: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds (defaults to config.EMBEDDING_TIMEOUT)
            embedding_model: Model used by embed() (defaults to config.EMBEDDING_MODEL)
            chat_model: Model used by chat() (defaults to config.CHAT_MODEL)
            transport: Optional httpx transport, mainly for tests
        """
        self.base_url = base_url or config.OLLAMA_BASE_URL
        self.timeout = timeout or config.EMBEDDING_TIMEOUT
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.chat_model = chat_model or config.CHAT_MODEL
        self.transport = transport

    def _client(self, timeout: float = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.timeout,
            transport=self.transport,
        )

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> Dict:
        """Send a non-streaming chat completion request to Ollama.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to the client's chat model)
            temperature: Sampling temperature (0.0-2.0)
            timeout: Request timeout override (defaults to config.CHAT_TIMEOUT)

        Returns:
            Response dict with 'message' containing 'content'

        Raises:
            SynthesisError: On connection, timeout or HTTP errors
        """
        model = model or self.chat_model

        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
        }

        if temperature is not None:
            payload["options"] = {"temperature": temperature}

        try:
            async with self._client(timeout or config.CHAT_TIMEOUT) as client:
                logger.info(
                    "ollama_chat_request",
                    model=model,
                    message_count=len(messages),
                )

                response = await client.post(
                    f"{self.base_url}/api/chat",
                    json=payload,
                )
                response.raise_for_status()

                data = _json_object(response, SynthesisError, "ollama_chat_bad_response")

                message = data.get("message")
                if not isinstance(message, dict):
                    logger.error("ollama_chat_bad_response", keys=sorted(data))
                    raise SynthesisError("Chat response has no message object")

                logger.info(
                    "ollama_chat_response",
                    model=model,
                    response_length=len(str(message.get("content") or "")),
                )

                return data

        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise SynthesisError(f"Chat model unavailable: {e}") from e
        except httpx.HTTPError as e:
            logger.error(
                "ollama_http_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise SynthesisError(f"Chat request failed: {e}") from e

    async def embeddings(
        self,
        prompt: str,
        model: str = None,
    ) -> Dict:
        """Generate embeddings for a text prompt.

        Args:
            prompt: Text to embed
            model: Model to use (defaults to the client's embedding model)

        Returns:
            Response dict with 'embedding' list

        Raises:
            EmbeddingError: On connection, timeout or HTTP errors
        """
        model = model or self.embedding_model

        payload = {
            "model": model,
            "prompt": prompt,
        }

        try:
            async with self._client() as client:
                logger.debug(
                    "ollama_embedding_request",
                    model=model,
                    prompt_length=len(prompt),
                )

                response = await client.post(
                    f"{self.base_url}/api/embeddings",
                    json=payload,
                )
                response.raise_for_status()

                data = _json_object(response, EmbeddingError, "ollama_embedding_bad_response")

                logger.debug(
                    "ollama_embedding_response",
                    model=model,
                    embedding_type=type(data.get("embedding")).__name__,
                )

                return data

        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e), model=model)
            raise EmbeddingError(f"Embedding request failed: {e}") from e

    async def embed(self, text: str) -> List[float]:
        """Return the embedding vector for text.

        Raises:
            EmbeddingError: If the request fails or the vector is empty or non-numeric
        """
        response = await self.embeddings(prompt=text)
        embedding = response.get("embedding")

        if not isinstance(embedding, list) or not embedding:
            logger.error("empty_embedding_returned", text_preview=text[:100])
            raise EmbeddingError("Empty embedding returned from Ollama")

        try:
            vector = [float(x) for x in embedding]
        except (TypeError, ValueError) as e:
            logger.error("non_numeric_embedding_returned", error=str(e))
            raise EmbeddingError(f"Embedding contains non-numeric values: {e}") from e

        if not all(math.isfinite(x) for x in vector):
            raise EmbeddingError("Embedding contains NaN or infinite values")

        return vector

