"""LLM provider contract and the Ollama client implementation."""
import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx
import structlog

from siasef import config
from siasef.errors import ProviderUnavailableError, ProviderUnreachableError
from siasef.models import Turn

logger = structlog.get_logger()


class LLMProvider(ABC):
    """Chat-completion and embedding service used by the RAG core."""

    name = "base"

    @property
    def is_configured(self) -> bool:
        """Whether credentials required by the provider are present."""
        return True

    @abstractmethod
    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed texts, returning one vector per input in the same order.

        Raises:
            ProviderUnavailableError: On transport or API errors
        """

    @abstractmethod
    def chat_stream(
        self,
        history: Sequence[Turn],
        prompt: str,
        system_instruction: str,
    ) -> AsyncIterator[str]:
        """Stream text deltas answering ``prompt`` after ``history``.

        Raises:
            ProviderUnavailableError: On transport or API errors
        """


def as_text(value: Any) -> str:
    """Normalize a provider text field into a plain string.

    Some SDK objects expose text as an attribute, others as a zero-argument
    accessor; raw payloads may omit it entirely.
    """
    if callable(value):
        value = value()
    if value is None:
        return ""
    return str(value)


def as_vector(value: Any) -> List[float]:
    """Normalize a provider embedding (bare list or ``{"values": [...]}``) to floats."""
    if isinstance(value, dict):
        value = value.get("values", value.get("embedding"))
    if not isinstance(value, (list, tuple)):
        raise ProviderUnavailableError(f"Unexpected embedding payload: {type(value).__name__}")
    return [float(x) for x in value]


def as_payload(response: httpx.Response) -> Dict[str, Any]:
    """Decode a JSON object body, rejecting anything else as a provider error."""
    try:
        data = response.json()
    except ValueError as e:
        logger.error("provider_response_not_json", preview=response.text[:100])
        raise ProviderUnavailableError("Provider returned a non-JSON response") from e
    if not isinstance(data, dict):
        raise ProviderUnavailableError(
            f"Unexpected provider payload: {type(data).__name__}"
        )
    return data


def as_vectors(values: Any, expected: int) -> List[List[float]]:
    if not isinstance(values, list) or len(values) != expected:
        raise ProviderUnavailableError(
            f"Embedding count mismatch: expected {expected}, "
            f"got {len(values) if isinstance(values, list) else 'none'}"
        )
    return [as_vector(value) for value in values]


class OllamaClient(LLMProvider):
    """Async client for interacting with Ollama API."""

    name = "ollama"

    _ROLES = {"user": "user", "model": "assistant"}

    def __init__(
        self,
        base_url: str = None,
        chat_model: str = None,
        embedding_model: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            chat_model: Chat model (defaults to config.CHAT_MODEL)
            embedding_model: Embedding model (defaults to config.EMBEDDING_MODEL)
            timeout: Request timeout in seconds (defaults to config.LLM_TIMEOUT)
            transport: Optional httpx transport, used by tests
        """
        self.base_url = base_url or config.OLLAMA_BASE_URL
        self.chat_model = chat_model or config.CHAT_MODEL
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.timeout = timeout or config.LLM_TIMEOUT
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Generate embeddings for a batch of texts via ``/api/embed``."""
        payload = {"model": self.embedding_model, "input": list(texts)}

        try:
            async with self._client() as client:
                logger.debug(
                    "ollama_embedding_request",
                    model=self.embedding_model,
                    batch_size=len(texts),
                )

                response = await client.post(f"{self.base_url}/api/embed", json=payload)
                response.raise_for_status()
                data = as_payload(response)

        except httpx.TransportError as e:
            logger.error("ollama_unreachable", error=str(e), base_url=self.base_url)
            raise ProviderUnreachableError(f"Ollama unreachable: {e}") from e
        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e), base_url=self.base_url)
            raise ProviderUnavailableError(f"Ollama embedding failed: {e}") from e

        return as_vectors(data.get("embeddings"), expected=len(texts))

    async def chat_stream(
        self,
        history: Sequence[Turn],
        prompt: str,
        system_instruction: str,
    ) -> AsyncIterator[str]:
        """Stream a chat completion from ``/api/chat`` (NDJSON lines)."""
        messages: List[Dict[str, str]] = [{"role": "system", "content": system_instruction}]
        messages += [
            {"role": self._ROLES.get(turn.role, turn.role), "content": turn.content}
            for turn in history
        ]
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": self.chat_model,
            "messages": messages,
            "stream": True,
            "options": {"temperature": config.CHAT_TEMPERATURE},
        }

        logger.info(
            "ollama_chat_request",
            model=self.chat_model,
            message_count=len(messages),
        )

        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", f"{self.base_url}/api/chat", json=payload
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        data = json.loads(line)
                        if data.get("error"):
                            raise ProviderUnavailableError(str(data["error"]))
                        text = as_text(data.get("message", {}).get("content"))
                        if text:
                            yield text
                        if data.get("done"):
                            break

        except httpx.HTTPError as e:
            logger.error("ollama_chat_error", error=str(e), base_url=self.base_url)
            raise ProviderUnavailableError(f"Ollama chat failed: {e}") from e
        except json.JSONDecodeError as e:
            logger.error("ollama_stream_decode_error", error=str(e))
            raise ProviderUnavailableError("Invalid response from Ollama") from e

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Raises:
            ProviderUnavailableError: On API errors
        """
        try:
            async with httpx.AsyncClient(timeout=5.0, transport=self.transport) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
                data = as_payload(response)
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise ProviderUnavailableError(f"Ollama unreachable: {e}") from e


def create_provider(name: str = None) -> LLMProvider:
    """Build the provider selected by ``LLM_PROVIDER``."""
    name = (name or config.LLM_PROVIDER).lower()
    if name == "ollama":
        return OllamaClient()
    if name == "gemini":
        from siasef.gemini_client import GeminiClient

        return GeminiClient()
    raise ValueError(f"Unknown LLM provider: {name}")
