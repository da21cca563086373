"""Google Gemini client over the public REST API.

Embeddings use ``embedContent``/``batchEmbedContents``; chat streams use
``streamGenerateContent?alt=sse`` and are parsed with :class:`SSEDecoder`.
"""
import json
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx
import structlog

from siasef import config
from siasef.errors import ProviderUnavailableError, ProviderUnreachableError
from siasef.llm_client import LLMProvider, as_payload, as_text, as_vector, as_vectors
from siasef.models import Turn
from siasef.streaming import SSEDecoder

logger = structlog.get_logger()


class GeminiClient(LLMProvider):
    """Async Gemini client authenticated with an API key."""

    name = "gemini"

    def __init__(
        self,
        api_key: str = None,
        base_url: str = None,
        chat_model: str = None,
        embedding_model: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = config.GEMINI_API_KEY if api_key is None else api_key
        self.base_url = (base_url or config.GEMINI_BASE_URL).rstrip("/")
        self.chat_model = chat_model or config.GEMINI_CHAT_MODEL
        self.embedding_model = embedding_model or config.GEMINI_EMBEDDING_MODEL
        self.timeout = timeout or config.LLM_TIMEOUT
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={"x-goog-api-key": self.api_key},
        )

    def _require_key(self) -> None:
        if not self.api_key:
            raise ProviderUnavailableError("GEMINI_API_KEY is not configured")

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed one text with ``embedContent`` or several with ``batchEmbedContents``."""
        self._require_key()
        model = f"models/{self.embedding_model}"

        if len(texts) == 1:
            url = f"{self.base_url}/{model}:embedContent"
            payload: Dict[str, Any] = {"content": {"parts": [{"text": texts[0]}]}}
        else:
            url = f"{self.base_url}/{model}:batchEmbedContents"
            payload = {
                "requests": [
                    {"model": model, "content": {"parts": [{"text": text}]}}
                    for text in texts
                ]
            }

        try:
            async with self._client() as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
                data = as_payload(response)
        except httpx.TransportError as e:
            logger.error("gemini_unreachable", error=str(e), model=self.embedding_model)
            raise ProviderUnreachableError(f"Gemini unreachable: {e}") from e
        except httpx.HTTPError as e:
            logger.error("gemini_embedding_error", error=str(e), model=self.embedding_model)
            raise ProviderUnavailableError(f"Gemini embedding failed: {e}") from e

        if len(texts) == 1:
            return [as_vector(data.get("embedding"))]
        return as_vectors(data.get("embeddings"), expected=len(texts))

    async def chat_stream(
        self,
        history: Sequence[Turn],
        prompt: str,
        system_instruction: str,
    ) -> AsyncIterator[str]:
        """Stream a chat completion as text deltas."""
        self._require_key()

        contents = [
            {"role": turn.role, "parts": [{"text": turn.content}]} for turn in history
        ]
        contents.append({"role": "user", "parts": [{"text": prompt}]})
        payload = {
            "contents": contents,
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "generationConfig": {"temperature": config.CHAT_TEMPERATURE},
        }
        url = f"{self.base_url}/models/{self.chat_model}:streamGenerateContent"

        logger.info("gemini_chat_request", model=self.chat_model, turn_count=len(contents))

        decoder = SSEDecoder()
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", url, params={"alt": "sse"}, json=payload
                ) as response:
                    response.raise_for_status()
                    async for chunk in response.aiter_text():
                        for data in decoder.feed(chunk):
                            text = _candidate_text(json.loads(data))
                            if text:
                                yield text
                    for data in decoder.flush():
                        text = _candidate_text(json.loads(data))
                        if text:
                            yield text

        except httpx.HTTPError as e:
            logger.error("gemini_chat_error", error=str(e), model=self.chat_model)
            raise ProviderUnavailableError(f"Gemini chat failed: {e}") from e
        except json.JSONDecodeError as e:
            logger.error("gemini_stream_decode_error", error=str(e))
            raise ProviderUnavailableError("Invalid response from Gemini") from e


def _candidate_text(payload: Dict[str, Any]) -> str:
    """Join the text parts of the first candidate of a streamed chunk."""
    if payload.get("error"):
        error = payload["error"]
        message = error.get("message") if isinstance(error, dict) else error
        raise ProviderUnavailableError(str(message))

    candidates = payload.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(as_text(part.get("text")) for part in parts)
