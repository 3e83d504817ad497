"""OpenAI-compatible chat completion and embedding client."""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from note_synth.config import Config

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
NON_RETRYABLE_STATUS_CODES = {401, 403}


class LLMError(Exception):
    """Raised when the LLM endpoint fails or returns an unusable response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class LLMConfig:
    """Configuration for the LLM client."""

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    chat_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    timeout: int = 60


def is_retryable_error(error: BaseException) -> bool:
    """Decide whether an LLM failure is worth retrying.

    Timeouts, network failures, rate limits and server errors are retryable.
    Authentication failures and invalid keys are not.

    Args:
        error: The exception raised by an LLM call

    Returns:
        True if the call should be retried
    """
    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(error, LLMError) and isinstance(error.__cause__, httpx.TransportError):
        return True

    status = getattr(error, "status_code", None)
    if status in NON_RETRYABLE_STATUS_CODES:
        return False
    if status in RETRYABLE_STATUS_CODES:
        return True

    message = str(error).lower()
    if "invalid api key" in message or "invalid_api_key" in message:
        return False
    return any(
        marker in message
        for marker in ("timeout", "network", "server error", "rate limit", "429", "500")
    )


class LLMClient:
    """Async client for an OpenAI-compatible API."""

    def __init__(self, config: LLMConfig) -> None:
        """Initialize the client.

        Args:
            config: Configuration for the client
        """
        self.config = config
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
            },
            timeout=config.timeout,
        )

    @classmethod
    def from_config(cls, config: "Config") -> "LLMClient | None":
        """Build a client from application config, or None without an API key."""
        if not config.llm.api_key:
            return None
        return cls(
            LLMConfig(
                api_key=config.llm.api_key,
                base_url=config.llm.base_url,
                chat_model=config.llm.chat_model,
                embedding_model=config.embeddings.model,
                timeout=config.llm.timeout_seconds,
            )
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "LLMClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST a JSON body and return the decoded response."""
        try:
            response = await self._client.post(path, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM request to {path} failed with status {e.response.status_code}: "
                f"{e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TransportError as e:
            raise LLMError(f"LLM request to {path} failed: {e}") from e
        return response.json()

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.3,
        json_mode: bool = False,
    ) -> str:
        """Run a chat completion and return the assistant text.

        Args:
            system_prompt: System instructions
            user_prompt: User message
            model: Model override (defaults to the configured chat model)
            max_tokens: Completion token cap
            temperature: Sampling temperature
            json_mode: Ask the endpoint for a JSON object response

        Returns:
            The assistant message content
        """
        body: dict[str, Any] = {
            "model": model or self.config.chat_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        logger.debug(f"Chat completion with model={body['model']}")
        data = await self._post("/chat/completions", body)

        choices = data.get("choices") or []
        if not choices:
            raise LLMError("LLM response contained no choices")
        return choices[0].get("message", {}).get("content") or ""

    async def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.3,
    ) -> dict[str, Any]:
        """Run a chat completion and parse the reply as a JSON object."""
        content = await self.complete(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            json_mode=True,
        )
        try:
            return self._parse_json_response(content)
        except json.JSONDecodeError as e:
            raise LLMError(f"LLM returned invalid JSON: {e}") from e

    async def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector
        """
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one request.

        Args:
            texts: Texts to embed

        Returns:
            One vector per input, in input order
        """
        if not texts:
            return []

        data = await self._post(
            "/embeddings",
            {"model": self.config.embedding_model, "input": texts},
        )
        items = sorted(data.get("data", []), key=lambda item: item.get("index", 0))
        if len(items) != len(texts):
            raise LLMError(f"Expected {len(texts)} embeddings, got {len(items)}")
        return [item["embedding"] for item in items]

    def _parse_json_response(self, content: str) -> dict[str, Any]:
        """Parse JSON from response, handling markdown code blocks."""
        content = content.strip()

        if "```json" in content:
            match = re.search(r"```json\s*([\s\S]*?)```", content)
            if match:
                content = match.group(1).strip()
        elif "```" in content:
            match = re.search(r"```\s*([\s\S]*?)```", content)
            if match:
                content = match.group(1).strip()

        json_match = re.search(r"\{[\s\S]*\}", content)
        if json_match:
            content = json_match.group(0)

        return json.loads(content)
