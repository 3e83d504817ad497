"""Tests for the LLM client."""

import asyncio
import json

import httpx
import pytest


def _client_with(handler):
    """Build an LLMClient whose HTTP calls go to a mock transport."""
    from note_synth.llm.client import LLMClient, LLMConfig

    client = LLMClient(LLMConfig(api_key="sk-test", base_url="https://llm.test/v1"))
    client._client = httpx.AsyncClient(
        base_url="https://llm.test/v1", transport=httpx.MockTransport(handler)
    )
    return client


class TestLLMClient:
    """Tests for LLMClient."""

    @pytest.mark.asyncio
    async def test_complete_returns_message_content(self):
        """Test that the assistant message is returned."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            return httpx.Response(200, json={"choices": [{"message": {"content": "hello"}}]})

        async with _client_with(handler) as client:
            content = await client.complete("system", "user", json_mode=True)

        assert content == "hello"
        assert requests[0]["model"] == "gpt-4o-mini"
        assert requests[0]["response_format"] == {"type": "json_object"}
        assert requests[0]["messages"][0] == {"role": "system", "content": "system"}

    @pytest.mark.asyncio
    async def test_complete_json_strips_code_fences(self):
        """Test that fenced JSON replies are parsed."""

        def handler(request: httpx.Request) -> httpx.Response:
            content = 'Here you go:\n```json\n{"clarity_score": 0.9}\n```'
            return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

        async with _client_with(handler) as client:
            data = await client.complete_json("system", "user")

        assert data == {"clarity_score": 0.9}

    @pytest.mark.asyncio
    async def test_complete_json_invalid_raises(self):
        """Test that non-JSON replies raise LLMError."""
        from note_synth.llm.client import LLMError

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"choices": [{"message": {"content": "not json"}}]})

        async with _client_with(handler) as client:
            with pytest.raises(LLMError):
                await client.complete_json("system", "user")

    @pytest.mark.asyncio
    async def test_http_error_carries_status(self):
        """Test that HTTP failures become LLMError with the status code."""
        from note_synth.llm.client import LLMError

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, text="rate limited")

        async with _client_with(handler) as client:
            with pytest.raises(LLMError) as exc_info:
                await client.complete("system", "user")

        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_connection_error_becomes_llm_error(self):
        """Test that transport failures become retryable LLMError."""
        from note_synth.llm.client import LLMError, is_retryable_error

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client_with(handler) as client:
            with pytest.raises(LLMError) as exc_info:
                await client.embed("text")

        assert exc_info.value.status_code is None
        assert "/embeddings failed" in str(exc_info.value)
        assert is_retryable_error(exc_info.value)

    @pytest.mark.asyncio
    async def test_embed_many_orders_by_index(self):
        """Test that embeddings are returned in input order."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"index": 1, "embedding": [0.0, 1.0]},
                        {"index": 0, "embedding": [1.0, 0.0]},
                    ]
                },
            )

        async with _client_with(handler) as client:
            vectors = await client.embed_many(["first", "second"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]

    @pytest.mark.asyncio
    async def test_embed_many_empty_skips_request(self):
        """Test that no request is made for an empty input."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("unexpected request")

        async with _client_with(handler) as client:
            assert await client.embed_many([]) == []

    def test_from_config_without_key(self, offline_config):
        """Test that no client is built without an API key."""
        from note_synth.llm.client import LLMClient

        assert LLMClient.from_config(offline_config) is None


class TestRetryableErrors:
    """Tests for is_retryable_error."""

    def test_timeouts_are_retryable(self):
        """Test that timeouts are retried."""
        from note_synth.llm.client import is_retryable_error

        assert is_retryable_error(asyncio.TimeoutError())

    def test_status_codes(self):
        """Test status-code based classification."""
        from note_synth.llm.client import LLMError, is_retryable_error

        assert is_retryable_error(LLMError("busy", status_code=503))
        assert not is_retryable_error(LLMError("denied", status_code=401))

    def test_invalid_api_key_not_retryable(self):
        """Test that invalid keys are never retried."""
        from note_synth.llm.client import is_retryable_error

        assert not is_retryable_error(RuntimeError("Invalid API key provided"))
        assert is_retryable_error(RuntimeError("network unreachable"))
        assert not is_retryable_error(ValueError("bad payload"))
