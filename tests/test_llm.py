import json

import httpx
import pytest

from guestdesk.config import Settings
from guestdesk.services.llm import (
    AnthropicAdapter,
    GeminiAdapter,
    GenerationEmptyOutput,
    GenerationRejected,
    GenerationUnavailable,
    OpenAIAdapter,
    OpenAICompatibleAdapter,
    build_adapter,
)

HISTORY = [
    {"role": "assistant", "content": "您好！欢迎光临"},
    {"role": "user", "content": "婚礼在哪里"},
    {"role": "assistant", "content": "在花园酒店"},
    {"role": "system", "content": "ignored"},
]


def _capture(response: httpx.Response):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content) if request.content else None
        return response

    return seen, httpx.MockTransport(handler)


class TestOpenAICompatibleAdapter:
    @pytest.mark.asyncio
    async def test_request_and_normalized_response(self):
        seen, transport = _capture(
            httpx.Response(
                200,
                json={
                    "model": "local-model",
                    "choices": [{"message": {"content": "下午2点"}, "finish_reason": "stop"}],
                    "usage": {"total_tokens": 57},
                },
            )
        )
        adapter = OpenAICompatibleAdapter("http://llm.test/v1", "local-model", transport=transport)

        result = await adapter.complete("SYSTEM", HISTORY, "几点")

        assert result.text == "下午2点"
        assert result.tokens_used == 57
        assert result.finish_reason == "stop"
        assert seen["url"] == "http://llm.test/v1/chat/completions"
        roles = [m["role"] for m in seen["body"]["messages"]]
        assert roles == ["system", "assistant", "user", "assistant", "user"]
        assert seen["body"]["messages"][-1]["content"] == "几点"

    @pytest.mark.asyncio
    async def test_empty_content_raises(self):
        _, transport = _capture(
            httpx.Response(200, json={"choices": [{"message": {"content": ""}, "finish_reason": "length"}]})
        )
        adapter = OpenAICompatibleAdapter("http://llm.test/v1", "m", transport=transport)

        with pytest.raises(GenerationEmptyOutput) as exc:
            await adapter.complete("SYSTEM", [], "hi")
        assert exc.value.finish_reason == "length"

    @pytest.mark.asyncio
    async def test_http_error_is_rejected(self):
        _, transport = _capture(httpx.Response(401, json={"error": "bad key"}))
        adapter = OpenAICompatibleAdapter("http://llm.test/v1", "m", api_key="k", transport=transport)

        with pytest.raises(GenerationRejected) as exc:
            await adapter.complete("SYSTEM", [], "hi")
        assert exc.value.upstream_status == 401

    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        adapter = OpenAICompatibleAdapter("http://llm.test/v1", "m", transport=httpx.MockTransport(refuse))

        with pytest.raises(GenerationUnavailable):
            await adapter.complete("SYSTEM", [], "hi")

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        adapter = OpenAICompatibleAdapter("http://llm.test/v1", "m", transport=httpx.MockTransport(slow))

        with pytest.raises(GenerationUnavailable):
            await adapter.complete("SYSTEM", [], "hi")

    @pytest.mark.asyncio
    async def test_missing_key_is_rejected_before_any_request(self):
        def unreachable(request):
            raise AssertionError("no request expected")

        adapter = OpenAICompatibleAdapter(
            "http://llm.test/v1",
            "m",
            key_setting="PERPLEXITY_API_KEY",
            transport=httpx.MockTransport(unreachable),
        )
        with pytest.raises(GenerationRejected, match="PERPLEXITY_API_KEY"):
            await adapter.complete("SYSTEM", [], "hi")

    @pytest.mark.asyncio
    async def test_health_check(self):
        _, transport = _capture(httpx.Response(200, json={"data": []}))
        adapter = OpenAICompatibleAdapter("http://llm.test/v1", "m", transport=transport)
        assert await adapter.health_check() is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="<html>gateway</html>"),
            httpx.Response(200, json=["not", "an", "object"]),
        ],
    )
    async def test_malformed_body_is_rejected(self, response):
        adapter = OpenAICompatibleAdapter(
            "http://llm.test/v1", "m", transport=httpx.MockTransport(lambda request: response)
        )

        with pytest.raises(GenerationRejected, match="malformed"):
            await adapter.complete("SYSTEM", [], "hi")


class TestAnthropicAdapter:
    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen, transport = _capture(
            httpx.Response(
                200,
                json={
                    "content": [{"type": "text", "text": "在花园酒店"}],
                    "stop_reason": "end_turn",
                    "usage": {"input_tokens": 30, "output_tokens": 12},
                },
            )
        )
        adapter = AnthropicAdapter("key", "claude-test", base_url="http://anthropic.test/v1", transport=transport)

        result = await adapter.complete("SYSTEM", HISTORY, "地点")

        assert result.text == "在花园酒店"
        assert result.tokens_used == 42
        assert seen["url"] == "http://anthropic.test/v1/messages"
        assert seen["headers"]["x-api-key"] == "key"
        assert seen["body"]["system"] == "SYSTEM"
        # leading greeting dropped, conversation starts with the guest
        assert [m["role"] for m in seen["body"]["messages"]] == ["user", "assistant", "user"]


class TestGeminiAdapter:
    @pytest.mark.asyncio
    async def test_system_prompt_rides_on_first_user_turn(self):
        seen, transport = _capture(
            httpx.Response(
                200,
                json={
                    "candidates": [{"content": {"parts": [{"text": "好的"}]}, "finishReason": "STOP"}],
                    "usageMetadata": {"totalTokenCount": 20},
                },
            )
        )
        adapter = GeminiAdapter("gkey", "gemini-test", base_url="http://gemini.test/v1beta", transport=transport)

        result = await adapter.complete("SYSTEM", [], "你好")

        assert result.text == "好的"
        assert result.finish_reason == "stop"
        assert seen["url"].startswith("http://gemini.test/v1beta/models/gemini-test:generateContent")
        assert "key=gkey" in seen["url"]
        contents = seen["body"]["contents"]
        assert contents == [{"role": "user", "parts": [{"text": "SYSTEM\n\n你好"}]}]

    @pytest.mark.asyncio
    async def test_no_parts_is_empty_output(self):
        _, transport = _capture(
            httpx.Response(
                200,
                json={
                    "candidates": [{"content": {}, "finishReason": "MAX_TOKENS"}],
                    "usageMetadata": {"thoughtsTokenCount": 2000},
                },
            )
        )
        adapter = GeminiAdapter("gkey", "gemini-test", base_url="http://gemini.test/v1beta", transport=transport)

        with pytest.raises(GenerationEmptyOutput) as exc:
            await adapter.complete("SYSTEM", [], "你好")
        assert exc.value.finish_reason == "max_tokens"


class TestBuildAdapter:
    @pytest.mark.parametrize(
        "provider,expected",
        [
            ("openai", OpenAIAdapter),
            ("anthropic", AnthropicAdapter),
            ("gemini", GeminiAdapter),
            ("perplexity", OpenAICompatibleAdapter),
            ("custom", OpenAICompatibleAdapter),
            ("lm-studio", OpenAICompatibleAdapter),
        ],
    )
    def test_provider_dispatch(self, provider, expected):
        settings = Settings(LLM_PROVIDER=provider, CUSTOM_BASE_URL="http://custom.test/v1", _env_file=None)
        adapter = build_adapter(settings)
        assert isinstance(adapter, expected)

    def test_default_is_local_server(self):
        adapter = build_adapter(Settings(_env_file=None))
        assert adapter.provider == "lm-studio"
        assert adapter.base_url == "http://127.0.0.1:1234/v1"

    @pytest.mark.asyncio
    async def test_openai_without_key_is_rejected(self):
        adapter = build_adapter(Settings(LLM_PROVIDER="openai", OPENAI_API_KEY="", _env_file=None))
        with pytest.raises(GenerationRejected, match="OPENAI_API_KEY"):
            await adapter.complete("SYSTEM", [], "hi")

    def test_unknown_provider_is_refused(self):
        with pytest.raises(ValueError, match="lm-studio"):
            build_adapter(Settings(LLM_PROVIDER="lmstudio", _env_file=None))
