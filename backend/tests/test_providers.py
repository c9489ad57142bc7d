"""
Tests for the provider adapters using httpx.MockTransport.
"""

import json

import httpx
import pytest

from inference import get_provider
from inference.base import ConfigurationError, ProviderError, ProviderOptions
from inference.ollama import OllamaProvider
from inference.openai_compat import OpenAICompatProvider
from invocation.models import Message, Role
from settings import Profile


def _sse(*chunks, done=True) -> bytes:
    lines = []
    for content in chunks:
        payload = {"choices": [{"delta": {"content": content}}]}
        lines.append(f"data: {json.dumps(payload)}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def _recording_transport(response_factory):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return response_factory(request)

    return httpx.MockTransport(handler), requests


def _openai(transport, **kwargs) -> OpenAICompatProvider:
    kwargs.setdefault("api_key", "sk-test")
    kwargs.setdefault("options", ProviderOptions(model="test-model", max_tokens=128))
    return OpenAICompatProvider(
        base_url="https://api.example.test/v1", transport=transport, **kwargs,
    )


# ── OpenAI-compatible ──

class TestOpenAICompatProvider:
    """Test the /chat/completions adapter."""

    @pytest.mark.asyncio
    async def test_ask_returns_content(self):
        transport, requests = _recording_transport(
            lambda r: httpx.Response(200, json={
                "choices": [{"message": {"role": "assistant", "content": "Hello"}}],
            })
        )
        provider = _openai(transport, app_name="doloop")
        text = await provider.ask([Message.system("sys"), Message.user("hi")])

        assert text == "Hello"
        request = requests[0]
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert request.headers["X-Title"] == "doloop"
        body = json.loads(request.content)
        assert body["model"] == "test-model"
        assert body["max_tokens"] == 128
        assert body["stream"] is False
        assert body["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hi"},
        ]

    @pytest.mark.asyncio
    async def test_tool_role_is_sent_as_user(self):
        transport, requests = _recording_transport(
            lambda r: httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})
        )
        provider = _openai(transport)
        await provider.ask([Message(Role.TOOL, "result")])
        body = json.loads(requests[0].content)
        assert body["messages"] == [{"role": "user", "content": "result"}]

    @pytest.mark.asyncio
    async def test_http_error_raises_provider_error(self):
        transport, _ = _recording_transport(
            lambda r: httpx.Response(429, text="slow down")
        )
        provider = _openai(transport)
        with pytest.raises(ProviderError, match="429") as exc_info:
            await provider.ask([Message.user("hi")])
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_error_body_raises(self):
        transport, _ = _recording_transport(
            lambda r: httpx.Response(200, json={"error": {"message": "bad model"}})
        )
        provider = _openai(transport)
        with pytest.raises(ProviderError, match="bad model"):
            await provider.ask([Message.user("hi")])

    @pytest.mark.asyncio
    async def test_connection_error_is_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        provider = _openai(httpx.MockTransport(handler))
        with pytest.raises(ProviderError, match="failed"):
            await provider.ask([Message.user("hi")])

    @pytest.mark.asyncio
    async def test_stream_yields_deltas(self):
        transport, requests = _recording_transport(
            lambda r: httpx.Response(200, content=_sse("Hel", "lo", " world"))
        )
        provider = _openai(transport)
        chunks = [c async for c in provider.ask_stream([Message.user("hi")])]

        assert chunks == ["Hel", "lo", " world"]
        assert json.loads(requests[0].content)["stream"] is True

    @pytest.mark.asyncio
    async def test_stream_stops_at_done(self):
        body = _sse("a") + _sse("ignored", done=False)
        transport, _ = _recording_transport(lambda r: httpx.Response(200, content=body))
        provider = _openai(transport)
        chunks = [c async for c in provider.ask_stream([Message.user("hi")])]
        assert chunks == ["a"]

    @pytest.mark.asyncio
    async def test_stream_http_error(self):
        transport, _ = _recording_transport(lambda r: httpx.Response(500, text="boom"))
        provider = _openai(transport)
        with pytest.raises(ProviderError, match="500"):
            async for _ in provider.ask_stream([Message.user("hi")]):
                pass

    @pytest.mark.asyncio
    async def test_per_call_options_override(self):
        transport, requests = _recording_transport(
            lambda r: httpx.Response(200, json={"choices": [{"message": {"content": "x"}}]})
        )
        provider = _openai(transport)
        await provider.ask([Message.user("hi")], ProviderOptions(model="other", temperature=0.1))
        body = json.loads(requests[0].content)
        assert body["model"] == "other"
        assert body["temperature"] == 0.1

    def test_update_options(self):
        provider = _openai(httpx.MockTransport(lambda r: httpx.Response(200)))
        opts = provider.update_options(temperature=0.2)
        assert opts.temperature == 0.2
        assert opts.model == "test-model"

    def test_remote_endpoint_requires_key(self):
        with pytest.raises(ConfigurationError, match="API key"):
            OpenAICompatProvider(base_url="https://openrouter.ai/api/v1", api_key="")

    def test_local_endpoint_needs_no_key(self):
        provider = OpenAICompatProvider(base_url="http://localhost:1234/v1")
        assert provider.api_key == ""


# ── Ollama ──

class TestOllamaProvider:
    """Test the native Ollama /api/chat adapter."""

    @pytest.mark.asyncio
    async def test_ask(self):
        transport, requests = _recording_transport(
            lambda r: httpx.Response(200, json={
                "message": {"role": "assistant", "content": "Hi there"}, "done": True,
            })
        )
        provider = OllamaProvider(
            options=ProviderOptions(model="llama3", max_tokens=64), transport=transport,
        )
        text = await provider.ask([Message.user("hello")])

        assert text == "Hi there"
        body = json.loads(requests[0].content)
        assert requests[0].url.path == "/api/chat"
        assert body["model"] == "llama3"
        assert body["options"]["num_predict"] == 64

    @pytest.mark.asyncio
    async def test_stream(self):
        lines = [
            {"message": {"content": "Hel"}, "done": False},
            {"message": {"content": "lo"}, "done": False},
            {"message": {"content": ""}, "done": True},
        ]
        body = "\n".join(json.dumps(line) for line in lines).encode()
        transport, _ = _recording_transport(lambda r: httpx.Response(200, content=body))
        provider = OllamaProvider(transport=transport)
        chunks = [c async for c in provider.ask_stream([Message.user("hello")])]
        assert chunks == ["Hel", "lo"]

    @pytest.mark.asyncio
    async def test_error_response(self):
        transport, _ = _recording_transport(
            lambda r: httpx.Response(404, json={"error": "model not found"})
        )
        provider = OllamaProvider(transport=transport)
        with pytest.raises(ProviderError, match="404"):
            await provider.ask([Message.user("hello")])


# ── Router ──

class TestGetProvider:
    """Test provider selection from the profile."""

    def test_openai_type(self):
        profile = Profile()
        profile.inference.api_key = "sk-test"
        provider = get_provider(profile)
        assert isinstance(provider, OpenAICompatProvider)
        assert provider.options.model == profile.inference.model
        assert provider.app_name == "doloop"

    def test_ollama_type(self):
        profile = Profile()
        profile.inference.type = "ollama"
        profile.inference.endpoint = "http://localhost:11434"
        assert isinstance(get_provider(profile), OllamaProvider)

    def test_unknown_type(self):
        profile = Profile()
        profile.inference.type = "carrier-pigeon"
        with pytest.raises(ConfigurationError, match="carrier-pigeon"):
            get_provider(profile)

    def test_missing_key_for_remote(self):
        profile = Profile()
        profile.inference.api_key = ""
        with pytest.raises(ConfigurationError):
            get_provider(profile)
