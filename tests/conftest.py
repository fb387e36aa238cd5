"""Shared test fixtures for prompt-relay tests."""

import json

import httpx
import pytest


# ─────────────────────────────────────────────────────────────────────
# MOCK DATA
# ─────────────────────────────────────────────────────────────────────

MOCK_API_BASE = "https://api.test-provider.dev/openai/v1"
MOCK_API_KEY = "test-key-123"
MODELS_URL = f"{MOCK_API_BASE}/models"
COMPLETIONS_URL = f"{MOCK_API_BASE}/chat/completions"

MOCK_CATALOG_RESPONSE = {
    "object": "list",
    "data": [
        {"id": "compound", "object": "model", "owned_by": "groq"},
        {"id": "llama-3.3-70b-versatile", "object": "model", "owned_by": "meta"},
        {"id": "whisper-large-v3", "object": "model", "owned_by": "openai"},
        {"id": "playai-tts", "object": "model", "owned_by": "playai"},
        {"id": "qwen-qwq-32b-preview", "object": "model", "owned_by": "alibaba"},
        {"id": "llama-guard-4-12b", "object": "model", "owned_by": "meta"},
    ]
}

MOCK_COMPLETION_RESPONSE = {
    "id": "chatcmpl-123",
    "object": "chat.completion",
    "created": 1699000000,
    "model": "compound",
    "choices": [
        {
            "index": 0,
            "message": {
                "role": "assistant",
                "content": "The capital of France is Paris."
            },
            "finish_reason": "stop"
        }
    ],
    "usage": {
        "prompt_tokens": 10,
        "completion_tokens": 8,
        "total_tokens": 18
    }
}

MOCK_STREAMING_CHUNKS = [
    'data: {"id":"chatcmpl-123","object":"chat.completion.chunk","choices":[{"index":0,"delta":{"role":"assistant","content":""},"finish_reason":null}]}',
    'data: {"id":"chatcmpl-123","object":"chat.completion.chunk","choices":[{"index":0,"delta":{"content":"The"},"finish_reason":null}]}',
    'data: {"id":"chatcmpl-123","object":"chat.completion.chunk","choices":[{"index":0,"delta":{"content":" capital"},"finish_reason":null}]}',
    'data: {"id":"chatcmpl-123","object":"chat.completion.chunk","choices":[{"index":0,"delta":{"content":" of"},"finish_reason":null}]}',
    'data: {"id":"chatcmpl-123","object":"chat.completion.chunk","choices":[{"index":0,"delta":{"content":" France"},"finish_reason":null}]}',
    'data: {"id":"chatcmpl-123","object":"chat.completion.chunk","choices":[{"index":0,"delta":{"content":" is"},"finish_reason":null}]}',
    'data: {"id":"chatcmpl-123","object":"chat.completion.chunk","choices":[{"index":0,"delta":{"content":" Paris."},"finish_reason":null}]}',
    'data: {"id":"chatcmpl-123","object":"chat.completion.chunk","choices":[{"index":0,"delta":{},"finish_reason":"stop"}]}',
    'data: [DONE]',
]


# ─────────────────────────────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────────────────────────────

def sse_event(delta: dict) -> str:
    """Build one SSE event carrying a chat-completion chunk delta."""
    return f"data: {json.dumps({'choices': [{'delta': delta}]}, ensure_ascii=False)}\n\n"


def sse_stream(*contents: str) -> str:
    """Build an SSE stream of text deltas followed by [DONE]."""
    return "".join(sse_event({"content": c}) for c in contents) + "data: [DONE]\n\n"


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered as separate reads, one per item."""

    def __init__(self, chunks):
        self._chunks = [c.encode("utf-8") if isinstance(c, str) else c for c in chunks]

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk

    async def aclose(self) -> None:
        pass


class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ─────────────────────────────────────────────────────────────────────
# FIXTURES - Settings and collaborators
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Settings with discovery enabled and a configured key."""
    from prompt_relay.config import DiscoverySettings, RelaySettings
    return RelaySettings(
        api_key=MOCK_API_KEY,
        chat_model_name="compound",
        summary_model_name="compound-mini",
        completions_model_name="llama-3.3-70b-versatile",
        model_discovery=DiscoverySettings(enabled=True),
    )


@pytest.fixture
def store():
    from prompt_relay.storage import MemoryStore
    return MemoryStore()


@pytest.fixture
def discovery_service(settings, store, clock):
    from prompt_relay.discovery import ModelDiscoveryService
    return ModelDiscoveryService(settings, store, api_base=MOCK_API_BASE, clock=clock)


@pytest.fixture
def registry():
    """A fresh registry holding the static baseline."""
    from prompt_relay.models import ModelRegistry
    return ModelRegistry()


@pytest.fixture
def manager(settings, discovery_service, registry):
    from prompt_relay.manager import ModelManager
    return ModelManager(settings, discovery_service, registry=registry)


@pytest.fixture
def client_config():
    from prompt_relay.adapters.completion import ClientConfig
    return ClientConfig(api_key=MOCK_API_KEY, model="compound", api_base=MOCK_API_BASE)


@pytest.fixture
def client(client_config, registry):
    from prompt_relay.adapters.completion import StreamingCompletionClient
    return StreamingCompletionClient(client_config, registry=registry, system_prompt="You are a test assistant.")


# ─────────────────────────────────────────────────────────────────────
# FIXTURES - HTTP Mocking
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture
def mock_catalog_response():
    """Return mock /models response."""
    return json.loads(json.dumps(MOCK_CATALOG_RESPONSE))


@pytest.fixture
def mock_completion_response():
    """Return mock /chat/completions response."""
    return json.loads(json.dumps(MOCK_COMPLETION_RESPONSE))


@pytest.fixture
def mock_streaming_chunks():
    """Return mock streaming response chunks."""
    return MOCK_STREAMING_CHUNKS.copy()
