"""
StreamingCompletionClient - OpenAI-compatible chat completions.

Builds the provider payload from a ConversationRequest, then either reads
one JSON response or drains a server-sent-event stream, reconstructing
tool calls whose arguments arrive split across events.
"""

import asyncio
import codecs
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx
from pydantic import BaseModel, Field

from prompt_relay import state
from prompt_relay.adapters.base import StreamCallback
from prompt_relay.adapters.schema import (
    ConversationRequest, ModelResponse, StreamChunk, ToolCall, ToolDefinition
)
from prompt_relay.config import (
    DEFAULT_API_BASE, DEFAULT_TEMPERATURE, DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_TOP_P, RelaySettings
)
from prompt_relay.errors import (
    ConfigurationError, ImageGenerationUnsupportedError, ProviderError,
    parse_provider_error, summarize_error_body
)
from prompt_relay.models import ModelRegistry
from prompt_relay.prompts import build_system_instruction

logger = logging.getLogger(__name__)

CONVERSATION_ROLES = ("system", "user", "assistant", "tool")
IMAGE_ATTACHMENT_NOTICE = (
    "[Image attachments were provided but are not currently supported "
    "by this provider's text endpoints.]"
)
EVENT_SEPARATOR = "\n\n"
DONE_SENTINEL = "[DONE]"

MemoryReader = Callable[[], Awaitable[Optional[str]]]


class ClientConfig(BaseModel):
    """Connection and sampling defaults for the client."""
    api_key: str
    model: Optional[str] = None
    temperature: float = DEFAULT_TEMPERATURE
    top_p: float = DEFAULT_TOP_P
    max_output_tokens: Optional[int] = None
    streaming_enabled: bool = True
    api_base: str = DEFAULT_API_BASE
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def from_settings(cls, settings: RelaySettings, api_base: str = DEFAULT_API_BASE) -> "ClientConfig":
        return cls(
            api_key=settings.api_key,
            model=settings.chat_model_name or None,
            temperature=settings.temperature,
            top_p=settings.top_p,
            max_output_tokens=settings.max_output_tokens,
            streaming_enabled=settings.streaming_enabled,
            api_base=api_base,
        )


# ─────────────────────────────────────────────────────────────────────
# PAYLOAD HELPERS
# ─────────────────────────────────────────────────────────────────────

def parse_tool_arguments(value: Optional[str]) -> dict[str, Any]:
    """
    Decode a JSON-encoded arguments string.

    Malformed arguments are expected from some providers; they come back
    as {"raw": value} instead of raising.
    """
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except ValueError:
        return {"raw": value}
    if not isinstance(parsed, dict):
        return {"raw": value}
    return parsed


def map_tools(tools: list[ToolDefinition]) -> list[dict]:
    """Wrap tool definitions in the OpenAI {"type": "function"} envelope."""
    return [{"type": "function", "function": tool.model_dump()} for tool in tools]


def normalize_conversation(history: list[dict]) -> list[dict]:
    """
    Convert stored history into chat-completion messages.

    Entries with unrecognized roles are dropped. Entries carrying `parts`
    instead of `content` are flattened to text.
    """
    messages = []
    for item in history:
        if not item:
            continue
        role = item.get("role")
        if role not in CONVERSATION_ROLES:
            continue

        if role == "assistant" and item.get("tool_calls"):
            messages.append({
                "role": role,
                "content": item.get("content") or "",
                "tool_calls": item["tool_calls"],
            })
            continue

        if role == "tool":
            message = {"role": role, "content": item.get("content") or ""}
            if item.get("tool_call_id") is not None:
                message["tool_call_id"] = item["tool_call_id"]
            if item.get("name") is not None:
                message["name"] = item["name"]
            messages.append(message)
            continue

        content = item.get("content")
        if not isinstance(content, str):
            parts = item.get("parts") or []
            content = "\n".join(
                str(p.get("text", "")) for p in parts if isinstance(p, dict)
            )
        messages.append({"role": role, "content": content})
    return messages


# ─────────────────────────────────────────────────────────────────────
# STREAM DECODING
# ─────────────────────────────────────────────────────────────────────

class ToolCallFragment(BaseModel):
    """Partially assembled tool call for one stream index."""
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


class StreamState(BaseModel):
    """Per-call accumulator for a streaming completion."""
    markdown: str = ""
    tool_calls: dict[int, ToolCallFragment] = Field(default_factory=dict)
    cancelled: bool = False

    def add_tool_call_delta(self, delta: dict) -> None:
        index = delta.get("index")
        index = index if isinstance(index, int) else 0
        fragment = self.tool_calls.setdefault(index, ToolCallFragment())
        if isinstance(delta.get("id"), str) and delta["id"]:
            fragment.id = delta["id"]
        function = delta.get("function")
        if not isinstance(function, dict):
            return
        if isinstance(function.get("name"), str) and function["name"]:
            fragment.name = function["name"]
        if isinstance(function.get("arguments"), str):
            fragment.arguments += function["arguments"]

    def finalize_tool_calls(self) -> Optional[list[ToolCall]]:
        """Structured tool calls, skipping fragments that never got a name."""
        if not self.tool_calls:
            return None
        return [
            ToolCall(
                name=fragment.name,
                arguments=parse_tool_arguments(fragment.arguments),
                id=fragment.id,
            )
            for _, fragment in sorted(self.tool_calls.items())
            if fragment.name
        ]

    def to_response(self) -> ModelResponse:
        return ModelResponse(markdown=self.markdown, tool_calls=self.finalize_tool_calls())


def first_choice(chunk: Any) -> Optional[dict]:
    """The first `choices` entry of a completion body, or None if it has another shape."""
    if not isinstance(chunk, dict):
        return None
    choices = chunk.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    return choices[0]


def iter_event_payloads(event: str):
    """Yield the `data:` payloads of one event, skipping the [DONE] sentinel."""
    for line in event.split("\n"):
        if not line.startswith("data:"):
            continue
        data = line[5:].strip()
        if not data or data == DONE_SENTINEL:
            continue
        yield data


def _log_stream_failure(task: asyncio.Future) -> None:
    # Marks the exception retrieved; complete() still re-raises it
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Streaming completion failed: {error}")


class StreamingResponse:
    """
    Handle to an in-flight streaming completion.

    The stream starts as soon as an event loop is available. cancel() is
    cooperative: once set, no further chunk is emitted and reading stops.
    complete() then returns what was accumulated.
    """

    def __init__(self, run: Callable[[StreamState], Awaitable[ModelResponse]]):
        self.state = StreamState()
        self._run = run
        self._task: Optional[asyncio.Future] = None
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass  # Started on first complete()
        else:
            self._start()

    def _start(self) -> asyncio.Future:
        if self._task is None:
            self._task = asyncio.ensure_future(self._run(self.state))
            self._task.add_done_callback(_log_stream_failure)
        return self._task

    def cancel(self) -> None:
        self.state.cancelled = True

    @property
    def cancelled(self) -> bool:
        return self.state.cancelled

    async def complete(self) -> ModelResponse:
        return await self._start()


# ─────────────────────────────────────────────────────────────────────
# CLIENT
# ─────────────────────────────────────────────────────────────────────

class StreamingCompletionClient:
    """
    ModelApi implementation for OpenAI-compatible providers.

    Usage:
        client = StreamingCompletionClient(ClientConfig(api_key="..."))
        response = await client.generate_model_response(
            ConversationRequest(prompt="Hello")
        )
    """

    def __init__(
        self,
        config: ClientConfig,
        registry: Optional[ModelRegistry] = None,
        memory_reader: Optional[MemoryReader] = None,
        system_prompt: Optional[str] = None,
    ):
        self.config = config
        self._registry = registry
        self._memory_reader = memory_reader
        self._system_prompt = system_prompt

    @property
    def registry(self) -> ModelRegistry:
        return self._registry if self._registry is not None else state.registry

    def _get_headers(self) -> dict[str, str]:
        if not self.config.api_key:
            raise ConfigurationError("API key not configured")
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

    @property
    def _completions_url(self) -> str:
        return f"{self.config.api_base.rstrip('/')}/chat/completions"

    def resolve_model(self, request: ConversationRequest) -> str:
        """Request override, then configured model, then the chat role default."""
        return request.model or self.config.model or self.registry.get_default_model_for_role("chat")

    async def _read_memory(self) -> Optional[str]:
        if self._memory_reader is None:
            return None
        try:
            return await self._memory_reader()
        except Exception as e:
            logger.warning(f"Failed to load memory file: {e}")
            return None

    async def build_messages(self, request: ConversationRequest) -> list[dict]:
        if not request.is_conversation:
            return [{"role": "user", "content": request.prompt}]

        memory = await self._read_memory()
        system_instruction = build_system_instruction(
            request.available_tools,
            request.custom_prompt,
            memory,
            base_prompt=self._system_prompt,
        )
        overriding = request.custom_prompt is not None and request.custom_prompt.override_system_prompt
        if request.prompt and not overriding:
            system_instruction += f"\n\n{request.prompt}"

        messages = [{"role": "system", "content": system_instruction}]
        messages.extend(normalize_conversation(request.conversation_history))

        user_content = request.user_message
        if request.image_attachments:
            # Attachments are noted, not sent
            user_content = f"{user_content}\n\n{IMAGE_ATTACHMENT_NOTICE}"
        messages.append({"role": "user", "content": user_content})
        return messages

    async def build_request_payload(self, request: ConversationRequest, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.resolve_model(request),
            "messages": await self.build_messages(request),
            "temperature": request.temperature if request.temperature is not None else self.config.temperature,
            "top_p": request.top_p if request.top_p is not None else self.config.top_p,
            "stream": stream,
        }
        if self.config.max_output_tokens:
            payload["max_tokens"] = self.config.max_output_tokens
        if request.is_conversation and request.available_tools:
            payload["tools"] = map_tools(request.available_tools)
            payload["tool_choice"] = "auto"
        return payload

    # ─────────────────────────────────────────────────────────────────
    # NON-STREAMING
    # ─────────────────────────────────────────────────────────────────

    async def generate_model_response(self, request: ConversationRequest) -> ModelResponse:
        """
        Get a complete (non-streaming) response.

        Raises:
            ConfigurationError: No API key configured
            ProviderError: Non-2xx status (carries status_code and body) or network failure
        """
        headers = self._get_headers()
        payload = await self.build_request_payload(request, stream=False)

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                response = await client.post(self._completions_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError(f"Provider request failed for {payload['model']}: {e}") from e

        if response.status_code >= 400:
            logger.error(f"Provider request failed: {parse_provider_error(response)}")
            raise ProviderError(
                f"Provider request failed: {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Provider returned invalid JSON: {e}",
                status_code=response.status_code,
                body=response.text,
            ) from e
        return self.extract_response(data)

    @staticmethod
    def extract_response(data: Any) -> ModelResponse:
        """
        Convert a chat-completion JSON body into a ModelResponse.

        Raises:
            ProviderError: Body or first choice is not a JSON object
        """
        if isinstance(data, dict) and not data.get("choices"):
            return ModelResponse()
        choice = first_choice(data)
        if choice is None:
            raise ProviderError(f"Provider returned an unexpected response body: {str(data)[:200]}")

        message = choice.get("message")
        message = message if isinstance(message, dict) else {}
        tool_calls = None
        if isinstance(message.get("tool_calls"), list) and message["tool_calls"]:
            tool_calls = []
            for tc in message["tool_calls"]:
                if not isinstance(tc, dict):
                    continue
                function = tc.get("function")
                function = function if isinstance(function, dict) else {}
                name = function.get("name")
                arguments = function.get("arguments")
                tool_calls.append(ToolCall(
                    name=name if isinstance(name, str) else "",
                    arguments=parse_tool_arguments(arguments if isinstance(arguments, str) else None),
                    id=tc.get("id") if isinstance(tc.get("id"), str) else None,
                ))
        content = message.get("content")
        return ModelResponse(markdown=content if isinstance(content, str) else "", tool_calls=tool_calls)

    # ─────────────────────────────────────────────────────────────────
    # STREAMING
    # ─────────────────────────────────────────────────────────────────

    def generate_streaming_response(
        self,
        request: ConversationRequest,
        on_chunk: StreamCallback
    ) -> StreamingResponse:
        """
        Start a streaming completion.

        Text deltas are passed to on_chunk one at a time, in arrival order.
        Tool calls are assembled per stream index and returned by
        complete() once the stream ends.
        """
        async def run(stream_state: StreamState) -> ModelResponse:
            await self._drain_stream(request, on_chunk, stream_state)
            return stream_state.to_response()

        return StreamingResponse(run)

    async def _drain_stream(
        self,
        request: ConversationRequest,
        on_chunk: StreamCallback,
        stream_state: StreamState
    ) -> None:
        headers = self._get_headers()
        payload = await self.build_request_payload(request, stream=True)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                async with client.stream(
                    "POST",
                    self._completions_url,
                    json=payload,
                    headers=headers,
                ) as response:
                    if response.status_code >= 400:
                        # Read the error body for streaming responses
                        error_body = (await response.aread()).decode("utf-8", errors="replace")
                        logger.error(f"Provider streaming request failed: {summarize_error_body(error_body, response.status_code)}")
                        raise ProviderError(
                            f"Provider streaming request failed: {response.status_code} {error_body}",
                            status_code=response.status_code,
                            body=error_body,
                        )

                    async for raw in response.aiter_bytes():
                        buffer += decoder.decode(raw).replace("\r\n", "\n")
                        events = buffer.split(EVENT_SEPARATOR)
                        buffer = events.pop()
                        for event in events:
                            await self._process_event(event, on_chunk, stream_state)
                        if stream_state.cancelled:
                            logger.debug("Streaming cancelled by caller")
                            break

                    if not stream_state.cancelled:
                        buffer += decoder.decode(b"", final=True)
                        if buffer.strip():
                            await self._process_event(buffer, on_chunk, stream_state)
        except httpx.HTTPError as e:
            raise ProviderError(f"Provider streaming request failed for {payload['model']}: {e}") from e

    async def _process_event(
        self,
        event: str,
        on_chunk: StreamCallback,
        stream_state: StreamState
    ) -> None:
        for data in iter_event_payloads(event):
            if stream_state.cancelled:
                return
            try:
                chunk = json.loads(data)
            except json.JSONDecodeError:
                logger.debug(f"Skipping malformed stream payload: {data[:200]}")
                continue

            choice = first_choice(chunk)
            delta = choice.get("delta") if choice is not None else None
            if not isinstance(delta, dict):
                logger.debug(f"Skipping stream payload without a delta: {data[:200]}")
                continue

            text = delta.get("content")
            if isinstance(text, str) and text:
                stream_state.markdown += text
                result = on_chunk(StreamChunk(text=text))
                if inspect.isawaitable(result):
                    await result

            tool_calls = delta.get("tool_calls")
            if isinstance(tool_calls, list):
                for tool_call in tool_calls:
                    if isinstance(tool_call, dict):
                        stream_state.add_tool_call_delta(tool_call)

    # ─────────────────────────────────────────────────────────────────
    # IMAGES
    # ─────────────────────────────────────────────────────────────────

    def generate_image(self, prompt: str, model: str) -> str:
        """Image generation is not available on this transport."""
        raise ImageGenerationUnsupportedError(
            "Image generation is not supported by the chat-completions API."
        )
