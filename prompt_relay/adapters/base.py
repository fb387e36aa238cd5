"""
ModelApi Protocol - defines the contract for completion clients.

This is the WHAT (interface), not the HOW (implementation).
See completion.py for the concrete implementation.
"""

from typing import Awaitable, Callable, Protocol, Union

from prompt_relay.adapters.schema import ConversationRequest, ModelResponse, StreamChunk

StreamCallback = Callable[[StreamChunk], Union[None, Awaitable[None]]]


class StreamingModelResponse(Protocol):
    """Handle to an in-flight streaming completion."""

    def cancel(self) -> None:
        """Stop emitting chunks and stop reading. Accumulated output is kept."""
        ...

    async def complete(self) -> ModelResponse:
        """Wait for the stream to end (or be cancelled) and return the result."""
        ...


class ModelApi(Protocol):
    """
    Contract for completion clients.

    Implementations must provide:
    - Single-response completion (generate_model_response)
    - Streaming completion (generate_streaming_response)
    - Image generation, or an immediate failure if unsupported
    """

    async def generate_model_response(self, request: ConversationRequest) -> ModelResponse:
        """
        Send one request and return the whole response.

        Raises:
            ConfigurationError: No API key configured
            ProviderError: Non-2xx response or transport failure
        """
        ...

    def generate_streaming_response(
        self,
        request: ConversationRequest,
        on_chunk: StreamCallback
    ) -> StreamingModelResponse:
        """
        Start a streaming completion.

        on_chunk receives each text delta in arrival order. It may be a
        plain function or a coroutine function.
        """
        ...

    def generate_image(self, prompt: str, model: str) -> str:
        """Generate an image and return its location."""
        ...
