"""
Completion clients for LLM providers.

Protocol defines WHAT, implementations define HOW.
"""

from .base import ModelApi, StreamingModelResponse
from .completion import ClientConfig, StreamingCompletionClient, StreamingResponse

__all__ = [
    "ClientConfig",
    "ModelApi",
    "StreamingCompletionClient",
    "StreamingModelResponse",
    "StreamingResponse",
]
