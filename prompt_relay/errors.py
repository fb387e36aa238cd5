"""
Error types for prompt-relay and provider error-body parsing.
"""

import json
from typing import Optional

import httpx


class RelayError(Exception):
    """Base class for prompt-relay errors."""
    pass


class ConfigurationError(RelayError):
    """Required configuration (e.g. API key) is missing."""
    pass


class ProviderError(RelayError):
    """Provider returned a non-2xx response or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class EmptyRegistryError(RelayError):
    """Role resolution was attempted against an empty model registry."""
    pass


class ImageGenerationUnsupportedError(RelayError):
    """Image generation is not available over the chat-completions transport."""
    pass


def summarize_error_body(body: str, status_code: Optional[int] = None) -> str:
    """
    Extract a user-friendly message from a provider error body.

    OpenAI-compatible providers return {"error": {"message": "..."}}.
    Anything else is reported as the truncated raw body.
    """
    try:
        data = json.loads(body)
    except ValueError:
        data = None

    if isinstance(data, dict):
        error = data.get("error", {})
        if isinstance(error, dict):
            message = error.get("message", "")
            if message:
                return message
        elif isinstance(error, str) and error:
            return error

    prefix = f"HTTP {status_code}: " if status_code is not None else ""
    return f"{prefix}{body[:200]}"


def parse_provider_error(response: httpx.Response) -> str:
    """Extract a user-friendly error message from a provider response."""
    return summarize_error_body(response.text, response.status_code)
