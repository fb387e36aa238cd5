"""
Process-wide state for prompt-relay.

Holds the model registry shared by the completion client and the model
manager. Keeping it separate avoids circular import issues.
"""

from prompt_relay.models import ModelRegistry

# Initialized to the static baseline; replaced wholesale by ModelManager
registry: ModelRegistry = ModelRegistry()


def get_default_model_for_role(role) -> str:
    """Resolve a role default against the shared registry."""
    return registry.get_default_model_for_role(role)
