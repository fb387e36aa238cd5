"""
Role -> model registry.

The registry holds the ordered model list shared by the client and the
manager. Readers take a snapshot; the single writer replaces the whole
tuple, so a reader never sees a partially updated list.
"""

from typing import Iterable, Optional

from prompt_relay.config import (
    ModelRole, ModelUpdateResult, NormalizedModel, RelaySettings
)
from prompt_relay.errors import EmptyRegistryError


# ─────────────────────────────────────────────────────────────────────
# STATIC BASELINE
# ─────────────────────────────────────────────────────────────────────

DEFAULT_MODELS: tuple[NormalizedModel, ...] = (
    NormalizedModel(id="compound", label="Compound", default_for_roles=["chat", "rewrite"]),
    NormalizedModel(id="compound-mini", label="Compound Mini", default_for_roles=["summary"]),
    NormalizedModel(
        id="llama-3.3-70b-versatile",
        label="Llama 3.3 70B Versatile",
        default_for_roles=["completions"],
    ),
    NormalizedModel(id="openai/gpt-oss-120b", label="GPT OSS 120B"),
    NormalizedModel(id="moonshotai/kimi-k2-instruct-0905", label="Kimi K2 Instruct 0905"),
    NormalizedModel(id="deepseek-r1-distill-llama-70b", label="DeepSeek R1 Distill Llama 70B"),
    NormalizedModel(id="llama-3.1-8b-instant", label="Llama 3.1 8B Instant"),
)


class ModelRegistry:
    """
    Ordered list of models available to callers.

    Initialized to the static baseline. set_models() is the only mutation.
    """

    def __init__(self, models: Optional[Iterable[NormalizedModel]] = None):
        self._models: tuple[NormalizedModel, ...] = (
            tuple(models) if models is not None else DEFAULT_MODELS
        )

    @property
    def models(self) -> list[NormalizedModel]:
        """Snapshot of the current list."""
        return list(self._models)

    def ids(self) -> set[str]:
        return {m.id for m in self._models}

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, model_id: object) -> bool:
        return any(m.id == model_id for m in self._models)

    def set_models(self, models: Iterable[NormalizedModel]) -> None:
        """Replace the whole list."""
        self._models = tuple(models)

    def reset(self) -> None:
        """Restore the static baseline."""
        self._models = DEFAULT_MODELS

    def get_default_model_for_role(self, role: ModelRole) -> str:
        """
        Resolve the model id to use for a role.

        First model claiming the role wins, else the first model in order.

        Raises:
            EmptyRegistryError: If the registry holds no models.
        """
        models = self._models
        for model in models:
            if model.is_default_for(role):
                return model.id
        if models:
            return models[0].id
        raise EmptyRegistryError(
            "Model registry is empty. Please configure available models."
        )


# ─────────────────────────────────────────────────────────────────────
# SETTINGS RECONCILIATION
# ─────────────────────────────────────────────────────────────────────

_ROLE_SETTINGS: tuple[tuple[str, ModelRole, str], ...] = (
    ("chat_model_name", "chat", "Chat"),
    ("summary_model_name", "summary", "Summary"),
    ("completions_model_name", "completions", "Completions"),
)


def get_updated_model_settings(
    current_settings: RelaySettings,
    registry: ModelRegistry
) -> ModelUpdateResult:
    """
    Point model-name settings at models that exist in the registry.

    Empty or unknown chat/summary/completions names are reassigned to the
    role default. An unknown image model name is cleared.
    The input settings are not modified.
    """
    available = registry.ids()
    new_settings = current_settings.model_copy(deep=True)
    changed_info: list[str] = []

    def needs_update(model_name: str) -> bool:
        return not model_name or model_name not in available

    for field, role, title in _ROLE_SETTINGS:
        old = getattr(new_settings, field)
        if needs_update(old):
            new = registry.get_default_model_for_role(role)
            changed_info.append(f"{title} model: '{old}' -> '{new}' (model update)")
            setattr(new_settings, field, new)

    if new_settings.image_model_name and needs_update(new_settings.image_model_name):
        changed_info.append(
            f"Image model '{new_settings.image_model_name}' is not available "
            "from the provider and was cleared."
        )
        new_settings.image_model_name = ""

    return ModelUpdateResult(
        updated_settings=new_settings,
        settings_changed=bool(changed_info),
        changed_settings_info=changed_info,
    )
