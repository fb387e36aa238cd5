"""
Pure transforms from provider catalog entries to caller-facing models.
"""

import re
from typing import Iterable

from prompt_relay.config import NormalizedModel, ProviderModel

_PREVIEW_MARKERS = ("preview", "experimental", "exp", "beta", "alpha")
_FAMILY_SEPARATORS = re.compile(r"[-/_.:]")
_IMAGE_GENERATION_METHODS = ("generateImage", "predict")


def make_label(model_id: str) -> str:
    """
    Build a display label from a model id.

    "openai/gpt-oss-120b" -> "Gpt Oss 120b"
    """
    name = model_id.rsplit("/", 1)[-1]
    words = [w for w in re.split(r"[-_]", name) if w]
    return " ".join(w[:1].upper() + w[1:] for w in words) or model_id


def map_to_normalized_models(provider_models: Iterable[ProviderModel]) -> list[NormalizedModel]:
    """Map each provider model 1:1, keeping the provider id as the key."""
    result = []
    for pm in provider_models:
        label = pm.display_name if pm.display_name and pm.display_name != pm.name else make_label(pm.name)
        supports_images = any(
            method in pm.supported_generation_methods for method in _IMAGE_GENERATION_METHODS
        )
        result.append(NormalizedModel(
            id=pm.name,
            label=label,
            supports_image_generation=supports_images,
        ))
    return result


def is_stable(model: NormalizedModel) -> bool:
    """Generally-available models carry no preview/experimental marker."""
    tokens = _FAMILY_SEPARATORS.split(model.id.lower())
    return not any(token in _PREVIEW_MARKERS for token in tokens)


def model_family(model: NormalizedModel) -> str:
    """Family prefix: the id up to its first separator."""
    return _FAMILY_SEPARATORS.split(model.id.lower(), 1)[0]


def sort_models_by_preference(models: Iterable[NormalizedModel]) -> list[NormalizedModel]:
    """
    Order stable models before preview ones, then group by family.

    The sort is stable, so discovery order is kept within a group.
    """
    return sorted(models, key=lambda m: (not is_stable(m), model_family(m)))


def merge_with_existing_models(
    dynamic: Iterable[NormalizedModel],
    static: Iterable[NormalizedModel]
) -> list[NormalizedModel]:
    """
    Append static models whose id is missing from the dynamic list.

    On an id collision the dynamic entry is kept.
    """
    merged: list[NormalizedModel] = []
    seen: set[str] = set()
    for model in [*dynamic, *static]:
        if model.id not in seen:
            merged.append(model)
            seen.add(model.id)
    return merged
