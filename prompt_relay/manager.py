"""
ModelManager - discovery, mapping and filtering behind one model-list API.

Every query falls back to the static baseline instead of raising.
The source actually used is reported by the resolve_* methods so the
fallback path can be asserted on.
"""

import logging
import time
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel

from prompt_relay import mapper, parameters
from prompt_relay.config import (
    ModelUpdateOptions, ModelUpdateResult, NormalizedModel, ProviderModel,
    RelaySettings
)
from prompt_relay.discovery import ModelDiscoveryService
from prompt_relay.models import DEFAULT_MODELS, ModelRegistry, get_updated_model_settings
from prompt_relay.parameters import (
    ParameterDisplayInfo, ParameterRanges, ParameterValidation
)

logger = logging.getLogger(__name__)

# Non-conversational specialties, excluded before image/text partitioning
EXCLUDED_MODEL_MARKERS: tuple[str, ...] = (
    "embedding", "whisper", "tts", "transcribe", "moderation", "guard", "speech",
)
IMAGE_MODEL_MARKERS: tuple[str, ...] = ("image", "vision", "flux")


# ─────────────────────────────────────────────────────────────────────
# RESULT TYPES
# ─────────────────────────────────────────────────────────────────────

class ModelSource(str, Enum):
    DYNAMIC = "dynamic"
    STATIC = "static"


class ModelSelection(BaseModel):
    """A model list plus which source produced it and why."""
    models: list[NormalizedModel]
    source: ModelSource
    reason: Optional[str] = None  # set when source is STATIC


class DiscoveryStatus(BaseModel):
    enabled: bool
    working: bool
    last_update: Optional[float] = None
    error: Optional[str] = None


class RefreshResult(BaseModel):
    success: bool
    models_found: int
    changes: bool
    error: Optional[str] = None


class ParameterValidationReport(BaseModel):
    temperature: ParameterValidation
    top_p: ParameterValidation


# ─────────────────────────────────────────────────────────────────────
# FILTERING
# ─────────────────────────────────────────────────────────────────────

def is_excluded_model(model: NormalizedModel) -> bool:
    model_id = model.id.lower()
    return any(marker in model_id for marker in EXCLUDED_MODEL_MARKERS)


def is_image_model(model: NormalizedModel) -> bool:
    model_id = model.id.lower()
    return model.supports_image_generation or any(m in model_id for m in IMAGE_MODEL_MARKERS)


def filter_models_for_version(
    models: Iterable[NormalizedModel],
    image_models_only: bool
) -> list[NormalizedModel]:
    """
    Drop non-conversational models, then keep image or text models.

    The denylist is applied first, so a denylisted model is excluded from
    both partitions even if it also looks like an image model.
    """
    result = []
    for model in models:
        if is_excluded_model(model):
            continue
        if is_image_model(model) == image_models_only:
            result.append(model)
    return result


class ModelManager:
    """
    Owns the model registry on behalf of the host.

    Usage:
        manager = ModelManager(settings, discovery)
        manager.initialize()
        chat_models = await manager.get_available_models()
    """

    def __init__(
        self,
        settings: RelaySettings,
        discovery_service: ModelDiscoveryService,
        registry: Optional[ModelRegistry] = None,
        static_models: Optional[Iterable[NormalizedModel]] = None,
    ):
        self._settings = settings
        self._discovery = discovery_service
        self._registry = registry if registry is not None else ModelRegistry()
        self._static_models: tuple[NormalizedModel, ...] = (
            tuple(static_models) if static_models is not None else DEFAULT_MODELS
        )

    @property
    def settings(self) -> RelaySettings:
        return self._settings

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    def _discovery_enabled(self) -> bool:
        return self._settings.model_discovery.enabled

    def initialize(self) -> None:
        """Load the persisted discovery cache and auto-update timestamp."""
        self._discovery.load_cache()
        discovery = self._settings.model_discovery
        discovery.last_update = max(discovery.last_update, self._discovery.load_last_update())

    def get_discovery_service(self) -> ModelDiscoveryService:
        return self._discovery

    def get_static_models(self) -> list[NormalizedModel]:
        return list(self._static_models)

    # ─────────────────────────────────────────────────────────────────
    # MODEL LISTS
    # ─────────────────────────────────────────────────────────────────

    async def resolve_available_models(
        self,
        options: Optional[ModelUpdateOptions] = None
    ) -> ModelSelection:
        """Text-model list and the source it came from."""
        options = options or ModelUpdateOptions()

        def static(reason: str) -> ModelSelection:
            return ModelSelection(
                models=filter_models_for_version(self._static_models, False),
                source=ModelSource.STATIC,
                reason=reason,
            )

        if not self._discovery_enabled():
            return static("discovery_disabled")

        try:
            discovery = await self._discovery.discover_models(options.force_refresh)
            if not (discovery.success and discovery.models):
                logger.warning(
                    f"Model discovery unsuccessful, falling back to static models: {discovery.error}"
                )
                return static("discovery_failed")

            dynamic = mapper.map_to_normalized_models(discovery.models)
            dynamic = mapper.sort_models_by_preference(dynamic)
            if options.preserve_user_customizations:
                dynamic = mapper.merge_with_existing_models(dynamic, self._static_models)

            return ModelSelection(
                models=filter_models_for_version(dynamic, False),
                source=ModelSource.DYNAMIC,
            )
        except Exception as e:
            logger.warning(f"Model discovery failed, falling back to static models: {e}")
            return static("discovery_error")

    async def get_available_models(
        self,
        options: Optional[ModelUpdateOptions] = None
    ) -> list[NormalizedModel]:
        """Current text models (dynamic or static fallback). Never raises."""
        return (await self.resolve_available_models(options)).models

    async def resolve_image_generation_models(self) -> ModelSelection:
        """Image-model list and the source it came from."""
        static_image_models = filter_models_for_version(self._static_models, True)

        def static(reason: str) -> ModelSelection:
            logger.debug(
                f"Image models ({reason}): returning {len(static_image_models)} static models"
            )
            return ModelSelection(
                models=static_image_models,
                source=ModelSource.STATIC,
                reason=reason,
            )

        if not self._discovery_enabled():
            return static("discovery_disabled")

        try:
            discovery = await self._discovery.discover_models(False)
            if not (discovery.success and discovery.models):
                return static("discovery_failed")

            dynamic = mapper.map_to_normalized_models(discovery.models)
            dynamic_ids = {m.id for m in dynamic}
            dynamic += [m for m in self._static_models if m.id not in dynamic_ids]
            dynamic = mapper.sort_models_by_preference(dynamic)

            filtered = filter_models_for_version(dynamic, True)
            logger.debug(f"Image models: filtered {len(filtered)} from {len(dynamic)} models")
            if not filtered:
                logger.warning("All dynamic image models were filtered out, falling back to static models")
                return static("filtered_empty")

            return ModelSelection(models=filtered, source=ModelSource.DYNAMIC)
        except Exception as e:
            logger.warning(f"Model discovery failed, falling back to static models: {e}")
            return static("discovery_error")

    async def get_image_generation_models(self) -> list[NormalizedModel]:
        """Current image-capable models. Never raises."""
        return (await self.resolve_image_generation_models()).models

    # ─────────────────────────────────────────────────────────────────
    # REGISTRY UPDATES
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def detect_model_changes(
        current: list[NormalizedModel],
        previous: list[NormalizedModel]
    ) -> bool:
        """Changed when sizes differ or the id sets differ."""
        if len(current) != len(previous):
            return True
        return {m.id for m in current} != {m.id for m in previous}

    async def update_models(
        self,
        options: Optional[ModelUpdateOptions] = None
    ) -> ModelUpdateResult:
        """
        Refresh the registry and reconcile model-name settings.

        When the available set differs from the registered one, the registry
        is replaced and settings pointing at vanished models are reassigned.
        """
        current = await self.get_available_models(options)
        previous = self._registry.models

        if not self.detect_model_changes(current, previous):
            return ModelUpdateResult(
                updated_settings=self._settings,
                settings_changed=False,
                changed_settings_info=[],
            )

        logger.info(f"Model list changed: {len(previous)} -> {len(current)} models")
        self._registry.set_models(current)
        result = get_updated_model_settings(self._settings, self._registry)
        for info in result.changed_settings_info:
            logger.info(info)
        return result

    async def refresh_models(self) -> RefreshResult:
        """Force a registry update and report the outcome. Never raises."""
        try:
            result = await self.update_models(ModelUpdateOptions(
                force_refresh=True,
                preserve_user_customizations=True,
            ))
            models = await self.get_available_models(ModelUpdateOptions(force_refresh=True))
            return RefreshResult(
                success=True,
                models_found=len(models),
                changes=result.settings_changed,
            )
        except Exception as e:
            logger.error(f"Model refresh failed: {e}")
            return RefreshResult(success=False, models_found=0, changes=False, error=str(e))

    def needs_auto_update(self, now: Optional[float] = None) -> bool:
        """True when discovery is on and the auto-update interval has elapsed."""
        discovery = self._settings.model_discovery
        if not discovery.enabled or discovery.auto_update_interval <= 0:
            return False
        now = time.time() if now is None else now
        return now - discovery.last_update >= discovery.auto_update_interval * 3600

    async def maybe_auto_update(self, now: Optional[float] = None) -> Optional[ModelUpdateResult]:
        """
        Run a forced update if one is due. Returns None when not due.

        The update time is saved with the discovery cache, so the schedule
        carries over to the next initialize().
        """
        if not self.needs_auto_update(now):
            return None
        result = await self.update_models(ModelUpdateOptions(force_refresh=True))
        stamp = time.time() if now is None else now
        self._settings.model_discovery.last_update = stamp
        self._discovery.save_last_update(stamp)
        return result

    async def get_discovery_status(self) -> DiscoveryStatus:
        """Whether discovery is enabled and whether it is currently working."""
        if not self._discovery_enabled():
            return DiscoveryStatus(enabled=False, working=False)

        try:
            discovery = await self._discovery.discover_models(False)
            return DiscoveryStatus(
                enabled=True,
                working=discovery.success,
                last_update=discovery.last_updated,
                error=discovery.error,
            )
        except Exception as e:
            return DiscoveryStatus(enabled=True, working=False, error=str(e))

    # ─────────────────────────────────────────────────────────────────
    # PARAMETERS
    # ─────────────────────────────────────────────────────────────────

    async def get_discovered_models(self) -> list[ProviderModel]:
        """Cached provider models, or [] when discovery is off or failing."""
        if not self._discovery_enabled():
            return []
        try:
            discovery = await self._discovery.discover_models(False)
        except Exception as e:
            logger.warning(f"Failed to get discovered models: {e}")
            return []
        return list(discovery.models) if discovery.success else []

    async def get_parameter_ranges(self) -> ParameterRanges:
        return parameters.get_parameter_ranges(await self.get_discovered_models())

    async def validate_parameters(
        self,
        temperature: float,
        top_p: float,
        model_name: Optional[str] = None
    ) -> ParameterValidationReport:
        """
        Check sampling values against discovered model limits.

        Out-of-range values are reported with a clamped adjusted_value and
        a warning; callers apply the adjustment.
        """
        models = await self.get_discovered_models()
        return ParameterValidationReport(
            temperature=parameters.validate_temperature(temperature, model_name, models),
            top_p=parameters.validate_top_p(top_p, model_name, models),
        )

    async def get_parameter_display_info(self) -> ParameterDisplayInfo:
        return parameters.get_parameter_display_info(await self.get_discovered_models())
