"""Tests for ModelManager - filtering, fallback selection, registry updates."""

from unittest.mock import AsyncMock

import httpx
import pytest
import respx

from prompt_relay.config import (
    DiscoverySettings, ModelUpdateOptions, NormalizedModel, RelaySettings
)
from prompt_relay.discovery import ModelDiscoveryService
from prompt_relay.manager import (
    ModelManager, ModelSource, filter_models_for_version
)
from prompt_relay.models import DEFAULT_MODELS, ModelRegistry
from prompt_relay.storage import MemoryStore
from tests.conftest import MOCK_API_BASE, MODELS_URL


def nm(model_id, **kwargs):
    return NormalizedModel(id=model_id, label=model_id, **kwargs)


def catalog(*model_ids):
    return {"data": [{"id": m, "owned_by": "test"} for m in model_ids]}


@pytest.fixture
def disabled_settings():
    return RelaySettings(api_key="key", model_discovery=DiscoverySettings(enabled=False))


def make_manager(settings, registry=None, static_models=None, clock=None):
    kwargs = {"api_base": MOCK_API_BASE}
    if clock is not None:
        kwargs["clock"] = clock
    discovery = ModelDiscoveryService(settings, MemoryStore(), **kwargs)
    return ModelManager(settings, discovery, registry=registry or ModelRegistry(), static_models=static_models)


# ─────────────────────────────────────────────────────────────────────
# filter_models_for_version()
# ─────────────────────────────────────────────────────────────────────

class TestFilterModelsForVersion:

    MODELS = [
        nm("compound"),
        nm("text-embedding-3-small"),
        nm("whisper-large-v3"),
        nm("guardrail-model"),
        nm("llama-3.3-70b-versatile"),
        nm("flux-dev", supports_image_generation=True),
        nm("llava-vision"),
        nm("speech-vision-model"),
        nm("gpt-image-1"),
    ]

    def test_filters_out_specialized_non_chat_models_for_text_list(self):
        text = [m.id for m in filter_models_for_version(self.MODELS, False)]
        assert text == ["compound", "llama-3.3-70b-versatile"]

    def test_returns_only_image_models_for_image_list(self):
        image = [m.id for m in filter_models_for_version(self.MODELS, True)]
        assert image == ["flux-dev", "llava-vision", "gpt-image-1"]

    def test_denylist_wins_over_image_classification(self):
        text = {m.id for m in filter_models_for_version(self.MODELS, False)}
        image = {m.id for m in filter_models_for_version(self.MODELS, True)}
        assert "speech-vision-model" not in text | image

    def test_partitions_are_disjoint_and_complete(self):
        denylisted = {"text-embedding-3-small", "whisper-large-v3", "guardrail-model", "speech-vision-model"}
        text = {m.id for m in filter_models_for_version(self.MODELS, False)}
        image = {m.id for m in filter_models_for_version(self.MODELS, True)}

        assert text.isdisjoint(image)
        assert text | image == {m.id for m in self.MODELS} - denylisted

    def test_capability_flag_marks_image_model(self):
        models = [nm("plain-name", supports_image_generation=True)]
        assert filter_models_for_version(models, False) == []
        assert filter_models_for_version(models, True) == models


# ─────────────────────────────────────────────────────────────────────
# get_available_models()
# ─────────────────────────────────────────────────────────────────────

class TestGetAvailableModels:

    @pytest.mark.asyncio
    async def test_discovery_disabled_returns_static(self, disabled_settings):
        manager = make_manager(disabled_settings)

        selection = await manager.resolve_available_models()

        assert selection.source == ModelSource.STATIC
        assert selection.reason == "discovery_disabled"
        assert [m.id for m in selection.models] == [m.id for m in DEFAULT_MODELS]

    @pytest.mark.asyncio
    @respx.mock
    async def test_dynamic_models_are_sorted_and_filtered(self, manager):
        respx.get(MODELS_URL).mock(return_value=httpx.Response(200, json=catalog(
            "qwen-qwq-32b-preview", "llama-3.3-70b-versatile", "llama-guard-4-12b", "compound",
        )))

        selection = await manager.resolve_available_models()

        assert selection.source == ModelSource.DYNAMIC
        assert selection.reason is None
        assert [m.id for m in selection.models] == [
            "compound", "llama-3.3-70b-versatile", "qwen-qwq-32b-preview",
        ]

    @pytest.mark.asyncio
    @respx.mock
    async def test_preserve_user_customizations_merges_static(self, manager):
        respx.get(MODELS_URL).mock(return_value=httpx.Response(200, json=catalog("compound", "new-model")))

        models = await manager.get_available_models(
            ModelUpdateOptions(preserve_user_customizations=True)
        )

        ids = [m.id for m in models]
        assert ids[:2] == ["compound", "new-model"]
        assert set(ids) == {"new-model"} | {m.id for m in DEFAULT_MODELS}
        assert len(ids) == len(set(ids))

    @pytest.mark.asyncio
    @respx.mock
    async def test_discovery_failure_falls_back_to_static(self, manager):
        respx.get(MODELS_URL).mock(return_value=httpx.Response(500, text="down"))

        selection = await manager.resolve_available_models()

        assert selection.source == ModelSource.STATIC
        assert selection.reason == "discovery_failed"
        assert [m.id for m in selection.models] == [m.id for m in DEFAULT_MODELS]

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_catalog_falls_back_to_static(self, manager):
        respx.get(MODELS_URL).mock(return_value=httpx.Response(200, json={"data": []}))

        selection = await manager.resolve_available_models()

        assert selection.source == ModelSource.STATIC

    @pytest.mark.asyncio
    async def test_discovery_exception_falls_back_to_static(self, manager):
        manager.get_discovery_service().discover_models = AsyncMock(side_effect=RuntimeError("kaboom"))

        selection = await manager.resolve_available_models()

        assert selection.source == ModelSource.STATIC
        assert selection.reason == "discovery_error"

    @pytest.mark.asyncio
    @respx.mock
    async def test_force_refresh_is_passed_to_discovery(self, manager):
        route = respx.get(MODELS_URL).mock(return_value=httpx.Response(200, json=catalog("compound")))

        await manager.get_available_models()
        await manager.get_available_models()
        await manager.get_available_models(ModelUpdateOptions(force_refresh=True))

        assert route.call_count == 2


# ─────────────────────────────────────────────────────────────────────
# get_image_generation_models()
# ─────────────────────────────────────────────────────────────────────

class TestGetImageGenerationModels:

    STATIC = [
        nm("compound", default_for_roles=["chat"]),
        nm("flux-static", supports_image_generation=True, default_for_roles=["image"]),
    ]

    @pytest.mark.asyncio
    async def test_discovery_disabled_returns_static_image_models(self, disabled_settings):
        manager = make_manager(disabled_settings, static_models=self.STATIC)

        models = await manager.get_image_generation_models()

        assert [m.id for m in models] == ["flux-static"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_unions_dynamic_and_static_image_models(self, settings):
        respx.get(MODELS_URL).mock(return_value=httpx.Response(200, json=catalog("compound", "flux-dev")))
        manager = make_manager(settings, static_models=self.STATIC)

        selection = await manager.resolve_image_generation_models()

        assert selection.source == ModelSource.DYNAMIC
        assert [m.id for m in selection.models] == ["flux-dev", "flux-static"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_filtered_empty_falls_back_to_static(self, settings):
        respx.get(MODELS_URL).mock(return_value=httpx.Response(200, json=catalog("compound")))
        manager = make_manager(settings, static_models=[nm("compound")])

        selection = await manager.resolve_image_generation_models()

        assert selection.source == ModelSource.STATIC
        assert selection.reason == "filtered_empty"
        assert selection.models == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_discovery_failure_returns_static_image_models(self, settings):
        respx.get(MODELS_URL).mock(side_effect=httpx.ConnectError("refused"))
        manager = make_manager(settings, static_models=self.STATIC)

        selection = await manager.resolve_image_generation_models()

        assert selection.reason == "discovery_failed"
        assert [m.id for m in selection.models] == ["flux-static"]


# ─────────────────────────────────────────────────────────────────────
# update_models() / refresh_models()
# ─────────────────────────────────────────────────────────────────────

class TestUpdateModels:

    STATIC = [
        nm("a", default_for_roles=["chat"]),
        nm("b", default_for_roles=["summary"]),
    ]

    @pytest.mark.asyncio
    async def test_reassigns_settings_for_vanished_models(self):
        settings = RelaySettings(
            chat_model_name="x",
            summary_model_name="b",
            model_discovery=DiscoverySettings(enabled=False),
        )
        registry = ModelRegistry()
        manager = make_manager(settings, registry=registry, static_models=self.STATIC)

        result = await manager.update_models()

        assert result.settings_changed is True
        assert result.updated_settings.chat_model_name == "a"
        assert result.updated_settings.summary_model_name == "b"
        assert [m.id for m in registry.models] == ["a", "b"]
        assert any("Chat model: 'x' -> 'a'" in info for info in result.changed_settings_info)

    @pytest.mark.asyncio
    async def test_no_change_returns_settings_untouched(self):
        settings = RelaySettings(chat_model_name="x", model_discovery=DiscoverySettings(enabled=False))
        registry = ModelRegistry([nm("b"), nm("a")])
        manager = make_manager(settings, registry=registry, static_models=self.STATIC)

        result = await manager.update_models()

        assert result.settings_changed is False
        assert result.changed_settings_info == []
        assert result.updated_settings is settings
        # Order differences alone do not replace the registry
        assert [m.id for m in registry.models] == ["b", "a"]

    def test_detect_model_changes(self):
        assert ModelManager.detect_model_changes([nm("a"), nm("b")], [nm("b"), nm("a")]) is False
        assert ModelManager.detect_model_changes([nm("a")], [nm("a"), nm("b")]) is True
        assert ModelManager.detect_model_changes([nm("a"), nm("a")], [nm("a"), nm("b")]) is True
        assert ModelManager.detect_model_changes([nm("a"), nm("c")], [nm("a"), nm("b")]) is True

    @pytest.mark.asyncio
    @respx.mock
    async def test_refresh_models_reports_success(self, manager, registry):
        route = respx.get(MODELS_URL).mock(return_value=httpx.Response(200, json=catalog("compound", "new-model")))

        result = await manager.refresh_models()

        assert result.success is True
        assert result.models_found == 2
        assert result.error is None
        assert route.call_count == 2
        # preserve_user_customizations keeps the static baseline registered
        assert "new-model" in registry
        assert "compound-mini" in registry

    @pytest.mark.asyncio
    async def test_refresh_models_captures_exceptions(self, manager):
        manager.update_models = AsyncMock(side_effect=RuntimeError("boom"))

        result = await manager.refresh_models()

        assert result.success is False
        assert result.models_found == 0
        assert result.changes is False
        assert result.error == "boom"


# ─────────────────────────────────────────────────────────────────────
# AUTO UPDATE / STATUS
# ─────────────────────────────────────────────────────────────────────

class TestAutoUpdate:

    def test_needs_auto_update_when_interval_elapsed(self, manager, settings):
        settings.model_discovery.last_update = 1000.0
        settings.model_discovery.auto_update_interval = 24
        assert manager.needs_auto_update(now=1000.0 + 24 * 3600) is True
        assert manager.needs_auto_update(now=1000.0 + 3600) is False

    def test_disabled_discovery_never_auto_updates(self, disabled_settings):
        manager = make_manager(disabled_settings)
        assert manager.needs_auto_update(now=1e12) is False

    @pytest.mark.asyncio
    @respx.mock
    async def test_maybe_auto_update_stamps_last_update(self, manager, settings):
        respx.get(MODELS_URL).mock(return_value=httpx.Response(200, json=catalog("compound")))

        result = await manager.maybe_auto_update(now=5_000_000.0)

        assert result is not None
        assert settings.model_discovery.last_update == 5_000_000.0
        assert await manager.maybe_auto_update(now=5_000_001.0) is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_schedule_survives_restart(self, manager, store, clock):
        respx.get(MODELS_URL).mock(return_value=httpx.Response(200, json=catalog("compound")))
        await manager.maybe_auto_update(now=5_000_000.0)

        settings = RelaySettings(api_key="key", model_discovery=DiscoverySettings(enabled=True))
        discovery = ModelDiscoveryService(settings, store, api_base=MOCK_API_BASE, clock=clock)
        restarted = ModelManager(settings, discovery, registry=ModelRegistry())
        restarted.initialize()

        assert settings.model_discovery.last_update == 5_000_000.0
        assert restarted.needs_auto_update(now=5_000_001.0) is False
        assert restarted.needs_auto_update(now=5_000_000.0 + 24 * 3600) is True


class TestDiscoveryStatus:

    @pytest.mark.asyncio
    async def test_disabled(self, disabled_settings):
        status = await make_manager(disabled_settings).get_discovery_status()
        assert status.enabled is False
        assert status.working is False

    @pytest.mark.asyncio
    @respx.mock
    async def test_working(self, manager):
        respx.get(MODELS_URL).mock(return_value=httpx.Response(200, json=catalog("compound")))

        status = await manager.get_discovery_status()

        assert status.enabled is True
        assert status.working is True
        assert status.error is None

    @pytest.mark.asyncio
    async def test_missing_key_reports_error(self):
        settings = RelaySettings(api_key="", model_discovery=DiscoverySettings(enabled=True))

        status = await make_manager(settings).get_discovery_status()

        assert status.working is False
        assert status.error == "API key not configured"


# ─────────────────────────────────────────────────────────────────────
# PARAMETERS
# ─────────────────────────────────────────────────────────────────────

class TestParameters:

    @pytest.mark.asyncio
    async def test_ranges_without_discovery(self, disabled_settings):
        ranges = await make_manager(disabled_settings).get_parameter_ranges()
        assert ranges.temperature.max == 2.0

    @pytest.mark.asyncio
    @respx.mock
    async def test_validate_parameters_clamps_with_warning(self, manager):
        respx.get(MODELS_URL).mock(return_value=httpx.Response(200, json=catalog("compound")))

        report = await manager.validate_parameters(2.5, 0.5, "compound")

        assert report.temperature.is_valid is False
        assert report.temperature.adjusted_value == 2.0
        assert "compound" in report.temperature.warning
        assert report.top_p.is_valid is True

    @pytest.mark.asyncio
    @respx.mock
    async def test_display_info_uses_discovered_models(self, manager):
        respx.get(MODELS_URL).mock(return_value=httpx.Response(200, json=catalog("compound", "llama")))

        info = await manager.get_parameter_display_info()

        assert info.has_model_data is True

    @pytest.mark.asyncio
    @respx.mock
    async def test_failed_discovery_gives_no_model_data(self, manager):
        respx.get(MODELS_URL).mock(return_value=httpx.Response(500))

        assert await manager.get_discovered_models() == []
