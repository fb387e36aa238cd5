"""
Model discovery: fetch the provider catalog, cache it with a TTL, and
persist the last successful result so a restart does not refetch.
"""

import logging
import time
from typing import Any, Callable, Optional

import httpx
from pydantic import BaseModel, ValidationError

from prompt_relay.config import (
    DEFAULT_API_BASE, DISCOVERY_CACHE_KEY, DISCOVERY_CACHE_TTL_SECONDS,
    DISCOVERY_LAST_UPDATE_KEY, DISCOVERY_TIMEOUT_SECONDS, PROVIDER_INPUT_TOKEN_LIMIT,
    PROVIDER_MAX_TEMPERATURE, PROVIDER_OUTPUT_TOKEN_LIMIT, PROVIDER_TOP_P,
    DiscoveryResult, ProviderModel, RelaySettings
)
from prompt_relay.errors import ConfigurationError, ProviderError
from prompt_relay.storage import SettingsStore

logger = logging.getLogger(__name__)

# Speech and transcription families never serve chat completions
_NON_GENERATIVE_MARKERS = ("whisper", "tts", "vision-preview")


class CacheInfo(BaseModel):
    """Diagnostic view of the discovery cache."""
    has_cache: bool
    is_valid: bool
    last_updated: Optional[float] = None


def is_generative_model(entry: dict[str, Any]) -> bool:
    """Check whether a catalog entry can serve conversational requests."""
    model_id = str(entry.get("id") or "").lower()
    return bool(model_id) and not any(m in model_id for m in _NON_GENERATIVE_MARKERS)


def to_provider_model(entry: dict[str, Any]) -> ProviderModel:
    """Map a catalog entry, filling in limits the catalog does not supply."""
    model_id = str(entry["id"])
    return ProviderModel(
        name=model_id,
        display_name=model_id,
        description=entry.get("owned_by") or "Groq model",
        version="latest",
        input_token_limit=PROVIDER_INPUT_TOKEN_LIMIT,
        output_token_limit=PROVIDER_OUTPUT_TOKEN_LIMIT,
        supported_generation_methods=["generateContent"],
        max_temperature=PROVIDER_MAX_TEMPERATURE,
        top_p=PROVIDER_TOP_P,
    )


class ModelDiscoveryService:
    """
    Discovers which models the provider currently offers.

    The cache is replaced as a whole on every successful fetch. A failed
    fetch never raises; it returns the previous cache if there is one.
    """

    def __init__(
        self,
        settings: RelaySettings,
        store: SettingsStore,
        api_base: str = DEFAULT_API_BASE,
        clock: Callable[[], float] = time.time,
        ttl_seconds: float = DISCOVERY_CACHE_TTL_SECONDS,
    ):
        self._settings = settings
        self._store = store
        self._api_base = api_base.rstrip("/")
        self._clock = clock
        self._ttl_seconds = ttl_seconds
        self._cache: Optional[DiscoveryResult] = None

    @property
    def cache(self) -> Optional[DiscoveryResult]:
        return self._cache

    async def discover_models(self, force_refresh: bool = False) -> DiscoveryResult:
        """
        Return the provider's model catalog.

        Args:
            force_refresh: Skip the cache and always fetch

        Returns:
            DiscoveryResult. On failure, the stale cache if present,
            otherwise an empty result with success=False.
        """
        if not force_refresh and self.is_cache_valid():
            return self._cache

        try:
            models = await self._fetch_models()
        except (ConfigurationError, ProviderError) as e:
            logger.warning(f"Model discovery failed: {e}")
            if self._cache is not None:
                return self._cache
            return DiscoveryResult(
                models=[],
                last_updated=self._clock(),
                success=False,
                error=str(e),
            )

        result = DiscoveryResult(models=models, last_updated=self._clock(), success=True)
        self._cache = result
        try:
            self._persist_entry(DISCOVERY_CACHE_KEY, result.model_dump(mode="json"))
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Failed to persist discovery cache: {e}")
        logger.debug(f"Discovered {len(models)} models from {self._api_base}")
        return result

    async def _fetch_models(self) -> list[ProviderModel]:
        """Fetch and map the catalog. Raises ConfigurationError/ProviderError."""
        api_key = self._settings.api_key
        if not api_key:
            raise ConfigurationError("API key not configured")

        try:
            async with httpx.AsyncClient(timeout=DISCOVERY_TIMEOUT_SECONDS) as client:
                response = await client.get(
                    f"{self._api_base}/models",
                    headers={"Authorization": f"Bearer {api_key}"},
                )
        except httpx.HTTPError as e:
            raise ProviderError(f"Model catalog request failed: {e}") from e

        if response.status_code >= 400:
            raise ProviderError(
                f"API request failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"Model catalog returned invalid JSON: {e}") from e

        # {"data": [{"id": "model-name", "owned_by": "..."}, ...]}
        entries = (data.get("data") or []) if isinstance(data, dict) else []
        return [
            to_provider_model(entry)
            for entry in entries
            if isinstance(entry, dict) and is_generative_model(entry)
        ]

    def is_cache_valid(self) -> bool:
        cache = self._cache
        return cache is not None and self._clock() - cache.last_updated < self._ttl_seconds

    def _persist_entry(self, key: str, value: Any) -> None:
        data = self._store.load() or {}
        data[key] = value
        self._store.save(data)

    def load_cache(self) -> None:
        """Reload the persisted cache (call at startup)."""
        data = self._store.load() or {}
        raw = data.get(DISCOVERY_CACHE_KEY)
        if not raw:
            self._cache = None
            return
        try:
            self._cache = DiscoveryResult.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed discovery cache: {e}")
            self._cache = None

    def clear_cache(self) -> None:
        """Drop the in-memory cache. The persisted copy is left alone."""
        self._cache = None

    def get_cache_info(self) -> CacheInfo:
        cache = self._cache
        return CacheInfo(
            has_cache=cache is not None,
            is_valid=self.is_cache_valid(),
            last_updated=cache.last_updated if cache is not None else None,
        )

    def load_last_update(self) -> float:
        """Persisted auto-update timestamp, or 0.0 if none was saved."""
        value = (self._store.load() or {}).get(DISCOVERY_LAST_UPDATE_KEY)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0.0
        return float(value)

    def save_last_update(self, timestamp: float) -> None:
        """Persist the auto-update timestamp. Storage failures are logged."""
        try:
            self._persist_entry(DISCOVERY_LAST_UPDATE_KEY, timestamp)
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Failed to persist auto-update timestamp: {e}")
