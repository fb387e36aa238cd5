"""
Configuration constants and Pydantic models for prompt-relay.
"""

import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ─────────────────────────────────────────────────────────────────────
# DEFAULTS - User-configurable via settings / environment
# ─────────────────────────────────────────────────────────────────────

DEFAULT_API_BASE: str = "https://api.groq.com/openai/v1"
DEFAULT_TEMPERATURE: float = 0.7
DEFAULT_TOP_P: float = 0.95
DEFAULT_TIMEOUT_SECONDS: int = 300  # 5 minutes
DEFAULT_AUTO_UPDATE_HOURS: int = 24
DEFAULT_DATA_PATH: Path = Path.home() / ".prompt_relay" / "data.json"


# ─────────────────────────────────────────────────────────────────────
# INTERNAL CONSTANTS - Not exposed to settings
# ─────────────────────────────────────────────────────────────────────

DISCOVERY_CACHE_TTL_SECONDS: int = 24 * 60 * 60
DISCOVERY_TIMEOUT_SECONDS: float = 10.0
DISCOVERY_CACHE_KEY: str = "model_discovery_cache"
DISCOVERY_LAST_UPDATE_KEY: str = "model_discovery_last_update"

# The catalog endpoint only returns ids; limits are filled in locally.
PROVIDER_INPUT_TOKEN_LIMIT: int = 131072
PROVIDER_OUTPUT_TOKEN_LIMIT: int = 8192
PROVIDER_MAX_TEMPERATURE: float = 2.0
PROVIDER_TOP_P: float = 1.0


# ─────────────────────────────────────────────────────────────────────
# ENVIRONMENT LOADING
# ─────────────────────────────────────────────────────────────────────

def get_api_key() -> Optional[str]:
    """
    Get the provider API key from environment.

    Reads RELAY_API_KEY, falling back to GROQ_API_KEY.
    """
    return os.environ.get("RELAY_API_KEY") or os.environ.get("GROQ_API_KEY")


def get_api_base() -> str:
    """Get provider base URL from RELAY_API_BASE, or the Groq default."""
    value = os.environ.get("RELAY_API_BASE", "").strip()
    return value.rstrip("/") if value else DEFAULT_API_BASE


def get_default_temperature() -> float:
    """
    Get default temperature from environment or default.

    Set RELAY_TEMPERATURE in .env (default: 0.7).
    """
    try:
        return float(os.environ.get("RELAY_TEMPERATURE", str(DEFAULT_TEMPERATURE)))
    except ValueError:
        return DEFAULT_TEMPERATURE


def get_default_top_p() -> float:
    """
    Get default nucleus-sampling value from environment or default.

    Set RELAY_TOP_P in .env (default: 0.95).
    """
    try:
        return float(os.environ.get("RELAY_TOP_P", str(DEFAULT_TOP_P)))
    except ValueError:
        return DEFAULT_TOP_P


def get_max_tokens() -> Optional[int]:
    """Get RELAY_MAX_TOKENS, or None when unset or malformed."""
    value = os.environ.get("RELAY_MAX_TOKENS")
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def is_discovery_enabled() -> bool:
    """Check RELAY_DISCOVERY_ENABLED (default: enabled)."""
    value = os.environ.get("RELAY_DISCOVERY_ENABLED", "true").strip().lower()
    return value not in ("0", "false", "no", "off")


def get_auto_update_hours() -> int:
    """
    Get discovery auto-update interval in hours.

    Set RELAY_AUTO_UPDATE_HOURS in .env (default: 24).
    """
    try:
        return int(os.environ.get("RELAY_AUTO_UPDATE_HOURS", str(DEFAULT_AUTO_UPDATE_HOURS)))
    except ValueError:
        return DEFAULT_AUTO_UPDATE_HOURS


def get_data_path() -> Path:
    """Get path of the durable data file from RELAY_DATA_PATH or default."""
    path = os.environ.get("RELAY_DATA_PATH")
    if path:
        return Path(path).expanduser()
    return DEFAULT_DATA_PATH


def load_settings_from_env() -> "RelaySettings":
    """Build RelaySettings from environment variables."""
    return RelaySettings(
        api_key=get_api_key() or "",
        chat_model_name=os.environ.get("RELAY_CHAT_MODEL", ""),
        temperature=get_default_temperature(),
        top_p=get_default_top_p(),
        max_output_tokens=get_max_tokens(),
        model_discovery=DiscoverySettings(
            enabled=is_discovery_enabled(),
            auto_update_interval=get_auto_update_hours(),
        ),
    )


# ─────────────────────────────────────────────────────────────────────
# DATA MODELS
# ─────────────────────────────────────────────────────────────────────

ModelRole = Literal["chat", "summary", "completions", "rewrite", "image"]


class ProviderModel(BaseModel):
    """A model entry as reported by the provider catalog."""
    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    description: str = ""
    version: str = "latest"
    input_token_limit: int = PROVIDER_INPUT_TOKEN_LIMIT
    output_token_limit: int = PROVIDER_OUTPUT_TOKEN_LIMIT
    supported_generation_methods: list[str] = Field(default_factory=list)
    base_model_id: Optional[str] = None
    max_temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None


class NormalizedModel(BaseModel):
    """A model as offered to callers, keyed by its provider id."""
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    default_for_roles: list[ModelRole] = Field(default_factory=list)
    supports_image_generation: bool = False

    def is_default_for(self, role: ModelRole) -> bool:
        return role in self.default_for_roles


class DiscoveryResult(BaseModel):
    """Outcome of one discovery attempt. Timestamp is epoch seconds."""
    models: list[ProviderModel] = Field(default_factory=list)
    last_updated: float
    success: bool
    error: Optional[str] = None


class DiscoverySettings(BaseModel):
    """Model discovery preferences."""
    enabled: bool = True
    auto_update_interval: int = DEFAULT_AUTO_UPDATE_HOURS  # hours
    last_update: float = 0.0  # epoch seconds
    fallback_to_static: bool = True


class RelaySettings(BaseModel):
    """Host settings consumed by the relay (credential, model names, sampling)."""
    api_key: str = ""
    chat_model_name: str = ""
    summary_model_name: str = ""
    completions_model_name: str = ""
    image_model_name: str = ""
    temperature: float = DEFAULT_TEMPERATURE
    top_p: float = DEFAULT_TOP_P
    max_output_tokens: Optional[int] = None
    streaming_enabled: bool = True
    model_discovery: DiscoverySettings = Field(default_factory=DiscoverySettings)


class ModelUpdateOptions(BaseModel):
    """Options for model list queries."""
    force_refresh: bool = False
    preserve_user_customizations: bool = False


class ModelUpdateResult(BaseModel):
    """Settings after reconciling them against the current registry."""
    updated_settings: RelaySettings
    settings_changed: bool
    changed_settings_info: list[str] = Field(default_factory=list)
