"""
Sampling-parameter ranges and validation derived from discovered models.
"""

from typing import Iterable, Optional

from pydantic import BaseModel

from prompt_relay.config import PROVIDER_MAX_TEMPERATURE, ProviderModel

MIN_TEMPERATURE: float = 0.0
TEMPERATURE_STEP: float = 0.1
MIN_TOP_P: float = 0.0
MAX_TOP_P: float = 1.0
TOP_P_STEP: float = 0.01


class ParameterRange(BaseModel):
    min: float
    max: float
    step: float


class ParameterRanges(BaseModel):
    temperature: ParameterRange
    top_p: ParameterRange


class ParameterValidation(BaseModel):
    """
    Result of checking one value.

    When is_valid is False, adjusted_value holds the clamped value to apply
    and warning explains the adjustment.
    """
    is_valid: bool
    adjusted_value: Optional[float] = None
    warning: Optional[str] = None


class ParameterDisplayInfo(BaseModel):
    temperature: str
    top_p: str
    has_model_data: bool


def find_model(model_name: Optional[str], models: Iterable[ProviderModel]) -> Optional[ProviderModel]:
    """Look up a discovered model by name (with or without a "models/" prefix)."""
    if not model_name:
        return None
    for model in models:
        if model.name == model_name or model.name == f"models/{model_name}":
            return model
    return None


def get_parameter_ranges(models: Iterable[ProviderModel]) -> ParameterRanges:
    """Widest safe ranges across all discovered models."""
    limits = [m.max_temperature for m in models if m.max_temperature is not None]
    max_temperature = max(limits) if limits else PROVIDER_MAX_TEMPERATURE
    return ParameterRanges(
        temperature=ParameterRange(min=MIN_TEMPERATURE, max=max_temperature, step=TEMPERATURE_STEP),
        top_p=ParameterRange(min=MIN_TOP_P, max=MAX_TOP_P, step=TOP_P_STEP),
    )


def _clamp(name: str, value: float, low: float, high: float, limit_source: str) -> ParameterValidation:
    if value < low:
        return ParameterValidation(
            is_valid=False,
            adjusted_value=low,
            warning=f"{name} {value} is below the minimum of {low}; adjusted to {low}.",
        )
    if value > high:
        return ParameterValidation(
            is_valid=False,
            adjusted_value=high,
            warning=f"{name} {value} exceeds the {limit_source} of {high}; adjusted to {high}.",
        )
    return ParameterValidation(is_valid=True)


def validate_temperature(
    temperature: float,
    model_name: Optional[str] = None,
    models: Iterable[ProviderModel] = ()
) -> ParameterValidation:
    """Check temperature against the named model's limit, or the global range."""
    models = list(models)
    model = find_model(model_name, models)
    if model is not None and model.max_temperature is not None:
        return _clamp(
            "Temperature", temperature, MIN_TEMPERATURE, model.max_temperature,
            f"limit for {model.name}",
        )
    ranges = get_parameter_ranges(models)
    return _clamp(
        "Temperature", temperature, ranges.temperature.min, ranges.temperature.max,
        "maximum",
    )


def validate_top_p(
    top_p: float,
    model_name: Optional[str] = None,
    models: Iterable[ProviderModel] = ()
) -> ParameterValidation:
    """Check top-p against the named model's default ceiling, or [0, 1]."""
    model = find_model(model_name, models)
    high = MAX_TOP_P
    source = "maximum"
    if model is not None and model.top_p is not None and model.top_p < MAX_TOP_P:
        high = model.top_p
        source = f"limit for {model.name}"
    return _clamp("Top P", top_p, MIN_TOP_P, high, source)


def get_parameter_display_info(models: Iterable[ProviderModel]) -> ParameterDisplayInfo:
    """Human-readable range descriptions for settings screens."""
    models = list(models)
    ranges = get_parameter_ranges(models)
    has_model_data = bool(models)
    if has_model_data:
        temperature = (
            f"Range: {ranges.temperature.min:g}-{ranges.temperature.max:g} "
            f"(based on {len(models)} discovered models)"
        )
    else:
        temperature = f"Range: {ranges.temperature.min:g}-{ranges.temperature.max:g} (default)"
    top_p = f"Range: {ranges.top_p.min:g}-{ranges.top_p.max:g}"
    return ParameterDisplayInfo(
        temperature=temperature,
        top_p=top_p,
        has_model_data=has_model_data,
    )
