"""
Configuration management and loading.

Handles pipeline settings from YAML files layered over environment defaults.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import structlog
import yaml

from ..core.errors import ConfigurationError
from ..core.extraction import DIAGRAM_SHAPE_CONTRACT, ShapeContract
from ..core.routing import ModelConfig, ModelTier, ReasoningEffort

log = structlog.get_logger(__name__)

REASONING_FALLBACK_CHAIN = (ModelTier.O3_MINI, ModelTier.GPT_4O)
REASONING_MAX_TOKENS = 16000
LEGACY_MAX_TOKENS = 4000
LEGACY_TEMPERATURE = 0.7


@dataclass(frozen=True)
class GenerationSettings:
    """Feedback loop and timeout settings."""
    max_iterations: int = 5
    request_timeout_seconds: float = 120.0
    validator_timeout_seconds: float = 60.0
    max_cost_per_request: Optional[float] = None

    def __post_init__(self):
        """Validate loop bounds and timeouts."""
        if self.max_iterations < 0:
            raise ValueError("max_iterations cannot be negative")
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be > 0")
        if self.validator_timeout_seconds <= 0:
            raise ValueError("validator_timeout_seconds must be > 0")
        if self.max_cost_per_request is not None and self.max_cost_per_request <= 0:
            raise ValueError("max_cost_per_request must be > 0")


@dataclass(frozen=True)
class LimitsConfig:
    """Process-wide request and spend limits."""
    requests_per_minute: int = 60
    daily_budget_usd: float = 10.0
    usage_log_capacity: int = 1000
    guard_generation: bool = False  # also gate completion calls, not just search

    def __post_init__(self):
        """Validate limits are positive."""
        if self.requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be > 0")
        if self.daily_budget_usd <= 0:
            raise ValueError("daily_budget_usd must be > 0")
        if self.usage_log_capacity <= 0:
            raise ValueError("usage_log_capacity must be > 0")


@dataclass(frozen=True)
class PipelineConfig:
    """Complete pipeline configuration."""
    model: ModelConfig
    generation: GenerationSettings = field(default_factory=GenerationSettings)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    shape: ShapeContract = DIAGRAM_SHAPE_CONTRACT


def _environ(environ: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return os.environ if environ is None else environ


def _parse_effort(value: str, path: str) -> ReasoningEffort:
    try:
        return ReasoningEffort(value.lower())
    except ValueError:
        valid = [effort.value for effort in ReasoningEffort]
        raise ValueError(f"'{path}' must be one of: {valid}")


def _parse_tier(value: Any, path: str) -> ModelTier:
    if not isinstance(value, str):
        raise ValueError(f"'{path}' must be a string")
    try:
        return ModelTier(value)
    except ValueError:
        raise ConfigurationError(f"Unknown model tier in {path}: {value}")


def get_model_config(environ: Optional[Mapping[str, str]] = None) -> ModelConfig:
    """Build the routing configuration from environment variables.

    FORGE_REASONING_ENABLED=true selects the reasoning tier with its fallback
    chain; otherwise the legacy single-tier setup is used. An invalid
    FORGE_REASONING_EFFORT falls back to medium with a warning.

    Args:
        environ: Mapping to read instead of os.environ

    Returns:
        ModelConfig for the selected deployment
    """
    env = _environ(environ)
    enabled = env.get("FORGE_REASONING_ENABLED", "").strip().lower() == "true"

    effort_raw = env.get("FORGE_REASONING_EFFORT", ReasoningEffort.MEDIUM.value)
    try:
        effort = ReasoningEffort(effort_raw.strip().lower())
    except ValueError:
        log.warning("config.invalid_reasoning_effort", value=effort_raw, using=ReasoningEffort.MEDIUM.value)
        effort = ReasoningEffort.MEDIUM

    if enabled:
        return ModelConfig(
            primary=ModelTier.GPT_5,
            fallback_chain=REASONING_FALLBACK_CHAIN,
            reasoning_effort=effort,
            max_tokens=REASONING_MAX_TOKENS,
        )

    return ModelConfig(
        primary=ModelTier.GPT_4O,
        fallback_chain=(),
        reasoning_effort=effort,
        temperature=LEGACY_TEMPERATURE,
        max_tokens=LEGACY_MAX_TOKENS,
    )


def get_limits_config(environ: Optional[Mapping[str, str]] = None) -> LimitsConfig:
    """Build the default limits from environment variables."""
    env = _environ(environ)
    try:
        requests = int(env.get("FORGE_MAX_REQUESTS_PER_MINUTE", "60"))
    except ValueError:
        raise ValueError("FORGE_MAX_REQUESTS_PER_MINUTE must be an integer")
    try:
        budget = float(env.get("FORGE_DAILY_BUDGET_USD", "10.0"))
    except ValueError:
        raise ValueError("FORGE_DAILY_BUDGET_USD must be a number")
    return LimitsConfig(requests_per_minute=requests, daily_budget_usd=budget)


def load_pipeline_config(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> PipelineConfig:
    """Load and validate pipeline configuration.

    Environment defaults are always applied first; a YAML file, when given,
    overrides individual keys. Unknown keys are rejected so a typo never
    silently falls back to a default.

    Args:
        path: Optional path to a YAML configuration file
        environ: Mapping to read instead of os.environ

    Returns:
        Validated PipelineConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
        ConfigurationError: If a tier name is unknown or the chain repeats a tier
    """
    model = get_model_config(environ)
    limits = get_limits_config(environ)

    if path is None:
        return PipelineConfig(model=model, limits=limits)

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Pipeline config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration file must contain a mapping")

    allowed_top_keys = {'model', 'generation', 'limits', 'shape'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'model' in raw_config:
        model = _parse_model(_section(raw_config, 'model'), model)

    generation = GenerationSettings()
    if 'generation' in raw_config:
        generation = _parse_generation(_section(raw_config, 'generation'))

    if 'limits' in raw_config:
        limits = _parse_limits(_section(raw_config, 'limits'), limits)

    shape = DIAGRAM_SHAPE_CONTRACT
    if 'shape' in raw_config:
        shape = _parse_shape(_section(raw_config, 'shape'))

    return PipelineConfig(model=model, generation=generation, limits=limits, shape=shape)


def _section(raw_config: Dict, name: str) -> Dict:
    data = raw_config[name]
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _number(data: Dict, key: str, path: str) -> float:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    return float(value)


def _integer(data: Dict, key: str, path: str) -> int:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' in {path} must be an integer")
    return value


def _parse_model(data: Dict, defaults: ModelConfig) -> ModelConfig:
    """Parse the model section over the environment defaults."""
    _check_keys(data, {'primary', 'fallback_chain', 'reasoning_effort', 'temperature', 'max_tokens'}, "model")

    primary = defaults.primary
    if 'primary' in data:
        primary = _parse_tier(data['primary'], "model.primary")

    chain = defaults.fallback_chain
    if 'fallback_chain' in data:
        raw_chain = data['fallback_chain'] or []
        if not isinstance(raw_chain, list):
            raise ValueError("'fallback_chain' in model must be a list")
        chain = tuple(
            _parse_tier(item, f"model.fallback_chain[{index}]")
            for index, item in enumerate(raw_chain)
        )
    elif 'primary' in data:
        # A new primary does not inherit a chain built for another tier
        chain = tuple(tier for tier in defaults.fallback_chain if tier != primary)

    effort = defaults.reasoning_effort
    if 'reasoning_effort' in data:
        if not isinstance(data['reasoning_effort'], str):
            raise ValueError("'reasoning_effort' in model must be a string")
        effort = _parse_effort(data['reasoning_effort'], "model.reasoning_effort")

    temperature = defaults.temperature
    if 'temperature' in data:
        temperature = _number(data, 'temperature', "model")

    max_tokens = defaults.max_tokens
    if 'max_tokens' in data:
        max_tokens = _integer(data, 'max_tokens', "model")

    return ModelConfig(
        primary=primary,
        fallback_chain=chain,
        reasoning_effort=effort,
        temperature=temperature,
        max_tokens=max_tokens,
    )


def _parse_generation(data: Dict) -> GenerationSettings:
    allowed = {'max_iterations', 'request_timeout_seconds', 'validator_timeout_seconds', 'max_cost_per_request'}
    _check_keys(data, allowed, "generation")

    defaults = GenerationSettings()
    return GenerationSettings(
        max_iterations=_integer(data, 'max_iterations', "generation")
        if 'max_iterations' in data else defaults.max_iterations,
        request_timeout_seconds=_number(data, 'request_timeout_seconds', "generation")
        if 'request_timeout_seconds' in data else defaults.request_timeout_seconds,
        validator_timeout_seconds=_number(data, 'validator_timeout_seconds', "generation")
        if 'validator_timeout_seconds' in data else defaults.validator_timeout_seconds,
        max_cost_per_request=_number(data, 'max_cost_per_request', "generation")
        if data.get('max_cost_per_request') is not None else None,
    )


def _parse_limits(data: Dict, defaults: LimitsConfig) -> LimitsConfig:
    allowed = {'requests_per_minute', 'daily_budget_usd', 'usage_log_capacity', 'guard_generation'}
    _check_keys(data, allowed, "limits")

    guard_generation = defaults.guard_generation
    if 'guard_generation' in data:
        if not isinstance(data['guard_generation'], bool):
            raise ValueError("'guard_generation' in limits must be a boolean")
        guard_generation = data['guard_generation']

    return LimitsConfig(
        requests_per_minute=_integer(data, 'requests_per_minute', "limits")
        if 'requests_per_minute' in data else defaults.requests_per_minute,
        daily_budget_usd=_number(data, 'daily_budget_usd', "limits")
        if 'daily_budget_usd' in data else defaults.daily_budget_usd,
        usage_log_capacity=_integer(data, 'usage_log_capacity', "limits")
        if 'usage_log_capacity' in data else defaults.usage_log_capacity,
        guard_generation=guard_generation,
    )


def _parse_shape(data: Dict) -> ShapeContract:
    """Parse a marker-based shape contract. Replaces the default entirely."""
    _check_keys(data, {'required', 'forbidden', 'discouraged'}, "shape")

    markers = {}
    for key in ('required', 'forbidden', 'discouraged'):
        values = data.get(key) or []
        if not isinstance(values, list) or not all(isinstance(v, str) and v for v in values):
            raise ValueError(f"'{key}' in shape must be a list of non-empty strings")
        markers[key] = values

    return ShapeContract.from_markers(**markers)
