"""Tunable thresholds, weights and prices used by the analytics engine."""

import json
import logging
import os
from dataclasses import dataclass, field, replace
from datetime import timedelta, timezone, tzinfo
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

SESSION_GAP = timedelta(minutes=30)
SIMILARITY_THRESHOLD = 0.70
CHAT_MESSAGES_PER_DAY_TARGET = 10.0
LOGINS_PER_WEEK_TARGET = 7.0

ENV_SESSION_GAP_MINUTES = "CREATORMET_SESSION_GAP_MINUTES"
ENV_SIMILARITY_THRESHOLD = "CREATORMET_SIMILARITY_THRESHOLD"
ENV_PRICE_TABLE = "CREATORMET_PRICE_TABLE"


@dataclass(frozen=True)
class ModelPricing:
    """USD price per million tokens."""

    input_per_million: float
    output_per_million: float


FAST_MODEL = "claude-3-5-haiku-20241022"
CAPABLE_MODEL = "claude-3-5-sonnet-20241022"

DEFAULT_PRICE_TABLE: Mapping[str, ModelPricing] = {
    FAST_MODEL: ModelPricing(input_per_million=0.80, output_per_million=4.00),
    CAPABLE_MODEL: ModelPricing(input_per_million=3.00, output_per_million=15.00),
}


@dataclass(frozen=True)
class EngagementWeights:
    """Maximum points each engagement sub-score can contribute."""

    video_completion: int = 30
    chat_interaction: int = 25
    course_progress: int = 25
    login_frequency: int = 20

    @property
    def total(self) -> int:
        return self.video_completion + self.chat_interaction + self.course_progress + self.login_frequency


@dataclass(frozen=True)
class EngineConfig:
    """Configuration passed explicitly into every analytics component."""

    session_gap: timedelta = SESSION_GAP
    similarity_threshold: float = SIMILARITY_THRESHOLD
    price_table: Mapping[str, ModelPricing] = field(default_factory=lambda: dict(DEFAULT_PRICE_TABLE))
    engagement_weights: EngagementWeights = field(default_factory=EngagementWeights)
    chat_messages_per_day_target: float = CHAT_MESSAGES_PER_DAY_TARGET
    logins_per_week_target: float = LOGINS_PER_WEEK_TARGET
    cost_timezone: tzinfo = timezone.utc

    def with_models(self, extra: Mapping[str, ModelPricing]) -> "EngineConfig":
        """Return a copy whose price table also contains ``extra``."""
        price_table = dict(self.price_table)
        price_table.update(extra)
        return replace(self, price_table=price_table)


DEFAULT_CONFIG = EngineConfig()


def load_price_table(source: Union[str, Path, Mapping]) -> Dict[str, ModelPricing]:
    """
    Build a price table from a JSON file or an already-decoded mapping.

    Expected shape: {"model-id": {"input": 0.8, "output": 4.0}, ...}
    """
    if isinstance(source, Mapping):
        raw = source
    elif isinstance(source, (str, Path)):
        try:
            raw = json.loads(Path(source).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"cannot read price table from {source}: {exc}") from exc
    else:
        raise ConfigurationError(f"unsupported price table source: {source!r}")

    if not isinstance(raw, Mapping):
        raise ConfigurationError("price table must be a JSON object keyed by model id")

    table: Dict[str, ModelPricing] = {}
    for model, prices in raw.items():
        if isinstance(prices, ModelPricing):
            table[str(model)] = prices
            continue
        try:
            input_price = float(prices["input"])
            output_price = float(prices["output"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid pricing for model {model!r}: {prices!r}") from exc
        if input_price < 0 or output_price < 0:
            raise ConfigurationError(f"negative pricing for model {model!r}")
        table[str(model)] = ModelPricing(input_per_million=input_price, output_per_million=output_price)
    return table


def config_from_env(
    environ: Optional[Mapping[str, str]] = None,
    base: EngineConfig = DEFAULT_CONFIG,
) -> EngineConfig:
    """Override ``base`` with values from CREATORMET_* environment variables."""
    if environ is None:
        environ = os.environ

    overrides = {}
    gap_minutes = environ.get(ENV_SESSION_GAP_MINUTES)
    if gap_minutes:
        overrides["session_gap"] = timedelta(minutes=_parse_float(ENV_SESSION_GAP_MINUTES, gap_minutes))

    threshold = environ.get(ENV_SIMILARITY_THRESHOLD)
    if threshold:
        value = _parse_float(ENV_SIMILARITY_THRESHOLD, threshold)
        if not 0 <= value <= 1:
            raise ConfigurationError(f"{ENV_SIMILARITY_THRESHOLD} must be within [0, 1], got {value}")
        overrides["similarity_threshold"] = value

    config = replace(base, **overrides)

    price_table_path = environ.get(ENV_PRICE_TABLE)
    if price_table_path:
        config = config.with_models(load_price_table(price_table_path))
        logger.info("Loaded price table from %s (%d models)", price_table_path, len(config.price_table))
    return config


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc
