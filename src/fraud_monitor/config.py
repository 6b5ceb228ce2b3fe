"""Configuration defaults for the fraud monitoring engine."""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from pydantic_settings import BaseSettings


@dataclass(frozen=True)
class UnusualHours:
    start: int = 23
    end: int = 5


@dataclass(frozen=True)
class FraudConfiguration:
    """Thresholds for the rule evaluator.

    A falsy ``amount_threshold`` or a ``None`` ``unusual_hours`` disables the
    corresponding rule.
    """

    amount_threshold: Optional[float] = 10000.0
    high_risk_countries: FrozenSet[str] = field(default_factory=lambda: frozenset({"RU", "NG", "UA", "KP"}))
    unusual_hours: Optional[UnusualHours] = field(default_factory=UnusualHours)
    ip_mismatch_enabled: bool = True
    velocity_check_enabled: bool = True


@dataclass(frozen=True)
class ModelConfig:
    algorithm: str = "isolation_forest"
    contamination: float = 0.05
    n_estimators: int = 200
    random_state: int = 42
    max_features: float = 1.0
    threshold: float = 0.6


@dataclass(frozen=True)
class PipelineConfig:
    transaction_id_column: str = "transaction_id"
    amount_column: str = "amount"
    currency_column: str = "currency"
    timestamp_column: str = "timestamp"
    country_column: str = "country"
    ip_country_column: str = "ip_country"
    channel_column: str = "channel"
    payment_mode_column: str = "payment_mode"
    payment_gateway_column: str = "payment_gateway"
    payer_column: str = "payer_id"
    recent_transactions_column: str = "recent_transactions"
    label_column: str = "is_fraud_reported"
    # Calendar dates and hours of day are taken in this timezone; naive
    # timestamps are assumed to already be expressed in it.
    timezone: str = "UTC"
    velocity_window_minutes: int = 60


class OracleSettings(BaseSettings):
    """Connection settings for the generative scoring oracle, read from the environment."""

    endpoint: str = "https://generativelanguage.googleapis.com/v1beta/models"
    model: str = "gemini-1.5-flash"
    api_key: str = ""
    timeout_seconds: float = 10.0

    model_config = {"env_prefix": "FRAUD_ORACLE_", "env_file": ".env", "extra": "ignore"}


DEFAULT_RULE_CONFIG = FraudConfiguration()
DEFAULT_MODEL_CONFIG = ModelConfig()
DEFAULT_PIPELINE_CONFIG = PipelineConfig()
