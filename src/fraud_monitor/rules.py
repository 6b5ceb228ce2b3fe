"""Rule-based fraud scoring for single transactions."""

from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Union

import pandas as pd

from .config import DEFAULT_PIPELINE_CONFIG, DEFAULT_RULE_CONFIG, FraudConfiguration, PipelineConfig
from .data import frame_to_transactions
from .features import local_timestamp
from .schemas import EvaluationResult, Transaction


RULE_WEIGHTS: Dict[str, float] = {
    "high_amount": 0.3,
    "high_risk_country": 0.4,
    "unusual_hours": 0.2,
    "ip_mismatch": 0.5,
    "high_velocity": 0.4,
}
FRAUD_THRESHOLD = 0.5
VELOCITY_LIMIT = 5

_ALIASES = {
    "amount": ("amount",),
    "country": ("country",),
    "ip_country": ("ip_country", "ipCountry"),
    "timestamp": ("timestamp",),
    "recent_transactions": ("recent_transactions", "recentTransactions"),
}

TransactionLike = Union[Transaction, Mapping[str, Any]]


def _get(transaction: TransactionLike, name: str) -> Any:
    if isinstance(transaction, Transaction):
        return getattr(transaction, name, None)
    if isinstance(transaction, Mapping):
        for key in _ALIASES[name]:
            if key in transaction:
                return transaction[key]
    return None


def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(Decimal(str(value))) if isinstance(value, str) else float(value)
    except (TypeError, ValueError, InvalidOperation):
        return None
    if math.isnan(number):
        return None
    return number


def _as_code(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def _format_number(value: float) -> str:
    return str(int(value)) if value.is_integer() else repr(value)


def local_hour(timestamp: Any, timezone: str = "UTC") -> Optional[int]:
    """Hour of day of ``timestamp`` in ``timezone``; ``None`` when it cannot be parsed."""

    ts = local_timestamp(timestamp, timezone)
    return None if ts is None else int(ts.hour)


def evaluate(
    transaction: TransactionLike,
    config: FraudConfiguration = DEFAULT_RULE_CONFIG,
    timezone: str = "UTC",
) -> EvaluationResult:
    """Score a transaction against the heuristic rules.

    Rules are checked in a fixed order and each triggered rule appends one
    reason and adds its weight to the score. The score is the rounded sum of
    triggered weights and is not clamped, so it ranges over [0, 1.8].
    Missing or malformed fields never trigger a rule.

    The unusual-hours check is the literal ``hour >= start or hour <= end``.
    With the default 23/5 window this reads as a night window; other
    configurations (e.g. start=8, end=20) flag every hour.
    """

    reasons: List[str] = []
    score = 0.0

    amount = _as_number(_get(transaction, "amount"))
    if config.amount_threshold and amount is not None and amount > config.amount_threshold:
        reasons.append(f"High amount ({_format_number(amount)})")
        score += RULE_WEIGHTS["high_amount"]

    country = _as_code(_get(transaction, "country"))
    if config.high_risk_countries and country is not None and country in config.high_risk_countries:
        reasons.append(f"High-risk country ({country})")
        score += RULE_WEIGHTS["high_risk_country"]

    if config.unusual_hours is not None:
        hour = local_hour(_get(transaction, "timestamp"), timezone)
        if hour is not None and (hour >= config.unusual_hours.start or hour <= config.unusual_hours.end):
            reasons.append(f"Unusual hours ({hour}:00)")
            score += RULE_WEIGHTS["unusual_hours"]

    ip_country = _as_code(_get(transaction, "ip_country"))
    if config.ip_mismatch_enabled and country is not None and ip_country is not None and ip_country != country:
        reasons.append(f"IP country mismatch (IP: {ip_country}, Billing: {country})")
        score += RULE_WEIGHTS["ip_mismatch"]

    recent = _as_number(_get(transaction, "recent_transactions"))
    if config.velocity_check_enabled and recent is not None and recent > VELOCITY_LIMIT:
        reasons.append(f"High velocity ({_format_number(recent)} transactions recently)")
        score += RULE_WEIGHTS["high_velocity"]

    score = round(score, 2)
    return EvaluationResult(is_fraudulent=score >= FRAUD_THRESHOLD, score=score, reasons=tuple(reasons))


def apply_rules(
    df: pd.DataFrame,
    rule_config: FraudConfiguration = DEFAULT_RULE_CONFIG,
    pipeline_config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
) -> pd.DataFrame:
    """Evaluate every row and attach ``fraud_score``, ``is_fraud_predicted`` and ``fraud_reason``."""

    df = df.copy()
    results = [evaluate(t, rule_config, pipeline_config.timezone) for t in frame_to_transactions(df, pipeline_config)]

    df["fraud_score"] = [r.score for r in results]
    df["is_fraud_predicted"] = [r.is_fraudulent for r in results]
    df["fraud_reason"] = pd.Series(["; ".join(r.reasons) if r.reasons else None for r in results], index=df.index, dtype=object)
    df["fraud_source"] = pd.Series(["rule" if r.is_fraudulent else None for r in results], index=df.index, dtype=object)
    df["rules_triggered"] = [len(r.reasons) for r in results]
    return df
