"""Fraud scoring and metrics engine."""

from .config import DEFAULT_RULE_CONFIG, FraudConfiguration, UnusualHours
from .metrics import compute_metrics, group_by_category, group_by_source, rollup_by_day, top_reasons
from .oracle import OracleError, evaluate_batch, evaluate_with_oracle
from .rules import evaluate
from .schemas import (
    AggregateMetrics,
    CategoryBreakdown,
    CategoryField,
    EvaluationResult,
    OracleEstimate,
    OracleEvaluation,
    ReasonCount,
    ScoredTransaction,
    TimeSeriesPoint,
    Transaction,
)

__all__ = [
    "DEFAULT_RULE_CONFIG",
    "AggregateMetrics",
    "CategoryBreakdown",
    "CategoryField",
    "EvaluationResult",
    "FraudConfiguration",
    "OracleError",
    "OracleEstimate",
    "OracleEvaluation",
    "ReasonCount",
    "ScoredTransaction",
    "TimeSeriesPoint",
    "Transaction",
    "UnusualHours",
    "compute_metrics",
    "evaluate",
    "evaluate_batch",
    "evaluate_with_oracle",
    "group_by_category",
    "group_by_source",
    "rollup_by_day",
    "top_reasons",
]
