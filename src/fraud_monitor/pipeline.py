"""End-to-end pipeline for scoring, summarizing, and exporting fraud results."""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
import structlog

from .config import DEFAULT_MODEL_CONFIG, DEFAULT_PIPELINE_CONFIG, DEFAULT_RULE_CONFIG, FraudConfiguration, ModelConfig, PipelineConfig
from .data import frame_to_transactions, generate_synthetic_transactions
from .metrics import compute_metrics, group_by_category, group_by_source, rollup_by_day, top_reasons
from .models import AnomalyModel
from .oracle import ScoreOracle, evaluate_batch
from .rules import apply_rules
from .schemas import CategoryField, ScoredTransaction

logger = structlog.get_logger(__name__)

RESULT_COLUMNS = ["fraud_score", "is_fraud_predicted", "fraud_reason", "fraud_source"]


def train_model(
    training_data: Optional[pd.DataFrame] = None,
    model_config: ModelConfig = DEFAULT_MODEL_CONFIG,
    pipeline_config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
) -> AnomalyModel:
    if training_data is None:
        training_data = generate_synthetic_transactions(config=pipeline_config)
    model = AnomalyModel(model_config, pipeline_config)
    model.fit(training_data)
    logger.info("model_trained", rows=len(training_data), algorithm=model_config.algorithm)
    return model


def score_transactions(
    input_data: pd.DataFrame,
    rule_config: FraudConfiguration = DEFAULT_RULE_CONFIG,
    pipeline_config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
) -> pd.DataFrame:
    """Attach rule-based fraud results to every transaction."""

    results = apply_rules(input_data, rule_config, pipeline_config)
    logger.info(
        "transactions_scored",
        rows=len(results),
        flagged=int(results["is_fraud_predicted"].sum()) if len(results) else 0,
    )
    return results.drop(columns=["rules_triggered"])


async def score_transactions_with_oracle(
    input_data: pd.DataFrame,
    oracle: ScoreOracle,
    rule_config: FraudConfiguration = DEFAULT_RULE_CONFIG,
    pipeline_config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
    timeout: Optional[float] = 10.0,
) -> pd.DataFrame:
    """Blend every row's rule score with the oracle; rows whose oracle call fails keep the rule result."""

    df = input_data.copy()
    evaluations = await evaluate_batch(
        frame_to_transactions(df, pipeline_config),
        oracle,
        rule_config,
        timeout=timeout,
        timezone=pipeline_config.timezone,
    )
    df["fraud_score"] = [e.score for e in evaluations]
    df["is_fraud_predicted"] = [e.is_fraudulent for e in evaluations]
    df["fraud_reason"] = pd.Series(["; ".join(e.reasons) if e.reasons else None for e in evaluations], index=df.index, dtype=object)
    df["fraud_source"] = pd.Series([e.source if e.is_fraudulent else None for e in evaluations], index=df.index, dtype=object)
    df["ai_analysis"] = [e.ai_analysis for e in evaluations]
    return df


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def to_scored(df: pd.DataFrame, pipeline_config: PipelineConfig = DEFAULT_PIPELINE_CONFIG) -> List[ScoredTransaction]:
    """Pair each scored row with its predicted and reported flags.

    Rows without a reported label count as not reported.
    """

    transactions = frame_to_transactions(df, pipeline_config)
    predicted = df["is_fraud_predicted"].tolist() if "is_fraud_predicted" in df.columns else [False] * len(df)
    scores = df["fraud_score"].tolist() if "fraud_score" in df.columns else [0.0] * len(df)
    reasons = [_text(v) for v in df["fraud_reason"]] if "fraud_reason" in df.columns else [None] * len(df)
    sources = [_text(v) for v in df["fraud_source"]] if "fraud_source" in df.columns else [None] * len(df)
    return [
        ScoredTransaction(
            transaction=t,
            is_fraud_predicted=bool(p),
            is_fraud_reported=bool(t.is_fraud_reported),
            fraud_score=float(s),
            fraud_reason=reason,
            fraud_source=source,
        )
        for t, p, s, reason, source in zip(transactions, predicted, scores, reasons, sources)
    ]


def build_report(
    scored: Sequence[ScoredTransaction],
    window_days: int = 7,
    category_fields: Sequence[CategoryField] = tuple(CategoryField),
    today: Optional[date] = None,
    timezone: str = "UTC",
) -> Dict[str, Any]:
    """Metrics, category and source breakdowns, top reasons and a daily rollup as a JSON-ready dict."""

    return {
        "metrics": compute_metrics(scored).to_dict(),
        "categories": {
            CategoryField(f).value: [b.to_dict() for b in group_by_category(scored, f)] for f in category_fields
        },
        "sources": group_by_source(scored),
        "topReasons": [r.to_dict() for r in top_reasons(scored)],
        "timeSeries": [p.to_dict() for p in rollup_by_day(scored, window_days, today=today, timezone=timezone)],
    }


def export_results(df_results: pd.DataFrame, output_path: str | Path, pipeline_config: PipelineConfig = DEFAULT_PIPELINE_CONFIG) -> None:
    columns = [pipeline_config.transaction_id_column, *[c for c in RESULT_COLUMNS if c in df_results.columns]]
    if "ai_analysis" in df_results.columns:
        columns.append("ai_analysis")
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    df_results[columns].to_csv(output_path, index=False)
