"""Command line interface for generating, scoring, and reporting on transactions."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer

from .config import DEFAULT_MODEL_CONFIG, DEFAULT_PIPELINE_CONFIG, DEFAULT_RULE_CONFIG, OracleSettings
from .data import generate_synthetic_transactions, load_transactions
from .logging_config import setup_logging
from .models import AnomalyModel
from .oracle import GenerativeOracle, ModelOracle, ScoreOracle, evaluate_with_oracle
from .pipeline import build_report, export_results, score_transactions, score_transactions_with_oracle, to_scored, train_model
from .rules import evaluate
from .schemas import CategoryField, Transaction

app = typer.Typer(help="Fraud monitoring utilities")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", help="Logging level."),
    json_logs: bool = typer.Option(False, help="Emit JSON log lines."),
):
    setup_logging(log_level, json_logs=json_logs)


def _make_oracle(oracle: Optional[str], model_path: Optional[str]) -> Optional[ScoreOracle]:
    if oracle is None:
        return None
    if oracle == "model":
        model = AnomalyModel.load(model_path) if model_path else train_model(pipeline_config=DEFAULT_PIPELINE_CONFIG)
        return ModelOracle(model)
    if oracle == "generative":
        return GenerativeOracle(OracleSettings())
    raise typer.BadParameter("oracle must be 'model' or 'generative'", param_hint="--oracle")


@app.command()
def generate_synthetic(
    output: str = "data/synthetic.csv",
    rows: int = 5000,
    fraud_rate: float = 0.05,
    days: int = 30,
    seed: int = 42,
):
    """Generate a synthetic dataset for experimentation."""

    df = generate_synthetic_transactions(n_rows=rows, fraud_rate=fraud_rate, days=days, random_state=seed, config=DEFAULT_PIPELINE_CONFIG)
    Path(output).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output, index=False)
    typer.echo(f"Saved synthetic dataset to {output} with {len(df)} rows")


@app.command("train-model")
def train_model_cmd(
    input_csv: Optional[str] = None,
    model_path: str = "artifacts/model.pkl",
    limit_rows: Optional[int] = typer.Option(None, help="Read only the first N rows from the CSV for quick tests."),
):
    """Train the anomaly model used by the model oracle. If no input is provided, synthetic data is used."""

    df = load_transactions(input_csv, config=DEFAULT_PIPELINE_CONFIG, limit_rows=limit_rows) if input_csv else None
    model = train_model(df, model_config=DEFAULT_MODEL_CONFIG, pipeline_config=DEFAULT_PIPELINE_CONFIG)
    model.save(model_path)
    typer.echo(f"Model saved to {model_path}")


@app.command()
def score(
    input_csv: str,
    output_csv: str = "data/results.csv",
    oracle: Optional[str] = typer.Option(None, help="Blend with an oracle: 'model' or 'generative'."),
    model_path: Optional[str] = typer.Option(None, help="Saved anomaly model for the model oracle."),
    timeout: float = typer.Option(10.0, help="Per-transaction oracle timeout in seconds."),
    limit_rows: Optional[int] = typer.Option(None, help="Read only the first N rows for a quick smoke test."),
):
    """Score transactions and export fraud results."""

    df = load_transactions(input_csv, config=DEFAULT_PIPELINE_CONFIG, limit_rows=limit_rows)
    score_oracle = _make_oracle(oracle, model_path)
    if score_oracle is None:
        results = score_transactions(df, DEFAULT_RULE_CONFIG, DEFAULT_PIPELINE_CONFIG)
    else:
        results = asyncio.run(
            score_transactions_with_oracle(df, score_oracle, DEFAULT_RULE_CONFIG, DEFAULT_PIPELINE_CONFIG, timeout=timeout)
        )
    export_results(results, output_csv, DEFAULT_PIPELINE_CONFIG)
    typer.echo(f"Saved scoring results to {output_csv}")


@app.command()
def report(
    input_csv: str,
    window_days: int = typer.Option(7, help="Number of trailing days in the time series."),
    category: Optional[List[CategoryField]] = typer.Option(None, help="Category field(s) to break down by."),
    limit_rows: Optional[int] = typer.Option(None, help="Read only the first N rows."),
):
    """Score transactions and print precision/recall, category breakdowns, and a daily rollup."""

    df = load_transactions(input_csv, config=DEFAULT_PIPELINE_CONFIG, limit_rows=limit_rows)
    results = score_transactions(df, DEFAULT_RULE_CONFIG, DEFAULT_PIPELINE_CONFIG)
    summary = build_report(
        to_scored(results, DEFAULT_PIPELINE_CONFIG),
        window_days=window_days,
        category_fields=category or tuple(CategoryField),
        timezone=DEFAULT_PIPELINE_CONFIG.timezone,
    )
    typer.echo(json.dumps(summary, indent=2))


@app.command()
def evaluate_one(
    transaction_json: str = typer.Argument(..., help="Transaction as a JSON object."),
    oracle: Optional[str] = typer.Option(None, help="Blend with an oracle: 'model' or 'generative'."),
    model_path: Optional[str] = typer.Option(None, help="Saved anomaly model for the model oracle."),
    timeout: float = typer.Option(10.0, help="Oracle timeout in seconds."),
):
    """Evaluate a single transaction and print the verdict."""

    try:
        payload = json.loads(transaction_json)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise typer.BadParameter("expected a JSON object")

    score_oracle = _make_oracle(oracle, model_path)
    if score_oracle is None:
        typer.echo(json.dumps(evaluate(payload, DEFAULT_RULE_CONFIG, DEFAULT_PIPELINE_CONFIG.timezone).to_dict(), indent=2))
        return

    transaction = Transaction.from_mapping(payload)
    result = asyncio.run(
        evaluate_with_oracle(transaction, score_oracle, DEFAULT_RULE_CONFIG, timeout=timeout, timezone=DEFAULT_PIPELINE_CONFIG.timezone)
    )
    typer.echo(json.dumps(result.to_dict(), indent=2))


if __name__ == "__main__":
    app()
