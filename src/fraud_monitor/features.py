"""Feature engineering utilities for transaction data."""

from __future__ import annotations

import numbers
from typing import Any, Optional

import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.impute import SimpleImputer
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder

from .config import DEFAULT_PIPELINE_CONFIG, PipelineConfig


def to_local_time(series: pd.Series, timezone: str = "UTC") -> pd.Series:
    """Parse a timestamp column and express it in ``timezone``.

    Naive values are taken to already be in ``timezone``; unparseable values become NaT.
    """

    try:
        parsed = pd.to_datetime(series, errors="coerce")
    except ValueError:
        # mixed offsets
        parsed = pd.to_datetime(series, errors="coerce", utc=True)
    if isinstance(parsed.dtype, pd.DatetimeTZDtype):
        return parsed.dt.tz_convert(timezone)
    if pd.api.types.is_datetime64_dtype(parsed):
        return parsed.dt.tz_localize(timezone, ambiguous="NaT", nonexistent="shift_forward")
    return pd.to_datetime(series, errors="coerce", utc=True).dt.tz_convert(timezone)


def add_time_features(df: pd.DataFrame, config: PipelineConfig = DEFAULT_PIPELINE_CONFIG) -> pd.DataFrame:
    """Append local hour and day of week columns."""

    df = df.copy()
    local = to_local_time(df[config.timestamp_column], config.timezone)
    df["hour"] = local.dt.hour
    df["dayofweek"] = local.dt.dayofweek
    return df


def add_velocity_features(df: pd.DataFrame, config: PipelineConfig = DEFAULT_PIPELINE_CONFIG) -> pd.DataFrame:
    """Count each payer's earlier transactions inside the velocity window.

    Fills ``recent_transactions`` for sources that only carry raw history.
    """

    df = df.copy()
    timestamps = pd.to_datetime(df[config.timestamp_column], errors="coerce", utc=True)
    window_seconds = config.velocity_window_minutes * 60

    def _velocity(series: pd.Series) -> pd.Series:
        ordered = series.sort_values(kind="stable")
        epoch = pd.Timestamp(0, tz="UTC")
        seconds = ((ordered.fillna(epoch) - epoch) // pd.Timedelta(seconds=1)).to_numpy()
        counts = []
        start = 0
        for i, t in enumerate(seconds):
            while start < i and t - seconds[start] > window_seconds:
                start += 1
            counts.append(i - start)
        return pd.Series(counts, index=ordered.index, dtype=int).reindex(series.index)

    if len(df):
        df[config.recent_transactions_column] = timestamps.groupby(df[config.payer_column].fillna("unknown_payer")).transform(_velocity)
    else:
        df[config.recent_transactions_column] = pd.Series(dtype=int)
    return df


def build_preprocess_pipeline(config: PipelineConfig = DEFAULT_PIPELINE_CONFIG) -> ColumnTransformer:
    """Create a preprocessing pipeline with imputation and one-hot encoding."""

    numeric_features = [
        config.amount_column,
        config.recent_transactions_column,
        "hour",
        "dayofweek",
        "country_mismatch",
    ]
    categorical_features = [
        config.country_column,
        config.channel_column,
        config.payment_mode_column,
        config.payment_gateway_column,
    ]

    numeric_transformer = Pipeline(steps=[("imputer", SimpleImputer(strategy="median"))])
    categorical_transformer = Pipeline(
        steps=[
            ("imputer", SimpleImputer(strategy="constant", fill_value="missing")),
            ("onehot", OneHotEncoder(handle_unknown="ignore")),
        ]
    )

    preprocess = ColumnTransformer(
        transformers=[
            ("num", numeric_transformer, numeric_features),
            ("cat", categorical_transformer, categorical_features),
        ]
    )
    return preprocess


def add_model_features(df: pd.DataFrame, config: PipelineConfig = DEFAULT_PIPELINE_CONFIG) -> pd.DataFrame:
    """Derive the numeric inputs the anomaly model expects."""

    df = add_time_features(df, config)
    df[config.amount_column] = pd.to_numeric(df[config.amount_column], errors="coerce")
    df[config.recent_transactions_column] = pd.to_numeric(df[config.recent_transactions_column], errors="coerce")
    country = df[config.country_column]
    ip_country = df[config.ip_country_column]
    df["country_mismatch"] = (country.notna() & ip_country.notna() & (country != ip_country)).astype(int)
    for column in (config.country_column, config.channel_column, config.payment_mode_column, config.payment_gateway_column):
        df[column] = df[column].astype(object).where(df[column].notna(), "missing").astype(str)
    return df


def local_timestamp(value: Any, timezone: str = "UTC") -> Optional[pd.Timestamp]:
    """Parse one timestamp into ``timezone``; ``None`` when it cannot be parsed.

    Naive values are taken to already be in ``timezone``; bare numbers are
    epoch milliseconds.
    """

    if value is None or isinstance(value, bool):
        return None
    try:
        ts = pd.Timestamp(value, unit="ms") if isinstance(value, numbers.Real) else pd.Timestamp(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if ts is pd.NaT:
        return None
    if ts.tzinfo is None:
        try:
            return ts.tz_localize(timezone, ambiguous=False, nonexistent="shift_forward")
        except (TypeError, ValueError):
            return None
    return ts.tz_convert(timezone)
