"""Data loading, record conversion, and synthetic generation utilities."""

from __future__ import annotations

import io
import math
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd
import structlog

from .config import DEFAULT_PIPELINE_CONFIG, PipelineConfig
from .features import add_velocity_features
from .schemas import Transaction

logger = structlog.get_logger(__name__)


_TIMESTAMP_CANDIDATES = [
    "timestamp",
    "transaction_date",
    "transaction_time",
    "transaction_timestamp",
    "datetime",
    "date",
    "event_time",
    "created_at",
]
_AMOUNT_CANDIDATES = ["amount", "transaction_amount", "amt"]

# Payment-aggregator exports use anonymised column names.
_COLUMN_CANDIDATES = {
    "transaction_id_column": ["transaction_id", "id", "transaction_id_anonymous"],
    "channel_column": ["channel", "transaction_channel"],
    "payment_mode_column": ["payment_mode", "paymentMode", "transaction_payment_mode_anonymous"],
    "payment_gateway_column": ["payment_gateway", "paymentGateway", "payment_gateway_bank_anonymous"],
    "payer_column": ["payer_id", "customer_id", "payer_email_anonymous", "payer_mobile_anonymous"],
    "ip_country_column": ["ip_country", "ipCountry"],
    "recent_transactions_column": ["recent_transactions", "recentTransactions"],
    "label_column": ["is_fraud_reported", "is_fraud", "isFraud", "fraud", "label"],
}
_OPTIONAL_DEFAULTS = {
    "currency_column": "USD",
    "country_column": None,
    "ip_country_column": None,
    "channel_column": "unknown",
    "payment_mode_column": "unknown",
    "payment_gateway_column": "unknown",
    "payer_column": "unknown_payer",
}

CHANNELS = ["mobile", "web", "atm", "in-store", "api"]
PAYMENT_MODES = ["credit_card", "debit_card", "bank_transfer", "upi", "wallet"]
PAYMENT_GATEWAYS = ["stripe", "paypal", "braintree", "razorpay", "internal"]
COUNTRIES = ["US", "GB", "DE", "FR", "IN", "BR", "CA", "AU", "JP", "ZA"]
RISKY_COUNTRIES = ["RU", "NG", "UA", "KP"]
CURRENCIES = ["USD", "EUR", "GBP", "INR"]


def _find_column(df: pd.DataFrame, candidates: Iterable[str]) -> Optional[str]:
    lower_map = {c.lower(): c for c in df.columns}
    for name in candidates:
        if name.lower() in lower_map:
            return lower_map[name.lower()]
    return None


def _standardize_schema(df: pd.DataFrame, config: PipelineConfig) -> pd.DataFrame:
    """Align common transaction schemas to the internal column names.

    Payment-aggregator exports with ``transaction_amount``/``transaction_date``
    and anonymised category columns are renamed. Missing optional fields are
    filled with placeholders; a missing amount or timestamp column raises a
    ValueError listing the available columns.
    """

    df = df.copy()
    available = ", ".join(map(str, df.columns))

    for attr, candidates in (
        ("timestamp_column", _TIMESTAMP_CANDIDATES),
        ("amount_column", _AMOUNT_CANDIDATES),
    ):
        target = getattr(config, attr)
        if target in df.columns:
            continue
        source = _find_column(df, [target, *candidates])
        if source is None:
            raise ValueError(
                f"Column '{target}' not found. Available columns: {available}. "
                "Rename the column before loading."
            )
        df = df.rename(columns={source: target})

    for attr, candidates in _COLUMN_CANDIDATES.items():
        target = getattr(config, attr)
        if target in df.columns:
            continue
        source = _find_column(df, candidates)
        if source is not None:
            df = df.rename(columns={source: target})

    for attr, default in _OPTIONAL_DEFAULTS.items():
        target = getattr(config, attr)
        if target not in df.columns:
            df[target] = default

    # Anonymised categories arrive as integers.
    for attr in ("payment_mode_column", "payment_gateway_column", "channel_column"):
        column = getattr(config, attr)
        df[column] = df[column].where(df[column].isna(), df[column].astype(str))

    if config.transaction_id_column not in df.columns:
        df[config.transaction_id_column] = [f"txn_{i:07d}" for i in range(len(df))]

    return df


def _finalize(df: pd.DataFrame, config: PipelineConfig) -> pd.DataFrame:
    df = _standardize_schema(df, config)
    df[config.timestamp_column] = pd.to_datetime(df[config.timestamp_column], errors="coerce", utc=True)
    if config.recent_transactions_column not in df.columns:
        df = add_velocity_features(df, config)
    logger.info("transactions_loaded", rows=len(df), columns=len(df.columns))
    return df


def load_transactions(
    path: str | Path,
    config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
    limit_rows: Optional[int] = None,
) -> pd.DataFrame:
    """Load transactions from CSV or zipped CSV.

    Timestamps are parsed as UTC; when the source has no recent-transaction
    count it is derived per payer from the transaction history.
    """

    path = Path(path)
    compression = "zip" if path.suffix == ".zip" else None
    df = pd.read_csv(path, compression=compression, nrows=limit_rows)
    return _finalize(df, config)


def read_transactions_csv(content: bytes, config: PipelineConfig = DEFAULT_PIPELINE_CONFIG) -> pd.DataFrame:
    """Load transactions from raw CSV bytes (uploads)."""

    return _finalize(pd.read_csv(io.BytesIO(content)), config)


def _clean(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if value is pd.NaT or value is pd.NA:
        return None
    return value


def _as_label(value: Any) -> Optional[bool]:
    value = _clean(value)
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return bool(value)


def _as_count(value: Any) -> int:
    value = _clean(value)
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


def frame_to_transactions(df: pd.DataFrame, config: PipelineConfig = DEFAULT_PIPELINE_CONFIG) -> List[Transaction]:
    """Convert rows of a standardized frame to ``Transaction`` records."""

    def col(row: Dict[str, Any], name: str) -> Any:
        return _clean(row.get(name))

    transactions = []
    for i, row in enumerate(df.to_dict(orient="records")):
        transaction_id = col(row, config.transaction_id_column)
        transactions.append(
            Transaction(
                transaction_id=str(transaction_id) if transaction_id is not None else f"txn_{i:07d}",
                amount=col(row, config.amount_column),
                currency=col(row, config.currency_column),
                timestamp=col(row, config.timestamp_column),
                country=col(row, config.country_column),
                ip_country=col(row, config.ip_country_column),
                channel=col(row, config.channel_column),
                payment_mode=col(row, config.payment_mode_column),
                payment_gateway=col(row, config.payment_gateway_column),
                recent_transactions=_as_count(row.get(config.recent_transactions_column)),
                is_fraud_reported=_as_label(row.get(config.label_column)),
            )
        )
    return transactions


def transactions_to_frame(transactions: Iterable[Transaction], config: PipelineConfig = DEFAULT_PIPELINE_CONFIG) -> pd.DataFrame:
    rows = [
        {
            config.transaction_id_column: t.transaction_id,
            config.amount_column: t.amount,
            config.currency_column: t.currency,
            config.timestamp_column: t.timestamp,
            config.country_column: t.country,
            config.ip_country_column: t.ip_country,
            config.channel_column: t.channel,
            config.payment_mode_column: t.payment_mode,
            config.payment_gateway_column: t.payment_gateway,
            config.recent_transactions_column: t.recent_transactions,
            config.label_column: t.is_fraud_reported,
        }
        for t in transactions
    ]
    columns = [
        config.transaction_id_column,
        config.amount_column,
        config.currency_column,
        config.timestamp_column,
        config.country_column,
        config.ip_country_column,
        config.channel_column,
        config.payment_mode_column,
        config.payment_gateway_column,
        config.recent_transactions_column,
        config.label_column,
    ]
    return pd.DataFrame(rows, columns=columns)


def generate_synthetic_transactions(
    n_rows: int = 5000,
    fraud_rate: float = 0.05,
    days: int = 30,
    config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
    random_state: int = 42,
    now: Optional[pd.Timestamp] = None,
) -> pd.DataFrame:
    """Generate a synthetic transaction dataset with simple fraud patterns.

    The reported label is noisy: about 5% of fraud goes unreported and about
    1% of legitimate traffic gets reported, so rule metrics stay imperfect.
    """

    rng = np.random.default_rng(random_state)
    now = (now if now is not None else pd.Timestamp.now(tz="UTC")).floor("min")
    start = now - pd.Timedelta(days=max(days, 1))

    offsets = rng.integers(0, max(days, 1) * 24 * 60, size=n_rows)
    timestamps = [now - pd.Timedelta(minutes=int(m)) for m in offsets]
    amounts = np.round(rng.uniform(10.0, 5000.0, size=n_rows), 2)
    countries = rng.choice(COUNTRIES, size=n_rows).astype(object)
    ip_countries = countries.copy()
    recent = rng.poisson(1.5, size=n_rows)

    fraud_flags = rng.random(n_rows) < fraud_rate

    # Inject anomalies: large amounts, risky or mismatched geos, night hours and bursts
    for i in np.flatnonzero(fraud_flags):
        if rng.random() < 0.5:
            amounts[i] = round(float(amounts[i]) * rng.uniform(3, 10), 2)
        if rng.random() < 0.5:
            countries[i] = rng.choice(RISKY_COUNTRIES)
        if rng.random() < 0.6:
            ip_countries[i] = rng.choice([c for c in COUNTRIES + RISKY_COUNTRIES if c != countries[i]])
        if rng.random() < 0.4:
            night = timestamps[i].normalize() + pd.Timedelta(hours=int(rng.integers(0, 5)), minutes=int(rng.integers(0, 60)))
            if night < start:
                night += pd.Timedelta(days=1)
            if night <= now:
                timestamps[i] = night
        if rng.random() < 0.5:
            recent[i] = int(rng.integers(6, 15))

    reported = np.where(fraud_flags, rng.random(n_rows) >= 0.05, rng.random(n_rows) < 0.01)

    df = pd.DataFrame(
        {
            config.transaction_id_column: [f"T{i:07d}" for i in range(n_rows)],
            config.payer_column: [f"P{int(p):05d}" for p in rng.integers(1, 2000, size=n_rows)],
            config.amount_column: amounts,
            config.currency_column: rng.choice(CURRENCIES, size=n_rows),
            config.timestamp_column: pd.to_datetime(timestamps, utc=True),
            config.country_column: countries,
            config.ip_country_column: ip_countries,
            config.channel_column: rng.choice(CHANNELS, size=n_rows),
            config.payment_mode_column: rng.choice(PAYMENT_MODES, size=n_rows),
            config.payment_gateway_column: rng.choice(PAYMENT_GATEWAYS, size=n_rows),
            config.recent_transactions_column: recent,
            config.label_column: reported.astype(int),
        }
    )

    df.sort_values(by=config.timestamp_column, inplace=True)
    df.reset_index(drop=True, inplace=True)
    return df
