"""Tests for loading, schema alignment, velocity features, and synthetic data."""

import math
import zipfile

import pandas as pd
import pytest

from fraud_monitor.config import PipelineConfig
from fraud_monitor.data import (
    CHANNELS,
    frame_to_transactions,
    generate_synthetic_transactions,
    load_transactions,
    read_transactions_csv,
    transactions_to_frame,
)
from fraud_monitor.features import add_time_features, add_velocity_features, local_timestamp

AGGREGATOR_CSV = b"""transaction_id_anonymous,transaction_amount,transaction_date,transaction_channel,is_fraud,transaction_payment_mode_anonymous,payment_gateway_bank_anonymous,payer_email_anonymous
A1,120.5,2024-03-01 10:00:00,W,0,3,11,a@example.com
A2,15000,2024-03-01 10:10:00,M,1,3,11,a@example.com
A3,40,2024-03-01 10:20:00,W,0,1,7,a@example.com
A4,75,2024-03-01 13:00:00,W,0,1,7,b@example.com
"""


class TestSchemaAlignment:
    def test_aggregator_export(self):
        df = read_transactions_csv(AGGREGATOR_CSV)
        assert df["transaction_id"].tolist() == ["A1", "A2", "A3", "A4"]
        assert df["amount"].tolist() == [120.5, 15000.0, 40.0, 75.0]
        assert df["channel"].tolist() == ["W", "M", "W", "W"]
        assert df["payment_mode"].tolist() == ["3", "3", "1", "1"]
        assert df["is_fraud_reported"].tolist() == [0, 1, 0, 0]
        assert str(df["timestamp"].dt.tz) == "UTC"
        assert df["currency"].unique().tolist() == ["USD"]

    def test_velocity_derived_per_payer(self):
        df = read_transactions_csv(AGGREGATOR_CSV)
        assert df["recent_transactions"].tolist() == [0, 1, 2, 0]

    def test_missing_amount_column(self):
        with pytest.raises(ValueError, match="Available columns"):
            read_transactions_csv(b"id,timestamp\n1,2024-03-01\n")

    def test_load_from_path(self, tmp_path):
        path = tmp_path / "export.csv"
        path.write_bytes(AGGREGATOR_CSV)
        assert len(load_transactions(path, limit_rows=2)) == 2

    def test_load_from_zip(self, tmp_path):
        path = tmp_path / "export.zip"
        with zipfile.ZipFile(path, "w") as archive:
            archive.writestr("export.csv", AGGREGATOR_CSV)
        assert load_transactions(path)["transaction_id"].tolist() == ["A1", "A2", "A3", "A4"]

    def test_existing_counts_are_kept(self):
        csv = b"transaction_id,amount,timestamp,recent_transactions\nX,10,2024-03-01T00:00:00Z,9\n"
        df = read_transactions_csv(csv)
        assert df["recent_transactions"].tolist() == [9]


class TestVelocityFeatures:
    def test_window_excludes_older_transactions(self):
        config = PipelineConfig(velocity_window_minutes=15)
        df = pd.DataFrame(
            {
                "payer_id": ["p", "p", "p", "q"],
                "timestamp": pd.to_datetime(
                    ["2024-03-01 10:20", "2024-03-01 10:00", "2024-03-01 10:10", "2024-03-01 10:05"], utc=True
                ),
            }
        )
        out = add_velocity_features(df, config)
        assert out["recent_transactions"].tolist() == [1, 0, 1, 0]

    @pytest.mark.parametrize("unit", ["s", "ms", "us", "ns"])
    def test_window_independent_of_timestamp_resolution(self, unit):
        config = PipelineConfig(velocity_window_minutes=15)
        timestamps = pd.to_datetime(["2024-03-01 10:00", "2024-03-01 10:20", "2024-03-01 10:30"], utc=True)
        df = pd.DataFrame({"payer_id": ["p", "p", "p"], "timestamp": pd.Series(timestamps).dt.as_unit(unit)})
        assert add_velocity_features(df, config)["recent_transactions"].tolist() == [0, 0, 1]

    def test_empty_frame(self):
        df = pd.DataFrame({"payer_id": [], "timestamp": []})
        assert add_velocity_features(df)["recent_transactions"].tolist() == []


class TestTimeFeatures:
    def test_local_hour_and_weekday(self):
        df = pd.DataFrame({"timestamp": ["2024-03-10T02:00:00Z", "2024-03-10T15:30:00+00:00", "bad"]})
        out = add_time_features(df, PipelineConfig(timezone="America/New_York"))
        assert out["hour"].tolist()[:2] == [21, 11]
        assert out["dayofweek"].tolist()[:2] == [5, 6]
        assert "date" not in out.columns
        assert math.isnan(out["hour"].tolist()[2])

    def test_numeric_timestamps_are_epoch_milliseconds(self):
        ts = local_timestamp(1709258400000, "UTC")
        assert ts == pd.Timestamp("2024-03-01T02:00:00Z")
        assert local_timestamp(float("nan")) is None


class TestRecordConversion:
    def test_frame_to_transactions_cleans_missing_values(self):
        df = pd.DataFrame(
            {
                "transaction_id": ["T1", None],
                "amount": [10.0, float("nan")],
                "timestamp": ["2024-03-01T00:00:00Z", None],
                "country": ["US", float("nan")],
                "recent_transactions": [3, float("nan")],
                "is_fraud_reported": [1, None],
            }
        )
        first, second = frame_to_transactions(df)
        assert first.transaction_id == "T1"
        assert first.recent_transactions == 3
        assert first.is_fraud_reported is True
        assert second.transaction_id == "txn_0000001"
        assert second.amount is None
        assert second.country is None
        assert second.recent_transactions == 0
        assert second.is_fraud_reported is None

    def test_round_trip_through_frame(self, make_transaction):
        txs = [make_transaction(transaction_id="T1", is_fraud_reported=True), make_transaction(transaction_id="T2")]
        assert frame_to_transactions(transactions_to_frame(txs)) == txs


class TestSyntheticData:
    def test_shape_and_vocabulary(self):
        df = generate_synthetic_transactions(n_rows=200, random_state=1)
        assert len(df) == 200
        assert set(df["channel"]).issubset(CHANNELS)
        assert set(df["is_fraud_reported"].unique()).issubset({0, 1})
        assert df["timestamp"].is_monotonic_increasing

    def test_deterministic_for_seed(self):
        now = pd.Timestamp("2024-03-10T12:00:00Z")
        first = generate_synthetic_transactions(n_rows=50, random_state=5, now=now)
        second = generate_synthetic_transactions(n_rows=50, random_state=5, now=now)
        pd.testing.assert_frame_equal(first, second)

    def test_timestamps_within_window(self):
        now = pd.Timestamp("2024-03-10T12:00:00Z")
        df = generate_synthetic_transactions(n_rows=300, days=7, random_state=2, now=now)
        assert df["timestamp"].max() <= now
        assert df["timestamp"].min() >= now - pd.Timedelta(days=7)
