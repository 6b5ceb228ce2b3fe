"""Shared fixtures for the fraud monitor test suite."""

from __future__ import annotations

import pytest

from fraud_monitor.schemas import ScoredTransaction, Transaction


@pytest.fixture
def make_transaction():
    """Factory for a clean, low-risk transaction with overridable fields."""

    def _make(**overrides) -> Transaction:
        fields = {
            "transaction_id": "T0000001",
            "amount": 100.0,
            "currency": "USD",
            "timestamp": "2024-03-01T14:00:00Z",
            "country": "US",
            "ip_country": "US",
            "channel": "web",
            "payment_mode": "credit_card",
            "payment_gateway": "stripe",
            "recent_transactions": 1,
        }
        fields.update(overrides)
        return Transaction(**fields)

    return _make


@pytest.fixture
def make_scored(make_transaction):
    def _make(
        predicted: bool, reported: bool, score: float = 0.0, reason=None, source=None, **overrides
    ) -> ScoredTransaction:
        return ScoredTransaction(
            transaction=make_transaction(**overrides),
            is_fraud_predicted=predicted,
            is_fraud_reported=reported,
            fraud_score=score,
            fraud_reason=reason,
            fraud_source=source,
        )

    return _make
