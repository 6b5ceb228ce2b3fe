"""Record types shared by the evaluator, the aggregator, and the outer surfaces."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union


class CategoryField(str, Enum):
    """Categorical attributes a transaction set can be broken down by."""

    CHANNEL = "channel"
    PAYMENT_MODE = "payment_mode"
    PAYMENT_GATEWAY = "payment_gateway"


@dataclass(frozen=True)
class Transaction:
    transaction_id: str
    amount: Union[float, int, Decimal, None] = None
    currency: Optional[str] = None
    timestamp: Union[str, datetime, None] = None
    country: Optional[str] = None
    ip_country: Optional[str] = None
    channel: Optional[str] = None
    payment_mode: Optional[str] = None
    payment_gateway: Optional[str] = None
    recent_transactions: int = 0
    is_fraud_reported: Optional[bool] = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any], default_id: str = "txn_0000000") -> "Transaction":
        """Build a record from a camelCase or snake_case mapping."""

        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in payload:
                    return payload[key]
            return default

        transaction_id = pick("id", "transaction_id", "transactionId")
        return cls(
            transaction_id=str(transaction_id) if transaction_id is not None else default_id,
            amount=pick("amount"),
            currency=pick("currency"),
            timestamp=pick("timestamp"),
            country=pick("country"),
            ip_country=pick("ip_country", "ipCountry"),
            channel=pick("channel"),
            payment_mode=pick("payment_mode", "paymentMode"),
            payment_gateway=pick("payment_gateway", "paymentGateway"),
            recent_transactions=pick("recent_transactions", "recentTransactions", default=0),
            is_fraud_reported=pick("is_fraud_reported", "isFraudReported"),
        )

    def category(self, field_: CategoryField) -> Optional[str]:
        if field_ is CategoryField.CHANNEL:
            return self.channel
        if field_ is CategoryField.PAYMENT_MODE:
            return self.payment_mode
        return self.payment_gateway

    def to_dict(self) -> Dict[str, Any]:
        timestamp = self.timestamp.isoformat() if isinstance(self.timestamp, datetime) else self.timestamp
        amount = float(self.amount) if isinstance(self.amount, Decimal) else self.amount
        return {
            "id": self.transaction_id,
            "amount": amount,
            "currency": self.currency,
            "timestamp": timestamp,
            "country": self.country,
            "ipCountry": self.ip_country,
            "channel": self.channel,
            "paymentMode": self.payment_mode,
            "paymentGateway": self.payment_gateway,
            "recentTransactions": self.recent_transactions,
        }


@dataclass(frozen=True)
class EvaluationResult:
    is_fraudulent: bool
    score: float
    reasons: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"isFraudulent": self.is_fraudulent, "score": self.score, "reasons": list(self.reasons)}


@dataclass(frozen=True)
class OracleEstimate:
    """Independent opinion returned by a scoring oracle."""

    confidence: float
    is_fraudulent: bool = False
    reasoning: str = ""


@dataclass(frozen=True)
class OracleEvaluation:
    result: EvaluationResult
    ai_analysis: str
    source: str = "rule"

    @property
    def is_fraudulent(self) -> bool:
        return self.result.is_fraudulent

    @property
    def score(self) -> float:
        return self.result.score

    @property
    def reasons(self) -> Tuple[str, ...]:
        return self.result.reasons

    def to_dict(self) -> Dict[str, Any]:
        payload = self.result.to_dict()
        payload["aiAnalysis"] = self.ai_analysis
        payload["source"] = self.source
        return payload


@dataclass(frozen=True)
class ScoredTransaction:
    transaction: Transaction
    is_fraud_predicted: bool
    is_fraud_reported: bool
    fraud_score: float
    fraud_reason: Optional[str] = None
    fraud_source: Optional[str] = None


@dataclass(frozen=True)
class AggregateMetrics:
    total_transactions: int = 0
    fraudulent_transactions: int = 0
    fraud_percentage: float = 0.0
    average_fraud_score: float = 0.0
    false_positives: int = 0
    false_negatives: int = 0
    precision: float = 0.0
    recall: float = 0.0
    true_positives: int = 0
    predicted_fraud: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total_transactions,
            "fraudulentTransactions": self.fraudulent_transactions,
            "fraudPercentage": self.fraud_percentage,
            "averageFraudScore": self.average_fraud_score,
            "falsePositives": self.false_positives,
            "falseNegatives": self.false_negatives,
            "precision": self.precision,
            "recall": self.recall,
        }


@dataclass(frozen=True)
class CategoryBreakdown:
    category: str
    predicted_count: int = 0
    reported_count: int = 0
    total: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"category": self.category, "predictedCount": self.predicted_count, "reportedCount": self.reported_count}


@dataclass(frozen=True)
class ReasonCount:
    reason: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"reason": self.reason, "count": self.count}


@dataclass(frozen=True)
class TimeSeriesPoint:
    date: str
    predicted: int = 0
    reported: int = 0
    count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date, "predicted": self.predicted, "reported": self.reported, "count": self.count}
