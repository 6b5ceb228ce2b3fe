"""Tests for the oracle blend, its fallbacks, and the bundled oracles."""

import asyncio
import json

import httpx
import pytest

from fraud_monitor.config import OracleSettings
from fraud_monitor.data import generate_synthetic_transactions
from fraud_monitor.oracle import (
    DISABLED_ANALYSIS,
    FALLBACK_ANALYSIS,
    NO_ANALYSIS,
    GenerativeOracle,
    ModelOracle,
    OracleError,
    check_oracle,
    evaluate_batch,
    evaluate_with_oracle,
    parse_oracle_reply,
)
from fraud_monitor.pipeline import train_model
from fraud_monitor.rules import evaluate
from fraud_monitor.schemas import OracleEstimate


class StubOracle:
    def __init__(self, confidence=0.8, is_fraudulent=False, reasoning="looks odd", delay=0.0, error=None):
        self.estimate = OracleEstimate(confidence=confidence, is_fraudulent=is_fraudulent, reasoning=reasoning)
        self.delay = delay
        self.error = error
        self.in_flight = 0
        self.max_in_flight = 0

    async def score(self, transaction):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return self.estimate
        finally:
            self.in_flight -= 1


class PerTransactionOracle:
    """Replies with a confidence keyed on the transaction id after a per-id delay."""

    def __init__(self, plan):
        self.plan = plan

    async def score(self, transaction):
        delay, confidence = self.plan[transaction.transaction_id]
        await asyncio.sleep(delay)
        return OracleEstimate(confidence=confidence)


def _reply(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _generative(handler, api_key="test-key"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GenerativeOracle(OracleSettings(api_key=api_key, endpoint="https://oracle.test/models"), client=client)


class TestBlend:
    @pytest.mark.asyncio
    async def test_mean_of_rule_and_oracle(self, make_transaction):
        result = await evaluate_with_oracle(make_transaction(), StubOracle(confidence=0.8))
        assert result.score == 0.4
        assert result.is_fraudulent is False
        assert result.ai_analysis == "looks odd"
        assert result.source == "model"

    @pytest.mark.asyncio
    async def test_oracle_verdict_raises_flag(self, make_transaction):
        result = await evaluate_with_oracle(make_transaction(), StubOracle(confidence=0.1, is_fraudulent=True))
        assert result.score == 0.05
        assert result.is_fraudulent is True

    @pytest.mark.asyncio
    async def test_combined_threshold_is_strict(self, make_transaction):
        tx = make_transaction(ip_country="GB")
        assert evaluate(tx).is_fraudulent is True
        result = await evaluate_with_oracle(tx, StubOracle(confidence=0.5))
        assert result.score == 0.5
        assert result.is_fraudulent is False

    @pytest.mark.asyncio
    async def test_verdict_uses_unrounded_mean(self, make_transaction):
        tx = make_transaction(ip_country="GB")
        result = await evaluate_with_oracle(tx, StubOracle(confidence=0.505))
        assert result.score == pytest.approx(0.5, abs=0.01)
        assert result.is_fraudulent is True

    @pytest.mark.asyncio
    async def test_high_rule_score(self, make_transaction):
        tx = make_transaction(
            amount=15000, country="RU", timestamp="2024-03-01T02:00:00Z", recent_transactions=7
        )
        result = await evaluate_with_oracle(tx, StubOracle(confidence=0.6))
        assert result.score == 1.2
        assert result.is_fraudulent is True
        assert result.reasons == evaluate(tx).reasons

    @pytest.mark.asyncio
    async def test_missing_reasoning(self, make_transaction):
        result = await evaluate_with_oracle(make_transaction(), StubOracle(reasoning=""))
        assert result.ai_analysis == NO_ANALYSIS
        assert result.to_dict()["aiAnalysis"] == NO_ANALYSIS


class TestFallback:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [OracleError("unparseable"), RuntimeError("boom"), httpx.ConnectError("down")])
    async def test_errors_fall_back_to_rules(self, make_transaction, error):
        tx = make_transaction(country="RU", ip_country="US")
        result = await evaluate_with_oracle(tx, StubOracle(error=error))
        assert result.result == evaluate(tx)
        assert result.ai_analysis == FALLBACK_ANALYSIS
        assert result.source == "rule"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("confidence", [None, float("nan"), "high", 1.5])
    async def test_invalid_confidence_falls_back_to_rules(self, make_transaction, confidence):
        tx = make_transaction(country="RU", ip_country="US")
        result = await evaluate_with_oracle(tx, StubOracle(confidence=confidence))
        assert result.result == evaluate(tx)
        assert result.score == 0.9
        assert result.source == "rule"

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_rules(self, make_transaction):
        tx = make_transaction()
        result = await evaluate_with_oracle(tx, StubOracle(delay=5), timeout=0.01)
        assert result.result == evaluate(tx)
        assert result.ai_analysis == FALLBACK_ANALYSIS


class TestBatch:
    @pytest.mark.asyncio
    async def test_results_in_input_order(self, make_transaction):
        oracle = PerTransactionOracle({"A": (0.05, 0.2), "B": (0.0, 0.4), "C": (0.02, 0.6)})
        txs = [make_transaction(transaction_id=t) for t in ("A", "B", "C")]
        results = await evaluate_batch(txs, oracle)
        assert [r.score for r in results] == [0.1, 0.2, 0.3]

    @pytest.mark.asyncio
    async def test_calls_run_concurrently(self, make_transaction):
        oracle = StubOracle(delay=0.05)
        await evaluate_batch([make_transaction(transaction_id=str(i)) for i in range(5)], oracle)
        assert oracle.max_in_flight == 5

    @pytest.mark.asyncio
    async def test_partial_failures_resolve(self, make_transaction):
        class Flaky:
            async def score(self, transaction):
                if transaction.transaction_id == "bad":
                    raise OracleError("nope")
                return OracleEstimate(confidence=1.0)

        results = await evaluate_batch([make_transaction(transaction_id="ok"), make_transaction(transaction_id="bad")], Flaky())
        assert [r.source for r in results] == ["model", "rule"]
        assert [r.score for r in results] == [0.5, 0.0]

    @pytest.mark.asyncio
    async def test_without_oracle(self, make_transaction):
        results = await evaluate_batch([make_transaction()])
        assert results[0].result == evaluate(make_transaction())
        assert results[0].ai_analysis == DISABLED_ANALYSIS

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        assert await evaluate_batch([], StubOracle()) == []


class TestParseReply:
    def test_json_inside_prose(self):
        text = 'Sure, here is my analysis:\n```json\n{"isFraudulent": true, "confidenceScore": 0.83, "reasoning": "mismatch"}\n```'
        estimate = parse_oracle_reply(text)
        assert estimate == OracleEstimate(confidence=0.83, is_fraudulent=True, reasoning="mismatch")

    def test_numeric_string_confidence(self):
        assert parse_oracle_reply('{"confidenceScore": "0.7"}').confidence == 0.7

    @pytest.mark.parametrize(
        "text",
        [
            "no json here",
            '{"confidenceScore": "high"}',
            '{"confidenceScore": 1.5}',
            '{"isFraudulent": true}',
            '{"confidenceScore": 0.5,}',
        ],
    )
    def test_unusable_replies(self, text):
        with pytest.raises(OracleError):
            parse_oracle_reply(text)


class TestGenerativeOracle:
    @pytest.mark.asyncio
    async def test_scores_transaction(self, make_transaction):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json=_reply('{"isFraudulent": false, "confidenceScore": 0.3, "reasoning": "routine"}')
            )

        oracle = _generative(handler)
        estimate = await oracle.score(make_transaction(transaction_id="T42"))
        assert estimate.confidence == 0.3
        assert estimate.reasoning == "routine"
        assert seen["url"].startswith("https://oracle.test/models/gemini-1.5-flash:generateContent")
        assert "key=test-key" in seen["url"]
        assert '"id": "T42"' in seen["body"]["contents"][0]["parts"][0]["text"]

    @pytest.mark.asyncio
    async def test_server_error_falls_back(self, make_transaction):
        oracle = _generative(lambda request: httpx.Response(500, text="unavailable"))
        with pytest.raises(OracleError):
            await oracle.score(make_transaction())
        result = await evaluate_with_oracle(make_transaction(), oracle)
        assert result.ai_analysis == FALLBACK_ANALYSIS

    @pytest.mark.asyncio
    async def test_unexpected_shape(self, make_transaction):
        oracle = _generative(lambda request: httpx.Response(200, json={"candidates": []}))
        with pytest.raises(OracleError):
            await oracle.score(make_transaction())

    @pytest.mark.asyncio
    async def test_requires_api_key(self, make_transaction):
        oracle = _generative(lambda request: httpx.Response(200, json=_reply("{}")), api_key="")
        with pytest.raises(OracleError):
            await oracle.score(make_transaction())

    @pytest.mark.asyncio
    async def test_check(self):
        ok = _generative(lambda request: httpx.Response(200, json=_reply("Gemini API is working correctly")))
        down = _generative(lambda request: httpx.Response(503))
        assert await check_oracle(ok) is True
        assert await check_oracle(down) is False


class TestModelOracle:
    @pytest.fixture(scope="class")
    def model(self):
        return train_model(generate_synthetic_transactions(n_rows=300, fraud_rate=0.1, random_state=3))

    @pytest.mark.asyncio
    async def test_scores_in_unit_interval(self, model, make_transaction):
        oracle = ModelOracle(model)
        estimate = await oracle.score(make_transaction())
        assert 0.0 <= estimate.confidence <= 1.0
        assert estimate.is_fraudulent is (estimate.confidence >= oracle.threshold)
        assert await check_oracle(oracle) is True

    @pytest.mark.asyncio
    async def test_blends_with_rules(self, model, make_transaction):
        result = await evaluate_with_oracle(make_transaction(country="RU", ip_country="US"), ModelOracle(model))
        assert result.source == "model"
        assert 0.45 <= result.score <= 0.95
