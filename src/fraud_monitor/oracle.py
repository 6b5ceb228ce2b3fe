"""Optional scoring oracles and the blend with the rule-based score.

An oracle is any object with an async ``score(transaction)`` method returning
an :class:`OracleEstimate` and raising :class:`OracleError` when it cannot
answer. The blend never fails the caller: timeouts, transport errors and
unparseable replies fall back to the rule result.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Iterable, List, Mapping, Optional, Protocol

import httpx
import pandas as pd
import structlog

from .config import DEFAULT_RULE_CONFIG, FraudConfiguration, OracleSettings
from .data import transactions_to_frame
from .models import AnomalyModel
from .rules import FRAUD_THRESHOLD, evaluate
from .schemas import EvaluationResult, OracleEstimate, OracleEvaluation, Transaction

logger = structlog.get_logger(__name__)

FALLBACK_ANALYSIS = "AI analysis failed, using rule-based detection."
NO_ANALYSIS = "No detailed analysis provided."
DISABLED_ANALYSIS = "No oracle configured, using rule-based detection."

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class OracleError(Exception):
    """Raised by an oracle that cannot produce a usable estimate."""


class ScoreOracle(Protocol):
    async def score(self, transaction: Transaction) -> OracleEstimate:
        ...


def _as_confidence(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        raise OracleError(f"confidence is not numeric: {value!r}")
    try:
        confidence = float(value)
    except (TypeError, ValueError) as exc:
        raise OracleError(f"confidence is not numeric: {value!r}") from exc
    if not 0.0 <= confidence <= 1.0:
        raise OracleError(f"confidence out of range: {confidence}")
    return confidence


def _as_verdict(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def parse_oracle_reply(text: str) -> OracleEstimate:
    """Extract the JSON object embedded in a free-text oracle reply.

    The object carries ``isFraudulent``, ``confidenceScore`` and ``reasoning``.
    """

    match = _JSON_OBJECT.search(text or "")
    if match is None:
        raise OracleError("no JSON object found in oracle reply")
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise OracleError(f"oracle reply is not valid JSON: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise OracleError("oracle reply is not a JSON object")

    reasoning = payload.get("reasoning")
    return OracleEstimate(
        confidence=_as_confidence(payload.get("confidenceScore")),
        is_fraudulent=_as_verdict(payload.get("isFraudulent", False)),
        reasoning=reasoning if isinstance(reasoning, str) else "",
    )


def build_prompt(transaction: Transaction) -> str:
    transaction_data = json.dumps(transaction.to_dict(), indent=2, default=str)
    return (
        "Analyze this transaction for potential fraud:\n"
        f"{transaction_data}\n\n"
        "Consider these risk factors:\n"
        "1. Transaction amount (high amounts are riskier)\n"
        "2. Country of origin (some countries have higher fraud rates)\n"
        "3. Time of transaction (unusual hours may indicate fraud)\n"
        "4. User history and behavior patterns\n"
        "5. IP location vs billing address location\n\n"
        "Format your response as JSON with these fields:\n"
        "- isFraudulent: boolean indicating if you think this is fraudulent\n"
        "- confidenceScore: number between 0 and 1\n"
        "- reasoning: string explaining your analysis\n"
    )


class GenerativeOracle:
    """Asks a hosted generative model for a fraud opinion over HTTP."""

    def __init__(self, settings: Optional[OracleSettings] = None, client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings or OracleSettings()
        self._client = client

    def _url(self) -> str:
        return f"{self.settings.endpoint.rstrip('/')}/{self.settings.model}:generateContent"

    async def generate(self, prompt: str) -> str:
        if not self.settings.api_key:
            raise OracleError("no oracle API key configured")

        body = {"contents": [{"parts": [{"text": prompt}]}]}
        params = {"key": self.settings.api_key}
        try:
            if self._client is not None:
                response = await self._client.post(self._url(), json=body, params=params)
            else:
                async with httpx.AsyncClient(timeout=self.settings.timeout_seconds) as client:
                    response = await client.post(self._url(), json=body, params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise OracleError(f"oracle request failed: {exc}") from exc

        try:
            return "".join(part.get("text", "") for part in payload["candidates"][0]["content"]["parts"])
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise OracleError("unexpected oracle response shape") from exc

    async def score(self, transaction: Transaction) -> OracleEstimate:
        text = await self.generate(build_prompt(transaction))
        return parse_oracle_reply(text)

    async def check(self) -> bool:
        """Connectivity probe."""

        text = await self.generate("Respond with 'Gemini API is working correctly' if you receive this message.")
        return "working correctly" in text


class ModelOracle:
    """Uses a fitted :class:`AnomalyModel` as a local oracle."""

    def __init__(self, model: AnomalyModel, threshold: Optional[float] = None) -> None:
        self.model = model
        self.threshold = model.model_config.threshold if threshold is None else threshold

    def _score_sync(self, transaction: Transaction) -> float:
        frame = transactions_to_frame([transaction], self.model.pipeline_config)
        return float(self.model.predict_scores(frame)[0])

    async def score(self, transaction: Transaction) -> OracleEstimate:
        try:
            confidence = await asyncio.to_thread(self._score_sync, transaction)
        except (ValueError, KeyError) as exc:
            raise OracleError(f"anomaly model could not score transaction: {exc}") from exc
        if pd.isna(confidence):
            raise OracleError("anomaly model returned no score")
        is_fraudulent = confidence >= self.threshold
        return OracleEstimate(
            confidence=round(confidence, 4),
            is_fraudulent=is_fraudulent,
            reasoning=f"Anomaly score {confidence:.2f} {'>=' if is_fraudulent else '<'} {self.threshold:.2f}",
        )

    async def check(self) -> bool:
        return self.model.pipeline is not None


def blend(rule_result: EvaluationResult, estimate: OracleEstimate) -> EvaluationResult:
    """Mean of the rule and oracle scores; the oracle verdict can only raise the flag."""

    mean = (rule_result.score + estimate.confidence) / 2
    return EvaluationResult(
        is_fraudulent=mean > FRAUD_THRESHOLD or bool(estimate.is_fraudulent),
        score=round(mean, 2),
        reasons=rule_result.reasons,
    )


async def evaluate_with_oracle(
    transaction: Transaction,
    oracle: ScoreOracle,
    config: FraudConfiguration = DEFAULT_RULE_CONFIG,
    timeout: Optional[float] = 10.0,
    timezone: str = "UTC",
) -> OracleEvaluation:
    """Blend the rule score with an oracle estimate, falling back to the rule result."""

    rule_result = evaluate(transaction, config, timezone)
    try:
        estimate = await asyncio.wait_for(oracle.score(transaction), timeout)
        confidence = _as_confidence(estimate.confidence)
        result = blend(rule_result, OracleEstimate(confidence, bool(estimate.is_fraudulent), estimate.reasoning))
    except Exception as exc:
        logger.warning(
            "oracle_fallback",
            transaction_id=getattr(transaction, "transaction_id", None),
            error=str(exc) or type(exc).__name__,
            expected=isinstance(exc, (OracleError, asyncio.TimeoutError)),
        )
        return OracleEvaluation(result=rule_result, ai_analysis=FALLBACK_ANALYSIS, source="rule")

    return OracleEvaluation(
        result=result,
        ai_analysis=estimate.reasoning or NO_ANALYSIS,
        source="model",
    )


async def evaluate_batch(
    transactions: Iterable[Transaction],
    oracle: Optional[ScoreOracle] = None,
    config: FraudConfiguration = DEFAULT_RULE_CONFIG,
    timeout: Optional[float] = 10.0,
    timezone: str = "UTC",
) -> List[OracleEvaluation]:
    """Evaluate a batch, issuing oracle calls concurrently.

    Results come back in input order once every call has resolved.
    """

    transactions = list(transactions)
    if oracle is None:
        return [
            OracleEvaluation(result=evaluate(t, config, timezone), ai_analysis=DISABLED_ANALYSIS, source="rule")
            for t in transactions
        ]
    results = await asyncio.gather(
        *(evaluate_with_oracle(t, oracle, config, timeout, timezone) for t in transactions)
    )
    fallbacks = sum(1 for r in results if r.source == "rule")
    logger.info("oracle_batch_evaluated", transactions=len(results), fallbacks=fallbacks)
    return list(results)


async def check_oracle(oracle: ScoreOracle, timeout: Optional[float] = 10.0) -> bool:
    """True when the oracle answers its connectivity probe."""

    probe = getattr(oracle, "check", None)
    if probe is None:
        return True
    try:
        return bool(await asyncio.wait_for(probe(), timeout))
    except (OracleError, asyncio.TimeoutError) as exc:
        logger.warning("oracle_check_failed", error=str(exc) or type(exc).__name__)
        return False
