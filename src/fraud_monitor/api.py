"""Lightweight FastAPI app for evaluating transactions and summarizing CSV uploads."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
from fastapi import FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import DEFAULT_PIPELINE_CONFIG, DEFAULT_RULE_CONFIG, OracleSettings
from .data import read_transactions_csv
from .logging_config import setup_logging
from .oracle import GenerativeOracle, evaluate_with_oracle
from .pipeline import build_report, score_transactions, to_scored
from .rules import evaluate
from .schemas import CategoryField, Transaction

logger = structlog.get_logger(__name__)


class TransactionIn(BaseModel):
    id: str = "txn_0000000"
    amount: Optional[float] = None
    currency: Optional[str] = None
    timestamp: Optional[str] = None
    country: Optional[str] = None
    ipCountry: Optional[str] = None
    channel: Optional[str] = None
    paymentMode: Optional[str] = None
    paymentGateway: Optional[str] = None
    recentTransactions: int = Field(default=0, ge=0)

    def to_transaction(self) -> Transaction:
        return Transaction.from_mapping(self.model_dump())


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging("INFO", json_logs=True)
    settings = OracleSettings()
    app.state.oracle = GenerativeOracle(settings) if settings.api_key else None
    app.state.oracle_timeout = settings.timeout_seconds
    yield


app = FastAPI(title="Fraud Monitor", lifespan=lifespan)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "http_request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
    )
    return response


async def _read_upload(file: UploadFile):
    content = await file.read()
    try:
        return read_transactions_csv(content, DEFAULT_PIPELINE_CONFIG)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@app.post("/evaluate")
async def evaluate_endpoint(transaction: TransactionIn, request: Request, use_oracle: bool = False):
    record = transaction.to_transaction()
    oracle = getattr(request.app.state, "oracle", None)
    if use_oracle and oracle is not None:
        result = await evaluate_with_oracle(
            record,
            oracle,
            DEFAULT_RULE_CONFIG,
            timeout=getattr(request.app.state, "oracle_timeout", 10.0),
            timezone=DEFAULT_PIPELINE_CONFIG.timezone,
        )
        return result.to_dict()
    return evaluate(record, DEFAULT_RULE_CONFIG, DEFAULT_PIPELINE_CONFIG.timezone).to_dict()


@app.post("/score")
async def score_endpoint(file: UploadFile = File(...)):
    df = await _read_upload(file)
    results = score_transactions(df, DEFAULT_RULE_CONFIG, DEFAULT_PIPELINE_CONFIG)
    columns = [DEFAULT_PIPELINE_CONFIG.transaction_id_column, "fraud_score", "is_fraud_predicted", "fraud_reason"]
    records = results[columns].astype(object).where(results[columns].notna(), None)
    return JSONResponse(records.to_dict(orient="records"))


@app.post("/report")
async def report_endpoint(
    file: UploadFile = File(...),
    window_days: int = Query(7, ge=1, le=366),
    category: Optional[List[CategoryField]] = Query(None),
):
    df = await _read_upload(file)
    results = score_transactions(df, DEFAULT_RULE_CONFIG, DEFAULT_PIPELINE_CONFIG)
    return build_report(
        to_scored(results, DEFAULT_PIPELINE_CONFIG),
        window_days=window_days,
        category_fields=category or tuple(CategoryField),
        timezone=DEFAULT_PIPELINE_CONFIG.timezone,
    )


@app.get("/health")
async def health():
    return {"status": "ok"}
