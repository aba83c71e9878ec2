"""FastAPI application for the fraud scoring service."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from fraudstream.core import config
from fraudstream.core.middleware import RequestIDMiddleware, RequestLoggingMiddleware, logger
from fraudstream.core.observability import init_sentry
from fraudstream.core.pagination import paginate_list, pagination_params
from fraudstream.core.rate_limit import RateLimiter
from fraudstream.core.review import ReviewItem, ReviewQueue
from fraudstream.core.schemas import (
    ActivateStrategyIn,
    AnalyzeIn,
    BatchAnalyzeIn,
    ErrorResponse,
    HealthOut,
    Page,
    PaginationParams,
    ReviewDecisionIn,
    ReviewDecisionOut,
    ReviewQueueItem,
    RiskAnalysisOut,
    StrategiesOut,
    StrategyOut,
    StreamItemOut,
    StreamMetricsOut,
    TransactionIn,
    UserHistoryOut,
)
from fraudstream.ml.engine import ScoringEngine
from fraudstream.ml.history import HistoryStore
from fraudstream.ml.inference import FaultSource, SimulatedInference, TimeBoundInference
from fraudstream.ml.models import Decision, RiskAnalysis, Strategy, Transaction, TransactionValidationError
from fraudstream.ml.monitor import StreamMonitor
from fraudstream.ml.strategies import StrategyRotation
from fraudstream.seed import seed_users

init_sentry()

START_TIME = time.time()


@dataclass
class Services:
    engine: ScoringEngine
    rotation: StrategyRotation
    monitor: StreamMonitor
    review_queue: ReviewQueue


def build_services(seed_count: int = config.SEED_DEMO_USERS, fault_source: Optional[FaultSource] = None) -> Services:
    window = config.VELOCITY_WINDOW_MS if config.VELOCITY_WINDOWED else None
    store = HistoryStore(velocity_window_ms=window)
    if seed_count > 0:
        seed_users(store, seed_count)

    fault_source = fault_source or FaultSource()
    inference = SimulatedInference(fault_source)
    if config.INFERENCE_ENFORCE_TIMEOUT:
        inference = TimeBoundInference(inference, timeout_ms=config.INFERENCE_TIMEOUT_MS)

    return Services(
        engine=ScoringEngine(store=store, inference=inference, fault_source=fault_source),
        rotation=StrategyRotation(interval=config.STRATEGY_ROTATION_INTERVAL),
        monitor=StreamMonitor(),
        review_queue=ReviewQueue(),
    )


analyze_limiter = RateLimiter(config.RATE_LIMIT_ANALYZE, 60)

app = FastAPI(
    title="Fraudstream API",
    version="1.0.0",
    openapi_tags=[
        {"name": "Health", "description": "Service health and readiness."},
        {"name": "Scoring", "description": "Real-time transaction risk analysis."},
        {"name": "History", "description": "Per-user behavioural baselines."},
        {"name": "Strategies", "description": "Scoring strategy catalog and rotation."},
        {"name": "Stream", "description": "Live stream metrics and recent analyses."},
        {"name": "Review", "description": "Manual review queue and decisions."},
    ],
)
app.state.services = build_services()

app.add_middleware(RequestIDMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWLIST,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Scoring engine unavailable")
    return services


def _rate_limit(limiter: RateLimiter):
    def dependency(request: Request):
        host = request.headers.get("X-Forwarded-For") or (request.client.host if request.client else "unknown")
        key = f"{host}:{request.url.path}"
        if not limiter.allow(key):
            raise HTTPException(status_code=429, detail="Rate limit exceeded")

    return dependency


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def _error(request: Request, status_code: int, detail: str, code: str) -> JSONResponse:
    payload = ErrorResponse(detail=detail, code=code, request_id=_request_id(request))
    return JSONResponse(status_code=status_code, content=payload.model_dump(by_alias=True))


def _record(services: Services, transaction: Transaction, analysis: RiskAnalysis) -> None:
    services.monitor.record(transaction, analysis)
    if analysis.decision is Decision.MANUAL_REVIEW:
        services.review_queue.enqueue(transaction, analysis)
    services.rotation.tick()


def _review_item_to_schema(item: ReviewItem) -> ReviewQueueItem:
    return ReviewQueueItem(
        transaction_id=item.transaction.id,
        user_id=item.transaction.user_id,
        amount=item.transaction.amount,
        currency=item.transaction.currency,
        merchant=item.transaction.merchant,
        score=item.analysis.score,
        flags=list(item.analysis.flags),
        strategy_name=item.analysis.strategy_name,
        ambiguity_signal=item.analysis.ambiguity_signal,
        status=item.status,
        enqueued_at=item.enqueued_at,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _error(request, exc.status_code, str(exc.detail), "http_error")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return _error(request, 422, "Validation failed", "validation_error")


@app.exception_handler(TransactionValidationError)
async def transaction_validation_handler(request: Request, exc: TransactionValidationError):
    return _error(request, 422, str(exc), "invalid_transaction")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(json.dumps({"event": "unhandled_error", "path": request.url.path, "request_id": _request_id(request)}))
    return _error(request, 500, "Internal server error", "internal_error")


@app.get("/", summary="API root", tags=["Health"])
def root() -> dict:
    return {
        "status": "ok",
        "message": "Fraudstream API. See /docs for the OpenAPI schema.",
    }


@app.get("/health", response_model=HealthOut, summary="Liveness probe", tags=["Health"])
def health() -> HealthOut:
    return HealthOut(status="ok", api_version=app.version, uptime=round(time.time() - START_TIME, 2))


@app.get("/ready", response_model=HealthOut, summary="Readiness probe", tags=["Health"])
def ready(services: Services = Depends(get_services)) -> HealthOut:
    return HealthOut(status="ready", api_version=app.version, uptime=round(time.time() - START_TIME, 2))


@app.post(
    "/analyze",
    response_model=RiskAnalysisOut,
    summary="Analyse a transaction",
    tags=["Scoring"],
    dependencies=[Depends(_rate_limit(analyze_limiter))],
)
def analyze(payload: AnalyzeIn, services: Services = Depends(get_services)) -> RiskAnalysisOut:
    transaction = payload.transaction.to_domain()
    strategy: Strategy = payload.strategy.to_domain() if payload.strategy else services.rotation.current()
    analysis = services.engine.analyze(transaction, strategy)
    _record(services, transaction, analysis)
    return RiskAnalysisOut.from_domain(analysis)


@app.post(
    "/analyze/batch",
    response_model=List[RiskAnalysisOut],
    summary="Analyse a batch of transactions",
    tags=["Scoring"],
    dependencies=[Depends(_rate_limit(analyze_limiter))],
)
def analyze_batch(payload: BatchAnalyzeIn, services: Services = Depends(get_services)) -> List[RiskAnalysisOut]:
    transactions = [tx.to_domain() for tx in payload.transactions]
    strategy = payload.strategy.to_domain() if payload.strategy else services.rotation.current()
    analyses = services.engine.analyze_many(transactions, strategy)
    for transaction, analysis in zip(transactions, analyses):
        _record(services, transaction, analysis)
    return [RiskAnalysisOut.from_domain(analysis) for analysis in analyses]


@app.get("/history/{user_id}", response_model=UserHistoryOut, summary="User baseline", tags=["History"])
def user_history(user_id: str, services: Services = Depends(get_services)) -> UserHistoryOut:
    history = services.engine.store.get(user_id)
    if history is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserHistoryOut.from_domain(history)


@app.get("/strategies", response_model=StrategiesOut, summary="Strategy catalog", tags=["Strategies"])
def strategies(services: Services = Depends(get_services)) -> StrategiesOut:
    rotation = services.rotation
    return StrategiesOut(
        active=rotation.current().name,
        rotation_interval=rotation.interval,
        processed=rotation.processed,
        strategies=[StrategyOut.from_domain(s) for s in rotation.strategies],
    )


@app.post("/strategies/active", response_model=StrategyOut, summary="Activate a strategy", tags=["Strategies"])
def activate_strategy(payload: ActivateStrategyIn, services: Services = Depends(get_services)) -> StrategyOut:
    try:
        strategy = services.rotation.activate(payload.name)
    except KeyError:
        raise HTTPException(status_code=404, detail="Strategy not found")
    logger.info(json.dumps({"event": "strategy_activated", "strategy": strategy.name, "version": strategy.version}))
    return StrategyOut.from_domain(strategy)


@app.get("/stream/metrics", response_model=StreamMetricsOut, summary="Stream metrics", tags=["Stream"])
def stream_metrics(services: Services = Depends(get_services)) -> StreamMetricsOut:
    return StreamMetricsOut(**services.monitor.snapshot())


@app.get("/stream/recent", response_model=List[StreamItemOut], summary="Recent analyses", tags=["Stream"])
def stream_recent(
    limit: int = Query(config.MAX_STREAM_SIZE, ge=1, le=config.MAX_STREAM_SIZE),
    services: Services = Depends(get_services),
) -> List[StreamItemOut]:
    return [
        StreamItemOut(transaction=TransactionIn.from_domain(tx), analysis=RiskAnalysisOut.from_domain(analysis))
        for tx, analysis in services.monitor.recent_items(limit)
    ]


@app.get("/review/queue", response_model=Page[ReviewQueueItem], summary="Manual review queue", tags=["Review"])
def review_queue(
    params: PaginationParams = Depends(pagination_params),
    services: Services = Depends(get_services),
) -> Page[ReviewQueueItem]:
    return paginate_list(services.review_queue.pending(), params, _review_item_to_schema)


@app.post(
    "/review/{transaction_id}/decision",
    response_model=ReviewDecisionOut,
    summary="Submit a manual review decision",
    tags=["Review"],
)
def review_decision(
    transaction_id: str,
    payload: ReviewDecisionIn,
    services: Services = Depends(get_services),
) -> ReviewDecisionOut:
    try:
        item = services.review_queue.resolve(transaction_id, payload.decision, notes=payload.notes, reviewer=payload.reviewer)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except KeyError:
        raise HTTPException(status_code=404, detail="Review item not found")

    services.monitor.apply_review(transaction_id, payload.decision)
    logger.info(
        json.dumps(
            {
                "event": "review_decision",
                "transaction_id": transaction_id,
                "decision": payload.decision.value,
                "reviewer": payload.reviewer,
            }
        )
    )
    return ReviewDecisionOut(
        transaction_id=transaction_id,
        status=item.status,
        decision=payload.decision,
        message=f"Transaction resolved as {payload.decision.value}.",
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
