"""API schemas for the fraud scoring service."""

from __future__ import annotations

from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from fraudstream.ml.models import (
    Decision,
    Device,
    Location,
    RiskAnalysis,
    RiskFlag,
    Strategy,
    Transaction,
    UserHistory,
)

T = TypeVar("T")


def _to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=_to_camel, populate_by_name=True)


class ErrorResponse(CamelModel):
    detail: str
    code: str
    request_id: Optional[str] = None


class Page(CamelModel, Generic[T]):
    page: int
    page_size: int
    total: int
    items: List[T]


class PaginationParams(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=25, ge=1, le=200)


class HealthOut(CamelModel):
    status: str
    api_version: str
    uptime: float


class LocationIn(CamelModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    city: str = ""
    country: str = ""


class DeviceIn(CamelModel):
    id: str = Field(min_length=1)
    type: str = ""
    os: str = ""
    ip: str = ""


class TransactionIn(CamelModel):
    id: str = Field(min_length=1)
    timestamp: int = Field(ge=0, description="Epoch milliseconds")
    user_id: str = Field(min_length=1)
    amount: float = Field(gt=0)
    currency: str = "USD"
    merchant: str
    location: LocationIn
    device: DeviceIn

    def to_domain(self) -> Transaction:
        return Transaction(
            id=self.id,
            timestamp=self.timestamp,
            user_id=self.user_id,
            amount=self.amount,
            currency=self.currency,
            merchant=self.merchant,
            location=Location(**self.location.model_dump()),
            device=Device(**self.device.model_dump()),
        )

    @classmethod
    def from_domain(cls, tx: Transaction) -> "TransactionIn":
        return cls(
            id=tx.id,
            timestamp=tx.timestamp,
            user_id=tx.user_id,
            amount=tx.amount,
            currency=tx.currency,
            merchant=tx.merchant,
            location=LocationIn(lat=tx.location.lat, lng=tx.location.lng, city=tx.location.city, country=tx.location.country),
            device=DeviceIn(id=tx.device.id, type=tx.device.type, os=tx.device.os, ip=tx.device.ip),
        )


class StrategyIn(CamelModel):
    name: str = Field(min_length=1)
    version: str = "custom"
    ml_weight: float = Field(ge=0)
    rule_weight: float = Field(ge=0)
    description: str = ""

    def to_domain(self) -> Strategy:
        return Strategy(
            name=self.name,
            version=self.version,
            ml_weight=self.ml_weight,
            rule_weight=self.rule_weight,
            description=self.description,
        )


class StrategyOut(StrategyIn):
    @classmethod
    def from_domain(cls, strategy: Strategy) -> "StrategyOut":
        return cls(
            name=strategy.name,
            version=strategy.version,
            ml_weight=strategy.ml_weight,
            rule_weight=strategy.rule_weight,
            description=strategy.description,
        )


class StrategiesOut(CamelModel):
    active: str
    rotation_interval: int
    processed: int
    strategies: List[StrategyOut]


class ActivateStrategyIn(CamelModel):
    name: str


class AnalyzeIn(CamelModel):
    transaction: TransactionIn
    strategy: Optional[StrategyIn] = None


class BatchAnalyzeIn(CamelModel):
    transactions: List[TransactionIn] = Field(min_length=1, max_length=500)
    strategy: Optional[StrategyIn] = None


class RiskAnalysisOut(CamelModel):
    transaction_id: str
    score: int = Field(ge=0, le=100)
    decision: Decision
    flags: List[RiskFlag]
    rule_output: int
    ml_output: int
    processing_time_ms: float
    is_fallback: bool
    timestamp: int
    strategy_name: str
    ambiguity_signal: Optional[str] = None

    @classmethod
    def from_domain(cls, analysis: RiskAnalysis) -> "RiskAnalysisOut":
        return cls(
            transaction_id=analysis.transaction_id,
            score=analysis.score,
            decision=analysis.decision,
            flags=list(analysis.flags),
            rule_output=analysis.rule_output,
            ml_output=analysis.ml_output,
            processing_time_ms=analysis.processing_time_ms,
            is_fallback=analysis.is_fallback,
            timestamp=analysis.timestamp,
            strategy_name=analysis.strategy_name,
            ambiguity_signal=analysis.ambiguity_signal,
        )


class GeoPointOut(CamelModel):
    lat: float
    lng: float
    timestamp: int


class UserHistoryOut(CamelModel):
    user_id: str
    last_location: GeoPointOut
    last_device_ids: List[str]
    avg_transaction_value: float
    recent_transaction_count: int

    @classmethod
    def from_domain(cls, history: UserHistory) -> "UserHistoryOut":
        return cls(
            user_id=history.user_id,
            last_location=GeoPointOut(
                lat=history.last_location.lat,
                lng=history.last_location.lng,
                timestamp=history.last_location.timestamp,
            ),
            last_device_ids=list(history.last_device_ids),
            avg_transaction_value=history.avg_transaction_value,
            recent_transaction_count=history.recent_transaction_count,
        )


class StreamMetricsOut(CamelModel):
    processed_events: int
    throughput: float
    avg_latency_ms: float
    p99_latency_ms: float
    fraud_rate: float
    sla_budget_used: float
    sla_status: str


class StreamItemOut(CamelModel):
    transaction: TransactionIn
    analysis: RiskAnalysisOut


class ReviewQueueItem(CamelModel):
    transaction_id: str
    user_id: str
    amount: float
    currency: str
    merchant: str
    score: int
    flags: List[RiskFlag]
    strategy_name: str
    ambiguity_signal: Optional[str] = None
    status: str
    enqueued_at: str


class ReviewDecisionIn(CamelModel):
    decision: Decision
    notes: Optional[str] = None
    reviewer: Optional[str] = None


class ReviewDecisionOut(CamelModel):
    transaction_id: str
    status: str
    decision: Decision
    message: str
