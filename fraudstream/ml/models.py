"""Domain types shared by the history store, the scoring engine and the API."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class Decision(str, Enum):
    APPROVE = "APPROVE"
    BLOCK = "BLOCK"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class RiskFlag(str, Enum):
    IMPOSSIBLE_TRAVEL = "IMPOSSIBLE_TRAVEL"
    VELOCITY_SPIKE = "VELOCITY_SPIKE"
    NEW_DEVICE = "NEW_DEVICE"
    HIGH_VALUE = "HIGH_VALUE"
    # Reserved, never emitted by the rule set.
    RISKY_GEO = "RISKY_GEO"
    PATTERN_MISMATCH = "PATTERN_MISMATCH"


class TransactionValidationError(ValueError):
    """Raised when a transaction violates a domain precondition."""

    def __init__(self, field_name: str, message: str) -> None:
        super().__init__(f"{field_name}: {message}")
        self.field_name = field_name


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float
    city: str = ""
    country: str = ""


@dataclass(frozen=True)
class Device:
    id: str
    type: str = ""
    os: str = ""
    ip: str = ""


@dataclass(frozen=True)
class Transaction:
    id: str
    timestamp: int
    user_id: str
    amount: float
    currency: str
    merchant: str
    location: Location
    device: Device


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float
    timestamp: int


@dataclass(frozen=True)
class UserHistory:
    user_id: str
    last_location: GeoPoint
    last_device_ids: Tuple[str, ...] = ()
    avg_transaction_value: float = 50.0
    recent_transaction_count: int = 0
    recent_timestamps: Tuple[int, ...] = ()


@dataclass(frozen=True)
class Strategy:
    name: str
    version: str
    ml_weight: float
    rule_weight: float
    description: str = ""


@dataclass(frozen=True)
class RiskAnalysis:
    transaction_id: str
    score: int
    decision: Decision
    flags: Tuple[RiskFlag, ...]
    rule_output: int
    ml_output: int
    processing_time_ms: float
    is_fallback: bool
    timestamp: int
    strategy_name: str
    ambiguity_signal: Optional[str] = None


def _require_text(value: str, field_name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise TransactionValidationError(field_name, "must be a non-empty string")


def _require_finite(value: float, field_name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise TransactionValidationError(field_name, "must be a finite number")


def validate_transaction(tx: Transaction) -> None:
    """Reject transactions that would produce meaningless distances or scores."""
    _require_text(tx.id, "id")
    _require_text(tx.user_id, "user_id")
    _require_text(tx.device.id, "device.id")

    _require_finite(tx.amount, "amount")
    if tx.amount <= 0:
        raise TransactionValidationError("amount", "must be positive")

    if isinstance(tx.timestamp, bool) or not isinstance(tx.timestamp, int) or tx.timestamp < 0:
        raise TransactionValidationError("timestamp", "must be a non-negative epoch milliseconds integer")

    _require_finite(tx.location.lat, "location.lat")
    _require_finite(tx.location.lng, "location.lng")
    if not -90 <= tx.location.lat <= 90:
        raise TransactionValidationError("location.lat", "must be within [-90, 90]")
    if not -180 <= tx.location.lng <= 180:
        raise TransactionValidationError("location.lng", "must be within [-180, 180]")
