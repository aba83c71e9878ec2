"""Simulated model inference with injectable failure and jitter."""

from __future__ import annotations

import random
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Iterable, Optional, Protocol, Sequence, TypeVar

from fraudstream.core.config import (
    HIGH_RISK_CITIES,
    INFERENCE_FAILURE_RATE,
    INFERENCE_TIMEOUT_MS,
    ML_BASE_SCORE,
    ML_CRYPTO_BONUS,
    ML_HIGH_AMOUNT,
    ML_HIGH_AMOUNT_BONUS,
    ML_HIGH_RISK_CITY_BONUS,
    ML_JITTER_MAX,
)
from fraudstream.ml.models import Transaction, UserHistory

T = TypeVar("T")


class InferenceUnavailable(RuntimeError):
    """The model did not produce a score (timeout or outage)."""


class FaultSource:
    """Source of randomness for failure injection, jitter and catalog picks."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()

    def fails(self, rate: float) -> bool:
        return self.rng.random() < rate

    def jitter(self, upper: float) -> float:
        return self.rng.random() * upper

    def pick(self, options: Sequence[T]) -> T:
        return options[int(self.rng.random() * len(options))]


class InferenceModel(Protocol):
    def predict(self, transaction: Transaction, history: UserHistory) -> float:
        ...


class SimulatedInference:
    def __init__(
        self,
        fault_source: Optional[FaultSource] = None,
        failure_rate: float = INFERENCE_FAILURE_RATE,
        high_risk_cities: Iterable[str] = HIGH_RISK_CITIES,
        jitter_max: float = ML_JITTER_MAX,
    ) -> None:
        self.fault_source = fault_source or FaultSource()
        self.failure_rate = failure_rate
        self.high_risk_cities = frozenset(high_risk_cities)
        self.jitter_max = jitter_max

    def predict(self, transaction: Transaction, history: UserHistory) -> float:
        if self.fault_source.fails(self.failure_rate):
            raise InferenceUnavailable("ML timeout")

        score = ML_BASE_SCORE
        if "crypto" in transaction.merchant.lower():
            score += ML_CRYPTO_BONUS
        if transaction.location.city in self.high_risk_cities:
            score += ML_HIGH_RISK_CITY_BONUS
        if transaction.amount > ML_HIGH_AMOUNT:
            score += ML_HIGH_AMOUNT_BONUS
        return min(score + self.fault_source.jitter(self.jitter_max), 100.0)


class TimeBoundInference:
    """Run a model on a worker thread and give up after ``timeout_ms``.

    For models that call out of process. A late answer is discarded and the
    caller sees ``InferenceUnavailable``.
    """

    def __init__(
        self,
        delegate: InferenceModel,
        timeout_ms: int = INFERENCE_TIMEOUT_MS,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.delegate = delegate
        self.timeout_ms = timeout_ms
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="inference")

    def predict(self, transaction: Transaction, history: UserHistory) -> float:
        future = self.executor.submit(self.delegate.predict, transaction, history)
        try:
            return future.result(timeout=self.timeout_ms / 1000.0)
        except FutureTimeout as exc:
            future.cancel()
            raise InferenceUnavailable(f"ML timeout after {self.timeout_ms}ms") from exc

    def shutdown(self) -> None:
        self.executor.shutdown(wait=False)
