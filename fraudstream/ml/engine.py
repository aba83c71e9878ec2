"""Per-transaction risk scoring: rule checks, simulated model, strategy blend."""

from __future__ import annotations

import json
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Tuple

from fraudstream.core.config import (
    BATCH_MAX_WORKERS,
    FRAUD_THRESHOLD_BLOCK,
    FRAUD_THRESHOLD_REVIEW,
    HIGH_VALUE_MULTIPLIER,
    IMPOSSIBLE_SPEED_KMH,
    MIN_ELAPSED_HOURS,
    MIN_TRAVEL_DISTANCE_KM,
    RULE_WEIGHTS,
    VELOCITY_SPIKE_COUNT,
)
from fraudstream.core.observability import (
    ANALYSES_TOTAL,
    ANALYSIS_LATENCY_SECONDS,
    INFERENCE_FALLBACKS_TOTAL,
    RULE_FLAGS_TOTAL,
)
from fraudstream.ml.history import HistoryStore
from fraudstream.ml.inference import FaultSource, InferenceModel, InferenceUnavailable, SimulatedInference
from fraudstream.ml.models import (
    Decision,
    RiskAnalysis,
    RiskFlag,
    Strategy,
    Transaction,
    UserHistory,
    validate_transaction,
)

logger = logging.getLogger("fraudstream.engine")

EARTH_RADIUS_KM = 6371.0
MS_PER_HOUR = 3_600_000

AMBIGUITY_SIGNALS = (
    "Mismatched Browser Entropy: Language headers do not match IP geolocation locale.",
    "Proxy/VPN Leak: Traffic originating from a known residential proxy network used for bulk scraping.",
    "Behavioral Anomaly: Transaction occurs outside of typical user wake/sleep cycle with high-value merchant.",
    "Velocity Cluster: Device hash associated with 3+ distinct user accounts in the last 60 minutes.",
    "Card Testing Pattern: Sequential transactions with small rounding variations at a low-verification merchant.",
    "High-Risk Sequence: First transaction after 90 days of inactivity directed to a high-liquidity merchant.",
)


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lng = math.radians(lng2 - lng1)

    a = math.sin(delta_lat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lng / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def blend(rule_score: float, ml_score: float, strategy: Strategy, is_fallback: bool) -> float:
    if is_fallback:
        return rule_score
    return rule_score * strategy.rule_weight + ml_score * strategy.ml_weight


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ScoringEngine:
    """Scores one transaction at a time against a user's history.

    The engine owns its ``HistoryStore``: it is the only writer, and every
    analysis writes back exactly once, whatever the decision.
    """

    def __init__(
        self,
        store: Optional[HistoryStore] = None,
        inference: Optional[InferenceModel] = None,
        fault_source: Optional[FaultSource] = None,
        block_threshold: float = FRAUD_THRESHOLD_BLOCK,
        review_threshold: float = FRAUD_THRESHOLD_REVIEW,
        impossible_speed_kmh: float = IMPOSSIBLE_SPEED_KMH,
    ) -> None:
        if review_threshold > block_threshold:
            raise ValueError("review threshold must not exceed block threshold")
        self.store = store if store is not None else HistoryStore()
        self.fault_source = fault_source or FaultSource()
        self.inference = inference or SimulatedInference(self.fault_source)
        self.block_threshold = block_threshold
        self.review_threshold = review_threshold
        self.impossible_speed_kmh = impossible_speed_kmh

    def score_rules(self, tx: Transaction, history: UserHistory) -> Tuple[float, List[RiskFlag]]:
        flags: List[RiskFlag] = []
        rule_score = 0.0

        last = history.last_location
        distance = haversine_km(last.lat, last.lng, tx.location.lat, tx.location.lng)
        elapsed_hours = (tx.timestamp - last.timestamp) / MS_PER_HOUR
        speed = distance / max(elapsed_hours, MIN_ELAPSED_HOURS)
        if speed > self.impossible_speed_kmh and distance > MIN_TRAVEL_DISTANCE_KM:
            flags.append(RiskFlag.IMPOSSIBLE_TRAVEL)
            rule_score += RULE_WEIGHTS["IMPOSSIBLE_TRAVEL"]

        if self.store.velocity_count(history, tx.timestamp) > VELOCITY_SPIKE_COUNT:
            flags.append(RiskFlag.VELOCITY_SPIKE)
            rule_score += RULE_WEIGHTS["VELOCITY_SPIKE"]

        if tx.device.id not in history.last_device_ids:
            flags.append(RiskFlag.NEW_DEVICE)
            rule_score += RULE_WEIGHTS["NEW_DEVICE"]

        if tx.amount > history.avg_transaction_value * HIGH_VALUE_MULTIPLIER:
            flags.append(RiskFlag.HIGH_VALUE)
            rule_score += RULE_WEIGHTS["HIGH_VALUE"]

        return rule_score, flags

    def decide(self, final_score: float) -> Decision:
        if final_score >= self.block_threshold:
            return Decision.BLOCK
        if final_score >= self.review_threshold:
            return Decision.MANUAL_REVIEW
        return Decision.APPROVE

    def _infer(self, tx: Transaction, history: UserHistory, rule_score: float) -> Tuple[float, bool]:
        try:
            return float(self.inference.predict(tx, history)), False
        except InferenceUnavailable as exc:
            INFERENCE_FALLBACKS_TOTAL.inc()
            logger.warning(
                json.dumps(
                    {
                        "event": "inference_fallback",
                        "transaction_id": tx.id,
                        "reason": str(exc),
                        "rule_score": rule_score,
                    }
                )
            )
            return rule_score, True

    def analyze(self, transaction: Transaction, strategy: Strategy) -> RiskAnalysis:
        validate_transaction(transaction)
        start = time.perf_counter()

        with self.store.locked(transaction.user_id):
            history = self.store.get_or_default(transaction.user_id)
            rule_score, flags = self.score_rules(transaction, history)
            ml_score, is_fallback = self._infer(transaction, history, rule_score)
            final_score = blend(rule_score, ml_score, strategy, is_fallback)
            decision = self.decide(final_score)
            self.store.update(transaction.user_id, transaction, history)

        elapsed = time.perf_counter() - start

        ambiguity_signal = None
        if decision is Decision.MANUAL_REVIEW:
            ambiguity_signal = self.fault_source.pick(AMBIGUITY_SIGNALS)

        analysis = RiskAnalysis(
            transaction_id=transaction.id,
            score=max(0, _round_half_up(min(final_score, 100.0))),
            decision=decision,
            flags=tuple(flags),
            rule_output=_round_half_up(rule_score),
            ml_output=_round_half_up(ml_score),
            processing_time_ms=elapsed * 1000.0,
            is_fallback=is_fallback,
            timestamp=int(time.time() * 1000),
            strategy_name=strategy.name,
            ambiguity_signal=ambiguity_signal,
        )

        ANALYSES_TOTAL.labels(decision=decision.value, strategy=strategy.name).inc()
        ANALYSIS_LATENCY_SECONDS.observe(elapsed)
        for flag in flags:
            RULE_FLAGS_TOTAL.labels(flag=flag.value).inc()
        logger.debug(
            json.dumps(
                {
                    "event": "analysis",
                    "transaction_id": transaction.id,
                    "user_id": transaction.user_id,
                    "score": analysis.score,
                    "decision": decision.value,
                    "flags": [flag.value for flag in flags],
                    "is_fallback": is_fallback,
                    "strategy": strategy.name,
                    "duration_ms": round(analysis.processing_time_ms, 3),
                }
            )
        )
        return analysis

    def analyze_many(
        self,
        transactions: Sequence[Transaction],
        strategy: Strategy,
        max_workers: int = BATCH_MAX_WORKERS,
    ) -> List[RiskAnalysis]:
        """Analyse a batch; results keep the input order.

        Different users run concurrently. Each user's transactions run one
        after another in input order, so their history evolves exactly as it
        would for sequential ``analyze`` calls.
        """
        if not transactions:
            return []
        for tx in transactions:
            validate_transaction(tx)

        by_user: Dict[str, List[int]] = {}
        for idx, tx in enumerate(transactions):
            by_user.setdefault(tx.user_id, []).append(idx)

        results: List[Optional[RiskAnalysis]] = [None] * len(transactions)

        def run_user(indices: List[int]) -> None:
            for idx in indices:
                results[idx] = self.analyze(transactions[idx], strategy)

        workers = max(1, min(max_workers, len(by_user)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            for future in [executor.submit(run_user, indices) for indices in by_user.values()]:
                future.result()
        return results
