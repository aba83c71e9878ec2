"""Rolling stream metrics: throughput, latency percentiles, fraud rate, SLA status."""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import replace
from typing import Callable, Deque, Dict, List, Optional, Tuple

import numpy as np

from fraudstream.core.config import (
    LATENCY_BUDGET_MS,
    LATENCY_BUFFER_SIZE,
    LATENCY_WARNING_RATIO,
    MAX_STREAM_SIZE,
)
from fraudstream.ml.models import Decision, RiskAnalysis, Transaction


def sla_status(p99_ms: float, budget_ms: float = LATENCY_BUDGET_MS) -> str:
    if p99_ms > budget_ms:
        return "CRITICAL"
    if p99_ms > budget_ms * LATENCY_WARNING_RATIO:
        return "WARNING"
    return "OPTIMAL"


class StreamMonitor:
    def __init__(
        self,
        stream_size: int = MAX_STREAM_SIZE,
        latency_window: int = LATENCY_BUFFER_SIZE,
        latency_budget_ms: float = LATENCY_BUDGET_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.recent: Deque[Tuple[Transaction, RiskAnalysis]] = deque(maxlen=stream_size)
        self.latencies: Deque[float] = deque(maxlen=latency_window)
        self.latency_budget_ms = latency_budget_ms
        self.total_processed: int = 0
        self._clock = clock
        self._window_count = 0
        self._window_started = clock()
        self._lock = threading.Lock()

    def record(self, transaction: Transaction, analysis: RiskAnalysis) -> None:
        with self._lock:
            self.recent.append((transaction, analysis))
            self.latencies.append(analysis.processing_time_ms)
            self.total_processed += 1
            self._window_count += 1

    def recent_items(self, limit: Optional[int] = None) -> List[Tuple[Transaction, RiskAnalysis]]:
        """Most recent first."""
        with self._lock:
            items = list(self.recent)[::-1]
        return items[:limit] if limit is not None else items

    def apply_review(self, transaction_id: str, decision: Decision) -> bool:
        with self._lock:
            for idx, (tx, analysis) in enumerate(self.recent):
                if tx.id == transaction_id:
                    self.recent[idx] = (tx, replace(analysis, decision=decision))
                    return True
        return False

    def snapshot(self) -> Dict:
        """Metrics since the previous snapshot; resets the throughput window."""
        with self._lock:
            now = self._clock()
            elapsed = now - self._window_started
            throughput = self._window_count / elapsed if elapsed > 0 else 0.0
            self._window_count = 0
            self._window_started = now

            latencies = np.sort(np.fromiter(self.latencies, dtype=float))
            decisions = [analysis.decision for _, analysis in self.recent]
            total = self.total_processed

        if latencies.size:
            avg_latency = float(latencies.mean())
            p99_latency = float(latencies[int(np.floor(latencies.size * 0.99))])
        else:
            avg_latency = 0.0
            p99_latency = 0.0
        flagged = sum(1 for d in decisions if d is not Decision.APPROVE)
        fraud_rate = flagged / len(decisions) if decisions else 0.0

        return {
            "processed_events": total,
            "throughput": round(throughput, 3),
            "avg_latency_ms": round(avg_latency, 3),
            "p99_latency_ms": round(p99_latency, 3),
            "fraud_rate": round(fraud_rate, 4),
            "sla_budget_used": round(min(p99_latency / self.latency_budget_ms * 100, 100.0), 2),
            "sla_status": sla_status(p99_latency, self.latency_budget_ms),
        }
