"""Strategy catalog and rotation."""

from __future__ import annotations

import threading
from typing import Dict, Sequence, Tuple

from fraudstream.core.config import STRATEGY_ROTATION_INTERVAL
from fraudstream.ml.models import Strategy

DEFAULT_STRATEGIES: Tuple[Strategy, ...] = (
    Strategy("Balanced-Ensemble-v1", "1.2.0", ml_weight=0.6, rule_weight=0.4, description="Standard risk balancing."),
    Strategy("Strict-Geo-Fencing", "2.0.1", ml_weight=0.3, rule_weight=0.7, description="Aggressive impossible travel detection."),
    Strategy("High-Confidence-ML", "3.5.0", ml_weight=0.85, rule_weight=0.15, description="Heavy reliance on neural patterns."),
    Strategy("Retail-Aggressive", "1.0.4", ml_weight=0.5, rule_weight=0.5, description="Tuned for seasonal spending spikes."),
)


class StrategyRotation:
    """Cycles through a catalog, advancing every ``interval`` analysed transactions.

    ``interval <= 0`` disables automatic rotation; ``activate`` still works.
    """

    def __init__(self, strategies: Sequence[Strategy] = DEFAULT_STRATEGIES, interval: int = STRATEGY_ROTATION_INTERVAL) -> None:
        if not strategies:
            raise ValueError("at least one strategy is required")
        names = [s.name for s in strategies]
        if len(set(names)) != len(names):
            raise ValueError("strategy names must be unique")
        self.strategies: Tuple[Strategy, ...] = tuple(strategies)
        self.interval = interval
        self._by_name: Dict[str, Strategy] = {s.name: s for s in self.strategies}
        self._index = 0
        self._processed = 0
        self._lock = threading.Lock()

    def current(self) -> Strategy:
        with self._lock:
            return self.strategies[self._index]

    def get(self, name: str) -> Strategy:
        return self._by_name[name]

    def activate(self, name: str) -> Strategy:
        strategy = self._by_name[name]
        with self._lock:
            self._index = self.strategies.index(strategy)
        return strategy

    def tick(self) -> Strategy:
        """Count one analysed transaction and return the strategy now active."""
        with self._lock:
            self._processed += 1
            if self.interval > 0 and self._processed % self.interval == 0:
                self._index = (self._index + 1) % len(self.strategies)
            return self.strategies[self._index]

    @property
    def processed(self) -> int:
        return self._processed
