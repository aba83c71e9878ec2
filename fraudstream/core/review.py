"""In-memory manual review queue for grey-area transactions."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import List, Optional

from fraudstream.ml.models import Decision, RiskAnalysis, Transaction

HUMAN_DECISIONS = {Decision.APPROVE, Decision.BLOCK}


def _now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


@dataclass(frozen=True)
class ReviewItem:
    transaction: Transaction
    analysis: RiskAnalysis
    enqueued_at: str
    status: str = "PENDING"
    final_decision: Optional[Decision] = None
    reviewer: Optional[str] = None
    notes: Optional[str] = None
    resolved_at: Optional[str] = None


class ReviewQueue:
    def __init__(self) -> None:
        self._items: "OrderedDict[str, ReviewItem]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._items)

    def enqueue(self, transaction: Transaction, analysis: RiskAnalysis) -> ReviewItem:
        item = ReviewItem(transaction=transaction, analysis=analysis, enqueued_at=_now())
        with self._lock:
            self._items[transaction.id] = item
        return item

    def pending(self) -> List[ReviewItem]:
        with self._lock:
            return list(self._items.values())

    def get(self, transaction_id: str) -> Optional[ReviewItem]:
        with self._lock:
            return self._items.get(transaction_id)

    def resolve(
        self,
        transaction_id: str,
        decision: Decision,
        notes: Optional[str] = None,
        reviewer: Optional[str] = None,
    ) -> ReviewItem:
        if decision not in HUMAN_DECISIONS:
            raise ValueError(f"Reviewers can only APPROVE or BLOCK, got {decision.value}")
        with self._lock:
            item = self._items.pop(transaction_id, None)
        if item is None:
            raise KeyError(transaction_id)
        return ReviewItem(
            transaction=item.transaction,
            analysis=item.analysis,
            enqueued_at=item.enqueued_at,
            status="RESOLVED",
            final_decision=decision,
            reviewer=reviewer,
            notes=notes,
            resolved_at=_now(),
        )
