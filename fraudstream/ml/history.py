"""In-memory behavioural baseline per user."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from fraudstream.core.config import DEFAULT_AVG_TRANSACTION_VALUE, MAX_DEVICE_HISTORY
from fraudstream.ml.models import GeoPoint, Transaction, UserHistory


class HistoryStore:
    """Keyed cache of the latest known baseline for each user.

    Reads never insert; an entry only appears through ``update`` or ``seed``.
    Callers that read, score and write back must hold ``locked(user_id)`` for
    the whole sequence so concurrent transactions of one user do not lose
    updates. Locks are per user, so different users never contend.

    With ``velocity_window_ms`` set, the store also keeps the timestamps of the
    user's transactions inside that window and ``velocity_count`` reports how
    many fall inside it instead of the lifetime counter.
    """

    def __init__(
        self,
        velocity_window_ms: Optional[int] = None,
        max_devices: int = MAX_DEVICE_HISTORY,
        default_avg_value: float = DEFAULT_AVG_TRANSACTION_VALUE,
    ) -> None:
        self.velocity_window_ms = velocity_window_ms
        self.max_devices = max_devices
        self.default_avg_value = default_avg_value
        self._entries: Dict[str, UserHistory] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._entries

    def get(self, user_id: str) -> Optional[UserHistory]:
        return self._entries.get(user_id)

    def get_or_default(self, user_id: str) -> UserHistory:
        history = self._entries.get(user_id)
        if history is not None:
            return history
        return UserHistory(
            user_id=user_id,
            last_location=GeoPoint(lat=0.0, lng=0.0, timestamp=0),
            last_device_ids=(),
            avg_transaction_value=self.default_avg_value,
            recent_transaction_count=0,
        )

    def update(self, user_id: str, transaction: Transaction, prior: UserHistory) -> UserHistory:
        # Known devices keep their original position; only new ones are appended.
        devices = list(dict.fromkeys((*prior.last_device_ids, transaction.device.id)))

        recent_timestamps = ()
        if self.velocity_window_ms is not None:
            cutoff = transaction.timestamp - self.velocity_window_ms
            recent_timestamps = tuple(
                ts for ts in (*prior.recent_timestamps, transaction.timestamp) if ts > cutoff
            )

        updated = UserHistory(
            user_id=prior.user_id,
            last_location=GeoPoint(
                lat=transaction.location.lat,
                lng=transaction.location.lng,
                timestamp=transaction.timestamp,
            ),
            last_device_ids=tuple(devices[-self.max_devices:]),
            avg_transaction_value=prior.avg_transaction_value,
            recent_transaction_count=prior.recent_transaction_count + 1,
            recent_timestamps=recent_timestamps,
        )
        self._entries[user_id] = updated
        return updated

    def seed(self, history: UserHistory) -> None:
        self._entries[history.user_id] = history

    def velocity_count(self, history: UserHistory, at_ms: int) -> int:
        if self.velocity_window_ms is None:
            return history.recent_transaction_count
        cutoff = at_ms - self.velocity_window_ms
        return sum(1 for ts in history.recent_timestamps if cutoff < ts <= at_ms)

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[user_id] = lock
            return lock

    @contextmanager
    def locked(self, user_id: str) -> Iterator[None]:
        lock = self._lock_for(user_id)
        with lock:
            yield
