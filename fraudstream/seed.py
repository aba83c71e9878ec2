"""Seed known demo users into a history store."""

from __future__ import annotations

import logging
import random
import time
from typing import Optional

from fraudstream.core import config
from fraudstream.ml.history import HistoryStore
from fraudstream.ml.models import GeoPoint, UserHistory

logger = logging.getLogger("fraudstream.seed")

HOME_LAT = 40.7128
HOME_LNG = -74.0060


def seed_users(
    store: HistoryStore,
    count: int = config.SEED_DEMO_USERS,
    rng: Optional[random.Random] = None,
    now_ms: Optional[int] = None,
) -> int:
    """Give ``user_1``..``user_<count>`` a New York baseline seen an hour ago.

    Each user knows one device (``dev_<n>``) and gets a random average
    transaction value between 20 and 220. Users already in the store are left
    alone. Returns the number of users inserted.
    """
    rng = rng or random.Random()
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    inserted = 0
    for idx in range(1, count + 1):
        user_id = f"user_{idx}"
        if user_id in store:
            continue
        store.seed(
            UserHistory(
                user_id=user_id,
                last_location=GeoPoint(lat=HOME_LAT, lng=HOME_LNG, timestamp=now_ms - 3_600_000),
                last_device_ids=(f"dev_{idx}",),
                avg_transaction_value=rng.random() * 200 + 20,
                recent_transaction_count=0,
            )
        )
        inserted += 1
    logger.info("Seeded %d demo users", inserted)
    return inserted
