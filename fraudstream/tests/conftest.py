# ruff: noqa: E402
import random
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fraudstream.api.main import analyze_limiter, app, build_services, get_services
from fraudstream.ml.history import HistoryStore
from fraudstream.ml.inference import FaultSource, InferenceUnavailable
from fraudstream.ml.models import Device, GeoPoint, Location, Strategy, Transaction, UserHistory

BASE_TS = 1_700_000_000_000

NEW_YORK = Location(lat=40.7128, lng=-74.0060, city="New York", country="USA")
TOKYO = Location(lat=35.6895, lng=139.6917, city="Tokyo", country="Japan")
LAGOS = Location(lat=6.5244, lng=3.3792, city="Lagos", country="Nigeria")


class ScriptedFaultSource(FaultSource):
    def __init__(self, fail: bool = False, jitter: float = 0.0, pick_index: int = 0) -> None:
        super().__init__(random.Random(0))
        self.fail = fail
        self.fixed_jitter = jitter
        self.pick_index = pick_index

    def fails(self, rate: float) -> bool:
        return self.fail

    def jitter(self, upper: float) -> float:
        return min(self.fixed_jitter, upper)

    def pick(self, options):
        return options[self.pick_index]


class FixedInference:
    def __init__(self, score: float = 0.0, fail: bool = False) -> None:
        self.score = score
        self.fail = fail
        self.calls = 0

    def predict(self, transaction, history) -> float:
        self.calls += 1
        if self.fail:
            raise InferenceUnavailable("forced")
        return self.score


@pytest.fixture()
def fault_source():
    return ScriptedFaultSource()


@pytest.fixture()
def make_fault_source():
    return ScriptedFaultSource


@pytest.fixture()
def make_inference():
    return FixedInference


@pytest.fixture()
def store():
    return HistoryStore()


@pytest.fixture()
def make_tx():
    counter = iter(range(1, 100_000))

    def _make(
        user_id: str = "user_a",
        amount: float = 30.0,
        timestamp: int = BASE_TS,
        location: Location = NEW_YORK,
        device_id: str = "dev_known",
        merchant: str = "Starbucks",
        tx_id: str = None,
    ) -> Transaction:
        return Transaction(
            id=tx_id or f"tx_{next(counter)}",
            timestamp=timestamp,
            user_id=user_id,
            amount=amount,
            currency="USD",
            merchant=merchant,
            location=location,
            device=Device(id=device_id, type="Mobile", os="iOS", ip="10.0.0.1"),
        )

    return _make


@pytest.fixture()
def make_history():
    def _make(
        user_id: str = "user_a",
        location: Location = NEW_YORK,
        timestamp: int = BASE_TS,
        devices=("dev_known",),
        avg: float = 50.0,
        count: int = 0,
    ) -> UserHistory:
        return UserHistory(
            user_id=user_id,
            last_location=GeoPoint(lat=location.lat, lng=location.lng, timestamp=timestamp),
            last_device_ids=tuple(devices),
            avg_transaction_value=avg,
            recent_transaction_count=count,
        )

    return _make


@pytest.fixture()
def balanced():
    return Strategy("Balanced-Ensemble-v1", "1.2.0", ml_weight=0.6, rule_weight=0.4)


@pytest.fixture()
def services(fault_source):
    return build_services(seed_count=0, fault_source=fault_source)


@pytest.fixture()
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    analyze_limiter.reset()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    analyze_limiter.reset()


def tx_payload(
    tx_id: str,
    user_id: str = "user_api",
    amount: float = 30.0,
    timestamp: int = BASE_TS,
    location: Location = NEW_YORK,
    device_id: str = "dev_api",
    merchant: str = "Starbucks",
) -> dict:
    return {
        "id": tx_id,
        "timestamp": timestamp,
        "userId": user_id,
        "amount": amount,
        "currency": "USD",
        "merchant": merchant,
        "location": {
            "lat": location.lat,
            "lng": location.lng,
            "city": location.city,
            "country": location.country,
        },
        "device": {"id": device_id, "type": "Mobile", "os": "iOS", "ip": "10.0.0.1"},
    }


@pytest.fixture()
def payload():
    return tx_payload
