import math
import random
import time

import pytest
from conftest import BASE_TS, LAGOS, NEW_YORK, TOKYO

from fraudstream.ml.engine import AMBIGUITY_SIGNALS, ScoringEngine, blend, haversine_km
from fraudstream.ml.history import HistoryStore
from fraudstream.ml.inference import FaultSource
from fraudstream.ml.models import Decision, Location, RiskFlag, Strategy, TransactionValidationError

RULES_ONLY = Strategy("rules-only", "test", ml_weight=0.0, rule_weight=1.0)


@pytest.fixture()
def engine_with(store, make_inference, fault_source):
    def _build(ml_score: float = 0.0, fail: bool = False) -> ScoringEngine:
        return ScoringEngine(store=store, inference=make_inference(ml_score, fail), fault_source=fault_source)

    return _build


@pytest.mark.parametrize(
    "a, b",
    [
        ((40.7128, -74.0060), (35.6895, 139.6917)),
        ((51.5074, -0.1278), (-33.8688, 151.2093)),
        ((0.0, 0.0), (0.0, 179.9)),
        ((89.9, 10.0), (-89.9, -170.0)),
    ],
)
def test_distance_is_symmetric(a, b):
    assert haversine_km(*a, *b) == pytest.approx(haversine_km(*b, *a))


def test_distance_between_new_york_and_tokyo():
    distance = haversine_km(NEW_YORK.lat, NEW_YORK.lng, TOKYO.lat, TOKYO.lng)
    assert distance == pytest.approx(10_850, rel=0.01)
    assert haversine_km(NEW_YORK.lat, NEW_YORK.lng, NEW_YORK.lat, NEW_YORK.lng) == 0


@pytest.mark.parametrize(
    "final_score, expected",
    [
        (100, Decision.BLOCK),
        (85, Decision.BLOCK),
        (84.999, Decision.MANUAL_REVIEW),
        (60, Decision.MANUAL_REVIEW),
        (59.999, Decision.APPROVE),
        (0, Decision.APPROVE),
    ],
)
def test_decision_thresholds_are_exact(final_score, expected):
    assert ScoringEngine().decide(final_score) is expected


def test_custom_thresholds():
    engine = ScoringEngine(block_threshold=70, review_threshold=40)
    assert engine.decide(70) is Decision.BLOCK
    assert engine.decide(40) is Decision.MANUAL_REVIEW
    assert engine.decide(39.9) is Decision.APPROVE


def test_review_threshold_above_block_is_rejected():
    with pytest.raises(ValueError):
        ScoringEngine(block_threshold=50, review_threshold=60)


def test_blend_uses_strategy_weights(balanced):
    final = blend(90, 10, balanced, is_fallback=False)
    assert final == pytest.approx(42)
    assert ScoringEngine().decide(final) is Decision.APPROVE


def test_blend_fallback_ignores_weights(balanced):
    assert blend(90, 10, balanced, is_fallback=True) == 90


def test_new_user_small_amount_has_no_high_value_flag(engine_with, make_tx):
    engine = engine_with(ml_score=0)

    analysis = engine.analyze(make_tx(user_id="fresh", amount=30), RULES_ONLY)

    assert RiskFlag.HIGH_VALUE not in analysis.flags
    assert RiskFlag.IMPOSSIBLE_TRAVEL not in analysis.flags
    assert analysis.flags == (RiskFlag.NEW_DEVICE,)
    assert analysis.rule_output == 20


def test_impossible_travel_new_york_to_tokyo_in_one_second(engine_with, store, make_tx, make_history):
    store.seed(make_history(user_id="traveller", location=NEW_YORK, timestamp=BASE_TS))
    engine = engine_with(ml_score=0)

    tx = make_tx(user_id="traveller", location=TOKYO, timestamp=BASE_TS + 1000)
    analysis = engine.analyze(tx, RULES_ONLY)

    assert analysis.flags == (RiskFlag.IMPOSSIBLE_TRAVEL,)
    assert analysis.rule_output == 45


def test_short_hop_is_not_impossible_travel(engine_with, store, make_tx, make_history):
    store.seed(make_history(user_id="local", location=NEW_YORK, timestamp=BASE_TS))
    engine = engine_with()
    nearby = Location(lat=NEW_YORK.lat + 0.1, lng=NEW_YORK.lng, city="New York", country="USA")

    analysis = engine.analyze(make_tx(user_id="local", location=nearby, timestamp=BASE_TS + 1000), RULES_ONLY)

    assert RiskFlag.IMPOSSIBLE_TRAVEL not in analysis.flags


def test_slow_long_trip_is_not_impossible_travel(engine_with, store, make_tx, make_history):
    store.seed(make_history(user_id="flyer", location=NEW_YORK, timestamp=BASE_TS))
    engine = engine_with()
    fourteen_hours = 14 * 3_600_000

    analysis = engine.analyze(make_tx(user_id="flyer", location=TOKYO, timestamp=BASE_TS + fourteen_hours), RULES_ONLY)

    assert RiskFlag.IMPOSSIBLE_TRAVEL not in analysis.flags


@pytest.mark.parametrize("count, fires", [(5, False), (6, True), (50, True)])
def test_velocity_spike_above_five(engine_with, store, make_tx, make_history, count, fires):
    store.seed(make_history(user_id="busy", count=count))
    engine = engine_with()

    analysis = engine.analyze(make_tx(user_id="busy"), RULES_ONLY)

    assert (RiskFlag.VELOCITY_SPIKE in analysis.flags) is fires


def test_high_value_above_ten_times_average(engine_with, store, make_tx, make_history):
    store.seed(make_history(user_id="spender", avg=100.0))
    engine = engine_with()

    assert RiskFlag.HIGH_VALUE not in engine.analyze(make_tx(user_id="spender", amount=1000), RULES_ONLY).flags
    assert RiskFlag.HIGH_VALUE in engine.analyze(make_tx(user_id="spender", amount=1000.01), RULES_ONLY).flags


def test_rules_only_strategy_ignores_ml_score(engine_with, store, make_tx, make_history):
    store.seed(make_history(user_id="w", count=6))
    engine = engine_with(ml_score=77)

    analysis = engine.analyze(make_tx(user_id="w", device_id="dev_other"), RULES_ONLY)

    assert analysis.is_fallback is False
    assert analysis.ml_output == 77
    assert analysis.score == analysis.rule_output == 45


def test_end_to_end_blend_scenario(engine_with, store, make_tx, make_history, balanced):
    store.seed(make_history(user_id="mixed", location=NEW_YORK, timestamp=BASE_TS, count=6))
    engine = engine_with(ml_score=10)

    tx = make_tx(user_id="mixed", location=TOKYO, timestamp=BASE_TS + 1000, device_id="dev_new")
    analysis = engine.analyze(tx, balanced)

    assert set(analysis.flags) == {RiskFlag.IMPOSSIBLE_TRAVEL, RiskFlag.VELOCITY_SPIKE, RiskFlag.NEW_DEVICE}
    assert analysis.rule_output == 90
    assert analysis.ml_output == 10
    assert analysis.score == 42
    assert analysis.decision is Decision.APPROVE
    assert analysis.strategy_name == "Balanced-Ensemble-v1"


def test_fallback_substitutes_rule_score(store, make_tx, make_history, make_fault_source):
    store.seed(make_history(user_id="down", location=NEW_YORK, timestamp=BASE_TS, count=6))
    engine = ScoringEngine(store=store, fault_source=make_fault_source(fail=True))
    ignored_weights = Strategy("zero", "test", ml_weight=0.0, rule_weight=0.0)

    tx = make_tx(user_id="down", location=TOKYO, timestamp=BASE_TS + 1000, device_id="dev_new")
    analysis = engine.analyze(tx, ignored_weights)

    assert analysis.is_fallback is True
    assert analysis.ml_output == analysis.rule_output == 90
    assert analysis.score == 90
    assert analysis.decision is Decision.BLOCK


def test_score_is_clamped_to_100(engine_with, store, make_tx, make_history):
    store.seed(make_history(user_id="worst", location=NEW_YORK, timestamp=BASE_TS, avg=20.0, count=10))
    engine = engine_with(ml_score=100)
    heavy = Strategy("heavy", "test", ml_weight=1.0, rule_weight=1.0)

    tx = make_tx(user_id="worst", location=TOKYO, timestamp=BASE_TS + 1000, device_id="dev_new", amount=5000)
    analysis = engine.analyze(tx, heavy)

    assert analysis.rule_output == 120
    assert analysis.score == 100
    assert analysis.decision is Decision.BLOCK


def test_score_stays_in_range_for_random_traffic(make_tx, balanced):
    rng = random.Random(7)
    engine = ScoringEngine(fault_source=FaultSource(random.Random(11)))
    cities = [NEW_YORK, TOKYO, LAGOS]

    for n in range(300):
        tx = make_tx(
            user_id=f"user_{rng.randint(1, 10)}",
            amount=round(rng.uniform(1, 6000), 2),
            timestamp=BASE_TS + n * rng.randint(1, 120_000),
            location=rng.choice(cities),
            device_id=f"dev_{rng.randint(1, 8)}",
            merchant=rng.choice(["Binance Crypto", "Amazon", "Uber"]),
        )
        analysis = engine.analyze(tx, balanced)
        assert 0 <= analysis.score <= 100
        assert analysis.processing_time_ms >= 0


def test_history_is_updated_regardless_of_decision(engine_with, store, make_tx, make_history):
    store.seed(make_history(user_id="blocked", location=NEW_YORK, timestamp=BASE_TS, count=6))
    engine = engine_with(ml_score=100)

    tx = make_tx(user_id="blocked", location=TOKYO, timestamp=BASE_TS + 1000, device_id="dev_new", amount=900)
    analysis = engine.analyze(tx, RULES_ONLY)

    assert analysis.decision is Decision.BLOCK
    history = store.get("blocked")
    assert history.recent_transaction_count == 7
    assert history.last_location.lat == TOKYO.lat
    assert history.last_device_ids == ("dev_known", "dev_new")


def test_manual_review_carries_ambiguity_signal(store, make_tx, make_inference, make_fault_source, balanced):
    engine = ScoringEngine(store=store, inference=make_inference(100), fault_source=make_fault_source(pick_index=3))

    # rule 20 (new device) * 0.4 + 100 * 0.6 = 68
    analysis = engine.analyze(make_tx(user_id="grey"), balanced)

    assert analysis.score == 68
    assert analysis.decision is Decision.MANUAL_REVIEW
    assert analysis.ambiguity_signal == AMBIGUITY_SIGNALS[3]


def test_approve_has_no_ambiguity_signal(engine_with, make_tx):
    analysis = engine_with(ml_score=0).analyze(make_tx(user_id="calm"), RULES_ONLY)
    assert analysis.decision is Decision.APPROVE
    assert analysis.ambiguity_signal is None


@pytest.mark.parametrize(
    "overrides, field_name",
    [
        ({"amount": -5.0}, "amount"),
        ({"amount": 0.0}, "amount"),
        ({"amount": math.inf}, "amount"),
        ({"user_id": ""}, "user_id"),
        ({"device_id": " "}, "device.id"),
        ({"location": Location(lat=math.nan, lng=0.0)}, "location.lat"),
        ({"location": Location(lat=0.0, lng=181.0)}, "location.lng"),
        ({"timestamp": -1}, "timestamp"),
    ],
)
def test_malformed_transactions_are_rejected(engine_with, store, make_tx, overrides, field_name):
    engine = engine_with()

    with pytest.raises(TransactionValidationError) as excinfo:
        engine.analyze(make_tx(**overrides), RULES_ONLY)

    assert excinfo.value.field_name == field_name
    assert len(store) == 0


def test_analyze_many_keeps_order_and_counts_every_transaction(engine_with, store, make_tx, balanced):
    engine = engine_with(ml_score=0)
    transactions = [make_tx(user_id="batch", tx_id=f"b{n}", timestamp=BASE_TS + n) for n in range(25)]

    analyses = engine.analyze_many(transactions, balanced, max_workers=6)

    assert [a.transaction_id for a in analyses] == [f"b{n}" for n in range(25)]
    assert store.get("batch").recent_transaction_count == 25


def test_analyze_many_empty_batch():
    assert ScoringEngine().analyze_many([], RULES_ONLY) == []


class SleepyModel:
    def __init__(self, delay_s: float = 0.002, score: float = 0.0) -> None:
        self.delay_s = delay_s
        self.score = score

    def predict(self, transaction, history) -> float:
        time.sleep(self.delay_s)
        return self.score


def test_analyze_many_scores_each_user_in_input_order(make_tx, fault_source):
    transactions = [make_tx(user_id="serial", tx_id=f"s{n}", timestamp=BASE_TS + n * 1000) for n in range(12)]
    transactions += [make_tx(user_id=f"other_{n}", tx_id=f"o{n}") for n in range(4)]

    for _ in range(5):
        store = HistoryStore()
        engine = ScoringEngine(store=store, inference=SleepyModel(), fault_source=fault_source)
        engine.analyze_many(transactions, RULES_ONLY, max_workers=4)

        history = store.get("serial")
        assert history.last_location.timestamp == BASE_TS + 11_000
        assert history.recent_transaction_count == 12


def test_analyze_many_flags_travel_on_the_later_transaction(store, make_tx, fault_source):
    engine = ScoringEngine(store=store, inference=SleepyModel(), fault_source=fault_source)
    batch = [
        make_tx(user_id="flyer", tx_id="ny", location=NEW_YORK, timestamp=BASE_TS),
        make_tx(user_id="flyer", tx_id="tokyo", location=TOKYO, timestamp=BASE_TS + 1000),
        make_tx(user_id="bystander", tx_id="calm"),
    ]

    ny, tokyo, calm = engine.analyze_many(batch, RULES_ONLY, max_workers=4)

    assert RiskFlag.IMPOSSIBLE_TRAVEL not in ny.flags
    assert RiskFlag.IMPOSSIBLE_TRAVEL in tokyo.flags
    assert calm.transaction_id == "calm"
    assert store.get("flyer").last_location.lat == TOKYO.lat


def test_windowed_velocity_spike_clears_once_window_passes(make_inference, fault_source, make_tx):
    store = HistoryStore(velocity_window_ms=60_000)
    engine = ScoringEngine(store=store, inference=make_inference(0.0), fault_source=fault_source)
    for n in range(6):
        engine.analyze(make_tx(user_id="burst", timestamp=BASE_TS + n * 1000), RULES_ONLY)

    spiking = engine.analyze(make_tx(user_id="burst", timestamp=BASE_TS + 6000), RULES_ONLY)
    quiet = engine.analyze(make_tx(user_id="burst", timestamp=BASE_TS + 67_000), RULES_ONLY)

    assert RiskFlag.VELOCITY_SPIKE in spiking.flags
    assert RiskFlag.VELOCITY_SPIKE not in quiet.flags
    assert store.get("burst").recent_transaction_count == 8


def test_independent_engines_do_not_share_history(make_tx):
    first = ScoringEngine(store=HistoryStore())
    second = ScoringEngine(store=HistoryStore())

    first.analyze(make_tx(user_id="solo"), RULES_ONLY)

    assert first.store.get("solo") is not None
    assert second.store.get("solo") is None
