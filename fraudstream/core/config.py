"""Runtime configuration for the fraud scoring service."""

from __future__ import annotations

import os


def _split_csv(raw: str) -> list[str]:
    return [value.strip() for value in raw.split(",") if value.strip()]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


CORS_ALLOWLIST = _split_csv(os.getenv("CORS_ALLOWLIST", "http://localhost:3000,http://localhost:5173"))

RATE_LIMIT_ANALYZE = int(os.getenv("RATE_LIMIT_ANALYZE", "600"))

SENTRY_DSN = os.getenv("SENTRY_DSN", "")

# Decision thresholds on the blended 0-100 score
FRAUD_THRESHOLD_BLOCK = float(os.getenv("FRAUD_THRESHOLD_BLOCK", "85"))
FRAUD_THRESHOLD_REVIEW = float(os.getenv("FRAUD_THRESHOLD_REVIEW", "60"))

# Rules
IMPOSSIBLE_SPEED_KMH = float(os.getenv("IMPOSSIBLE_SPEED_KMH", "1000"))
MIN_TRAVEL_DISTANCE_KM = float(os.getenv("MIN_TRAVEL_DISTANCE_KM", "50"))
MIN_ELAPSED_HOURS = 0.01
VELOCITY_SPIKE_COUNT = int(os.getenv("VELOCITY_SPIKE_COUNT", "5"))
HIGH_VALUE_MULTIPLIER = float(os.getenv("HIGH_VALUE_MULTIPLIER", "10"))

RULE_WEIGHTS = {
    "IMPOSSIBLE_TRAVEL": 45,
    "VELOCITY_SPIKE": 25,
    "NEW_DEVICE": 20,
    "HIGH_VALUE": 30,
}

# Simulated model
INFERENCE_FAILURE_RATE = float(os.getenv("INFERENCE_FAILURE_RATE", "0.01"))
INFERENCE_TIMEOUT_MS = int(os.getenv("INFERENCE_TIMEOUT_MS", "50"))
INFERENCE_ENFORCE_TIMEOUT = _env_flag("INFERENCE_ENFORCE_TIMEOUT", "false")
ML_BASE_SCORE = 30.0
ML_CRYPTO_BONUS = 35.0
ML_HIGH_RISK_CITY_BONUS = 15.0
ML_HIGH_AMOUNT = 1000.0
ML_HIGH_AMOUNT_BONUS = 10.0
ML_JITTER_MAX = 25.0
HIGH_RISK_CITIES = frozenset(_split_csv(os.getenv("HIGH_RISK_CITIES", "Lagos,Moscow,Dubai")))

# User history
DEFAULT_AVG_TRANSACTION_VALUE = 50.0
MAX_DEVICE_HISTORY = 5
VELOCITY_WINDOW_MS = int(os.getenv("VELOCITY_WINDOW_MS", "60000"))
VELOCITY_WINDOWED = _env_flag("VELOCITY_WINDOWED", "false")

# Stream monitoring
LATENCY_BUDGET_MS = float(os.getenv("LATENCY_BUDGET_MS", "100"))
LATENCY_WARNING_RATIO = 0.8
MAX_STREAM_SIZE = int(os.getenv("MAX_STREAM_SIZE", "50"))
LATENCY_BUFFER_SIZE = int(os.getenv("LATENCY_BUFFER_SIZE", "50"))

STRATEGY_ROTATION_INTERVAL = int(os.getenv("STRATEGY_ROTATION_INTERVAL", "100"))

BATCH_MAX_WORKERS = int(os.getenv("BATCH_MAX_WORKERS", "4"))

SEED_DEMO_USERS = int(os.getenv("SEED_DEMO_USERS", "100"))
