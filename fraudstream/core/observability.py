"""Observability hooks (Sentry, Prometheus)."""

from __future__ import annotations

import os

import sentry_sdk
from prometheus_client import Counter, Histogram
from sentry_sdk.integrations.fastapi import FastApiIntegration

from fraudstream.core import config

ANALYSES_TOTAL = Counter(
    "fraudstream_analyses_total",
    "Transactions analysed, by decision and strategy.",
    ["decision", "strategy"],
)
INFERENCE_FALLBACKS_TOTAL = Counter(
    "fraudstream_inference_fallbacks_total",
    "Analyses that fell back to the rule score because the model was unavailable.",
)
RULE_FLAGS_TOTAL = Counter(
    "fraudstream_rule_flags_total",
    "Rule flags raised.",
    ["flag"],
)
ANALYSIS_LATENCY_SECONDS = Histogram(
    "fraudstream_analysis_latency_seconds",
    "Wall-clock time spent in a single analysis.",
    buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25),
)


def init_sentry() -> None:
    if not config.SENTRY_DSN:
        return
    sentry_sdk.init(
        dsn=config.SENTRY_DSN,
        integrations=[FastApiIntegration()],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
    )
