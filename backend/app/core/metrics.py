############################################################
#
# mathchat - Math-focused Chat Service
#
# metrics.py: Prometheus counters for the chat core
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Prometheus metrics."""

from prometheus_client import Counter, Histogram

MESSAGES_TOTAL = Counter(
    "mathchat_messages_total",
    "Turns persisted, by backend",
    ["model_type"],
)
DEGRADED_REPLIES = Counter(
    "mathchat_degraded_replies_total",
    "Placeholder replies served because a local backend was unavailable",
    ["model_type", "kind"],
)
PROVIDER_FAILURES = Counter(
    "mathchat_provider_failures_total",
    "Hosted backend calls that failed",
)
PERSISTENCE_FAILURES = Counter(
    "mathchat_persistence_failures_total",
    "Generated replies that could not be stored",
)
BACKEND_LATENCY = Histogram(
    "mathchat_backend_latency_seconds",
    "Time spent waiting on a backend",
    ["model_type"],
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120, 240),
)
