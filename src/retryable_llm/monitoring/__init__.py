"""Prometheus metrics for the retryable model layer."""

from retryable_llm.monitoring.metrics import (
    llm_latency_seconds,
    llm_tokens_total,
    model_attempts_total,
    retries_total,
    retry_exhausted_total,
)

__all__ = [
    "model_attempts_total",
    "retries_total",
    "retry_exhausted_total",
    "llm_latency_seconds",
    "llm_tokens_total",
]
