"""Prometheus metrics for the retryable model layer.

Exported through the default prometheus_client registry; the host
application decides how to expose them. Alerting suggestions:
- retries_total (high retry rate indicates provider instability)
- retry_exhausted_total (every exhaustion surfaced an error to a caller)
"""

from prometheus_client import Counter, Histogram

# === Attempt Metrics ===

model_attempts_total = Counter(
    "model_attempts_total",
    "Model invocations made by the retry layer, by outcome",
    ["model", "outcome"],
)
"""
Every invocation recorded in an attempt ledger.

Labels:
- model: Model identity key (provider/model_id)
- outcome: success, error, flagged (successful result a rule asked to retry)
"""

retries_total = Counter(
    "retries_total",
    "Retries issued, by the model that failed and the model tried next",
    ["from_model", "to_model"],
)
"""
Retries (model switches or same-model retries).

Alert thresholds:
- WARN: retry rate > 10% of total requests
- CRITICAL: retry rate > 30% of total requests
"""

retry_exhausted_total = Counter(
    "retry_exhausted_total",
    "Requests that failed after every applicable retry",
    ["model"],
)
"""
Exhausted requests (RetryError raised or emitted), labelled by primary model.
"""

# === LLM Performance Metrics ===

llm_latency_seconds = Histogram(
    "llm_latency_seconds",
    "LLM generation latency in seconds",
    ["model", "success"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)
"""
Adapter-level latency of a single provider call.

Labels:
- model: Model name (e.g., qwen2.5:7b)
- success: true / false
"""

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Total tokens consumed",
    ["model", "token_type"],
)
"""
Token usage reported by the provider.

Labels:
- token_type: prompt, completion
"""
