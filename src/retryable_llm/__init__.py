"""
Retryable LLM: fallback and retry orchestration for language, embedding and image models.

Wraps a primary model with caller-defined retry rules:
- Fallback to alternate models on errors or undesirable results
- Per-model attempt budgets, delays and exponential backoff
- Fresh timeouts for retried calls
- Streaming retries while no content has been forwarded
- Sticky fallback models with configurable reset policies

Entry point: retryable_llm.retryable_model.create_retryable
"""

__version__ = "0.1.0"
