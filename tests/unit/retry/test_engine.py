"""
Unit tests for RetryEngine and the generate path of RetryableLanguageModel.

Covers fallback selection, max_attempts accounting, error aggregation,
result-triggered retries, hooks and option overrides.
"""

import pytest

from fakes import FakeModel, create_result
from retryable_llm.exceptions import ModelCallError, RetryError
from retryable_llm.models.enums import FinishReason
from retryable_llm.models.llm_models import GenerateOptions
from retryable_llm.retry.engine import RetryEngine, merge_call_options
from retryable_llm.retry.rules import content_filter_triggered, finish_reason
from retryable_llm.retry.strategies import Retry
from retryable_llm.retryable_model import RetryableLanguageModel, create_retryable


def overloaded_error() -> ModelCallError:
    return ModelCallError("Service overloaded", status_code=529)


def bad_request_error() -> ModelCallError:
    return ModelCallError("Bad request", status_code=400)


# ============================================================================
# Success Scenarios
# ============================================================================


@pytest.mark.asyncio
async def test_primary_success_invokes_once(options):
    """Test an acceptable primary result needs exactly one invocation."""
    primary = FakeModel("primary", generate=[create_result("primary answer")])
    fallback = FakeModel("fallback")
    rule_calls = []

    def rule(context):
        rule_calls.append(context)
        return None

    model = create_retryable(model=primary, retries=[fallback, rule])
    result = await model.generate(options)

    assert result.text == "primary answer"
    assert primary.generate.await_count == 1
    assert fallback.generate.await_count == 0
    # The result is offered to the rule, which declines it
    assert len(rule_calls) == 1


@pytest.mark.asyncio
async def test_fallback_after_matching_rule(options):
    """Test the model selected by a matching rule is invoked next."""
    primary = FakeModel("primary", generate=[overloaded_error()])
    fallback = FakeModel("fallback", generate=[create_result("from fallback")])

    def on_overloaded(context):
        if getattr(context.current, "error", None) is not None:
            if context.current.error.status_code == 529:
                return Retry(model=fallback)
        return None

    model = create_retryable(model=primary, retries=[on_overloaded])
    result = await model.generate(options)

    assert result.text == "from fallback"
    assert primary.generate.await_count == 1
    assert fallback.generate.await_count == 1


@pytest.mark.asyncio
async def test_error_chain_reaches_last_fallback(options):
    """Test primary and fallback A fail, fallback B answers."""
    primary = FakeModel("primary", generate=[overloaded_error()])
    fallback_a = FakeModel("fallback-a", generate=[bad_request_error()])
    fallback_b = FakeModel("fallback-b", generate=[create_result("Hello, world!")])

    model = create_retryable(model=primary, retries=[fallback_a, fallback_b])
    result = await model.generate(options)

    assert result.text == "Hello, world!"
    assert primary.generate.await_count == 1
    assert fallback_a.generate.await_count == 1
    assert fallback_b.generate.await_count == 1


@pytest.mark.asyncio
async def test_async_rule_is_awaited(options):
    """Test rules may be coroutine functions."""
    primary = FakeModel("primary", generate=[overloaded_error()])
    fallback = FakeModel("fallback", generate=[create_result("async")])

    async def rule(context):
        return Retry(model=fallback)

    model = create_retryable(model=primary, retries=[rule])
    result = await model.generate(options)

    assert result.text == "async"


# ============================================================================
# Attempt Accounting
# ============================================================================


@pytest.mark.asyncio
async def test_max_attempts_limits_invocations(options):
    """Test max_attempts=N permits exactly N invocations of a model."""
    primary = FakeModel("primary", generate=[overloaded_error()])
    fallback = FakeModel("fallback", generate=[bad_request_error()] * 5)

    retry = Retry(model=fallback, max_attempts=3)
    model = create_retryable(model=primary, retries=[retry, retry, fallback])

    with pytest.raises(RetryError):
        await model.generate(options)

    assert fallback.generate.await_count == 3


@pytest.mark.asyncio
async def test_max_attempts_counts_primary_identity(options):
    """Test retrying the primary itself counts its first attempt."""
    primary = FakeModel(
        "primary",
        generate=[overloaded_error(), overloaded_error(), create_result("third time")],
    )

    model = create_retryable(model=primary, retries=[Retry(model=primary, max_attempts=3)])
    result = await model.generate(options)

    assert result.text == "third time"
    assert primary.generate.await_count == 3


@pytest.mark.asyncio
async def test_identity_shared_between_instances(options):
    """Test two handles to the same provider model share one budget."""
    primary = FakeModel("primary", generate=[overloaded_error()])
    handle_a = FakeModel("shared", generate=[bad_request_error()])
    handle_b = FakeModel("shared", generate=[create_result("never")])

    model = create_retryable(model=primary, retries=[handle_a, handle_b])

    with pytest.raises(RetryError):
        await model.generate(options)

    assert handle_b.generate.await_count == 0


# ============================================================================
# Exhaustion
# ============================================================================


@pytest.mark.asyncio
async def test_first_attempt_error_is_unwrapped(options):
    """Test a failing primary with no matching rule raises the original error."""
    error = bad_request_error()
    primary = FakeModel("primary", generate=[error])

    model = create_retryable(model=primary, retries=[lambda context: None])

    with pytest.raises(ModelCallError) as exc_info:
        await model.generate(options)

    assert exc_info.value is error


@pytest.mark.asyncio
async def test_exhaustion_aggregates_errors_in_order(options):
    """Test exhaustion after K attempts carries K errors in attempt order."""
    errors = [overloaded_error(), bad_request_error(), ModelCallError("boom", status_code=500)]
    primary = FakeModel("primary", generate=[errors[0]])
    fallback_a = FakeModel("fallback-a", generate=[errors[1]])
    fallback_b = FakeModel("fallback-b", generate=[errors[2]])

    model = create_retryable(model=primary, retries=[fallback_a, fallback_b])

    with pytest.raises(RetryError) as exc_info:
        await model.generate(options)

    retry_error = exc_info.value
    assert retry_error.reason == "exhausted"
    assert retry_error.errors == errors
    assert retry_error.last_error is errors[2]


@pytest.mark.asyncio
async def test_exhaustion_includes_flagged_results(options):
    """Test flagged results appear in RetryError.errors next to errors."""
    filtered = create_result("", FinishReason.CONTENT_FILTER)
    error = bad_request_error()
    primary = FakeModel("primary", generate=[filtered])
    fallback = FakeModel("fallback", generate=[error])

    model = create_retryable(model=primary, retries=[content_filter_triggered(fallback)])

    with pytest.raises(RetryError) as exc_info:
        await model.generate(options)

    assert exc_info.value.errors == [filtered, error]


# ============================================================================
# Result-Triggered Retries
# ============================================================================


@pytest.mark.asyncio
async def test_result_retry_only_offered_to_rules(options):
    """Test plain models and static descriptors never retry a successful result."""
    primary = FakeModel("primary", generate=[create_result("", FinishReason.CONTENT_FILTER)])
    plain = FakeModel("plain", generate=[create_result("plain")])
    static = FakeModel("static", generate=[create_result("static")])
    ruled = FakeModel("ruled", generate=[create_result("ruled")])

    model = create_retryable(
        model=primary,
        retries=[plain, Retry(model=static), content_filter_triggered(ruled)],
    )
    result = await model.generate(options)

    assert result.text == "ruled"
    assert plain.generate.await_count == 0
    assert static.generate.await_count == 0


@pytest.mark.asyncio
async def test_unflagged_result_is_returned_as_is(options):
    """Test a result no rule flags is returned unchanged."""
    original = create_result("fine", FinishReason.LENGTH)
    primary = FakeModel("primary", generate=[original])
    fallback = FakeModel("fallback")

    model = create_retryable(
        model=primary, retries=[finish_reason(fallback, [FinishReason.CONTENT_FILTER])]
    )
    result = await model.generate(options)

    assert result is original
    assert fallback.generate.await_count == 0


# ============================================================================
# Hooks
# ============================================================================


@pytest.mark.asyncio
async def test_on_error_runs_before_on_retry(options):
    """Test on_error fires for each error and on_retry strictly after it."""
    primary = FakeModel("primary", generate=[overloaded_error()])
    fallback = FakeModel("fallback", generate=[create_result()])
    events = []

    model = create_retryable(
        model=primary,
        retries=[fallback],
        on_error=lambda context: events.append(("error", context.current.model.model_id)),
        on_retry=lambda context: events.append(("retry", context.current.model.model_id)),
    )
    await model.generate(options)

    assert events == [("error", "primary"), ("retry", "fallback")]


@pytest.mark.asyncio
async def test_on_error_not_called_for_flagged_results(options):
    """Test result attempts trigger on_retry but not on_error."""
    primary = FakeModel("primary", generate=[create_result("", FinishReason.CONTENT_FILTER)])
    fallback = FakeModel("fallback", generate=[create_result()])
    errors, retries = [], []

    model = create_retryable(
        model=primary,
        retries=[content_filter_triggered(fallback)],
        on_error=errors.append,
        on_retry=retries.append,
    )
    await model.generate(options)

    assert errors == []
    assert len(retries) == 1
    assert retries[0].current.kind == "result"
    assert len(retries[0].attempts) == 1


# ============================================================================
# Call Options
# ============================================================================


@pytest.mark.asyncio
async def test_retry_options_override_call_options(options):
    """Test Retry.options and provider_options reach the retried call only."""
    primary = FakeModel("primary", generate=[overloaded_error()])
    fallback = FakeModel("fallback", generate=[create_result()])

    retry = Retry(
        model=fallback,
        options={"temperature": 0.0, "prompt": "Shorter prompt"},
        provider_options={"ollama": {"keep_alive": "5m"}},
    )
    model = create_retryable(model=primary, retries=[retry])
    await model.generate(options)

    primary_options = primary.generate.await_args.args[0]
    fallback_options = fallback.generate.await_args.args[0]

    assert primary_options.prompt == "Say hello"
    assert fallback_options.prompt == "Shorter prompt"
    assert fallback_options.temperature == 0.0
    assert fallback_options.provider_options == {"ollama": {"keep_alive": "5m"}}


def test_merge_call_options_rejects_unknown_fields():
    """Test overrides naming unknown fields raise ValueError."""
    retry = Retry(model=FakeModel("fallback"), options={"not_a_field": 1})

    with pytest.raises(ValueError, match="not_a_field"):
        merge_call_options(GenerateOptions(prompt="x"), retry)


def test_merge_call_options_without_retry_is_identity():
    """Test the first attempt uses the caller's options object unchanged."""
    base = GenerateOptions(prompt="x")

    assert merge_call_options(base, None) is base


def test_merge_call_options_prefers_inline_provider_options():
    """Test provider_options inside Retry.options win over Retry.provider_options."""
    retry = Retry(
        model=FakeModel("fallback"),
        options={"provider_options": {"a": 1}},
        provider_options={"b": 2},
    )

    merged = merge_call_options(GenerateOptions(prompt="x", provider_options={"c": 3}), retry)

    assert merged.provider_options == {"a": 1}


# ============================================================================
# Disabled & Model References
# ============================================================================


@pytest.mark.asyncio
async def test_disabled_calls_primary_only(options):
    """Test disabled=True bypasses the retries list entirely."""
    error = overloaded_error()
    primary = FakeModel("primary", generate=[error])
    fallback = FakeModel("fallback", generate=[create_result()])

    model = create_retryable(model=primary, retries=[fallback], disabled=True)

    with pytest.raises(ModelCallError) as exc_info:
        await model.generate(options)

    assert exc_info.value is error
    assert fallback.generate.await_count == 0


@pytest.mark.asyncio
async def test_disabled_callable_evaluated_per_request(options):
    """Test a disabled callable is re-evaluated on every request."""
    primary = FakeModel("primary", generate=[overloaded_error(), overloaded_error()])
    fallback = FakeModel("fallback", generate=[create_result("fallback")])
    switch = {"disabled": True}

    model = create_retryable(
        model=primary, retries=[fallback], disabled=lambda: switch["disabled"]
    )

    with pytest.raises(ModelCallError):
        await model.generate(options)

    switch["disabled"] = False
    result = await model.generate(options)

    assert result.text == "fallback"


@pytest.mark.asyncio
async def test_string_references_use_resolver(options):
    """Test model reference strings are resolved through resolve_model."""
    primary = FakeModel("primary", generate=[overloaded_error()])
    fallback = FakeModel("fallback", generate=[create_result("resolved")])
    registry = {"fake/fallback": fallback}

    model = create_retryable(
        model=primary, retries=["fake/fallback"], resolve_model=registry.__getitem__
    )
    result = await model.generate(options)

    assert result.text == "resolved"


@pytest.mark.asyncio
async def test_string_reference_without_resolver_raises(options):
    """Test an unresolvable reference string raises ValueError."""
    primary = FakeModel("primary", generate=[overloaded_error()])

    model = create_retryable(model=primary, retries=["fake/fallback"])

    with pytest.raises(ValueError, match="resolve_model"):
        await model.generate(options)


def test_create_retryable_rejects_unsupported_items():
    """Test retries items must be models, Retry descriptors or callables."""
    with pytest.raises(TypeError):
        create_retryable(model=FakeModel("primary"), retries=[42])


def test_wrapper_reports_primary_identity():
    """Test the wrapper exposes the primary's provider and model_id."""
    model = create_retryable(model=FakeModel("primary", provider="ollama"), retries=[])

    assert isinstance(model, RetryableLanguageModel)
    assert model.provider == "ollama"
    assert model.model_id == "primary"


def test_engine_normalises_entries():
    """Test RetryEngine tags each retries item by kind."""
    fallback = FakeModel("fallback")

    engine = RetryEngine([fallback, Retry(model=fallback), lambda context: None])

    assert [entry.kind.value for entry in engine.entries] == ["model", "static", "rule"]
