"""
Tests for the retry/catch policy engine.
"""

import pytest
from pydantic import ValidationError

from callflow.engine.policy import CatchPolicy, PolicyAction, RetryPolicy, decide
from callflow.errors import CapabilityError, FailureKind, InvalidInput, StepFailure, TaskTimeout


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_exponential_delays(self):
        policy = RetryPolicy(max_attempts=3, interval_seconds=2, backoff_rate=2)
        assert [policy.delay_for(n) for n in range(3)] == [2.0, 4.0, 8.0]

    def test_max_delay_caps(self):
        policy = RetryPolicy(interval_seconds=10, backoff_rate=3, max_delay_seconds=15)
        assert policy.delay_for(0) == 10
        assert policy.delay_for(1) == 15

    def test_jitter_stays_within_bounds(self):
        policy = RetryPolicy(interval_seconds=4, backoff_rate=1, jitter=True)
        for _ in range(20):
            assert 2.0 <= policy.delay_for(0) <= 4.0

    def test_backoff_rate_below_one_rejected(self):
        with pytest.raises(ValidationError):
            RetryPolicy(backoff_rate=0.5)

    def test_graph_error_not_retryable(self):
        with pytest.raises(ValidationError):
            RetryPolicy(errors=["GraphError"])

    def test_matches(self):
        policy = RetryPolicy(errors=["Timeout"])
        assert policy.matches(FailureKind.TIMEOUT)
        assert not policy.matches(FailureKind.CAPABILITY_ERROR)
        assert RetryPolicy().matches(FailureKind.INVALID_INPUT)
        assert not RetryPolicy().matches(FailureKind.GRAPH_ERROR)


class TestDecide:
    """Tests for decide()."""

    def test_retry_sequence_then_fail(self):
        retry = (RetryPolicy(max_attempts=3, interval_seconds=2, backoff_rate=2),)
        failure = CapabilityError("down")

        first = decide(retry, (), failure, attempt=0)
        second = decide(retry, (), failure, attempt=1)
        third = decide(retry, (), failure, attempt=2)

        assert (first.action, first.delay_seconds) == (PolicyAction.RETRY, 2.0)
        assert (second.action, second.delay_seconds) == (PolicyAction.RETRY, 4.0)
        assert third.action == PolicyAction.FAIL
        assert third.attempts == 3

    def test_no_policies_fails(self):
        decision = decide((), (), CapabilityError("down"), attempt=0)
        assert decision.action == PolicyAction.FAIL

    def test_catch_after_retries_exhausted(self):
        retry = (RetryPolicy(max_attempts=2),)
        catch = (CatchPolicy(next="Handler"),)
        assert decide(retry, catch, CapabilityError("x"), attempt=0).action == PolicyAction.RETRY

        decision = decide(retry, catch, CapabilityError("x"), attempt=1)
        assert decision.action == PolicyAction.CATCH
        assert decision.next_step == "Handler"
        assert decision.result_path == "$.error"

    def test_first_matching_retry_decides(self):
        retry = (
            RetryPolicy(errors=["Timeout"], max_attempts=1),
            RetryPolicy(errors=["All"], max_attempts=5),
        )
        assert decide(retry, (), TaskTimeout("slow"), attempt=0).action == PolicyAction.FAIL
        assert decide(retry, (), CapabilityError("x"), attempt=0).action == PolicyAction.RETRY

    def test_first_matching_catch_wins(self):
        catch = (
            CatchPolicy(errors=["InvalidInput"], next="BadInput"),
            CatchPolicy(errors=["All"], next="Anything"),
        )
        assert decide((), catch, InvalidInput("x"), attempt=0).next_step == "BadInput"
        assert decide((), catch, TaskTimeout("x"), attempt=0).next_step == "Anything"

    def test_graph_error_never_handled(self):
        failure = StepFailure("broken graph", kind=FailureKind.GRAPH_ERROR)
        decision = decide((RetryPolicy(),), (CatchPolicy(next="H"),), failure, attempt=0)
        assert decision.action == PolicyAction.FAIL

    def test_to_dict(self):
        decision = decide((RetryPolicy(interval_seconds=2),), (), CapabilityError("x"), attempt=0)
        assert decision.to_dict() == {"action": "retry", "attempts": 1, "delay_seconds": 2.0}
