"""Tests for failure classification and flakiness detection."""

from datetime import datetime

import pytest

from conftest import FakeLLM, make_runs
from testmind.config import ClassifierConfig
from testmind.healing import FailureClassifier
from testmind.healing.classifier import FAILURE_PATTERNS, SUGGESTED_ACTIONS
from testmind.models import FailureType


class TestRuleBased:
    """Tests for the pattern table."""

    @pytest.mark.parametrize("message, expected", [
        ("Element not found: #old-submit-btn", FailureType.TEST_FRAGILITY),
        ("NoSuchElementError: no such element: Unable to locate element", FailureType.TEST_FRAGILITY),
        ("StaleElementReferenceError: stale element reference", FailureType.TEST_FRAGILITY),
        ("connect ECONNREFUSED 127.0.0.1:3000", FailureType.ENVIRONMENT),
        ("getaddrinfo ENOTFOUND api.staging.internal", FailureType.ENVIRONMENT),
        ("Request failed with status 503 Service Unavailable", FailureType.ENVIRONMENT),
        ("Expected 'Welcome' but got 'Hello'", FailureType.REAL_BUG),
        ("TypeError: cannot read property 'id' of undefined", FailureType.REAL_BUG),
    ])
    def test_classifies_common_errors(self, make_failure, message, expected):
        result = FailureClassifier().rule_based(make_failure(message))

        assert result.failure_type is expected
        assert result.confidence >= 0.8
        assert result.suggested_actions == SUGGESTED_ACTIONS[expected]

    def test_confidence_formula(self, make_failure):
        result = FailureClassifier().rule_based(make_failure("Element not found"))

        # weight 0.85 + regex 0.2 + 0.3 * 2/3 keywords, capped
        assert result.confidence == 1.0
        assert result.metadata["matched_keywords"] == ["element", "not found"]

    def test_stack_trace_is_searched(self, make_failure):
        failure = make_failure("test failed", stack_trace="at fetch (net::ERR_CONNECTION_RESET)")

        assert FailureClassifier().rule_based(failure).failure_type is FailureType.ENVIRONMENT

    def test_unknown_when_nothing_matches(self, make_failure):
        result = FailureClassifier().rule_based(make_failure("something odd happened"))

        assert result.failure_type is FailureType.UNKNOWN
        assert result.confidence == 0.0
        assert result.reasoning == "No matching pattern found"
        assert result.suggested_actions == SUGGESTED_ACTIONS[FailureType.UNKNOWN]

    def test_pattern_table_is_complete(self):
        assert len(FAILURE_PATTERNS) == 38
        assert all(0 < p.weight <= 1 for p in FAILURE_PATTERNS)


class TestClassify:
    """Tests for classify, including LLM escalation."""

    @pytest.mark.asyncio
    async def test_confident_rules_skip_llm(self, make_failure):
        llm = FakeLLM()

        result = await FailureClassifier(llm).classify(make_failure("Element not found: #x"))

        assert result.failure_type is FailureType.TEST_FRAGILITY
        assert llm.requests == []

    @pytest.mark.asyncio
    async def test_escalates_when_unsure(self, make_failure):
        llm = FakeLLM(
            "```json\n"
            '{"failureType": "ENVIRONMENT", "confidence": 0.9, '
            '"reasoning": "staging was down", "suggestedActions": ["Retry later"]}\n'
            "```"
        )

        result = await FailureClassifier(llm).classify(make_failure("something odd happened"))

        assert result.failure_type is FailureType.ENVIRONMENT
        assert result.confidence == 0.9
        assert result.suggested_actions == ["Retry later"]
        assert result.metadata == {
            "llm_enhanced": True,
            "rule_based_type": "unknown",
            "rule_based_confidence": 0.0,
        }
        assert llm.requests[0].max_tokens == 300
        assert "something odd happened" in llm.requests[0].prompt

    @pytest.mark.asyncio
    async def test_llm_failure_keeps_rule_result(self, make_failure):
        llm = FakeLLM(RuntimeError("rate limited"))

        result = await FailureClassifier(llm).classify(make_failure("something odd happened"))

        assert result.failure_type is FailureType.UNKNOWN

    @pytest.mark.asyncio
    async def test_unusable_llm_answer_keeps_rule_result(self, make_failure):
        llm = FakeLLM('{"failureType": "COSMIC_RAYS", "confidence": 1}')

        result = await FailureClassifier(llm).classify(make_failure("something odd happened"))

        assert result.failure_type is FailureType.UNKNOWN
        assert "llm_enhanced" not in result.metadata

    @pytest.mark.asyncio
    async def test_llm_confidence_is_clamped(self, make_failure):
        llm = FakeLLM('{"failureType": "real_bug", "confidence": 7}')

        result = await FailureClassifier(llm).classify(make_failure("something odd happened"))

        assert result.confidence == 1.0
        assert result.suggested_actions == SUGGESTED_ACTIONS[FailureType.REAL_BUG]

    @pytest.mark.asyncio
    async def test_flakiness_is_attached(self, make_failure):
        failure = make_failure("Element not found: #x", previous_runs=make_runs("PFPFPFPF"))

        result = await FailureClassifier().classify(failure)

        assert result.is_flaky is True


class TestFlakiness:
    """Tests for detect_flakiness and get_flakiness_analysis."""

    def test_insufficient_history(self, make_failure):
        classifier = FailureClassifier()
        failure = make_failure(previous_runs=make_runs("PF"))

        analysis = classifier.get_flakiness_analysis(failure)

        assert classifier.detect_flakiness(failure) is False
        assert analysis.score == 0.0
        assert analysis.reasons == ["Insufficient history (< 3 runs)"]
        assert analysis.pass_rate is None

    def test_pass_rate_in_flaky_range(self, make_failure):
        failure = make_failure(previous_runs=make_runs("PPPPPPPPF"))

        assert FailureClassifier().detect_flakiness(failure) is True

    def test_consistent_failures_are_not_flaky(self, make_failure):
        failure = make_failure(previous_runs=make_runs("FFFFF"))

        assert FailureClassifier().detect_flakiness(failure) is False

    def test_alternating_results(self, make_failure):
        failure = make_failure(previous_runs=make_runs("PFPFPF"))

        analysis = FailureClassifier().get_flakiness_analysis(failure)

        assert FailureClassifier().detect_flakiness(failure) is True
        assert "Pass/fail alternating pattern detected" in analysis.reasons

    def test_night_failures(self, make_failure):
        night = make_failure(previous_runs=make_runs("FFFFF", start=datetime(2024, 3, 1, 0, 0)))
        noon = make_failure(previous_runs=make_runs("FFFFF", start=datetime(2024, 3, 1, 12, 0)))

        assert FailureClassifier().detect_flakiness(night) is True
        assert FailureClassifier().detect_flakiness(noon) is False

    def test_duration_fluctuation_with_mixed_results(self, make_failure):
        runs = make_runs("PFFFF", durations=[100.0, 100.0, 100.0, 100.0, 3000.0])

        assert FailureClassifier().detect_flakiness(make_failure(previous_runs=runs)) is True

    def test_only_recent_window_counts(self, make_failure):
        failure = make_failure(previous_runs=make_runs("PFPFP" + "F" * 10, start=datetime(2024, 3, 1, 8, 0)))

        assert FailureClassifier().detect_flakiness(failure) is False

    def test_window_is_configurable(self, make_failure):
        classifier = FailureClassifier(config=ClassifierConfig(history_window=15))
        failure = make_failure(previous_runs=make_runs("PFPFP" + "F" * 10, start=datetime(2024, 3, 1, 8, 0)))

        assert classifier.detect_flakiness(failure) is False
        assert classifier.get_flakiness_analysis(failure).pass_rate == pytest.approx(3 / 15)

    def test_scored_analysis(self, make_failure):
        failure = make_failure(previous_runs=make_runs("PFPFPPFP"))

        analysis = FailureClassifier().get_flakiness_analysis(failure)

        assert analysis.is_flaky is True
        assert analysis.score == pytest.approx(0.7)
        assert analysis.pass_rate == pytest.approx(5 / 8)
        assert analysis.reasons[0] == "Inconsistent pass rate: 62.5%"
        assert analysis.recommendation.startswith("Add explicit waits")

    def test_stable_history(self, make_failure):
        analysis = FailureClassifier().get_flakiness_analysis(make_failure(previous_runs=make_runs("PPPPP")))

        assert analysis.is_flaky is False
        assert analysis.reasons == ["No flakiness detected"]
        assert analysis.recommendation == "Test appears stable, investigate for real bugs"
