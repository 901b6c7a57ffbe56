"""Failure classification: rule table first, LLM escalation when unsure."""

import json
import re
import statistics
from dataclasses import dataclass

import structlog

from ..config import ClassifierConfig
from ..llm.base import LLMRequest, LLMService, extract_json
from ..models import (
    ClassificationResult,
    FailureType,
    FlakinessAnalysis,
    TestFailure,
    TestRunRecord,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FailurePattern:
    type: FailureType
    pattern: re.Pattern
    keywords: tuple[str, ...]
    weight: float


def _p(failure_type: FailureType, regex: str, keywords: tuple[str, ...], weight: float) -> FailurePattern:
    return FailurePattern(failure_type, re.compile(regex, re.IGNORECASE), keywords, weight)


ENV = FailureType.ENVIRONMENT
BUG = FailureType.REAL_BUG
FRAGILE = FailureType.TEST_FRAGILITY

FAILURE_PATTERNS: list[FailurePattern] = [
    # Network
    _p(ENV, r"ECONNREFUSED|connection refused|ERR_CONNECTION_REFUSED", ("econnrefused", "connection", "refused"), 0.85),
    _p(ENV, r"ETIMEDOUT|connection timeout|request timeout", ("etimedout", "timeout", "connection"), 0.85),
    _p(ENV, r"ENOTFOUND|getaddrinfo|DNS", ("enotfound", "dns", "getaddrinfo"), 0.90),
    _p(ENV, r"net::ERR_|network error|fetch failed", ("err", "network", "fetch failed"), 0.80),
    _p(ENV, r"Network request failed|Failed to fetch", ("network", "request", "failed", "fetch"), 0.80),
    _p(ENV, r"ECONNRESET|socket hang up|connection reset", ("econnreset", "socket", "reset"), 0.85),
    # Service status
    _p(ENV, r"503|service unavailable", ("503", "service", "unavailable"), 0.90),
    _p(ENV, r"502|bad gateway", ("502", "bad", "gateway"), 0.90),
    _p(ENV, r"504|gateway timeout", ("504", "gateway", "timeout"), 0.90),
    _p(ENV, r"database.*unavailable|db.*connection.*failed", ("database", "unavailable", "connection"), 0.85),
    # Timeouts
    _p(FRAGILE, r"Timeout of \d+ms exceeded|timeout exceeded", ("timeout", "exceeded"), 0.75),
    _p(FRAGILE, r"Timed out waiting for|wait.*timeout", ("timed out", "waiting"), 0.75),
    _p(FRAGILE, r"Element not visible within timeout", ("element", "visible", "timeout"), 0.80),
    _p(FRAGILE, r"page\.waitFor.*timeout|waitForSelector.*timeout", ("waitfor", "timeout"), 0.80),
    _p(FRAGILE, r"operation timed out|execution.*timeout", ("operation", "timeout"), 0.70),
    # Selectors and elements
    _p(FRAGILE, r"Element not found|No element found|Unable to find element", ("element", "not found", "unable to find"), 0.85),
    _p(FRAGILE, r"No such element|NoSuchElementError", ("no such element", "nosuchelementerror"), 0.90),
    _p(FRAGILE, r"Selector .* did not match|selector.*not.*match", ("selector", "did not match"), 0.85),
    _p(FRAGILE, r"stale element|StaleElementReferenceError", ("stale", "element"), 0.90),
    _p(FRAGILE, r"element is not attached|detached from document", ("not attached", "detached"), 0.90),
    _p(FRAGILE, r"element not interactable|ElementNotInteractableError", ("not interactable", "elementnotinteractableerror"), 0.85),
    _p(FRAGILE, r"element.*covered|obscured|overlapping", ("covered", "obscured", "overlapping"), 0.80),
    _p(FRAGILE, r"invalid selector|SelectorError|invalid CSS", ("invalid", "selector", "css"), 0.75),
    # Assertions
    _p(BUG, r"Expected .* but got|Expected.*to be.*but received", ("expected", "but got", "received"), 0.70),
    _p(BUG, r"AssertionError|assertion.*failed", ("assertionerror", "assertion", "failed"), 0.75),
    _p(BUG, r"toBe|toEqual|toMatch.*failed", ("tobe", "toequal", "tomatch"), 0.70),
    _p(BUG, r"Expected.*to contain|does not contain", ("expected", "contain"), 0.70),
    _p(BUG, r"Expected.*to have.*but has", ("expected", "to have"), 0.70),
    _p(BUG, r"snapshot.*different|snapshot.*mismatch", ("snapshot", "different", "mismatch"), 0.65),
    # Async
    _p(BUG, r"Promise rejected|Unhandled promise rejection", ("promise", "rejected", "unhandled"), 0.75),
    _p(BUG, r"await is only valid in async|async.*await", ("await", "async"), 0.85),
    _p(BUG, r"callback was already called|double callback", ("callback", "already called", "double"), 0.80),
    _p(BUG, r"Maximum call stack size exceeded|stack overflow", ("stack", "exceeded", "overflow"), 0.85),
    _p(BUG, r"race condition|concurrent.*modification", ("race", "concurrent", "modification"), 0.70),
    # Type errors
    _p(BUG, r"TypeError|Type Error", ("typeerror",), 0.80),
    _p(BUG, r"ReferenceError|is not defined", ("referenceerror", "not defined"), 0.85),
    _p(BUG, r"undefined is not|cannot read property.*undefined", ("undefined", "cannot read"), 0.80),
    _p(BUG, r"null.*is not|cannot read property.*null", ("null", "cannot read"), 0.80),
]

SUGGESTED_ACTIONS: dict[FailureType, list[str]] = {
    FailureType.ENVIRONMENT: [
        "Check if external services are running",
        "Verify network connectivity",
        "Increase timeout values",
        "Add retry logic for transient failures",
    ],
    FailureType.REAL_BUG: [
        "Review the code logic in the failed assertion",
        "Check for recent code changes",
        "Add debug logging to understand the issue",
        "Create a bug ticket with reproduction steps",
    ],
    FailureType.TEST_FRAGILITY: [
        "Update element selectors to be more robust",
        "Add explicit waits for elements to be ready",
        "Use more stable locator strategies (ID > CSS > XPath)",
        "Run TestMind healing on the failing test",
    ],
    FailureType.UNKNOWN: [
        "Investigate the error message and stack trace",
        "Run the test locally to reproduce",
        "Check test logs for additional context",
    ],
}

CLASSIFY_PROMPT = """Analyze this test failure and classify it into one of these categories:
1. ENVIRONMENT - Environment issues (network timeout, service unavailable, etc.)
2. REAL_BUG - Real bugs (logic errors, functional defects)
3. TEST_FRAGILITY - Test fragility (outdated selectors, timing issues, async problems)

## Test Failure
- Test Name: {test_name}
- Error Message: {error_message}
- Stack Trace: {stack_trace}
{extra}
Rule-based classification suggested: {rule_type} (confidence: {rule_confidence:.2f})

## Response Format
Respond with valid JSON only:
{{
    "failureType": "ENVIRONMENT|REAL_BUG|TEST_FRAGILITY",
    "confidence": 0.0-1.0,
    "reasoning": "one sentence",
    "suggestedActions": ["action 1", "action 2"]
}}
"""


class FailureClassifier:
    """Classify failures as environment, real bug or test fragility."""

    def __init__(self, llm: LLMService | None = None, config: ClassifierConfig | None = None):
        self.llm = llm
        self.config = config or ClassifierConfig()
        self.patterns = FAILURE_PATTERNS

    async def classify(self, failure: TestFailure) -> ClassificationResult:
        """Classify a failure; escalate to the LLM below ``llm_threshold``."""
        result = self.rule_based(failure)
        if self.llm is not None and result.confidence < self.config.llm_threshold:
            enhanced = await self._classify_with_llm(failure, result)
            if enhanced is not None:
                logger.info(
                    "classification_escalated",
                    test=failure.test_name,
                    rule_type=result.failure_type.value,
                    llm_type=enhanced.failure_type.value,
                )
                result = enhanced

        return ClassificationResult(
            failure_type=result.failure_type,
            confidence=result.confidence,
            reasoning=result.reasoning,
            suggested_actions=result.suggested_actions,
            is_flaky=self.detect_flakiness(failure),
            metadata=result.metadata,
        )

    def rule_based(self, failure: TestFailure) -> ClassificationResult:
        """Best match from the pattern table. Highest confidence wins, first on ties."""
        text = f"{failure.error_message} {failure.stack_trace}".lower()
        best = ClassificationResult(
            failure_type=FailureType.UNKNOWN,
            confidence=0.0,
            reasoning="No matching pattern found",
            suggested_actions=list(SUGGESTED_ACTIONS[FailureType.UNKNOWN]),
        )

        for pattern in self.patterns:
            regex_matched = pattern.pattern.search(text) is not None
            keywords = [k for k in pattern.keywords if k in text]
            keyword_rate = len(keywords) / len(pattern.keywords)
            if not (regex_matched or keyword_rate > 0.5):
                continue

            confidence = min(1.0, pattern.weight + (0.2 if regex_matched else 0.0) + 0.3 * keyword_rate)
            if confidence > best.confidence:
                best = ClassificationResult(
                    failure_type=pattern.type,
                    confidence=confidence,
                    reasoning=(
                        f"Matched pattern: {pattern.pattern.pattern} "
                        f"with keywords: {', '.join(keywords)}"
                    ),
                    suggested_actions=list(SUGGESTED_ACTIONS[pattern.type]),
                    metadata={
                        "matched_pattern": pattern.pattern.pattern,
                        "matched_keywords": keywords,
                    },
                )
        return best

    async def _classify_with_llm(
        self,
        failure: TestFailure,
        rule_result: ClassificationResult,
    ) -> ClassificationResult | None:
        extra = []
        if failure.selector:
            extra.append(f"- Selector: {failure.selector}")
        if failure.expected_value is not None:
            extra.append(f"- Expected: {json.dumps(failure.expected_value, default=str)}")
        if failure.actual_value is not None:
            extra.append(f"- Actual: {json.dumps(failure.actual_value, default=str)}")

        prompt = CLASSIFY_PROMPT.format(
            test_name=failure.test_name,
            error_message=failure.error_message,
            stack_trace=failure.stack_trace[:500],
            extra="\n".join(extra),
            rule_type=rule_result.failure_type.name,
            rule_confidence=rule_result.confidence,
        )
        try:
            response = await self.llm.generate(LLMRequest(prompt=prompt, temperature=0.3, max_tokens=300))
        except Exception as e:
            logger.warning("llm_classification_failed", test=failure.test_name, error=str(e))
            return None

        data = extract_json(response.content)
        if data is None:
            logger.warning("llm_classification_unparseable", test=failure.test_name)
            return None
        try:
            failure_type = FailureType(str(data.get("failureType", "")).lower())
            confidence = float(data.get("confidence", 0.0))
        except (ValueError, TypeError):
            logger.warning("llm_classification_invalid", test=failure.test_name, data=data)
            return None

        actions = data.get("suggestedActions")
        if not isinstance(actions, list) or not actions:
            actions = SUGGESTED_ACTIONS[failure_type]
        return ClassificationResult(
            failure_type=failure_type,
            confidence=confidence,
            reasoning=str(data.get("reasoning") or "LLM classification"),
            suggested_actions=[str(a) for a in actions],
            metadata={
                "llm_enhanced": True,
                "rule_based_type": rule_result.failure_type.value,
                "rule_based_confidence": rule_result.confidence,
            },
        )

    # Flakiness

    def _recent_runs(self, failure: TestFailure) -> list[TestRunRecord] | None:
        runs = failure.previous_runs
        if len(runs) < self.config.min_history:
            return None
        return runs[-self.config.history_window:]

    def detect_flakiness(self, failure: TestFailure) -> bool:
        runs = self._recent_runs(failure)
        if runs is None:
            return False

        mixed = self._has_mixed_results(runs)
        if mixed and self._pass_rate_in_flaky_range(runs):
            return True
        if self._has_time_pattern(runs):
            return True
        if self._has_alternating_pattern(runs):
            return True
        return mixed and self._has_duration_fluctuation(runs)

    def get_flakiness_analysis(self, failure: TestFailure) -> FlakinessAnalysis:
        """Score the flakiness signals with reasons and a recommendation."""
        runs = self._recent_runs(failure)
        if runs is None:
            return FlakinessAnalysis(
                is_flaky=False,
                score=0.0,
                reasons=[f"Insufficient history (< {self.config.min_history} runs)"],
                recommendation="Run test more times to determine flakiness",
            )

        pass_rate = self._pass_rate(runs)
        reasons = []
        score = 0.0
        if self._pass_rate_in_flaky_range(runs):
            score += 0.4
            reasons.append(f"Inconsistent pass rate: {pass_rate * 100:.1f}%")
        if self._has_time_pattern(runs):
            score += 0.2
            reasons.append("Failures occur at specific times")
        if self._has_alternating_pattern(runs):
            score += 0.3
            reasons.append("Pass/fail alternating pattern detected")
        if self._has_duration_fluctuation(runs):
            score += 0.1
            reasons.append("High execution time variation")

        is_flaky = score >= 0.5
        return FlakinessAnalysis(
            is_flaky=is_flaky,
            score=min(1.0, score),
            reasons=reasons or ["No flakiness detected"],
            recommendation=(
                "Add explicit waits, fix race conditions, or isolate test dependencies"
                if is_flaky
                else "Test appears stable, investigate for real bugs"
            ),
            pass_rate=pass_rate,
        )

    @staticmethod
    def _pass_rate(runs: list[TestRunRecord]) -> float:
        return sum(1 for run in runs if run.passed) / len(runs)

    @staticmethod
    def _has_mixed_results(runs: list[TestRunRecord]) -> bool:
        return any(run.passed for run in runs) and not all(run.passed for run in runs)

    def _pass_rate_in_flaky_range(self, runs: list[TestRunRecord]) -> bool:
        return self._has_mixed_results(runs) and 0.5 < self._pass_rate(runs) < 0.95

    def _has_time_pattern(self, runs: list[TestRunRecord]) -> bool:
        if len(runs) < 5:
            return False
        start, end = self.config.night_start_hour, self.config.night_end_hour
        in_window = [run for run in runs if start <= run.timestamp.hour < end]
        if not in_window:
            return False
        failures = sum(1 for run in in_window if not run.passed)
        return failures / len(in_window) > 0.7

    @staticmethod
    def _has_alternating_pattern(runs: list[TestRunRecord]) -> bool:
        if len(runs) < 4:
            return False
        flips = sum(1 for prev, cur in zip(runs, runs[1:]) if prev.passed != cur.passed)
        return flips / (len(runs) - 1) > 0.6

    @staticmethod
    def _has_duration_fluctuation(runs: list[TestRunRecord]) -> bool:
        durations = [run.duration_ms for run in runs]
        mean = statistics.fmean(durations)
        if mean <= 0:
            return False
        return statistics.pstdev(durations) / mean > 0.5
