"""Tests for fix suggestions and their patches."""

import json

import pytest

from conftest import LOGIN_TEST, FakeLLM
from testmind.diff import DiffApplier
from testmind.healing import FixSuggester, human_readable_guide
from testmind.models import (
    ClassificationResult,
    Effort,
    ElementDescriptor,
    FailureType,
    FixContext,
    FixType,
)


def classified(failure_type: FailureType) -> ClassificationResult:
    return ClassificationResult(failure_type=failure_type, confidence=0.95, reasoning="test")


def patched(suggestion, code: str = LOGIN_TEST) -> str:
    result = DiffApplier().apply(suggestion.patch, code)
    assert result.applied
    return result.new_content


class TestSelectorUpdates:
    """Tests for selector update suggestions."""

    @pytest.mark.asyncio
    async def test_ranked_alternatives(self, make_failure):
        context = FixContext(
            test_code=LOGIN_TEST,
            failed_line=8,
            current_selector="#old-submit-btn",
            alternative_selectors=[
                ElementDescriptor(css_selector='[data-testid="submit-button"]'),
                ElementDescriptor(id="submit"),
            ],
            classification=classified(FailureType.TEST_FRAGILITY),
        )

        suggestions = await FixSuggester().suggest_fixes(make_failure(), context)

        assert [s.confidence for s in suggestions] == pytest.approx([0.95, 0.85])
        best = suggestions[0]
        assert best.type is FixType.UPDATE_SELECTOR
        assert best.description == "Update selector to use ID (most stable): #submit"
        assert '    page.click("#submit")' in patched(best)

    def test_quotes_stay_balanced(self, make_failure):
        context = FixContext(
            test_code=LOGIN_TEST,
            current_selector="#old-submit-btn",
            alternative_selectors=[ElementDescriptor(css_selector='[data-testid="submit-button"]')],
        )

        (suggestion,) = FixSuggester().suggest_selector_updates(make_failure(), context)

        assert "page.click(\"[data-testid='submit-button']\")" in patched(suggestion)
        assert suggestion.diff_text.startswith("--- a/tests/e2e/test_login.py")

    def test_current_selector_is_not_suggested(self, make_failure):
        context = FixContext(test_code=LOGIN_TEST, current_selector="#old-submit-btn")

        # The only derived alternative is the failing selector itself
        assert FixSuggester().suggest_selector_updates(make_failure(), context) == []

    def test_selector_missing_from_code(self, make_failure):
        context = FixContext(
            test_code="def test_x(): pass",
            current_selector="#gone",
            alternative_selectors=[ElementDescriptor(id="found")],
        )

        (suggestion,) = FixSuggester().suggest_selector_updates(make_failure(), context)

        assert suggestion.patch is None
        assert suggestion.diff_text == 'Could not locate selector "#gone" in test code'

    def test_longer_selector_with_same_prefix_is_left_alone(self, make_failure):
        code = 'def test_pay(page):\n    page.click("#submit-secondary")\n    page.click("#submit")'
        context = FixContext(
            test_code=code,
            current_selector="#submit",
            alternative_selectors=[ElementDescriptor(css_selector='[data-testid="pay"]')],
        )

        (suggestion,) = FixSuggester().suggest_selector_updates(make_failure(), context)

        new_code = patched(suggestion, code)
        assert 'page.click("#submit-secondary")' in new_code
        assert "page.click(\"[data-testid='pay']\")" in new_code

    def test_selector_only_inside_longer_literal(self, make_failure):
        context = FixContext(
            test_code='page.click("#submit-secondary")',
            current_selector="#submit",
            alternative_selectors=[ElementDescriptor(id="pay")],
        )

        (suggestion,) = FixSuggester().suggest_selector_updates(make_failure(), context)

        assert suggestion.patch is None
        assert suggestion.diff_text == 'Could not locate selector "#submit" in test code'

    def test_no_selector_no_suggestions(self, make_failure):
        context = FixContext(test_code=LOGIN_TEST)

        assert FixSuggester().suggest_selector_updates(make_failure(selector=None), context) == []


class TestWaitAndRetry:
    """Tests for timeout and retry suggestions."""

    def test_doubles_timeout(self, make_failure):
        code = 'page.wait_for_selector("#submit", timeout=5000)\npage.click("#submit")'
        failure = make_failure("Timeout 5000ms exceeded")

        suggestion = FixSuggester().suggest_wait_increase(failure, FixContext(test_code=code))

        assert suggestion.type is FixType.ADD_WAIT
        assert suggestion.description == "Increase timeout from 5000ms to 10000ms"
        assert suggestion.confidence == 0.7
        assert 'timeout=10000)' in patched(suggestion, code)

    def test_reported_timeout_is_used(self, make_failure):
        code = "cy.get('#submit', { timeout: 15000 })"
        failure = make_failure("Timed out retrying after 15000ms", timeout_ms=15000)

        suggestion = FixSuggester().suggest_wait_increase(failure, FixContext(test_code=code))

        assert patched(suggestion, code) == "cy.get('#submit', { timeout: 30000 })"

    def test_timeout_not_in_code(self, make_failure):
        suggestion = FixSuggester().suggest_wait_increase(make_failure(), FixContext(test_code=LOGIN_TEST))

        assert suggestion.patch is None
        assert suggestion.diff_text.startswith("Could not locate timeout 5000")

    def test_python_retry_wraps_failing_line(self, make_failure):
        failure = make_failure("connect ECONNREFUSED 127.0.0.1:3000")
        context = FixContext(test_code=LOGIN_TEST, failed_line=8)

        suggestion = FixSuggester().suggest_retry(failure, context)

        assert suggestion.type is FixType.ADD_RETRY
        assert suggestion.estimated_effort is Effort.MEDIUM
        new_code = patched(suggestion)
        lines = new_code.split("\n")
        assert lines[2] == "import time"
        assert "    for _attempt in range(3):" in lines
        assert '            page.click("#old-submit-btn")' in lines
        assert "            time.sleep(1 * (_attempt + 1))" in lines

    def test_js_retry(self, make_failure):
        code = "test('login', async () => {\n  await page.click('#submit');\n});"
        failure = make_failure("net::ERR_CONNECTION_RESET", test_file="login.spec.ts")

        suggestion = FixSuggester().suggest_retry(failure, FixContext(test_code=code, failed_line=2))

        new_code = patched(suggestion, code)
        assert "  for (let attempt = 0; attempt < 3; attempt++) {" in new_code
        assert "      await page.click('#submit');" in new_code
        assert "import time" not in new_code

    def test_retry_without_failed_line(self, make_failure):
        suggestion = FixSuggester().suggest_retry(make_failure(), FixContext(test_code=LOGIN_TEST))

        assert suggestion.patch is None
        assert suggestion.confidence == 0.8


class TestAssertionFix:
    """Tests for assertion suggestions."""

    @pytest.mark.asyncio
    async def test_updates_expected_literal(self, make_failure):
        failure = make_failure("Expected 'Welcome' but got 'Hello'", expected_value="Welcome", actual_value="Hello")
        context = FixContext(test_code=LOGIN_TEST, classification=classified(FailureType.REAL_BUG))

        (suggestion,) = await FixSuggester().suggest_fixes(failure, context)

        assert suggestion.type is FixType.FIX_ASSERTION
        assert suggestion.confidence == 0.5
        assert 'assert page.inner_text(".welcome") == "Hello"' in patched(suggestion)

    def test_no_expected_value(self, make_failure):
        suggestion = FixSuggester().suggest_assertion_fix(make_failure("expected x"), FixContext(test_code=LOGIN_TEST))

        assert suggestion.patch is None

    @pytest.mark.asyncio
    async def test_real_bug_without_expectation_gets_nothing(self, make_failure):
        context = FixContext(test_code=LOGIN_TEST, classification=classified(FailureType.REAL_BUG))

        assert await FixSuggester().suggest_fixes(make_failure("TypeError: x is undefined"), context) == []


class TestLLMSuggestion:
    """Tests for the model-generated suggestion."""

    DIFF = (
        "--- a/tests/e2e/test_login.py\n"
        "+++ b/tests/e2e/test_login.py\n"
        "@@ -8,1 +8,1 @@\n"
        '-    page.click("#old-submit-btn")\n'
        '+    page.get_by_role("button", name="Sign In").click()'
    )

    @pytest.mark.asyncio
    async def test_llm_suggestion_with_patch(self, make_failure):
        llm = FakeLLM(json.dumps({
            "type": "UPDATE_SELECTOR",
            "description": "Use a role locator",
            "diff": self.DIFF,
            "reasoning": "Roles survive markup changes",
            "estimatedEffort": "low",
            "alternativeApproaches": ["Add a data-testid"],
        }))

        (suggestion,) = await FixSuggester(llm).suggest_fixes(make_failure(), FixContext(test_code=LOGIN_TEST))

        assert suggestion.type is FixType.UPDATE_SELECTOR
        assert suggestion.confidence == 0.85
        assert suggestion.alternative_approaches == ["Add a data-testid"]
        assert suggestion.patch.file_path == "tests/e2e/test_login.py"
        assert 'page.get_by_role("button", name="Sign In").click()' in patched(suggestion)
        assert llm.requests[0].temperature == 0.4

    @pytest.mark.asyncio
    async def test_prose_diff_has_no_patch(self, make_failure):
        llm = FakeLLM(json.dumps({"type": "mystery", "description": "Wait longer", "diff": "add a wait"}))

        (suggestion,) = await FixSuggester(llm).suggest_fixes(make_failure(), FixContext(test_code=LOGIN_TEST))

        assert suggestion.type is FixType.OTHER
        assert suggestion.estimated_effort is Effort.MEDIUM
        assert suggestion.patch is None

    @pytest.mark.asyncio
    async def test_llm_errors_are_swallowed(self, make_failure):
        llm = FakeLLM(RuntimeError("boom"))

        assert await FixSuggester(llm).suggest_fixes(make_failure(), FixContext(test_code=LOGIN_TEST)) == []

    @pytest.mark.asyncio
    async def test_llm_ranks_with_rules(self, make_failure):
        llm = FakeLLM(json.dumps({"type": "add_wait", "description": "Wait", "diff": self.DIFF}))
        context = FixContext(
            test_code=LOGIN_TEST,
            current_selector="#old-submit-btn",
            alternative_selectors=[ElementDescriptor(id="submit"), ElementDescriptor(xpath="//button")],
            classification=classified(FailureType.TEST_FRAGILITY),
        )

        suggestions = await FixSuggester(llm).suggest_fixes(make_failure(), context)

        assert [s.confidence for s in suggestions] == pytest.approx([0.95, 0.85, 0.6])
        assert suggestions[1].type is FixType.ADD_WAIT


class TestGuide:
    """Tests for the Markdown guide."""

    def test_guide_layout(self, make_failure):
        context = FixContext(test_code="cy.get('#a', { timeout: 5000 })")
        suggestion = FixSuggester().suggest_wait_increase(make_failure(), context)

        guide = human_readable_guide(suggestion)

        assert guide.startswith("## Fix Suggestion: Increase timeout from 5000ms to 10000ms\n")
        assert "**Confidence:** 70%" in guide
        assert "**Effort:** low" in guide
        assert "```diff\n--- a/tests/e2e/test_login.py" in guide
        assert "1. Add explicit wait for element to be visible" in guide
