"""Fix suggestions with ready-to-apply patches."""

import json
import re
from pathlib import PurePath

import structlog

from ..diff.generator import DiffGenerator, format_unified, parse_unified
from ..errors import DiffParseError
from ..llm.base import LLMRequest, LLMService, extract_json
from ..locator.engine import LocatorEngine, descriptor_from_selector
from ..models import (
    ClassificationResult,
    Effort,
    ElementDescriptor,
    FailureType,
    FileDiff,
    FixContext,
    FixSuggestion,
    FixType,
    TestFailure,
)

logger = structlog.get_logger(__name__)

ELEMENT_NOT_FOUND_PHRASES = (
    "element not found",
    "no such element",
    "unable to find element",
    "unable to locate element",
    "did not match",
)
TIMEOUT_PHRASES = ("timeout", "timed out")

DEFAULT_TIMEOUT_MS = 5000
RETRY_ATTEMPTS = 3

LLM_CONFIDENCE = 0.85
ASSERTION_CONFIDENCE = 0.5

SUGGESTION_PROMPT = """You are an expert test automation engineer. Analyze this failing test and suggest a fix.

## Test Code ({test_file})
```
{test_code}
```

## Failure
- Error: {error_message}
- Stack Trace: {stack_trace}
{extra}

## Response Format
Respond with valid JSON only:
{{
    "type": "UPDATE_SELECTOR|ADD_WAIT|FIX_ASSERTION|ADD_RETRY|UPDATE_TEST_DATA|OTHER",
    "description": "Brief description",
    "diff": "Code diff in unified diff format",
    "reasoning": "Why this fix works",
    "estimatedEffort": "low|medium|high",
    "alternativeApproaches": ["alternative 1", "alternative 2"]
}}
"""

PYTHON_RETRY = """{indent}for _attempt in range({attempts}):
{indent}    try:
{indent}        {statement}
{indent}        break
{indent}    except Exception:
{indent}        if _attempt == {last}:
{indent}            raise
{indent}        time.sleep(1 * (_attempt + 1))"""

JS_RETRY = """{indent}for (let attempt = 0; attempt < {attempts}; attempt++) {{
{indent}  try {{
{indent}    {statement}
{indent}    break;
{indent}  }} catch (error) {{
{indent}    if (attempt === {last}) throw error;
{indent}    await new Promise(resolve => setTimeout(resolve, 1000 * (attempt + 1)));
{indent}  }}
{indent}}}"""


def format_selector(descriptor: ElementDescriptor) -> str | None:
    if descriptor.id:
        return f"#{descriptor.id}"
    return descriptor.css_selector or descriptor.xpath or None


def strategy_name(descriptor: ElementDescriptor) -> str:
    if descriptor.id:
        return "ID (most stable)"
    if descriptor.css_selector:
        return "CSS Selector"
    if descriptor.xpath:
        return "XPath"
    if descriptor.semantic_intent:
        return "Semantic Intent (AI)"
    return "Unknown"


def selector_confidence(descriptor: ElementDescriptor) -> float:
    if descriptor.id:
        return 0.95
    if descriptor.css_selector:
        return max(0.7, 0.9 - 0.05 * len(descriptor.css_selector.split()))
    if descriptor.xpath:
        return 0.6
    return 0.5


def _swap_quotes(value: str) -> str:
    return value.translate(str.maketrans({'"': "'", "'": '"'}))


def _leading_indent(line: str) -> str:
    return line[:len(line) - len(line.lstrip())]


class FixSuggester:
    """Turn a classified failure into ranked, patchable suggestions."""

    def __init__(self, llm: LLMService | None = None, diff_generator: DiffGenerator | None = None):
        self.llm = llm
        self.diff_generator = diff_generator or DiffGenerator()

    async def suggest_fixes(self, failure: TestFailure, context: FixContext) -> list[FixSuggestion]:
        """Rule-based suggestions plus one LLM suggestion, best first."""
        suggestions: list[FixSuggestion] = []
        if context.classification is not None:
            suggestions.extend(self._rule_based(failure, context, context.classification))

        if self.llm is not None:
            llm_suggestion = await self._llm_suggestion(failure, context)
            if llm_suggestion is not None:
                suggestions.append(llm_suggestion)

        # sorted() is stable, so equal confidences keep generation order
        return sorted(suggestions, key=lambda s: s.confidence, reverse=True)

    def _rule_based(
        self,
        failure: TestFailure,
        context: FixContext,
        classification: ClassificationResult,
    ) -> list[FixSuggestion]:
        error = failure.error_message.lower()
        failure_type = classification.failure_type

        if failure_type is FailureType.TEST_FRAGILITY:
            found = []
            if any(phrase in error for phrase in ELEMENT_NOT_FOUND_PHRASES):
                found.extend(self.suggest_selector_updates(failure, context))
            if any(phrase in error for phrase in TIMEOUT_PHRASES):
                found.append(self.suggest_wait_increase(failure, context))
            return found
        if failure_type is FailureType.ENVIRONMENT:
            return [self.suggest_retry(failure, context)]
        if failure_type is FailureType.REAL_BUG and "expected" in error:
            return [self.suggest_assertion_fix(failure, context)]
        return []

    def _patch(self, failure: TestFailure, old_code: str, new_code: str) -> FileDiff:
        return self.diff_generator.compute_diff(old_code, new_code, file_path=failure.test_file)

    def _find_line(self, lines: list[str], pattern: re.Pattern, preferred: int | None) -> int | None:
        """0-based index of the failing line if it matches, else the first that does."""
        if preferred is not None and 1 <= preferred <= len(lines) and pattern.search(lines[preferred - 1]):
            return preferred - 1
        for index, line in enumerate(lines):
            if pattern.search(line):
                return index
        return None

    # Selectors

    def suggest_selector_updates(self, failure: TestFailure, context: FixContext) -> list[FixSuggestion]:
        current = context.current_selector or failure.selector
        if not current:
            return []

        alternatives = context.alternative_selectors
        if not alternatives:
            expected_text = failure.expected_value if isinstance(failure.expected_value, str) else None
            alternatives = LocatorEngine.suggest_alternative_locators(
                descriptor_from_selector(current, expected_text)
            )

        suggestions = []
        seen = {current}
        for alternative in alternatives:
            new_selector = format_selector(alternative)
            if not new_selector or new_selector in seen:
                continue
            seen.add(new_selector)
            diff_text, patch = self._selector_patch(failure, context, current, new_selector)
            name = strategy_name(alternative)
            suggestions.append(FixSuggestion(
                type=FixType.UPDATE_SELECTOR,
                description=f"Update selector to use {name}: {new_selector}",
                diff_text=diff_text,
                confidence=selector_confidence(alternative),
                estimated_effort=Effort.LOW,
                reasoning=f"More stable locator strategy: {name}",
                patch=patch,
            ))
        return suggestions

    def _selector_patch(
        self,
        failure: TestFailure,
        context: FixContext,
        current: str,
        new_selector: str,
    ) -> tuple[str, FileDiff | None]:
        lines = context.test_code.split("\n")
        # Only a whole string literal counts; "#submit" must not hit "#submit-secondary"
        literal = re.compile(rf"(?P<quote>['\"`]){re.escape(current)}(?P=quote)")
        index = self._find_line(lines, literal, context.failed_line)
        if index is None:
            return f'Could not locate selector "{current}" in test code', None

        line = lines[index]
        match = literal.search(line)
        quote = match.group("quote")
        # Keep the surrounding string literal intact
        if quote in new_selector:
            new_selector = _swap_quotes(new_selector)
        start, end = match.start() + 1, match.end() - 1
        lines[index] = line[:start] + new_selector + line[end:]

        patch = self._patch(failure, context.test_code, "\n".join(lines))
        return format_unified(patch), patch

    # Waits

    def suggest_wait_increase(self, failure: TestFailure, context: FixContext) -> FixSuggestion:
        old_timeout = failure.timeout_ms or DEFAULT_TIMEOUT_MS
        new_timeout = old_timeout * 2

        lines = context.test_code.split("\n")
        number = re.compile(rf"(?<!\d){old_timeout}(?!\d)")
        index = None
        if context.failed_line and 1 <= context.failed_line <= len(lines):
            if number.search(lines[context.failed_line - 1]):
                index = context.failed_line - 1
        if index is None:
            index = next((k for k, line in enumerate(lines) if number.search(line)), None)

        if index is None:
            diff_text = (
                f"Could not locate timeout {old_timeout} in test code; "
                f"pass a timeout of {new_timeout}ms to the failing wait"
            )
            patch = None
        else:
            lines[index] = number.sub(str(new_timeout), lines[index], count=1)
            patch = self._patch(failure, context.test_code, "\n".join(lines))
            diff_text = format_unified(patch)

        return FixSuggestion(
            type=FixType.ADD_WAIT,
            description=f"Increase timeout from {old_timeout}ms to {new_timeout}ms",
            diff_text=diff_text,
            confidence=0.7,
            estimated_effort=Effort.LOW,
            reasoning="Element may take longer to appear due to slow network or rendering",
            alternative_approaches=[
                "Add explicit wait for element to be visible",
                "Use a wait-for-selector call with retry logic",
            ],
            patch=patch,
        )

    # Retries

    def suggest_retry(self, failure: TestFailure, context: FixContext) -> FixSuggestion:
        diff_text, patch = self._retry_patch(failure, context)
        return FixSuggestion(
            type=FixType.ADD_RETRY,
            description=f"Retry the failing step up to {RETRY_ATTEMPTS} times",
            diff_text=diff_text,
            confidence=0.8,
            estimated_effort=Effort.MEDIUM,
            reasoning="Environment failures are often transient; a bounded retry with back-off absorbs them",
            alternative_approaches=[
                "Configure test runner to auto-retry failed tests",
                "Add retry at the action level instead of test level",
            ],
            patch=patch,
        )

    def _retry_patch(self, failure: TestFailure, context: FixContext) -> tuple[str, FileDiff | None]:
        lines = context.test_code.split("\n")
        line_no = context.failed_line
        if not line_no or not 1 <= line_no <= len(lines) or not lines[line_no - 1].strip():
            return (
                "Could not locate the failing line; wrap the flaky step in a retry loop "
                f"({RETRY_ATTEMPTS} attempts, linear back-off)",
                None,
            )

        original = lines[line_no - 1]
        is_python = PurePath(failure.test_file).suffix == ".py"
        template = PYTHON_RETRY if is_python else JS_RETRY
        wrapped = template.format(
            indent=_leading_indent(original),
            statement=original.strip(),
            attempts=RETRY_ATTEMPTS,
            last=RETRY_ATTEMPTS - 1,
        )
        lines[line_no - 1:line_no] = wrapped.split("\n")

        if is_python and not any(re.match(r"^(import time\b|from time import)", line) for line in lines):
            imports = [k for k, line in enumerate(lines) if re.match(r"^(import|from)\s", line)]
            lines.insert(imports[-1] + 1 if imports else 0, "import time")

        patch = self._patch(failure, context.test_code, "\n".join(lines))
        return format_unified(patch), patch

    # Assertions

    def suggest_assertion_fix(self, failure: TestFailure, context: FixContext) -> FixSuggestion:
        diff_text, patch = self._assertion_patch(failure, context)
        return FixSuggestion(
            type=FixType.FIX_ASSERTION,
            description=(
                f"Update expected value from {failure.expected_value!r} "
                f"to {failure.actual_value!r}"
            ),
            diff_text=diff_text,
            confidence=ASSERTION_CONFIDENCE,
            estimated_effort=Effort.LOW,
            reasoning="Only correct if the new behavior is intended; verify before accepting",
            alternative_approaches=[
                "Investigate if actual behavior is correct",
                "Update test data instead of assertion",
            ],
            patch=patch,
        )

    def _assertion_patch(self, failure: TestFailure, context: FixContext) -> tuple[str, FileDiff | None]:
        expected, actual = failure.expected_value, failure.actual_value
        if expected is None:
            return "Could not locate the assertion: no expected value was reported", None

        renderings = [
            (repr(expected), repr(actual)),
            (json.dumps(expected, default=str), json.dumps(actual, default=str)),
            (str(expected), str(actual)),
        ]
        lines = context.test_code.split("\n")
        for index, line in enumerate(lines):
            if "assert" not in line and "expect" not in line:
                continue
            for old_literal, new_literal in renderings:
                if old_literal and old_literal in line:
                    lines[index] = line.replace(old_literal, new_literal, 1)
                    patch = self._patch(failure, context.test_code, "\n".join(lines))
                    return format_unified(patch), patch
        return f"Could not locate an assertion containing {expected!r} in test code", None

    # LLM

    async def _llm_suggestion(self, failure: TestFailure, context: FixContext) -> FixSuggestion | None:
        extra = f"- Current Selector: {context.current_selector}" if context.current_selector else ""
        prompt = SUGGESTION_PROMPT.format(
            test_file=failure.test_file,
            test_code=context.test_code[:4000],
            error_message=failure.error_message,
            stack_trace=failure.stack_trace[:300],
            extra=extra,
        )
        try:
            response = await self.llm.generate(LLMRequest(prompt=prompt, temperature=0.4, max_tokens=800))
        except Exception as e:
            logger.warning("llm_suggestion_failed", test=failure.test_name, error=str(e))
            return None

        data = extract_json(response.content)
        if not data or not data.get("description") or not data.get("diff"):
            logger.warning("llm_suggestion_unparseable", test=failure.test_name)
            return None

        try:
            fix_type = FixType(str(data.get("type", "")).lower())
        except ValueError:
            fix_type = FixType.OTHER
        try:
            effort = Effort(str(data.get("estimatedEffort", "")).lower())
        except ValueError:
            effort = Effort.MEDIUM

        diff_text = str(data["diff"])
        approaches = data.get("alternativeApproaches")
        return FixSuggestion(
            type=fix_type,
            description=str(data["description"]),
            diff_text=diff_text,
            confidence=LLM_CONFIDENCE,
            estimated_effort=effort,
            reasoning=str(data.get("reasoning", "")),
            alternative_approaches=[str(a) for a in approaches] if isinstance(approaches, list) else [],
            patch=self._parse_llm_patch(diff_text, failure),
        )

    @staticmethod
    def _parse_llm_patch(diff_text: str, failure: TestFailure) -> FileDiff | None:
        try:
            diffs = parse_unified(diff_text)
        except DiffParseError:
            return None
        if len(diffs) != 1 or diffs[0].is_empty:
            return None
        diffs[0].file_path = failure.test_file
        return diffs[0]


def human_readable_guide(suggestion: FixSuggestion) -> str:
    """Markdown walkthrough of one suggestion."""
    lines = [
        f"## Fix Suggestion: {suggestion.description}",
        "",
        f"**Type:** {suggestion.type.value}",
        f"**Confidence:** {suggestion.confidence * 100:.0f}%",
        f"**Effort:** {suggestion.estimated_effort.value}",
        "",
        "**Why this works:**",
        suggestion.reasoning or "No reasoning provided.",
        "",
        "**Proposed Changes:**",
        "```diff",
        suggestion.diff_text,
        "```",
    ]
    if suggestion.alternative_approaches:
        lines += ["", "**Alternative Approaches:**"]
        lines += [f"{i}. {alt}" for i, alt in enumerate(suggestion.alternative_approaches, 1)]
    return "\n".join(lines) + "\n"
