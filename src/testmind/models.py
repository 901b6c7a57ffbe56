"""Core data models for TestMind."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp a confidence value into [low, high]."""
    return max(low, min(high, float(value)))


class FailureType(Enum):
    """Why a test failed."""

    ENVIRONMENT = "environment"
    REAL_BUG = "real_bug"
    TEST_FRAGILITY = "test_fragility"
    UNKNOWN = "unknown"


class LocatorStrategy(Enum):
    """Strategies of the locator waterfall."""

    ID = "id"
    CSS_SELECTOR = "css_selector"
    XPATH = "xpath"
    VISUAL = "visual"
    SEMANTIC = "semantic"


class FixType(Enum):
    """Kinds of fix suggestions."""

    UPDATE_SELECTOR = "update_selector"
    ADD_WAIT = "add_wait"
    ADD_RETRY = "add_retry"
    FIX_ASSERTION = "fix_assertion"
    UPDATE_TEST_DATA = "update_test_data"
    OTHER = "other"


class Effort(Enum):
    """Estimated effort to apply a fix."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class HealingStrategy(Enum):
    """Healing decision taken for a failure."""

    AUTO_FIX = "auto_fix"
    SUGGEST_FIX = "suggest_fix"
    CANNOT_FIX = "cannot_fix"


class DiffLineKind(Enum):
    """Kind of a line inside a hunk."""

    CONTEXT = "context"
    ADDITION = "addition"
    DELETION = "deletion"


class DiffOperation(Enum):
    """What a file diff does to its file."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


@dataclass(frozen=True)
class TestRunRecord:
    """One historical run of a test."""

    __test__ = False

    timestamp: datetime
    passed: bool
    duration_ms: float
    error_message: str | None = None


@dataclass(frozen=True)
class TestFailure:
    """A single failing test, as reported by the caller."""

    __test__ = False

    test_name: str
    test_file: str
    error_message: str
    stack_trace: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    selector: str | None = None
    expected_value: Any = None
    actual_value: Any = None
    timeout_ms: int | None = None
    previous_runs: list[TestRunRecord] = field(default_factory=list)

    @property
    def test_id(self) -> str:
        """Stable identity used to key batch results."""
        return f"{self.test_file}::{self.test_name}"


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of classifying a failure."""

    failure_type: FailureType
    confidence: float
    reasoning: str
    suggested_actions: list[str] = field(default_factory=list)
    is_flaky: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp(self.confidence))


@dataclass(frozen=True)
class FlakinessAnalysis:
    """Scored flakiness diagnostics for a failure's run history."""

    is_flaky: bool
    score: float  # 0.0 - 1.0
    reasons: list[str]
    recommendation: str
    pass_rate: float | None = None


@dataclass
class ElementDescriptor:
    """Sparse description of a UI element. Any subset of fields may be set."""

    id: str | None = None
    css_selector: str | None = None
    xpath: str | None = None
    text_content: str | None = None
    visual_signature: str | None = None  # JSON encoded feature vector
    semantic_intent: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not any((
            self.id,
            self.css_selector,
            self.xpath,
            self.text_content,
            self.visual_signature,
            self.semantic_intent,
            self.attributes,
        ))


@dataclass
class LocatorResult:
    """An element found by one strategy of the waterfall."""

    element: Any  # opaque adapter handle
    strategy: LocatorStrategy
    confidence: float  # strategy-local, 0.0 - 1.0
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.confidence = clamp(self.confidence)


@dataclass
class DiffLine:
    """A single line inside a hunk."""

    kind: DiffLineKind
    content: str
    old_line_number: int | None = None  # 1-based
    new_line_number: int | None = None  # 1-based

    @property
    def prefix(self) -> str:
        if self.kind is DiffLineKind.ADDITION:
            return "+"
        if self.kind is DiffLineKind.DELETION:
            return "-"
        return " "


@dataclass
class DiffHunk:
    """A contiguous block of line changes. Line numbers are 1-based."""

    old_start: int
    old_line_count: int
    new_start: int
    new_line_count: int
    lines: list[DiffLine] = field(default_factory=list)

    @property
    def header(self) -> str:
        return (
            f"@@ -{self.old_start},{self.old_line_count} "
            f"+{self.new_start},{self.new_line_count} @@"
        )


@dataclass
class FileDiff:
    """Difference between two full-text snapshots of one file."""

    file_path: str
    old_content: str
    new_content: str
    operation: DiffOperation = DiffOperation.MODIFY
    hunks: list[DiffHunk] = field(default_factory=list)

    @property
    def additions(self) -> int:
        return sum(
            1 for hunk in self.hunks for line in hunk.lines
            if line.kind is DiffLineKind.ADDITION
        )

    @property
    def deletions(self) -> int:
        return sum(
            1 for hunk in self.hunks for line in hunk.lines
            if line.kind is DiffLineKind.DELETION
        )

    @property
    def is_empty(self) -> bool:
        return not self.hunks


@dataclass
class Conflict:
    """A hunk line that does not match the current file."""

    hunk_index: int
    line_number: int  # 1-based, absolute in the current file
    reason: str
    expected: str
    actual: str


@dataclass
class ApplyResult:
    """Outcome of applying a diff.

    ``applied=False`` with ``success=True`` signals a detected conflict
    that was not forced.
    """

    success: bool
    applied: bool
    conflicts: list[Conflict] = field(default_factory=list)
    backup_path: str | None = None
    error: str | None = None
    file_path: str | None = None
    new_content: str | None = None


@dataclass
class FixSuggestion:
    """A proposed fix. ``diff_text`` is a patch fragment for humans and tools."""

    type: FixType
    description: str
    diff_text: str
    confidence: float
    estimated_effort: Effort = Effort.LOW
    reasoning: str = ""
    alternative_approaches: list[str] = field(default_factory=list)
    patch: FileDiff | None = None  # None when the target text was not located

    def __post_init__(self) -> None:
        self.confidence = clamp(self.confidence)


@dataclass
class FixContext:
    """Per-call inputs for suggesting or applying fixes."""

    test_code: str
    failed_line: int | None = None  # 1-based
    current_selector: str | None = None
    alternative_selectors: list[ElementDescriptor] | None = None
    classification: ClassificationResult | None = None


@dataclass
class SelfHealingResult:
    """Result of one heal() call. Read-only after it is returned."""

    healed: bool
    strategy: HealingStrategy
    suggestions: list[FixSuggestion]
    classification: ClassificationResult
    new_locator: LocatorResult | None
    confidence: float
    duration_ms: float
    apply_result: ApplyResult | None = None

    def __post_init__(self) -> None:
        self.confidence = clamp(self.confidence)
