"""LangGraph workflow for healing a single test failure."""

from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, TypedDict

import structlog
from langgraph.graph import END, StateGraph

from ..locator.adapter import BrowserContext
from ..locator.engine import descriptor_from_result, descriptor_from_selector
from ..models import (
    ApplyResult,
    ClassificationResult,
    FailureType,
    FixContext,
    FixSuggestion,
    HealingStrategy,
    LocatorResult,
    TestFailure,
)

if TYPE_CHECKING:
    from ..healing.orchestrator import SelfHealingOrchestrator

logger = structlog.get_logger(__name__)


class HealingState(TypedDict):
    """State for the healing workflow."""

    # Input
    failure: TestFailure
    context: FixContext
    browser: BrowserContext | None

    # Stage results
    classification: ClassificationResult | None
    strategy: HealingStrategy | None
    new_locator: LocatorResult | None
    suggestions: list[FixSuggestion]

    # Output
    apply_result: ApplyResult | None
    healed: bool


def initial_state(
    failure: TestFailure,
    context: FixContext,
    browser: BrowserContext | None = None,
) -> HealingState:
    return {
        "failure": failure,
        "context": context,
        "browser": browser,
        "classification": None,
        "strategy": None,
        "new_locator": None,
        "suggestions": [],
        "apply_result": None,
        "healed": False,
    }


def should_locate(state: HealingState) -> str:
    """Relocation only makes sense for fragile tests that name a selector."""
    classification = state["classification"]
    if classification.failure_type is FailureType.TEST_FRAGILITY and state["failure"].selector:
        return "locate"
    return "suggest"


def should_apply(state: HealingState) -> str:
    """Only AUTO_FIX with something to work with reaches the applier."""
    if state["strategy"] is HealingStrategy.AUTO_FIX and (
        state.get("new_locator") is not None or state.get("suggestions")
    ):
        return "apply"
    return END


class HealingWorkflow:
    """Graph nodes bound to the orchestrator's collaborators."""

    def __init__(self, orchestrator: "SelfHealingOrchestrator"):
        self.orchestrator = orchestrator
        self.graph = self.build()

    async def classify(self, state: HealingState) -> dict:
        """Classify why the test failed."""
        classification = await self.orchestrator.classifier.classify(state["failure"])
        return {"classification": classification}

    def choose_strategy(self, state: HealingState) -> dict:
        """Pick AUTO_FIX, SUGGEST_FIX or CANNOT_FIX."""
        healing = self.orchestrator.config.healing
        classification = state["classification"]

        # Real bugs are never patched, whatever the thresholds say
        if classification.failure_type is FailureType.REAL_BUG:
            strategy = HealingStrategy.CANNOT_FIX
        elif healing.enable_auto_fix and classification.confidence >= healing.auto_fix_threshold:
            strategy = HealingStrategy.AUTO_FIX
        else:
            strategy = HealingStrategy.SUGGEST_FIX
        return {"strategy": strategy}

    async def locate(self, state: HealingState) -> dict:
        """Try to relocate the element the test depended on."""
        failure = state["failure"]
        text = failure.expected_value if isinstance(failure.expected_value, str) else None
        descriptor = descriptor_from_selector(failure.selector, text)
        descriptor.semantic_intent = f"Element for {failure.test_name}"

        result = await self.orchestrator.locator.locate(descriptor, state.get("browser"))
        return {"new_locator": result}

    async def suggest(self, state: HealingState) -> dict:
        """Generate ranked fix suggestions."""
        failure = state["failure"]
        context = state["context"]

        alternatives = list(context.alternative_selectors or [])
        if state.get("new_locator") is not None:
            relocated = descriptor_from_result(state["new_locator"])
            if not relocated.is_empty():
                alternatives.insert(0, relocated)

        fix_context = replace(
            context,
            current_selector=context.current_selector or failure.selector,
            alternative_selectors=alternatives or None,
            classification=state["classification"],
        )
        suggestions = await self.orchestrator.suggester.suggest_fixes(failure, fix_context)
        return {"suggestions": suggestions}

    def apply(self, state: HealingState) -> dict:
        """Apply the best patchable suggestion through the diff applier."""
        failure = state["failure"]
        patchable = next((s for s in state["suggestions"] if s.patch is not None), None)

        if patchable is None:
            # Nothing to write; a relocation alone still heals at runtime
            return {"healed": state.get("new_locator") is not None}

        applier = self.orchestrator.applier
        target = Path(failure.test_file)
        if target.is_file():
            result = applier.apply_file(patchable.patch, target)
        else:
            result = applier.apply(patchable.patch, state["context"].test_code)

        logger.info(
            "auto_fix_attempted",
            test=failure.test_name,
            fix_type=patchable.type.value,
            applied=result.applied,
            conflicts=len(result.conflicts),
        )
        return {"apply_result": result, "healed": result.success and result.applied}

    def build(self):
        """Build the LangGraph workflow for healing one failure."""
        graph = StateGraph(HealingState)

        # Add nodes
        graph.add_node("classify", self.classify)
        graph.add_node("choose_strategy", self.choose_strategy)
        graph.add_node("locate", self.locate)
        graph.add_node("suggest", self.suggest)
        graph.add_node("apply", self.apply)

        # Add edges
        graph.set_entry_point("classify")
        graph.add_edge("classify", "choose_strategy")
        graph.add_conditional_edges("choose_strategy", should_locate, {
            "locate": "locate",
            "suggest": "suggest",
        })
        graph.add_edge("locate", "suggest")
        graph.add_conditional_edges("suggest", should_apply, {
            "apply": "apply",
            END: END,
        })
        graph.add_edge("apply", END)

        return graph.compile()

    async def run(
        self,
        failure: TestFailure,
        context: FixContext,
        browser: BrowserContext | None = None,
    ) -> HealingState:
        return await self.graph.ainvoke(initial_state(failure, context, browser))
