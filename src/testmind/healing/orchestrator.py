"""Self-healing orchestrator: classify, relocate, suggest, and maybe apply."""

import asyncio
import time
from contextlib import nullcontext

import structlog

from ..config import Config
from ..diff.applier import DiffApplier
from ..diff.generator import DiffGenerator
from ..graph.workflow import HealingWorkflow
from ..llm.base import LLMService
from ..locator.adapter import BrowserContext
from ..locator.engine import LocatorEngine
from ..models import FixContext, HealingStrategy, SelfHealingResult, TestFailure
from ..tracing import TracingClient
from .classifier import FailureClassifier
from .metrics import HealingMetrics
from .suggester import FixSuggester

logger = structlog.get_logger(__name__)

CLASSIFICATION_WEIGHT = 0.3
SUGGESTION_WEIGHT = 0.4
LOCATOR_WEIGHT = 0.3


class SelfHealingOrchestrator:
    """Heal failing tests one at a time or in bounded batches."""

    def __init__(
        self,
        config: Config | None = None,
        llm: LLMService | None = None,
        classifier: FailureClassifier | None = None,
        locator: LocatorEngine | None = None,
        suggester: FixSuggester | None = None,
        applier: DiffApplier | None = None,
        metrics: HealingMetrics | None = None,
        tracing: TracingClient | None = None,
    ):
        self.config = config or Config()
        self.classifier = classifier or FailureClassifier(llm, self.config.classifier)
        self.locator = locator or LocatorEngine(self.config.locator, llm)
        self.suggester = suggester or FixSuggester(
            llm,
            DiffGenerator(self.config.diff.context_lines, self.config.diff.lookahead),
        )
        self.applier = applier or DiffApplier.from_config(self.config.diff)
        self.metrics = metrics
        self.tracing = tracing
        self.workflow = HealingWorkflow(self)

    async def heal(
        self,
        failure: TestFailure,
        context: FixContext,
        browser: BrowserContext | None = None,
    ) -> SelfHealingResult:
        """Run the healing state machine for one failure."""
        started = time.perf_counter()
        with self._trace(failure) as trace:
            state = await self.workflow.run(failure, context, browser)

            classification = state["classification"]
            suggestions = state["suggestions"]
            new_locator = state["new_locator"]
            result = SelfHealingResult(
                healed=bool(state["healed"]),
                strategy=state["strategy"],
                suggestions=suggestions,
                classification=classification,
                new_locator=new_locator,
                confidence=self.overall_confidence(
                    classification.confidence,
                    [s.confidence for s in suggestions],
                    new_locator.confidence if new_locator else None,
                ),
                duration_ms=(time.perf_counter() - started) * 1000,
                apply_result=state["apply_result"],
            )
            if trace is not None:
                self.tracing.record_heal(
                    trace.id,
                    {
                        "healed": result.healed,
                        "strategy": result.strategy.value,
                        "failure_type": classification.failure_type.value,
                    },
                    result.confidence,
                )

        if self.metrics is not None:
            self.metrics.record(result)
        logger.info(
            "heal_completed",
            test=failure.test_id,
            strategy=result.strategy.value,
            healed=result.healed,
            confidence=round(result.confidence, 3),
            suggestions=len(suggestions),
        )
        return result

    def _trace(self, failure: TestFailure):
        if self.tracing:
            return self.tracing.trace("heal", metadata={"test": failure.test_id})
        return nullcontext(None)

    @staticmethod
    def overall_confidence(
        classification: float | None,
        suggestions: list[float],
        locator: float | None,
    ) -> float:
        """Weighted sum of whichever inputs exist, capped at 1.0."""
        total = 0.0
        if classification is not None:
            total += classification * CLASSIFICATION_WEIGHT
        if suggestions:
            total += sum(suggestions) / len(suggestions) * SUGGESTION_WEIGHT
        if locator is not None:
            total += locator * LOCATOR_WEIGHT
        return min(1.0, total)

    async def heal_batch(
        self,
        failures: list[TestFailure],
        contexts: dict[str, FixContext],
        browser: BrowserContext | None = None,
        concurrency: int | None = None,
    ) -> dict[str, SelfHealingResult]:
        """Heal many failures with bounded fan-out.

        Contexts are looked up by test id, then by test name. Failures with
        no context are skipped; failures that raise are logged and omitted.
        """
        semaphore = asyncio.Semaphore(concurrency or self.config.healing.batch_concurrency)

        async def heal_one(failure: TestFailure) -> tuple[str, SelfHealingResult | None]:
            context = contexts.get(failure.test_id) or contexts.get(failure.test_name)
            if context is None:
                logger.warning("heal_skipped_no_context", test=failure.test_id)
                return failure.test_id, None
            async with semaphore:
                try:
                    return failure.test_id, await self.heal(failure, context, browser)
                except Exception as e:
                    logger.error("heal_failed", test=failure.test_id, error=str(e), exc_info=True)
                    if self.metrics is not None:
                        self.metrics.record_error()
                    return failure.test_id, None

        pairs = await asyncio.gather(*(heal_one(f) for f in failures))
        return {test_id: result for test_id, result in pairs if result is not None}


def generate_healing_report(results: dict[str, SelfHealingResult]) -> str:
    """Markdown report over a batch of healing results."""
    total = len(results)
    healed = sum(1 for r in results.values() if r.healed)
    by_strategy = {s: sum(1 for r in results.values() if r.strategy is s) for s in HealingStrategy}

    lines = [
        "# Self-Healing Report",
        "",
        f"- Total: {total}",
        f"- Healed: {healed}",
        f"- Success rate: {(healed / total * 100) if total else 0:.1f}%",
        f"- Auto-fix: {by_strategy[HealingStrategy.AUTO_FIX]}",
        f"- Suggest-fix: {by_strategy[HealingStrategy.SUGGEST_FIX]}",
        f"- Cannot fix: {by_strategy[HealingStrategy.CANNOT_FIX]}",
    ]
    for test_id, result in sorted(results.items()):
        status = "healed" if result.healed else result.strategy.value
        lines += [
            "",
            f"## {test_id} ({status})",
            "",
            f"- Failure type: {result.classification.failure_type.value} "
            f"({result.classification.confidence * 100:.0f}%)",
            f"- Confidence: {result.confidence * 100:.0f}%",
            f"- Duration: {result.duration_ms:.1f}ms",
        ]
        if result.classification.is_flaky:
            lines.append("- Flaky: yes")
        if result.new_locator is not None:
            lines.append(
                f"- Relocated via {result.new_locator.strategy.value} "
                f"({result.new_locator.confidence * 100:.0f}%)"
            )
        if result.apply_result is not None:
            outcome = "applied" if result.apply_result.applied else "not applied"
            lines.append(f"- Patch {outcome}, {len(result.apply_result.conflicts)} conflict(s)")
            if result.apply_result.backup_path:
                lines.append(f"- Backup: `{result.apply_result.backup_path}`")
        if result.suggestions:
            lines += ["", "| Fix | Confidence | Effort |", "|---|---|---|"]
            for suggestion in result.suggestions:
                lines.append(
                    f"| {suggestion.description} | {suggestion.confidence * 100:.0f}% "
                    f"| {suggestion.estimated_effort.value} |"
                )
    return "\n".join(lines)
