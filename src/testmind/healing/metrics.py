"""Healing metrics sink, passed explicitly to the orchestrator."""

from collections import Counter
from dataclasses import dataclass, field

from ..models import SelfHealingResult


@dataclass
class HealingMetrics:
    """Counts and durations of heal attempts. Only ever appended to."""

    attempts: int = 0
    healed: int = 0
    errors: int = 0
    by_strategy: Counter = field(default_factory=Counter)
    by_failure_type: Counter = field(default_factory=Counter)
    durations_ms: list[float] = field(default_factory=list)

    def record(self, result: SelfHealingResult) -> None:
        self.attempts += 1
        if result.healed:
            self.healed += 1
        self.by_strategy[result.strategy.value] += 1
        self.by_failure_type[result.classification.failure_type.value] += 1
        self.durations_ms.append(result.duration_ms)

    def record_error(self) -> None:
        self.attempts += 1
        self.errors += 1

    @property
    def success_rate(self) -> float:
        return self.healed / self.attempts if self.attempts else 0.0

    @property
    def average_duration_ms(self) -> float:
        return sum(self.durations_ms) / len(self.durations_ms) if self.durations_ms else 0.0

    def snapshot(self) -> dict:
        return {
            "attempts": self.attempts,
            "healed": self.healed,
            "errors": self.errors,
            "success_rate": round(self.success_rate, 4),
            "average_duration_ms": round(self.average_duration_ms, 2),
            "by_strategy": dict(self.by_strategy),
            "by_failure_type": dict(self.by_failure_type),
        }
