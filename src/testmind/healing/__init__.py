"""Healing: failure classification, fix suggestion and orchestration."""

from .classifier import FailureClassifier
from .metrics import HealingMetrics
from .orchestrator import SelfHealingOrchestrator, generate_healing_report
from .suggester import FixSuggester, human_readable_guide

__all__ = [
    "FailureClassifier",
    "FixSuggester",
    "HealingMetrics",
    "SelfHealingOrchestrator",
    "generate_healing_report",
    "human_readable_guide",
]
