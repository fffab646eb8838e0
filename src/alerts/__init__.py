"""Alert rule evaluation and event lifecycle."""

from src.alerts.config import AlertConfig
from src.alerts.evaluator import evaluate, pick_latest, severity_for
from src.alerts.repository import AlertRepository
from src.alerts.schemas import (
    AlertEvent,
    AlertRule,
    CycleSummary,
    RuleOutcome,
    Verdict,
)
from src.alerts.service import AlertEngine

__all__ = [
    "AlertConfig",
    "AlertEngine",
    "AlertEvent",
    "AlertRepository",
    "AlertRule",
    "CycleSummary",
    "RuleOutcome",
    "Verdict",
    "evaluate",
    "pick_latest",
    "severity_for",
]
