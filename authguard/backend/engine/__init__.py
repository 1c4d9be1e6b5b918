"""engine/__init__.py"""
from .actions import ActionDispatcher
from .engine import RuleEngine
from .events import EventBus
from .factory import RuleDefinition, RuleFactory, load_rule_definitions
from .models import EvaluationResult, RuleContext, SecurityEventType, Severity

__all__ = [
    "ActionDispatcher",
    "EventBus",
    "EvaluationResult",
    "RuleContext",
    "RuleDefinition",
    "RuleEngine",
    "RuleFactory",
    "SecurityEventType",
    "Severity",
    "load_rule_definitions",
]
