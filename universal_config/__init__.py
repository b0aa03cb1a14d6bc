"""Universal configuration rule engine.

Organizations describe operational policy (booking, pricing, approvals) as
prioritized, conditional rules; the engine picks the rules that apply to a
context and merges them into one effective payload.
"""

__version__ = "0.1.0"

from universal_config.core.models import Decision, Rule, RuleInput, RuleStatus, SaveResult
from universal_config.engine import RuleEngine, get_rule_engine
from universal_config.errors import (
    AmbiguousOverride,
    InvalidContext,
    OperationCancelled,
    RuleEngineError,
    RuleNotFound,
    StorageUnavailable,
    TemplateNotFound,
    UnknownFamily,
)

__all__ = [
    "__version__",
    "Decision",
    "Rule",
    "RuleInput",
    "RuleStatus",
    "SaveResult",
    "RuleEngine",
    "get_rule_engine",
    "AmbiguousOverride",
    "InvalidContext",
    "OperationCancelled",
    "RuleEngineError",
    "RuleNotFound",
    "StorageUnavailable",
    "TemplateNotFound",
    "UnknownFamily",
]
