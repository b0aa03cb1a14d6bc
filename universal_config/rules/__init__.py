"""Rule matching, validation, merging, evaluation and templates."""

from .evaluator import RuleEvaluator
from .matcher import OPERATORS, ConditionMatcher
from .resolver import MergeResolver, order_by_precedence
from .templates import BUILTIN_TEMPLATES_DIR, TemplateRegistry
from .validator import RuleValidator

__all__ = [
    "RuleEvaluator",
    "OPERATORS",
    "ConditionMatcher",
    "MergeResolver",
    "order_by_precedence",
    "BUILTIN_TEMPLATES_DIR",
    "TemplateRegistry",
    "RuleValidator",
]
