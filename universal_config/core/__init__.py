"""Core types shared by the rule engine components."""

from .cancellation import CancellationToken, resolve_token
from .models import (
    STATUS_TRANSITIONS,
    ContributingRule,
    Decision,
    FieldCondition,
    MergeStrategy,
    Rule,
    RuleConditions,
    RuleEvent,
    RuleEventType,
    RuleInput,
    RuleStatus,
    RuleTemplate,
    RuleTrace,
    RuleValidationError,
    SaveResult,
    TimeRange,
    TraceStep,
    generate_rule_id,
    now_utc,
)
from .smart_code import build_smart_code, family_prefix, is_valid_smart_code

__all__ = [
    "CancellationToken",
    "resolve_token",
    "STATUS_TRANSITIONS",
    "ContributingRule",
    "Decision",
    "FieldCondition",
    "MergeStrategy",
    "Rule",
    "RuleConditions",
    "RuleEvent",
    "RuleEventType",
    "RuleInput",
    "RuleStatus",
    "RuleTemplate",
    "RuleTrace",
    "RuleValidationError",
    "SaveResult",
    "TimeRange",
    "TraceStep",
    "generate_rule_id",
    "now_utc",
    "build_smart_code",
    "family_prefix",
    "is_valid_smart_code",
]
