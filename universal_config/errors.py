"""Error taxonomy for rule evaluation and rule lifecycle operations.

Validation problems are not exceptions: they are returned as
``RuleValidationError`` records from ``RuleEngine.save_rule``. Everything
here is raised and must reach the caller.
"""

from __future__ import annotations


class RuleEngineError(Exception):
    """Base class for all rule engine errors."""

    code = "rule_engine_error"


class UnknownFamily(RuleEngineError):
    """A rule family was referenced that was never registered."""

    code = "unknown_family"

    def __init__(self, family: str):
        self.family = family
        super().__init__(f"Unknown rule family: {family}")


class InvalidContext(RuleEngineError):
    """Context is missing keys the family declares as required, or holds an unreadable time."""

    code = "invalid_context"

    def __init__(self, family: str, missing: list[str]):
        self.family = family
        self.missing = missing
        super().__init__(
            f"Context for family '{family}' is missing or cannot read required keys: {', '.join(missing)}"
        )


class AmbiguousOverride(RuleEngineError):
    """Two or more matching rules share the top priority under override semantics."""

    code = "ambiguous_override"

    def __init__(self, family: str, priority: int, rule_ids: list[str], field: str | None = None):
        self.family = family
        self.priority = priority
        self.rule_ids = rule_ids
        self.field = field
        target = f" on field '{field}'" if field else ""
        super().__init__(
            f"Rules {', '.join(rule_ids)} share top priority {priority}{target} "
            f"in family '{family}'"
        )


class StorageUnavailable(RuleEngineError):
    """The backing rule store failed."""

    code = "storage_unavailable"


class OperationCancelled(RuleEngineError):
    """The caller cancelled the operation or its deadline passed."""

    code = "operation_cancelled"


class RuleNotFound(RuleEngineError):
    """No rule with the given id exists for the organization."""

    code = "rule_not_found"

    def __init__(self, organization_id: str, rule_id: str):
        self.organization_id = organization_id
        self.rule_id = rule_id
        super().__init__(f"Rule not found: {rule_id} (organization {organization_id})")


class TemplateNotFound(RuleEngineError):
    """No template with the given name is registered for the family."""

    code = "template_not_found"

    def __init__(self, family: str, template_name: str):
        self.family = family
        self.template_name = template_name
        super().__init__(f"Template '{template_name}' not found for family '{family}'")
