"""Structural and semantic validation of rules before they are stored.

Validation is pure: it never mutates the rule and never raises for bad
input, it only reports problems.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from universal_config.core.models import Rule, RuleConditions, RuleInput, RuleStatus, RuleValidationError
from universal_config.core.smart_code import is_valid_smart_code
from universal_config.core.timeparse import is_hhmm, normalize_weekday
from universal_config.families.registry import FAMILY_NAME_PATTERN, FamilyDefinition, FamilyRegistry
from universal_config.errors import UnknownFamily
from .matcher import OPERATORS, threshold_metric

# pydantic error types -> our error codes
_ERROR_CODES = {
    "missing": "required",
    "less_than": "out_of_range",
    "less_than_equal": "out_of_range",
    "greater_than": "out_of_range",
    "greater_than_equal": "out_of_range",
    "enum": "invalid_choice",
    "literal_error": "invalid_choice",
    "extra_forbidden": "unknown_field",
    "string_pattern_mismatch": "invalid_format",
}


def errors_from_pydantic(exc: ValidationError, prefix: str) -> list[RuleValidationError]:
    """Convert a pydantic ValidationError into rule validation errors."""
    errors = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"])
        errors.append(RuleValidationError(
            field=".".join(part for part in (prefix, loc) if part),
            message=err["msg"],
            code=_ERROR_CODES.get(err["type"], "invalid"),
        ))
    return errors


class RuleValidator:
    """Validates rules against the schema of their registered family."""

    def __init__(self, registry: FamilyRegistry):
        self.registry = registry

    def validate(
        self, rule: RuleInput | Rule, family: FamilyDefinition | None = None
    ) -> list[RuleValidationError]:
        """Return every problem found in ``rule``; an empty list means valid."""
        errors: list[RuleValidationError] = []

        if not rule.organization_id or not rule.organization_id.strip():
            errors.append(RuleValidationError(
                field="organization_id", message="organization_id is required", code="required"
            ))
        if rule.id is not None and not str(rule.id).strip():
            errors.append(RuleValidationError(field="id", message="id must not be blank"))

        status = rule.status.value if isinstance(rule.status, RuleStatus) else rule.status
        if status not in {s.value for s in RuleStatus}:
            errors.append(RuleValidationError(
                field="status",
                message=f"Invalid status '{status}', expected one of "
                        f"{', '.join(s.value for s in RuleStatus)}",
                code="invalid_choice",
            ))

        if family is None:
            if not FAMILY_NAME_PATTERN.match(rule.family or ""):
                errors.append(RuleValidationError(
                    field="family", message=f"Invalid family name '{rule.family}'", code="invalid_format"
                ))
                return errors
            try:
                family = self.registry.get(rule.family)
            except UnknownFamily:
                errors.append(RuleValidationError(
                    field="family", message=f"Unknown rule family '{rule.family}'", code="unknown_family"
                ))
                return errors

        if rule.smart_code is not None:
            errors.extend(self._validate_smart_code(rule.smart_code, family))

        conditions = rule.conditions
        if isinstance(conditions, RuleConditions):
            conditions = conditions.model_dump(exclude_none=True)
        errors.extend(self.validate_conditions(conditions, family))
        errors.extend(self.validate_payload(rule.payload, family))
        return errors

    # =========================================================================
    # Sections
    # =========================================================================

    def validate_payload(
        self, payload: Mapping[str, Any], family: FamilyDefinition
    ) -> list[RuleValidationError]:
        try:
            parsed = family.parse_payload(payload)
        except ValidationError as e:
            return errors_from_pydantic(e, "payload")

        errors = []
        for check in family.semantic_checks:
            errors.extend(check(parsed))
        return errors

    def validate_conditions(
        self, conditions: Mapping[str, Any], family: FamilyDefinition
    ) -> list[RuleValidationError]:
        errors: list[RuleValidationError] = []

        # Formats are checked on the raw mapping so problems are reported
        # individually instead of as one opaque parse failure.
        for day in conditions.get("days_of_week") or []:
            if not isinstance(day, str) or normalize_weekday(day) is None:
                errors.append(RuleValidationError(
                    field="conditions.days_of_week",
                    message=f"Unknown weekday '{day}'",
                    code="invalid_choice",
                ))

        for i, window in enumerate(conditions.get("time_ranges") or []):
            if not isinstance(window, Mapping):
                continue
            for key in ("start", "end"):
                value = window.get(key)
                if not is_hhmm(value):
                    errors.append(RuleValidationError(
                        field=f"conditions.time_ranges[{i}].{key}",
                        message=f"Invalid time '{value}', expected HH:MM",
                        code="invalid_format",
                    ))

        try:
            parsed = RuleConditions.model_validate(dict(conditions))
        except ValidationError as e:
            return errors + errors_from_pydantic(e, "conditions")

        if (
            parsed.effective_from is not None
            and parsed.effective_to is not None
            and parsed.effective_from > parsed.effective_to
        ):
            errors.append(RuleValidationError(
                field="conditions.effective_to",
                message="effective_to must not be earlier than effective_from",
                code="cross_field",
            ))

        for i, cond in enumerate(parsed.all or []):
            field = f"conditions.all[{i}]"
            if cond.operator not in OPERATORS:
                errors.append(RuleValidationError(
                    field=f"{field}.operator",
                    message=f"Unknown operator '{cond.operator}'",
                    code="invalid_choice",
                ))
            elif cond.operator in ("in", "not_in") and not isinstance(cond.value, list):
                errors.append(RuleValidationError(
                    field=f"{field}.value", message=f"'{cond.operator}' requires a list value"
                ))
            elif cond.operator == "regex":
                try:
                    re.compile(str(cond.value))
                except re.error as e:
                    errors.append(RuleValidationError(
                        field=f"{field}.value", message=f"Invalid regex: {e}", code="invalid_format"
                    ))

        for key, value in sorted(parsed.extra_conditions().items()):
            if not family.is_condition_key(key):
                errors.append(RuleValidationError(
                    field=f"conditions.{key}",
                    message=f"Unknown condition key '{key}' for family '{family.name}'",
                    code="unknown_condition",
                ))
            elif threshold_metric(key) and (
                not isinstance(value, (int, float)) or isinstance(value, bool)
            ):
                errors.append(RuleValidationError(
                    field=f"conditions.{key}",
                    message=f"Threshold '{key}' must be numeric",
                    code="invalid_type",
                ))

        return errors

    def _validate_smart_code(
        self, smart_code: str, family: FamilyDefinition
    ) -> list[RuleValidationError]:
        if not is_valid_smart_code(smart_code):
            return [RuleValidationError(
                field="smart_code",
                message=f"Invalid smart code '{smart_code}'",
                code="invalid_format",
            )]
        if not smart_code.startswith(f"{family.smart_code_prefix}."):
            return [RuleValidationError(
                field="smart_code",
                message=f"Smart code must start with '{family.smart_code_prefix}'",
                code="invalid_format",
            )]
        return []
