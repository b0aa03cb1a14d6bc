"""Pydantic models for rules, decisions and the rule lifecycle.

A ``Rule`` is frozen once constructed: lifecycle changes produce a new
instance through ``model_copy(update=...)`` so cached rule sets can be shared
between concurrent evaluations without copying.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field


def generate_rule_id() -> str:
    """Generate a new opaque rule identifier."""
    return str(uuid.uuid4())


def now_utc() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# Enumerations
# =============================================================================


class RuleStatus(str, Enum):
    """Lifecycle status of a rule."""
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class MergeStrategy(str, Enum):
    """How several matching rules are combined into one payload."""
    RESTRICTIVE = "restrictive"
    PERMISSIVE = "permissive"
    OVERRIDE = "override"
    ADDITIVE = "additive"


class RuleEventType(str, Enum):
    """Types of rule lifecycle events."""
    CREATED = "rule_created"
    VERSIONED = "rule_versioned"
    UPDATED = "rule_updated"
    STATUS_CHANGED = "rule_status_changed"
    ARCHIVED = "rule_archived"


# Allowed in-place status transitions
STATUS_TRANSITIONS: dict[RuleStatus, frozenset[RuleStatus]] = {
    RuleStatus.DRAFT: frozenset({RuleStatus.ACTIVE, RuleStatus.INACTIVE, RuleStatus.ARCHIVED}),
    RuleStatus.ACTIVE: frozenset({RuleStatus.INACTIVE, RuleStatus.ARCHIVED}),
    RuleStatus.INACTIVE: frozenset({RuleStatus.ACTIVE, RuleStatus.ARCHIVED}),
    RuleStatus.ARCHIVED: frozenset(),
}


# =============================================================================
# Conditions
# =============================================================================


class TimeRange(BaseModel):
    """A daily time window in HH:MM; end is exclusive and may wrap midnight."""

    model_config = ConfigDict(frozen=True)

    start: str
    end: str


class FieldCondition(BaseModel):
    """A generic ``field operator value`` comparison against the context."""

    model_config = ConfigDict(frozen=True)

    field: str
    operator: str = "=="
    value: Any = None


class RuleConditions(BaseModel):
    """Declarative predicate attached to a rule.

    Keys beyond the generic ones are kept in ``model_extra`` so the matcher
    and validator can check them against the family's registered condition
    keys (thresholds such as ``utilization_below`` or matchers such as
    ``loyalty_tier``).
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    GENERIC_KEYS: ClassVar[frozenset[str]] = frozenset(
        {"effective_from", "effective_to", "days_of_week", "time_ranges", "match", "all"}
    )

    effective_from: date | None = None
    effective_to: date | None = None
    days_of_week: list[str] | None = None
    time_ranges: list[TimeRange] | None = None
    match: dict[str, Any] | None = None
    all: list[FieldCondition] | None = None

    def extra_conditions(self) -> dict[str, Any]:
        """Family-specific condition keys and their values."""
        return dict(self.model_extra or {})


# =============================================================================
# Rules
# =============================================================================


class RuleInput(BaseModel):
    """Caller-supplied rule definition, validated before it becomes a Rule."""

    id: str | None = None
    organization_id: str
    family: str
    sub_family: str | None = None
    status: str = RuleStatus.DRAFT.value
    priority: int = 0
    conditions: dict[str, Any] = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)
    smart_code: str | None = None
    name: str | None = None
    description: str | None = None


class Rule(BaseModel):
    """A stored rule version."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_rule_id)
    organization_id: str
    family: str
    sub_family: str | None = None
    version: int = 1
    status: RuleStatus = RuleStatus.DRAFT
    priority: int = 0
    conditions: RuleConditions = Field(default_factory=RuleConditions)
    payload: dict[str, Any] = Field(default_factory=dict)
    smart_code: str | None = None
    name: str | None = None
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)

    @property
    def is_active(self) -> bool:
        return self.status == RuleStatus.ACTIVE

    def content_differs(self, other: Rule) -> bool:
        """True when anything other than status and priority differs from ``other``."""
        return (
            self.payload != other.payload
            or self.conditions.model_dump() != other.conditions.model_dump()
            or self.sub_family != other.sub_family
            or self.smart_code != other.smart_code
            or self.name != other.name
            or self.description != other.description
        )


class RuleTemplate(BaseModel):
    """A named starter rule used to bootstrap organizations."""

    name: str
    family: str
    sub_family: str | None = None
    priority: int = 0
    conditions: dict[str, Any] = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)
    smart_code: str | None = None
    description: str | None = None


class RuleEvent(BaseModel):
    """An append-only audit record of a rule lifecycle change."""

    organization_id: str
    rule_id: str
    version: int
    event_type: RuleEventType
    sequence_number: int = 0
    timestamp: datetime = Field(default_factory=now_utc)
    data: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Validation results
# =============================================================================


class RuleValidationError(BaseModel):
    """A single problem found while validating a rule."""

    field: str
    message: str
    code: str = "invalid"

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class SaveResult(BaseModel):
    """Outcome of ``RuleEngine.save_rule``: either a rule or validation errors."""

    rule: Rule | None = None
    errors: list[RuleValidationError] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.rule is not None and not self.errors


# =============================================================================
# Decisions
# =============================================================================


class TraceStep(BaseModel):
    """A single condition check performed by the matcher."""

    node: str
    condition: str
    result: bool
    value_checked: Any = None


class RuleTrace(BaseModel):
    """Match outcome of one candidate rule."""

    rule_id: str
    version: int
    matched: bool
    steps: list[TraceStep] = Field(default_factory=list)


class ContributingRule(BaseModel):
    """A rule that contributed to a decision."""

    rule_id: str
    version: int
    priority: int


class Decision(BaseModel):
    """The effective payload for one (family, context) evaluation."""

    organization_id: str | None = None
    family: str
    strategy: MergeStrategy
    payload: dict[str, Any] = Field(default_factory=dict)
    contributing_rules: list[ContributingRule] = Field(default_factory=list)
    field_sources: dict[str, list[str]] = Field(default_factory=dict)
    is_default: bool = False
    trace: list[RuleTrace] = Field(default_factory=list)

    @property
    def rule_ids(self) -> list[str]:
        return [c.rule_id for c in self.contributing_rules]


# =============================================================================
# Simulation
# =============================================================================


class SimulationScenario(BaseModel):
    """A sample context and the payload values a rule should produce for it."""

    scenario_id: str
    context: dict[str, Any] = Field(default_factory=dict)
    expected: dict[str, Any] = Field(default_factory=dict)
    expect_match: bool | None = None


class FieldDiff(BaseModel):
    expected: Any = None
    actual: Any = None


class ScenarioResult(BaseModel):
    """Outcome of one simulated scenario."""

    scenario_id: str
    passed: bool
    matched: bool = False
    payload: dict[str, Any] = Field(default_factory=dict)
    diff: dict[str, FieldDiff] = Field(default_factory=dict)
    steps: list[TraceStep] = Field(default_factory=list)
    error: str | None = None


class SimulationReport(BaseModel):
    """Scenario results for one rule, or the validation errors that stopped the run."""

    rule: Rule | None = None
    errors: list[RuleValidationError] = Field(default_factory=list)
    results: list[ScenarioResult] = Field(default_factory=list)
    passed: int = 0
    failed: int = 0

    @property
    def coverage(self) -> float:
        """Percentage of scenarios that passed."""
        total = self.passed + self.failed
        return 100.0 * self.passed / total if total else 0.0
