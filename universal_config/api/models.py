"""Pydantic models for API requests and responses."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from universal_config.core.models import (
    MergeStrategy,
    Rule,
    RuleEvent,
    RuleInput,
    RuleTemplate,
    RuleValidationError,
    ScenarioResult,
    SimulationScenario,
)


# =============================================================================
# Evaluation Models
# =============================================================================


class EvaluateRequest(BaseModel):
    """Request for an effective configuration decision."""

    organization_id: str = Field(..., description="Tenant whose rules are evaluated")
    family: str = Field(..., description="Rule family, e.g. 'booking'")
    context: dict[str, Any] = Field(default_factory=dict)
    now: datetime | None = Field(None, description="Clock used for effective date windows")
    timeout_seconds: float | None = Field(None, gt=0)
    include_trace: bool = Field(False, description="Return per-rule match traces")


# =============================================================================
# Rule Models
# =============================================================================


class RuleListResponse(BaseModel):
    """Active rules of one family for an organization."""

    organization_id: str
    family: str
    rules: list[Rule]
    total: int


class RuleHistoryResponse(BaseModel):
    """All stored versions of a rule with its lifecycle events."""

    organization_id: str
    rule_id: str
    versions: list[Rule]
    events: list[RuleEvent]


class StatusUpdateRequest(BaseModel):
    """Request to move a rule to another status."""

    status: str = Field(..., description="draft, active, inactive or archived")


class SimulateRequest(BaseModel):
    """Request to test a draft or stored rule against sample scenarios."""

    rule: RuleInput | None = Field(None, description="Draft rule definition; never stored")
    rule_id: str | None = Field(None, description="Id of a stored rule, used when rule is omitted")
    organization_id: str | None = Field(None, description="Owner of rule_id")
    scenarios: list[SimulationScenario] = Field(..., min_length=1)
    now: datetime | None = Field(None, description="Clock used for effective date windows")


class SimulateResponse(BaseModel):
    """Per-scenario results for a simulated rule."""

    rule: Rule | None = None
    errors: list[RuleValidationError] = Field(default_factory=list)
    results: list[ScenarioResult]
    passed: int
    failed: int
    coverage: float


# =============================================================================
# Template and Family Models
# =============================================================================


class TemplateListResponse(BaseModel):
    """Templates registered for a family."""

    family: str
    templates: list[RuleTemplate]
    total: int


class InstantiateRequest(BaseModel):
    """Request to copy a template for an organization."""

    organization_id: str
    save: bool = Field(False, description="Store the draft instead of only returning it")


class FamilyInfo(BaseModel):
    """Summary of a registered rule family."""

    name: str
    strategy: MergeStrategy
    required_context: list[str]
    condition_keys: list[str]
    default_payload: dict[str, Any]
    description: str = ""


class FamilyListResponse(BaseModel):
    """All registered families."""

    families: list[FamilyInfo]
    total: int
