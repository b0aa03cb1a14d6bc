"""Approval routing family: who signs off on a transaction."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from universal_config.core.models import MergeStrategy, RuleValidationError
from .registry import FamilyDefinition, FieldPolicy


class ApprovalPolicy(BaseModel):
    """Payload of an approval rule."""

    model_config = ConfigDict(extra="forbid")

    required_approvals: int = Field(1, ge=0, le=10)
    approver_role: str | None = "manager"
    auto_approve_limit: float = Field(0, ge=0)
    escalation_hours: int = Field(24, ge=1, le=720)


def check_approval_policy(policy: ApprovalPolicy) -> list[RuleValidationError]:
    if policy.required_approvals > 0 and not policy.approver_role:
        return [RuleValidationError(
            field="payload.approver_role",
            message="approver_role is required when approvals are required",
            code="required",
        )]
    return []


APPROVAL_FAMILY = FamilyDefinition(
    name="approval",
    payload_model=ApprovalPolicy,
    strategy=MergeStrategy.OVERRIDE,
    required_context=("amount",),
    condition_keys=frozenset({
        "amount_above",
        "amount_below",
        "transaction_type",
        "department",
    }),
    field_policies={
        "required_approvals": FieldPolicy("max"),
        "auto_approve_limit": FieldPolicy("min"),
        "escalation_hours": FieldPolicy("min"),
    },
    semantic_checks=(check_approval_policy,),
    description="Transaction approval routing",
)
