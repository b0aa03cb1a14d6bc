"""Pricing adjustment family: surcharges and discounts that stack."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from universal_config.core.models import MergeStrategy, RuleValidationError
from .registry import FamilyDefinition, FieldPolicy


class PricingAdjustment(BaseModel):
    """Payload of a pricing rule. Percentages are of the list price."""

    model_config = ConfigDict(extra="forbid")

    surcharge_percentage: float = Field(0, ge=0, le=100)
    surcharge_amount: float = Field(0, ge=0)
    discount_percentage: float = Field(0, ge=0, le=100)
    currency: str = Field("USD", pattern=r"^[A-Z]{3}$")
    rounding: Literal["none", "nearest", "up", "down"] = "none"


def check_pricing_adjustment(adjustment: PricingAdjustment) -> list[RuleValidationError]:
    errors = []
    if adjustment.surcharge_percentage > 0 and adjustment.discount_percentage > 0:
        errors.append(RuleValidationError(
            field="payload.discount_percentage",
            message="A single rule cannot both surcharge and discount; split it into two rules",
            code="cross_field",
        ))
    return errors


def cap_percentages(payload: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    """Summed percentages never exceed 100."""
    for key in ("surcharge_percentage", "discount_percentage"):
        if payload.get(key, 0) > 100:
            payload[key] = 100.0
    return payload


PRICING_FAMILY = FamilyDefinition(
    name="pricing",
    payload_model=PricingAdjustment,
    strategy=MergeStrategy.ADDITIVE,
    required_context=("appointment_time",),
    time_key="appointment_time",
    condition_keys=frozenset({
        "utilization_below",
        "utilization_above",
        "service_ids",
        "customer_segment",
        "loyalty_tier",
    }),
    field_policies={
        "surcharge_percentage": FieldPolicy("max"),
        "surcharge_amount": FieldPolicy("max"),
        "discount_percentage": FieldPolicy("min"),
    },
    semantic_checks=(check_pricing_adjustment,),
    finalize=cap_percentages,
    description="Price surcharges and discounts applied on top of list prices",
)
