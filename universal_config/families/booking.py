"""Booking policy family: deposits, cancellation windows and booking limits."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from universal_config.core.models import MergeStrategy, RuleValidationError
from universal_config.core.timeparse import normalize_hhmm
from .registry import FamilyDefinition, FieldPolicy

LOYALTY_TIERS = ("bronze", "silver", "gold", "platinum")


class BookingAction(str, Enum):
    """What happens to a booking request, least to most restrictive."""
    ALLOW = "allow"
    REQUIRE_CONFIRMATION = "require_confirmation"
    REQUIRE_DEPOSIT = "require_deposit"
    DENY = "deny"


class BookingPolicy(BaseModel):
    """Payload of a booking rule.

    ``advance_booking_days`` is the minimum notice in days; ``max_advance_days``
    is how far ahead a slot can be booked. ``cancellation_hours`` is the
    notice required for a free cancellation.
    """

    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    action_type: BookingAction = BookingAction.ALLOW
    advance_booking_days: int = Field(0, ge=0, le=365)
    max_advance_days: int = Field(90, ge=0, le=730)
    deposit_required: bool = False
    deposit_percentage: float = Field(0, ge=0, le=100)
    cancellation_hours: int = Field(24, ge=0, le=720)
    max_bookings_per_day: int = Field(50, ge=1)
    buffer_minutes: int = Field(0, ge=0, le=240)
    booking_window_start: str = "00:00"
    booking_window_end: str = "23:59"
    loyalty_tier_overrides: dict[str, dict[str, Any]] = Field(default_factory=dict)
    message: str | None = None

    @field_validator("booking_window_start", "booking_window_end")
    @classmethod
    def _check_time(cls, value: str) -> str:
        return normalize_hhmm(value)


def check_booking_policy(policy: BookingPolicy) -> list[RuleValidationError]:
    """Cross-field checks that the payload model cannot express on its own."""
    errors = []

    if policy.advance_booking_days > policy.max_advance_days:
        errors.append(RuleValidationError(
            field="payload.advance_booking_days",
            message=(
                f"advance_booking_days ({policy.advance_booking_days}) must not exceed "
                f"max_advance_days ({policy.max_advance_days})"
            ),
            code="cross_field",
        ))

    if policy.booking_window_start >= policy.booking_window_end:
        errors.append(RuleValidationError(
            field="payload.booking_window_start",
            message="booking_window_start must be earlier than booking_window_end",
            code="cross_field",
        ))

    if policy.action_type == BookingAction.REQUIRE_DEPOSIT.value and policy.deposit_percentage <= 0:
        errors.append(RuleValidationError(
            field="payload.deposit_percentage",
            message="require_deposit needs a deposit_percentage above 0",
            code="cross_field",
        ))

    for tier, override in policy.loyalty_tier_overrides.items():
        if tier not in LOYALTY_TIERS:
            errors.append(RuleValidationError(
                field=f"payload.loyalty_tier_overrides.{tier}",
                message=f"Unknown loyalty tier '{tier}', expected one of {', '.join(LOYALTY_TIERS)}",
                code="invalid_choice",
            ))
            continue
        if "loyalty_tier_overrides" in override:
            errors.append(RuleValidationError(
                field=f"payload.loyalty_tier_overrides.{tier}",
                message="Tier overrides cannot nest further overrides",
                code="invalid",
            ))
            continue
        try:
            BookingPolicy.model_validate({**policy.model_dump(), **override})
        except ValidationError as e:
            for err in e.errors():
                loc = ".".join(str(part) for part in err["loc"])
                errors.append(RuleValidationError(
                    field=f"payload.loyalty_tier_overrides.{tier}.{loc}",
                    message=err["msg"],
                    code="invalid",
                ))

    return errors


def apply_loyalty_overrides(payload: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    """Overlay the override block for the customer's loyalty tier, if any.

    Applied to each matching rule on its own, so the merge compares the
    values a customer of that tier actually gets.
    """
    tier = context.get("loyalty_tier")
    overrides = payload.get("loyalty_tier_overrides") or {}
    if isinstance(tier, str) and tier.lower() in overrides:
        payload = {**payload, **overrides[tier.lower()]}
    return payload


def mark_deposit_required(payload: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    if payload.get("deposit_percentage", 0) > 0:
        payload["deposit_required"] = True
    return payload


BOOKING_FAMILY = FamilyDefinition(
    name="booking",
    payload_model=BookingPolicy,
    strategy=MergeStrategy.RESTRICTIVE,
    required_context=("appointment_time",),
    time_key="appointment_time",
    condition_keys=frozenset({
        "utilization_below",
        "utilization_above",
        "visit_count_below",
        "visit_count_above",
        "loyalty_tier",
        "is_new_customer",
        "service_ids",
        "channel",
    }),
    field_policies={
        "action_type": FieldPolicy("ordered", tuple(a.value for a in BookingAction)),
        "advance_booking_days": FieldPolicy("max"),
        "max_advance_days": FieldPolicy("min"),
        "deposit_required": FieldPolicy("ordered", (False, True)),
        "deposit_percentage": FieldPolicy("max"),
        "cancellation_hours": FieldPolicy("max"),
        "max_bookings_per_day": FieldPolicy("min"),
        "buffer_minutes": FieldPolicy("max"),
        "booking_window_start": FieldPolicy("max"),
        "booking_window_end": FieldPolicy("min"),
        "loyalty_tier_overrides": FieldPolicy("mapping"),
    },
    semantic_checks=(check_booking_policy,),
    contextualize=apply_loyalty_overrides,
    finalize=mark_deposit_required,
    description="Appointment booking policy: deposits, cancellation and booking limits",
)
