"""Rule families: payload schemas, defaults and merge semantics."""

from .approval import APPROVAL_FAMILY, ApprovalPolicy
from .booking import BOOKING_FAMILY, BookingAction, BookingPolicy
from .pricing import PRICING_FAMILY, PricingAdjustment
from .registry import FamilyDefinition, FamilyRegistry, FieldPolicy


def builtin_families() -> list[FamilyDefinition]:
    """Families shipped with the engine."""
    return [BOOKING_FAMILY, PRICING_FAMILY, APPROVAL_FAMILY]


__all__ = [
    "FamilyDefinition",
    "FamilyRegistry",
    "FieldPolicy",
    "builtin_families",
    "BOOKING_FAMILY",
    "BookingAction",
    "BookingPolicy",
    "PRICING_FAMILY",
    "PricingAdjustment",
    "APPROVAL_FAMILY",
    "ApprovalPolicy",
]
