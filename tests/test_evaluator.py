"""Tests for rule evaluation through the engine."""

from datetime import datetime, timezone

import pytest
from pydantic import BaseModel

from universal_config.core.cancellation import CancellationToken
from universal_config.core.models import Rule
from universal_config.errors import (
    AmbiguousOverride,
    InvalidContext,
    OperationCancelled,
    StorageUnavailable,
    UnknownFamily,
)
from universal_config.families import BOOKING_FAMILY
from universal_config.rules import RuleEvaluator
from universal_config.storage import InMemoryRuleStore, RuleCache

ORG = "org-salon-1"
OTHER_ORG = "org-salon-2"

# Tuesday 2026-03-10 and Sunday 2026-03-15
TUESDAY_EVENING = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)
SUNDAY_NIGHT = datetime(2026, 3, 15, 3, 0, tzinfo=timezone.utc)


class ExplodingStore(InMemoryRuleStore):
    """Store that fails every read."""

    def get_active_rules(self, organization_id, family, token=None):
        raise StorageUnavailable("database is down")


class LeakyStore(InMemoryRuleStore):
    """Store that returns rules it should have filtered out."""

    def __init__(self, rules: list[Rule]):
        super().__init__()
        self.rules = rules

    def get_active_rules(self, organization_id, family, token=None):
        return list(self.rules)


@pytest.fixture
def booking_rules(engine):
    """Standard and peak-hour booking rules, both active."""
    rules = engine.bootstrap_organization(ORG, "booking", ["standard", "peakHours"], activate=True)
    return {rule.name: rule for rule in rules}


class TestBookingScenarios:
    """End-to-end booking decisions."""

    def test_peak_hour_requires_deposit(self, engine, booking_rules):
        decision = engine.evaluate(ORG, "booking", {"appointment_time": "18:00 Tuesday"})

        assert not decision.is_default
        assert decision.rule_ids == [booking_rules["peakHours"].id]
        assert decision.payload["action_type"] == "require_deposit"
        assert decision.payload["deposit_required"] is True
        assert decision.payload["deposit_percentage"] == 20
        assert decision.payload["cancellation_hours"] == 48

    def test_peak_hour_with_datetime_context(self, engine, booking_rules):
        decision = engine.evaluate(ORG, "booking", {"appointment_time": TUESDAY_EVENING})
        assert decision.payload["deposit_percentage"] == 20

    def test_no_match_falls_back_to_default(self, engine):
        engine.bootstrap_organization(ORG, "booking", ["peakHours"], activate=True)

        decision = engine.evaluate(ORG, "booking", {"appointment_time": "03:00 Sunday"})

        assert decision.is_default
        assert decision.contributing_rules == []
        assert decision.payload == BOOKING_FAMILY.default_copy()
        assert decision.payload["action_type"] == "allow"
        assert decision.payload["deposit_percentage"] == 0

    def test_no_rules_at_all_falls_back_to_default(self, engine):
        decision = engine.evaluate(ORG, "booking", {"appointment_time": SUNDAY_NIGHT})
        assert decision.is_default
        assert decision.trace == []

    def test_business_hours_rule(self, engine, booking_rules):
        decision = engine.evaluate(ORG, "booking", {"appointment_time": "10:00 Tuesday"})
        assert decision.rule_ids == [booking_rules["standard"].id]
        assert decision.payload["cancellation_hours"] == 24

    def test_loyalty_tier_override_applied(self, engine, booking_rules):
        decision = engine.evaluate(
            ORG, "booking", {"appointment_time": "10:00 Tuesday", "loyalty_tier": "Gold"}
        )
        assert decision.payload["cancellation_hours"] == 12

    def test_tier_override_cannot_undercut_a_stricter_rule(self, families, make_rule):
        rules = [
            make_rule(
                "lenient",
                {"cancellation_hours": 24, "loyalty_tier_overrides": {"gold": {"cancellation_hours": 12}}},
                priority=10,
            ),
            make_rule("strict", {"cancellation_hours": 72}, priority=50),
        ]
        evaluator = RuleEvaluator(families, LeakyStore(rules), RuleCache())

        decision = evaluator.evaluate(
            ORG, "booking", {"appointment_time": "10:00 Tuesday", "loyalty_tier": "gold"}
        )

        assert decision.payload["cancellation_hours"] == 72
        assert decision.field_sources["cancellation_hours"] == ["strict"]

    def test_tier_override_wins_when_it_is_stricter(self, families, make_rule):
        rules = [
            make_rule(
                "lenient",
                {"cancellation_hours": 24, "loyalty_tier_overrides": {"bronze": {"cancellation_hours": 96}}},
                priority=10,
            ),
            make_rule("strict", {"cancellation_hours": 72}, priority=50),
        ]
        evaluator = RuleEvaluator(families, LeakyStore(rules), RuleCache())

        decision = evaluator.evaluate(
            ORG, "booking", {"appointment_time": "10:00 Tuesday", "loyalty_tier": "Bronze"}
        )

        assert decision.payload["cancellation_hours"] == 96
        assert decision.field_sources["cancellation_hours"] == ["lenient"]

    def test_new_customer_rules_stack_restrictively(self, engine, booking_rules):
        engine.bootstrap_organization(ORG, "booking", ["newCustomer"], activate=True)

        decision = engine.evaluate(
            ORG, "booking", {"appointment_time": "18:00 Tuesday", "is_new_customer": True}
        )

        assert decision.payload["action_type"] == "require_deposit"
        assert decision.payload["deposit_percentage"] == 25
        assert decision.payload["cancellation_hours"] == 48
        assert decision.payload["max_advance_days"] == 30
        assert len(decision.contributing_rules) == 2

    def test_draft_rules_are_not_evaluated(self, engine):
        engine.bootstrap_organization(ORG, "booking", ["peakHours"])
        decision = engine.evaluate(ORG, "booking", {"appointment_time": "18:00 Tuesday"})
        assert decision.is_default

    def test_context_may_be_a_model(self, engine, booking_rules):
        class BookingContext(BaseModel):
            appointment_time: str
            loyalty_tier: str | None = None

        decision = engine.evaluate(ORG, "booking", BookingContext(appointment_time="18:00 Tuesday"))
        assert decision.payload["deposit_percentage"] == 20


class TestEvaluationProperties:
    """Determinism, isolation and tracing."""

    def test_repeated_evaluation_is_identical(self, engine, booking_rules):
        context = {"appointment_time": "18:00 Tuesday", "loyalty_tier": "gold"}
        first = engine.evaluate(ORG, "booking", context)
        second = engine.evaluate(ORG, "booking", context)
        assert first == second

    def test_organizations_are_isolated(self, engine, booking_rules):
        decision = engine.evaluate(OTHER_ORG, "booking", {"appointment_time": "18:00 Tuesday"})
        assert decision.is_default

    def test_trace_covers_every_active_rule(self, engine, booking_rules):
        decision = engine.evaluate(ORG, "booking", {"appointment_time": "18:00 Tuesday"})

        ids = sorted(rule.id for rule in booking_rules.values())
        assert [t.rule_id for t in decision.trace] == ids
        matched = {t.rule_id: t.matched for t in decision.trace}
        assert matched[booking_rules["peakHours"].id] is True
        assert matched[booking_rules["standard"].id] is False

    def test_decision_carries_organization(self, engine, booking_rules):
        decision = engine.evaluate(ORG, "booking", {"appointment_time": "18:00 Tuesday"})
        assert decision.organization_id == ORG
        assert decision.family == "booking"


class TestEvaluationErrors:
    """Errors reach the caller and never become defaults."""

    def test_unknown_family(self, engine):
        with pytest.raises(UnknownFamily):
            engine.evaluate(ORG, "inventory", {"appointment_time": "18:00 Tuesday"})

    def test_missing_required_context(self, engine):
        with pytest.raises(InvalidContext) as exc_info:
            engine.evaluate(ORG, "booking", {"loyalty_tier": "gold"})
        assert exc_info.value.missing == ["appointment_time"]

    def test_context_checked_before_fetch(self, families):
        evaluator = RuleEvaluator(families, ExplodingStore(), RuleCache())
        with pytest.raises(InvalidContext):
            evaluator.evaluate(ORG, "booking", {})

    @pytest.mark.parametrize("when", ["next week sometime", "", 42])
    def test_unreadable_appointment_time(self, engine, booking_rules, when):
        with pytest.raises(InvalidContext) as exc_info:
            engine.evaluate(ORG, "booking", {"appointment_time": when})
        assert exc_info.value.missing == ["appointment_time"]

    def test_unreadable_time_checked_before_fetch(self, families):
        evaluator = RuleEvaluator(families, ExplodingStore(), RuleCache())
        with pytest.raises(InvalidContext):
            evaluator.evaluate(ORG, "pricing", {"appointment_time": "whenever"})

    def test_storage_failure_propagates(self, families):
        evaluator = RuleEvaluator(families, ExplodingStore(), RuleCache())
        with pytest.raises(StorageUnavailable):
            evaluator.evaluate(ORG, "booking", {"appointment_time": "18:00 Tuesday"})

    def test_ambiguous_override(self, engine):
        for role in ("manager", "controller"):
            result = engine.save_rule({
                "organization_id": ORG,
                "family": "approval",
                "status": "active",
                "priority": 10,
                "payload": {"required_approvals": 1, "approver_role": role},
            })
            assert result.ok

        with pytest.raises(AmbiguousOverride):
            engine.evaluate(ORG, "approval", {"amount": 250})

    def test_cancelled_token(self, engine, booking_rules):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            engine.evaluate(ORG, "booking", {"appointment_time": "18:00 Tuesday"}, token=token)

    def test_foreign_rules_from_store_are_skipped(self, families, make_rule):
        rules = [
            make_rule("mine", {"deposit_percentage": 10}),
            make_rule("theirs", {"deposit_percentage": 90}, organization_id=OTHER_ORG),
            make_rule("pricing", {"surcharge_percentage": 5}, family="pricing"),
        ]
        evaluator = RuleEvaluator(families, LeakyStore(rules), RuleCache())

        decision = evaluator.evaluate(ORG, "booking", {"appointment_time": "18:00 Tuesday"})

        assert decision.rule_ids == ["mine"]
        assert decision.payload["deposit_percentage"] == 10


class TestOtherFamilies:
    """Pricing and approval decisions."""

    def test_pricing_adjustments_add_up(self, engine):
        engine.bootstrap_organization(ORG, "pricing", activate=True)

        decision = engine.evaluate(
            ORG, "pricing", {"appointment_time": "18:00 Tuesday", "utilization": 0.3}
        )

        assert decision.payload["surcharge_percentage"] == 15
        assert decision.payload["discount_percentage"] == 10
        assert decision.payload["currency"] == "USD"
        assert decision.payload["rounding"] == "nearest"

    def test_approval_routing_by_amount(self, engine):
        engine.bootstrap_organization(ORG, "approval", activate=True)

        large = engine.evaluate(ORG, "approval", {"amount": 25000})
        small = engine.evaluate(ORG, "approval", {"amount": 120})

        assert large.payload["approver_role"] == "finance_director"
        assert large.payload["required_approvals"] == 2
        assert small.payload["approver_role"] == "manager"
        assert small.payload["auto_approve_limit"] == 500
