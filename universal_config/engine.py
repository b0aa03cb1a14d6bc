"""
Rule engine facade.

Wires the family registry, rule store, cache, evaluator and template
registry together and owns the rule lifecycle: validation on save,
versioning of active rules, status transitions and cache invalidation.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ValidationError

from universal_config.config import Settings, get_settings
from universal_config.core.cancellation import CancellationToken, resolve_token
from universal_config.core.models import (
    STATUS_TRANSITIONS,
    Decision,
    FieldDiff,
    Rule,
    RuleConditions,
    RuleEvent,
    RuleEventType,
    RuleInput,
    RuleStatus,
    RuleTemplate,
    RuleValidationError,
    SaveResult,
    ScenarioResult,
    SimulationReport,
    SimulationScenario,
    generate_rule_id,
    now_utc,
)
from universal_config.core.smart_code import build_smart_code, smart_code_version, with_version
from universal_config.errors import InvalidContext, RuleNotFound
from universal_config.families import FamilyDefinition, FamilyRegistry, builtin_families
from universal_config.rules import RuleEvaluator, RuleValidator, TemplateRegistry
from universal_config.rules.validator import errors_from_pydantic
from universal_config.storage import InMemoryRuleStore, RuleCache, RuleStore, SqlRuleStore, init_db

logger = logging.getLogger(__name__)


class RuleEngine:
    """Evaluates and manages configuration rules for many organizations."""

    def __init__(
        self,
        store: RuleStore | None = None,
        families: FamilyRegistry | None = None,
        cache: RuleCache | None = None,
        templates: TemplateRegistry | None = None,
        settings: Settings | None = None,
    ):
        """Initialize the engine.

        Args:
            store: Rule store; an in-memory store when omitted
            families: Family registry; the built-in families when omitted
            cache: Active-rule cache; sized from settings when omitted
            templates: Template registry; built-in templates (plus
                ``settings.templates_dir``) are loaded when omitted
            settings: Application settings; ``get_settings()`` when omitted
        """
        self.settings = settings or get_settings()
        self.families = families if families is not None else FamilyRegistry(builtin_families())
        self.store = store if store is not None else InMemoryRuleStore()
        self.cache = cache if cache is not None else RuleCache(
            ttl_seconds=self.settings.cache_ttl_seconds,
            max_size=self.settings.cache_max_entries,
        )
        self.validator = RuleValidator(self.families)
        self.evaluator = RuleEvaluator(self.families, self.store, self.cache)

        if templates is None:
            templates = TemplateRegistry(self.families, self.settings.templates_dir)
            templates.load_builtin()
            if self.settings.templates_dir:
                templates.load_directory()
        self.templates = templates

    # =========================================================================
    # Families and templates
    # =========================================================================

    def register_family(self, definition: FamilyDefinition) -> FamilyDefinition:
        """Register a new rule family (ValueError if the name is taken)."""
        registered = self.families.register(definition)
        logger.info("Registered rule family %s", definition.name)
        return registered

    def add_template(self, template: RuleTemplate) -> RuleTemplate:
        return self.templates.add(template)

    def list_templates(self, family: str) -> list[RuleTemplate]:
        return self.templates.list_templates(family)

    def instantiate_template(self, family: str, template_name: str, organization_id: str) -> Rule:
        """Draft copy of a template for one organization. Nothing is stored."""
        return self.templates.instantiate(family, template_name, organization_id)

    def bootstrap_organization(
        self,
        organization_id: str,
        family: str,
        template_names: list[str] | None = None,
        *,
        activate: bool = False,
        timeout: float | None = None,
        token: CancellationToken | None = None,
    ) -> list[Rule]:
        """Instantiate and store templates for a new organization.

        All templates of the family are used when ``template_names`` is
        omitted. Rules are stored as drafts unless ``activate`` is set.
        """
        if template_names is None:
            template_names = [t.name for t in self.templates.list_templates(family)]

        token = resolve_token(token, self._timeout(timeout))
        saved = []
        for name in template_names:
            rule = self.instantiate_template(family, name, organization_id)
            rule_input = rule_input_from(rule)
            if activate:
                rule_input = rule_input.model_copy(update={"status": RuleStatus.ACTIVE.value})
            result = self.save_rule(rule_input, token=token)
            if not result.ok:
                raise ValueError(
                    f"Template '{name}' could not be stored for organization "
                    f"{organization_id}: " + "; ".join(str(e) for e in result.errors)
                )
            saved.append(result.rule)
        return saved

    # =========================================================================
    # Evaluation
    # =========================================================================

    def evaluate(
        self,
        organization_id: str,
        family: str,
        context: Mapping[str, Any] | BaseModel,
        *,
        timeout: float | None = None,
        token: CancellationToken | None = None,
        now: datetime | None = None,
    ) -> Decision:
        """Effective configuration payload for ``context``."""
        token = resolve_token(token, self._timeout(timeout))
        return self.evaluator.evaluate(organization_id, family, context, now=now, token=token)

    def simulate_rule(
        self,
        rule: RuleInput | Mapping[str, Any] | str,
        scenarios: list[SimulationScenario | Mapping[str, Any]],
        *,
        organization_id: str | None = None,
        now: datetime | None = None,
    ) -> SimulationReport:
        """Run one rule on its own against sample scenarios.

        ``rule`` is either a rule definition, which is validated but never
        stored, or the id of a stored rule of ``organization_id``. A scenario
        passes when every expected payload field matches and, if
        ``expect_match`` is set, the match outcome agrees.

        Raises:
            RuleNotFound: ``rule`` is an id with no stored rule
            UnknownFamily: the rule's family was never registered
        """
        if isinstance(rule, str):
            if organization_id is None:
                raise ValueError("organization_id is required to simulate a stored rule")
            candidate = self.get_rule(organization_id, rule)
            family = self.families.get(candidate.family)
        else:
            if not isinstance(rule, RuleInput):
                try:
                    rule = RuleInput.model_validate(dict(rule))
                except ValidationError as e:
                    return SimulationReport(errors=errors_from_pydantic(e, ""))
            family = self.families.get(rule.family)
            errors = self.validator.validate(rule, family)
            if errors:
                return SimulationReport(errors=errors)
            candidate = _build_rule(rule, family, now_utc())

        report = SimulationReport(rule=candidate)
        for scenario in scenarios:
            if not isinstance(scenario, SimulationScenario):
                scenario = SimulationScenario.model_validate(dict(scenario))
            result = self._run_scenario(candidate, family, scenario, now)
            report.results.append(result)
            if result.passed:
                report.passed += 1
            else:
                report.failed += 1

        logger.info(
            "Simulated rule %s (%s): %d passed, %d failed",
            candidate.id, candidate.family, report.passed, report.failed,
        )
        return report

    def _run_scenario(
        self,
        rule: Rule,
        family: FamilyDefinition,
        scenario: SimulationScenario,
        now: datetime | None,
    ) -> ScenarioResult:
        missing = family.missing_context(scenario.context)
        if missing:
            return ScenarioResult(
                scenario_id=scenario.scenario_id,
                passed=False,
                error=str(InvalidContext(family.name, missing)),
            )

        matched, steps = self.evaluator.matcher.explain(rule.conditions, scenario.context, family, now)
        decision = self.evaluator.decide(
            [rule] if matched else [], family, scenario.context, organization_id=rule.organization_id
        )
        diff = {
            key: FieldDiff(expected=expected, actual=decision.payload.get(key))
            for key, expected in scenario.expected.items()
            if decision.payload.get(key) != expected
        }
        match_ok = scenario.expect_match is None or scenario.expect_match == matched
        return ScenarioResult(
            scenario_id=scenario.scenario_id,
            passed=match_ok and not diff,
            matched=matched,
            payload=decision.payload,
            diff=diff,
            steps=steps,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def save_rule(
        self,
        rule_input: RuleInput | Mapping[str, Any],
        *,
        timeout: float | None = None,
        token: CancellationToken | None = None,
    ) -> SaveResult:
        """Validate and store a rule.

        New ids create version 1. Content changes to a non-draft rule create
        the next version; drafts are edited in place, as are status and
        priority changes.

        Returns:
            SaveResult holding the stored rule, or the validation errors

        Raises:
            UnknownFamily: the rule's family was never registered
        """
        if not isinstance(rule_input, RuleInput):
            try:
                rule_input = RuleInput.model_validate(dict(rule_input))
            except ValidationError as e:
                return SaveResult(errors=errors_from_pydantic(e, ""))

        family = self.families.get(rule_input.family)
        errors = self.validator.validate(rule_input, family)
        if errors:
            return SaveResult(errors=errors)

        token = resolve_token(token, self._timeout(timeout))
        now = now_utc()
        candidate = _build_rule(rule_input, family, now)

        existing = None
        if rule_input.id is not None:
            existing = self.store.get_rule(candidate.organization_id, candidate.id, token)

        if existing is None:
            if candidate.smart_code is None and candidate.name:
                candidate = candidate.model_copy(update={
                    "smart_code": build_smart_code(
                        family.name, candidate.name, prefix=family.smart_code_prefix
                    ),
                })
            rule, event_type = candidate, RuleEventType.CREATED
        else:
            if candidate.smart_code is None:
                candidate = candidate.model_copy(update={"smart_code": existing.smart_code})
            errors = _lifecycle_errors(existing, candidate)
            if errors:
                return SaveResult(errors=errors)
            planned = _plan_update(existing, candidate, now)
            if planned is None:
                return SaveResult(rule=existing)
            rule, event_type = planned

        stored = self.store.save_rule(
            rule,
            event_type,
            token,
            event_data={"status": rule.status.value, "priority": rule.priority},
        )
        self.cache.invalidate(stored.organization_id, stored.family)
        logger.info(
            "%s: rule %s v%d (%s) for organization %s",
            event_type.value, stored.id, stored.version, stored.family, stored.organization_id,
        )
        return SaveResult(rule=stored)

    def set_status(
        self,
        organization_id: str,
        rule_id: str,
        status: RuleStatus | str,
        *,
        timeout: float | None = None,
        token: CancellationToken | None = None,
    ) -> SaveResult:
        """Move a rule to another status, e.g. promote a draft to active."""
        existing = self.get_rule(organization_id, rule_id)
        status = status.value if isinstance(status, RuleStatus) else status
        return self.save_rule(
            rule_input_from(existing).model_copy(update={"status": status}),
            timeout=timeout,
            token=token,
        )

    def archive_rule(
        self,
        organization_id: str,
        rule_id: str,
        *,
        timeout: float | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        """Archive a rule. Archiving an archived rule does nothing.

        Raises:
            RuleNotFound: no rule with this id exists for the organization
        """
        token = resolve_token(token, self._timeout(timeout))
        rule = self.store.get_rule(organization_id, rule_id, token)
        if rule is None:
            raise RuleNotFound(organization_id, rule_id)
        if rule.status == RuleStatus.ARCHIVED:
            return

        archived = rule.model_copy(update={"status": RuleStatus.ARCHIVED, "updated_at": now_utc()})
        self.store.save_rule(
            archived,
            RuleEventType.ARCHIVED,
            token,
            event_data={"previous_status": rule.status.value},
        )
        self.cache.invalidate(organization_id, rule.family)
        logger.info(
            "rule_archived: rule %s v%d (%s) for organization %s",
            rule.id, rule.version, rule.family, organization_id,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_rule(self, organization_id: str, rule_id: str) -> Rule:
        """Latest version of a rule (RuleNotFound if absent)."""
        rule = self.store.get_rule(organization_id, rule_id)
        if rule is None:
            raise RuleNotFound(organization_id, rule_id)
        return rule

    def get_rule_history(self, organization_id: str, rule_id: str) -> list[Rule]:
        history = self.store.get_rule_history(organization_id, rule_id)
        if not history:
            raise RuleNotFound(organization_id, rule_id)
        return history

    def list_active_rules(self, organization_id: str, family: str) -> list[Rule]:
        """Active rules of a family, sorted by id."""
        self.families.get(family)
        rules = self.store.get_active_rules(organization_id, family)
        return sorted(rules, key=lambda r: r.id)

    def list_events(self, organization_id: str, rule_id: str | None = None) -> list[RuleEvent]:
        return self.store.list_events(organization_id, rule_id)

    def _timeout(self, timeout: float | None) -> float | None:
        return timeout if timeout is not None else self.settings.default_timeout_seconds


def rule_input_from(rule: Rule) -> RuleInput:
    """The editable fields of a stored rule."""
    return RuleInput(
        id=rule.id,
        organization_id=rule.organization_id,
        family=rule.family,
        sub_family=rule.sub_family,
        status=rule.status.value,
        priority=rule.priority,
        conditions=rule.conditions.model_dump(mode="json", exclude_none=True),
        payload=dict(rule.payload),
        smart_code=rule.smart_code,
        name=rule.name,
        description=rule.description,
    )


def _build_rule(rule_input: RuleInput, family: FamilyDefinition, now: datetime) -> Rule:
    """A new rule from validated input, with the payload normalized by the family model."""
    return Rule(
        id=rule_input.id or generate_rule_id(),
        organization_id=rule_input.organization_id,
        family=rule_input.family,
        sub_family=rule_input.sub_family,
        status=RuleStatus(rule_input.status),
        priority=rule_input.priority,
        conditions=RuleConditions.model_validate(rule_input.conditions),
        payload=family.parse_payload(rule_input.payload).model_dump(mode="json", exclude_unset=True),
        smart_code=rule_input.smart_code,
        name=rule_input.name,
        description=rule_input.description,
        created_at=now,
        updated_at=now,
    )


def _lifecycle_errors(existing: Rule, candidate: Rule) -> list[RuleValidationError]:
    errors = []
    if candidate.family != existing.family:
        errors.append(RuleValidationError(
            field="family",
            message=f"Rule {existing.id} belongs to family '{existing.family}' and cannot move",
            code="immutable",
        ))

    if existing.status == RuleStatus.ARCHIVED:
        changed = (
            candidate.status != existing.status
            or candidate.priority != existing.priority
            or candidate.content_differs(existing)
        )
        if changed:
            errors.append(RuleValidationError(
                field="status", message="Archived rules cannot be modified", code="invalid_transition"
            ))
    elif candidate.status != existing.status and candidate.status not in STATUS_TRANSITIONS[existing.status]:
        errors.append(RuleValidationError(
            field="status",
            message=f"Cannot move rule from {existing.status.value} to {candidate.status.value}",
            code="invalid_transition",
        ))
    return errors


def _plan_update(
    existing: Rule, candidate: Rule, now: datetime
) -> tuple[Rule, RuleEventType] | None:
    """Decide how a change to an existing rule is written, or None for no change."""
    content_changed = candidate.content_differs(existing)
    status_changed = candidate.status != existing.status
    if not (content_changed or status_changed or candidate.priority != existing.priority):
        return None

    if content_changed and existing.status != RuleStatus.DRAFT:
        update: dict[str, Any] = {"version": existing.version + 1}
        # Smart codes that track the rule version move with it
        if candidate.smart_code and smart_code_version(candidate.smart_code) == existing.version:
            update["smart_code"] = with_version(candidate.smart_code, existing.version + 1)
        return candidate.model_copy(update=update), RuleEventType.VERSIONED

    rule = candidate.model_copy(update={
        "version": existing.version,
        "created_at": existing.created_at,
        "updated_at": now,
    })
    if status_changed and candidate.status == RuleStatus.ARCHIVED:
        return rule, RuleEventType.ARCHIVED
    if status_changed and not content_changed:
        return rule, RuleEventType.STATUS_CHANGED
    return rule, RuleEventType.UPDATED


_engine: RuleEngine | None = None


def create_rule_engine(settings: Settings | None = None) -> RuleEngine:
    """Build an engine with the store selected by ``settings.store_backend``."""
    settings = settings or get_settings()
    if settings.store_backend == "sql":
        init_db()
        store: RuleStore = SqlRuleStore()
    else:
        store = InMemoryRuleStore()
    return RuleEngine(store=store, settings=settings)


def get_rule_engine() -> RuleEngine:
    """Get the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = create_rule_engine()
    return _engine


def set_rule_engine(engine: RuleEngine | None) -> None:
    """Replace the process-wide engine (None resets it)."""
    global _engine
    _engine = engine
