"""Rule evaluation with trace generation."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from universal_config.core.cancellation import CancellationToken
from universal_config.core.models import Decision, Rule, RuleTrace
from universal_config.errors import InvalidContext
from universal_config.families.registry import FamilyDefinition, FamilyRegistry
from universal_config.storage.cache import RuleCache
from universal_config.storage.rule_store import RuleStore
from .matcher import ConditionMatcher
from .resolver import MergeResolver

logger = logging.getLogger(__name__)


class RuleEvaluator:
    """Evaluates the active rules of one family against a context."""

    def __init__(
        self,
        families: FamilyRegistry,
        store: RuleStore,
        cache: RuleCache | None = None,
        matcher: ConditionMatcher | None = None,
        resolver: MergeResolver | None = None,
    ):
        self.families = families
        self.store = store
        self.cache = cache if cache is not None else RuleCache()
        self.matcher = matcher or ConditionMatcher()
        self.resolver = resolver or MergeResolver()

    def evaluate(
        self,
        organization_id: str,
        family: str,
        context: Mapping[str, Any] | BaseModel,
        *,
        now: datetime | None = None,
        token: CancellationToken | None = None,
    ) -> Decision:
        """Compute the effective payload for ``context``.

        Raises:
            UnknownFamily: family was never registered
            InvalidContext: a required context key is missing or unreadable, checked before
                any rule is fetched
            AmbiguousOverride: override semantics cannot pick a single rule
            StorageUnavailable, OperationCancelled: from the rule fetch
        """
        definition = self.families.get(family)
        if isinstance(context, BaseModel):
            context = context.model_dump()

        missing = definition.missing_context(context)
        if missing:
            raise InvalidContext(family, missing)

        if token is not None:
            token.check("evaluate")

        rules = self.cache.get_or_load(
            organization_id,
            family,
            lambda: self.store.get_active_rules(organization_id, family, token),
        )

        candidates = self._guard(rules, organization_id, family)
        matching, trace = self.match(candidates, context, definition, now)

        decision = self.decide(matching, definition, context, organization_id=organization_id)
        decision = decision.model_copy(update={"trace": trace})

        logger.info(
            "Evaluated %s for organization %s: %s",
            family,
            organization_id,
            "default" if decision.is_default else ", ".join(decision.rule_ids),
        )
        return decision

    def decide(
        self,
        matching: list[Rule],
        definition: FamilyDefinition,
        context: Mapping[str, Any],
        organization_id: str | None = None,
    ) -> Decision:
        """Merge already-matched rules into a decision for ``context``.

        Each rule's payload is first adjusted for the context (e.g. loyalty
        tier overrides), so the merge and ``field_sources`` see the values
        that actually apply. The family finalizer runs on merged output only.
        """
        effective = [
            rule.model_copy(update={"payload": definition.effective_payload(rule.payload, context)})
            for rule in matching
        ]
        decision = self.resolver.resolve(effective, definition, organization_id=organization_id)
        if not decision.is_default and definition.finalize is not None:
            decision = decision.model_copy(
                update={"payload": definition.finalize(dict(decision.payload), context)}
            )
        return decision

    def _guard(self, rules: tuple[Rule, ...], organization_id: str, family: str) -> list[Rule]:
        """Drop anything a misbehaving store returned outside this tenant and family."""
        kept = []
        for rule in rules:
            if (
                rule.organization_id != organization_id
                or rule.family != family
                or not rule.is_active
            ):
                logger.warning(
                    "Store returned rule %s (organization %s, family %s, status %s) "
                    "for %s/%s; skipping",
                    rule.id, rule.organization_id, rule.family, rule.status.value,
                    organization_id, family,
                )
                continue
            kept.append(rule)
        return kept

    def match(
        self,
        rules: list[Rule],
        context: Mapping[str, Any],
        definition: FamilyDefinition,
        now: datetime | None,
    ) -> tuple[list[Rule], list[RuleTrace]]:
        matching: list[Rule] = []
        trace: list[RuleTrace] = []
        for rule in sorted(rules, key=lambda r: (r.id, r.version)):
            matched, steps = self.matcher.explain(rule.conditions, context, definition, now)
            trace.append(RuleTrace(rule_id=rule.id, version=rule.version, matched=matched, steps=steps))
            if matched:
                matching.append(rule)
        return matching, trace
