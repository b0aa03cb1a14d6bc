"""Merge resolution: many matching rules in, one effective payload out.

Rules are first put in precedence order (priority, then creation time,
then id, all descending). Every choice below is made against that order, so
permuting the input never changes the result.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Iterable
from typing import Any

from universal_config.core.models import ContributingRule, Decision, MergeStrategy, Rule
from universal_config.errors import AmbiguousOverride
from universal_config.families.registry import FamilyDefinition, FieldPolicy

Candidate = tuple[Rule, Any]


def precedence_key(rule: Rule) -> tuple:
    return (rule.priority, rule.created_at, rule.id)


def order_by_precedence(rules: Iterable[Rule]) -> list[Rule]:
    """Highest precedence first; duplicate ids keep their latest version."""
    latest: dict[str, Rule] = {}
    for rule in rules:
        seen = latest.get(rule.id)
        if seen is None or rule.version > seen.version:
            latest[rule.id] = rule
    return sorted(latest.values(), key=precedence_key, reverse=True)


class MergeResolver:
    """Combines matching rules of one family according to a merge strategy."""

    def resolve(
        self,
        rules: Iterable[Rule],
        family: FamilyDefinition,
        strategy: MergeStrategy | str | None = None,
        organization_id: str | None = None,
    ) -> Decision:
        strategy = MergeStrategy(strategy or family.strategy)
        ordered = order_by_precedence(rules)

        if not ordered:
            return Decision(
                organization_id=organization_id,
                family=family.name,
                strategy=strategy,
                payload=family.default_copy(),
                is_default=True,
            )

        if strategy == MergeStrategy.OVERRIDE:
            merged, sources = self._override(ordered, family)
        elif strategy == MergeStrategy.ADDITIVE:
            merged, sources = self._additive(ordered, family)
        else:
            merged, sources = self._by_policy(
                ordered, family, restrictive=strategy == MergeStrategy.RESTRICTIVE
            )

        payload = family.default_copy()
        payload.update(copy.deepcopy(merged))

        contributing_ids = {rule_id for ids in sources.values() for rule_id in ids}
        return Decision(
            organization_id=organization_id,
            family=family.name,
            strategy=strategy,
            payload=payload,
            contributing_rules=[
                ContributingRule(rule_id=r.id, version=r.version, priority=r.priority)
                for r in ordered
                if r.id in contributing_ids
            ],
            field_sources=sources,
        )

    # =========================================================================
    # Strategies
    # =========================================================================

    def _override(
        self, ordered: list[Rule], family: FamilyDefinition
    ) -> tuple[dict[str, Any], dict[str, list[str]]]:
        top = ordered[0]
        tied = [r for r in ordered if r.priority == top.priority]
        if len(tied) > 1:
            raise AmbiguousOverride(family.name, top.priority, sorted(r.id for r in tied))
        return dict(top.payload), {field: [top.id] for field in sorted(top.payload)}

    def _additive(
        self, ordered: list[Rule], family: FamilyDefinition
    ) -> tuple[dict[str, Any], dict[str, list[str]]]:
        merged: dict[str, Any] = {}
        sources: dict[str, list[str]] = {}

        for field, candidates in _candidates_by_field(ordered).items():
            values = [value for _, value in candidates]
            if all(_is_number(v) for v in values):
                if all(isinstance(v, int) for v in values):
                    merged[field] = sum(values)
                else:
                    merged[field] = math.fsum(values)
                sources[field] = [rule.id for rule, _ in candidates]
                continue

            top_priority = candidates[0][0].priority
            tied = [(rule, value) for rule, value in candidates if rule.priority == top_priority]
            if any(value != tied[0][1] for _, value in tied[1:]):
                raise AmbiguousOverride(
                    family.name, top_priority, sorted(rule.id for rule, _ in tied), field=field
                )
            merged[field] = tied[0][1]
            sources[field] = [tied[0][0].id]

        return merged, sources

    def _by_policy(
        self, ordered: list[Rule], family: FamilyDefinition, restrictive: bool
    ) -> tuple[dict[str, Any], dict[str, list[str]]]:
        merged: dict[str, Any] = {}
        sources: dict[str, list[str]] = {}

        for field, candidates in _candidates_by_field(ordered).items():
            policy = family.field_policies.get(field)
            value, winners = _apply_policy(policy, candidates, restrictive)
            merged[field] = value
            sources[field] = winners

        return merged, sources


def _candidates_by_field(ordered: list[Rule]) -> dict[str, list[Candidate]]:
    """Field name -> (rule, value) pairs in precedence order."""
    fields: dict[str, list[Candidate]] = {}
    for rule in ordered:
        for field, value in rule.payload.items():
            fields.setdefault(field, []).append((rule, value))
    return {field: fields[field] for field in sorted(fields)}


def _apply_policy(
    policy: FieldPolicy | None, candidates: list[Candidate], restrictive: bool
) -> tuple[Any, list[str]]:
    if policy is None:
        rule, value = candidates[0]
        return value, [rule.id]

    kind = policy.kind
    if not restrictive:
        kind = {"max": "min", "min": "max", "union": "intersection",
                "intersection": "union"}.get(kind, kind)

    if kind in ("max", "min"):
        try:
            best = max(v for _, v in candidates) if kind == "max" else min(v for _, v in candidates)
        except TypeError:
            rule, value = candidates[0]
            return value, [rule.id]
        rule = next(r for r, v in candidates if v == best)
        return best, [rule.id]

    if kind == "ordered":
        ranks = [policy.rank(v) for _, v in candidates]
        target = max(ranks) if restrictive else min(ranks)
        rule, value = next((r, v) for (r, v), rank in zip(candidates, ranks) if rank == target)
        return value, [rule.id]

    if kind in ("union", "intersection"):
        lists = [list(v) if isinstance(v, (list, tuple, set)) else [v] for _, v in candidates]
        if kind == "union":
            combined = [item for values in lists for item in values]
        else:
            combined = [item for item in lists[0] if all(item in other for other in lists[1:])]
        return _stable_unique(combined), [rule.id for rule, _ in candidates]

    if kind == "mapping":
        combined: dict[str, Any] = {}
        for _, value in reversed(candidates):
            if isinstance(value, dict):
                combined.update(value)
        return {key: combined[key] for key in sorted(combined)}, [rule.id for rule, _ in candidates]

    rule, value = candidates[0]
    return value, [rule.id]


def _stable_unique(items: list[Any]) -> list[Any]:
    unique = []
    for item in items:
        if item not in unique:
            unique.append(item)
    try:
        return sorted(unique)
    except TypeError:
        return unique


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
