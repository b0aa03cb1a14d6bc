"""Rule store interface and the in-memory backend.

A store persists rule versions and their lifecycle events. It owns write
consistency: each ``save_rule`` writes one rule version and one event
atomically, last write wins per rule version.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any

from universal_config.core.cancellation import CancellationToken
from universal_config.core.models import Rule, RuleEvent, RuleEventType


class RuleStore(ABC):
    """Persistence boundary for rules, scoped by organization."""

    @abstractmethod
    def get_active_rules(
        self, organization_id: str, family: str, token: CancellationToken | None = None
    ) -> list[Rule]:
        """Latest version of every active rule in the family. Order is unspecified."""

    @abstractmethod
    def get_rule(
        self, organization_id: str, rule_id: str, token: CancellationToken | None = None
    ) -> Rule | None:
        """Latest version of a rule, whatever its status."""

    @abstractmethod
    def get_rule_history(self, organization_id: str, rule_id: str) -> list[Rule]:
        """All versions of a rule, oldest first."""

    @abstractmethod
    def save_rule(
        self,
        rule: Rule,
        event_type: RuleEventType,
        token: CancellationToken | None = None,
        event_data: dict[str, Any] | None = None,
    ) -> Rule:
        """Insert or replace the (organization, id, version) row and append an event."""

    @abstractmethod
    def list_events(self, organization_id: str, rule_id: str | None = None) -> list[RuleEvent]:
        """Lifecycle events in sequence order."""


class InMemoryRuleStore(RuleStore):
    """Process-local store, used for tests and embedded deployments."""

    def __init__(self) -> None:
        self._versions: dict[tuple[str, str], dict[int, Rule]] = {}
        self._events: list[RuleEvent] = []
        self._lock = threading.RLock()

    def get_active_rules(
        self, organization_id: str, family: str, token: CancellationToken | None = None
    ) -> list[Rule]:
        if token is not None:
            token.check("get_active_rules")
        with self._lock:
            rules = []
            for (org, _), versions in self._versions.items():
                if org != organization_id:
                    continue
                latest = versions[max(versions)]
                if latest.family == family and latest.is_active:
                    rules.append(latest)
            return rules

    def get_rule(
        self, organization_id: str, rule_id: str, token: CancellationToken | None = None
    ) -> Rule | None:
        if token is not None:
            token.check("get_rule")
        with self._lock:
            versions = self._versions.get((organization_id, rule_id))
            if not versions:
                return None
            return versions[max(versions)]

    def get_rule_history(self, organization_id: str, rule_id: str) -> list[Rule]:
        with self._lock:
            versions = self._versions.get((organization_id, rule_id), {})
            return [versions[v] for v in sorted(versions)]

    def save_rule(
        self,
        rule: Rule,
        event_type: RuleEventType,
        token: CancellationToken | None = None,
        event_data: dict[str, Any] | None = None,
    ) -> Rule:
        stored = rule.model_copy(deep=True)
        with self._lock:
            if token is not None:
                token.check("save_rule")
            self._versions.setdefault((rule.organization_id, rule.id), {})[rule.version] = stored
            self._events.append(RuleEvent(
                organization_id=rule.organization_id,
                rule_id=rule.id,
                version=rule.version,
                event_type=event_type,
                sequence_number=len(self._events) + 1,
                data=event_data or {},
            ))
        return stored

    def list_events(self, organization_id: str, rule_id: str | None = None) -> list[RuleEvent]:
        with self._lock:
            return [
                e for e in self._events
                if e.organization_id == organization_id and (rule_id is None or e.rule_id == rule_id)
            ]
