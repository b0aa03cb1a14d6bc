"""Rule family definitions and the registry that holds them.

A family declares everything the engine needs to treat its rules
generically: the typed payload model, the default payload returned when no
rule matches, the merge strategy, the context keys an evaluation must
supply, the condition keys its rules may use, and how each payload field
ranks from permissive to restrictive.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from pydantic import BaseModel

from universal_config.core.models import MergeStrategy, RuleValidationError
from universal_config.core.smart_code import family_prefix
from universal_config.core.timeparse import parse_moment
from universal_config.errors import UnknownFamily

FAMILY_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$")

PolicyKind = Literal["max", "min", "ordered", "union", "intersection", "mapping"]

SemanticCheck = Callable[[Any], list[RuleValidationError]]
PayloadAdjuster = Callable[[dict[str, Any], Mapping[str, Any]], dict[str, Any]]


@dataclass(frozen=True)
class FieldPolicy:
    """How values of one payload field compare for restrictiveness.

    - ``max``: the higher value is more restrictive
    - ``min``: the lower value is more restrictive
    - ``ordered``: ``order`` lists values from least to most restrictive
    - ``union``/``intersection``: list fields, the union (resp. intersection)
      is the restrictive combination
    - ``mapping``: dict fields merged key by key in precedence order
    """

    kind: PolicyKind
    order: tuple[Any, ...] = ()

    def rank(self, value: Any) -> int:
        """Position of ``value`` in an ordered policy; unknown values rank lowest."""
        try:
            return self.order.index(value)
        except ValueError:
            return -1


@dataclass
class FamilyDefinition:
    """Schema, defaults and merge semantics for one rule family."""

    name: str
    payload_model: type[BaseModel]
    strategy: MergeStrategy = MergeStrategy.RESTRICTIVE
    required_context: tuple[str, ...] = ()
    time_key: str | None = None
    condition_keys: frozenset[str] = frozenset()
    field_policies: dict[str, FieldPolicy] = field(default_factory=dict)
    default_payload: dict[str, Any] | None = None
    semantic_checks: tuple[SemanticCheck, ...] = ()
    contextualize: PayloadAdjuster | None = None
    finalize: PayloadAdjuster | None = None
    smart_code_prefix: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not FAMILY_NAME_PATTERN.match(self.name):
            raise ValueError(f"Invalid family name: {self.name!r}")
        self.strategy = MergeStrategy(self.strategy)
        if self.default_payload is None:
            self.default_payload = self.payload_model().model_dump(mode="json")
        if self.smart_code_prefix is None:
            self.smart_code_prefix = family_prefix(self.name)

    def parse_payload(self, payload: Mapping[str, Any]) -> BaseModel:
        """Validate a payload against the family model (raises pydantic.ValidationError)."""
        return self.payload_model.model_validate(dict(payload))

    def missing_context(self, context: Mapping[str, Any]) -> list[str]:
        """Required context keys that are absent or None.

        A required time key also counts as missing when its value cannot be
        read as a moment.
        """
        missing = []
        for key in self.required_context:
            value = context.get(key)
            if value is None or (key == self.time_key and parse_moment(value) is None):
                missing.append(key)
        return missing

    def effective_payload(self, payload: Mapping[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
        """One rule's payload as it applies to ``context``, before merging."""
        if self.contextualize is None:
            return dict(payload)
        return self.contextualize(dict(payload), context)

    def is_condition_key(self, key: str) -> bool:
        return key in self.condition_keys

    def default_copy(self) -> dict[str, Any]:
        """A fresh deep copy of the default payload."""
        return self.payload_model.model_validate(self.default_payload).model_dump(mode="json")


class FamilyRegistry:
    """Registered rule families, keyed by name."""

    def __init__(self, families: list[FamilyDefinition] | None = None):
        self._families: dict[str, FamilyDefinition] = {}
        self._lock = threading.Lock()
        for definition in families or []:
            self.register(definition)

    def register(self, definition: FamilyDefinition) -> FamilyDefinition:
        """Register a family. Each family may be registered only once."""
        with self._lock:
            if definition.name in self._families:
                raise ValueError(f"Rule family already registered: {definition.name}")
            self._families[definition.name] = definition
        return definition

    def get(self, name: str) -> FamilyDefinition:
        """Get a family by name, raising UnknownFamily if it was never registered."""
        definition = self._families.get(name)
        if definition is None:
            raise UnknownFamily(name)
        return definition

    def __contains__(self, name: object) -> bool:
        return name in self._families

    def names(self) -> list[str]:
        return sorted(self._families)

    def families(self) -> list[FamilyDefinition]:
        return [self._families[name] for name in self.names()]
