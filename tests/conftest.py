"""Pytest fixtures for test suite."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

from universal_config.config import Settings
from universal_config.core.models import Rule, RuleConditions, RuleStatus
from universal_config.engine import RuleEngine
from universal_config.families import FamilyRegistry, builtin_families
from universal_config.storage import InMemoryRuleStore, RuleCache, init_db, reset_engine, set_db_path

ORG = "org-salon-1"


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings for an in-memory engine."""
    return Settings(store_backend="memory", cache_ttl_seconds=30, templates_dir=None)


@pytest.fixture
def families() -> FamilyRegistry:
    """Registry holding the built-in families."""
    return FamilyRegistry(builtin_families())


@pytest.fixture
def store() -> InMemoryRuleStore:
    return InMemoryRuleStore()


@pytest.fixture
def cache() -> RuleCache:
    return RuleCache(ttl_seconds=30)


@pytest.fixture
def engine(store: InMemoryRuleStore, families: FamilyRegistry, cache: RuleCache, settings: Settings) -> RuleEngine:
    """Engine over an in-memory store with built-in families and templates."""
    return RuleEngine(store=store, families=families, cache=cache, settings=settings)


@pytest.fixture
def make_rule() -> Callable[..., Rule]:
    """Factory for active booking rules with distinct creation times."""
    counter = {"n": 0}
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _make(
        rule_id: str,
        payload: dict[str, Any],
        priority: int = 0,
        conditions: dict[str, Any] | None = None,
        family: str = "booking",
        organization_id: str = ORG,
        status: RuleStatus = RuleStatus.ACTIVE,
        version: int = 1,
    ) -> Rule:
        counter["n"] += 1
        created = base + timedelta(minutes=counter["n"])
        return Rule(
            id=rule_id,
            organization_id=organization_id,
            family=family,
            version=version,
            status=status,
            priority=priority,
            conditions=RuleConditions.model_validate(conditions or {}),
            payload=payload,
            created_at=created,
            updated_at=created,
        )

    return _make


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def temp_database():
    """Use a temporary SQLite database for the test."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        temp_path = Path(f.name)

    set_db_path(temp_path)
    init_db()
    yield temp_path

    # Cleanup
    reset_engine()
    try:
        temp_path.unlink()
    except OSError:
        pass
