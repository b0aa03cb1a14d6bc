"""Storage domain - database, rule stores and the active-rule cache."""

# Database
from universal_config.storage.database import (
    get_db,
    get_db_path,
    set_db_path,
    get_engine,
    reset_engine,
    init_db,
    get_table_stats,
)

# Stores
from universal_config.storage.rule_store import RuleStore, InMemoryRuleStore
from universal_config.storage.repositories import SqlRuleStore

# Cache
from universal_config.storage.cache import RuleCache

__all__ = [
    # Database
    "get_db",
    "get_db_path",
    "set_db_path",
    "get_engine",
    "reset_engine",
    "init_db",
    "get_table_stats",
    # Stores
    "RuleStore",
    "InMemoryRuleStore",
    "SqlRuleStore",
    # Cache
    "RuleCache",
]
