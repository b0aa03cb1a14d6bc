"""
Repositories package for storage domain.

Provides SQL-backed rule persistence.
"""

from universal_config.storage.repositories.rule_repo import SqlRuleStore, rule_from_row, rule_to_params

__all__ = [
    "SqlRuleStore",
    "rule_from_row",
    "rule_to_params",
]
