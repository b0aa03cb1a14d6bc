"""
SQL rule store.

Provides rule version persistence and the append-only event log on top of
SQLAlchemy Core.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generator, Mapping

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from universal_config.core.cancellation import CancellationToken
from universal_config.core.models import (
    Rule,
    RuleConditions,
    RuleEvent,
    RuleEventType,
    RuleStatus,
    now_utc,
)
from universal_config.errors import StorageUnavailable
from universal_config.storage.database import get_db
from universal_config.storage.rule_store import RuleStore


@contextmanager
def storage_errors(operation: str) -> Generator[None, None, None]:
    """Re-raise driver errors as StorageUnavailable."""
    try:
        yield
    except SQLAlchemyError as e:
        raise StorageUnavailable(f"{operation} failed: {e}") from e


def rule_from_row(row: Mapping[str, Any]) -> Rule:
    """Create a Rule from a database row."""
    return Rule(
        id=row["id"],
        organization_id=row["organization_id"],
        family=row["family"],
        sub_family=row["sub_family"],
        version=row["version"],
        status=RuleStatus(row["status"]),
        priority=row["priority"],
        conditions=RuleConditions.model_validate(json.loads(row["conditions_json"])),
        payload=json.loads(row["payload_json"]),
        smart_code=row["smart_code"],
        name=row["name"],
        description=row["description"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def rule_to_params(rule: Rule) -> dict[str, Any]:
    """Convert a Rule to bind parameters for insertion."""
    return {
        "organization_id": rule.organization_id,
        "id": rule.id,
        "version": rule.version,
        "family": rule.family,
        "sub_family": rule.sub_family,
        "status": rule.status.value,
        "priority": rule.priority,
        "conditions_json": json.dumps(rule.conditions.model_dump(mode="json", exclude_none=True)),
        "payload_json": json.dumps(rule.payload),
        "smart_code": rule.smart_code,
        "name": rule.name,
        "description": rule.description,
        "created_at": rule.created_at.isoformat(),
        "updated_at": rule.updated_at.isoformat(),
    }


class SqlRuleStore(RuleStore):
    """Rule store backed by the configured SQL database."""

    # =========================================================================
    # Reads
    # =========================================================================

    def get_active_rules(
        self, organization_id: str, family: str, token: CancellationToken | None = None
    ) -> list[Rule]:
        if token is not None:
            token.check("get_active_rules")
        with storage_errors("get_active_rules"), get_db() as conn:
            result = conn.execute(
                text("""
                SELECT r.* FROM rules r
                JOIN (
                    SELECT id, MAX(version) AS version FROM rules
                    WHERE organization_id = :organization_id
                    GROUP BY id
                ) latest ON r.id = latest.id AND r.version = latest.version
                WHERE r.organization_id = :organization_id
                  AND r.family = :family
                  AND r.status = :status
                """),
                {
                    "organization_id": organization_id,
                    "family": family,
                    "status": RuleStatus.ACTIVE.value,
                },
            )
            return [rule_from_row(row._mapping) for row in result.fetchall()]

    def get_rule(
        self, organization_id: str, rule_id: str, token: CancellationToken | None = None
    ) -> Rule | None:
        if token is not None:
            token.check("get_rule")
        with storage_errors("get_rule"), get_db() as conn:
            result = conn.execute(
                text("""
                SELECT * FROM rules
                WHERE organization_id = :organization_id AND id = :id
                ORDER BY version DESC
                LIMIT 1
                """),
                {"organization_id": organization_id, "id": rule_id},
            )
            row = result.fetchone()
            if row:
                return rule_from_row(row._mapping)
            return None

    def get_rule_history(self, organization_id: str, rule_id: str) -> list[Rule]:
        with storage_errors("get_rule_history"), get_db() as conn:
            result = conn.execute(
                text("""
                SELECT * FROM rules
                WHERE organization_id = :organization_id AND id = :id
                ORDER BY version
                """),
                {"organization_id": organization_id, "id": rule_id},
            )
            return [rule_from_row(row._mapping) for row in result.fetchall()]

    # =========================================================================
    # Writes
    # =========================================================================

    def save_rule(
        self,
        rule: Rule,
        event_type: RuleEventType,
        token: CancellationToken | None = None,
        event_data: dict[str, Any] | None = None,
    ) -> Rule:
        """Upsert one rule version and append its event in a single transaction.

        The token is checked again right before commit; a cancelled write is
        rolled back and leaves no trace.
        """
        if token is not None:
            token.check("save_rule")
        params = rule_to_params(rule)

        with storage_errors("save_rule"), get_db() as conn:
            existing = conn.execute(
                text("""
                SELECT 1 FROM rules
                WHERE organization_id = :organization_id AND id = :id AND version = :version
                """),
                {"organization_id": rule.organization_id, "id": rule.id, "version": rule.version},
            ).fetchone()

            if existing:
                conn.execute(
                    text("""
                    UPDATE rules SET
                        sub_family = :sub_family,
                        status = :status,
                        priority = :priority,
                        conditions_json = :conditions_json,
                        payload_json = :payload_json,
                        smart_code = :smart_code,
                        name = :name,
                        description = :description,
                        updated_at = :updated_at
                    WHERE organization_id = :organization_id AND id = :id AND version = :version
                    """),
                    params,
                )
            else:
                conn.execute(
                    text("""
                    INSERT INTO rules (
                        organization_id, id, version, family, sub_family, status, priority,
                        conditions_json, payload_json, smart_code, name, description,
                        created_at, updated_at
                    ) VALUES (
                        :organization_id, :id, :version, :family, :sub_family, :status, :priority,
                        :conditions_json, :payload_json, :smart_code, :name, :description,
                        :created_at, :updated_at
                    )
                    """),
                    params,
                )

            sequence_number = conn.execute(
                text("SELECT COALESCE(MAX(sequence_number), 0) + 1 FROM rule_events")
            ).scalar_one()
            conn.execute(
                text("""
                INSERT INTO rule_events (
                    sequence_number, organization_id, rule_id, version,
                    event_type, event_data, timestamp
                ) VALUES (:sequence_number, :organization_id, :rule_id, :version,
                          :event_type, :event_data, :timestamp)
                """),
                {
                    "sequence_number": sequence_number,
                    "organization_id": rule.organization_id,
                    "rule_id": rule.id,
                    "version": rule.version,
                    "event_type": RuleEventType(event_type).value,
                    "event_data": json.dumps(event_data or {}),
                    "timestamp": now_utc().isoformat(),
                },
            )

            if token is not None:
                token.check("save_rule")
            conn.commit()

        return rule

    def list_events(self, organization_id: str, rule_id: str | None = None) -> list[RuleEvent]:
        query = "SELECT * FROM rule_events WHERE organization_id = :organization_id"
        params: dict[str, Any] = {"organization_id": organization_id}
        if rule_id is not None:
            query += " AND rule_id = :rule_id"
            params["rule_id"] = rule_id
        query += " ORDER BY sequence_number"

        with storage_errors("list_events"), get_db() as conn:
            rows = conn.execute(text(query), params).fetchall()
            return [
                RuleEvent(
                    organization_id=row._mapping["organization_id"],
                    rule_id=row._mapping["rule_id"],
                    version=row._mapping["version"],
                    event_type=RuleEventType(row._mapping["event_type"]),
                    sequence_number=row._mapping["sequence_number"],
                    timestamp=datetime.fromisoformat(row._mapping["timestamp"]),
                    data=json.loads(row._mapping["event_data"]),
                )
                for row in rows
            ]
