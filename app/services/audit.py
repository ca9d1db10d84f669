from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from fastapi.encoders import jsonable_encoder

from app.core.logging import get_audit_logger
from app.services.workflow_engine import StatusChange


def serialize_for_audit(value: Any) -> Any:
    return jsonable_encoder(
        value,
        custom_encoder={
            Decimal: lambda v: str(v),
            datetime: lambda v: v.isoformat(),
            date: lambda v: v.isoformat(),
        },
    )


def _diff_values(old: Any, new: Any, prefix: str = "") -> dict[str, dict[str, Any]]:
    changes: dict[str, dict[str, Any]] = {}
    if isinstance(old, dict) and isinstance(new, dict):
        keys = set(old.keys()) | set(new.keys())
        for key in sorted(keys):
            path = f"{prefix}.{key}" if prefix else str(key)
            changes.update(_diff_values(old.get(key), new.get(key), path))
        return changes
    if old != new:
        changes[prefix or "value"] = {"from": old, "to": new}
    return changes


def _build_summary(action: str, changes: dict[str, dict[str, Any]] | None) -> str:
    if not changes:
        return action
    keys = list(changes.keys())
    snippet = ", ".join(keys[:3])
    suffix = "..." if len(keys) > 3 else ""
    return f"{action}: {snippet}{suffix}"


def build_audit_record(change: StatusChange) -> dict[str, Any]:
    old_value = {"stage": change.previous_stage, "status": change.previous_status}
    new_value = {"stage": change.stage, "status": change.new_status}
    changes = _diff_values(old_value, new_value) or None
    return serialize_for_audit(
        {
            "action": change.audit_event,
            "resource_type": "application",
            "resource_id": change.application_id,
            "actor": change.actor,
            "actor_id": change.actor_id,
            "trigger": change.trigger.value if change.trigger else None,
            "reason": change.reason,
            "old_value": old_value,
            "new_value": new_value,
            "changes": changes,
            "summary": _build_summary(change.audit_event, changes),
            "notifications": [
                {"to": notification.to.value, "template": notification.template}
                for notification in change.notifications
            ],
            "occurred_at": change.occurred_at,
        }
    )


def record_status_change(change: StatusChange) -> None:
    """Workflow observer that mirrors every committed change onto the audit log stream."""
    audit = build_audit_record(change)
    get_audit_logger().info(audit["summary"], extra={"audit": audit})
