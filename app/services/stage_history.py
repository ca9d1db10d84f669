from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from app.services.actors import Actor
from app.services.application_records import ApplicationRecord, StageHistoryEntry


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def record(
    application: ApplicationRecord,
    stage: int,
    status: str,
    actor: Actor,
    reason: str | None = None,
    *,
    now: datetime | None = None,
) -> StageHistoryEntry:
    """Build the next history entry for ``application``.

    The timestamp is clamped to the last recorded entry so that a follow-on
    system transition written in the same call never sorts before the change
    that caused it. Nothing is appended here; the caller owns persistence.
    """
    timestamp = _as_aware(now or utc_now())
    last = application.last_entry
    if last is not None and timestamp < _as_aware(last.timestamp):
        timestamp = _as_aware(last.timestamp)
    return StageHistoryEntry(
        stage=stage,
        status=status,
        timestamp=timestamp,
        actor=actor.label,
        actor_id=actor.id,
        reason=reason,
    )


def system_entries(application: ApplicationRecord) -> list[StageHistoryEntry]:
    return [entry for entry in application.stage_history if entry.actor == "System"]
