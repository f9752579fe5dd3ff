"""
Audit trail writers.

Both logs are write-once rows added inside the same transaction as the change
they describe, so a change is never visible without its audit record.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from store.base import Transaction

from .documents import insert
from .records import (
    CapacityChangeLogRecord,
    PartnershipAuditLogRecord,
    PartnershipEvent,
    SupervisorRecord,
)

logger = logging.getLogger(__name__)


def record_partnership_event(
    tx: Transaction,
    event_type: PartnershipEvent,
    actor_id: str,
    now: datetime,
    **details: Any,
) -> PartnershipAuditLogRecord:
    """Append one partnership audit row.

    Args:
        tx: Transaction performing the audited change
        event_type: What happened
        actor_id: Who did it
        now: Timestamp shared with the audited writes
        **details: Event context (request_id, project_id, ...); must be JSON-safe
    """
    entry = insert(
        tx,
        PartnershipAuditLogRecord(
            id='',
            event_type=event_type,
            actor_id=actor_id,
            details=details,
            timestamp=now,
        ),
    )
    logger.debug(f"Audit {event_type.value} by {actor_id}: {details}")
    return entry


def record_capacity_change(
    tx: Transaction,
    supervisor: SupervisorRecord,
    new_max_capacity: int,
    reason: str,
    actor_id: str,
    now: datetime,
) -> CapacityChangeLogRecord:
    """Append one capacity override row for ``supervisor`` (pre-change record)."""
    return insert(
        tx,
        CapacityChangeLogRecord(
            id='',
            supervisor_id=supervisor.id,
            old_max_capacity=supervisor.max_capacity,
            new_max_capacity=new_max_capacity,
            reason=reason,
            actor_id=actor_id,
            timestamp=now,
        ),
    )
