"""
Administrative operations: capacity overrides and read-only reporting.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List

from django.utils import timezone

from common.exceptions import InvalidCapacityError, NotFoundError
from common.results import service_operation
from store.base import DocumentStore, Transaction

from . import capacity
from .audit import record_capacity_change
from .documents import require
from .records import (
    ApplicationRecord,
    ApplicationStatus,
    CapacityChangeLogRecord,
    StudentRecord,
    SupervisorRecord,
)

logger = logging.getLogger(__name__)


class AdminService:
    """Admin-only operations over supervisors and the matching state."""

    def __init__(self, store: DocumentStore):
        self.store = store

    @service_operation
    def override_capacity(
        self,
        supervisor_id: str,
        new_max_capacity: int,
        reason: str,
        acting_admin_id: str,
    ) -> SupervisorRecord:
        """
        Set a supervisor's max_capacity and log the change atomically.

        Raises (as failed results):
            NotFoundError: Supervisor missing
            InvalidCapacityError: Blank reason, negative, above the ceiling
                or below current_capacity
        """
        reason = (reason or '').strip()

        def body(tx: Transaction):
            supervisor = require(tx, SupervisorRecord, supervisor_id)
            if not reason:
                raise InvalidCapacityError(supervisor_id, new_max_capacity, 'A reason is required for capacity changes')
            capacity.validate_max_capacity(supervisor, new_max_capacity)

            now = timezone.now()
            updated = replace(supervisor, max_capacity=new_max_capacity, updated_at=now)
            tx.update(
                SupervisorRecord.collection,
                supervisor_id,
                updated.document_fields('max_capacity', 'updated_at'),
            )
            record_capacity_change(tx, supervisor, new_max_capacity, reason, acting_admin_id, now)
            return supervisor.max_capacity, updated

        old_max, updated = self.store.transaction(body)
        logger.info(
            f"Capacity override for supervisor {supervisor_id}: {old_max} -> {new_max_capacity} "
            f"by {acting_admin_id} ({reason})"
        )
        return updated

    @service_operation
    def capacity_history(self, supervisor_id: str) -> List[CapacityChangeLogRecord]:
        """Capacity change log for a supervisor, newest first."""
        if self.store.get(SupervisorRecord.collection, supervisor_id) is None:
            raise NotFoundError(SupervisorRecord.collection, supervisor_id)
        entries = [
            CapacityChangeLogRecord.from_snapshot(snapshot)
            for snapshot in self.store.query(
                CapacityChangeLogRecord.collection,
                [('supervisor_id', '==', supervisor_id)],
            )
        ]
        # stores return insertion order; ties on timestamp keep it
        entries.sort(key=lambda entry: entry.timestamp)
        entries.reverse()
        return entries

    @service_operation
    def dashboard_stats(self) -> Dict[str, Any]:
        """Headline counts for the admin dashboard."""
        students = [StudentRecord.from_snapshot(s) for s in self.store.query(StudentRecord.collection)]
        supervisors = [SupervisorRecord.from_snapshot(s) for s in self.store.query(SupervisorRecord.collection)]
        applications = [ApplicationRecord.from_snapshot(s) for s in self.store.query(ApplicationRecord.collection)]

        active_supervisors = [s for s in supervisors if s.is_active]
        return {
            'total_students': len(students),
            'paired_students': sum(1 for s in students if s.is_paired),
            'total_supervisors': len(supervisors),
            'active_supervisors': len(active_supervisors),
            'approved_applications': sum(1 for a in applications if a.status == ApplicationStatus.APPROVED),
            'pending_applications': sum(1 for a in applications if a.status == ApplicationStatus.PENDING),
            'total_available_capacity': sum(capacity.remaining_capacity(s) for s in active_supervisors),
        }
