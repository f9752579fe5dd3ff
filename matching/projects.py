"""
Project lifecycle.

Status changes follow ``ALLOWED_TRANSITIONS``. Moving a project to a terminal
status ends any co-supervision in the same transaction: the co-supervisor's
slot is released and the project's co-supervisor fields are cleared.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional, Sequence

from django.utils import timezone

from common.exceptions import ForbiddenError, InvalidTransitionError, NotFoundError
from common.results import service_operation
from store.base import DocumentStore, Transaction

from . import capacity
from .audit import record_partnership_event
from .documents import fetch, insert, require, save_capacity
from .records import (
    TERMINAL_PROJECT_STATUSES,
    PartnershipEvent,
    ProjectRecord,
    ProjectStatus,
    StudentRecord,
    SupervisorRecord,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[ProjectStatus, frozenset[ProjectStatus]] = {
    ProjectStatus.PENDING_APPROVAL: frozenset({ProjectStatus.APPROVED, ProjectStatus.CANCELLED}),
    ProjectStatus.APPROVED: frozenset({ProjectStatus.IN_PROGRESS, ProjectStatus.CANCELLED}),
    ProjectStatus.IN_PROGRESS: frozenset({ProjectStatus.COMPLETED, ProjectStatus.CANCELLED}),
    ProjectStatus.COMPLETED: frozenset(),
    ProjectStatus.CANCELLED: frozenset(),
}


def detach_co_supervisor(tx: Transaction, project: ProjectRecord, now: datetime) -> Optional[SupervisorRecord]:
    """
    Release the co-supervisor's slot and clear the project's co-supervisor fields.

    Returns the updated co-supervisor, or None when the referenced supervisor
    no longer exists (logged; the project is still cleared).
    """
    co_supervisor = fetch(tx, SupervisorRecord, project.co_supervisor_id)
    if co_supervisor is None:
        logger.error(
            f"Project {project.id} references missing co-supervisor {project.co_supervisor_id}; "
            f"clearing without release"
        )
    else:
        co_supervisor = save_capacity(tx, capacity.release(co_supervisor), now)

    tx.update(
        ProjectRecord.collection,
        project.id,
        {'co_supervisor_id': None, 'co_supervisor_name': None, 'updated_at': now.isoformat()},
    )
    return co_supervisor


def _coerce_status(value: str, current: str) -> ProjectStatus:
    try:
        return ProjectStatus(value)
    except ValueError as exc:
        raise InvalidTransitionError('project', current, str(value)) from exc


class ProjectService:
    """Project creation and status changes."""

    def __init__(self, store: DocumentStore):
        self.store = store

    @service_operation
    def get(self, project_id: str) -> ProjectRecord:
        snapshot = self.store.get(ProjectRecord.collection, project_id)
        if snapshot is None:
            raise NotFoundError(ProjectRecord.collection, project_id)
        return ProjectRecord.from_snapshot(snapshot)

    @service_operation
    def create_project(
        self,
        supervisor_id: str,
        title: str,
        description: str = '',
        student_ids: Sequence[str] = (),
        status: str = ProjectStatus.IN_PROGRESS,
    ) -> ProjectRecord:
        """Create a project owned by ``supervisor_id`` in a non-terminal status."""
        initial = _coerce_status(status, 'new')
        if initial in TERMINAL_PROJECT_STATUSES:
            raise InvalidTransitionError('project', 'new', initial.value)

        def body(tx: Transaction) -> ProjectRecord:
            require(tx, SupervisorRecord, supervisor_id)
            for student_id in student_ids:
                require(tx, StudentRecord, student_id)
            now = timezone.now()
            return insert(
                tx,
                ProjectRecord(
                    id='',
                    supervisor_id=supervisor_id,
                    title=title,
                    description=description or '',
                    student_ids=list(student_ids),
                    status=initial,
                    created_at=now,
                    updated_at=now,
                ),
            )

        project = self.store.transaction(body)
        logger.info(f"Project {project.id} created by supervisor {supervisor_id} ({project.status.value})")
        return project

    @service_operation
    def change_status(self, project_id: str, new_status: str, acting_supervisor_id: str) -> ProjectRecord:
        """
        Move a project to ``new_status``.

        The primary supervisor or the co-supervisor may change status.
        Reaching completed or cancelled releases the co-supervisor's slot.

        Raises (as failed results):
            NotFoundError: Project missing
            ForbiddenError: Actor supervises neither role on the project
            InvalidTransitionError: Transition not in ALLOWED_TRANSITIONS
        """

        def body(tx: Transaction):
            project = require(tx, ProjectRecord, project_id)
            if not project.is_supervised_by(acting_supervisor_id):
                raise ForbiddenError(acting_supervisor_id, f'change status of project {project_id}')
            target = _coerce_status(new_status, project.status.value)
            if target not in ALLOWED_TRANSITIONS[project.status]:
                raise InvalidTransitionError('project', project.status.value, target.value)

            now = timezone.now()
            released_from = None
            if target in TERMINAL_PROJECT_STATUSES and project.co_supervisor_id:
                released_from = project.co_supervisor_id
                detach_co_supervisor(tx, project, now)
                record_partnership_event(
                    tx,
                    PartnershipEvent.CO_SUPERVISOR_REMOVED,
                    acting_supervisor_id,
                    now,
                    project_id=project.id,
                    co_supervisor_id=released_from,
                    reason=f'project {target.value}',
                )

            updated = replace(
                project,
                status=target,
                updated_at=now,
                completed_at=now if target == ProjectStatus.COMPLETED else project.completed_at,
                co_supervisor_id=None if released_from else project.co_supervisor_id,
                co_supervisor_name=None if released_from else project.co_supervisor_name,
            )
            tx.update(
                ProjectRecord.collection,
                project.id,
                updated.document_fields('status', 'updated_at', 'completed_at'),
            )
            record_partnership_event(
                tx,
                PartnershipEvent.PROJECT_STATUS_CHANGED,
                acting_supervisor_id,
                now,
                project_id=project.id,
                old_status=project.status.value,
                new_status=target.value,
            )
            return updated, released_from

        updated, released_from = self.store.transaction(body)
        if released_from:
            logger.info(f"Co-supervisor {released_from} released from project {project_id}")
        logger.info(f"Project {project_id} moved to {updated.status.value} by {acting_supervisor_id}")
        return updated
