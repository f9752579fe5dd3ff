"""
Co-supervision requests between supervisors.

Any supervisor may ask another to co-supervise a project, as long as the
target is not the project's primary supervisor. Acceptance consumes one slot
of the co-supervisor's capacity and sets the project's co-supervisor, all in
one transaction. A project has at most one accepted request; competing
requests for the same project stay pending and fail with AlreadyMatchedError
if accepted later.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from django.utils import timezone

from common.exceptions import (
    AlreadyMatchedError,
    CapacityExceededError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    SelfReferenceError,
)
from common.results import service_operation
from store.base import Transaction

from . import capacity
from .audit import record_partnership_event
from .documents import find, require, save_capacity
from .partnerships import PartnershipProtocol
from .projects import detach_co_supervisor
from .records import (
    PartnershipEvent,
    ProjectRecord,
    RequestStatus,
    SupervisorPartnershipRequestRecord,
    SupervisorRecord,
)

logger = logging.getLogger(__name__)


class SupervisorPartnershipService(PartnershipProtocol):
    """Supervisor-to-supervisor co-supervision for a project."""

    record_cls = SupervisorPartnershipRequestRecord
    entity_name = 'supervisor partnership request'

    @service_operation
    def create_request(self, requester_id: str, target_id: str, project_id: str) -> SupervisorPartnershipRequestRecord:
        """
        Propose ``target_id`` as co-supervisor of ``project_id``.

        Any supervisor may propose; several proposals for one project may be
        pending at once and the first accepted wins.

        Raises (as failed results):
            SelfReferenceError: Target is the requester or the project's primary supervisor
            NotFoundError: Either supervisor or the project missing
            InvalidTransitionError: Project is completed or cancelled
            AlreadyMatchedError: Project already has a co-supervisor
            CapacityExceededError: Target has no free slot
            DuplicatePendingError: A pending request for this project exists in either direction
        """
        return self._create(requester_id, target_id, project_id=project_id)

    @service_operation
    def remove_co_supervisor(self, project_id: str, acting_supervisor_id: str) -> dict:
        """End co-supervision on an active project and release the slot."""

        def body(tx: Transaction) -> dict:
            project = require(tx, ProjectRecord, project_id)
            if project.supervisor_id != acting_supervisor_id:
                raise ForbiddenError(acting_supervisor_id, f'remove co-supervisor from project {project_id}')
            if not project.co_supervisor_id:
                raise NotFoundError('co_supervisor', project_id)

            now = timezone.now()
            co_supervisor_id = project.co_supervisor_id
            detach_co_supervisor(tx, project, now)
            record_partnership_event(
                tx,
                PartnershipEvent.CO_SUPERVISOR_REMOVED,
                acting_supervisor_id,
                now,
                project_id=project.id,
                co_supervisor_id=co_supervisor_id,
                reason='removed',
            )
            return {'project_id': project.id, 'co_supervisor_id': co_supervisor_id}

        outcome = self.store.transaction(body)
        logger.info(f"Co-supervisor {outcome['co_supervisor_id']} removed from project {project_id}")
        return outcome

    # ------------------------------------------------------------------ hooks

    def _validate_new_request(
        self, tx: Transaction, requester_id: str, target_id: str, project_id: str = '', **extra
    ) -> dict[str, Any]:
        require(tx, SupervisorRecord, requester_id)
        target = require(tx, SupervisorRecord, target_id)
        project = require(tx, ProjectRecord, project_id)
        if project.supervisor_id == target_id:
            raise SelfReferenceError(target_id, f'co-supervision of project {project_id}')
        self._ensure_active(project)
        self._ensure_unmatched(tx, project)
        if not capacity.can_allocate(target):
            raise CapacityExceededError(target.id, target.current_capacity, target.max_capacity)
        return {'project_id': project_id}

    def _accept(self, tx: Transaction, request: SupervisorPartnershipRequestRecord, now: datetime) -> None:
        project = require(tx, ProjectRecord, request.project_id)
        self._ensure_unmatched(tx, project)
        self._ensure_active(project)
        target = require(tx, SupervisorRecord, request.target_id)
        target = save_capacity(tx, capacity.try_allocate(target), now)
        tx.update(
            ProjectRecord.collection,
            project.id,
            {
                'co_supervisor_id': target.id,
                'co_supervisor_name': target.full_name,
                'updated_at': now.isoformat(),
            },
        )
        record_partnership_event(
            tx,
            PartnershipEvent.CO_SUPERVISOR_ADDED,
            target.id,
            now,
            project_id=project.id,
            co_supervisor_id=target.id,
            request_id=request.id,
        )

    def _event_details(self, request: SupervisorPartnershipRequestRecord) -> dict[str, Any]:
        return {'request_id': request.id, 'project_id': request.project_id}

    # ---------------------------------------------------------------- helpers

    @staticmethod
    def _ensure_active(project: ProjectRecord) -> None:
        if project.is_terminal:
            raise InvalidTransitionError('project', project.status.value, 'co-supervised')

    @staticmethod
    def _ensure_unmatched(tx: Transaction, project: ProjectRecord) -> None:
        """No co-supervisor now, and no request for the project was ever accepted."""
        if project.co_supervisor_id:
            raise AlreadyMatchedError(project.id, project.co_supervisor_id)
        accepted = find(
            tx,
            SupervisorPartnershipRequestRecord,
            [('project_id', '==', project.id), ('status', '==', RequestStatus.ACCEPTED.value)],
        )
        if accepted:
            raise AlreadyMatchedError(project.id, accepted[0].target_id)
