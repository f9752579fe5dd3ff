"""
Application workflow: students apply to supervisors, supervisors decide.

Approval is the only place capacity is consumed for an application, and
deleting an approved application is the only place it is returned. Partner
applications to the same supervisor are linked and share a single slot: the
first of the pair to be approved holds it (``holds_slot``), and the slot moves
to the sibling if the holder is deleted while the sibling is still approved.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from django.utils import timezone

from common.exceptions import (
    DuplicateApplicationError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    NotPendingError,
    SelfReferenceError,
)
from common.results import service_operation
from store.base import DocumentStore, Transaction

from . import capacity
from .documents import fetch, find, insert, require, save_capacity
from .records import (
    ACTIVE_APPLICATION_STATUSES,
    ApplicationRecord,
    ApplicationStatus,
    StudentRecord,
    SupervisorRecord,
)

logger = logging.getLogger(__name__)

LINKED_REJECTION_NOTE = 'Linked partner application was rejected'


class ApplicationService:
    """Create, decide, revise and withdraw supervision applications."""

    def __init__(self, store: DocumentStore):
        self.store = store

    # ------------------------------------------------------------------ reads

    @service_operation
    def get(self, application_id: str) -> ApplicationRecord:
        snapshot = self.store.get(ApplicationRecord.collection, application_id)
        if snapshot is None:
            raise NotFoundError(ApplicationRecord.collection, application_id)
        return ApplicationRecord.from_snapshot(snapshot)

    @service_operation
    def list_for_supervisor(self, supervisor_id: str, status: Optional[str] = None) -> list[ApplicationRecord]:
        filters = [('supervisor_id', '==', supervisor_id)]
        if status:
            filters.append(('status', '==', status))
        snapshots = self.store.query(ApplicationRecord.collection, filters)
        return [ApplicationRecord.from_snapshot(s) for s in snapshots]

    # --------------------------------------------------------------- commands

    @service_operation
    def create(
        self,
        student_id: str,
        supervisor_id: str,
        project_title: str,
        project_description: str = '',
        partner_id: Optional[str] = None,
    ) -> ApplicationRecord:
        """
        Submit a pending application.

        ``partner_id`` must be the student's current partner, with the pairing
        confirmed on both student documents. When the partner already has an
        active application to the same supervisor, the two are linked and the
        earlier one stays the lead.

        Raises (as failed results):
            SelfReferenceError: Student applying to themselves or partnering with themselves
            NotFoundError: Student, partner or supervisor missing
            ForbiddenError: partner_id is not the student's mutual partner
            DuplicateApplicationError: Active application to this supervisor exists
        """
        if student_id == supervisor_id:
            raise SelfReferenceError(student_id, 'application')
        if partner_id is not None and partner_id == student_id:
            raise SelfReferenceError(student_id, 'application partner')

        def body(tx: Transaction) -> ApplicationRecord:
            student = require(tx, StudentRecord, student_id)
            require(tx, SupervisorRecord, supervisor_id)
            if partner_id:
                partner = require(tx, StudentRecord, partner_id)
                if not (student.is_partnered_with(partner.id) and partner.is_partnered_with(student.id)):
                    raise ForbiddenError(student_id, f'apply together with {partner_id}, who is not their partner')

            existing = self._active_applications(tx, student_id, supervisor_id)
            if existing:
                raise DuplicateApplicationError(student_id, supervisor_id, existing[0].id)

            linked = None
            if partner_id:
                partner_applications = self._active_applications(tx, partner_id, supervisor_id)
                linked = next(
                    (app for app in partner_applications if app.linked_application_id is None),
                    None,
                )

            now = timezone.now()
            application = insert(
                tx,
                ApplicationRecord(
                    id='',
                    student_id=student_id,
                    supervisor_id=supervisor_id,
                    project_title=project_title,
                    project_description=project_description or '',
                    status=ApplicationStatus.PENDING,
                    partner_id=partner_id,
                    applied_by_student_id=student_id,
                    linked_application_id=linked.id if linked else None,
                    is_lead_application=linked is None,
                    date_applied=now,
                    last_updated=now,
                ),
            )
            if linked is not None:
                tx.update(
                    ApplicationRecord.collection,
                    linked.id,
                    {'linked_application_id': application.id, 'last_updated': now.isoformat()},
                )
            return application

        application = self.store.transaction(body)
        logger.info(f"Application {application.id} created: student {student_id} -> supervisor {supervisor_id}")
        return application

    @service_operation
    def approve(
        self,
        application_id: str,
        acting_supervisor_id: str,
        feedback: Optional[str] = None,
    ) -> ApplicationRecord:
        """
        Approve a pending application, consuming one slot of capacity.

        A linked application whose sibling already holds the slot is approved
        without a second allocation.
        """

        def body(tx: Transaction):
            application = self._require_decidable(tx, application_id, acting_supervisor_id)
            supervisor = require(tx, SupervisorRecord, application.supervisor_id)
            now = timezone.now()

            holds_slot = not self._slot_held_by_linked(tx, application)
            if holds_slot:
                supervisor = save_capacity(tx, capacity.try_allocate(supervisor), now)

            approved = replace(
                application,
                status=ApplicationStatus.APPROVED,
                holds_slot=holds_slot,
                supervisor_feedback=feedback if feedback is not None else application.supervisor_feedback,
                response_date=now,
                last_updated=now,
            )
            tx.update(
                ApplicationRecord.collection,
                approved.id,
                approved.document_fields(
                    'status', 'holds_slot', 'supervisor_feedback', 'response_date', 'last_updated'
                ),
            )
            return approved, supervisor

        approved, supervisor = self.store.transaction(body)
        logger.info(
            f"Application {application_id} approved by {acting_supervisor_id} "
            f"(capacity {supervisor.current_capacity}/{supervisor.max_capacity})"
        )
        return approved

    @service_operation
    def reject(
        self,
        application_id: str,
        acting_supervisor_id: str,
        feedback: Optional[str] = None,
    ) -> ApplicationRecord:
        """Reject a pending application. A pending linked application is rejected with it."""

        def body(tx: Transaction) -> ApplicationRecord:
            application = self._require_decidable(tx, application_id, acting_supervisor_id)
            now = timezone.now()
            rejected = replace(
                application,
                status=ApplicationStatus.REJECTED,
                supervisor_feedback=feedback if feedback is not None else application.supervisor_feedback,
                response_date=now,
                last_updated=now,
            )
            tx.update(
                ApplicationRecord.collection,
                rejected.id,
                rejected.document_fields('status', 'supervisor_feedback', 'response_date', 'last_updated'),
            )

            if application.is_lead_application and application.linked_application_id:
                linked = fetch(tx, ApplicationRecord, application.linked_application_id)
                if linked is not None and linked.status == ApplicationStatus.PENDING:
                    note = f'{feedback} ({LINKED_REJECTION_NOTE})' if feedback else LINKED_REJECTION_NOTE
                    tx.update(
                        ApplicationRecord.collection,
                        linked.id,
                        {
                            'status': ApplicationStatus.REJECTED.value,
                            'supervisor_feedback': note,
                            'response_date': now.isoformat(),
                            'last_updated': now.isoformat(),
                        },
                    )
            return rejected

        rejected = self.store.transaction(body)
        logger.info(f"Application {application_id} rejected by {acting_supervisor_id}")
        return rejected

    @service_operation
    def request_revision(
        self,
        application_id: str,
        acting_supervisor_id: str,
        feedback: Optional[str] = None,
    ) -> ApplicationRecord:
        """Send a pending application back to the student for changes."""

        def body(tx: Transaction) -> ApplicationRecord:
            application = self._require_decidable(tx, application_id, acting_supervisor_id)
            now = timezone.now()
            revised = replace(
                application,
                status=ApplicationStatus.REVISION_REQUESTED,
                supervisor_feedback=feedback if feedback is not None else application.supervisor_feedback,
                response_date=now,
                last_updated=now,
            )
            tx.update(
                ApplicationRecord.collection,
                revised.id,
                revised.document_fields('status', 'supervisor_feedback', 'response_date', 'last_updated'),
            )
            return revised

        revised = self.store.transaction(body)
        logger.info(f"Revision requested on application {application_id} by {acting_supervisor_id}")
        return revised

    @service_operation
    def resubmit(
        self,
        application_id: str,
        acting_student_id: str,
        project_title: Optional[str] = None,
        project_description: Optional[str] = None,
    ) -> ApplicationRecord:
        """Return a revision_requested application to pending, optionally with edits.

        A linked application also awaiting revision goes back to pending with it.
        """

        def body(tx: Transaction) -> ApplicationRecord:
            application = require(tx, ApplicationRecord, application_id)
            if not application.is_owned_by(acting_student_id):
                raise ForbiddenError(acting_student_id, f'resubmit application {application_id}')
            if application.status != ApplicationStatus.REVISION_REQUESTED:
                raise InvalidTransitionError('application', application.status.value, ApplicationStatus.PENDING.value)

            now = timezone.now()
            resubmitted = replace(
                application,
                status=ApplicationStatus.PENDING,
                project_title=project_title if project_title is not None else application.project_title,
                project_description=(
                    project_description if project_description is not None else application.project_description
                ),
                resubmitted_date=now,
                last_updated=now,
            )
            tx.update(
                ApplicationRecord.collection,
                resubmitted.id,
                resubmitted.document_fields(
                    'status', 'project_title', 'project_description', 'resubmitted_date', 'last_updated'
                ),
            )

            linked = fetch(tx, ApplicationRecord, application.linked_application_id)
            if linked is not None and linked.status == ApplicationStatus.REVISION_REQUESTED:
                tx.update(
                    ApplicationRecord.collection,
                    linked.id,
                    {
                        'status': ApplicationStatus.PENDING.value,
                        'resubmitted_date': now.isoformat(),
                        'last_updated': now.isoformat(),
                    },
                )
            return resubmitted

        resubmitted = self.store.transaction(body)
        logger.info(f"Application {application_id} resubmitted by {acting_student_id}")
        return resubmitted

    @service_operation
    def delete(self, application_id: str, acting_student_id: str) -> dict:
        """
        Withdraw an application in any status.

        If it held an approved slot, the slot moves to an approved linked
        sibling when there is one and is released otherwise. A linked sibling
        is unlinked and becomes its own lead.

        Returns:
            dict with application_id, capacity_released and slot_transferred_to
        """

        def body(tx: Transaction) -> dict:
            application = require(tx, ApplicationRecord, application_id)
            if not application.is_owned_by(acting_student_id):
                raise ForbiddenError(acting_student_id, f'delete application {application_id}')

            now = timezone.now()
            linked = fetch(tx, ApplicationRecord, application.linked_application_id)
            sibling_fields = {}
            released = False
            transferred_to = None

            if application.status == ApplicationStatus.APPROVED and application.holds_slot:
                if linked is not None and linked.status == ApplicationStatus.APPROVED:
                    sibling_fields['holds_slot'] = True
                    transferred_to = linked.id
                else:
                    supervisor = fetch(tx, SupervisorRecord, application.supervisor_id)
                    if supervisor is None:
                        logger.error(
                            f"Approved application {application_id} references missing "
                            f"supervisor {application.supervisor_id}; nothing to release"
                        )
                    else:
                        save_capacity(tx, capacity.release(supervisor), now)
                        released = True

            if linked is not None:
                sibling_fields.update({
                    'linked_application_id': None,
                    'is_lead_application': True,
                    'last_updated': now.isoformat(),
                })
                tx.update(ApplicationRecord.collection, linked.id, sibling_fields)

            tx.delete(ApplicationRecord.collection, application.id)
            return {
                'application_id': application.id,
                'capacity_released': released,
                'slot_transferred_to': transferred_to,
            }

        outcome = self.store.transaction(body)
        logger.info(
            f"Application {application_id} deleted by {acting_student_id} "
            f"(released={outcome['capacity_released']}, transferred_to={outcome['slot_transferred_to']})"
        )
        return outcome

    # ---------------------------------------------------------------- helpers

    @staticmethod
    def _active_applications(tx: Transaction, student_id: str, supervisor_id: str) -> list[ApplicationRecord]:
        return find(
            tx,
            ApplicationRecord,
            [
                ('student_id', '==', student_id),
                ('supervisor_id', '==', supervisor_id),
                ('status', 'in', [status.value for status in ACTIVE_APPLICATION_STATUSES]),
            ],
        )

    @staticmethod
    def _require_decidable(tx: Transaction, application_id: str, acting_supervisor_id: str) -> ApplicationRecord:
        application = require(tx, ApplicationRecord, application_id)
        if application.supervisor_id != acting_supervisor_id:
            raise ForbiddenError(acting_supervisor_id, f'decide application {application_id}')
        if application.status != ApplicationStatus.PENDING:
            raise NotPendingError('application', application_id, application.status.value)
        return application

    @staticmethod
    def _slot_held_by_linked(tx: Transaction, application: ApplicationRecord) -> bool:
        linked = fetch(tx, ApplicationRecord, application.linked_application_id)
        return (
            linked is not None
            and linked.status == ApplicationStatus.APPROVED
            and linked.holds_slot
        )
