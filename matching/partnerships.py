"""
Partnership request protocol and the student pairing variant.

``PartnershipProtocol`` owns the request lifecycle shared by both kinds of
partnership request: pending requests are created by a requester, answered
(accept/reject) only by their target and cancelled only by their requester.
Subclasses plug in what creating and accepting means for their domain.

``StudentPartnershipService`` pairs two students symmetrically. Accepting a
request cancels every other pending request either student is part of, in
the same transaction.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Any

from django.utils import timezone

from common.exceptions import (
    AlreadyMatchedError,
    DuplicatePendingError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    NotPendingError,
    SelfReferenceError,
)
from common.results import service_operation
from store.base import DocumentStore, Transaction

from . import capacity
from .audit import record_partnership_event
from .documents import fetch, find, insert, require, save_capacity
from .records import (
    ACTIVE_APPLICATION_STATUSES,
    ApplicationRecord,
    ApplicationStatus,
    PartnershipEvent,
    PartnershipRequestRecord,
    PartnershipStatus,
    RequestStatus,
    RespondAction,
    StudentRecord,
    SupervisorRecord,
)

logger = logging.getLogger(__name__)


class PartnershipProtocol(ABC):
    """
    Request lifecycle shared by student and supervisor partnerships.

    Subclasses set ``record_cls`` and ``entity_name`` and implement
    ``_validate_new_request`` and ``_accept``.
    """

    record_cls: type[PartnershipRequestRecord] = PartnershipRequestRecord
    entity_name = 'partnership request'

    def __init__(self, store: DocumentStore):
        self.store = store

    # ------------------------------------------------------------------ hooks

    @abstractmethod
    def _validate_new_request(self, tx: Transaction, requester_id: str, target_id: str, **extra) -> dict[str, Any]:
        """Check a new request; return extra record fields that scope duplicate checks."""

    @abstractmethod
    def _accept(self, tx: Transaction, request: PartnershipRequestRecord, now: datetime) -> None:
        """Apply the domain side of an acceptance inside ``tx``."""

    def _event_details(self, request: PartnershipRequestRecord) -> dict[str, Any]:
        return {'request_id': request.id}

    # ------------------------------------------------------------------ reads

    @service_operation
    def get(self, request_id: str) -> PartnershipRequestRecord:
        snapshot = self.store.get(self.record_cls.collection, request_id)
        if snapshot is None:
            raise NotFoundError(self.record_cls.collection, request_id)
        return self.record_cls.from_snapshot(snapshot)

    @service_operation
    def pending_for(self, user_id: str) -> dict[str, list[PartnershipRequestRecord]]:
        """Pending requests sent and received by ``user_id``."""
        pending = ('status', '==', RequestStatus.PENDING.value)
        collection = self.record_cls.collection
        sent = self.store.query(collection, [('requester_id', '==', user_id), pending])
        received = self.store.query(collection, [('target_id', '==', user_id), pending])
        return {
            'sent': [self.record_cls.from_snapshot(s) for s in sent],
            'received': [self.record_cls.from_snapshot(s) for s in received],
        }

    # --------------------------------------------------------------- commands

    def _create(self, requester_id: str, target_id: str, **extra) -> PartnershipRequestRecord:
        if requester_id == target_id:
            raise SelfReferenceError(requester_id, self.entity_name)

        def body(tx: Transaction) -> PartnershipRequestRecord:
            scope = self._validate_new_request(tx, requester_id, target_id, **extra)
            self._ensure_no_pending(tx, requester_id, target_id, scope)

            now = timezone.now()
            request = insert(
                tx,
                self.record_cls(
                    id='',
                    requester_id=requester_id,
                    target_id=target_id,
                    status=RequestStatus.PENDING,
                    created_at=now,
                    **scope,
                ),
            )
            record_partnership_event(
                tx,
                PartnershipEvent.REQUEST_CREATED,
                requester_id,
                now,
                target_id=target_id,
                **self._event_details(request),
            )
            return request

        request = self.store.transaction(body)
        logger.info(f"{self.entity_name.capitalize()} {request.id} created: {requester_id} -> {target_id}")
        return request

    @service_operation
    def respond(self, request_id: str, acting_id: str, action: str) -> PartnershipRequestRecord:
        """
        Accept or reject a pending request. Only its target may respond.

        Raises (as failed results):
            InvalidTransitionError: Unknown action
            NotFoundError: Request missing
            ForbiddenError: Actor is not the target
            NotPendingError: Request already answered or cancelled
        """
        try:
            action = RespondAction(action)
        except ValueError as exc:
            raise InvalidTransitionError(self.entity_name, RequestStatus.PENDING.value, str(action)) from exc

        def body(tx: Transaction) -> PartnershipRequestRecord:
            request = require(tx, self.record_cls, request_id)
            if request.target_id != acting_id:
                raise ForbiddenError(acting_id, f'respond to {self.entity_name} {request_id}')
            self._require_pending(request)

            now = timezone.now()
            if action == RespondAction.ACCEPT:
                self._accept(tx, request, now)
                new_status, event = RequestStatus.ACCEPTED, PartnershipEvent.REQUEST_ACCEPTED
            else:
                new_status, event = RequestStatus.REJECTED, PartnershipEvent.REQUEST_REJECTED

            answered = replace(request, status=new_status, responded_at=now)
            tx.update(self.record_cls.collection, answered.id, answered.document_fields('status', 'responded_at'))
            record_partnership_event(tx, event, acting_id, now, **self._event_details(answered))
            return answered

        answered = self.store.transaction(body)
        logger.info(f"{self.entity_name.capitalize()} {request_id} {answered.status.value} by {acting_id}")
        return answered

    @service_operation
    def cancel(self, request_id: str, acting_id: str) -> PartnershipRequestRecord:
        """Withdraw a pending request. Only its requester may cancel."""

        def body(tx: Transaction) -> PartnershipRequestRecord:
            request = require(tx, self.record_cls, request_id)
            if request.requester_id != acting_id:
                raise ForbiddenError(acting_id, f'cancel {self.entity_name} {request_id}')
            self._require_pending(request)

            now = timezone.now()
            cancelled = replace(request, status=RequestStatus.CANCELLED, responded_at=now)
            tx.update(self.record_cls.collection, cancelled.id, cancelled.document_fields('status', 'responded_at'))
            record_partnership_event(
                tx, PartnershipEvent.REQUEST_CANCELLED, acting_id, now, **self._event_details(cancelled)
            )
            return cancelled

        cancelled = self.store.transaction(body)
        logger.info(f"{self.entity_name.capitalize()} {request_id} cancelled by {acting_id}")
        return cancelled

    # ---------------------------------------------------------------- helpers

    def _require_pending(self, request: PartnershipRequestRecord) -> None:
        if request.status != RequestStatus.PENDING:
            raise NotPendingError(self.entity_name, request.id, request.status.value)

    def _ensure_no_pending(self, tx: Transaction, requester_id: str, target_id: str, scope: dict[str, Any]) -> None:
        """Reject a new request if one is already pending in either direction."""
        scope_filters = [(name, '==', value) for name, value in scope.items()]
        for sender, receiver, is_reverse in ((requester_id, target_id, False), (target_id, requester_id, True)):
            existing = find(
                tx,
                self.record_cls,
                [
                    ('requester_id', '==', sender),
                    ('target_id', '==', receiver),
                    ('status', '==', RequestStatus.PENDING.value),
                    *scope_filters,
                ],
            )
            if existing:
                raise DuplicatePendingError(requester_id, target_id, existing[0].id, is_reverse=is_reverse)


class StudentPartnershipService(PartnershipProtocol):
    """Student-to-student pairing."""

    record_cls = PartnershipRequestRecord
    entity_name = 'partnership request'

    @service_operation
    def create_request(self, requester_id: str, target_id: str) -> PartnershipRequestRecord:
        """
        Ask ``target_id`` to become ``requester_id``'s partner.

        Raises (as failed results):
            SelfReferenceError: Requester and target are the same student
            NotFoundError: Either student missing
            AlreadyMatchedError: Either student is already paired
            DuplicatePendingError: A pending request exists in either direction
        """
        return self._create(requester_id, target_id)

    @service_operation
    def unpair(self, student_id: str) -> dict:
        """
        Dissolve ``student_id``'s partnership.

        Both students return to unpaired and the partner reference is cleared
        from their active applications. Linked applications are split into
        independent leads; an approved application that was sharing its
        sibling's slot is given a slot of its own.

        Raises (as failed results):
            InvalidTransitionError: Student is not paired, or the pairing is not mutual
            CapacityExceededError: A split application cannot get its own slot
        """

        def body(tx: Transaction) -> dict:
            student = require(tx, StudentRecord, student_id)
            if not student.partner_id:
                raise InvalidTransitionError(
                    'partnership', student.partnership_status.value, PartnershipStatus.NONE.value
                )
            partner = require(tx, StudentRecord, student.partner_id)
            if partner.partner_id != student.id:
                logger.error(f"Asymmetric pairing: {student.id} -> {partner.id} -> {partner.partner_id}")
                raise InvalidTransitionError(
                    'partnership', partner.partnership_status.value, PartnershipStatus.NONE.value
                )

            now = timezone.now()
            for member in (student, partner):
                tx.update(
                    StudentRecord.collection,
                    member.id,
                    {
                        'partner_id': None,
                        'partnership_status': PartnershipStatus.NONE.value,
                        'updated_at': now.isoformat(),
                    },
                )
            split = self._split_applications(tx, [student.id, partner.id], now)

            record_partnership_event(
                tx,
                PartnershipEvent.STUDENTS_UNPAIRED,
                student.id,
                now,
                student_ids=[student.id, partner.id],
                separately_allocated_application_ids=split,
            )
            return {
                'student_id': student.id,
                'former_partner_id': partner.id,
                'separately_allocated_application_ids': split,
            }

        outcome = self.store.transaction(body)
        logger.info(f"Students {outcome['student_id']} and {outcome['former_partner_id']} unpaired")
        return outcome

    # ------------------------------------------------------------------ hooks

    def _validate_new_request(self, tx: Transaction, requester_id: str, target_id: str, **extra) -> dict[str, Any]:
        requester = require(tx, StudentRecord, requester_id)
        target = require(tx, StudentRecord, target_id)
        for student in (requester, target):
            if student.is_paired:
                raise AlreadyMatchedError(student.id, student.partner_id)
        return {}

    def _accept(self, tx: Transaction, request: PartnershipRequestRecord, now: datetime) -> None:
        requester = require(tx, StudentRecord, request.requester_id)
        target = require(tx, StudentRecord, request.target_id)
        for student in (requester, target):
            if student.is_paired:
                raise NotPendingError('student', student.id, student.partnership_status.value)

        for student, partner in ((requester, target), (target, requester)):
            tx.update(
                StudentRecord.collection,
                student.id,
                {
                    'partner_id': partner.id,
                    'partnership_status': PartnershipStatus.PAIRED.value,
                    'updated_at': now.isoformat(),
                },
            )

        cancelled = self._cancel_competing(tx, request, now)
        record_partnership_event(
            tx,
            PartnershipEvent.STUDENTS_PAIRED,
            target.id,
            now,
            request_id=request.id,
            student_ids=[requester.id, target.id],
            cancelled_request_ids=cancelled,
        )

    def _cancel_competing(self, tx: Transaction, request: PartnershipRequestRecord, now: datetime) -> list[str]:
        """Cancel every other pending request involving either newly paired student."""
        student_ids = [request.requester_id, request.target_id]
        seen = {request.id}
        cancelled = []
        for role in ('requester_id', 'target_id'):
            for other in find(
                tx,
                PartnershipRequestRecord,
                [(role, 'in', student_ids), ('status', '==', RequestStatus.PENDING.value)],
            ):
                if other.id in seen:
                    continue
                seen.add(other.id)
                tx.update(
                    PartnershipRequestRecord.collection,
                    other.id,
                    {'status': RequestStatus.CANCELLED.value, 'responded_at': now.isoformat()},
                )
                cancelled.append(other.id)
        return cancelled

    @staticmethod
    def _split_applications(tx: Transaction, student_ids: list[str], now: datetime) -> list[str]:
        """
        Detach former partners' applications from each other.

        Returns the ids of approved applications that had been riding on
        their sibling's slot and now hold one of their own.
        """
        updates: dict[str, dict[str, Any]] = {}
        supervisors: dict[str, SupervisorRecord] = {}
        allocated = []
        for student_id in student_ids:
            for application in find(
                tx,
                ApplicationRecord,
                [
                    ('student_id', '==', student_id),
                    ('status', 'in', [status.value for status in ACTIVE_APPLICATION_STATUSES]),
                ],
            ):
                fields = updates.setdefault(application.id, {})
                if application.partner_id:
                    fields['partner_id'] = None
                if application.linked_application_id:
                    fields.update({'linked_application_id': None, 'is_lead_application': True})
                    linked = fetch(tx, ApplicationRecord, application.linked_application_id)
                    if linked is not None:
                        updates.setdefault(linked.id, {}).update(
                            {'linked_application_id': None, 'is_lead_application': True}
                        )
                if application.status == ApplicationStatus.APPROVED and not application.holds_slot:
                    supervisor = supervisors.get(application.supervisor_id) or require(
                        tx, SupervisorRecord, application.supervisor_id
                    )
                    supervisors[supervisor.id] = capacity.try_allocate(supervisor)
                    fields['holds_slot'] = True
                    allocated.append(application.id)

        for supervisor in supervisors.values():
            save_capacity(tx, supervisor, now)
        for application_id, fields in updates.items():
            if fields:
                fields['last_updated'] = now.isoformat()
                tx.update(ApplicationRecord.collection, application_id, fields)
        return allocated
