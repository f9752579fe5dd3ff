"""
Project lifecycle and co-supervision cleanup.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

from django.test import SimpleTestCase

from matching.projects import ALLOWED_TRANSITIONS, ProjectService
from matching.records import (
    TERMINAL_PROJECT_STATUSES,
    PartnershipAuditLogRecord,
    PartnershipEvent,
    ProjectRecord,
    ProjectStatus,
    SupervisorRecord,
)

from tests.fixtures.test_data import MatchingFactory, capacity_violations, load, load_all, make_store


class ProjectTestBase(SimpleTestCase):
    def setUp(self):
        self.store = make_store()
        self.factory = MatchingFactory(self.store)
        self.service = ProjectService(self.store)
        self.factory.supervisor('sup-1', max_capacity=5)
        self.factory.supervisor('sup-2', max_capacity=5, current_capacity=3)

    def project(self, doc_id):
        return load(self.store, ProjectRecord, doc_id)

    def supervisor(self, doc_id):
        return load(self.store, SupervisorRecord, doc_id)


class CreateProjectTestCase(ProjectTestBase):
    def test_create_defaults_to_in_progress(self):
        self.factory.student('stu-1')
        result = self.service.create_project('sup-1', 'Thesis', 'About graphs', student_ids=['stu-1'])
        self.assertTrue(result.success)
        self.assertEqual(result.data.status, ProjectStatus.IN_PROGRESS)
        self.assertEqual(self.project(result.data.id).student_ids, ['stu-1'])

    def test_create_in_pending_approval(self):
        result = self.service.create_project('sup-1', 'Proposal', status='pending_approval')
        self.assertEqual(result.data.status, ProjectStatus.PENDING_APPROVAL)

    def test_create_rejects_terminal_or_unknown_status(self):
        self.assertEqual(self.service.create_project('sup-1', 'X', status='completed').code, 'INVALID_TRANSITION')
        self.assertEqual(self.service.create_project('sup-1', 'X', status='archived').code, 'INVALID_TRANSITION')

    def test_create_requires_existing_people(self):
        self.assertEqual(self.service.create_project('ghost', 'X').code, 'NOT_FOUND')
        self.assertEqual(self.service.create_project('sup-1', 'X', student_ids=['ghost']).code, 'NOT_FOUND')


class ChangeStatusTestCase(ProjectTestBase):
    def test_completion_releases_co_supervisor(self):
        for index in range(2):
            self.factory.project('sup-2', doc_id=f'own-{index}')
            self.factory.project('sup-3', co_supervisor_id='sup-2', doc_id=f'co-{index}')
        project_id = self.factory.project(
            'sup-1', doc_id='proj-1', co_supervisor_id='sup-2', co_supervisor_name='Dr. sup-2'
        )

        result = self.service.change_status(project_id, 'completed', 'sup-1')

        self.assertTrue(result.success)
        project = self.project(project_id)
        self.assertEqual(project.status, ProjectStatus.COMPLETED)
        self.assertIsNotNone(project.completed_at)
        self.assertIsNone(project.co_supervisor_id)
        self.assertIsNone(project.co_supervisor_name)
        self.assertEqual(self.supervisor('sup-2').current_capacity, 2)
        self.assertIsNone(result.data.co_supervisor_id)

        events = [entry.event_type for entry in load_all(self.store, PartnershipAuditLogRecord)]
        self.assertIn(PartnershipEvent.CO_SUPERVISOR_REMOVED, events)
        self.assertIn(PartnershipEvent.PROJECT_STATUS_CHANGED, events)

    def test_cancellation_from_every_active_status_releases(self):
        for status in (ProjectStatus.PENDING_APPROVAL, ProjectStatus.APPROVED, ProjectStatus.IN_PROGRESS):
            with self.subTest(status=status):
                self.store.update(SupervisorRecord.collection, 'sup-2', {'current_capacity': 1})
                project_id = self.factory.project('sup-1', status=status, co_supervisor_id='sup-2')
                self.assertTrue(self.service.change_status(project_id, 'cancelled', 'sup-1').success)
                self.assertIsNone(self.project(project_id).co_supervisor_id)
                self.assertEqual(self.supervisor('sup-2').current_capacity, 0)

    def test_co_supervisor_may_change_status(self):
        project_id = self.factory.project('sup-1', co_supervisor_id='sup-2')
        result = self.service.change_status(project_id, 'completed', 'sup-2')
        self.assertTrue(result.success)
        self.assertEqual(self.supervisor('sup-2').current_capacity, 2)

    def test_non_terminal_change_keeps_co_supervisor(self):
        project_id = self.factory.project('sup-1', status=ProjectStatus.APPROVED, co_supervisor_id='sup-2')
        self.service.change_status(project_id, 'in_progress', 'sup-1')
        self.assertEqual(self.project(project_id).co_supervisor_id, 'sup-2')
        self.assertEqual(self.supervisor('sup-2').current_capacity, 3)

    def test_transition_table(self):
        for current, allowed in ALLOWED_TRANSITIONS.items():
            for target in ProjectStatus:
                with self.subTest(current=current, target=target):
                    project_id = self.factory.project('sup-1', status=current)
                    result = self.service.change_status(project_id, target.value, 'sup-1')
                    if target in allowed:
                        self.assertTrue(result.success)
                    else:
                        self.assertEqual(result.code, 'INVALID_TRANSITION')
                        self.assertEqual(self.project(project_id).status, current)

    def test_terminal_statuses_are_final(self):
        for status in TERMINAL_PROJECT_STATUSES:
            self.assertEqual(ALLOWED_TRANSITIONS[status], frozenset())

    def test_guards(self):
        project_id = self.factory.project('sup-1')
        self.assertEqual(self.service.change_status('missing', 'completed', 'sup-1').code, 'NOT_FOUND')
        self.assertEqual(self.service.change_status(project_id, 'completed', 'sup-2').code, 'FORBIDDEN')
        self.assertEqual(self.service.change_status(project_id, 'archived', 'sup-1').code, 'INVALID_TRANSITION')

    def test_missing_co_supervisor_is_cleared_and_logged(self):
        project_id = self.factory.project('sup-1', co_supervisor_id='ghost')
        with self.assertLogs('matching.projects', level='ERROR'):
            result = self.service.change_status(project_id, 'cancelled', 'sup-1')
        self.assertTrue(result.success)
        self.assertIsNone(self.project(project_id).co_supervisor_id)

    def test_concurrent_completion_releases_once(self):
        self.store.update(SupervisorRecord.collection, 'sup-2', {'current_capacity': 1})
        project_id = self.factory.project('sup-1', co_supervisor_id='sup-2')
        start = threading.Barrier(2)

        def complete(actor):
            start.wait()
            return self.service.change_status(project_id, 'completed', actor)

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(complete, ['sup-1', 'sup-2']))

        succeeded = [r for r in results if r.success]
        failed = [r for r in results if not r.success]
        self.assertEqual(len(succeeded), 1)
        self.assertIn(failed[0].code, {'INVALID_TRANSITION', 'FORBIDDEN'})
        self.assertEqual(self.supervisor('sup-2').current_capacity, 0)
        self.assertEqual(capacity_violations(self.store), [])

    def test_get(self):
        project_id = self.factory.project('sup-1')
        self.assertEqual(self.service.get(project_id).data.supervisor_id, 'sup-1')
        self.assertEqual(self.service.get('missing').code, 'NOT_FOUND')
