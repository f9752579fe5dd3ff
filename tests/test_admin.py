"""
Admin capacity overrides, history and dashboard counts.
"""

from __future__ import annotations

from django.test import SimpleTestCase

from matching.admin_service import AdminService
from matching.records import ApplicationStatus, CapacityChangeLogRecord, SupervisorRecord

from tests.fixtures.test_data import MatchingFactory, load, load_all, make_store


class OverrideCapacityTestCase(SimpleTestCase):
    def setUp(self):
        self.store = make_store()
        self.factory = MatchingFactory(self.store)
        self.service = AdminService(self.store)
        self.factory.supervisor('sup-1', max_capacity=5, current_capacity=3)

    def logs(self):
        return load_all(self.store, CapacityChangeLogRecord)

    def test_override_updates_and_logs(self):
        result = self.service.override_capacity('sup-1', 8, 'Extra term', 'admin-1')

        self.assertTrue(result.success)
        self.assertEqual(load(self.store, SupervisorRecord, 'sup-1').max_capacity, 8)
        [entry] = self.logs()
        self.assertEqual(
            (entry.supervisor_id, entry.old_max_capacity, entry.new_max_capacity, entry.reason, entry.actor_id),
            ('sup-1', 5, 8, 'Extra term', 'admin-1'),
        )
        self.assertIsNotNone(entry.timestamp)

    def test_shrinking_below_current_fails_without_log(self):
        result = self.service.override_capacity('sup-1', 2, 'Sabbatical', 'admin-1')
        self.assertEqual(result.code, 'INVALID_CAPACITY')
        self.assertEqual(load(self.store, SupervisorRecord, 'sup-1').max_capacity, 5)
        self.assertEqual(self.logs(), [])

    def test_shrinking_to_current_is_allowed(self):
        self.assertTrue(self.service.override_capacity('sup-1', 3, 'Freeze', 'admin-1').success)

    def test_bounds_and_reason(self):
        self.assertEqual(self.service.override_capacity('sup-1', -1, 'x', 'admin-1').code, 'INVALID_CAPACITY')
        self.assertEqual(self.service.override_capacity('sup-1', 51, 'x', 'admin-1').code, 'INVALID_CAPACITY')
        self.assertEqual(self.service.override_capacity('sup-1', 6, '   ', 'admin-1').code, 'INVALID_CAPACITY')
        self.assertEqual(self.logs(), [])

    def test_reason_is_stripped(self):
        self.service.override_capacity('sup-1', 6, '  New cohort ', 'admin-1')
        self.assertEqual(self.logs()[0].reason, 'New cohort')

    def test_missing_supervisor(self):
        self.assertEqual(self.service.override_capacity('ghost', 4, 'x', 'admin-1').code, 'NOT_FOUND')

    def test_history_newest_first(self):
        self.service.override_capacity('sup-1', 6, 'first', 'admin-1')
        self.service.override_capacity('sup-1', 7, 'second', 'admin-1')
        self.service.override_capacity('sup-1', 4, 'third', 'admin-2')

        history = self.service.capacity_history('sup-1').data
        self.assertEqual([entry.reason for entry in history], ['third', 'second', 'first'])
        self.assertEqual(history[0].old_max_capacity, 7)
        self.assertEqual(self.service.capacity_history('ghost').code, 'NOT_FOUND')


class DashboardStatsTestCase(SimpleTestCase):
    def test_counts(self):
        store = make_store()
        factory = MatchingFactory(store)
        factory.supervisor('sup-1', max_capacity=3, current_capacity=1)
        factory.supervisor('sup-2', max_capacity=2)
        factory.supervisor('sup-3', max_capacity=4, is_active=False)
        factory.paired_students('stu-1', 'stu-2')
        factory.student('stu-3')
        factory.application('stu-1', 'sup-1', ApplicationStatus.APPROVED)
        factory.application('stu-3', 'sup-2')
        factory.application('stu-3', 'sup-1', ApplicationStatus.REJECTED)

        stats = AdminService(store).dashboard_stats().data

        self.assertEqual(stats, {
            'total_students': 3,
            'paired_students': 2,
            'total_supervisors': 3,
            'active_supervisors': 2,
            'approved_applications': 1,
            'pending_applications': 1,
            'total_available_capacity': 4,
        })
