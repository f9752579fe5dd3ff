"""
Capacity ledger rules.
"""

from __future__ import annotations

from django.test import SimpleTestCase

from common.config import MatchingConfig
from common.exceptions import CapacityExceededError, InvalidCapacityError
from matching import capacity
from matching.records import AvailabilityStatus, SupervisorRecord


def supervisor(current: int, maximum: int) -> SupervisorRecord:
    return SupervisorRecord(id='sup-1', full_name='Dr. One', max_capacity=maximum, current_capacity=current)


class TryAllocateTestCase(SimpleTestCase):
    def test_allocates_one_slot(self):
        updated = capacity.try_allocate(supervisor(0, 2))
        self.assertEqual(updated.current_capacity, 1)

    def test_does_not_mutate_input(self):
        original = supervisor(0, 2)
        capacity.try_allocate(original)
        self.assertEqual(original.current_capacity, 0)

    def test_fills_to_exactly_max(self):
        self.assertEqual(capacity.try_allocate(supervisor(1, 2)).current_capacity, 2)

    def test_full_supervisor_rejected(self):
        with self.assertRaises(CapacityExceededError) as ctx:
            capacity.try_allocate(supervisor(2, 2))
        self.assertEqual(ctx.exception.details()['current_capacity'], 2)

    def test_zero_max_capacity_rejects_everything(self):
        with self.assertRaises(CapacityExceededError):
            capacity.try_allocate(supervisor(0, 0))

    def test_multi_unit_allocation(self):
        self.assertFalse(capacity.can_allocate(supervisor(1, 2), by=2))
        self.assertEqual(capacity.try_allocate(supervisor(0, 3), by=2).current_capacity, 2)


class ReleaseTestCase(SimpleTestCase):
    def test_release_one_slot(self):
        self.assertEqual(capacity.release(supervisor(2, 2)).current_capacity, 1)

    def test_release_below_zero_clamps_and_logs(self):
        with self.assertLogs('matching.capacity', level='ERROR') as logs:
            updated = capacity.release(supervisor(0, 2))
        self.assertEqual(updated.current_capacity, 0)
        self.assertIn('underflow', logs.output[0])


class AvailabilityTestCase(SimpleTestCase):
    def test_derivation(self):
        cases = [
            (0, 5, AvailabilityStatus.AVAILABLE),
            (3, 5, AvailabilityStatus.AVAILABLE),
            (4, 5, AvailabilityStatus.LIMITED),
            (5, 5, AvailabilityStatus.UNAVAILABLE),
            (0, 1, AvailabilityStatus.LIMITED),
            (0, 0, AvailabilityStatus.UNAVAILABLE),
        ]
        for current, maximum, expected in cases:
            with self.subTest(current=current, maximum=maximum):
                self.assertEqual(capacity.derive_availability(supervisor(current, maximum)), expected)

    def test_record_exposes_availability(self):
        record = supervisor(1, 2)
        self.assertEqual(record.availability_status, AvailabilityStatus.LIMITED)
        self.assertEqual(record.to_dict()['availability_status'], 'limited')
        self.assertEqual(record.remaining_capacity, 1)


class ValidateMaxCapacityTestCase(SimpleTestCase):
    def test_accepts_bounds(self):
        capacity.validate_max_capacity(supervisor(0, 2), 0)
        capacity.validate_max_capacity(supervisor(0, 2), MatchingConfig.MAX_SUPERVISOR_CAPACITY)
        capacity.validate_max_capacity(supervisor(3, 5), 3)

    def test_rejects_negative(self):
        with self.assertRaises(InvalidCapacityError):
            capacity.validate_max_capacity(supervisor(0, 2), -1)

    def test_rejects_above_ceiling(self):
        with self.assertRaises(InvalidCapacityError):
            capacity.validate_max_capacity(supervisor(0, 2), MatchingConfig.MAX_SUPERVISOR_CAPACITY + 1)

    def test_rejects_below_current(self):
        with self.assertRaises(InvalidCapacityError) as ctx:
            capacity.validate_max_capacity(supervisor(3, 5), 2)
        self.assertIn('current capacity', str(ctx.exception))
