"""
Document store contract tests against the in-memory backend.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

from django.test import SimpleTestCase

from common.exceptions import TransactionConflictError
from store.base import DocumentExistsError, DocumentMissingError, Filter, StoreError

from tests.fixtures.test_data import make_store


class InMemoryStoreBasicsTestCase(SimpleTestCase):
    def setUp(self):
        self.store = make_store()

    def test_add_with_generated_id(self):
        doc_id = self.store.add('things', {'name': 'a'})
        snapshot = self.store.get('things', doc_id)
        self.assertEqual(snapshot.data, {'name': 'a'})
        self.assertEqual(snapshot.version, 1)

    def test_add_with_existing_id_rejected(self):
        self.store.add('things', {'name': 'a'}, 'x')
        with self.assertRaises(DocumentExistsError):
            self.store.add('things', {'name': 'b'}, 'x')
        self.assertEqual(self.store.get('things', 'x').data, {'name': 'a'})

    def test_update_merges_and_bumps_version(self):
        self.store.add('things', {'name': 'a', 'n': 1}, 'x')
        self.store.update('things', 'x', {'n': 2})
        snapshot = self.store.get('things', 'x')
        self.assertEqual(snapshot.data, {'name': 'a', 'n': 2})
        self.assertEqual(snapshot.version, 2)

    def test_update_missing_document_raises(self):
        with self.assertRaises(DocumentMissingError):
            self.store.update('things', 'nope', {'n': 1})

    def test_delete(self):
        self.store.add('things', {'name': 'a'}, 'x')
        self.store.delete('things', 'x')
        self.assertIsNone(self.store.get('things', 'x'))
        with self.assertRaises(DocumentMissingError):
            self.store.delete('things', 'x')

    def test_returned_data_is_a_copy(self):
        self.store.add('things', {'tags': ['a']}, 'x')
        self.store.get('things', 'x').data['tags'].append('b')
        self.assertEqual(self.store.get('things', 'x').data['tags'], ['a'])

    def test_query_operators(self):
        self.store.add('things', {'kind': 'a', 'tags': ['red']}, '1')
        self.store.add('things', {'kind': 'b', 'tags': ['blue']}, '2')
        self.store.add('things', {'kind': 'c', 'tags': ['red', 'blue']}, '3')

        self.assertEqual({s.id for s in self.store.query('things', [('kind', '==', 'a')])}, {'1'})
        self.assertEqual({s.id for s in self.store.query('things', [('kind', 'in', ['a', 'c'])])}, {'1', '3'})
        self.assertEqual(
            {s.id for s in self.store.query('things', [Filter('tags', 'array_contains', 'blue')])},
            {'2', '3'},
        )
        self.assertEqual(len(self.store.query('things')), 3)

    def test_unknown_filter_operator(self):
        with self.assertRaises(StoreError):
            Filter('kind', '>', 1)

    def test_invalid_max_attempts(self):
        with self.assertRaises(StoreError):
            make_store(max_attempts=0)


class InMemoryTransactionTestCase(SimpleTestCase):
    def setUp(self):
        self.store = make_store()
        self.store.add('counters', {'value': 0}, 'c')

    def test_body_sees_its_own_writes(self):
        def body(tx):
            tx.update('counters', 'c', {'value': 5})
            new_id = tx.add('counters', {'value': 9})
            return tx.get('counters', 'c').data['value'], len(tx.query('counters', [('value', '==', 9)])), new_id

        value, matching, new_id = self.store.transaction(body)
        self.assertEqual(value, 5)
        self.assertEqual(matching, 1)
        self.assertEqual(self.store.get('counters', new_id).data, {'value': 9})

    def test_exception_in_body_writes_nothing(self):
        def body(tx):
            tx.update('counters', 'c', {'value': 1})
            tx.add('counters', {'value': 2}, 'd')
            raise ValueError('boom')

        with self.assertRaises(ValueError):
            self.store.transaction(body)
        self.assertEqual(self.store.get('counters', 'c').data['value'], 0)
        self.assertIsNone(self.store.get('counters', 'd'))

    def test_add_then_delete_in_same_transaction(self):
        def body(tx):
            tx.add('counters', {'value': 1}, 'tmp')
            tx.delete('counters', 'tmp')

        self.store.transaction(body)
        self.assertIsNone(self.store.get('counters', 'tmp'))

    def test_stale_read_is_retried(self):
        attempts = []

        def body(tx):
            attempts.append(1)
            current = tx.get('counters', 'c').data['value']
            if len(attempts) == 1:
                self.store.update('counters', 'c', {'value': 100})
            tx.update('counters', 'c', {'value': current + 1})

        self.store.transaction(body)
        self.assertEqual(len(attempts), 2)
        self.assertEqual(self.store.get('counters', 'c').data['value'], 101)

    def test_stale_query_is_retried(self):
        attempts = []

        def body(tx):
            attempts.append(1)
            found = tx.query('counters', [('value', '==', 7)])
            if len(attempts) == 1:
                self.store.add('counters', {'value': 7}, 'late')
            if not found:
                tx.add('counters', {'value': 7})
            return len(found)

        result = self.store.transaction(body)
        self.assertEqual(len(attempts), 2)
        self.assertEqual(result, 1)
        self.assertEqual(len(self.store.query('counters', [('value', '==', 7)])), 1)

    def test_retries_exhausted(self):
        store = make_store(max_attempts=3)
        store.add('counters', {'value': 0}, 'c')
        attempts = []

        def body(tx):
            attempts.append(1)
            tx.get('counters', 'c')
            store.update('counters', 'c', {'value': len(attempts)})
            tx.update('counters', 'c', {'value': -1})

        with self.assertRaises(TransactionConflictError) as ctx:
            store.transaction(body)
        self.assertEqual(len(attempts), 3)
        self.assertEqual(ctx.exception.attempts, 3)
        self.assertEqual(store.get('counters', 'c').data['value'], 3)

    def test_concurrent_increments_are_serializable(self):
        store = make_store(max_attempts=1000)
        store.add('counters', {'value': 0}, 'c')
        start = threading.Barrier(8)

        def increment(_):
            start.wait()
            for _ in range(10):
                store.transaction(
                    lambda tx: tx.update('counters', 'c', {'value': tx.get('counters', 'c').data['value'] + 1})
                )

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(increment, range(8)))

        self.assertEqual(store.get('counters', 'c').data['value'], 80)
