"""
Django ORM document store backend tests.
"""

from __future__ import annotations

from django.db.models import F
from django.test import TestCase, override_settings

from common.exceptions import TransactionConflictError
from matching.engine import MatchingEngine
from matching.records import ApplicationStatus, SupervisorRecord
from store.backends import DjangoDocumentStore, get_document_store
from store.base import DocumentExistsError
from store.memory import InMemoryDocumentStore
from store.models import Document

from tests.fixtures.test_data import MatchingFactory, capacity_violations, load


class DjangoDocumentStoreTestCase(TestCase):
    def setUp(self):
        self.store = DjangoDocumentStore(max_attempts=3, base_delay=0, max_delay=0, jitter=0)

    def test_add_get_update_delete(self):
        doc_id = self.store.add('things', {'name': 'a', 'n': 1})
        self.assertEqual(Document.objects.filter(collection='things', doc_id=doc_id).count(), 1)

        self.store.update('things', doc_id, {'n': 2})
        snapshot = self.store.get('things', doc_id)
        self.assertEqual(snapshot.data, {'name': 'a', 'n': 2})
        self.assertEqual(snapshot.version, 2)

        self.store.delete('things', doc_id)
        self.assertIsNone(self.store.get('things', doc_id))

    def test_duplicate_id_rejected(self):
        self.store.add('things', {'name': 'a'}, 'x')
        with self.assertRaises(DocumentExistsError):
            self.store.add('things', {'name': 'b'}, 'x')

    def test_same_id_in_different_collections(self):
        self.store.add('one', {'v': 1}, 'x')
        self.store.add('two', {'v': 2}, 'x')
        self.assertEqual(self.store.get('one', 'x').data, {'v': 1})
        self.assertEqual(self.store.get('two', 'x').data, {'v': 2})

    def test_query_filters(self):
        self.store.add('apps', {'status': 'pending', 'supervisor_id': 's1'}, '1')
        self.store.add('apps', {'status': 'approved', 'supervisor_id': 's1'}, '2')
        self.store.add('apps', {'status': 'pending', 'supervisor_id': 's2'}, '3')
        self.store.add('apps', {'status': 'pending', 'tags': ['x'], 'count': 3}, '4')

        ids = {s.id for s in self.store.query('apps', [('status', '==', 'pending'), ('supervisor_id', '==', 's1')])}
        self.assertEqual(ids, {'1'})
        ids = {s.id for s in self.store.query('apps', [('status', 'in', ['approved', 'rejected'])])}
        self.assertEqual(ids, {'2'})
        ids = {s.id for s in self.store.query('apps', [('tags', 'array_contains', 'x'), ('count', '==', 3)])}
        self.assertEqual(ids, {'4'})

    def test_failed_body_leaves_no_rows(self):
        def body(tx):
            tx.add('things', {'name': 'a'}, 'x')
            raise RuntimeError('abort')

        with self.assertRaises(RuntimeError):
            self.store.transaction(body)
        self.assertFalse(Document.objects.filter(collection='things').exists())

    def test_concurrent_version_bump_forces_retry(self):
        self.store.add('counters', {'value': 0}, 'c')
        attempts = []

        def body(tx):
            attempts.append(1)
            value = tx.get('counters', 'c').data['value']
            if len(attempts) == 1:
                Document.objects.filter(collection='counters', doc_id='c').update(version=F('version') + 1)
            tx.update('counters', 'c', {'value': value + 1})

        self.store.transaction(body)
        self.assertEqual(len(attempts), 2)
        self.assertEqual(self.store.get('counters', 'c').data['value'], 1)

    def test_retry_exhaustion(self):
        self.store.add('counters', {'value': 0}, 'c')

        def body(tx):
            tx.get('counters', 'c')
            Document.objects.filter(collection='counters', doc_id='c').update(version=F('version') + 1)
            tx.update('counters', 'c', {'value': 99})

        with self.assertRaises(TransactionConflictError):
            self.store.transaction(body)
        self.assertEqual(self.store.get('counters', 'c').data['value'], 0)


class DjangoBackedEngineTestCase(TestCase):
    """The engine runs unchanged on the ORM backend."""

    def setUp(self):
        self.store = DjangoDocumentStore(base_delay=0, max_delay=0, jitter=0)
        self.engine = MatchingEngine(self.store)
        self.factory = MatchingFactory(self.store)
        self.factory.supervisor('sup-1', max_capacity=1)
        self.factory.student('stu-1')
        self.factory.student('stu-2')

    def test_approve_then_capacity_exhausted(self):
        first = self.engine.applications.create('stu-1', 'sup-1', 'Graph mining').unwrap()
        second = self.engine.applications.create('stu-2', 'sup-1', 'Compilers').unwrap()

        self.assertTrue(self.engine.applications.approve(first.id, 'sup-1').success)
        result = self.engine.applications.approve(second.id, 'sup-1')

        self.assertEqual(result.code, 'CAPACITY_EXCEEDED')
        self.assertEqual(load(self.store, SupervisorRecord, 'sup-1').current_capacity, 1)
        self.assertEqual(self.engine.applications.get(second.id).data.status, ApplicationStatus.PENDING)
        self.assertEqual(capacity_violations(self.store), [])


class DocumentStoreFactoryTestCase(TestCase):
    @override_settings(DOCUMENT_STORE={
        'BACKEND': 'store.memory.InMemoryDocumentStore',
        'OPTIONS': {'max_attempts': 7},
    })
    def test_builds_configured_backend(self):
        store = get_document_store()
        self.assertIsInstance(store, InMemoryDocumentStore)
        self.assertEqual(store.max_attempts, 7)

    @override_settings(DOCUMENT_STORE={'BACKEND': 'store.memory.InMemoryDocumentStore'})
    def test_engine_from_settings_shares_one_store(self):
        engine = MatchingEngine.from_settings()
        self.assertIsInstance(engine.store, InMemoryDocumentStore)
        self.assertIs(engine.applications.store, engine.admin.store)

    @override_settings(DOCUMENT_STORE={})
    def test_defaults_to_django_backend(self):
        self.assertIsInstance(get_document_store(), DjangoDocumentStore)
