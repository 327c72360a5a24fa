"""Tests for ExpenseSync.core.queue."""
import json

from ExpenseSync.core.queue import (
    Collection,
    OperationRepository,
    OperationType,
    PendingOperation,
    PendingOperationsAPI,
    STORAGE_KEY,
)
from ExpenseSync.core.storage import KeyValueStore
from ExpenseSync.status import status
from tests.base import BaseTestCase, DAY_MS, FakeClock, START_MS


class PendingOperationsTest(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.clock = FakeClock(START_MS)
        self.store = KeyValueStore()
        self.queue = self._make_queue()

    def _make_queue(self) -> PendingOperationsAPI:
        return PendingOperationsAPI(OperationRepository(self.store), clock=self.clock)

    def test_add_operation_builds_record(self):
        op = self.queue.add_operation('add', 'incomes', {'id': 'temp_1', 'amount': 10})
        self.assertEqual(op.id, f'add_incomes_{START_MS}')
        self.assertEqual(op.operation_type, OperationType.Add)
        self.assertEqual(op.collection, Collection.Incomes)
        self.assertEqual(op.timestamp, START_MS)
        self.assertEqual(self.queue.operations, [op])

    def test_add_operation_does_not_validate_payload(self):
        op = self.queue.add_operation(OperationType.Update, Collection.Expenses, ['anything'])
        self.assertEqual(op.data, ['anything'])

    def test_add_operation_unknown_collection(self):
        with self.assertRaises(status.CollectionUnknownException):
            self.queue.add_operation('add', 'reminders', {})
        with self.assertRaises(ValueError):
            self.queue.add_operation('upsert', 'incomes', {})
        self.assertEqual(len(self.queue), 0)

    def test_ids_unique_within_same_millisecond(self):
        ops = [self.queue.add_operation('add', 'incomes', {'n': i}) for i in range(3)]
        ids = [op.id for op in ops]
        self.assertEqual(len(set(ids)), 3)
        self.assertEqual(ids[1], f'add_incomes_{START_MS + 1}')
        # The timestamp keeps the real creation time
        self.assertTrue(all(op.timestamp == START_MS for op in ops))

    def test_operations_are_immutable(self):
        op = self.queue.add_operation('delete', 'incomes', 'abc')
        with self.assertRaises(AttributeError):
            op.data = 'other'  # type: ignore[misc]

    def test_length_equals_adds_minus_removes(self):
        ops = [self.queue.add_operation('add', 'expenses', {'id': str(i)}) for i in range(5)]
        self.assertTrue(self.queue.remove_operation(ops[1].id))
        self.assertTrue(self.queue.remove_operation(ops[3].id))
        self.assertFalse(self.queue.remove_operation(ops[3].id))
        self.assertFalse(self.queue.remove_operation('missing'))
        self.assertEqual(len(self.queue), 3)
        self.assertEqual([op.id for op in self.queue.operations], [ops[0].id, ops[2].id, ops[4].id])

    def test_is_pending(self):
        self.assertFalse(self.queue.is_pending('incomes'))
        add = self.queue.add_operation('add', 'incomes', {'id': 'a1'})
        delete = self.queue.add_operation('delete', 'incomes', 'b2')

        self.assertTrue(self.queue.is_pending('incomes'))
        self.assertTrue(self.queue.is_pending(Collection.Incomes, 'a1'))
        self.assertTrue(self.queue.is_pending('incomes', 'b2'))
        self.assertFalse(self.queue.is_pending('incomes', 'zz'))
        self.assertFalse(self.queue.is_pending('expenses', 'a1'))

        self.queue.remove_operation(add.id)
        self.assertFalse(self.queue.is_pending('incomes', 'a1'))
        self.queue.remove_operation(delete.id)
        self.assertFalse(self.queue.is_pending('incomes'))

    def test_cleanup_removes_only_stale_updates(self):
        old_update = self.queue.add_operation('update', 'incomes', {'id': '1'})
        old_add = self.queue.add_operation('add', 'incomes', {'id': '2'})
        old_delete = self.queue.add_operation('delete', 'expenses', '3')
        self.clock.advance(8 * DAY_MS)
        new_update = self.queue.add_operation('update', 'expenses', {'id': '4'})

        removed = self.queue.cleanup_invalid_operations()

        self.assertEqual(removed, 1)
        ids = [op.id for op in self.queue.operations]
        self.assertNotIn(old_update.id, ids)
        self.assertEqual(ids, [old_add.id, old_delete.id, new_update.id])

    def test_cleanup_keeps_updates_within_age(self):
        self.queue.add_operation('update', 'incomes', {'id': '1'})
        self.clock.advance(7 * DAY_MS)
        self.assertEqual(self.queue.cleanup_invalid_operations(), 0)
        self.assertEqual(len(self.queue), 1)

    def test_clear_all_empties_queue_and_storage(self):
        for i in range(3):
            self.queue.add_operation('add', 'incomes', {'id': str(i)})
        self.assertIn(STORAGE_KEY, self.store)

        self.queue.clear_all()

        self.assertEqual(len(self.queue), 0)
        self.assertNotIn(STORAGE_KEY, self.store)
        self.assertEqual(len(self._make_queue()), 0)

    def test_persistence_format_and_reload(self):
        op = self.queue.add_operation('update', 'expenses', {'id': 'x', 'amount': 1.5})
        raw = json.loads(self.store.get_raw(STORAGE_KEY))
        self.assertEqual(raw, [{
            'id': op.id,
            'operationType': 'update',
            'collection': 'expenses',
            'data': {'id': 'x', 'amount': 1.5},
            'timestamp': START_MS,
        }])

        reloaded = self._make_queue()
        self.assertEqual(reloaded.operations, [op])

    def test_unreadable_records_are_dropped(self):
        good = PendingOperation('add_incomes_1', OperationType.Add, Collection.Incomes, {'id': '1'}, 1)
        self.store.set(STORAGE_KEY, [
            good.to_dict(),
            {'id': 'broken'},
            {'id': 'x', 'operationType': 'add', 'collection': 'calendar', 'data': {}, 'timestamp': 1},
        ])
        with self.assertLogs(level='WARNING'):
            queue = self._make_queue()
        self.assertEqual(queue.operations, [good])

    def test_invalid_json_falls_back_to_empty(self):
        conn = self.store.connection()
        try:
            conn.execute('INSERT INTO kvstore (key, value) VALUES (?, ?)', (STORAGE_KEY, '[{oops'))
            conn.commit()
        finally:
            conn.close()
        self.assertEqual(len(self._make_queue()), 0)

    def test_queries(self):
        self.queue.add_operation('add', 'expenses', {'id': '1'})
        self.queue.add_operation('add', 'incomes', {'id': '2'})
        self.queue.add_operation('delete', 'expenses', '3')

        self.assertEqual(self.queue.collections(), [Collection.Expenses, Collection.Incomes])
        self.assertEqual(self.queue.count(), 3)
        self.assertEqual(self.queue.count('expenses'), 2)
        self.assertEqual(len(self.queue.get_operations('incomes')), 1)

    def test_signals(self):
        sizes = []
        queued = []
        removed = []
        self.queue.queueChanged.connect(sizes.append)
        self.queue.operationQueued.connect(queued.append)
        self.queue.operationRemoved.connect(removed.append)

        op = self.queue.add_operation('add', 'incomes', {'id': '1'})
        self.queue.remove_operation('missing')
        self.queue.remove_operation(op.id)

        self.assertEqual(sizes, [1, 0])
        self.assertEqual(queued, [op])
        self.assertEqual(removed, [op.id])
