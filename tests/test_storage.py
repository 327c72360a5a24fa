"""Tests for ExpenseSync.core.storage."""
import sqlite3

from ExpenseSync.core.storage import KeyValueStore, TABLE
from ExpenseSync.settings import lib
from ExpenseSync.status import status
from tests.base import BaseTestCase


class KeyValueStoreTest(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.store = KeyValueStore()

    def test_default_path_is_configured_db_path(self):
        self.assertEqual(self.store.db_path, lib.settings.db_path)
        self.assertTrue(lib.settings.db_path.exists())

    def test_schema_created(self):
        conn = self.store.connection()
        try:
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (TABLE,)
            ).fetchone()
        finally:
            conn.close()
        self.assertIsNotNone(row)

    def test_set_get_roundtrip_json_values(self):
        self.store.set('list', [1, 2, {'a': 'b'}])
        self.store.set('text', 'héllo')
        self.assertEqual(self.store.get('list'), [1, 2, {'a': 'b'}])
        self.assertEqual(self.store.get('text'), 'héllo')

    def test_get_missing_returns_default(self):
        self.assertIsNone(self.store.get('missing'))
        self.assertEqual(self.store.get('missing', []), [])

    def test_set_replaces_value(self):
        self.store.set('k', 1)
        self.store.set('k', 2)
        self.assertEqual(self.store.get('k'), 2)
        self.assertEqual(self.store.keys(), ['k'])

    def test_remove_and_contains(self):
        self.store.set('k', 'v')
        self.assertIn('k', self.store)
        self.store.remove('k')
        self.assertNotIn('k', self.store)
        # Removing a missing key is a no-op
        self.store.remove('k')

    def test_keys_and_clear(self):
        self.store.set('b', 1)
        self.store.set('a', 2)
        self.assertEqual(self.store.keys(), ['a', 'b'])
        self.store.clear()
        self.assertEqual(self.store.keys(), [])

    def test_values_persist_across_instances(self):
        self.store.set('persist', {'x': 1})
        other = KeyValueStore()
        self.assertEqual(other.get('persist'), {'x': 1})

    def test_invalid_json_raises_value_error(self):
        conn = self.store.connection()
        try:
            conn.execute(f'INSERT INTO {TABLE} (key, value) VALUES (?, ?)', ('bad', '{not json'))
            conn.commit()
        finally:
            conn.close()
        self.assertEqual(self.store.get_raw('bad'), '{not json')
        with self.assertRaises(ValueError):
            self.store.get('bad')

    def test_unserializable_value_raises_type_error(self):
        with self.assertRaises(TypeError):
            self.store.set('obj', object())

    def test_sqlite_error_raises_storage_unavailable(self):
        conn = self.store.connection()
        try:
            conn.execute(f'DROP TABLE {TABLE}')
            conn.commit()
        finally:
            conn.close()
        with self.assertRaises(status.StorageUnavailableException) as cm:
            self.store.get_raw('k')
        self.assertIsInstance(cm.exception.__cause__, sqlite3.Error)
