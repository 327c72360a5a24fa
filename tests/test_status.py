"""Tests for ExpenseSync.status.status."""
import inspect

from ExpenseSync.signals import signals
from ExpenseSync.status import status
from tests.base import BaseTestCase


class StatusTest(BaseTestCase):

    def test_every_status_has_a_message(self):
        for s in status.Status:
            with self.subTest(status=s):
                self.assertIn(s, status.STATUS_MESSAGE)
                self.assertEqual(status.get_message(s), status.STATUS_MESSAGE[s])

    def test_exception_classes_carry_their_status(self):
        classes = [
            obj for _, obj in inspect.getmembers(status, inspect.isclass)
            if issubclass(obj, status.BaseStatusException) and obj is not status.BaseStatusException
        ]
        self.assertIn(status.SyncFailedException, classes)
        for cls in classes:
            with self.subTest(cls=cls.__name__):
                with self.assertLogs(level='ERROR'):
                    ex = cls()
                self.assertEqual(str(ex), status.get_message(cls.status))

    def test_message_is_appended(self):
        with self.assertLogs(level='ERROR') as logs:
            ex = status.DocumentNotFoundException('incomes/abc')
        self.assertEqual(ex.status, status.Status.DocumentNotFound)
        self.assertTrue(str(ex).endswith('incomes/abc'))
        self.assertIn('incomes/abc', logs.output[0])

    def test_error_signal_emitted(self):
        received = []

        def _slot(message: str) -> None:
            received.append(message)

        signals.error.connect(_slot)
        try:
            with self.assertLogs(level='ERROR'):
                status.SyncFailedException('2 operation(s) failed')
                status.StorageUnavailableException()
        finally:
            signals.error.disconnect(_slot)

        self.assertEqual(received, [
            '2 operation(s) failed',
            status.get_message(status.Status.StorageUnavailable),
        ])

    def test_background_block_logs_without_signal(self):
        received = []

        def _slot(message: str) -> None:
            received.append(message)

        signals.error.connect(_slot)
        try:
            with self.assertLogs(level='ERROR') as logs:
                with status.background():
                    with status.background():
                        status.SyncFailedException('nested')
                    self.assertTrue(status.in_background())
                    status.SyncFailedException('outer')
                self.assertFalse(status.in_background())
                status.SyncFailedException('after')
        finally:
            signals.error.disconnect(_slot)

        self.assertEqual(len(logs.output), 3)
        self.assertEqual(received, ['after'])

    def test_background_block_restored_after_exception(self):
        with self.assertLogs(level='ERROR'):
            with self.assertRaises(status.SyncFailedException):
                with status.background():
                    raise status.SyncFailedException()
        self.assertFalse(status.in_background())
