"""Tests for ExpenseSync.log.log: the bounded tank, setup options and background failures."""
import logging
from unittest.mock import MagicMock

from ExpenseSync.core.sync import SyncTrigger
from ExpenseSync.log.log import TankHandler, set_logging_level, setup_logging
from ExpenseSync.signals import signals
from tests.base import BaseSyncTestCase, BaseTestCase


def tank_of(logger: logging.Logger) -> TankHandler:
    return next(h for h in logger.handlers if isinstance(h, TankHandler))


class LogSetupTests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        logging.disable(logging.NOTSET)
        self.root_logger = logging.getLogger()

    def tearDown(self) -> None:
        setup_logging(enable_stream_handler=False, enable_qt_handler=False)
        super().tearDown()

    def test_tank_keeps_most_recent_records(self):
        tank = TankHandler(capacity=3)
        for i in range(5):
            tank.emit(logging.LogRecord('t', logging.INFO, __file__, 0, f'msg-{i}', None, None))
        self.assertEqual(len(tank.tank), 3)
        self.assertIn('msg-4', tank.get_logs()[-1])
        self.assertNotIn('msg-0', ''.join(tank.get_logs()))

    def test_stream_handler_is_optional(self):
        setup_logging(enable_stream_handler=True, enable_qt_handler=False, log_level=logging.WARNING)
        self.assertEqual(
            [type(h) for h in self.root_logger.handlers],
            [logging.StreamHandler, TankHandler],
        )

        setup_logging(enable_stream_handler=False, enable_qt_handler=False, log_level=logging.WARNING)
        self.assertEqual([type(h) for h in self.root_logger.handlers], [TankHandler])

    def test_log_level_applies_to_every_handler(self):
        setup_logging(enable_stream_handler=True, enable_qt_handler=False, log_level=logging.WARNING)
        self.assertEqual(self.root_logger.level, logging.WARNING)
        self.assertEqual({h.level for h in self.root_logger.handlers}, {logging.WARNING})

        logging.info('below the threshold')
        self.assertEqual(tank_of(self.root_logger).get_logs(), [])

        set_logging_level(logging.DEBUG)
        self.assertEqual({h.level for h in self.root_logger.handlers}, {logging.DEBUG})


class SyncFailureLoggingTests(BaseSyncTestCase):
    """A failed background batch is only visible through the log tank."""

    def setUp(self) -> None:
        super().setUp()
        logging.disable(logging.NOTSET)
        setup_logging(enable_stream_handler=False,
                      enable_qt_handler=False,
                      log_level=logging.DEBUG)
        self.tank = tank_of(logging.getLogger())

    def test_failed_routine_is_stored_in_tank(self):
        self.manager.register('incomes', MagicMock(side_effect=RuntimeError('sheet offline')))
        self.queue.add_operation('add', 'incomes', {'id': 'temp_1', 'amount': 1.0})

        result = self.manager.sync(SyncTrigger.Manual)

        self.assertFalse(result.ok)
        errors = self.tank.get_logs(logging.ERROR)
        self.assertTrue(any('sheet offline' in m for m in errors))

    def test_failed_replay_is_logged_but_not_signalled(self):
        self.register_finance_routines()
        self.remote.fail['incomes'] = RuntimeError('sheet offline')
        self.queue.add_operation('add', 'incomes', {'id': 'temp_1', 'amount': 1.0})
        received = []

        def _slot(message: str) -> None:
            received.append(message)

        signals.error.connect(_slot)
        try:
            self.manager.sync(SyncTrigger.Periodic)
        finally:
            signals.error.disconnect(_slot)

        self.assertEqual(received, [])
        errors = self.tank.get_logs(logging.ERROR)
        self.assertTrue(any('operation(s) failed' in m for m in errors))
