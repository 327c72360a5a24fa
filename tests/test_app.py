"""Tests for ExpenseSync.app.Session wiring and the command line options."""
import io
from unittest.mock import patch

import ExpenseSync
from ExpenseSync import app
from ExpenseSync.core import auth
from ExpenseSync.core.finance import CURRENT_USER_KEY
from ExpenseSync.core.network import ConnectivityMonitor
from ExpenseSync.core.queue import Collection
from ExpenseSync.signals import signals
from ExpenseSync.status import status
from tests.base import BaseTestCase, FakeRemoteStore


class Recorder:
    """Collects the arguments of every emission of a signal."""

    def __init__(self, signal):
        self.signal = signal
        self.calls = []
        signal.connect(self)

    def __call__(self, *args):
        self.calls.append(args)

    def disconnect(self):
        self.signal.disconnect(self)


class SessionTest(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.remote = FakeRemoteStore()
        self.remote.seed('accounts', [{'id': 'a1', 'balance': 0, 'userId': 'u1'}])
        self.monitor = ConnectivityMonitor(use_platform=False)
        self.session = app.Session(remote=self.remote, monitor=self.monitor)
        self._stopped = False
        self.recorders = []

    def tearDown(self) -> None:
        for recorder in self.recorders:
            recorder.disconnect()
        if not self._stopped:
            self.session.stop()
        super().tearDown()

    def record(self, signal) -> Recorder:
        recorder = Recorder(signal)
        self.recorders.append(recorder)
        return recorder

    def test_routines_registered_for_every_collection(self):
        self.assertEqual(set(self.session.sync_manager.routines()), set(Collection))
        self.assertEqual(set(self.session.finance), set(Collection))

    def test_queue_and_connectivity_signals_forwarded(self):
        changed = self.record(signals.queueChanged)
        online = self.record(signals.onlineChanged)

        self.monitor.set_online(False)
        self.session.finance[Collection.Expenses].add_item({'amount': 5.0, 'userId': 'u1'})

        self.assertEqual(changed.calls, [(1,)])
        self.assertEqual(online.calls, [(False,)])

    def test_offline_item_synced_when_back_online(self):
        finished = self.record(signals.syncFinished)
        balances = self.record(signals.balancesUpdated)
        self.session.store.set(CURRENT_USER_KEY, 'u1')

        self.monitor.set_online(False)
        self.session.finance[Collection.Incomes].add_item({'amount': 12.0, 'accountId': 'a1', 'userId': 'u1'})
        self.monitor.set_online(True)

        self.assertEqual(len(finished.calls), 1)
        self.assertTrue(finished.calls[0][0].ok)
        self.assertEqual(len(self.session.queue), 0)
        self.assertEqual(balances.calls[0][0][0]['balance'], 12.0)

    def test_sync_requested_runs_manual_batch(self):
        started = self.record(signals.syncStarted)
        self.session.queue.add_operation('delete', 'incomes', 'gone')

        signals.syncRequested.emit()

        self.assertEqual(started.calls, [('manual',)])
        self.assertEqual(len(self.session.queue), 0)

    def test_throttled_manual_request_forwarded(self):
        throttled = self.record(signals.syncThrottled)
        self.session.queue.add_operation('delete', 'incomes', 'gone')
        signals.syncRequested.emit()

        self.session.queue.add_operation('delete', 'incomes', 'again')
        signals.syncRequested.emit()

        self.assertEqual(throttled.calls, [('manual',)])
        self.assertEqual(len(self.session.queue), 1)

    def test_initialization_requested_starts_session(self):
        signals.initializationRequested.emit()
        self.assertTrue(self.session.sync_manager.timer.isActive())

    def test_stop_disconnects_global_signals(self):
        started = self.record(signals.syncStarted)
        self.session.stop()
        self._stopped = True

        self.session.queue.add_operation('delete', 'incomes', 'gone')
        signals.syncRequested.emit()

        self.assertEqual(started.calls, [])
        self.assertFalse(self.session.sync_manager.timer.isActive())

    def test_set_user_emits_user_changed(self):
        users = self.record(signals.userChanged)
        self.session.set_user('u1')
        self.session.set_user('u1')
        self.assertEqual(users.calls, [('u1',)])
        self.assertEqual(self.session.store.get(CURRENT_USER_KEY), 'u1')

    def test_authentication_requested_signs_in_and_syncs(self):
        started = self.record(signals.syncStarted)
        self.session.queue.add_operation('delete', 'incomes', 'gone')

        with patch.object(auth, 'authenticate') as authenticate:
            signals.authenticationRequested.emit()

        authenticate.assert_called_once_with(open_browser=True)
        self.assertEqual(started.calls, [('online',)])
        self.assertEqual(len(self.session.queue), 0)

    def test_failed_sign_in_keeps_queue(self):
        self.session.queue.add_operation('delete', 'incomes', 'gone')

        def _fail(open_browser=True):
            raise status.AuthenticationExceptionException('browser closed')

        with patch.object(auth, 'authenticate', side_effect=_fail), self.assertLogs(level='ERROR') as logs:
            self.assertFalse(self.session.sign_in(open_browser=False))

        self.assertTrue(any('Sign-in failed' in line for line in logs.output))
        self.assertEqual(len(self.session.queue), 1)

    def test_sign_out_requested_forgets_credentials(self):
        with patch.object(auth, 'sign_out') as sign_out:
            signals.signOutRequested.emit()
        sign_out.assert_called_once_with()

    def test_stop_disconnects_auth_signals(self):
        self.session.stop()
        self._stopped = True
        with patch.object(auth, 'authenticate') as authenticate, patch.object(auth, 'sign_out') as sign_out:
            signals.authenticationRequested.emit()
            signals.signOutRequested.emit()
        authenticate.assert_not_called()
        sign_out.assert_not_called()


class ParseArgsTest(BaseTestCase):

    def test_defaults(self):
        args = app.parse_args([])
        self.assertFalse(args.sign_in)
        self.assertFalse(args.sign_out)
        self.assertFalse(args.no_browser)
        self.assertIsNone(args.user)

    def test_sign_in_flags(self):
        args = app.parse_args(['--sign-in', '--no-browser', '--user', 'u1'])
        self.assertTrue(args.sign_in)
        self.assertTrue(args.no_browser)
        self.assertEqual(args.user, 'u1')

    def test_version_comes_from_package(self):
        self.assertIs(app.__version__, ExpenseSync.__version__)
        with patch('sys.stdout', new_callable=io.StringIO) as stdout:
            with self.assertRaises(SystemExit):
                app.parse_args(['--version'])
        self.assertIn(ExpenseSync.__version__, stdout.getvalue())
