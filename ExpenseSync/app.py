"""Application setup for the headless ExpenseSync service.

This module provides:
    - Session: builds and wires the sync object graph
    - Application: QCoreApplication subclass owning a Session
    - parse_args: command line options of the service
"""
import argparse
import logging
import sys
from typing import Dict, Optional, Sequence

from PySide6 import QtCore

from . import __version__
from .core import auth
from .core.accounts import AccountService
from .core.finance import FinanceService
from .core.network import ConnectivityMonitor
from .core.queue import Collection, OperationRepository, PendingOperationsAPI
from .core.reconcile import BalanceReconciler
from .core.remote import RemoteStore, SheetsRemoteStore
from .core.storage import KeyValueStore
from .core.sync import SyncManager
from .signals import signals
from .status import status


class Session(QtCore.QObject):
    """Owns the storage, queue, connectivity, finance and sync services.

    Args:
        remote: Remote store, defaults to the Google Sheets store.
        store: Key-value store, defaults to the configured database.
        monitor: Connectivity monitor, defaults to one backed by the platform.
        parent: Optional Qt parent.
    """

    def __init__(
            self,
            remote: Optional[RemoteStore] = None,
            store: Optional[KeyValueStore] = None,
            monitor: Optional[ConnectivityMonitor] = None,
            parent: Optional[QtCore.QObject] = None
    ) -> None:
        super().__init__(parent=parent)

        self.store: KeyValueStore = store or KeyValueStore(parent=self)
        self.queue = PendingOperationsAPI(OperationRepository(self.store), parent=self)
        self.monitor: ConnectivityMonitor = monitor or ConnectivityMonitor(parent=self)
        self.remote: RemoteStore = remote or SheetsRemoteStore()

        self.finance: Dict[Collection, FinanceService] = {
            c: FinanceService(c, self.remote, self.queue, self.monitor, self.store) for c in Collection
        }
        self.accounts = AccountService(self.remote)
        self.reconciler = BalanceReconciler(self.accounts, parent=self)

        self.sync_manager = SyncManager(self.queue, self.monitor, self.reconciler, self.store, parent=self)
        for collection, service in self.finance.items():
            self.sync_manager.register(collection, service.sync_pending_items)

        self._connect_signals()

    def _connect_signals(self) -> None:
        self.queue.queueChanged.connect(signals.queueChanged)
        self.queue.operationQueued.connect(signals.operationQueued)
        self.queue.operationRemoved.connect(signals.operationRemoved)

        self.monitor.onlineChanged.connect(signals.onlineChanged)

        self.sync_manager.syncStarted.connect(signals.syncStarted)
        self.sync_manager.syncFinished.connect(signals.syncFinished)
        self.sync_manager.queueCleared.connect(signals.queueCleared)
        self.sync_manager.throttled.connect(signals.syncThrottled)

        self.reconciler.balancesUpdated.connect(signals.balancesUpdated)

        signals.syncRequested.connect(self.sync_manager.request_sync)
        signals.initializationRequested.connect(self.start)
        signals.authenticationRequested.connect(self.sign_in)
        signals.signOutRequested.connect(self.sign_out)

    def _disconnect_signals(self) -> None:
        signals.syncRequested.disconnect(self.sync_manager.request_sync)
        signals.initializationRequested.disconnect(self.start)
        signals.authenticationRequested.disconnect(self.sign_in)
        signals.signOutRequested.disconnect(self.sign_out)

    @QtCore.Slot()
    def start(self) -> None:
        logging.info(f'Starting sync session with {len(self.queue)} pending operation(s).')
        self.sync_manager.start()

    def stop(self) -> None:
        self.sync_manager.stop()
        self._disconnect_signals()

    def set_user(self, user_id: Optional[str]) -> None:
        self.sync_manager.set_user(user_id)

    @QtCore.Slot()
    def sign_in(self, open_browser: bool = True) -> bool:
        """Sign in to Google and replay the queue with the new credentials.

        Returns:
            True if the sign-in succeeded.
        """
        try:
            auth.authenticate(open_browser=open_browser)
        except status.BaseStatusException as ex:
            logging.error(f'Sign-in failed: {ex}')
            return False

        self.sync_manager.on_online()
        return True

    @QtCore.Slot()
    def sign_out(self) -> None:
        auth.sign_out()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse the service's command line options."""
    parser = argparse.ArgumentParser(
        prog='expensesync',
        description='Offline-first sync of finance records with Google Sheets.',
    )
    parser.add_argument(
        '--sign-in',
        action='store_true',
        help='Sign in to Google before the service starts.',
    )
    parser.add_argument(
        '--no-browser',
        action='store_true',
        help='Print the sign-in URL instead of opening a browser.',
    )
    parser.add_argument(
        '--sign-out',
        action='store_true',
        help='Forget the stored Google credentials and exit.',
    )
    parser.add_argument(
        '--user',
        metavar='USER_ID',
        help='Set the current user before the service starts.',
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}',
    )
    return parser.parse_args(argv)


class Application(QtCore.QCoreApplication):
    """Headless application running a sync :class:`Session`."""

    def __init__(self, argv: Optional[Sequence[str]] = None) -> None:
        if argv is None:
            argv = sys.argv

        super().__init__(list(argv))

        from .settings import lib
        self.setApplicationName(lib.app_name)
        self.setOrganizationName('')
        self.setApplicationVersion(__version__)

        self.session = Session(parent=self)
        self.aboutToQuit.connect(self.session.stop)
