"""Sync coordinator for the pending operation queue.

:class:`SyncManager` drains the queue by running each collection's replay
routine, then recomputes account balances once. Batches are serialised: the
manager is either :attr:`SyncState.Idle` or :attr:`SyncState.Syncing`, and any
trigger arriving while a batch runs is dropped.

Triggers:
    - Online: connectivity returned.
    - UserChanged: the signed-in user changed.
    - Mount: :meth:`SyncManager.start` found a non-empty queue.
    - Periodic: the periodic timer fired.
    - Manual: explicit request.

Periodic and Manual triggers are throttled to one batch per
``sync.min_interval`` seconds. Online and UserChanged always run.
A throttled trigger is logged and announced through :attr:`SyncManager.throttled`.

Errors raised by replay routines are logged and never leave the coordinator.
They run under :func:`~ExpenseSync.status.status.background` and so do not
reach ``signals.error``.
When a batch with failures started with more than
``sync.failure_clear_threshold`` queued operations the whole queue is
discarded. This loses the unsynced operations.
"""
import dataclasses
import enum
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from PySide6 import QtCore

from .finance import CURRENT_USER_KEY
from .network import ConnectivityMonitor
from .queue import Collection, PendingOperationsAPI
from .reconcile import BalanceReconciler
from .storage import KeyValueStore
from ..settings import lib
from ..status import status


class SyncState(enum.StrEnum):
    Idle = 'idle'
    Syncing = 'syncing'


class SyncTrigger(enum.StrEnum):
    Online = 'online'
    UserChanged = 'user_changed'
    Mount = 'mount'
    Periodic = 'periodic'
    Manual = 'manual'


class SyncStatus(enum.StrEnum):
    """Summary of the local queue as seen by the user."""
    Synced = 'synced'
    Pending = 'pending'
    Offline = 'offline'


THROTTLED_TRIGGERS = (SyncTrigger.Periodic, SyncTrigger.Manual)


class ClearReason(enum.StrEnum):
    Oversized = 'oversized'
    Failures = 'failures'


@dataclasses.dataclass
class SyncResult:
    """Outcome of one sync batch."""
    trigger: SyncTrigger
    purged: int = 0
    processed: List[str] = dataclasses.field(default_factory=list)
    skipped: List[str] = dataclasses.field(default_factory=list)
    failed: Dict[str, str] = dataclasses.field(default_factory=dict)  # collection -> error message
    cleared: bool = False
    reconciled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed


class SyncManager(QtCore.QObject):
    """Serialised, throttled replay of the pending operation queue.

    Args:
        queue: The pending operation queue.
        monitor: Connectivity monitor.
        reconciler: Balance reconciler run once per batch.
        store: Key-value store holding the current user id.
        clock: Monotonic clock in seconds, used for throttling.
        parent: Optional Qt parent.
    """
    syncStarted = QtCore.Signal(str)  # Emits the trigger
    syncFinished = QtCore.Signal(object)  # Emits the SyncResult
    stateChanged = QtCore.Signal(str)  # Emits the new SyncState
    queueCleared = QtCore.Signal(str)  # Emits the ClearReason
    throttled = QtCore.Signal(str)  # Emits the dropped trigger

    def __init__(
            self,
            queue: PendingOperationsAPI,
            monitor: ConnectivityMonitor,
            reconciler: BalanceReconciler,
            store: KeyValueStore,
            clock: Callable[[], float] = time.monotonic,
            parent: Optional[QtCore.QObject] = None
    ) -> None:
        super().__init__(parent=parent)
        self.queue = queue
        self.monitor = monitor
        self.reconciler = reconciler
        self.store = store
        self.clock = clock

        self._state: SyncState = SyncState.Idle
        self._last_attempt: Optional[float] = None
        self._routines: Dict[Collection, Callable[[], Any]] = {}

        self.timer = QtCore.QTimer(self)
        self.timer.setSingleShot(False)

        self._connect_signals()

    def _connect_signals(self) -> None:
        self.monitor.wentOnline.connect(self.on_online)
        self.timer.timeout.connect(self.on_timer)

    @property
    def state(self) -> SyncState:
        return self._state

    def _set_state(self, state: SyncState) -> None:
        if state == self._state:
            return
        self._state = state
        logging.debug(f'Sync state: {state}')
        self.stateChanged.emit(state.value)

    def register(self, collection: Collection, routine: Callable[[], Any]) -> None:
        """Register the replay routine for ``collection``."""
        self._routines[Collection(collection)] = routine

    def routines(self) -> Dict[Collection, Callable[[], Any]]:
        return dict(self._routines)

    def current_user(self) -> Optional[str]:
        try:
            return self.store.get(CURRENT_USER_KEY)
        except (status.StorageUnavailableException, ValueError) as ex:
            logging.error(f'Could not read the current user: {ex}')
            return None

    # Lifecycle

    def start(self) -> Optional[SyncResult]:
        """Purge invalid operations, start the periodic timer and sync any leftovers.

        An oversized queue is discarded before anything is replayed.
        """
        self.queue.cleanup_invalid_operations()

        max_size = lib.settings['max_queue_size']
        if len(self.queue) > max_size:
            logging.warning(
                f'Pending queue holds {len(self.queue)} operations (limit {max_size}), discarding it.')
            self.queue.clear_all()
            self.queueCleared.emit(ClearReason.Oversized.value)

        interval = lib.settings['periodic_interval']
        self.timer.setInterval(interval * 1000)
        self.timer.start()
        logging.debug(f'Periodic sync every {interval}s.')

        self._reconcile_initial()

        if len(self.queue):
            return self.sync(SyncTrigger.Mount)
        return None

    def stop(self) -> None:
        self.timer.stop()

    # Triggers

    def _reconcile_initial(self, result: Optional[SyncResult] = None) -> None:
        """Run the session's first reconciliation unless a batch just reconciled."""
        if result is not None and result.reconciled:
            return
        if self.reconciler.initial_done or not self.monitor.is_online:
            return
        with status.background():
            self.reconciler.reconcile_initial(self.current_user())

    @QtCore.Slot()
    def on_online(self) -> None:
        self._reconcile_initial(self.sync(SyncTrigger.Online))

    @QtCore.Slot()
    def on_timer(self) -> None:
        self.sync(SyncTrigger.Periodic)

    @QtCore.Slot()
    def request_sync(self) -> None:
        self.sync(SyncTrigger.Manual)

    @QtCore.Slot(str)
    def set_user(self, user_id: Optional[str]) -> Optional[SyncResult]:
        """Store the current user and sync when it changed."""
        if user_id == self.current_user():
            return None

        try:
            if user_id:
                self.store.set(CURRENT_USER_KEY, user_id)
            else:
                self.store.remove(CURRENT_USER_KEY)
        except status.StorageUnavailableException as ex:
            logging.error(f'Could not store the current user: {ex}')

        from ..signals import signals
        signals.userChanged.emit(user_id or '')

        if not user_id:
            return None
        result = self.sync(SyncTrigger.UserChanged)
        self._reconcile_initial(result)
        return result

    # Batch

    def _can_start(self, trigger: SyncTrigger) -> bool:
        if self._state == SyncState.Syncing:
            logging.debug(f'Sync already running, dropping "{trigger}" trigger.')
            return False
        if not self.monitor.is_online:
            logging.debug(f'Offline, dropping "{trigger}" trigger.')
            return False
        if trigger in THROTTLED_TRIGGERS and self._last_attempt is not None:
            elapsed = self.clock() - self._last_attempt
            if elapsed < lib.settings['min_interval']:
                logging.info(f'Last sync started {elapsed:.1f}s ago, dropping "{trigger}" trigger.')
                self.throttled.emit(trigger.value)
                return False
        if not len(self.queue):
            logging.debug(f'Nothing to sync, dropping "{trigger}" trigger.')
            return False
        return True

    def sync(self, trigger: SyncTrigger = SyncTrigger.Manual) -> Optional[SyncResult]:
        """Run one sync batch.

        Returns:
            The batch result, or None if the trigger was dropped by a guard.
        """
        trigger = SyncTrigger(trigger)
        if not self._can_start(trigger):
            return None

        self._last_attempt = self.clock()
        self._set_state(SyncState.Syncing)
        self.syncStarted.emit(trigger.value)
        logging.info(f'Sync started ({trigger}), {len(self.queue)} pending operation(s).')

        result = SyncResult(trigger=trigger)
        try:
            with status.background():
                self._run_batch(result)
        except Exception as ex:
            logging.error(f'Sync batch aborted: {ex}')
            result.failed.setdefault('batch', str(ex))
        finally:
            self._set_state(SyncState.Idle)

        logging.info(
            f'Sync finished ({trigger}): processed={result.processed}, failed={list(result.failed)}, '
            f'remaining={len(self.queue)}')
        self.syncFinished.emit(result)
        return result

    def _run_batch(self, result: SyncResult) -> None:
        """Replay the queue one collection at a time, then reconcile balances."""
        result.purged = self.queue.cleanup_invalid_operations()
        queued = len(self.queue)

        for collection in self.queue.collections():
            routine = self._routines.get(collection)
            if routine is None:
                logging.warning(f'No sync routine registered for "{collection}", skipping.')
                result.skipped.append(collection.value)
                continue

            result.processed.append(collection.value)
            try:
                routine()
            except Exception as ex:
                logging.error(f'Sync of "{collection}" failed: {ex}')
                result.failed[collection.value] = str(ex)

        threshold = lib.settings['failure_clear_threshold']
        if result.failed and queued > threshold:
            logging.warning(
                f'Sync failed with {queued} queued operation(s) (limit {threshold}), discarding the queue.')
            self.queue.clear_all()
            result.cleared = True
            self.queueCleared.emit(ClearReason.Failures.value)

        if result.processed:
            self.reconciler.reconcile(self.current_user())
            result.reconciled = True

    # Status

    def pending_counts(self) -> Dict[str, int]:
        """Return the number of pending operations per known collection."""
        return {c.value: self.queue.count(c) for c in Collection}

    def sync_status(self) -> SyncStatus:
        if not self.monitor.is_online:
            return SyncStatus.Offline
        if len(self.queue):
            return SyncStatus.Pending
        return SyncStatus.Synced
