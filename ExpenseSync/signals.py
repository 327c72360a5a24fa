"""Application-wide Qt signals for ExpenseSync.

This module provides:
    - Signals: custom Qt signals for configuration changes, queue lifecycle,
      connectivity, sync batches, and balance reconciliation.
"""
import logging

from PySide6 import QtCore


class Signals(QtCore.QObject):
    """Centralized Qt signals for application config, queue and sync events."""
    initializationRequested = QtCore.Signal()

    configSectionChanged = QtCore.Signal(str)  # Section

    queueChanged = QtCore.Signal(int)  # Queue size
    operationQueued = QtCore.Signal(object)  # PendingOperation
    operationRemoved = QtCore.Signal(str)  # Operation id
    queueCleared = QtCore.Signal(str)  # Reason

    onlineChanged = QtCore.Signal(bool)
    userChanged = QtCore.Signal(str)

    authenticationRequested = QtCore.Signal()
    signOutRequested = QtCore.Signal()

    syncRequested = QtCore.Signal()
    syncStarted = QtCore.Signal(str)  # Trigger
    syncFinished = QtCore.Signal(object)  # SyncResult
    syncThrottled = QtCore.Signal(str)  # Dropped trigger

    itemsFetched = QtCore.Signal(str, object)  # Collection, DataFrame
    balancesUpdated = QtCore.Signal(list)

    showLogs = QtCore.Signal()
    error = QtCore.Signal(str)

    def __init__(self):
        super().__init__()
        self._connect_signals()

    def _connect_signals(self):
        self.queueCleared.connect(lambda reason: logging.warning(f'Pending operations cleared: {reason}'))
        self.userChanged.connect(lambda user_id: logging.debug(f'Current user changed: "{user_id}"'))


signals = Signals()
