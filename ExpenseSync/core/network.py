"""Connectivity monitoring.

Tracks whether the host is online using :class:`QtNetwork.QNetworkInformation`.
When no reachability backend is available the monitor assumes it is online
and relies on :meth:`ConnectivityMonitor.set_online` for updates.
"""
import logging
from typing import Optional

from PySide6 import QtCore, QtNetwork


class ConnectivityMonitor(QtCore.QObject):
    """Holds the current online state and emits on transitions."""
    onlineChanged = QtCore.Signal(bool)
    wentOnline = QtCore.Signal()
    wentOffline = QtCore.Signal()

    def __init__(self, use_platform: bool = True, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self._online: bool = True
        self._info: Optional[QtNetwork.QNetworkInformation] = None

        if use_platform:
            self._init_platform()

    def _init_platform(self) -> None:
        feature = QtNetwork.QNetworkInformation.Feature.Reachability
        if not QtNetwork.QNetworkInformation.loadBackendByFeatures(feature):
            logging.warning('No network reachability backend available, assuming online.')
            return

        self._info = QtNetwork.QNetworkInformation.instance()
        if self._info is None:
            logging.warning('Network information backend failed to load, assuming online.')
            return

        logging.debug(f'Using network information backend "{self._info.backendName()}".')
        self._info.reachabilityChanged.connect(self._on_reachability_changed)
        self._online = self._is_reachable(self._info.reachability())

    @staticmethod
    def _is_reachable(reachability: QtNetwork.QNetworkInformation.Reachability) -> bool:
        # Unknown means the backend cannot tell, which we treat as online
        return reachability in (
            QtNetwork.QNetworkInformation.Reachability.Online,
            QtNetwork.QNetworkInformation.Reachability.Unknown,
        )

    @QtCore.Slot(QtNetwork.QNetworkInformation.Reachability)
    def _on_reachability_changed(self, reachability: QtNetwork.QNetworkInformation.Reachability) -> None:
        self.set_online(self._is_reachable(reachability))

    @property
    def is_online(self) -> bool:
        return self._online

    @QtCore.Slot(bool)
    def set_online(self, online: bool) -> None:
        """Set the online state, emitting signals only when it changes."""
        online = bool(online)
        if online == self._online:
            return

        self._online = online
        logging.info(f'Connectivity changed: {"online" if online else "offline"}')

        self.onlineChanged.emit(online)
        if online:
            self.wentOnline.emit()
        else:
            self.wentOffline.emit()
