"""
ExpenseSync: offline-first synchronisation of personal finance records with Google Sheets.

This package provides:

- :mod:`ExpenseSync.core` – The pending operation queue, connectivity monitor, sync coordinator,
  finance services and balance reconciliation.
- :mod:`ExpenseSync.settings` – Settings management with schema validation, and user preferences.
- :mod:`ExpenseSync.status` – Status codes and status-driven exceptions.
- :mod:`ExpenseSync.log` – Logging setup with an in-memory log tank.

Use :func:`ExpenseSync.exec_` to run the headless sync service.
"""

import sys

from PySide6 import QtCore

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('ExpenseSync requires Python 3.11 or higher.')

__version__ = '0.1.0'
__author__ = 'Gergely Wootsch'
__license__ = 'GPL-3.0'
__copyright__ = 'Copyright (C) 2025 Gergely Wootsch'
__description__ = 'ExpenseSync: offline-first synchronisation of personal finance records with Google Sheets.'
__url__ = 'https://github.com/wgergely/ExpenseTracker'
__email__ = 'hello+ExpenseTracker@gergely-wootsch.com'

from .log import log

log.setup_logging()


def exec_() -> None:
    """Start the headless sync service and enter its event loop."""
    from . import app
    from .signals import signals
    args = app.parse_args(sys.argv[1:])

    if args.sign_out:
        from .core import auth
        auth.sign_out()
        return

    application = app.Application(sys.argv[:1])
    session = application.session

    @QtCore.Slot()
    def _startup() -> None:
        # Ask components to load their data
        signals.initializationRequested.emit()
        if args.user:
            session.set_user(args.user)
        if args.sign_in and not session.sign_in(open_browser=not args.no_browser):
            application.exit(1)

    QtCore.QTimer.singleShot(100, _startup)

    sys.exit(application.exec())


if __name__ == '__main__':
    exec_()
