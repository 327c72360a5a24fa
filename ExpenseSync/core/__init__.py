"""
Core package for ExpenseSync providing the offline sync subsystem.

This package includes:

- :mod:`ExpenseSync.core.storage` – Durable SQLite key-value storage.
- :mod:`ExpenseSync.core.queue` – The pending operation queue and its repository.
- :mod:`ExpenseSync.core.network` – Connectivity monitoring.
- :mod:`ExpenseSync.core.auth` – Google OAuth2 credential management.
- :mod:`ExpenseSync.core.service` – Google Sheets API client helpers.
- :mod:`ExpenseSync.core.remote` – Remote document store interface and its Google Sheets implementation.
- :mod:`ExpenseSync.core.finance` – Offline-aware income and expense services.
- :mod:`ExpenseSync.core.accounts` – Account balance computation.
- :mod:`ExpenseSync.core.reconcile` – Balance reconciliation after replay.
- :mod:`ExpenseSync.core.sync` – The sync coordinator.
"""
