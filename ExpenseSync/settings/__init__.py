"""
Settings package for ExpenseSync.

Modules:

- :mod:`ExpenseSync.settings.lib` – Config paths, schema validation and the :class:`SettingsAPI`.
- :mod:`ExpenseSync.settings.preferences` – Per-user preferences persisted in the local key-value store.
"""
