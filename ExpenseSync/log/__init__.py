"""
Logging subsystem for ExpenseSync.

Modules:

- :mod:`ExpenseSync.log.log` – Log handlers integrating Python logging with the Qt message bus.
"""
