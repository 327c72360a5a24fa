"""Status codes and the exceptions raised by ExpenseSync services.

Every exception derives from :class:`~ExpenseSync.status.status.BaseStatusException`,
carries a :class:`~ExpenseSync.status.status.Status` and reports itself through
logging and ``signals.error`` when raised. Foreground calls let them propagate;
the sync coordinator raises them inside :func:`~ExpenseSync.status.status.background`,
logs them and carries on.
"""
