"""Balance reconciliation after pending operations are replayed."""
import logging
from typing import Any, Dict, List, Optional

from PySide6 import QtCore

from .accounts import AccountService


class BalanceReconciler(QtCore.QObject):
    """Recomputes account balances, logging failures without retrying.

    :meth:`reconcile_initial` runs at most once per session; later user or
    account changes do not repeat it.
    """
    balancesUpdated = QtCore.Signal(list)  # Emits the accounts whose balance changed

    def __init__(self, accounts: AccountService, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self.accounts = accounts
        self._initial_done: bool = False

    @property
    def initial_done(self) -> bool:
        return self._initial_done

    def reconcile(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        """Recompute the balances of ``user_id``'s accounts.

        Returns:
            The updated accounts, or an empty list when there is no user or the update failed.
        """
        if not user_id:
            logging.debug('No current user, skipping balance reconciliation.')
            return []

        try:
            updated = self.accounts.update_all_account_balances(user_id)
        except Exception as ex:
            logging.error(f'Balance reconciliation failed for "{user_id}": {ex}')
            return []

        self.balancesUpdated.emit(updated)
        return updated

    def reconcile_initial(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        """Run the first reconciliation of the session."""
        if self._initial_done or not user_id:
            return []
        self._initial_done = True
        logging.debug(f'Running initial balance reconciliation for "{user_id}".')
        return self.reconcile(user_id)
