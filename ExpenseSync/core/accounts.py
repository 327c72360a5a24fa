"""Account balances derived from income and expense records.

An account's balance is never maintained incrementally: it is recomputed from
the authoritative remote incomes and expenses as
``sum(incomes) - sum(expenses)`` for every item booked against the account.
"""
import logging
from typing import Any, Dict, List

import pandas as pd

from .finance import items_to_frame
from .queue import Collection
from .remote import RemoteStore
from ..status import status

ACCOUNTS = 'accounts'
BALANCE_TOLERANCE = 0.001


def sum_by_account(items: List[Dict[str, Any]]) -> pd.Series:
    """Return the summed amounts of ``items`` grouped by ``accountId``."""
    df = items_to_frame(items)
    df = df[df['accountId'].notna() & (df['accountId'] != '')]
    if df.empty:
        return pd.Series(dtype=float)
    return df.groupby(df['accountId'].astype(str))['amount'].sum()


def to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class AccountService:
    """Account queries and balance reconciliation against the remote store."""

    def __init__(self, remote: RemoteStore) -> None:
        self.remote = remote

    def get_user_accounts(self, user_id: str) -> List[Dict[str, Any]]:
        return self.remote.list_documents(ACCOUNTS, {'userId': user_id})

    def get_account(self, user_id: str, account_id: str) -> Dict[str, Any]:
        """Return one of the user's accounts.

        Raises:
            status.AccountNotFoundException: If the account does not exist.
        """
        account = next(
            (a for a in self.get_user_accounts(user_id) if str(a.get('id')) == str(account_id)), None)
        if account is None:
            raise status.AccountNotFoundException(f'Account "{account_id}" not found for "{user_id}".')
        return account

    def compute_balances(self, user_id: str) -> pd.Series:
        """Return the derived balance of every account the user's items reference."""
        incomes = sum_by_account(self.remote.list_documents(Collection.Incomes, {'userId': user_id}))
        expenses = sum_by_account(self.remote.list_documents(Collection.Expenses, {'userId': user_id}))
        return incomes.sub(expenses, fill_value=0.0)

    def update_all_account_balances(self, user_id: str) -> List[Dict[str, Any]]:
        """Recompute and persist the balances of all of the user's accounts.

        Only balances differing from the stored value by more than
        ``BALANCE_TOLERANCE`` are written.

        Returns:
            The accounts whose balance was written, with their new balance.
        """
        accounts = self.get_user_accounts(user_id)
        if not accounts:
            logging.debug(f'No accounts for "{user_id}", nothing to reconcile.')
            return []

        balances = self.compute_balances(user_id)

        updated: List[Dict[str, Any]] = []
        for account in accounts:
            account_id = str(account.get('id'))
            balance = float(balances.get(account_id, 0.0))
            current = to_float(account.get('balance'))

            if abs(current - balance) <= BALANCE_TOLERANCE:
                continue

            self.remote.update_document(ACCOUNTS, account_id, {'balance': balance})
            logging.debug(f'Account "{account_id}" balance {current} -> {balance}')
            updated.append({**account, 'balance': balance})

        logging.info(f'Reconciled {len(accounts)} account(s) for "{user_id}", {len(updated)} updated.')
        return updated
