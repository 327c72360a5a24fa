"""Offline-aware finance item service.

One :class:`FinanceService` exists per finance collection (incomes, expenses).
Every mutation is applied to the local cache first and written to the remote
store when online. When offline, or when the remote write fails, the mutation
is queued in :class:`~ExpenseSync.core.queue.PendingOperationsAPI` and later
replayed by :meth:`FinanceService.sync_pending_items`.

Items created offline receive a temporary ``temp_{timestamp}`` id. The remote
store assigns the permanent id when the queued add is replayed.
"""
import logging
from typing import Any, Dict, List, Optional

import pandas as pd

from .network import ConnectivityMonitor
from .queue import Collection, OperationType, PendingOperation, PendingOperationsAPI
from .remote import RemoteStore
from .storage import KeyValueStore
from ..status import status

CURRENT_USER_KEY = 'current-user-id'
TEMP_ID_PREFIX = 'temp_'

FINANCE_COLUMNS: List[str] = ['id', 'description', 'amount', 'category', 'date', 'userId', 'accountId']


def cache_key(collection: str) -> str:
    return f'{collection}-data'


def is_temp_id(item_id: Any) -> bool:
    return isinstance(item_id, str) and item_id.startswith(TEMP_ID_PREFIX)


def items_to_frame(items: List[Dict[str, Any]]) -> pd.DataFrame:
    """Return finance items as a DataFrame with at least the standard columns.

    Amounts are coerced to float; unparseable amounts become 0.0.
    """
    df = pd.DataFrame.from_records(items) if items else pd.DataFrame()
    for column in FINANCE_COLUMNS:
        if column not in df.columns:
            df[column] = pd.Series(dtype=object)
    df['amount'] = pd.to_numeric(df['amount'], errors='coerce').fillna(0.0).astype(float)
    return df


class FinanceService:
    """Reads and mutates one finance collection, queueing mutations while offline.

    Args:
        collection: The collection this service handles.
        remote: Remote document store.
        queue: Pending operation queue.
        monitor: Connectivity monitor.
        store: Local key-value store used as the item cache.
    """

    def __init__(
            self,
            collection: Collection,
            remote: RemoteStore,
            queue: PendingOperationsAPI,
            monitor: ConnectivityMonitor,
            store: KeyValueStore
    ) -> None:
        self.collection = Collection(collection)
        self.remote = remote
        self.queue = queue
        self.monitor = monitor
        self.store = store

    def __repr__(self) -> str:
        return f'<FinanceService collection={self.collection.value}>'

    # Local cache

    def _cached_items(self) -> List[Dict[str, Any]]:
        try:
            items = self.store.get(cache_key(self.collection), [])
        except ValueError as ex:
            logging.warning(f'Cached {self.collection} are unreadable, ignoring them: {ex}')
            return []
        return items if isinstance(items, list) else []

    def _save_cache(self, items: List[Dict[str, Any]]) -> None:
        self.store.set(cache_key(self.collection), items)

    def cached_user_items(self, user_id: str) -> List[Dict[str, Any]]:
        return [i for i in self._cached_items() if i.get('userId') == user_id]

    def _cache_user_items(self, user_id: str, items: List[Dict[str, Any]]) -> None:
        others = [i for i in self._cached_items() if i.get('userId') != user_id]
        self._save_cache(others + items)

    def _cache_put(self, item: Dict[str, Any], replace_id: Any = None) -> None:
        target = replace_id if replace_id is not None else item.get('id')
        items = [i for i in self._cached_items() if i.get('id') != target]
        items.append(item)
        self._save_cache(items)

    def _cache_merge(self, item: Dict[str, Any]) -> Dict[str, Any]:
        items = self._cached_items()
        merged = dict(item)
        for idx, cached in enumerate(items):
            if cached.get('id') == item.get('id'):
                merged = {**cached, **item}
                items[idx] = merged
                break
        else:
            items.append(merged)
        self._save_cache(items)
        return merged

    def _cache_remove(self, item_id: Any) -> None:
        self._save_cache([i for i in self._cached_items() if i.get('id') != item_id])

    # Reads

    def get_user_items(self, user_id: str) -> pd.DataFrame:
        """Return the items of ``user_id``.

        The remote store is queried when online and the result cached. When
        offline, or when the query fails, the cached items are returned.
        """
        from ..signals import signals

        items: Optional[List[Dict[str, Any]]] = None
        if self.monitor.is_online:
            try:
                items = self.remote.list_documents(self.collection, {'userId': user_id})
                self._cache_user_items(user_id, items)
            except Exception as ex:
                logging.error(f'Failed to fetch {self.collection} for "{user_id}", using cached items: {ex}')

        if items is None:
            items = self.cached_user_items(user_id)

        df = items_to_frame(items)
        signals.itemsFetched.emit(self.collection.value, df.copy())
        return df

    # Mutations

    def _temp_id(self) -> str:
        taken = {i.get('id') for i in self._cached_items()}
        taken.update(
            op.target_id() for op in self.queue.get_operations(self.collection)
            if isinstance(op.target_id(), str)
        )
        ts = self.queue.clock()
        while f'{TEMP_ID_PREFIX}{ts}' in taken:
            ts += 1
        return f'{TEMP_ID_PREFIX}{ts}'

    def _queue(self, operation_type: OperationType, data: Any) -> PendingOperation:
        op = self.queue.add_operation(operation_type, self.collection, data)
        logging.info(f'{self.collection}: queued {operation_type} for later sync ({op.id}).')
        return op

    def _pending_add(self, item_id: Any) -> Optional[PendingOperation]:
        return next(
            (op for op in self.queue.get_operations(self.collection)
             if op.operation_type == OperationType.Add and op.target_id() == item_id),
            None
        )

    def add_item(self, item: Dict[str, Any]) -> Dict[str, Any]:
        """Create an item.

        Returns:
            The created item. Its id is temporary when the remote write did not happen.
        """
        new_item = dict(item)
        new_item.pop('id', None)

        if self.monitor.is_online:
            try:
                new_item['id'] = self.remote.add_document(self.collection, new_item)
                self._cache_put(new_item)
                return new_item
            except Exception as ex:
                logging.error(f'Failed to add {self.collection} item, queueing it: {ex}')

        new_item['id'] = self._temp_id()
        self._cache_put(new_item)
        self._queue(OperationType.Add, new_item)
        return new_item

    def update_item(self, item: Dict[str, Any]) -> Dict[str, Any]:
        """Update an existing item.

        Updates to items that were created offline and are still queued
        replace the queued add.

        Raises:
            ValueError: If the item has no id.
        """
        item_id = item.get('id')
        if not item_id:
            raise ValueError('Cannot update an item without an id.')

        merged = self._cache_merge(item)

        if is_temp_id(item_id):
            pending = self._pending_add(item_id)
            if pending is not None:
                self.queue.remove_operation(pending.id)
                self._queue(OperationType.Add, {**pending.data, **item})
                return merged

        if self.monitor.is_online:
            try:
                self.remote.update_document(
                    self.collection, item_id, {k: v for k, v in item.items() if k != 'id'})
                return merged
            except Exception as ex:
                logging.error(f'Failed to update {self.collection} item "{item_id}", queueing it: {ex}')

        self._queue(OperationType.Update, dict(item))
        return merged

    def delete_item(self, item_id: str) -> None:
        """Delete an item.

        Deleting an item that was created offline and never synced drops its
        queued add and update operations instead of queueing a delete.
        """
        self._cache_remove(item_id)

        if is_temp_id(item_id):
            pending = [op for op in self.queue.get_operations(self.collection) if op.target_id() == item_id]
            if pending:
                for op in pending:
                    self.queue.remove_operation(op.id)
                logging.debug(f'{self.collection}: dropped {len(pending)} queued operation(s) for "{item_id}".')
                return

        if self.monitor.is_online:
            try:
                self.remote.delete_document(self.collection, item_id)
                return
            except Exception as ex:
                logging.error(f'Failed to delete {self.collection} item "{item_id}", queueing it: {ex}')

        self._queue(OperationType.Delete, item_id)

    # Replay

    def _replay(self, op: PendingOperation) -> None:
        if op.operation_type == OperationType.Add:
            data = dict(op.data)
            temp_id = data.pop('id', None) if is_temp_id(data.get('id')) else None
            new_id = self.remote.add_document(self.collection, data)
            if temp_id is not None:
                self._cache_put({**data, 'id': new_id}, replace_id=temp_id)
        elif op.operation_type == OperationType.Update:
            data = dict(op.data)
            item_id = data.pop('id')
            self.remote.update_document(self.collection, item_id, data)
        elif op.operation_type == OperationType.Delete:
            try:
                self.remote.delete_document(self.collection, op.data)
            except status.DocumentNotFoundException:
                logging.info(f'{self.collection}: "{op.data}" was already deleted remotely.')

    def sync_pending_items(self) -> int:
        """Replay this collection's queued operations in queue order.

        Each confirmed operation is removed from the queue. Failed operations
        stay queued and the remaining ones are still attempted. The current
        user's items are refreshed afterwards.

        Returns:
            int: The number of operations replayed.

        Raises:
            status.SyncFailedException: If any operation failed.
        """
        if not self.monitor.is_online:
            logging.debug(f'{self.collection}: offline, not syncing.')
            return 0

        ops = self.queue.get_operations(self.collection)
        if not ops:
            return 0

        logging.info(f'{self.collection}: replaying {len(ops)} pending operation(s).')
        failed: List[str] = []
        for op in ops:
            try:
                self._replay(op)
            except Exception as ex:
                logging.error(f'{self.collection}: failed to replay {op.id}: {ex}')
                failed.append(op.id)
                continue
            self.queue.remove_operation(op.id)

        user_id = self.store.get(CURRENT_USER_KEY)
        if user_id:
            self.get_user_items(user_id)

        if failed:
            raise status.SyncFailedException(
                f'{len(failed)} of {len(ops)} {self.collection} operation(s) failed: {", ".join(failed)}'
            )
        return len(ops)
