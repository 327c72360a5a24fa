"""Durable queue of pending finance mutations.

Mutations made while the remote store is unreachable are recorded as
:class:`PendingOperation` entries and persisted to the local key-value store
under ``pending-operations-storage``. The queue is replayed in insertion order
by the finance services once connectivity returns.

Entries are only ever created and removed. An entry is removed when its remote
mutation has been confirmed, or when it is purged by
:meth:`PendingOperationsAPI.cleanup_invalid_operations` or
:meth:`PendingOperationsAPI.clear_all`. Purged entries are never replayed.
"""
import dataclasses
import enum
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Union

from PySide6 import QtCore

from .storage import KeyValueStore
from ..settings import lib
from ..status import status

STORAGE_KEY = 'pending-operations-storage'
MS_PER_DAY = 24 * 60 * 60 * 1000


class OperationType(enum.StrEnum):
    """Kind of queued mutation."""
    Add = 'add'
    Update = 'update'
    Delete = 'delete'


class Collection(enum.StrEnum):
    """Remote collections that accept queued mutations."""
    Incomes = 'incomes'
    Expenses = 'expenses'


def now_ms() -> int:
    """Return the current time as milliseconds since the epoch."""
    return int(time.time() * 1000)


def make_operation_id(operation_type: str, collection: str, timestamp: int) -> str:
    return f'{operation_type}_{collection}_{timestamp}'


@dataclasses.dataclass(frozen=True)
class PendingOperation:
    """One queued mutation awaiting remote confirmation."""
    id: str
    operation_type: OperationType
    collection: Collection
    data: Any  # Full item dict for add/update, the item id for delete
    timestamp: int  # Creation time, ms since the epoch

    def target_id(self) -> Any:
        """Return the id of the item this operation targets."""
        if isinstance(self.data, dict):
            return self.data.get('id')
        return self.data

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'operationType': self.operation_type.value,
            'collection': self.collection.value,
            'data': self.data,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'PendingOperation':
        """Create an operation from its persisted form.

        Raises:
            KeyError: If a required key is missing.
            ValueError: If the operation type or collection is unknown.
            TypeError: If the timestamp is not numeric.
        """
        return cls(
            id=str(d['id']),
            operation_type=OperationType(d['operationType']),
            collection=Collection(d['collection']),
            data=d['data'],
            timestamp=int(d['timestamp']),
        )


class OperationRepository:
    """Loads and saves the operation list in the key-value store."""

    def __init__(self, store: KeyValueStore, key: str = STORAGE_KEY) -> None:
        self.store = store
        self.key = key

    def load(self) -> List[PendingOperation]:
        """Return the persisted operations.

        Unparseable records are dropped. Storage errors and malformed payloads
        yield an empty list.
        """
        try:
            raw = self.store.get_raw(self.key)
        except status.StorageUnavailableException as ex:
            logging.error(f'Could not read pending operations, starting with an empty queue: {ex}')
            return []

        if raw is None:
            return []

        try:
            payload = json.loads(raw)
        except ValueError as ex:
            logging.warning(f'Pending operations payload is not valid JSON, starting with an empty queue: {ex}')
            return []

        if not isinstance(payload, list):
            logging.warning(f'Pending operations payload must be a list, got {type(payload).__name__}.')
            return []

        operations: List[PendingOperation] = []
        for item in payload:
            try:
                operations.append(PendingOperation.from_dict(item))
            except (KeyError, ValueError, TypeError) as ex:
                logging.warning(f'Dropping unreadable pending operation {item!r}: {ex}')
        return operations

    def save(self, operations: List[PendingOperation]) -> None:
        """Persist ``operations``. Storage errors are logged."""
        try:
            self.store.set(self.key, [op.to_dict() for op in operations])
        except status.StorageUnavailableException as ex:
            logging.error(f'Could not persist {len(operations)} pending operation(s): {ex}')

    def delete(self) -> None:
        """Remove the persisted key."""
        try:
            self.store.remove(self.key)
        except status.StorageUnavailableException as ex:
            logging.error(f'Could not remove pending operations from storage: {ex}')


class PendingOperationsAPI(QtCore.QObject):
    """In-memory view of the pending operation queue, written through to storage.

    Args:
        repository: Repository used to load and persist the queue.
        clock: Callable returning the current time in milliseconds.
        parent: Optional Qt parent.
    """
    queueChanged = QtCore.Signal(int)  # Emits current queue size
    operationQueued = QtCore.Signal(object)  # Emits the new PendingOperation
    operationRemoved = QtCore.Signal(str)  # Emits the removed operation id

    def __init__(
            self,
            repository: OperationRepository,
            clock: Callable[[], int] = now_ms,
            parent: Optional[QtCore.QObject] = None
    ) -> None:
        super().__init__(parent=parent)
        self.repository = repository
        self.clock = clock
        self._operations: List[PendingOperation] = self.repository.load()
        logging.debug(f'Loaded {len(self._operations)} pending operation(s).')

    def __len__(self) -> int:
        return len(self._operations)

    @property
    def operations(self) -> List[PendingOperation]:
        """A copy of the queued operations in insertion order."""
        return list(self._operations)

    def get_operations(self, collection: Union[Collection, str]) -> List[PendingOperation]:
        """Return the operations targeting ``collection`` in insertion order."""
        collection = Collection(collection)
        return [op for op in self._operations if op.collection == collection]

    def count(self, collection: Optional[Union[Collection, str]] = None) -> int:
        if collection is None:
            return len(self._operations)
        return len(self.get_operations(collection))

    def collections(self) -> List[Collection]:
        """Return the distinct collections present in the queue, in first-seen order."""
        seen: List[Collection] = []
        for op in self._operations:
            if op.collection not in seen:
                seen.append(op.collection)
        return seen

    def reload(self) -> None:
        """Re-read the queue from storage."""
        self._operations = self.repository.load()
        self.queueChanged.emit(len(self._operations))

    def _persist(self) -> None:
        self.repository.save(self._operations)
        self.queueChanged.emit(len(self._operations))

    def _unique_id(self, operation_type: OperationType, collection: Collection, timestamp: int) -> str:
        existing = {op.id for op in self._operations}
        ts = timestamp
        op_id = make_operation_id(operation_type, collection, ts)
        while op_id in existing:
            ts += 1
            op_id = make_operation_id(operation_type, collection, ts)
        return op_id

    def add_operation(
            self,
            operation_type: Union[OperationType, str],
            collection: Union[Collection, str],
            data: Any
    ) -> PendingOperation:
        """Append a new operation to the queue and persist it.

        The payload is stored as given.

        Args:
            operation_type: 'add', 'update' or 'delete'.
            collection: Target collection name.
            data: The full item for add/update, or the item id for delete.

        Returns:
            PendingOperation: The queued operation.

        Raises:
            ValueError: If the operation type is unknown.
            status.CollectionUnknownException: If the collection is unknown.
        """
        operation_type = OperationType(operation_type)
        try:
            collection = Collection(collection)
        except ValueError as ex:
            raise status.CollectionUnknownException(f'"{collection}" cannot hold pending operations.') from ex

        timestamp = self.clock()
        op = PendingOperation(
            id=self._unique_id(operation_type, collection, timestamp),
            operation_type=operation_type,
            collection=collection,
            data=data,
            timestamp=timestamp,
        )
        self._operations.append(op)
        logging.debug(f'Queued {op.id}; queue size: {len(self._operations)}')

        self._persist()
        self.operationQueued.emit(op)
        return op

    def remove_operation(self, operation_id: str) -> bool:
        """Remove the operation with ``operation_id``.

        Returns:
            bool: True if an operation was removed, False if none matched.
        """
        remaining = [op for op in self._operations if op.id != operation_id]
        if len(remaining) == len(self._operations):
            logging.debug(f'No pending operation with id "{operation_id}", nothing to remove.')
            return False

        self._operations = remaining
        logging.debug(f'Removed {operation_id}; queue size: {len(self._operations)}')

        self._persist()
        self.operationRemoved.emit(operation_id)
        return True

    def is_pending(self, collection: Union[Collection, str], item_id: Any = None) -> bool:
        """Check whether the queue holds an operation for ``collection``.

        Args:
            collection: Collection to look for.
            item_id: When given, the operation must also target this item,
                either through ``data['id']`` or as a delete-by-id payload.
        """
        for op in self._operations:
            if op.collection != collection:
                continue
            if item_id is None:
                return True
            if isinstance(op.data, dict) and op.data.get('id') == item_id:
                return True
            if op.data == item_id:
                return True
        return False

    def cleanup_invalid_operations(self) -> int:
        """Drop ``update`` operations older than the configured number of days.

        Add and delete operations are kept regardless of age.

        Returns:
            int: The number of operations removed.
        """
        max_age = lib.settings['stale_days'] * MS_PER_DAY
        now = self.clock()

        remaining = [
            op for op in self._operations
            if not (op.operation_type == OperationType.Update and now - op.timestamp > max_age)
        ]
        removed = len(self._operations) - len(remaining)
        if not removed:
            return 0

        logging.warning(f'Discarding {removed} stale update operation(s) older than {lib.settings["stale_days"]} days.')
        self._operations = remaining
        self._persist()
        return removed

    def clear_all(self) -> None:
        """Empty the queue and remove it from storage. Cleared operations are not replayed."""
        if self._operations:
            logging.warning(f'Clearing {len(self._operations)} pending operation(s) without replay.')
        self._operations = []
        self.repository.delete()
        self.queueChanged.emit(0)
