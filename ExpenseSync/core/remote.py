"""Remote document store.

:class:`RemoteStore` is the interface the finance and account services use to
read and mutate collections. :class:`SheetsRemoteStore` implements it on a
Google Sheets spreadsheet: each collection is a worksheet whose first row is a
header containing an ``id`` column, and every following row is one document.
"""
import abc
import logging
import socket
import ssl
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from googleapiclient.errors import HttpError

from . import service
from ..settings import lib
from ..status import status

ID_FIELD = 'id'


class RemoteStore(abc.ABC):
    """Document store holding one list of documents per collection."""

    @abc.abstractmethod
    def list_documents(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Return the documents of ``collection`` whose fields equal every value in ``filters``."""

    @abc.abstractmethod
    def add_document(self, collection: str, data: Dict[str, Any]) -> str:
        """Create a document and return its id."""

    @abc.abstractmethod
    def update_document(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Merge ``data`` into an existing document."""

    @abc.abstractmethod
    def delete_document(self, collection: str, doc_id: str) -> None:
        """Delete a document."""


def new_document_id() -> str:
    return uuid.uuid4().hex


def matches(doc: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    if not filters:
        return True
    return all(doc.get(k) == v for k, v in filters.items())


class SheetsRemoteStore(RemoteStore):
    """Google Sheets implementation of :class:`RemoteStore`.

    Args:
        get_service: Callable returning a Sheets API resource.
    """

    def __init__(self, get_service: Callable[[], Any] = service.get_service) -> None:
        self._get_service = get_service

    @staticmethod
    def worksheet(collection: str) -> str:
        """Return the worksheet title configured for ``collection``.

        Raises:
            status.CollectionUnknownException: If the collection is not configured.
        """
        config = lib.settings.get_section('collections')
        if collection not in config:
            raise status.CollectionUnknownException(f'No worksheet configured for "{collection}".')
        return config[collection]

    def _load(self, collection: str) -> Tuple[Any, str, str, List[str], List[List[Any]]]:
        svc = self._get_service()
        spreadsheet_id = service.get_spreadsheet_id()
        worksheet = self.worksheet(collection)
        header, rows = service.fetch_worksheet(svc, spreadsheet_id, worksheet)
        return svc, spreadsheet_id, worksheet, header, rows

    @staticmethod
    def _to_document(header: List[str], row: List[Any]) -> Dict[str, Any]:
        # Sheets omits trailing empty cells
        padded = list(row) + [''] * (len(header) - len(row))
        return {h: v for h, v in zip(header, padded) if h}

    @staticmethod
    def _to_row(header: List[str], doc: Dict[str, Any]) -> List[Any]:
        unknown = set(doc) - set(header)
        if unknown:
            logging.debug(f'Ignoring fields without a matching column: {sorted(unknown)}')
        return ['' if doc.get(h) is None else doc[h] for h in header]

    @staticmethod
    def _find_row(header: List[str], rows: List[List[Any]], worksheet: str, doc_id: str) -> int:
        """Return the zero-based index of ``doc_id`` within ``rows``.

        Raises:
            status.WorksheetNotFoundException: If the header has no id column.
            status.DocumentNotFoundException: If no row holds ``doc_id``.
        """
        if ID_FIELD not in header:
            raise status.WorksheetNotFoundException(f'Worksheet "{worksheet}" has no "{ID_FIELD}" column.')
        col = header.index(ID_FIELD)
        for idx, row in enumerate(rows):
            if len(row) > col and str(row[col]) == str(doc_id):
                return idx
        raise status.DocumentNotFoundException(f'"{doc_id}" not found in "{worksheet}".')

    def list_documents(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        _, _, worksheet, header, rows = self._load(collection)
        docs = [self._to_document(header, row) for row in rows]
        docs = [d for d in docs if matches(d, filters)]
        logging.debug(f'Listed {len(docs)} document(s) from "{worksheet}".')
        return docs

    def add_document(self, collection: str, data: Dict[str, Any]) -> str:
        svc, spreadsheet_id, worksheet, header, _ = self._load(collection)

        doc = dict(data)
        if not doc.get(ID_FIELD):
            doc[ID_FIELD] = new_document_id()

        values: List[List[Any]] = []
        if not header:
            header = [ID_FIELD] + [k for k in doc if k != ID_FIELD]
            values.append(header)
            logging.info(f'Initializing header of "{worksheet}": {header}')
        elif ID_FIELD not in header:
            raise status.WorksheetNotFoundException(f'Worksheet "{worksheet}" has no "{ID_FIELD}" column.')
        values.append(self._to_row(header, doc))

        try:
            svc.spreadsheets().values().append(
                spreadsheetId=spreadsheet_id,
                range=f'{worksheet}!A1',
                valueInputOption='RAW',
                insertDataOption='INSERT_ROWS',
                body={'values': values}
            ).execute()
        except (HttpError, socket.timeout, ssl.SSLError) as ex:
            raise service.to_service_exception(ex, spreadsheet_id) from ex

        logging.debug(f'Added document "{doc[ID_FIELD]}" to "{worksheet}".')
        return str(doc[ID_FIELD])

    def update_document(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        svc, spreadsheet_id, worksheet, header, rows = self._load(collection)
        idx = self._find_row(header, rows, worksheet, doc_id)

        doc = self._to_document(header, rows[idx])
        doc.update(data)
        doc[ID_FIELD] = doc_id

        row_number = idx + 2  # header is row 1
        last_col = service.idx_to_col(len(header) - 1)
        try:
            svc.spreadsheets().values().batchUpdate(
                spreadsheetId=spreadsheet_id,
                body={
                    'valueInputOption': 'RAW',
                    'data': [{
                        'range': f'{worksheet}!A{row_number}:{last_col}{row_number}',
                        'values': [self._to_row(header, doc)],
                    }],
                }
            ).execute()
        except (HttpError, socket.timeout, ssl.SSLError) as ex:
            raise service.to_service_exception(ex, spreadsheet_id) from ex

        logging.debug(f'Updated document "{doc_id}" in "{worksheet}" (row {row_number}).')

    def delete_document(self, collection: str, doc_id: str) -> None:
        svc, spreadsheet_id, worksheet, header, rows = self._load(collection)
        idx = self._find_row(header, rows, worksheet, doc_id)

        sheet_id = service.query_sheet_properties(svc, spreadsheet_id, worksheet).get('sheetId', 0)
        start = idx + 1  # zero-based grid index, skipping the header
        try:
            svc.spreadsheets().batchUpdate(
                spreadsheetId=spreadsheet_id,
                body={
                    'requests': [{
                        'deleteDimension': {
                            'range': {
                                'sheetId': sheet_id,
                                'dimension': 'ROWS',
                                'startIndex': start,
                                'endIndex': start + 1,
                            }
                        }
                    }]
                }
            ).execute()
        except (HttpError, socket.timeout, ssl.SSLError) as ex:
            raise service.to_service_exception(ex, spreadsheet_id) from ex

        logging.debug(f'Deleted document "{doc_id}" from "{worksheet}".')
