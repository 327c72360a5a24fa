"""Google Sheets API client helpers.

Provides a cached Sheets service client, worksheet metadata queries and a
batched worksheet reader used by :class:`ExpenseSync.core.remote.SheetsRemoteStore`.
"""

import logging
import socket
import ssl
from typing import Any, Dict, List, Optional, Tuple

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .auth import auth_manager
from ..status import status

# Cached Sheets API client to avoid repeated discovery/auth costs
_cached_service: Any = None

BATCH_SIZE: int = 3000  # Number of rows per batch for large sheets
SHEET_FIELDS: str = 'sheets(properties(sheetId,title,gridProperties(rowCount,columnCount)))'


def idx_to_col(idx: int) -> str:
    """Convert zero-based column index to spreadsheet letter(s).

    Args:
        idx: The zero-based column index.

    Returns:
        The spreadsheet column letter(s) (e.g., A, B, AA).
    """
    letters = ''
    while idx >= 0:
        letters = chr((idx % 26) + ord('A')) + letters
        idx = idx // 26 - 1
    return letters


def clear_service() -> None:
    """
    Clears the cached Sheets API client.
    """
    global _cached_service

    try:
        if _cached_service:
            _cached_service.close()
    except Exception as ex:
        logging.debug(f'Failed closing cached Sheets service client: {ex}')

    _cached_service = None


def get_service() -> Any:
    """
    Builds (or returns cached) Google Sheets service client.

    Returns:
        The Sheets API Resource, reusing a single client per app run.

    Raises:
        AuthExpiredError: If interactive sign-in is required.
        status.ServiceUnavailableException: If the client cannot be built.
    """
    global _cached_service
    creds: Any = auth_manager.get_valid_credentials()
    if _cached_service is not None:
        return _cached_service
    try:
        service: Any = build('sheets', 'v4', credentials=creds)
        logging.debug('Google Sheets service client created successfully.')
        _cached_service = service
        return service
    except Exception as ex:
        raise status.ServiceUnavailableException from ex


def get_spreadsheet_id() -> str:
    """Return the configured spreadsheet id.

    Raises:
        status.SpreadsheetIdNotConfiguredException: If no id is configured.
    """
    from ..settings import lib

    spreadsheet_id: Optional[str] = lib.settings.get_section('spreadsheet').get('id', None)
    if not spreadsheet_id:
        raise status.SpreadsheetIdNotConfiguredException
    return spreadsheet_id


def to_service_exception(ex: Exception, spreadsheet_id: str) -> status.BaseStatusException:
    """Map a transport or HTTP error to a status exception."""
    if isinstance(ex, HttpError):
        stat: Optional[int] = ex.resp.status if ex.resp else None
        if stat == 404:
            return status.ServiceUnavailableException(
                f'Spreadsheet "{spreadsheet_id}" not found (HTTP 404).'
            )
        if stat == 403:
            return status.ServiceUnavailableException(
                f'Access denied (HTTP 403) for spreadsheet "{spreadsheet_id}". '
                'Please share the sheet with your authenticated Google account.'
            )
        return status.ServiceUnavailableException(f'Error accessing spreadsheet "{spreadsheet_id}": {ex}')
    if isinstance(ex, socket.timeout):
        return status.ServiceUnavailableException(f'Timeout error accessing the Sheets API: {ex}')
    if isinstance(ex, ssl.SSLError):
        return status.ServiceUnavailableException(f'SSL error accessing the Sheets API: {ex}')
    return status.ServiceUnavailableException(str(ex))


def query_sheet_properties(service: Any, spreadsheet_id: str, worksheet_name: str) -> Dict[str, Any]:
    """
    Queries the properties of a worksheet.

    Args:
        service: The Sheets API resource.
        spreadsheet_id (str): Spreadsheet ID.
        worksheet_name (str): Worksheet title.

    Returns:
        The worksheet's ``properties`` dict (sheetId, title, gridProperties).

    Raises:
        WorksheetNotFoundException: If the worksheet doesn't exist.
        ServiceUnavailableException: If the API request fails.
    """
    try:
        result: Dict[str, Any] = service.spreadsheets().get(
            spreadsheetId=spreadsheet_id,
            fields=SHEET_FIELDS
        ).execute()
    except (HttpError, socket.timeout, ssl.SSLError) as ex:
        raise to_service_exception(ex, spreadsheet_id) from ex

    if not result:
        raise status.ServiceUnavailableException('No result returned from the Sheets API.')

    sheet: Optional[Dict[str, Any]] = next(
        (s for s in result.get('sheets', [])
         if s.get('properties', {}).get('title', '') == worksheet_name), None)
    if not sheet:
        raise status.WorksheetNotFoundException(
            f'Worksheet "{worksheet_name}" not found in spreadsheet "{spreadsheet_id}".')
    return sheet.get('properties', {})


def query_sheet_size(service: Any, spreadsheet_id: str, worksheet_name: str) -> Tuple[int, int]:
    """
    Queries the worksheet's grid size.

    Returns:
        A tuple (row_count, column_count).
    """
    grid_props: Dict[str, Any] = query_sheet_properties(
        service, spreadsheet_id, worksheet_name).get('gridProperties', {})
    return grid_props.get('rowCount', 0), grid_props.get('columnCount', 0)


def fetch_worksheet(
        service: Any,
        spreadsheet_id: str,
        worksheet_name: str,
        value_render_option: str = 'UNFORMATTED_VALUE'
) -> Tuple[List[str], List[List[Any]]]:
    """
    Retrieves the header row and all data rows of a worksheet.

    Rows are fetched in batches of ``BATCH_SIZE``.

    Returns:
        A tuple of (header, rows). Both are empty when the sheet is empty.
    """
    row_count, col_count = query_sheet_size(service, spreadsheet_id, worksheet_name)
    if row_count < 1 or col_count < 1:
        logging.warning(f'Worksheet "{worksheet_name}" is empty.')
        return [], []

    last_col: str = idx_to_col(col_count - 1)
    data_ranges: List[str] = []
    data_start: int = 1
    while data_start <= row_count:
        data_end: int = min(data_start + BATCH_SIZE - 1, row_count)
        data_ranges.append(f'{worksheet_name}!A{data_start}:{last_col}{data_end}')
        data_start = data_end + 1

    logging.debug(f'Fetching rows 1-{row_count} of "{worksheet_name}" in {len(data_ranges)} batch(es).')
    try:
        batch_result: Dict[str, Any] = service.spreadsheets().values().batchGet(
            spreadsheetId=spreadsheet_id,
            ranges=data_ranges,
            valueRenderOption=value_render_option,
            fields='valueRanges(values)'
        ).execute()
    except (HttpError, socket.timeout, ssl.SSLError) as ex:
        raise to_service_exception(ex, spreadsheet_id) from ex

    data_rows: List[List[Any]] = []
    for vr in batch_result.get('valueRanges', []):
        values: List[List[Any]] = vr.get('values', [])
        if values:
            data_rows.extend(values)

    if not data_rows:
        return [], []

    header: List[str] = [str(cell) for cell in data_rows.pop(0)]
    logging.debug(f'Fetched {len(data_rows)} data row(s) from "{worksheet_name}".')
    return header, data_rows
