"""Status definitions and exceptions for ExpenseSync.

This module provides:
    - Status: enumeration of possible application states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - background: context manager keeping exceptions out of the user-facing error signal
    - Specific exceptions (e.g., SyncFailedException) for error handling in services
"""
import contextlib
import enum
import logging
import threading
from typing import Dict, Iterator


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Config status
    ConfigNotFound = enum.auto()
    ConfigInvalid = enum.auto()

    # Authentication status
    ClientSecretNotFound = enum.auto()
    ClientSecretInvalid = enum.auto()
    CredsNotFound = enum.auto()
    CredsInvalid = enum.auto()
    NotAuthenticated = enum.auto()

    # Remote store status
    SpreadsheetIdNotConfigured = enum.auto()
    WorksheetNotFound = enum.auto()
    ServiceUnavailable = enum.auto()
    DocumentNotFound = enum.auto()
    AccountNotFound = enum.auto()

    # Local status
    StorageUnavailable = enum.auto()
    CollectionUnknown = enum.auto()

    # Sync status
    SyncFailed = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status. Please check the settings.',
    Status.Okay: 'Everything is okay.',

    Status.ConfigNotFound: 'Could not find the config file.',
    Status.ConfigInvalid: 'The config seems to be incomplete, or contains invalid values.',

    Status.ClientSecretNotFound: 'Could not find the google client secret. Have you set up a valid Google client secret?',
    Status.ClientSecretInvalid: 'Could not verify the client secret. Have you set up a valid Google client secret?',
    Status.CredsNotFound: 'Could not find the credentials. Please sign in to your Google account.',
    Status.CredsInvalid: 'Could not verify the credentials. Please sign in again to your Google account.',
    Status.NotAuthenticated: 'Authentication error. Try signing in again to your Google account.',

    Status.SpreadsheetIdNotConfigured: 'Could not find a valid spreadsheet id. Have you set up a valid spreadsheet id in the settings?',
    Status.WorksheetNotFound: 'Could not find the worksheet. Have you set up valid collection worksheets in the settings?',
    Status.ServiceUnavailable: 'The remote service is unavailable. Please check your connection.',
    Status.DocumentNotFound: 'The document could not be found in the remote store.',
    Status.AccountNotFound: 'The account could not be found.',

    Status.StorageUnavailable: 'The local storage is unavailable or corrupted.',
    Status.CollectionUnknown: 'The collection is not known.',

    Status.SyncFailed: 'Some pending operations could not be synchronized.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


_local = threading.local()


@contextlib.contextmanager
def background() -> Iterator[None]:
    """Raise status exceptions quietly while the block runs.

    Exceptions created inside the block are still logged but do not emit
    ``signals.error``, which is reserved for errors the user caused.
    Blocks nest and are per thread.
    """
    _local.depth = getattr(_local, 'depth', 0) + 1
    try:
        yield
    finally:
        _local.depth -= 1


def in_background() -> bool:
    return getattr(_local, 'depth', 0) > 0


class BaseStatusException(Exception):
    """Base exception for status-based errors in ExpenseSync.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.error(exception_message)

        if in_background():
            return

        from ..signals import signals
        signals.error.emit(message or self.status_message)


class UnknownException(BaseStatusException):
    """Exception for an unknown error during status processing."""
    pass


class ConfigNotFoundException(BaseStatusException):
    """Exception raised when the configuration file cannot be found."""
    status = Status.ConfigNotFound


class ConfigInvalidException(BaseStatusException):
    """Exception raised when the configuration is invalid or malformed."""
    status = Status.ConfigInvalid


class ClientSecretNotFoundException(BaseStatusException):
    """Exception raised when the Google OAuth client secret file cannot be found."""
    status = Status.ClientSecretNotFound


class ClientSecretInvalidException(BaseStatusException):
    """Exception raised when the Google OAuth client secret is invalid or malformed."""
    status = Status.ClientSecretInvalid


class CredsNotFoundException(BaseStatusException):
    """Exception raised when stored Google credentials cannot be found."""
    status = Status.CredsNotFound


class CredsInvalidException(BaseStatusException):
    """Exception raised when stored Google credentials are invalid or expired."""
    status = Status.CredsInvalid


class AuthenticationExceptionException(BaseStatusException):
    """Exception raised when user is not authenticated with Google services."""
    status = Status.NotAuthenticated


class SpreadsheetIdNotConfiguredException(BaseStatusException):
    """Exception raised when the spreadsheet ID is not configured in settings."""
    status = Status.SpreadsheetIdNotConfigured


class WorksheetNotFoundException(BaseStatusException):
    """Exception raised when a collection's worksheet cannot be accessed."""
    status = Status.WorksheetNotFound


class ServiceUnavailableException(BaseStatusException):
    """Exception raised when the remote service cannot be reached."""
    status = Status.ServiceUnavailable


class DocumentNotFoundException(BaseStatusException):
    """Exception raised when a document id does not exist in a remote collection."""
    status = Status.DocumentNotFound


class AccountNotFoundException(BaseStatusException):
    """Exception raised when an account id cannot be resolved."""
    status = Status.AccountNotFound


class StorageUnavailableException(BaseStatusException):
    """Exception raised when the local key-value storage cannot be read or written."""
    status = Status.StorageUnavailable


class CollectionUnknownException(BaseStatusException):
    """Exception raised when an operation targets an unconfigured collection."""
    status = Status.CollectionUnknown


class SyncFailedException(BaseStatusException):
    """Exception raised when one or more pending operations failed to replay."""
    status = Status.SyncFailed
