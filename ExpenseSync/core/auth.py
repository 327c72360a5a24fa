"""
Google OAuth2 credential management.

Loads, refreshes and stores the credentials used by the Sheets remote store.
Background sync only ever uses :meth:`AuthManager.get_valid_credentials`, which
never opens a browser; :func:`authenticate` runs the installed-app flow and is
only reached from an explicit sign-in request (``Session.sign_in`` or the
``--sign-in`` command line flag).
"""

import logging
import threading
from typing import Optional

import google.auth.exceptions
import google.auth.transport.requests
import google.oauth2.credentials
import google_auth_oauthlib.flow

from ..status import status

DEFAULT_SCOPES = ['https://www.googleapis.com/auth/spreadsheets', ]


class AuthExpiredError(Exception):
    """Raised when credentials are missing or expired and require interactive sign-in."""
    pass


class AuthManager:
    """Manages OAuth2 credentials with thread-safe refresh."""

    def __init__(self):
        self._lock = threading.Lock()
        self._creds: Optional[google.oauth2.credentials.Credentials] = None

    def get_valid_credentials(self) -> google.oauth2.credentials.Credentials:
        """
        Return valid credentials without any user interaction.

        Raises:
            AuthExpiredError: if no credentials exist or a full interactive flow is required.
            status.AuthenticationExceptionException: if an auto-refresh fails.
            status.CredsInvalidException: if stored credentials are corrupt.
        """
        from ..settings import lib
        with self._lock:
            if self._creds is None:
                if not lib.settings.creds_path.exists():
                    raise AuthExpiredError(
                        'No credentials found; interactive authentication required')
                try:
                    self._creds = google.oauth2.credentials.Credentials.from_authorized_user_file(
                        str(lib.settings.creds_path))
                except ValueError as ex:
                    # Corrupt credentials are removed so the next sign-in starts clean
                    lib.settings.creds_path.unlink(missing_ok=True)
                    raise status.CredsInvalidException('Failed to load credentials') from ex

            if self._creds.expired:
                if self._creds.refresh_token:
                    try:
                        self._creds.refresh(
                            google.auth.transport.requests.Request())
                        save_creds(self._creds)
                    except google.auth.exceptions.GoogleAuthError as ex:
                        raise status.AuthenticationExceptionException(
                            'Failed to auto-refresh credentials') from ex
                else:
                    raise AuthExpiredError(
                        'Credentials expired; interactive authentication required')

            return self._creds

    def set_credentials(self, creds: Optional[google.oauth2.credentials.Credentials]) -> None:
        with self._lock:
            self._creds = creds

    def reset(self) -> None:
        """Forget cached credentials so the next call reloads them from disk."""
        self.set_credentials(None)


auth_manager = AuthManager()


def save_creds(creds: google.oauth2.credentials.Credentials) -> None:
    """
    Save OAuth2 credentials to the configured token file.

    Args:
        creds: Credentials to save.
    """
    from ..settings import lib
    lib.settings.creds_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lib.settings.creds_path, 'w', encoding='utf-8') as token_file:
        token_file.write(creds.to_json())

    logging.debug(f'Credentials saved to {lib.settings.creds_path}.')


def authenticate(open_browser: bool = True, port: int = 0) -> google.oauth2.credentials.Credentials:
    """
    Sign in interactively with the installed-app flow.

    The resulting credentials are written to ``creds_path`` and handed to
    :data:`auth_manager`, so the next sync picks them up without a restart.

    Args:
        open_browser: Open the consent page in the default browser. When False the
            URL is only logged, for hosts without a desktop session.
        port: Local redirect port, 0 picks a free one.

    Raises:
        status.ClientSecretNotFoundException: No client_secret.json is configured.
        status.ClientSecretInvalidException: client_secret.json lacks required fields.
        status.AuthenticationExceptionException: The flow failed or was abandoned.
        status.CredsInvalidException: The flow returned unusable credentials.
    """
    from ..settings import lib
    from . import service

    if not lib.settings.client_secret_path.exists():
        raise status.ClientSecretNotFoundException
    client_config = lib.settings.load_client_secret()

    flow = google_auth_oauthlib.flow.InstalledAppFlow.from_client_config(client_config, scopes=DEFAULT_SCOPES)
    logging.info('Waiting for Google sign-in to complete in the browser...')
    try:
        creds = flow.run_local_server(port=port, open_browser=open_browser)
    except Exception as ex:
        raise status.AuthenticationExceptionException(f'Sign-in did not complete: {ex}') from ex

    if creds is None:
        raise status.AuthenticationExceptionException('Sign-in returned no credentials.')
    if not creds.valid:
        raise status.CredsInvalidException('Sign-in returned invalid credentials.')

    save_creds(creds)
    auth_manager.set_credentials(creds)
    # The cached client was built with the old credentials
    service.clear_service()

    logging.info('Signed in to Google.')
    return creds


def sign_out() -> None:
    """Forget the cached and stored credentials."""
    from ..settings import lib
    from . import service

    auth_manager.reset()
    service.clear_service()

    lib.settings.creds_path.unlink(missing_ok=True)
    logging.info('Signed out of Google.')
