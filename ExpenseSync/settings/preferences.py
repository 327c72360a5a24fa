"""Per-user preferences stored in the local key-value store.

Stored preferences are merged over :data:`DEFAULT_PREFERENCES` on read, so
every default key is always present.
"""
import copy
import logging
from typing import Any, Dict, Optional

from ..core.storage import KeyValueStore
from ..status import status

PREFERENCES_KEY = 'billexpress-user-preferences'

DEFAULT_PREFERENCES: Dict[str, Any] = {
    'reminders': {
        'showDueReminders': True,
        'showUpcomingReminders': True,
    },
}


def preferences_key(user_id: Optional[str] = None) -> str:
    return f'{PREFERENCES_KEY}-{user_id}' if user_id else PREFERENCES_KEY


def merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``base`` updated with ``overrides``, merging nested dicts."""
    result = copy.deepcopy(base)
    for k, v in overrides.items():
        if isinstance(v, dict) and isinstance(result.get(k), dict):
            result[k] = merge(result[k], v)
        else:
            result[k] = copy.deepcopy(v)
    return result


def get_user_preferences(store: KeyValueStore, user_id: Optional[str] = None) -> Dict[str, Any]:
    """Return the preferences of ``user_id``, falling back to the defaults when unreadable."""
    try:
        saved = store.get(preferences_key(user_id))
    except (status.StorageUnavailableException, ValueError) as ex:
        logging.error(f'Could not load preferences, using defaults: {ex}')
        return copy.deepcopy(DEFAULT_PREFERENCES)

    if not isinstance(saved, dict):
        return copy.deepcopy(DEFAULT_PREFERENCES)
    return merge(DEFAULT_PREFERENCES, saved)


def save_user_preferences(
        store: KeyValueStore,
        preferences: Dict[str, Any],
        user_id: Optional[str] = None
) -> Dict[str, Any]:
    """Merge ``preferences`` into the stored preferences of ``user_id`` and save them.

    Returns:
        The saved preferences.
    """
    updated = merge(get_user_preferences(store, user_id), preferences)
    store.set(preferences_key(user_id), updated)
    logging.debug(f'Saved preferences for "{user_id or "anonymous"}".')
    return updated


def reset_user_preferences(store: KeyValueStore, user_id: Optional[str] = None) -> None:
    store.remove(preferences_key(user_id))
