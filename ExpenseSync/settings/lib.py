"""Settings library for sync and authentication configurations.

Provides:
    - Schema validation and enforcement for config.json structure.
    - Loading, saving, reverting, and managing application settings.
    - Constants for collection names and sync tuning keys.
"""

import json
import logging
import pathlib
import shutil
from typing import Dict, Any, Optional, List

from PySide6 import QtCore

from ..status import status

app_name: str = 'ExpenseSync'

FINANCE_COLLECTIONS: List[str] = ['incomes', 'expenses']
COLLECTION_KEYS: List[str] = FINANCE_COLLECTIONS + ['accounts', ]

SYNC_KEYS: List[str] = [
    'periodic_interval',
    'min_interval',
    'stale_days',
    'max_queue_size',
    'failure_clear_threshold',
]

CONFIG_SCHEMA: Dict[str, Any] = {
    'spreadsheet': {
        'type': dict,
        'required': True,
        'item_schema': {
            'id': {'type': str, 'required': True},
        }
    },
    'collections': {
        'type': dict,
        'required': True,
        'required_keys': COLLECTION_KEYS,
        'value_type': str,
    },
    'sync': {
        'type': dict,
        'required': True,
        'required_keys': SYNC_KEYS,
        'item_schema': {
            'periodic_interval': {'type': int, 'required': True},
            'min_interval': {'type': int, 'required': True},
            'stale_days': {'type': int, 'required': True},
            'max_queue_size': {'type': int, 'required': True},
            'failure_clear_threshold': {'type': int, 'required': True},
        }
    },
}


def _validate_spreadsheet(spreadsheet_dict: Dict[str, Any], item_schema: Dict[str, Any]) -> None:
    """Validate the 'spreadsheet' section of the configuration.

    Args:
        spreadsheet_dict: Mapping holding the spreadsheet id.
        item_schema: Schema for each field of the section.

    Raises:
        ValueError: If a required field is missing.
        TypeError: If a field has the wrong type.
    """
    logging.debug('Validating "spreadsheet" section.')
    for field, field_spec in item_schema.items():
        if field_spec.get('required') and field not in spreadsheet_dict:
            msg: str = f'spreadsheet is missing required field "{field}".'
            logging.error(msg)
            raise ValueError(msg)
        if field in spreadsheet_dict and not isinstance(spreadsheet_dict[field], field_spec['type']):
            msg = f'spreadsheet field "{field}" must be {field_spec["type"]}.'
            logging.error(msg)
            raise TypeError(msg)


def _validate_collections(collections_dict: Dict[str, Any], specs: Dict[str, Any]) -> None:
    """Validate the 'collections' section of the configuration.

    Every known collection must map to a non-empty worksheet name, and no two
    collections may share a worksheet.

    Args:
        collections_dict: Mapping from collection name to worksheet title.
        specs: Schema dict containing 'required_keys' and 'value_type'.

    Raises:
        ValueError: If keys are missing, values are empty or duplicated.
        TypeError: If a worksheet name is not a string.
    """
    logging.debug('Validating "collections" section.')
    missing = set(specs['required_keys']) - set(collections_dict.keys())
    if missing:
        msg: str = f'collections is missing keys {sorted(missing)}.'
        logging.error(msg)
        raise ValueError(msg)

    for key, val in collections_dict.items():
        if not isinstance(val, specs['value_type']):
            msg = f'Worksheet for collection "{key}" must be a string.'
            logging.error(msg)
            raise TypeError(msg)
        if not val.strip():
            msg = f'Worksheet for collection "{key}" must not be empty.'
            logging.error(msg)
            raise ValueError(msg)

    worksheets = [v.strip() for v in collections_dict.values()]
    if len(set(worksheets)) != len(worksheets):
        msg = f'Collections must use distinct worksheets, got {worksheets}.'
        logging.error(msg)
        raise ValueError(msg)


def _validate_sync(sync_dict: Dict[str, Any], specs: Dict[str, Any]) -> None:
    """Validate the 'sync' section of the configuration.

    Args:
        sync_dict: Mapping of sync tuning keys to integer values.
        specs: Schema dict containing 'required_keys' and 'item_schema'.

    Raises:
        ValueError: If keys are missing or a value is not positive.
        TypeError: If a value is not an integer.
    """
    logging.debug('Validating "sync" section.')
    missing = set(specs['required_keys']) - set(sync_dict.keys())
    if missing:
        msg: str = f'sync is missing keys {sorted(missing)}.'
        logging.error(msg)
        raise ValueError(msg)

    for key, field_spec in specs['item_schema'].items():
        v = sync_dict[key]
        # bool is an int subclass but never a valid interval
        if isinstance(v, bool) or not isinstance(v, field_spec['type']):
            msg = f'sync field "{key}" must be {field_spec["type"]}, got {type(v)}.'
            logging.error(msg)
            raise TypeError(msg)
        if v <= 0:
            msg = f'sync field "{key}" must be positive, got {v}.'
            logging.error(msg)
            raise ValueError(msg)


class ConfigPaths:
    """Manage application file paths and ensure default templates and directories exist.

    This class initializes paths for configuration templates, the local store database,
    and credentials. It verifies the presence of template assets and prepares
    default configuration files by copying them into the user data directory.
    """

    def __init__(self) -> None:
        QtCore.QCoreApplication.setApplicationName(app_name)
        QtCore.QCoreApplication.setOrganizationName('')
        logging.debug(f'Setting application name: {app_name}')

        p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
        app_data_dir = pathlib.Path(p)
        logging.debug(f'Using app data directory: {app_data_dir}')

        self.template_dir: pathlib.Path = pathlib.Path(__file__).parent.parent / 'config'
        self.client_secret_template: pathlib.Path = self.template_dir / 'client_secret.json.template'
        self.config_template: pathlib.Path = self.template_dir / 'config.json.template'

        self.config_dir: pathlib.Path = app_data_dir / 'config'
        self.auth_dir: pathlib.Path = self.config_dir / 'auth'
        self.db_dir: pathlib.Path = self.config_dir / 'db'

        self.client_secret_path: pathlib.Path = self.config_dir / 'client_secret.json'
        self.config_path: pathlib.Path = self.config_dir / 'config.json'
        self.creds_path: pathlib.Path = self.auth_dir / 'creds.json'
        self.db_path: pathlib.Path = self.db_dir / 'store.db'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Verify templates exist and prepare configuration directories and files.

        Raises:
            FileNotFoundError: If required template directory or file is missing.
        """
        logging.debug(f'Verifying required directories and templates in {self.template_dir}')
        if not self.template_dir.exists():
            msg: str = f'Missing template directory: {self.template_dir}'
            logging.error(msg)
            raise FileNotFoundError(msg)
        if not self.client_secret_template.exists():
            msg = f'Missing client_secret template: {self.client_secret_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)
        if not self.config_template.exists():
            msg = f'Missing config template: {self.config_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)

        for d in (self.config_dir, self.auth_dir, self.db_dir):
            if not d.exists():
                logging.debug(f'Creating directory: {d}')
                d.mkdir(parents=True, exist_ok=True)

        # Ensure valid configs exists even if we haven't yet set them up
        if not self.client_secret_path.exists():
            logging.debug(f'Copying default client_secret from template to {self.client_secret_path}')
            shutil.copy(self.client_secret_template, self.client_secret_path)
        if not self.config_path.exists():
            logging.debug(f'Copying default config from template to {self.config_path}')
            shutil.copy(self.config_template, self.config_path)

    def revert_config_to_template(self) -> None:
        """Restore config.json from the default template file."""
        logging.debug(f'Reverting config to template: {self.config_template}')
        shutil.copy(self.config_template, self.config_path)

    def revert_client_secret_to_template(self) -> None:
        """Restore client_secret.json from the default template file."""
        logging.debug(f'Reverting client_secret to template: {self.client_secret_template}')
        shutil.copy(self.client_secret_template, self.client_secret_path)


class SettingsAPI(ConfigPaths):
    """
    Provides an interface to get/set/revert/save config.json sections and client_secret.json.
    """
    required_client_secret_keys: List[str] = ['client_id', 'project_id', 'client_secret', 'auth_uri', 'token_uri']

    def __init__(self, config_path: Optional[str] = None, client_secret_path: Optional[str] = None) -> None:
        """Initialize SettingsAPI and load config and client_secret data.

        Args:
            config_path: Optional path to a custom config.json file.
            client_secret_path: Optional path to a custom client_secret.json file.
        """
        super().__init__()

        self.config_path: pathlib.Path = pathlib.Path(config_path) if config_path else self.config_path
        self.client_secret_path: pathlib.Path = (
            pathlib.Path(client_secret_path)
            if client_secret_path
            else self.client_secret_path
        )

        self._signals_blocked: bool = False

        self.config_data: Dict[str, Any] = {k: {} for k in CONFIG_SCHEMA}
        self.client_secret_data: Dict[str, Any] = {}

        self.init_data()

    def __getitem__(self, key: str) -> int:
        """Retrieve a sync tuning value using dictionary-style access.

        Args:
            key: One of SYNC_KEYS.

        Raises:
            KeyError: If key is not a sync key.
        """
        if key not in SYNC_KEYS:
            raise KeyError(f'Invalid sync key: {key}, must be one of {SYNC_KEYS}')
        return self.config_data['sync'][key]

    def __setitem__(self, key: str, value: Any) -> None:
        """Assign and persist a sync tuning value.

        Args:
            key: One of SYNC_KEYS.
            value: Positive integer (converted when possible).

        Raises:
            KeyError: If key is not a sync key.
            ValueError: If the value cannot be used.
        """
        if key not in SYNC_KEYS:
            raise KeyError(f'Invalid sync key: {key}, must be one of {SYNC_KEYS}')

        if not isinstance(value, int):
            logging.warning(f'Sync key "{key}" is not of type int, got {type(value)}.')
            value = int(value)

        section = dict(self.config_data['sync'])
        section[key] = value
        _validate_sync(section, CONFIG_SCHEMA['sync'])

        self.config_data['sync'] = section
        self.save_section('sync')

        if self._signals_blocked:
            return

        from ..signals import signals
        signals.configSectionChanged.emit('sync')

    def block_signals(self, v: bool) -> None:
        """Enable or disable emission of configuration change signals."""
        self._signals_blocked = v

    @QtCore.Slot()
    def init_data(self) -> None:
        """Reload config and client_secret data, emitting change signals."""
        self.load_config()
        self.load_client_secret()

        from ..signals import signals
        signals.configSectionChanged.emit('client_secret')
        for section in CONFIG_SCHEMA.keys():
            signals.configSectionChanged.emit(section)

    def load_config(self) -> Dict[str, Any]:
        """Load config.json from disk and validate against schema.

        Returns:
            The loaded config data dictionary.

        Raises:
            status.ConfigNotFoundException: If config.json file is missing.
            status.ConfigInvalidException: If JSON parsing or validation fails.
        """
        logging.debug(f'Loading config from "{self.config_path}"')
        if not self.config_path.exists():
            raise status.ConfigNotFoundException

        try:
            with self.config_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
            self.validate_config_data(data)
            self.config_data = data
            return self.config_data
        except status.ConfigInvalidException:
            raise
        except Exception as ex:
            raise status.ConfigInvalidException(str(ex)) from ex

    def load_client_secret(self) -> Dict[str, Any]:
        """Load client_secret.json from disk and validate required OAuth fields.

        Returns:
            The loaded client secret data dictionary.

        Raises:
            FileNotFoundError: If client_secret.json file is missing.
            status.ClientSecretInvalidException: If JSON parsing or required fields are missing.
        """
        logging.debug(f'Loading client_secret from "{self.client_secret_path}"')
        if not self.client_secret_path.exists():
            msg: str = f'Client secret file not found: {self.client_secret_path}'
            logging.error(msg)
            raise FileNotFoundError(msg)
        try:
            with self.client_secret_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
        except (ValueError, json.JSONDecodeError) as ex:
            raise status.ClientSecretInvalidException from ex

        self.validate_client_secret(data)
        self.client_secret_data = data
        return self.client_secret_data

    def validate_client_secret(self, data=None) -> str:
        """Validate that the client configuration contains required OAuth credentials.

        Args:
            data (dict, optional): Client secret data to validate. Defaults to loaded client_secret_data.

        Returns:
            str: Section key used ('installed' or 'web').

        Raises:
            status.ClientSecretInvalidException: If no valid client_secret section exists or required fields are missing.
        """
        if data is None:
            data = self.client_secret_data

        key = next((k for k in ('installed', 'web') if k in data), None)
        if not key:
            raise status.ClientSecretInvalidException('Missing "installed" or "web" section in client_secret.')

        config_section: Dict[str, Any] = data[key]
        missing: List[str] = [k for k in self.required_client_secret_keys if k not in config_section]
        if missing:
            raise status.ClientSecretInvalidException(
                f'Missing required fields in the \'{key}\' section: {missing}.'
            )
        return key

    def validate_config_data(self, data: Dict[str, Any] = None) -> None:
        """Validate config data against the defined CONFIG_SCHEMA.

        Args:
            data (dict, optional): Config data to validate. Defaults to self.config_data.

        Raises:
            status.ConfigInvalidException: If a required section is missing or validation fails.
        """
        if data is None:
            data = self.config_data
        if not data:
            raise status.ConfigInvalidException('Config data is empty.')

        logging.debug('Validating config data against schema.')
        for field, specs in CONFIG_SCHEMA.items():
            if specs.get('required') and field not in data:
                raise status.ConfigInvalidException(f'Missing required field: {field}')

            if not isinstance(data[field], specs['type']):
                raise status.ConfigInvalidException(
                    f'Field "{field}" must be {specs["type"]}, got {type(data[field])}.'
                )

            try:
                if field == 'spreadsheet':
                    _validate_spreadsheet(data[field], specs['item_schema'])
                elif field == 'collections':
                    _validate_collections(data[field], specs)
                elif field == 'sync':
                    _validate_sync(data[field], specs)
            except (ValueError, TypeError) as ex:
                raise status.ConfigInvalidException(str(ex)) from ex

        logging.debug('Config data is valid.')

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Retrieve a copy of configuration data for a config or client_secret section.

        Raises:
            KeyError: If section_name is not in config_data.
        """
        if section_name == 'client_secret':
            return self.client_secret_data.copy()

        return self.config_data[section_name].copy()

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Replace, validate and persist a configuration section.

        The previous section data is restored when validation fails.

        Raises:
            ValueError: If section_name is unrecognized.
            status.ConfigInvalidException: If the new data fails validation.
        """
        from ..signals import signals

        if section_name == 'client_secret':
            logging.debug('Setting entire client_secret data.')
            self.validate_client_secret(new_data)
            self.client_secret_data = new_data
            self.save_section('client_secret')

            signals.configSectionChanged.emit(section_name)
            return

        if section_name not in self.config_data:
            msg: str = f'Unknown section_name for set: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        current_section_data: Dict[str, Any] = self.config_data[section_name].copy()

        self.config_data[section_name] = new_data
        try:
            self.validate_config_data()
        except status.ConfigInvalidException:
            logging.error(f'Validation error on set_section("{section_name}"), restoring previous data.')
            self.config_data[section_name] = current_section_data
            raise

        self.save_section(section_name)
        if not self._signals_blocked:
            signals.configSectionChanged.emit(section_name)

    def reload_section(self, section_name: str) -> None:
        """Reload a configuration section from its source file and emit change signal.

        Raises:
            ValueError: If section_name is unrecognized.
            status.ConfigInvalidException: If reloaded data fails validation.
        """
        from ..signals import signals

        if section_name == 'client_secret':
            logging.debug('Reloading client_secret from disk.')
            self.load_client_secret()
            return

        if section_name not in self.config_data:
            msg: str = f'Unknown section_name for reload: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        logging.debug(f'Reloading section "{section_name}" from disk.')
        with self.config_path.open('r', encoding='utf-8') as f:
            data: Dict[str, Any] = json.load(f)
        self.validate_config_data(data=data)
        self.config_data[section_name] = data[section_name]

        signals.configSectionChanged.emit(section_name)

    def revert_section(self, section_name: str) -> None:
        """Revert a configuration section to its template default and save.

        Raises:
            ValueError: If section_name is invalid or not present in the template.
        """
        from ..signals import signals

        if section_name == 'client_secret':
            self.revert_client_secret_to_template()
            self.load_client_secret()
            return

        if section_name not in self.config_data:
            msg: str = f'Unknown section_name for revert: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        with self.config_template.open('r', encoding='utf-8') as f:
            template_data: Dict[str, Any] = json.load(f)

        if section_name not in template_data:
            msg = f'No template-based revert logic for section "{section_name}".'
            logging.error(msg)
            raise ValueError(msg)

        self.config_data[section_name] = template_data[section_name]
        self.save_section(section_name)

        signals.configSectionChanged.emit(section_name)

    def save_section(self, section_name: str) -> None:
        """Persist a single configuration section to its corresponding file.

        Raises:
            ValueError: If section_name is not recognized.
        """
        if section_name == 'client_secret':
            logging.debug(f'Saving client_secret to "{self.client_secret_path}"')
            self.validate_client_secret(self.client_secret_data)
            with self.client_secret_path.open('w', encoding='utf-8') as f:
                json.dump(self.client_secret_data, f, indent=4, ensure_ascii=False)
            return

        if section_name not in self.config_data:
            msg: str = f'Unknown section_name for save: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        with self.config_path.open('r', encoding='utf-8') as f:
            original_data: Dict[str, Any] = json.load(f)

        new_data: Dict[str, Any] = original_data.copy()
        new_data[section_name] = self.config_data[section_name]

        with self.config_path.open('w', encoding='utf-8') as f:
            json.dump(new_data, f, indent=4, ensure_ascii=False)


settings: SettingsAPI = SettingsAPI()
