##########################################################################################
#
# Module: config/settings.py
#
# Description: Application settings and configuration management.
#
# Author: Cornelis Networks
#
##########################################################################################

import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Logging config - follows jira_utils.py pattern
log = logging.getLogger(os.path.basename(sys.argv[0]))

DEFAULT_CUSTOM_FIELD_1 = 'customfield_27101'
DEFAULT_CUSTOM_FIELD_2 = 'customfield_10704'


def _env_bool(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class Settings:
    '''
    Application settings loaded from environment variables.
    '''
    # Jira settings
    jira_url: Optional[str] = None
    jira_api_token: Optional[str] = None
    jira_debug: bool = False
    jira_read_timeout: float = 60.0
    jira_page_size: int = 1000

    # Business specific custom fields exported as two extra columns
    custom_field_1: str = DEFAULT_CUSTOM_FIELD_1
    custom_field_1_label: str = 'Custom Field 1'
    custom_field_2: str = DEFAULT_CUSTOM_FIELD_2
    custom_field_2_label: str = 'Custom Field 2'

    # Export
    export_dir: str = 'exports'

    # Logging
    log_file: str = 'jira_export.log'
    log_level: str = 'DEBUG'

    @classmethod
    def from_env(cls) -> 'Settings':
        '''
        Create settings from environment variables.

        Output:
            Settings instance populated from environment.
        '''
        return cls(
            # Jira
            jira_url=os.getenv('JIRA_URL'),
            jira_api_token=os.getenv('JIRA_API_TOKEN'),
            jira_debug=_env_bool('JIRA_DEBUG'),
            jira_read_timeout=float(os.getenv('JIRA_READ_TIMEOUT', '60')),
            jira_page_size=int(os.getenv('JIRA_PAGE_SIZE', '1000')),

            # Custom fields
            custom_field_1=os.getenv('JIRA_CUSTOM_FIELD_1', DEFAULT_CUSTOM_FIELD_1),
            custom_field_1_label=os.getenv('JIRA_CUSTOM_FIELD_1_LABEL', 'Custom Field 1'),
            custom_field_2=os.getenv('JIRA_CUSTOM_FIELD_2', DEFAULT_CUSTOM_FIELD_2),
            custom_field_2_label=os.getenv('JIRA_CUSTOM_FIELD_2_LABEL', 'Custom Field 2'),

            # Export
            export_dir=os.getenv('JIRA_EXPORT_DIR', 'exports'),

            # Logging
            log_file=os.getenv('LOG_FILE', 'jira_export.log'),
            log_level=os.getenv('LOG_LEVEL', 'DEBUG'),
        )

    def validate(self) -> bool:
        '''
        Validate that required settings are present.

        Output:
            True if all required settings are valid.

        Raises:
            ValueError: If required settings are missing.
        '''
        errors = []

        if not self.jira_url:
            errors.append('JIRA_URL is required')
        if not self.jira_api_token:
            errors.append('JIRA_API_TOKEN is required')
        if self.jira_page_size <= 0:
            errors.append('JIRA_PAGE_SIZE must be a positive integer')
        if self.jira_read_timeout <= 0:
            errors.append('JIRA_READ_TIMEOUT must be greater than zero')

        if errors:
            for error in errors:
                log.error(f'Configuration error: {error}')
            raise ValueError(f'Configuration errors: {", ".join(errors)}')

        return True

    @property
    def custom_fields(self):
        '''Ordered (field_id, column_label) pairs for the two custom columns.'''
        return (
            (self.custom_field_1, self.custom_field_1_label),
            (self.custom_field_2, self.custom_field_2_label),
        )

    def to_dict(self) -> Dict[str, Any]:
        '''Convert settings to dictionary (masking sensitive values).'''
        return {
            'jira_url': self.jira_url,
            'jira_api_token': '***' if self.jira_api_token else None,
            'jira_debug': self.jira_debug,
            'jira_read_timeout': self.jira_read_timeout,
            'jira_page_size': self.jira_page_size,
            'custom_field_1': self.custom_field_1,
            'custom_field_2': self.custom_field_2,
            'export_dir': self.export_dir,
            'log_file': self.log_file,
        }


# Global settings instance
_settings: Optional[Settings] = None


def get_settings(reload: bool = False) -> Settings:
    '''
    Get the global settings instance.

    Input:
        reload: Rebuild the instance from the environment (after a new .env load).

    Output:
        Settings instance (creates from environment if not exists).
    '''
    global _settings
    if _settings is None or reload:
        _settings = Settings.from_env()
    return _settings
