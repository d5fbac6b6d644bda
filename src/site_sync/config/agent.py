"""Configuration for the remote agent that runs on each installation."""

import hmac
from typing import List, Optional
from pathlib import Path

from pydantic import BaseModel, Field, validator
import yaml

from .config import DEFAULT_AGENT_PATH


class AgentCredential(BaseModel):
    """A user name / application token pair accepted by the agent."""

    username: str = Field(..., description='User name')
    token: str = Field(..., description='Application token')
    is_admin: bool = Field(
        default=True, description='Whether the user may run sync operations'
    )


class LayoutConfig(BaseModel):
    """Where an installation keeps its artifacts, relative to the root."""

    extensions_dir: str = Field(
        default='wp-content/plugins', description='Extensions directory'
    )
    themes_dir: str = Field(default='wp-content/themes', description='Themes directory')
    media_dir: str = Field(
        default='wp-content/uploads', description='Media storage root'
    )


class SettingsTableConfig(BaseModel):
    """Key/value settings table layout."""

    table: str = Field(default='wp_options', description='Settings table name')
    key_column: str = Field(default='option_name', description='Key column')
    value_column: str = Field(default='option_value', description='Value column')
    active_extensions_key: str = Field(
        default='active_plugins',
        description='Setting holding the JSON list of active extensions',
    )
    active_theme_key: str = Field(
        default='stylesheet', description='Setting holding the active theme'
    )


class MediaTableConfig(BaseModel):
    """Media record and metadata table layout."""

    records_table: str = Field(default='wp_posts', description='Media records table')
    record_id_column: str = Field(default='ID', description='Record primary key')
    type_column: str = Field(default='post_type', description='Record type column')
    type_value: str = Field(default='attachment', description='Media record type')
    meta_table: str = Field(default='wp_postmeta', description='Metadata table')
    meta_id_column: str = Field(default='meta_id', description='Metadata primary key')
    meta_record_column: str = Field(
        default='post_id', description='Metadata column referencing the record'
    )
    meta_key_column: str = Field(default='meta_key', description='Metadata key')
    meta_value_column: str = Field(default='meta_value', description='Metadata value')
    path_meta_key: str = Field(
        default='_wp_attached_file',
        description='Metadata key holding the storage-relative file path',
    )


class AgentConfig(BaseModel):
    """Remote agent configuration."""

    root_path: str = Field(..., description='Installation root directory')
    database_url: str = Field(..., description='SQLAlchemy URL of the site database')
    credentials: List[AgentCredential] = Field(
        default_factory=list, description='Accepted credentials'
    )
    layout: LayoutConfig = Field(default_factory=LayoutConfig)
    settings: SettingsTableConfig = Field(default_factory=SettingsTableConfig)
    media: MediaTableConfig = Field(default_factory=MediaTableConfig)

    host: str = Field(default='127.0.0.1', description='HTTP listen address')
    port: int = Field(default=8765, description='HTTP listen port')
    agent_path: str = Field(
        default=DEFAULT_AGENT_PATH, description='Path prefix of the HTTP surface'
    )
    registry_url: str = Field(
        default='https://api.wordpress.org',
        description='Public extension/theme registry API',
    )

    class Config:
        """Pydantic configuration."""

        extra = 'forbid'

    @validator('root_path')
    def validate_root_path(cls, v):
        """Installation root must be absolute."""
        if not Path(v).is_absolute():
            raise ValueError('root_path must be an absolute path')
        return v

    @validator('agent_path')
    def validate_agent_path(cls, v):
        """Ensure the agent path is absolute without a trailing slash."""
        return '/' + v.strip('/')

    @classmethod
    def from_file(cls, config_path: str) -> 'AgentConfig':
        """Load agent configuration from YAML file."""
        config_file = Path(config_path)

        if not config_file.exists():
            raise FileNotFoundError(
                f'Agent configuration file not found: {config_path}'
            )

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)

        return cls(**config_data)

    def find_credential(self, username: str, token: str) -> Optional[AgentCredential]:
        """Return the matching credential, if any."""
        for credential in self.credentials:
            if credential.username == username and hmac.compare_digest(
                credential.token.encode('utf-8'), token.encode('utf-8')
            ):
                return credential
        return None
