"""Configuration management for site-sync."""

from typing import Optional, Dict, Any
from pathlib import Path
import os

from pydantic import BaseModel, Field, validator
import yaml
from dotenv import load_dotenv


DEFAULT_AGENT_PATH = '/wp-json/wp-sync-manager/v1'


class ShellCredential(BaseModel):
    """Remote shell access to an installation."""

    host: str = Field(..., description='SSH host name')
    port: int = Field(default=22, description='SSH port')
    username: str = Field(..., description='SSH user')
    password: Optional[str] = Field(default=None, description='SSH password')
    private_key: Optional[str] = Field(
        default=None, description='Path to a private key file'
    )
    root_path: Optional[str] = Field(
        default=None,
        description='Installation root on the remote host (discovered if unset)',
    )
    agent_command: str = Field(
        default='site-sync agent',
        description='Command that runs the remote agent on the host',
    )

    @validator('port')
    def validate_port(cls, v):
        """Validate port range."""
        if not 0 < v < 65536:
            raise ValueError('Port must be between 1 and 65535')
        return v

    @validator('private_key', always=True)
    def validate_auth_complete(cls, v, values):
        """Ensure a password or a private key is provided."""
        if not v and not values.get('password'):
            raise ValueError('Either password or private_key must be provided')
        return v


class DatabaseCredential(BaseModel):
    """Direct database access to an installation."""

    host: str = Field(default='localhost', description='Database host')
    port: int = Field(default=3306, description='Database port')
    user: str = Field(..., description='Database user')
    password: str = Field(default='', description='Database password')
    name: str = Field(..., description='Database (schema) name')
    driver: str = Field(
        default='mysql+pymysql', description='SQLAlchemy dialect+driver'
    )

    def to_url(self) -> str:
        """Build an SQLAlchemy connection URL."""
        return (
            f'{self.driver}://{self.user}:{self.password}'
            f'@{self.host}:{self.port}/{self.name}'
        )


class EnvironmentConfig(BaseModel):
    """One managed installation acting as sync source or target."""

    url: str = Field(default='', description='Installation base URL')
    username: str = Field(default='', description='Owner-level user name')
    app_token: str = Field(default='', description='Long-lived application token')
    shell: Optional[ShellCredential] = Field(
        default=None, description='Optional remote shell access'
    )
    database: Optional[DatabaseCredential] = Field(
        default=None, description='Optional database access'
    )
    agent_path: str = Field(
        default=DEFAULT_AGENT_PATH, description='Remote agent path on the site'
    )

    @validator('url')
    def validate_url(cls, v):
        """Normalize base URL, defaulting to https when no scheme is given."""
        v = (v or '').strip()
        if not v:
            return ''
        if not v.startswith(('http://', 'https://')):
            v = 'https://' + v
        return v.rstrip('/')

    @validator('agent_path')
    def validate_agent_path(cls, v):
        """Ensure the agent path is absolute without a trailing slash."""
        return '/' + v.strip('/')

    @property
    def agent_url(self) -> str:
        """Base URL of the remote agent."""
        return self.url + self.agent_path

    @property
    def label(self) -> str:
        """Short label used in log messages."""
        if self.url:
            return self.url
        if self.shell:
            return f'ssh://{self.shell.username}@{self.shell.host}'
        return '<unconfigured>'


class TransportConfig(BaseModel):
    """Transport settings."""

    control_timeout: int = Field(
        default=30, description='Timeout for control calls in seconds'
    )
    bulk_timeout: int = Field(
        default=600, description='Timeout for bulk transfers in seconds'
    )
    verify_ssl: bool = Field(
        default=True, description='Verify TLS certificates of remote agents'
    )
    registry_url: str = Field(
        default='https://api.wordpress.org',
        description='Public extension/theme registry API',
    )

    @validator('control_timeout', 'bulk_timeout')
    def validate_timeout(cls, v):
        """Validate timeouts are positive."""
        if v <= 0:
            raise ValueError('Timeouts must be positive')
        return v


class SyncConfig(BaseModel):
    """Sync engine settings."""

    temp_dir: Optional[str] = Field(
        default=None,
        description='Directory for staging artifacts. Defaults to system temp.',
    )
    state_dir: str = Field(
        default='.site-sync/operations',
        description='Directory holding persisted sync operations',
    )
    poll_interval: float = Field(
        default=2.0, description='Status polling interval in seconds'
    )
    poll_timeout: float = Field(
        default=3600.0, description='Give up polling after this many seconds'
    )

    @validator('temp_dir')
    def validate_temp_dir(cls, v):
        """Validate temp directory path."""
        if v is not None:
            temp_path = Path(v)
            if not temp_path.is_absolute():
                raise ValueError('temp_dir must be an absolute path')
            temp_path.mkdir(parents=True, exist_ok=True)
        return v

    @validator('poll_interval', 'poll_timeout')
    def validate_poll(cls, v):
        """Validate polling settings are positive."""
        if v <= 0:
            raise ValueError('Polling settings must be positive')
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default='INFO', description='Log level')
    file: Optional[str] = Field(default=None, description='Log file path')
    format: str = Field(
        default='{time:YYYY-MM-DD HH:mm:ss} | {level} | {name} | {message}',
        description='Log format',
    )

    @validator('level')
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()


class Config(BaseModel):
    """Main configuration class for site-sync."""

    source: EnvironmentConfig = Field(..., description='Source installation')
    target: EnvironmentConfig = Field(..., description='Target installation')
    transport: TransportConfig = Field(
        default_factory=TransportConfig, description='Transport settings'
    )
    sync: SyncConfig = Field(
        default_factory=SyncConfig, description='Sync engine settings'
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description='Logging settings'
    )

    class Config:
        """Pydantic configuration."""

        extra = 'forbid'

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """Load configuration from YAML file."""
        config_file = Path(config_path)

        if not config_file.exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)

        return cls(**config_data)

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config_data = {
            'source': cls._environment_from_env('SOURCE'),
            'target': cls._environment_from_env('TARGET'),
            'transport': {
                'control_timeout': int(os.getenv('SYNC_CONTROL_TIMEOUT', 30)),
                'bulk_timeout': int(os.getenv('SYNC_BULK_TIMEOUT', 600)),
                'verify_ssl': os.getenv('SYNC_VERIFY_SSL', 'true').lower() == 'true',
                'registry_url': os.getenv('SYNC_REGISTRY_URL'),
            },
            'sync': {
                'temp_dir': os.getenv('SYNC_TEMP_DIR'),
                'state_dir': os.getenv('SYNC_STATE_DIR'),
            },
            'logging': {
                'level': os.getenv('LOG_LEVEL', 'INFO'),
                'file': os.getenv('LOG_FILE'),
            },
        }

        config_data = cls._remove_none_values(config_data)

        return cls(**config_data)

    @staticmethod
    def _environment_from_env(prefix: str) -> Dict[str, Any]:
        """Read one environment block from ``<PREFIX>_SITE_*`` variables."""
        data: Dict[str, Any] = {
            'url': os.getenv(f'{prefix}_SITE_URL', ''),
            'username': os.getenv(f'{prefix}_SITE_USER', ''),
            'app_token': os.getenv(f'{prefix}_SITE_TOKEN', ''),
            'agent_path': os.getenv(f'{prefix}_AGENT_PATH'),
        }

        ssh_host = os.getenv(f'{prefix}_SSH_HOST')
        if ssh_host:
            data['shell'] = {
                'host': ssh_host,
                'port': int(os.getenv(f'{prefix}_SSH_PORT', 22)),
                'username': os.getenv(f'{prefix}_SSH_USER', ''),
                'password': os.getenv(f'{prefix}_SSH_PASSWORD'),
                'private_key': os.getenv(f'{prefix}_SSH_KEY'),
                'root_path': os.getenv(f'{prefix}_SSH_ROOT'),
            }

        db_name = os.getenv(f'{prefix}_DB_NAME')
        if db_name:
            data['database'] = {
                'host': os.getenv(f'{prefix}_DB_HOST', 'localhost'),
                'user': os.getenv(f'{prefix}_DB_USER', ''),
                'password': os.getenv(f'{prefix}_DB_PASSWORD', ''),
                'name': db_name,
            }

        return data

    @staticmethod
    def _remove_none_values(data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively remove None values from dictionary."""
        if isinstance(data, dict):
            return {
                k: Config._remove_none_values(v)
                for k, v in data.items()
                if v is not None
            }
        return data

    def to_file(self, config_path: str) -> None:
        """Save configuration to YAML file."""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                self.dict(), f, default_flow_style=False, indent=2, sort_keys=False
            )

    @staticmethod
    def create_template(output_path: str) -> None:
        """Create a configuration template file."""
        template_config = {
            'source': {
                'url': 'https://dev.example.com',
                'username': 'admin',
                'app_token': 'xxxx xxxx xxxx xxxx xxxx xxxx',
                'shell': {
                    'host': 'dev.example.com',
                    'port': 22,
                    'username': 'deploy',
                    'private_key': '/home/deploy/.ssh/id_ed25519',
                    'root_path': '/var/www/html',
                },
            },
            'target': {
                'url': 'https://www.example.com',
                'username': 'admin',
                'app_token': 'xxxx xxxx xxxx xxxx xxxx xxxx',
                'agent_path': DEFAULT_AGENT_PATH,
            },
            'transport': {
                'control_timeout': 30,
                'bulk_timeout': 600,
                'verify_ssl': True,
            },
            'sync': {
                'temp_dir': '/tmp/site-sync',
                'state_dir': '.site-sync/operations',
            },
            'logging': {
                'level': 'INFO',
                'file': 'site-sync.log',
                'format': '{time:YYYY-MM-DD HH:mm:ss} | {level} | {name} | {message}',
            },
        }

        config_file = Path(output_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                template_config, f, default_flow_style=False, indent=2, sort_keys=False
            )
