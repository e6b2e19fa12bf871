"""Configuration management for GitLab Org Migrate."""

from typing import Optional, Dict, Any
from pathlib import Path
import os

from pydantic import BaseModel, Field, root_validator, validator
import yaml
from dotenv import load_dotenv

from loguru import logger


class GitLabInstanceConfig(BaseModel):
    """Configuration for a GitLab instance."""

    host: str = Field(..., description='GitLab host name, optionally with port')
    token: str = Field(..., description='Personal access token')
    scheme: str = Field(default='http', description='URL scheme (http or https)')
    timeout: int = Field(default=30, description='Request timeout in seconds')

    class Config:
        """Pydantic configuration."""

        frozen = True

    @root_validator(pre=True)
    def split_scheme_from_host(cls, values):
        """Accept a full URL as host and move its scheme to ``scheme``.

        A scheme written into the host replaces any separate ``scheme`` value.
        """
        host = values.get('host')
        if isinstance(host, str) and '://' in host:
            scheme, _, rest = host.partition('://')
            values = dict(values)
            values['host'] = rest
            values['scheme'] = scheme
        return values

    @validator('host')
    def validate_host(cls, v):
        """Validate host is not empty."""
        v = v.strip().rstrip('/')
        if not v:
            raise ValueError('Host must not be empty')
        return v

    @validator('token')
    def validate_token(cls, v):
        """Validate token is not empty."""
        if not v or not v.strip():
            raise ValueError('Token must not be empty')
        return v.strip()

    @validator('scheme')
    def validate_scheme(cls, v):
        """Validate URL scheme."""
        v = v.lower()
        if v not in ('http', 'https'):
            raise ValueError('Scheme must be http or https')
        return v

    @validator('timeout')
    def validate_timeout(cls, v):
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError('Timeout must be positive')
        return v

    @property
    def url(self) -> str:
        return f'{self.scheme}://{self.host}'

    @property
    def api_url(self) -> str:
        return f'{self.url}/api/v4'


class MigrationConfig(BaseModel):
    """Migration-specific configuration."""

    users: bool = Field(default=True, description='Migrate users')
    groups: bool = Field(default=True, description='Migrate groups')
    memberships: bool = Field(default=True, description='Migrate group memberships')
    namespaces: bool = Field(default=True, description='Migrate namespaces')
    projects: bool = Field(default=True, description='Migrate projects')

    # Resilient client
    retry_attempts: int = Field(default=3, description='Attempts per API call')
    retry_initial_delay: float = Field(
        default=1.0, description='First backoff wait in seconds, doubled per retry'
    )
    transfer_timeout: int = Field(
        default=300, description='Timeout for archive download and upload'
    )

    # Pacing between calls, in seconds
    page_delay: float = Field(default=1.0, description='Pause between listing pages')
    create_delay: float = Field(default=1.0, description='Pause before each create')
    export_delay: float = Field(default=2.0, description='Pause before an export')
    import_delay: float = Field(default=3.0, description='Pause before an import')
    project_delay: float = Field(default=5.0, description='Pause between projects')
    reconcile_delay: float = Field(
        default=10.0, description='Pause before checking import results'
    )

    # Export polling
    poll_interval: float = Field(default=10.0, description='Seconds between polls')
    max_polls: int = Field(default=60, description='Export status polls per project')

    project_workers: int = Field(
        default=1, description='Projects migrated concurrently'
    )
    run_timeout: Optional[float] = Field(
        default=None, description='Cancel outstanding work after this many seconds'
    )
    work_dir: str = Field(
        default='gitlab_migration', description='Base directory for run workspaces'
    )

    @validator('retry_attempts', 'max_polls', 'project_workers')
    def validate_positive_count(cls, v):
        """Validate counts are positive."""
        if v <= 0:
            raise ValueError('Value must be positive')
        return v

    @validator(
        'retry_initial_delay',
        'page_delay',
        'create_delay',
        'export_delay',
        'import_delay',
        'project_delay',
        'reconcile_delay',
        'poll_interval',
    )
    def validate_delay(cls, v):
        """Validate pauses are not negative."""
        if v < 0:
            raise ValueError('Delays must not be negative')
        return v

    @validator('run_timeout')
    def validate_run_timeout(cls, v):
        """Validate run timeout is positive when set."""
        if v is not None and v <= 0:
            raise ValueError('Run timeout must be positive')
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default='INFO', description='Console log level')
    file: Optional[str] = Field(
        default=None, description='Extra log file path besides the run log'
    )
    format: Optional[str] = Field(default=None, description='Console log format')

    @validator('level')
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'SUCCESS', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()


class Config(BaseModel):
    """Main configuration class for GitLab Org Migrate."""

    source: GitLabInstanceConfig = Field(..., description='Source GitLab instance')
    destination: GitLabInstanceConfig = Field(
        ..., description='Destination GitLab instance'
    )
    migration: MigrationConfig = Field(
        default_factory=MigrationConfig, description='Migration settings'
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description='Logging settings'
    )

    class Config:
        """Pydantic configuration."""

        extra = 'forbid'  # Don't allow extra fields

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """Load configuration from YAML file."""
        return cls(**cls._file_data(config_path))

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        return cls(**cls._env_data())

    @classmethod
    def load(
        cls, config_path: Optional[str] = None, **overrides: Optional[str]
    ) -> 'Config':
        """Layer environment, configuration file and command line values.

        Later sources win per key: a file value replaces the environment one
        and a command line value replaces both. The result is validated once.

        Args:
            config_path: Optional YAML configuration file
            **overrides: Command line values accepted by ``with_overrides``
        """
        data = cls._env_data()
        if config_path:
            data = cls._merge(data, cls._file_data(config_path))
        return cls(**cls._apply_overrides(data, **overrides))

    @staticmethod
    def _file_data(config_path: str) -> Dict[str, Any]:
        config_file = Path(config_path)

        if not config_file.exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        return Config._remove_none_values(config_data)

    @staticmethod
    def _env_data() -> Dict[str, Any]:
        # Load .env file if it exists
        load_dotenv()

        scheme = os.getenv('GITLAB_SCHEME')
        config_data = {
            'source': {
                'host': os.getenv('SOURCE_GITLAB_HOST'),
                'token': os.getenv('SOURCE_GITLAB_TOKEN'),
                'scheme': scheme,
            },
            'destination': {
                'host': os.getenv('DEST_GITLAB_HOST'),
                'token': os.getenv('DEST_GITLAB_TOKEN'),
                'scheme': scheme,
            },
            'migration': {
                'work_dir': os.getenv('MIGRATION_WORK_DIR'),
                'project_workers': os.getenv('MIGRATION_PROJECT_WORKERS'),
            },
            'logging': {
                'level': os.getenv('LOG_LEVEL'),
                'file': os.getenv('LOG_FILE'),
            },
        }

        # Remove None values
        return Config._remove_none_values(config_data)

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

    @staticmethod
    def _merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge ``update`` into a copy of ``base``."""
        merged = dict(base)
        for key, value in update.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = Config._merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    @staticmethod
    def _apply_overrides(
        data: Dict[str, Any],
        source_host: Optional[str] = None,
        source_token: Optional[str] = None,
        dest_host: Optional[str] = None,
        dest_token: Optional[str] = None,
        scheme: Optional[str] = None,
    ) -> Dict[str, Any]:
        data = dict(data)
        for section, host, token in (
            ('source', source_host, source_token),
            ('destination', dest_host, dest_token),
        ):
            values = dict(data.get(section) or {})
            if scheme is not None:
                values['scheme'] = scheme
                # a scheme left in a stored host would beat the flag
                stored = values.get('host')
                if isinstance(stored, str) and '://' in stored:
                    values['host'] = stored.partition('://')[2]
            if host is not None:
                values['host'] = host
            if token is not None:
                values['token'] = token
            data[section] = values
        return data

    def with_overrides(
        self,
        source_host: Optional[str] = None,
        source_token: Optional[str] = None,
        dest_host: Optional[str] = None,
        dest_token: Optional[str] = None,
        scheme: Optional[str] = None,
    ) -> 'Config':
        """Return a copy with command line values taking precedence.

        A host given with a scheme (``https://host``) keeps that scheme.
        """
        data = self._apply_overrides(
            self.dict(),
            source_host=source_host,
            source_token=source_token,
            dest_host=dest_host,
            dest_token=dest_token,
            scheme=scheme,
        )
        return Config(**data)

    @classmethod
    def from_options(
        cls,
        source_host: str,
        source_token: str,
        dest_host: str,
        dest_token: str,
        scheme: Optional[str] = None,
    ) -> 'Config':
        """Build a configuration from command line values only."""
        return cls(
            **cls._apply_overrides(
                {},
                source_host=source_host,
                source_token=source_token,
                dest_host=dest_host,
                dest_token=dest_token,
                scheme=scheme,
            )
        )

    def to_file(self, config_path: str) -> None:
        """Save configuration to YAML file."""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                self.dict(), f, default_flow_style=False, indent=2, sort_keys=False
            )

    def validate_connectivity(self) -> bool:
        """Validate that both GitLab instances are reachable with their tokens."""
        from ..api.client import GitLabClientFactory

        reachable = True
        for role, instance in (('source', self.source), ('destination', self.destination)):
            with GitLabClientFactory.create_client(instance) as client:
                version = client.get_version()
                if version is None:
                    logger.error(f'{role} instance {instance.url} did not report a version')
                    reachable = False
                    continue
                logger.info(f'{role} instance {instance.url} runs GitLab {version}')

                if not client.test_connection():
                    reachable = False

        return reachable

    @staticmethod
    def create_template(output_path: str) -> None:
        """Create a configuration template file."""
        template_config = {
            'source': {
                'host': 'gitlab-source.example.com',
                'token': 'your-source-personal-access-token',
                'scheme': 'https',
                'timeout': 30,
            },
            'destination': {
                'host': 'gitlab-dest.example.com',
                'token': 'your-destination-personal-access-token',
                'scheme': 'https',
                'timeout': 30,
            },
            'migration': {
                'users': True,
                'groups': True,
                'memberships': True,
                'namespaces': True,
                'projects': True,
                'retry_attempts': 3,
                'retry_initial_delay': 1.0,
                'poll_interval': 10.0,
                'max_polls': 60,
                'project_workers': 1,
                'work_dir': 'gitlab_migration',
            },
            'logging': {
                'level': 'INFO',
                'file': None,
            },
        }

        config_file = Path(output_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                template_config, f, default_flow_style=False, indent=2, sort_keys=False
            )
