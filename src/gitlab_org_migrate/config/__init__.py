"""Configuration loading."""

from .config import Config, GitLabInstanceConfig, LoggingConfig, MigrationConfig

__all__ = ['Config', 'GitLabInstanceConfig', 'LoggingConfig', 'MigrationConfig']
