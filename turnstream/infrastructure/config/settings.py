"""
Configuration settings - Infrastructure component for managing application configuration.
Uses pydantic-settings for validation and environment variable loading.
"""

from __future__ import annotations
from typing import Optional, List, Dict, Any, Annotated

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_HIDDEN_NODE_PREFIXES = "GATE_,ROUTER_,STYLE_Check_,SET_,CLEAR_,CODE_,ANSWER_,Check "


def _split_csv(v: Any) -> List[str]:
    if v is None:
        return []
    if isinstance(v, str):
        # leading/trailing spaces are significant for prefixes like "Check "
        return [item.lstrip() for item in v.split(',') if item.strip()]
    return [str(item) for item in v]


class BackendSettings(BaseSettings):
    """Workflow backend (Dify) connection configuration."""

    model_config = SettingsConfigDict(env_prefix='DIFY_', env_file='.env', extra='ignore')

    api_key: Optional[str] = None
    api_url: Optional[str] = None
    user_id: str = 'cli-user'

    # Timeout settings
    connect_timeout_s: float = 5.0
    read_timeout_s: float = 600.0
    stop_timeout_s: float = 5.0

    @field_validator('api_url')
    @classmethod
    def normalize_api_url(cls, v):
        """Strip whitespace and the trailing slash from the base URL."""
        if v is None:
            return None
        v = v.strip().rstrip('/')
        return v or None

    @field_validator('api_key')
    @classmethod
    def normalize_api_key(cls, v):
        if v is None:
            return None
        return v.strip() or None


class StreamSettings(BaseSettings):
    """Stream engine configuration."""

    model_config = SettingsConfigDict(env_prefix='STREAM_', env_file='.env', extra='ignore')

    display_grace_ms: int = 300
    hidden_node_prefixes: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: _split_csv(DEFAULT_HIDDEN_NODE_PREFIXES)
    )

    @field_validator('display_grace_ms')
    @classmethod
    def validate_grace(cls, v):
        """Keep the grace window within a sane range."""
        return max(0, min(v, 5000))

    @field_validator('hidden_node_prefixes', mode='before')
    @classmethod
    def parse_hidden_prefixes(cls, v):
        """Parse comma-separated node title prefixes."""
        return _split_csv(v)


class PrivacySettings(BaseSettings):
    """Privacy vault configuration."""

    model_config = SettingsConfigDict(env_prefix='PRIVACY_', env_file='.env', extra='ignore')

    enabled: bool = True
    exclude_categories: Annotated[List[str], NoDecode] = Field(default_factory=list)

    @field_validator('exclude_categories', mode='before')
    @classmethod
    def parse_exclude_categories(cls, v):
        """Parse comma-separated detection ids."""
        return [item.strip().lower() for item in _split_csv(v) if item.strip()]


class AppSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(env_file='.env', extra='ignore', populate_by_name=True)

    # Sub-configurations
    backend: BackendSettings = Field(default_factory=BackendSettings)
    stream: StreamSettings = Field(default_factory=StreamSettings)
    privacy: PrivacySettings = Field(default_factory=PrivacySettings)

    # CLI settings
    quiet: bool = Field(False, validation_alias=AliasChoices('quiet', 'CLI_QUIET'))
    show_trace: bool = Field(False, validation_alias=AliasChoices('show_trace', 'CLI_SHOW_TRACE'))

    # Logging
    log_level: str = Field('INFO', validation_alias=AliasChoices('log_level', 'LOG_LEVEL'))
    log_format: str = Field(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        validation_alias=AliasChoices('log_format', 'LOG_FORMAT'),
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            return 'INFO'
        return v.upper()

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to a dictionary with the API key masked."""
        backend = self.backend.model_dump()
        if backend.get('api_key'):
            backend['api_key'] = '***'
        return {
            'backend': backend,
            'stream': self.stream.model_dump(),
            'privacy': self.privacy.model_dump(),
            'quiet': self.quiet,
            'show_trace': self.show_trace,
            'log_level': self.log_level,
        }

    def validate_required_settings(self) -> List[str]:
        """Validate required settings and return list of missing ones."""
        missing = []

        if not self.backend.api_key:
            missing.append('DIFY_API_KEY')
        if not self.backend.api_url:
            missing.append('DIFY_API_URL')

        return missing


# Global settings instance
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    """Get global settings instance (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


def reload_settings() -> AppSettings:
    """Reload settings from environment (for testing)."""
    global _settings
    _settings = AppSettings()
    return _settings
