"""
Configuration data models for tasksync.

These models define the structure of .tasksync.json and
~/.config/tasksync/config.json files, with validation and type safety via
Pydantic.
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RemoteConfig(BaseModel):
    """
    Remote store connection and call policy.

    The timeout and retry settings bound how long a mutation can stay
    pending before it is aborted.
    """
    base_url: Optional[str] = Field(
        default=None,
        description="Root URL of the task API (None: use the in-memory store)"
    )
    api_key_env: Optional[str] = Field(
        default=None,
        description="Environment variable holding the API key"
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Per-attempt timeout for remote calls"
    )
    max_retries: int = Field(
        default=2,
        ge=0,
        description="Retries for calls that fail with a network error"
    )
    base_delay: float = Field(
        default=0.5,
        ge=0.0,
        description="Delay before the first retry, in seconds"
    )
    multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Exponential backoff multiplier"
    )

    @field_validator('base_url')
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().rstrip("/")
        return v or None


class RealtimeConfig(BaseModel):
    """Change feed subscription settings."""
    entity_name: str = Field(
        default="tasks",
        min_length=1,
        description="Feed entity to subscribe to"
    )
    resync_on_reconnect: bool = Field(
        default=True,
        description="Re-fetch the current page when the feed reconnects"
    )


class CacheConfig(BaseModel):
    """Task cache sizing."""
    page_size: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Tasks per page for fetches and views"
    )
    tombstone_limit: int = Field(
        default=1024,
        ge=1,
        description="How many deleted task ids are remembered"
    )


class LoggingConfig(BaseModel):
    """
    Structured event log settings.

    When enabled, sync events are appended to
    ~/.local/share/tasksync/logs/{project_name}/{session}.jsonl
    """
    event_log: bool = Field(
        default=False,
        description="Write the JSONL sync event log"
    )
    project_name: str = Field(
        default="default",
        min_length=1,
        description="Log directory name under the tasksync data dir"
    )


class SyncConfig(BaseModel):
    """
    Top-level tasksync configuration.

    Loaded from defaults, user config, project config, and env vars.

    Example:
        >>> config = SyncConfig(
        ...     remote=RemoteConfig(base_url="https://api.example.com"),
        ...     cache=CacheConfig(page_size=20),
        ... )
        >>> config.cache.page_size
        20
    """
    remote: RemoteConfig = Field(
        default_factory=RemoteConfig,
        description="Remote store connection and call policy"
    )
    realtime: RealtimeConfig = Field(
        default_factory=RealtimeConfig,
        description="Change feed settings"
    )
    cache: CacheConfig = Field(
        default_factory=CacheConfig,
        description="Cache sizing"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Structured event log"
    )

    model_config = ConfigDict(
        extra="allow",  # Allow extra fields for forward compatibility
        validate_assignment=True,
    )

    @field_validator('remote', mode='before')
    @classmethod
    def validate_remote(cls, v: Union[str, dict, RemoteConfig]) -> Union[dict, RemoteConfig]:
        """Accept a bare URL string as shorthand for the remote section."""
        if isinstance(v, str):
            return {"base_url": v}
        return v
