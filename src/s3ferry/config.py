# src/s3ferry/config.py
"""
Configuration for the s3ferry copy engine.

This module centralizes all configuration, loading credentials from
environment variables and providing typed dataclasses for use throughout
the application. Source and destination credentials are read from two
distinctly named sets of variables so that a copy can cross account
boundaries: `AWS_*` for the source and `DST_AWS_*` for the destination.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from s3ferry.exceptions import ConfigError

SOURCE_ENV_PREFIX: str = "AWS"
DESTINATION_ENV_PREFIX: str = "DST_AWS"
DEFAULT_REGION: str = "ap-southeast-1"

# S3 rejects multipart parts below 5 MiB, except for the last one.
MIN_PART_SIZE: int = 5 * 1024 * 1024
DEFAULT_PART_SIZE: int = 16 * 1024 * 1024
DEFAULT_MULTIPART_THRESHOLD: int = 64 * 1024 * 1024


def _get_env_var(name: str, default: Optional[str] = None) -> str:
    """
    Retrieves a required environment variable.

    Args:
        name (str): The name of the environment variable.
        default (str, optional): The default value if the variable is not set.

    Returns:
        str: The value of the environment variable.
    """
    value: Optional[str] = os.environ.get(name, default)
    if not value:
        raise ConfigError(f"Environment variable '{name}' must be set.")
    return value


def _get_optional_env_var(name: str) -> Optional[str]:
    """Returns the variable's value, or None when unset or empty."""
    return os.environ.get(name) or None


@dataclass(frozen=True)
class S3Config:
    """
    Credentials and region for one side of a copy.

    Attributes:
        access_key_id (str): The access key ID.
        secret_access_key (str): The secret access key.
        region (str): The AWS region the client is bound to.
        session_token (str, optional): A session token for temporary credentials.
        endpoint_url (str, optional): A custom endpoint for S3-compatible services.
    """

    access_key_id: str
    secret_access_key: str
    region: str = DEFAULT_REGION
    session_token: Optional[str] = None
    endpoint_url: Optional[str] = None

    @classmethod
    def from_env(cls, prefix: str, region: Optional[str] = None) -> "S3Config":
        """
        Builds a config from `<prefix>_*` environment variables.

        Args:
            prefix (str): Variable prefix, e.g. "AWS" or "DST_AWS".
            region (str, optional): Overrides `<prefix>_REGION` when given.

        Returns:
            S3Config: The loaded configuration.
        """
        return cls(
            access_key_id=_get_env_var(f"{prefix}_ACCESS_KEY_ID"),
            secret_access_key=_get_env_var(f"{prefix}_SECRET_ACCESS_KEY"),
            region=region or _get_env_var(f"{prefix}_REGION", DEFAULT_REGION),
            session_token=_get_optional_env_var(f"{prefix}_SESSION_TOKEN"),
            endpoint_url=_get_optional_env_var(f"{prefix}_ENDPOINT_URL"),
        )

    def as_client_kwargs(self) -> Dict[str, Any]:
        """
        Returns the configuration as keyword arguments for `create_client`.

        Optional values are left out so botocore falls back to its defaults.

        Returns:
            Dict[str, Any]: A dictionary of client parameters.
        """
        kwargs: Dict[str, Any] = {
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
            "region_name": self.region,
        }
        if self.session_token:
            kwargs["aws_session_token"] = self.session_token
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        return kwargs

    def __repr__(self) -> str:
        return (
            f"S3Config(access_key_id='{self.access_key_id}', "
            f"region='{self.region}', endpoint_url={self.endpoint_url!r})"
        )


@dataclass(frozen=True)
class AppConfig:
    """
    Defines the engine's operational parameters.

    Attributes:
        max_concurrency (int): Maximum number of transfers in flight at once.
        page_size (int, optional): `MaxKeys` for each list call; the service
            default is used when None.
        connect_timeout_s (float): Connection timeout for each storage call.
        read_timeout_s (float): Read timeout for each storage call.
        show_progress (bool): Whether to render a progress bar.
        multipart_threshold (int): Objects larger than this many bytes are
            streamed to the destination as a multipart upload.
        part_size (int): Size in bytes of each multipart part.
    """

    max_concurrency: int = 64
    page_size: Optional[int] = None
    connect_timeout_s: float = 10.0
    read_timeout_s: float = 60.0
    show_progress: bool = True
    multipart_threshold: int = DEFAULT_MULTIPART_THRESHOLD
    part_size: int = DEFAULT_PART_SIZE

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ConfigError(
                f"max_concurrency must be at least 1, got {self.max_concurrency}."
            )
        if self.page_size is not None and not 1 <= self.page_size <= 1000:
            raise ConfigError(
                f"page_size must be between 1 and 1000, got {self.page_size}."
            )
        if self.part_size < MIN_PART_SIZE:
            raise ConfigError(
                f"part_size must be at least {MIN_PART_SIZE} bytes, got {self.part_size}."
            )
        if self.multipart_threshold < self.part_size:
            raise ConfigError(
                f"multipart_threshold ({self.multipart_threshold}) must not be "
                f"smaller than part_size ({self.part_size})."
            )


@dataclass(frozen=True)
class Config:
    """
    Top-level configuration container for the entire application.

    Attributes:
        source (S3Config): Credentials for reading from the source bucket.
        destination (S3Config): Credentials for writing to the destination bucket.
        app (AppConfig): General engine settings.
    """

    source: S3Config = field(
        default_factory=lambda: S3Config.from_env(SOURCE_ENV_PREFIX)
    )
    destination: S3Config = field(
        default_factory=lambda: S3Config.from_env(DESTINATION_ENV_PREFIX)
    )
    app: AppConfig = field(default_factory=AppConfig)
