"""Configuration for the reporting client.

This module provides centralized configuration management:
- Validate client options passed by an agent (ClientConfig)
- Report invalid options without raising (build_client_config)
- Load the same options from RP_* environment variables and .env files
"""

import logging
from collections.abc import Callable, Mapping
from typing import Any, Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rpclient.adapters.transport.retry import resolve_retry_policy
from rpclient.core.errors import ReportingValidationError, RequiredOptionError

logger = logging.getLogger(__name__)


class ProxyAuth(BaseModel):
    """Credentials for an explicitly configured proxy."""

    username: str
    password: str


class ProxyTarget(BaseModel):
    """An explicitly configured proxy server."""

    protocol: str = "http"
    host: str
    port: int
    auth: ProxyAuth | None = None


class OAuthConfig(BaseModel):
    """OAuth 2.0 password grant settings."""

    token_endpoint: str
    username: str
    password: str
    client_id: str
    client_secret: str | None = None
    scope: str | None = None


class RestClientConfig(BaseModel):
    """HTTP transport settings."""

    timeout: float = Field(default=30.0, description="Per-attempt timeout in seconds")
    retry: int | dict[str, Any] | None = Field(
        default=None,
        description="Retry count or partial retry policy",
    )
    proxy: bool | str | ProxyTarget | None = Field(
        default=None,
        description="False disables proxies, a URL or a proxy object enables one",
    )
    no_proxy: str | None = Field(
        default=None,
        description="Comma separated hosts that bypass the proxy",
    )
    verify: bool = Field(default=True, description="Verify TLS certificates")
    debug: bool = Field(default=False, description="Trace HTTP requests")

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Ensure timeout is positive."""
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    @field_validator("retry")
    @classmethod
    def validate_retry(cls, v: int | dict[str, Any] | None) -> int | dict[str, Any] | None:
        """Ensure the retry count or partial policy builds a RetryPolicy."""
        resolve_retry_policy(v)
        return v


class ClientConfig(BaseModel):
    """Validated client options."""

    model_config = ConfigDict(extra="ignore")

    api_key: str | None = None
    endpoint: str
    project: str
    launch: str | None = None
    description: str | None = None
    mode: Literal["DEFAULT", "DEBUG"] | None = None
    attributes: list[dict[str, Any]] | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    debug: bool = False
    is_launch_merge_required: bool = False
    launch_uuid_print: bool = False
    launch_uuid_print_output: str | Callable[[str], None] = "STDOUT"
    skipped_issue: bool = True
    oauth: OAuthConfig | None = None
    rest_client_config: RestClientConfig = Field(default_factory=RestClientConfig)
    batch_logs: bool = False
    batch_max_entries: int = 20
    batch_payload_limit: int = 65_000_000

    @field_validator("endpoint")
    @classmethod
    def strip_endpoint(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("batch_max_entries", "batch_payload_limit")
    @classmethod
    def validate_batch_limits(cls, v: int) -> int:
        """Ensure batch limits are positive."""
        if v <= 0:
            raise ValueError("batch limits must be positive")
        return v

    def launch_defaults(self) -> dict[str, Any]:
        """Launch fields applied when an agent does not set them."""
        return {
            "description": self.description,
            "mode": self.mode,
            "attributes": self.attributes,
        }


class ConfigResult(NamedTuple):
    """Outcome of build_client_config: exactly one field is set."""

    config: ClientConfig | None
    error: ReportingValidationError | None


def _describe(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        problems.append(f"{location}: {item['msg']}")
    return "; ".join(problems)


def build_client_config(options: Mapping[str, Any] | None) -> ConfigResult:
    """Validate client options without raising.

    The deprecated ``token`` option is accepted in place of ``api_key``.
    ``api_key`` may be omitted when an ``oauth`` block is given.

    Args:
        options: Raw options supplied by the agent.

    Returns:
        ConfigResult with either the validated config or the error.
    """
    try:
        if not isinstance(options, Mapping):
            raise ReportingValidationError("`options` must be an object.")
        options = dict(options)

        if not options.get("api_key"):
            token = options.pop("token", None)
            if token:
                logger.warning("Option 'token' is deprecated. Use 'api_key' instead.")
                options["api_key"] = token
            elif not options.get("oauth"):
                raise RequiredOptionError("api_key")
        for name in ("project", "endpoint"):
            if not options.get(name):
                raise RequiredOptionError(name)

        config = ClientConfig.model_validate(options)
    except ValidationError as e:
        error = ReportingValidationError(_describe(e))
    except ReportingValidationError as e:
        error = e
    else:
        return ConfigResult(config=config, error=None)

    logger.error(str(error))
    return ConfigResult(config=None, error=error)


class Settings(BaseSettings):
    """Client options loaded from RP_* environment variables.

    Uses pydantic-settings for environment variable handling with
    .env file support.
    """

    model_config = SettingsConfigDict(
        env_prefix="RP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_key: str = Field(default="", description="API key for the collector")
    endpoint: str = Field(default="", description="API base URL, e.g. https://host/api/v2")
    project: str = Field(default="", description="Project name")
    launch: str = Field(default="", description="Launch name")
    description: str = Field(default="", description="Launch description")
    mode: Literal["DEFAULT", "DEBUG"] = Field(default="DEFAULT", description="Launch mode")
    debug: bool = Field(default=False, description="Enable verbose client logging")
    is_launch_merge_required: bool = Field(default=False, description="Save launch ids for merge")
    launch_uuid_print: bool = Field(default=False, description="Emit the launch id at finish")
    launch_uuid_print_output: Literal["STDOUT", "STDERR", "ENVIRONMENT", "FILE"] = Field(
        default="STDOUT",
        description="Where the launch id is emitted",
    )
    skipped_issue: bool = Field(default=True, description="Mark skipped items as issues")
    batch_logs: bool = Field(default=False, description="Send logs in multipart batches")
    batch_max_entries: int = Field(default=20, description="Entries per log batch")
    batch_payload_limit: int = Field(default=65_000_000, description="Bytes per log batch")

    # OAuth
    oauth_token_endpoint: str = Field(default="", description="OAuth token endpoint URL")
    oauth_username: str = Field(default="", description="OAuth username")
    oauth_password: str = Field(default="", description="OAuth password")
    oauth_client_id: str = Field(default="", description="OAuth client id")
    oauth_client_secret: str = Field(default="", description="OAuth client secret")
    oauth_scope: str = Field(default="", description="OAuth scope")

    # Transport
    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    retries: int = Field(default=6, description="Retries of failed requests")
    proxy: str = Field(default="", description="Proxy URL")
    no_proxy: str = Field(default="", description="Hosts that bypass the proxy")
    http_debug: bool = Field(default=False, description="Trace HTTP requests")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log format",
    )

    def to_client_options(self) -> dict[str, Any]:
        """Options in the shape build_client_config expects."""
        options: dict[str, Any] = {
            "api_key": self.api_key,
            "endpoint": self.endpoint,
            "project": self.project,
            "launch": self.launch or None,
            "description": self.description or None,
            "mode": self.mode,
            "debug": self.debug,
            "is_launch_merge_required": self.is_launch_merge_required,
            "launch_uuid_print": self.launch_uuid_print,
            "launch_uuid_print_output": self.launch_uuid_print_output,
            "skipped_issue": self.skipped_issue,
            "batch_logs": self.batch_logs,
            "batch_max_entries": self.batch_max_entries,
            "batch_payload_limit": self.batch_payload_limit,
            "rest_client_config": {
                "timeout": self.timeout,
                "retry": self.retries,
                "proxy": self.proxy or None,
                "no_proxy": self.no_proxy or None,
                "debug": self.http_debug,
            },
        }
        if self.oauth_token_endpoint:
            options["oauth"] = {
                "token_endpoint": self.oauth_token_endpoint,
                "username": self.oauth_username,
                "password": self.oauth_password,
                "client_id": self.oauth_client_id,
                "client_secret": self.oauth_client_secret or None,
                "scope": self.oauth_scope or None,
            }
        return options


def load_settings(env_file: str | None = None) -> Settings:
    """Load client settings from environment.

    Args:
        env_file: Optional path to .env file. If not provided,
                 uses the default .env in the current directory.

    Returns:
        Validated Settings instance.

    Raises:
        ValidationError: If settings validation fails.
    """
    if env_file:
        return Settings(_env_file=env_file)  # type: ignore[call-arg]
    return Settings()


__all__ = [
    "ClientConfig",
    "ConfigResult",
    "OAuthConfig",
    "ProxyAuth",
    "ProxyTarget",
    "RestClientConfig",
    "Settings",
    "build_client_config",
    "load_settings",
]
