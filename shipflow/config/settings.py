"""
Configuration system using Pydantic for type-safe settings management.

Every field has a default so the tool works without a configuration file.
A YAML file (``.shipflow/config.yaml`` by default) overrides the defaults,
and ``SHIPFLOW_``-prefixed environment variables override both, e.g.
``SHIPFLOW_HOSTING__PROJECT_ID=my-app``.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shipflow.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = ".shipflow/config.yaml"


class RepositoryConfig(BaseModel):
    """Branch naming and remote settings."""

    trunk_branch: str = Field(default="main", description="Branch pull requests target")
    remote: str = Field(default="origin", description="Remote to push feature branches to")
    feature_prefix: str = Field(default="feature/", description="Prefix for generated branch names")
    branch_name_max_length: int = Field(default=40, ge=8, le=200, description="Max length of the slug part")

    @field_validator("trunk_branch", "remote")
    @classmethod
    def validate_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class CacheConfig(BaseModel):
    """Read-only command result cache."""

    enabled: bool = Field(default=True, description="Memoize read-only git/gh queries")
    ttl_seconds: float = Field(default=3.0, gt=0, le=60, description="Lifetime of a cached result")


class RetryConfig(BaseModel):
    """Retry policy for mutations of remote state."""

    max_attempts: int = Field(default=2, ge=1, le=10, description="Attempts per mutation")
    delay_seconds: float = Field(default=1.0, ge=0, description="Fixed delay between attempts")


class CommandsConfig(BaseModel):
    """External build commands and timeouts."""

    default_timeout: float | None = Field(default=None, gt=0, description="Timeout for commands without one")
    build_command: str | None = Field(default=None, description="Run before a preview deploy, e.g. 'pnpm build'")
    build_timeout: float = Field(default=600.0, gt=0, description="Timeout for the build command")


class HostingConfig(BaseModel):
    """Preview channel deployment on the hosting provider."""

    project_id: str | None = Field(default=None, description="Hosting project id")
    sites: list[str] = Field(default_factory=list, description="Site names used to label preview URLs")
    channel_prefix: str = Field(default="preview", description="Prefix for preview channel ids")
    channel_expires: str = Field(default="7d", description="Expiry passed to the channel deploy")
    deploy_timeout: float = Field(default=180.0, gt=0, description="Timeout for the deploy command")
    channel_threshold: int = Field(default=10, ge=1, description="Channels kept per site before cleanup")
    auto_cleanup: bool = Field(default=False, description="Delete old channels after a successful deploy")


class PathsConfig(BaseModel):
    """Locations of transient artifacts."""

    temp_dir: str = Field(default="temp", description="Directory for logs and reports")
    stale_temp_days: int = Field(default=7, ge=1, description="Age after which temp files are pruned")

    @property
    def temp_path(self) -> Path:
        return Path(self.temp_dir)

    @property
    def ignore_patterns(self) -> list[str]:
        """.gitignore patterns covering the temp directory; none when it lies outside the repository."""
        if self.temp_path.is_absolute():
            return []
        name = self.temp_dir.strip("/")
        return [f"{name}/", f"{name}/**/*"]

    @property
    def deploy_log(self) -> Path:
        return self.temp_path / "firebase-deploy.log"

    @property
    def preview_urls_file(self) -> Path:
        return self.temp_path / "preview-urls.json"

    @property
    def last_preview_file(self) -> Path:
        return self.temp_path / "last-successful-preview.json"

    @property
    def command_log_dir(self) -> Path:
        return self.temp_path / "command-logs"

    @property
    def report_file(self) -> Path:
        return self.temp_path / "workflow-report.json"


class HygieneConfig(BaseModel):
    """Repository hygiene settings."""

    gitignore_patterns: list[str] = Field(
        default_factory=lambda: [".env.build", "preview-dashboard.html"],
        description="Patterns that must be present in .gitignore, besides the temp directory",
    )
    untrack_files: list[str] = Field(
        default_factory=lambda: [".env.build", "preview-dashboard.html"],
        description="Files removed from the index if tracked",
    )


class ShipflowSettings(BaseSettings):
    """Main shipflow settings.

    Combines all configuration sections and provides loading from YAML files
    with environment variable interpolation.
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIPFLOW_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    hosting: HostingConfig = Field(default_factory=HostingConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    hygiene: HygieneConfig = Field(default_factory=HygieneConfig)

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> ShipflowSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ``${VAR_NAME}`` and ``${VAR_NAME:-default}`` substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            ShipflowSettings instance

        Raises:
            ConfigurationError: If the file is missing, unreadable or invalid
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            yaml_content = config_file.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e

        if config_dict is None:
            config_dict = {}
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        Comment lines are left untouched so documentation examples survive.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            if default_value is not None:
                return default_value
            raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))


def load_settings(config_path: str | Path | None = None) -> ShipflowSettings:
    """Load settings, falling back to defaults when no file exists.

    An explicitly given path must exist; the default path is optional.
    """
    if config_path is not None:
        return ShipflowSettings.from_yaml(config_path)
    if Path(DEFAULT_CONFIG_PATH).exists():
        return ShipflowSettings.from_yaml(DEFAULT_CONFIG_PATH)
    try:
        return ShipflowSettings()
    except Exception as e:
        raise ConfigurationError(f"Failed to validate configuration: {e}") from e
