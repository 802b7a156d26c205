# ABOUTME: Configuration management for the Argo CD terminal session
# ABOUTME: Merges environment variables, an optional YAML file and defaults

"""
Configuration management using pydantic-settings.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module gathers everything the session needs before it can start:

1. WHERE the Argo CD server lives and HOW to authenticate against it
2. WHETHER to talk to a real server or to the in-memory demo backend
3. HOW the UI behaves (sidebar width, log buffer sizes, read-only mode)
4. WHERE logs go (a terminal UI cannot log to the terminal it draws on)

=============================================================================
PRECEDENCE
=============================================================================

Highest to lowest:

    1. Environment variables (ARGOCD_*, LAZYARGO_*)
    2. YAML file (explicit path, or <user config dir>/lazyargo/config.yaml)
    3. Defaults

The YAML file is read by load_settings() and handed to Settings as init
values. Settings.settings_customise_sources() then puts the environment in
front of the init values, so an exported ARGOCD_SERVER always wins over the
file.

=============================================================================
ENVIRONMENT VARIABLE MAPPING
=============================================================================

Connection (same names as the argocd CLI):
    ARGOCD_SERVER       -> Server URL (default https://localhost:8080)
    ARGOCD_AUTH_TOKEN   -> Bearer token
    ARGOCD_USERNAME     -> Username for session login (when no token)
    ARGOCD_PASSWORD     -> Password for session login (when no token)
    ARGOCD_INSECURE     -> Skip TLS certificate verification

Session (LAZYARGO_ prefix):
    LAZYARGO_MOCK       -> Use the in-memory demo backend
    LAZYARGO_LOG_LEVEL  -> DEBUG, INFO, WARNING, ERROR, CRITICAL
    LAZYARGO_LOG_FILE   -> Path to the structured log file
    LAZYARGO_AUDIT_LOG  -> Path to the JSON-lines audit file
    LAZYARGO_UI__*      -> Nested UI settings, e.g. LAZYARGO_UI__READ_ONLY=true

=============================================================================
YAML FILE LAYOUT
=============================================================================

    argocd:
      server: https://argocd.example.com
      token: <token>
      insecureSkipVerify: false
    ui:
      sidebarWidth: 28
      readOnly: false
    logLevel: info
"""

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import Annotated, Any

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

DEFAULT_SERVER = "https://localhost:8080"


# =============================================================================
# ARGOCD INSTANCE CONFIGURATION
# =============================================================================


class ArgocdInstance(BaseModel):
    """
    Connection details for one Argo CD server.

    Built from Settings by Settings.instance(); ArgocdClient only ever sees
    this object, never the full Settings.
    """

    model_config = {"extra": "ignore"}

    url: str = Field(description="Argo CD server URL")
    token: SecretStr = Field(default=SecretStr(""), description="Argo CD API token")
    username: str = Field(default="", description="Username for session login")
    password: SecretStr = Field(default=SecretStr(""), description="Password for session login")
    name: str = Field(default="primary", description="Instance identifier")
    insecure: bool = Field(default=False, description="Skip TLS verification")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """
        Ensure URL has a scheme and no trailing slash.

        "argocd.example.com" becomes "https://argocd.example.com", and
        "https://example.com/" becomes "https://example.com" so that joining
        "/api/v1" never produces a double slash.
        """
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            v = f"https://{v}"
        return v.rstrip("/")


# =============================================================================
# UI SETTINGS
# =============================================================================


class UISettings(BaseModel):
    """
    Interactive session behaviour.

    Nested under Settings.ui; set from the environment with the double
    underscore delimiter (LAZYARGO_UI__LOG_BUFFER_LINES=5000) or from the
    ``ui:`` section of the YAML file.
    """

    model_config = {"extra": "ignore"}

    sidebar_width: int = Field(default=28, ge=20, description="Application list width")
    # Width of the application list column, in cells. The renderer decides
    # how to use it; the session only carries the value.

    log_buffer_lines: int = Field(default=2000, ge=1, description="Lines kept in the logs overlay")
    # Oldest lines are dropped once the buffer is full.

    log_channel_size: int = Field(default=100, ge=1, description="Pending lines per log stream")
    # Capacity of the bounded queue between a log stream task and the event
    # loop. When full, the stream task waits for the loop to catch up.

    read_only: bool = Field(default=False, description="Block mutating operations")
    # When True, the sync, rollback, terminate, delete, create and edit flows
    # refuse to open and leave a status hint instead.

    mask_secrets: bool = Field(default=True, description="Mask sensitive values in responses")
    # Applied by ArgocdClient to JSON payloads and manifest text.


# =============================================================================
# MAIN SETTINGS
# =============================================================================


class Settings(BaseSettings):
    """
    Top-level session configuration.

    USAGE:
    ------
        settings = load_settings()            # env + default YAML path
        settings = load_settings("dev.yaml")  # env + explicit YAML file
        settings.instance()                   # ArgocdInstance for the client
        settings.ui.read_only                 # nested UI setting
    """

    model_config = SettingsConfigDict(
        env_prefix="LAZYARGO_",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # CONNECTION
    # -------------------------------------------------------------------------

    server: str = Field(
        default=DEFAULT_SERVER,
        validation_alias="ARGOCD_SERVER",
        description="Argo CD server URL",
    )
    # Default matches `kubectl port-forward svc/argocd-server 8080:443`.

    token: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="ARGOCD_AUTH_TOKEN",
        description="Argo CD API token",
    )

    username: str = Field(
        default="",
        validation_alias="ARGOCD_USERNAME",
        description="Username for session login",
    )

    password: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="ARGOCD_PASSWORD",
        description="Password for session login",
    )
    # Only used when no token is configured: ArgocdClient exchanges them for
    # a session token via POST /api/v1/session on first use.

    insecure: bool = Field(
        default=False,
        validation_alias="ARGOCD_INSECURE",
        description="Skip TLS verification",
    )

    use_mock: bool = Field(
        default=False,
        validation_alias="LAZYARGO_MOCK",
        description="Use the in-memory demo backend",
    )

    # -------------------------------------------------------------------------
    # LOGGING
    # -------------------------------------------------------------------------

    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )

    log_file: Path | None = Field(
        default=None,
        description="Structured log destination",
    )
    # When None, logs are discarded below WARNING and printed to stderr
    # above it; a full-screen UI owns stdout.

    audit_log: Path | None = Field(
        default=None,
        description="Path to audit log file",
    )
    # JSON lines, one per mutating operation. When None, audit records go to
    # the structured log instead.

    ui: UISettings = Field(default_factory=UISettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Accept lowercase levels and the short "warn" spelling."""
        if isinstance(v, str):
            v = v.strip().upper()
            if v == "WARN":
                return "WARNING"
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment beats init values, which carry the YAML file.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    def instance(self) -> ArgocdInstance:
        """Connection details for ArgocdClient."""
        return ArgocdInstance(
            url=self.server,
            token=self.token,
            username=self.username,
            password=self.password,
            insecure=self.insecure,
        )

    @property
    def server_label(self) -> str:
        """Short server name for the footer."""
        if self.use_mock:
            return "mock"
        return self.server.split("://", 1)[-1].rstrip("/")


# =============================================================================
# SETTINGS LOADER
# =============================================================================


def default_config_path() -> Path:
    """<user config dir>/lazyargo/config.yaml, following XDG_CONFIG_HOME."""
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / "lazyargo" / "config.yaml"


# YAML key -> Settings field
_ARGOCD_KEYS = {
    "server": "server",
    "token": "token",
    "username": "username",
    "password": "password",
    "insecureSkipVerify": "insecure",
}
_UI_KEYS = {
    "sidebarWidth": "sidebar_width",
    "logBufferLines": "log_buffer_lines",
    "logChannelSize": "log_channel_size",
    "readOnly": "read_only",
    "maskSecrets": "mask_secrets",
}
_TOP_KEYS = {
    "logLevel": "log_level",
    "logFile": "log_file",
    "auditLog": "audit_log",
    "mock": "use_mock",
}


def _flatten_yaml(data: dict[str, Any]) -> dict[str, Any]:
    """Map the camelCase file layout onto Settings field names."""
    values: dict[str, Any] = {}

    argocd = data.get("argocd") or {}
    for key, field_name in _ARGOCD_KEYS.items():
        if argocd.get(key) not in (None, ""):
            values[field_name] = argocd[key]

    ui = data.get("ui") or {}
    ui_values = {
        field_name: ui[key] for key, field_name in _UI_KEYS.items() if ui.get(key) is not None
    }
    if ui_values:
        values["ui"] = ui_values

    for key, field_name in _TOP_KEYS.items():
        if data.get(key) not in (None, ""):
            values[field_name] = data[key]

    return values


def load_settings(path: str | Path | None = None) -> Settings:
    """
    Load settings from the environment, an optional YAML file and defaults.

    Args:
        path: Explicit config file. Must exist when given. When omitted, the
            default path is used if present and silently skipped otherwise.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
        ValueError: If the file is not a YAML mapping.
        pydantic.ValidationError: If any value fails validation.
    """
    config_path = Path(path) if path else default_config_path()
    if not path and not config_path.exists():
        return Settings()

    with config_path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"parse config {config_path}: expected a mapping at the top level")

    return Settings(**_flatten_yaml(data))
