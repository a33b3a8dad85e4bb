"""
Harness configuration.

Loaded from an optional YAML file, then overridden by environment variables
prefixed PUBQ_HIL_ (nested keys use a double underscore, for example
PUBQ_HIL_PROXY__UPSTREAM_ADDRESS).
"""
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .common.errors import ConfigurationError


class SerialConfig(BaseModel):
    port: str = ""  # e.g. /dev/ttyACM0
    command_timeout: float = 5.0


class CloudConfig(BaseModel):
    access_token: str = ""
    device_id: str = ""

    @field_validator("access_token", "device_id")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class ProxyConfig(BaseModel):
    enabled: bool = True
    upstream_address: str = ""  # cloud device service address
    upstream_port: int = 5684
    interface: Optional[str] = None
    listen_address: Optional[str] = None
    listen_port: Optional[int] = None


class ScenarioConfig(BaseModel):
    skip_reset_tests: bool = False
    skip_proxy_tests: bool = False
    start_with: str = ""


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"


class HarnessConfig(BaseSettings):
    """Root configuration. Loads from YAML, overridable by env vars."""

    model_config = SettingsConfigDict(
        env_prefix="PUBQ_HIL_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    serial: SerialConfig = Field(default_factory=SerialConfig)
    cloud: CloudConfig = Field(default_factory=CloudConfig)
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    scenarios: ScenarioConfig = Field(default_factory=ScenarioConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(cls, settings_cls, init_settings, env_settings,
                                   dotenv_settings, file_secret_settings):
        # Environment beats values passed in from the YAML file
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    def missing_fields(self) -> List[str]:
        """Names of required settings that are empty."""
        missing = []
        if not self.serial.port:
            missing.append("serial.port")
        if not self.cloud.access_token:
            missing.append("cloud.access_token")
        if not self.cloud.device_id:
            missing.append("cloud.device_id")
        if self.proxy.enabled and not self.proxy.upstream_address:
            missing.append("proxy.upstream_address")
        return missing

    def require_complete(self):
        """Raise ConfigurationError unless every required setting is present."""
        missing = self.missing_fields()
        if missing:
            raise ConfigurationError("missing configuration: " + ", ".join(missing))


def load_config(config_path: Union[str, Path, None] = None) -> HarnessConfig:
    """
    Load configuration from a YAML file, then apply environment overrides.

    A missing file is not an error; the defaults and environment are used.
    """
    raw: Dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}

    return HarnessConfig(**raw)
