"""
Vault Configuration — Layered settings loading and validation.

Settings are merged, lowest to highest priority, from:
    built-in defaults
    ~/.secretsage/config.yaml          (global)
    ./.secretsage/config.yaml          (local project)
    SECRETSAGE_VAULT_LOCATION / SECRETSAGE_VAULT_PATH / SECRETSAGE_LOCK_TIMEOUT

Files use camelCase keys (``defaultLocation``); snake_case is accepted too.
Nested mappings merge key by key, lists and scalars replace.
"""
import os
import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from ..conf import CONFIG_FILENAME, DEFAULT_LOCK_TIMEOUT
from ..exceptions import ConfigError
from ..fileio import atomic_write
from ..models import VaultLocation
from ..paths import global_dir, local_dir

logger = logging.getLogger("secretsage.config")

SUPPORTED_PROVIDERS = ("x25519",)

_HEADER = (
    "# SecretSage Configuration\n"
    "#\n"
    "# Run 'secretsage config --show' to see all options\n"
)


class _Settings(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class VaultSettings(_Settings):
    default_location: VaultLocation = VaultLocation.GLOBAL
    custom_path: Optional[str] = None


class EncryptionSettings(_Settings):
    provider: str = "x25519"

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        """Validate encryption provider is supported."""
        if v not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported encryption provider: {v}")
        return v


class SourceSettings(_Settings):
    type: str
    enabled: bool = True
    priority: int = Field(default=1, ge=0)


class AgentSettings(_Settings):
    auto_gitignore: bool = True
    backup_env_on_grant: bool = True
    require_confirmation: bool = True


def _default_sources() -> list[SourceSettings]:
    return [SourceSettings(type="local", enabled=True, priority=1)]


class SageConfig(_Settings):
    """Validated SecretSage configuration."""

    version: str = "1"
    vault: VaultSettings = Field(default_factory=VaultSettings)
    encryption: EncryptionSettings = Field(default_factory=EncryptionSettings)
    sources: list[SourceSettings] = Field(default_factory=_default_sources)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    lock_timeout: float = Field(default=DEFAULT_LOCK_TIMEOUT, gt=0)

    @model_validator(mode="after")
    def validate_custom_location(self) -> "SageConfig":
        """A custom vault location needs a path."""
        if self.vault.default_location is VaultLocation.CUSTOM and not self.vault.custom_path:
            raise ValueError(
                "vault.customPath is required when vault.defaultLocation is 'custom'"
            )
        return self

    def source_priority(self, source_type: str, default: int = 1) -> int:
        for source in self.sources:
            if source.type == source_type:
                return source.priority
        return default

    def source_enabled(self, source_type: str) -> bool:
        for source in self.sources:
            if source.type == source_type:
                return source.enabled
        return True

    @classmethod
    def from_env(cls, base: Optional[dict[str, Any]] = None) -> "SageConfig":
        """Create SageConfig from *base* with environment overrides applied.

        Returns:
            Populated SageConfig instance.

        Raises:
            ConfigError: If the merged settings are invalid.
        """
        data = _deep_merge(base or {}, _env_overrides())
        try:
            return cls.model_validate(data)
        except ValidationError as err:
            raise ConfigError(f"Invalid configuration: {err}") from err


def _env_overrides() -> dict[str, Any]:
    vault: dict[str, Any] = {}
    if location := os.environ.get("SECRETSAGE_VAULT_LOCATION"):
        vault["defaultLocation"] = location.lower()
    if custom_path := os.environ.get("SECRETSAGE_VAULT_PATH"):
        vault["customPath"] = custom_path
        vault.setdefault("defaultLocation", VaultLocation.CUSTOM.value)
    overrides: dict[str, Any] = {}
    if vault:
        overrides["vault"] = vault
    if timeout := os.environ.get("SECRETSAGE_LOCK_TIMEOUT"):
        overrides["lockTimeout"] = timeout
    return overrides


def _camelize(data: Any) -> Any:
    """Normalise mapping keys to camelCase so layers written either way merge."""
    if isinstance(data, dict):
        return {to_camel(str(k)): _camelize(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_camelize(v) for v in data]
    return data


def _deep_merge(target: dict[str, Any], *sources: dict[str, Any]) -> dict[str, Any]:
    result = dict(target)
    for source in sources:
        for key, value in (source or {}).items():
            current = result.get(key)
            if isinstance(value, dict) and isinstance(current, dict):
                result[key] = _deep_merge(current, value)
            elif value is not None:
                result[key] = value
    return result


def read_config_file(path: Path) -> dict[str, Any]:
    """Read one YAML layer; a missing file is an empty layer.

    Raises:
        ConfigError: If the file is not valid YAML or not a mapping.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise ConfigError(f"Config file {path} is not valid YAML: {err}", path=str(path)) from err
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping", path=str(path))
    logger.debug("Loaded config layer %s", path)
    return _camelize(data)


def config_path(local: bool, *, cwd: Optional[Path] = None, home: Optional[Path] = None) -> Path:
    directory = local_dir(cwd) if local else global_dir(home)
    return directory / CONFIG_FILENAME


def load_config(*, cwd: Optional[Path] = None, home: Optional[Path] = None) -> SageConfig:
    """Load the merged configuration for the project at *cwd*."""
    global_layer = read_config_file(config_path(False, cwd=cwd, home=home))
    local_layer = read_config_file(config_path(True, cwd=cwd, home=home))
    return SageConfig.from_env(_deep_merge(global_layer, local_layer))


def save_config(
    config: SageConfig,
    local: bool = False,
    *,
    cwd: Optional[Path] = None,
    home: Optional[Path] = None,
) -> Path:
    """Write *config* to the local or global config file (mode 0600).

    Returns:
        Path of the written file.
    """
    path = config_path(local, cwd=cwd, home=home)
    data = config.model_dump(mode="json", by_alias=True, exclude_none=True)
    body = yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
    atomic_write(path, (_HEADER + body).encode("utf-8"), mode=0o600)
    logger.info("Saved configuration to %s", path)
    return path


def _coerce(value: str) -> Any:
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue
    return value


def set_config_value(config: SageConfig, key: str, value: str) -> SageConfig:
    """Return a copy of *config* with the dotted *key* set to *value*.

    ``true``/``false`` and numbers are coerced. Keys may be written in
    snake_case or camelCase (``agent.backupEnvOnGrant``).

    Raises:
        ConfigError: If the key is unknown or the result does not validate.
    """
    data = config.model_dump(mode="json", by_alias=True)
    parts = [to_camel(part) for part in key.split(".") if part]
    if not parts:
        raise ConfigError(f"Unknown config key: {key}")
    current: Any = data
    for part in parts[:-1]:
        if not isinstance(current, dict) or not isinstance(current.get(part), dict):
            raise ConfigError(f"Unknown config key: {key}")
        current = current[part]
    if not isinstance(current, dict) or parts[-1] not in current:
        raise ConfigError(f"Unknown config key: {key}")
    current[parts[-1]] = _coerce(value)
    try:
        return SageConfig.model_validate(data)
    except ValidationError as err:
        raise ConfigError(f"Invalid value for {key}: {err}") from err
