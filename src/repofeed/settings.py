"""
Centralized application settings.

The configuration is shared across the CLI, the HTTP server and the
aggregation engine. Unlike most settings objects the TOML file is mandatory:
its modification time doubles as the configuration fingerprint that
invalidates every repository cache record.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback for older interpreters
    import tomli as tomllib  # type: ignore[no-redef]

from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .logger import get_logger

log = get_logger(__name__)

CheckoutMethod = Literal["ssh", "http"]

_CONFIG_ENV_VAR = "REPOFEED_CONFIG_PATH"
_DEFAULT_CONFIG_FILE = Path("repofeed.toml")
_VALID_METHODS = ("ssh", "http")


@dataclass(frozen=True)
class RegistryPolicy:
    """Immutable knobs handed to every registry component."""

    method: CheckoutMethod = "ssh"
    port: Optional[int] = None
    allow_name_mismatch: bool = False
    hide_projects: bool = False
    manifest_path: str = "composer.json"


class AppSettings(BaseSettings):
    """Project-wide settings loaded from the TOML file and REPOFEED_* env vars."""

    model_config = SettingsConfigDict(
        env_prefix="REPOFEED_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    config_path: Optional[Path] = None
    gitlab_endpoint: str = "https://gitlab.com/api/v4/"
    gitlab_api_key: Optional[str] = None
    gitlab_groups: List[str] = []
    gitlab_per_page: int = 100
    gitlab_timeout: int = 30
    method: str = "ssh"
    port: Optional[int] = None
    allow_package_name_mismatch: bool = False
    hide_projects: bool = False
    manifest_path: str = "composer.json"
    cache_dir: Path = Path("./cache")
    static_file: Optional[Path] = None
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    telemetry_enabled: bool = True
    log_level: str = "INFO"
    log_format: str = "console"

    @property
    def packages_file(self) -> Path:
        return self.cache_dir / "packages.json"

    def policy(self) -> RegistryPolicy:
        method = self.method
        if method not in _VALID_METHODS:
            log.warning("invalid_checkout_method", method=method, fallback="ssh")
            method = "ssh"
        return RegistryPolicy(
            method=method,  # type: ignore[arg-type]
            port=self.port,
            allow_name_mismatch=self.allow_package_name_mismatch,
            hide_projects=self.hide_projects,
            manifest_path=self.manifest_path,
        )


def resolve_config_path(path: Optional[Path] = None) -> Path:
    """Pick the configuration file from the argument, env var or default."""
    if path is not None:
        return Path(path)
    override = os.getenv(_CONFIG_ENV_VAR)
    if override:
        return Path(override)
    return _DEFAULT_CONFIG_FILE


def _load_toml_config(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise ConfigurationError(f"configuration file missing: {path}")
    with path.open("rb") as handle:
        try:
            return tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigurationError(f"invalid configuration file {path}: {exc}") from exc


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


def _flatten_config(raw: Dict[str, Any], base_dir: Path) -> Dict[str, Any]:
    """Translate grouped TOML sections into AppSettings keyword arguments."""
    data: Dict[str, Any] = {}

    gitlab = raw.get("gitlab", {})
    if "endpoint" in gitlab:
        data["gitlab_endpoint"] = gitlab["endpoint"]
    if "api_key" in gitlab:
        data["gitlab_api_key"] = _blank_to_none(gitlab["api_key"])
    if "groups" in gitlab:
        groups = gitlab["groups"] or []
        if isinstance(groups, str):
            groups = [name.strip() for name in groups.split(",")]
        data["gitlab_groups"] = [name for name in groups if name]
    if "per_page" in gitlab:
        data["gitlab_per_page"] = int(gitlab["per_page"])
    if "timeout" in gitlab:
        data["gitlab_timeout"] = int(gitlab["timeout"])

    packages = raw.get("packages", {})
    if "method" in packages:
        data["method"] = packages["method"]
    if "port" in packages:
        port = _blank_to_none(packages["port"])
        data["port"] = int(port) if port is not None else None
    if "allow_package_name_mismatch" in packages:
        data["allow_package_name_mismatch"] = bool(packages["allow_package_name_mismatch"])
    if "hide_projects" in packages:
        data["hide_projects"] = bool(packages["hide_projects"])
    if "manifest_path" in packages:
        data["manifest_path"] = packages["manifest_path"]

    paths = raw.get("paths", {})
    if "cache_dir" in paths:
        data["cache_dir"] = base_dir / paths["cache_dir"]
    if "static_file" in paths:
        static_file = _blank_to_none(paths["static_file"])
        data["static_file"] = base_dir / static_file if static_file else None

    api_section = raw.get("api", {})
    if api_section:
        if "host" in api_section:
            data["api_host"] = api_section["host"]
        if "port" in api_section:
            data["api_port"] = int(api_section["port"])

    general = raw.get("general", {})
    if "telemetry_enabled" in general:
        data["telemetry_enabled"] = bool(general["telemetry_enabled"])
    if "log_level" in general:
        data["log_level"] = str(general["log_level"]).upper()
    if "log_format" in general:
        data["log_format"] = general["log_format"]

    return data


def load_settings(path: Optional[Path] = None) -> AppSettings:
    """Load settings from the TOML file; relative paths resolve against it."""
    config_path = resolve_config_path(path)
    raw = _load_toml_config(config_path)
    flattened = _flatten_config(raw, config_path.resolve().parent)
    flattened["config_path"] = config_path
    return AppSettings(**flattened)
