"""Configuration loading and validation."""

from __future__ import annotations

import os
import shlex
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..errors import ConfigurationError
from ..utils.logging import get_logger

logger = get_logger("config")

DEFAULT_SERVER_ADDRESS = "127.0.0.1:35001"
MAX_CREDENTIALS_PERMISSIONS = 0o600


def default_config_paths() -> List[Path]:
    """Return the locations searched when no config file is given."""

    home = Path.home()
    xdg = os.environ.get("XDG_CONFIG_HOME") or str(home / ".config")
    return [
        Path(xdg) / "samlvpn" / "config.yaml",
        Path(xdg) / "samlvpn.yaml",
        home / ".config" / "samlvpn.yaml",
        home / ".samlvpn.yaml",
    ]


def default_credentials_path() -> Path:
    cache = os.environ.get("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return Path(cache) / "samlvpn-credentials"


def expand_path(value: str | os.PathLike[str]) -> Path:
    """Expand environment variables and user references in ``value``."""
    return Path(os.path.expandvars(os.path.expanduser(str(value))))


def _as_command(value: Any, key: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, list):
        return [str(part) for part in value]
    raise ConfigurationError(f"{key} must be a string or a list of arguments")


def _as_permissions(value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError("temp_credentials_file_permissions must be an octal mode")
    if isinstance(value, int):
        return value
    try:
        return int(str(value), 8)
    except ValueError as exc:
        raise ConfigurationError(
            f"temp_credentials_file_permissions is not an octal mode: {value!r}"
        ) from exc


def _as_number(value: Any, key: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{key} must be a number of seconds, got {value!r}") from exc


def _as_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}") from exc


def split_address(address: str) -> Tuple[str, int]:
    """Split ``host:port`` into its parts, raising ``ValueError`` when malformed."""

    host, sep, port = address.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"expected host:port, got {address!r}")
    port_number = int(port)
    if port_number > 65535:
        raise ValueError(f"port out of range in {address!r}")
    return host.strip("[]"), port_number


@dataclass
class Config:
    """Settings for one samlvpn run, loaded from YAML."""

    openvpn_binary: Path
    openvpn_config_file: Path
    server_address: str = DEFAULT_SERVER_ADDRESS
    server_timeout: float = 120.0
    probe_timeout: float = 30.0
    browser_command: List[str] = field(default_factory=lambda: ["x-www-browser"])
    redirect_url: Optional[str] = None
    run_command: bool = False
    use_sudo: bool = True
    verbosity: int = 3
    auth_failed_retries: int = 0
    connection_lost_command: List[str] = field(default_factory=list)
    temp_credentials_file_path: Path = field(default_factory=default_credentials_path)
    temp_credentials_file_permissions: int = 0o400

    @property
    def server_host(self) -> str:
        return split_address(self.server_address)[0]

    @property
    def server_port(self) -> int:
        return split_address(self.server_address)[1]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        data = {str(key).replace("-", "_"): value for key, value in data.items()}
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            logger.warning("Ignoring unknown configuration keys: %s", ", ".join(sorted(unknown)))
        for required in ("openvpn_binary", "openvpn_config_file"):
            if not data.get(required):
                raise ConfigurationError(f"{required} is required")
        config = cls(
            openvpn_binary=expand_path(data["openvpn_binary"]),
            openvpn_config_file=expand_path(data["openvpn_config_file"]),
            server_address=str(data.get("server_address", DEFAULT_SERVER_ADDRESS)),
            server_timeout=_as_number(data.get("server_timeout", 120), "server_timeout"),
            probe_timeout=_as_number(data.get("probe_timeout", 30), "probe_timeout"),
            redirect_url=data.get("redirect_url") or None,
            run_command=bool(data.get("run_command", False)),
            use_sudo=bool(data.get("use_sudo", True)),
            verbosity=_as_int(data.get("verbosity", 3), "verbosity"),
            auth_failed_retries=_as_int(data.get("auth_failed_retries", 0), "auth_failed_retries"),
            connection_lost_command=_as_command(
                data.get("connection_lost_command"), "connection_lost_command"
            ),
            temp_credentials_file_permissions=_as_permissions(
                data.get("temp_credentials_file_permissions", "0400")
            ),
        )
        if "browser_command" in data:
            config.browser_command = _as_command(data["browser_command"], "browser_command")
        if data.get("temp_credentials_file_path"):
            config.temp_credentials_file_path = expand_path(data["temp_credentials_file_path"])
        return config

    def validate(self) -> List[str]:
        """Return every problem found in the configuration; empty when usable."""

        errors: List[str] = []
        if not self.openvpn_binary.is_file():
            errors.append(f"openvpn_binary {self.openvpn_binary} does not exist")
        elif not os.access(self.openvpn_binary, os.X_OK):
            errors.append(f"openvpn_binary {self.openvpn_binary} is not executable")
        if not self.openvpn_config_file.is_file():
            errors.append(f"openvpn_config_file {self.openvpn_config_file} does not exist")
        try:
            split_address(self.server_address)
        except ValueError as exc:
            errors.append(f"server_address: {exc}")
        if self.server_timeout <= 0:
            errors.append("server_timeout must be positive")
        if self.probe_timeout <= 0:
            errors.append("probe_timeout must be positive")
        if self.auth_failed_retries < 0:
            errors.append("auth_failed_retries must not be negative")
        if self.verbosity < 0:
            errors.append("verbosity must not be negative")
        mode = self.temp_credentials_file_permissions
        if mode & ~MAX_CREDENTIALS_PERMISSIONS:
            errors.append(
                f"temp_credentials_file_permissions {mode:04o} is broader than owner read/write"
            )
        elif not mode & stat.S_IRUSR:
            errors.append(f"temp_credentials_file_permissions {mode:04o} does not allow reading")
        parent = self.temp_credentials_file_path.parent
        if not parent.is_dir():
            errors.append(f"directory for temp_credentials_file_path {parent} does not exist")
        return errors


def find_config_file(explicit: Path | None = None) -> Path:
    if explicit is not None:
        return expand_path(explicit)
    candidates = default_config_paths()
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    raise ConfigurationError(
        "please specify a config file, could not find any default in "
        + ", ".join(str(path) for path in candidates)
    )


def load_config(path: Path | None = None) -> Config:
    """Locate, read and parse the samlvpn configuration file."""

    config_path = find_config_file(path)
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise ConfigurationError(f"could not open config file {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"could not parse {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping of settings")
    config = Config.from_dict(data)
    logger.info("Parsed config file %s", config_path)
    return config
