"""Data structures describing the VPN endpoint for one connection."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..errors import ConfigurationError
from .config import Config

DEFAULT_PORT = 1194
DEFAULT_PROTOCOL = "udp"
PROTOCOLS = {"udp", "udp4", "udp6", "tcp", "tcp4", "tcp6", "tcp-client", "tcp4-client", "tcp6-client"}


@dataclass(frozen=True)
class SessionContext:
    """Where and how to reach the VPN, fixed for the lifetime of one run."""

    host: str
    port: int
    protocol: str
    binary: Path
    config_path: Path

    def display_name(self) -> str:
        return f"{self.host}:{self.port}/{self.protocol}"


def parse_openvpn_config(text: str, binary: Path, config_path: Path) -> SessionContext:
    """Extract the remote endpoint from the text of an OpenVPN config file.

    Only the first ``remote`` directive is used. A protocol given on the remote
    line wins over a ``proto`` directive.
    """

    host = None
    port = DEFAULT_PORT
    remote_protocol = None
    protocol = DEFAULT_PROTOCOL
    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if line.startswith(("#", ";")):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        directive = parts[0].lower()
        if directive == "remote" and host is None:
            host = parts[1]
            if len(parts) > 2:
                try:
                    port = int(parts[2])
                except ValueError as exc:
                    raise ConfigurationError(
                        f"remote line {number} has non-integer port {parts[2]!r}"
                    ) from exc
            if len(parts) > 3:
                remote_protocol = parts[3].lower()
        elif directive == "proto":
            protocol = parts[1].lower()

    if host is None:
        raise ConfigurationError(f"{config_path} has no remote directive")
    protocol = remote_protocol or protocol
    if protocol not in PROTOCOLS:
        raise ConfigurationError(f"{config_path} uses unsupported protocol {protocol!r}")
    return SessionContext(host=host, port=port, protocol=protocol, binary=binary, config_path=config_path)


def load_session(config: Config) -> SessionContext:
    try:
        text = config.openvpn_config_file.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"could not open OpenVPN config: {exc}") from exc
    return parse_openvpn_config(text, config.openvpn_binary, config.openvpn_config_file)
