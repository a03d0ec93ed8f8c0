"""Utilities for constructing OpenVPN command line arguments."""

from __future__ import annotations

from pathlib import Path
from typing import List

from .config import Config
from .session import SessionContext

STDIN_AUTH_SOURCE = "/dev/stdin"


def probe_placeholder(callback_port: int) -> str:
    """Return the non-secret credential that makes the server issue a challenge."""
    return f"N/A\nACS::{callback_port}"


def build_probe_command(session: SessionContext, config: Config, remote: str) -> List[str]:
    """Return the OpenVPN invocation that fetches the SAML challenge.

    The placeholder credential is fed on stdin and the run never retries, so
    the client exits right after the server answers with AUTH_FAILED.
    """

    return [
        str(session.binary),
        "--config", str(session.config_path),
        "--verb", str(config.verbosity),
        "--proto", session.protocol,
        "--remote", remote, str(session.port),
        "--auth-retry", "none",
        "--auth-user-pass", STDIN_AUTH_SOURCE,
    ]


def build_connect_command(
    session: SessionContext, config: Config, remote: str, credentials_path: Path
) -> List[str]:
    """Return the OpenVPN invocation for the authenticated session."""

    command = [
        str(session.binary),
        "--config", str(session.config_path),
        "--verb", str(config.verbosity),
        "--auth-nocache",
        "--proto", session.protocol,
        "--auth-retry", "none",
        "--auth-user-pass", str(credentials_path),
        "--remote", remote, str(session.port),
    ]
    if config.use_sudo:
        command.insert(0, "sudo")
    return command
