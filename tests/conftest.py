"""Shared fixtures for the samlvpn test suite."""

from __future__ import annotations

import stat
from pathlib import Path

import pytest

from samlvpn.core.config import Config
from samlvpn.core.session import SessionContext

OVPN_TEXT = """client
dev tun
proto udp
remote cvpn-endpoint-0123.prod.clientvpn.eu-west-1.amazonaws.com 443
remote-random-hostname
auth-user-pass
"""

PROBE_OUTPUT = """Fri Sep 25 13:12:53 2020 OpenVPN 2.4.9 x86_64-pc-linux-gnu
Fri Sep 25 13:12:53 2020 Some other log line :)
Fri Sep 25 13:12:53 2020 AUTH: Received control message: AUTH_FAILED,CRV1:R:instance-1/6876397182473095132/690502db-7813-4267-9706-be0838081823:b'Ti9B':https://samlwebsite.com/app/clientvpn/someURL
Fri Sep 25 13:12:53 2020 SIGTERM[soft,auth-failure] received, process exiting
"""


@pytest.fixture()
def openvpn_files(tmp_path: Path) -> tuple[Path, Path]:
    """Create a fake OpenVPN binary and config file."""

    binary = tmp_path / "openvpn"
    binary.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    binary.chmod(binary.stat().st_mode | stat.S_IXUSR)
    ovpn = tmp_path / "client.ovpn"
    ovpn.write_text(OVPN_TEXT, encoding="utf-8")
    return binary, ovpn


@pytest.fixture()
def config(tmp_path: Path, openvpn_files) -> Config:
    binary, ovpn = openvpn_files
    return Config(
        openvpn_binary=binary,
        openvpn_config_file=ovpn,
        server_address="127.0.0.1:0",
        server_timeout=5,
        browser_command=[],
        temp_credentials_file_path=tmp_path / "samlvpn-credentials",
        temp_credentials_file_permissions=0o600,
    )


@pytest.fixture()
def session(openvpn_files) -> SessionContext:
    binary, ovpn = openvpn_files
    return SessionContext(
        host="vpn.example.com",
        port=443,
        protocol="udp",
        binary=binary,
        config_path=ovpn,
    )
