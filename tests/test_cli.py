"""Tests for the typer command line interface."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from samlvpn import __version__, cli
from samlvpn.__main__ import main
from samlvpn.core.probe import Challenge
from samlvpn.core.supervisor import ConnectionOutcome, OutcomeKind
from samlvpn.errors import AuthFailedError, ConnectionFailedError

runner = CliRunner()


@pytest.fixture(autouse=True)
def _state_home(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))


@pytest.fixture()
def config_file(tmp_path, openvpn_files):
    binary, ovpn = openvpn_files
    path = tmp_path / "samlvpn.yaml"
    path.write_text(
        f"openvpn_binary: {binary}\n"
        f"openvpn_config_file: {ovpn}\n"
        f"temp_credentials_file_path: {tmp_path / 'creds'}\n"
        "browser_command: ''\n",
        encoding="utf-8",
    )
    return path


class FakeManager:
    outcome = None
    error = None
    instances = []

    def __init__(self, config, session=None, console=None):
        self.config = config
        self.session = session
        FakeManager.instances.append(self)

    async def connect(self):
        if self.error is not None:
            raise self.error
        return self.outcome

    async def fetch_challenge(self):
        return Challenge(url="https://idp.example/login", sid="instance-1/abc")


@pytest.fixture()
def fake_manager(monkeypatch):
    FakeManager.outcome = None
    FakeManager.error = None
    FakeManager.instances = []
    monkeypatch.setattr(cli, "ConnectionManager", FakeManager)
    return FakeManager


def test_check_shows_settings(config_file):
    result = runner.invoke(cli.app, ["check", "--config", str(config_file)])

    assert result.exit_code == 0, result.output
    assert "samlvpn configuration" in result.output
    assert "Remote" in result.output


def test_check_reports_validation_errors(config_file, openvpn_files):
    binary, _ = openvpn_files
    binary.unlink()

    result = runner.invoke(cli.app, ["check", "-c", str(config_file)])

    assert result.exit_code == 1
    assert "The configuration contains the following error(s):" in result.output


def test_missing_config_file_is_reported_with_phase(tmp_path):
    result = runner.invoke(cli.app, ["check", "-c", str(tmp_path / "absent.yaml")])

    assert result.exit_code == 1
    assert "[config]" in result.output


def test_connect_overrides_run_and_retries(config_file, fake_manager):
    fake_manager.outcome = ConnectionOutcome(OutcomeKind.SUCCESS, 0)

    result = runner.invoke(cli.app, ["connect", "-c", str(config_file), "--run", "--retries", "2"])

    assert result.exit_code == 0, result.output
    config = fake_manager.instances[0].config
    assert config.run_command is True
    assert config.auth_failed_retries == 2


def test_connect_reports_lost_connection(config_file, fake_manager):
    fake_manager.outcome = ConnectionOutcome(OutcomeKind.CONNECTION_LOST, 0)

    result = runner.invoke(cli.app, ["connect", "-c", str(config_file)])

    assert result.exit_code == 0
    assert "Connection lost" in result.output


def test_connect_failure_exits_non_zero(config_file, fake_manager):
    fake_manager.error = AuthFailedError(1)

    result = runner.invoke(cli.app, ["connect", "-c", str(config_file)])

    assert result.exit_code == 1
    assert "[connect] authentication failed after 1 attempt(s)" in result.output


def test_connect_reports_launch_failure(config_file, fake_manager):
    fake_manager.error = ConnectionFailedError("could not run sudo: No such file or directory")

    result = runner.invoke(cli.app, ["connect", "-c", str(config_file)])

    assert result.exit_code == 1
    assert "[connect] could not run sudo" in result.output


def test_connect_ctrl_c_exits_quietly(config_file, fake_manager):
    fake_manager.error = KeyboardInterrupt()

    result = runner.invoke(cli.app, ["connect", "-c", str(config_file)])

    assert result.exit_code == 130
    assert "Cancelled." in result.output
    assert "Traceback" not in result.output


def test_challenge_lookup_ctrl_c_exits_quietly(config_file, fake_manager, monkeypatch):
    async def interrupted(self):
        raise KeyboardInterrupt

    monkeypatch.setattr(fake_manager, "fetch_challenge", interrupted)

    result = runner.invoke(cli.app, ["probe", "-c", str(config_file)])

    assert result.exit_code == 130
    assert "Cancelled." in result.output


def test_connect_rejects_negative_retries(config_file, fake_manager):
    result = runner.invoke(cli.app, ["connect", "-c", str(config_file), "--retries", "-1"])

    assert result.exit_code == 2
    assert fake_manager.instances == []


def test_probe_prints_challenge(config_file, fake_manager):
    result = runner.invoke(cli.app, ["probe", "-c", str(config_file)])

    assert result.exit_code == 0, result.output
    assert "SID: instance-1/abc" in result.output
    assert "URL: https://idp.example/login" in result.output


def test_run_cli_returns_exit_code(config_file, tmp_path):
    assert cli.run_cli(["check", "-c", str(config_file)]) == 0
    assert cli.run_cli(["check", "-c", str(tmp_path / "absent.yaml")]) == 1


def test_main_prints_version(capsys):
    assert main(["--version"]) == 0
    assert capsys.readouterr().out.strip() == __version__
