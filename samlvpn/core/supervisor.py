"""Running the authenticated OpenVPN session and deciding what happened."""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence

from rich.console import Console

from ..errors import AuthFailedError, ClientExitError, ConnectionFailedError, CredentialError
from ..utils.logging import get_logger
from ..utils.processes import StreamedRun, run_passthrough, stream_process
from .command_builder import build_connect_command
from .config import Config
from .credentials import erase_credentials_file
from .locator import resolve_hostname
from .session import SessionContext

logger = get_logger("supervisor")

AUTH_FAILED_MARKER = "AUTH_FAILED"
INITIALIZED_MARKER = "Initialization Sequence Completed"

Resolver = Callable[[str], Awaitable[str]]
# Called as runner(command, on_line=callback).
ProcessRunner = Callable[..., Awaitable[StreamedRun]]
HookRunner = Callable[[Sequence[str]], int]


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    AUTH_FAILED = "auth_failed"
    CONNECTION_LOST = "connection_lost"
    USER_CANCELLED = "user_cancelled"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionOutcome:
    kind: OutcomeKind
    exit_code: Optional[int] = None

    def describe(self) -> str:
        if self.kind is OutcomeKind.ERROR:
            return f"error (exit code {self.exit_code})"
        return self.kind.value.replace("_", " ")


class SupervisorState(str, Enum):
    BUILDING = "building"
    RUNNING = "running"
    RECOVERY_HOOK = "recovery_hook"
    TERMINAL = "terminal"


class MarkerWatcher:
    """Remembers the first marker line of a session while it is running.

    Only the marker is kept, never the log itself.
    """

    def __init__(self) -> None:
        self.marker: Optional[str] = None

    def feed(self, line: str) -> Optional[str]:
        """Return the marker the first time one shows up, ``None`` otherwise."""

        if self.marker is not None:
            return None
        for marker in (AUTH_FAILED_MARKER, INITIALIZED_MARKER):
            if marker in line:
                self.marker = marker
                return marker
        return None

    def outcome(self, returncode: int, interrupted: bool = False) -> ConnectionOutcome:
        if self.marker == AUTH_FAILED_MARKER:
            return ConnectionOutcome(OutcomeKind.AUTH_FAILED, returncode)
        if interrupted:
            return ConnectionOutcome(OutcomeKind.USER_CANCELLED, returncode)
        if self.marker == INITIALIZED_MARKER:
            return ConnectionOutcome(OutcomeKind.CONNECTION_LOST, returncode)
        if returncode == 0:
            return ConnectionOutcome(OutcomeKind.SUCCESS, 0)
        return ConnectionOutcome(OutcomeKind.ERROR, returncode)


def classify_output(lines: Iterable[str], returncode: int, interrupted: bool = False) -> ConnectionOutcome:
    """Infer how an OpenVPN session ended from its log lines.

    OpenVPN's exit status says little, so the first marker found decides:
    ``AUTH_FAILED`` means the server rejected the credentials, and
    ``Initialization Sequence Completed`` means the tunnel came up. Once the
    tunnel was up, a later exit is taken to be a lost connection. That is a
    heuristic: the client cannot tell a network drop from a server-side
    shutdown. Sessions stopped by the user are reported as cancelled.
    """

    watcher = MarkerWatcher()
    for line in lines:
        if watcher.feed(line):
            break
    return watcher.outcome(returncode, interrupted)


class ConnectionSupervisor:
    """Owns the retry and recovery policy for the real VPN session."""

    def __init__(
        self,
        session: SessionContext,
        config: Config,
        resolver: Resolver | None = None,
        runner: ProcessRunner | None = None,
        hook_runner: HookRunner | None = None,
        console: Console | None = None,
    ) -> None:
        self.session = session
        self.config = config
        self._resolver = resolver or resolve_hostname
        self._runner = runner or stream_process
        self._hook_runner = hook_runner or run_passthrough
        self._console = console or Console()
        self.state = SupervisorState.BUILDING
        self.attempts = 0
        self.history: List[ConnectionOutcome] = []

    async def build_command(self, credentials_path: Path) -> List[str]:
        """Assemble the OpenVPN command against a freshly resolved address."""

        remote = await self._resolver(self.session.host)
        return build_connect_command(self.session, self.config, remote, credentials_path)

    async def run_once(self, credentials_path: Path) -> ConnectionOutcome:
        self.state = SupervisorState.BUILDING
        command = await self.build_command(credentials_path)
        self.state = SupervisorState.RUNNING
        self.attempts += 1
        logger.info("Starting openvpn (attempt %s)", self.attempts)
        logger.debug("Command: %s", shlex.join(command))
        watcher = MarkerWatcher()

        def on_line(line: str) -> None:
            if watcher.feed(line) == INITIALIZED_MARKER:
                self.discard_credentials(credentials_path)

        try:
            result = await self._runner(command, on_line=on_line)
        except OSError as exc:
            self.state = SupervisorState.TERMINAL
            raise ConnectionFailedError(f"could not run {command[0]}: {exc}") from exc
        outcome = watcher.outcome(result.returncode, result.interrupted)
        self.history.append(outcome)
        logger.info("openvpn finished: %s", outcome.describe())
        return outcome

    async def supervise(self, credentials_path: Path) -> ConnectionOutcome:
        """Run the session, retrying rejected credentials within the budget.

        Raises ``AuthFailedError`` when the budget runs out and
        ``ClientExitError`` for unexplained failures. A lost connection runs
        the configured hook and is returned, not raised.
        """

        budget = self.config.auth_failed_retries
        while True:
            outcome = await self.run_once(credentials_path)
            if outcome.kind is OutcomeKind.AUTH_FAILED:
                if budget > 0:
                    budget -= 1
                    logger.warning(
                        "Authentication failed on attempt %s; retrying (%s retries left)",
                        self.attempts,
                        budget,
                    )
                    continue
                self.state = SupervisorState.TERMINAL
                raise AuthFailedError(self.attempts)
            if outcome.kind is OutcomeKind.CONNECTION_LOST:
                logger.warning("Connection lost. Restart samlvpn to reconnect.")
                self.run_connection_lost_hook()
            self.state = SupervisorState.TERMINAL
            if outcome.kind is OutcomeKind.ERROR:
                raise ClientExitError(outcome.exit_code if outcome.exit_code is not None else -1)
            return outcome

    def discard_credentials(self, credentials_path: Path) -> None:
        """Erase the credentials file once OpenVPN has authenticated with it.

        The CRV1 token is single use, so nothing needs the file after the
        tunnel is up. If erasing fails here, the caller's cleanup tries again
        when the session ends.
        """

        logger.info("Tunnel is up; erasing credentials file %s", credentials_path)
        try:
            erase_credentials_file(credentials_path)
        except CredentialError as exc:
            logger.error("%s", exc)

    def run_connection_lost_hook(self) -> None:
        command = self.config.connection_lost_command
        if not command:
            return
        self.state = SupervisorState.RECOVERY_HOOK
        try:
            code = self._hook_runner(command)
        except OSError as exc:
            logger.error("Connection lost command could not run: %s", exc)
            return
        if code != 0:
            logger.error("Connection lost command exited with code %s", code)

    async def print_command(self, credentials_path: Path) -> str:
        """Print the assembled command for the user to run by hand."""

        command = shlex.join(await self.build_command(credentials_path))
        self._console.print(command, soft_wrap=True, markup=False, highlight=False)
        self.state = SupervisorState.TERMINAL
        return command

