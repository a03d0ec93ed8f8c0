"""Fetching the SAML challenge URL and session ID from OpenVPN.

The server only reveals the IdP URL inside an authentication failure. The
prober runs OpenVPN once with a placeholder credential and scrapes the
resulting control message out of the client log.

The parse is tied to the log format of OpenVPN 2.x, where the relevant line
reads::

    Fri Sep 25 13:12:53 2020 AUTH: Received control message: AUTH_FAILED,CRV1:R:<SID>:<b64 user>:<URL>

Split on ``:``, the timestamp contributes two extra fields, so the SID is
field 6 and the URL is fields 8 and 9 joined back together. A change to the
client's log prefix breaks this, and the tests pin the format down.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence
from urllib.parse import urlsplit

from ..errors import ProbeExecError, ProbeParseError, ProbeTimeoutError
from ..utils.logging import get_logger
from ..utils.processes import CompletedRun, run_captured
from .command_builder import build_probe_command, probe_placeholder
from .config import Config
from .session import SessionContext

logger = get_logger("probe")

AUTH_FAILED_MARKER = "AUTH_FAILED"
SID_FIELD = 6
URL_FIELDS = (8, 9)
MIN_FIELDS = 10

Runner = Callable[[Sequence[str], Optional[str], Optional[float]], Awaitable[CompletedRun]]


@dataclass(frozen=True)
class Challenge:
    url: str
    sid: str


def find_marker_line(output: str) -> Optional[str]:
    for line in output.splitlines():
        if AUTH_FAILED_MARKER in line:
            return line
    return None


def parse_challenge(output: str) -> Challenge:
    """Return the challenge carried by the first AUTH_FAILED line of ``output``."""

    line = find_marker_line(output)
    if line is None:
        raise ProbeParseError("could not find AUTH_FAILED line")
    fields = line.split(":")
    if len(fields) < MIN_FIELDS:
        raise ProbeParseError(f"could not find SID in output: {line!r}")
    sid = fields[SID_FIELD].strip()
    url = ":".join(fields[index] for index in URL_FIELDS).strip()
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ProbeParseError(f"could not parse challenge URL {url!r}")
    if not sid:
        raise ProbeParseError(f"empty SID in output: {line!r}")
    return Challenge(url=url, sid=sid)


class ChallengeProber:
    """Runs the deliberately failing authentication attempt."""

    def __init__(self, session: SessionContext, config: Config, runner: Runner | None = None) -> None:
        self.session = session
        self.config = config
        self._runner = runner or run_captured

    async def probe(self, remote: str | None = None) -> Challenge:
        """Run OpenVPN against ``remote`` once and return the challenge.

        ``remote`` defaults to the host named in the OpenVPN config.

        Every call uses up an authentication attempt on the server, so callers
        must not retry it behind the user's back.
        """

        remote = remote or self.session.host
        command = build_probe_command(self.session, self.config, remote)
        placeholder = probe_placeholder(self.config.server_port)
        timeout = self.config.probe_timeout
        logger.info("Obtaining AUTH_FAILED response from %s", remote)
        logger.debug("Probe command: %s", " ".join(command))
        try:
            result = await self._runner(command, placeholder, timeout)
        except asyncio.TimeoutError as exc:
            raise ProbeTimeoutError(f"openvpn did not answer within {timeout:g}s") from exc
        except OSError as exc:
            raise ProbeExecError(f"could not run {command[0]}: {exc}") from exc

        if result.returncode != 0 and find_marker_line(result.output) is None:
            raise ProbeExecError(
                f"openvpn exited with code {result.returncode} before the AUTH_FAILED response:\n"
                f"{result.output}",
                output=result.output,
            )
        challenge = parse_challenge(result.output)
        logger.info("Received challenge for session %s", challenge.sid)
        return challenge
