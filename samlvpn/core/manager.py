"""High-level manager orchestrating the SAML handshake and the VPN session."""

from __future__ import annotations

from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from rich.console import Console

from ..saml.listener import CallbackServer
from ..utils.browsers import open_or_show_link
from ..utils.logging import get_logger
from .config import Config
from .credentials import credentials_file, materialize_credentials, write_credentials_file
from .locator import Lookup, resolve_hostname
from .probe import Challenge, ChallengeProber
from .session import SessionContext, load_session
from .supervisor import ConnectionOutcome, ConnectionSupervisor

logger = get_logger("manager")

LinkOpener = Callable[[Sequence[str], str], Awaitable[bool]]


class ConnectionManager:
    """Coordinates the probe, the SAML callback and the supervised session.

    Collaborators are created from the configuration unless passed in, which
    lets tests drive the whole flow without OpenVPN or a browser.
    """

    def __init__(
        self,
        config: Config,
        session: SessionContext | None = None,
        prober: ChallengeProber | None = None,
        supervisor: ConnectionSupervisor | None = None,
        callback_server: CallbackServer | None = None,
        lookup: Lookup | None = None,
        link_opener: LinkOpener | None = None,
        console: Console | None = None,
    ) -> None:
        self.config = config
        self.session = session or load_session(config)
        self._lookup = lookup
        self.console = console or Console()
        self.prober = prober or ChallengeProber(self.session, config)
        self.supervisor = supervisor or ConnectionSupervisor(
            self.session, config, resolver=self.resolve, console=self.console
        )
        self._callback_server = callback_server
        self._link_opener = link_opener or open_or_show_link

    async def resolve(self, hostname: str | None = None) -> str:
        address = await resolve_hostname(hostname or self.session.host, self._lookup)
        logger.info("IP address: %s", address)
        return address

    async def fetch_challenge(self) -> Challenge:
        remote = await self.resolve()
        return await self.prober.probe(remote)

    def _new_callback_server(self) -> CallbackServer:
        if self._callback_server is not None:
            return self._callback_server
        return CallbackServer(
            self.config.server_host,
            self.config.server_port,
            redirect_url=self.config.redirect_url,
            timeout=self.config.server_timeout,
        )

    async def fetch_saml_response(self, challenge: Challenge) -> str:
        """Serve the callback endpoint, send the user to the IdP and wait."""

        server = self._new_callback_server()
        await server.start()
        try:
            await self._link_opener(self.config.browser_command, challenge.url)
        except BaseException:
            await server.stop()
            raise
        logger.info("Waiting for server to receive SAML callback")
        return await server.wait_for_response()

    async def fetch_credentials(self) -> str:
        challenge = await self.fetch_challenge()
        assertion = await self.fetch_saml_response(challenge)
        return materialize_credentials(challenge.sid, assertion)

    async def connect(self) -> Optional[ConnectionOutcome]:
        """Run the full flow.

        Returns the session outcome, or ``None`` when the command was only
        printed for the user to run.
        """

        payload = await self.fetch_credentials()
        path = Path(self.config.temp_credentials_file_path)
        permissions = self.config.temp_credentials_file_permissions
        if not self.config.run_command:
            write_credentials_file(path, payload, permissions)
            await self.supervisor.print_command(path)
            logger.warning("Credentials stay in %s until the printed command has used them", path)
            return None
        with credentials_file(path, payload, permissions) as written:
            return await self.supervisor.supervise(written)
