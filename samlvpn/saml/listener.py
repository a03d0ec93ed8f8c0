"""Asynchronous SAML HTTP callback listener."""

from __future__ import annotations

import asyncio
import html
from enum import Enum
from typing import Optional

from aiohttp import web

from ..errors import CallbackError, CallbackTimeoutError, CallbackValidationError
from ..utils.logging import get_logger

logger = get_logger("saml")

SAML_FIELD = "SAMLResponse"


class ListenerState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    FULFILLED = "fulfilled"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


def success_page(redirect_url: str | None = None) -> str:
    redirect_html = ""
    message = "You can close this now."
    if redirect_url:
        escaped = html.escape(redirect_url, quote=True)
        redirect_html = f'<meta http-equiv="refresh" content="5; url={escaped}" />'
        message = f"Redirecting you to {escaped}..."
    return (
        "<html><head><title>samlvpn</title>"
        f"{redirect_html}</head>"
        "<body><h2>Got SAML response!</h2>"
        f"<p>{message}</p></body></html>"
    )


class CallbackServer:
    """Runs a short-lived HTTP server waiting for the IdP's SAML POST.

    Only the first valid submission is handed to the waiting caller; the
    handoff is a future that is completed at most once.
    """

    def __init__(self, host: str, port: int, redirect_url: str | None = None, timeout: float = 120) -> None:
        self.host = host
        self.port = port
        self.redirect_url = redirect_url
        self.timeout = timeout
        self.state = ListenerState.IDLE
        self._runner: web.AppRunner | None = None
        self._response: Optional[asyncio.Future[str]] = None
        self._claimed = False

    @property
    def bound_port(self) -> int | None:
        if not self._runner:
            return None
        for address in self._runner.addresses:
            if isinstance(address, tuple):
                return address[1]
        return None

    async def start(self) -> None:
        if self.state is not ListenerState.IDLE:
            raise CallbackError(f"listener cannot start from state {self.state.value}")
        self._response = asyncio.get_running_loop().create_future()
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self._handle_request)
        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, host=self.host, port=self.port)
        try:
            await site.start()
        except OSError as exc:
            await runner.cleanup()
            raise CallbackError(f"could not listen on {self.host}:{self.port}: {exc}") from exc
        self._runner = runner
        self.state = ListenerState.LISTENING
        logger.info("SAML listener started on %s:%s, timeout %gs", self.host, self.bound_port, self.timeout)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.debug("SAML listener stopped")
        if self.state is ListenerState.LISTENING:
            self.state = ListenerState.CLOSED

    async def wait_for_response(self) -> str:
        """Wait for the SAML response; the listener is closed on every path."""

        if self._response is None:
            raise CallbackError("listener was never started")
        try:
            response = await asyncio.wait_for(asyncio.shield(self._response), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            self.state = ListenerState.TIMED_OUT
            raise CallbackTimeoutError(
                f"timed out waiting for SAML response after {self.timeout:g}s"
            ) from exc
        finally:
            await self.stop()
        return response

    def publish(self, assertion: str) -> bool:
        """Hand ``assertion`` to the waiting caller; ``False`` if one was already delivered."""

        if self._response is None or self._response.done():
            return False
        self._response.set_result(assertion)
        self.state = ListenerState.FULFILLED
        return True

    async def _read_assertion(self, request: web.Request) -> str:
        try:
            form = await request.post()
        except Exception as exc:
            raise CallbackError(f"could not parse SAML form data: {exc}") from exc
        value = form.get(SAML_FIELD)
        if not isinstance(value, str) or not value:
            raise CallbackValidationError(f"{SAML_FIELD} form field is missing or empty")
        return value

    async def _handle_request(self, request: web.Request) -> web.Response:
        logger.info("Handling HTTP request %s %s", request.method, request.rel_url)
        if request.method != "POST":
            return web.Response(status=405, text="hey there! you might want to try POST")
        try:
            assertion = await self._read_assertion(request)
        except CallbackValidationError as exc:
            logger.warning("%s", exc)
            return web.Response(status=400, text=str(exc))
        except CallbackError as exc:
            logger.warning("%s", exc)
            return web.Response(status=500, text=str(exc))
        if self._claimed or self._response is None or self._response.done():
            logger.warning("Ignoring SAML response received after the first one")
            return web.Response(status=409, text="SAML response already received")
        self._claimed = True
        logger.info("Received SAML response")
        response = web.Response(text=success_page(self.redirect_url), content_type="text/html")
        try:
            # Page first: the waiter closes the listener as soon as it has the value.
            await response.prepare(request)
            await response.write_eof()
        finally:
            self.publish(assertion)
        return response
