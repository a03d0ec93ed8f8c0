"""Helpers to hand the SAML login URL to the user's browser."""

from __future__ import annotations

import asyncio
from typing import List, Sequence, Set, Tuple

from rich.console import Console
from rich.style import Style
from rich.text import Text

from .logging import get_logger

logger = get_logger("browsers")

URL_PLACEHOLDER = "%s"

# Browsers still running after the launch timeout, kept until they exit.
_reapers: Set[asyncio.Task[None]] = set()


def browser_argv(command: Sequence[str], url: str) -> List[str]:
    """Return ``command`` with the first ``%s`` replaced by ``url``.

    The URL is appended when no argument holds the placeholder.
    """

    argv = list(command)
    for index, arg in enumerate(argv):
        if URL_PLACEHOLDER in arg:
            argv[index] = arg.replace(URL_PLACEHOLDER, url, 1)
            return argv
    argv.append(url)
    return argv


async def launch_browser(command: Sequence[str], url: str, timeout: float = 10) -> bool:
    """Run the configured browser command for ``url``.

    Returns ``True`` if the command ran successfully, otherwise ``False``. A
    browser that is still running after ``timeout`` counts as launched; its
    output is still collected in the background until it exits.
    """

    argv = browser_argv(command, url)
    logger.info("Launching %s", argv[0])
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as exc:
        logger.warning("Could not open URL in browser: %s", exc)
        return False
    communicate = asyncio.ensure_future(process.communicate())
    try:
        stdout, _ = await asyncio.wait_for(asyncio.shield(communicate), timeout=timeout)
    except asyncio.TimeoutError:
        logger.info("Browser command is still running; not waiting for it")
        reaper = asyncio.ensure_future(_reap(process, communicate))
        _reapers.add(reaper)
        reaper.add_done_callback(_reapers.discard)
        return True
    return _report(process.returncode, stdout)


def _report(returncode: int | None, stdout: bytes) -> bool:
    output = stdout.decode(errors="replace").strip()
    if output:
        logger.info("Your browser said: %s", output)
    if returncode != 0:
        logger.warning("Browser command exited with code %s", returncode)
        return False
    return True


async def _reap(process: asyncio.subprocess.Process, communicate: asyncio.Future[Tuple[bytes, bytes]]) -> None:
    """Keep draining a browser that outlived the launch timeout until it exits."""

    stdout, _ = await communicate
    _report(process.returncode, stdout)


async def open_or_show_link(command: Sequence[str], url: str, console: Console | None = None) -> bool:
    """Open ``url`` with ``command``, or show it when that is not possible."""

    console = console or Console(stderr=True)
    if command and await launch_browser(command, url):
        return True
    label = "Open this" if not command else "Open this manually"
    console.print(Text.assemble(f"{label}: ", (url, Style(link=url))), soft_wrap=True)
    return False
