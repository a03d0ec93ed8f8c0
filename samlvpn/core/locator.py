"""Hostname resolution that sidesteps cached DNS answers."""

from __future__ import annotations

import asyncio
import secrets
import socket
from typing import Awaitable, Callable, List

from ..errors import ResolutionError
from ..utils.logging import get_logger

logger = get_logger("locator")

Lookup = Callable[[str], Awaitable[List[str]]]


def random_label() -> str:
    return secrets.token_hex(12)


async def lookup_host(host: str) -> List[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return list(dict.fromkeys(info[4][0] for info in infos))


async def resolve_hostname(hostname: str, lookup: Lookup | None = None) -> str:
    """Resolve ``hostname`` through a fresh, uncached lookup.

    A random label is prepended so that no resolver along the way can answer
    from cache. Endpoints such as AWS Client VPN serve wildcard records and
    rotate addresses, and every attempt should land on a current one.
    """

    lookup = lookup or lookup_host
    host = f"{random_label()}.{hostname}"
    logger.info("Looking up %s", host)
    try:
        addresses = await lookup(host)
    except (OSError, UnicodeError) as exc:
        raise ResolutionError(f"could not look up {host}: {exc}") from exc
    if not addresses:
        raise ResolutionError(f"could not look up {host}: no addresses found")
    logger.debug("Resolved %s to %s", host, ", ".join(addresses))
    return addresses[0]
