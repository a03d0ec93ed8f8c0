"""Building and storing the CRV1 credential payload."""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ..errors import CredentialError
from ..utils.logging import get_logger
from .config import MAX_CREDENTIALS_PERMISSIONS

logger = get_logger("credentials")


def materialize_credentials(sid: str, assertion: str) -> str:
    """Return the auth-user-pass payload answering the CRV1 challenge."""

    if not sid:
        raise CredentialError("session ID is empty")
    if not assertion:
        raise CredentialError("SAML response is empty")
    return f"N/A\nCRV1::{sid}::{assertion}"


def write_credentials_file(path: Path, payload: str, permissions: int = 0o400) -> Path:
    """Write ``payload`` to a freshly created file readable only by its owner.

    Any file left at ``path`` by an earlier run is removed first; the new file
    is created exclusively so it is never appended to or reused.
    """

    if permissions & ~MAX_CREDENTIALS_PERMISSIONS:
        raise CredentialError(f"refusing to create credentials file with mode {permissions:04o}")
    path = Path(path)
    try:
        path.unlink()
        logger.debug("Deleted stale credentials file %s", path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        raise CredentialError(f"could not delete old credentials file {path}: {exc}") from exc
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, permissions)
    except OSError as exc:
        raise CredentialError(f"could not create credentials file {path}: {exc}") from exc
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
    except OSError as exc:
        path.unlink(missing_ok=True)
        raise CredentialError(f"could not write credentials file {path}: {exc}") from exc
    logger.info("Saved credentials to %s", path)
    return path


def erase_credentials_file(path: Path) -> None:
    """Overwrite the credentials file with zeroes and delete it."""

    path = Path(path)
    try:
        size = path.stat().st_size
    except FileNotFoundError:
        return
    try:
        os.chmod(path, 0o600)
        with path.open("r+b") as handle:
            handle.write(b"\0" * size)
            handle.flush()
            os.fsync(handle.fileno())
    except OSError as exc:
        logger.warning("Could not overwrite credentials file %s: %s", path, exc)
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError as exc:
        raise CredentialError(f"could not delete credentials file {path}: {exc}") from exc
    logger.info("Erased credentials file %s", path)


@contextmanager
def credentials_file(path: Path, payload: str, permissions: int = 0o400) -> Iterator[Path]:
    """Provide the written credentials file and erase it however the block exits."""

    written = write_credentials_file(path, payload, permissions)
    try:
        yield written
    finally:
        erase_credentials_file(written)
