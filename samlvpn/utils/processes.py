"""Process management helpers."""

from __future__ import annotations

import asyncio
import signal
import subprocess
import sys
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, TextIO

import psutil

from .logging import get_logger

logger = get_logger("processes")


@dataclass
class CompletedRun:
    returncode: int
    output: str


@dataclass
class StreamedRun:
    """Exit status of a supervised process. Output goes to the callbacks only."""

    returncode: int
    interrupted: bool = False


async def run_captured(
    command: Sequence[str], stdin_data: str | None = None, timeout: float | None = None
) -> CompletedRun:
    """Run ``command`` to completion with stdout and stderr combined.

    On timeout the process is killed before ``asyncio.TimeoutError`` propagates.
    """

    process = await asyncio.create_subprocess_exec(
        *command,
        stdin=asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    payload = stdin_data.encode("utf-8") if stdin_data is not None else None
    try:
        stdout, _ = await asyncio.wait_for(process.communicate(payload), timeout=timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        terminate_tree(process.pid, grace=0)
        await process.wait()
        raise
    return CompletedRun(returncode=process.returncode, output=stdout.decode(errors="replace"))


def terminate_tree(pid: int, grace: float = 5.0) -> None:
    """Terminate ``pid`` and its descendants, killing whatever outlives ``grace``."""

    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    try:
        procs = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        procs = [parent]
    for proc in procs:
        try:
            if grace:
                proc.terminate()
            else:
                proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    if not grace:
        return
    _, alive = psutil.wait_procs(procs, timeout=grace)
    for proc in alive:
        logger.warning("Process %s still running; killing", proc.pid)
        try:
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue


async def stream_process(
    command: Sequence[str],
    sink: TextIO | None = None,
    on_line: Optional[Callable[[str], None]] = None,
) -> StreamedRun:
    """Run ``command`` until it exits, teeing its output to ``sink``.

    Lines are handed to ``on_line`` as they arrive and are not kept, so a
    session may run for days without its log piling up in memory.

    ``SIGINT`` received while the process runs is forwarded to it and recorded
    in the result instead of interrupting the caller.
    """

    sink = sink or sys.stdout
    loop = asyncio.get_running_loop()
    process = await asyncio.create_subprocess_exec(
        *command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    result = StreamedRun(returncode=-1)

    def _forward_interrupt() -> None:
        result.interrupted = True
        logger.info("Interrupt received; stopping pid %s", process.pid)
        try:
            process.send_signal(signal.SIGINT)
        except ProcessLookupError:
            pass

    handler_installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, _forward_interrupt)
        handler_installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        logger.debug("Cannot intercept SIGINT in this context")

    try:
        assert process.stdout is not None
        while True:
            raw = await process.stdout.readline()
            if not raw:
                break
            line = raw.decode(errors="replace").rstrip("\r\n")
            sink.write(line + "\n")
            sink.flush()
            logger.debug("openvpn: %s", line)
            if on_line:
                on_line(line)
        result.returncode = await process.wait()
    except BaseException:
        terminate_tree(process.pid)
        await process.wait()
        raise
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
    return result


def run_passthrough(command: Sequence[str]) -> int:
    """Run ``command`` with the terminal's stdio and return its exit status."""

    logger.info("Running %s", " ".join(command))
    completed = subprocess.run(list(command), check=False)
    return completed.returncode
