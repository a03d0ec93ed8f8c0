"""Tests for the subprocess helpers."""

from __future__ import annotations

import asyncio
import io
import sys

import psutil
import pytest

from samlvpn.utils.processes import run_captured, run_passthrough, stream_process, terminate_tree


def test_run_captured_combines_output_and_feeds_stdin():
    script = "import sys; data = sys.stdin.read(); print(data.upper()); print('oops', file=sys.stderr)"

    result = asyncio.run(run_captured([sys.executable, "-c", script], stdin_data="n/a\nacs::1"))

    assert result.returncode == 0
    assert "N/A\nACS::1" in result.output
    assert "oops" in result.output


def test_run_captured_timeout_kills_process():
    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(run_captured(["sleep", "30"], timeout=0.3))


def test_stream_process_tees_lines():
    sink = io.StringIO()
    seen = []

    result = asyncio.run(
        stream_process(["/bin/sh", "-c", "echo one; echo two >&2; exit 3"], sink=sink, on_line=seen.append)
    )

    assert result.returncode == 3
    assert sorted(seen) == ["one", "two"]
    assert sorted(sink.getvalue().splitlines()) == ["one", "two"]
    assert result.interrupted is False


def test_stream_process_does_not_keep_output():
    script = "echo 'Initialization Sequence Completed'; i=0; while [ $i -lt 5000 ]; do echo \"line $i\"; i=$((i+1)); done"
    count = 0

    def on_line(line):
        nonlocal count
        count += 1

    result = asyncio.run(stream_process(["/bin/sh", "-c", script], sink=io.StringIO(), on_line=on_line))

    assert count == 5001
    assert vars(result) == {"returncode": 0, "interrupted": False}


def test_stream_process_stops_child_when_callback_fails():
    def on_line(line):
        raise RuntimeError("bad line")

    with pytest.raises(RuntimeError):
        asyncio.run(stream_process(["/bin/sh", "-c", "echo go; sleep 30"], sink=io.StringIO(), on_line=on_line))


def test_terminate_tree_stops_children():
    async def scenario():
        process = await asyncio.create_subprocess_exec("/bin/sh", "-c", "sleep 30 & sleep 30; wait")
        await asyncio.sleep(0.2)
        children = psutil.Process(process.pid).children(recursive=True)
        terminate_tree(process.pid, grace=2)
        await process.wait()
        return children

    children = asyncio.run(scenario())

    assert children
    assert all(not child.is_running() or child.status() == psutil.STATUS_ZOMBIE for child in children)


def test_terminate_tree_unknown_pid_is_noop():
    terminate_tree(2**22 + 12345)


def test_run_passthrough_returns_exit_code():
    assert run_passthrough(["/bin/sh", "-c", "exit 7"]) == 7
