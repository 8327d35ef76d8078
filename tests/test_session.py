import asyncio
import io
import signal
import time
from pathlib import Path
from typing import List

import pytest

from cmdshells import (
    EndOfStream,
    Executor,
    LaunchError,
    OutputEvent,
    ProcessWaitError,
    ShellBinding,
    StreamReadError,
)

from .conftest import requires_bash

pytestmark = [pytest.mark.anyio, requires_bash]


async def _collect(session) -> List[OutputEvent]:
    return [event async for event in session]


def _lines(events: List[OutputEvent], *, stderr: bool) -> List[str]:
    return [e.line for e in events if not e.is_error and e.is_stderr == stderr]


async def test_echo_hello(executor: Executor) -> None:
    session = await executor.async_execute("echo hello")
    events = await _collect(session)

    assert _lines(events, stderr=False) == ["hello"]
    assert _lines(events, stderr=True) == []
    assert not [e for e in events if e.failed]
    assert session.channel.closed and session.channel.drained
    assert await session.wait() == 0


async def test_one_terminal_event_per_path(executor: Executor) -> None:
    events = await _collect(await executor.async_execute("echo hello"))

    eofs = [e for e in events if e.is_eof]
    assert len(eofs) == 2
    assert sorted(e.is_stderr for e in eofs) == [False, True]
    assert all(isinstance(e.error, EndOfStream) for e in eofs)


async def test_no_line_after_path_terminates(executor: Executor) -> None:
    events = await _collect(await executor.async_execute("printf 'a\\nb\\n'; printf 'x\\n' >&2"))

    for is_stderr in (False, True):
        path = [e for e in events if e.is_stderr == is_stderr]
        assert path[-1].is_eof
        assert not any(e.is_eof for e in path[:-1])


async def test_both_streams_are_tagged(executor: Executor) -> None:
    events = await _collect(await executor.async_execute("echo out; echo err 1>&2"))

    assert _lines(events, stderr=False) == ["out"]
    assert _lines(events, stderr=True) == ["err"]
    assert not [e for e in events if e.failed]


async def test_per_path_order_is_preserved(make_executor) -> None:
    executor = make_executor(chunk_size=1, buffer_size=1)
    session = await executor.async_execute("for i in $(seq 1 200); do echo $i; echo e$i >&2; done")
    events = await _collect(session)

    assert _lines(events, stderr=False) == [str(i) for i in range(1, 201)]
    assert _lines(events, stderr=True) == [f"e{i}" for i in range(1, 201)]


async def test_empty_lines_are_kept(executor: Executor) -> None:
    events = await _collect(await executor.async_execute("printf '\\nmid\\n\\n'"))
    assert _lines(events, stderr=False) == ["", "mid", ""]


async def test_partial_last_line_is_flushed(executor: Executor) -> None:
    events = await _collect(await executor.async_execute("printf 'one\\ntwo'"))
    assert _lines(events, stderr=False) == ["one", "two"]


async def test_partial_last_line_dropped_when_disabled(make_executor) -> None:
    executor = make_executor(flush_partial_lines=False)
    events = await _collect(await executor.async_execute("printf 'one\\ntwo'"))
    assert _lines(events, stderr=False) == ["one"]


async def test_multibyte_split_across_reads(make_executor) -> None:
    executor = make_executor(chunk_size=1)
    events = await _collect(await executor.async_execute("printf 'h\\xc3\\xa9llo\\n'"))
    assert _lines(events, stderr=False) == ["héllo"]


async def test_failing_exit_is_delivered_in_band(executor: Executor) -> None:
    session = await executor.async_execute("echo partial; exit 3")
    events = await _collect(session)

    failures = [e for e in events if e.failed]
    assert len(failures) == 1
    assert isinstance(failures[0].error, ProcessWaitError)
    assert failures[0].error.returncode == 3
    assert _lines(events, stderr=False) == ["partial"]
    assert session.returncode == 3


async def test_launch_error_is_synchronous(executor: Executor) -> None:
    executor._binding = ShellBinding("/nonexistent/definitely-not-a-shell", "-c")
    with pytest.raises(LaunchError):
        await executor.async_execute("echo hello")


async def test_extra_args_become_positional(executor: Executor) -> None:
    events = await _collect(await executor.async_execute('echo "$0|$1"', "first", "second word"))
    assert _lines(events, stderr=False) == ["first|second word"]


async def test_runs_in_executor_workdir(executor: Executor, tmp_path: Path) -> None:
    events = await _collect(await executor.async_execute("pwd -P"))
    assert _lines(events, stderr=False) == [str(tmp_path.resolve())]


async def test_parity_with_execute(executor: Executor) -> None:
    command = "printf 'a\\n\\nb\\n'; echo noise >&2"
    buffered = await executor.execute(command)
    events = await _collect(await executor.async_execute(command))
    assert "\n".join(_lines(events, stderr=False)) + "\n" == buffered


async def test_small_buffer_does_not_drop_events(make_executor) -> None:
    executor = make_executor(buffer_size=1)
    session = await executor.async_execute("seq 1 500")
    got = []
    async for event in session:
        await asyncio.sleep(0)
        if not event.is_error:
            got.append(event.line)
    assert got == [str(i) for i in range(1, 501)]


async def test_lines_helper_yields_stdout_only(executor: Executor) -> None:
    session = await executor.async_execute("echo a; echo b >&2; echo c")
    assert [line async for line in session.lines()] == ["a", "c"]


async def test_debug_mirrors_stderr(tmp_path: Path) -> None:
    mirror = io.StringIO()
    executor = Executor("bash", cwd=tmp_path, mirror=mirror)
    executor.debug()
    events = await _collect(await executor.async_execute("echo visible >&2"))

    assert mirror.getvalue() == "visible\n"
    assert _lines(events, stderr=True) == ["visible"]


async def test_cancel_unblocks_readers(executor: Executor) -> None:
    session = await executor.async_execute("echo started; sleep 30; echo never")
    it = session.__aiter__()
    first = await asyncio.wait_for(it.__anext__(), 5)
    assert first.line == "started"

    started = time.monotonic()
    await session.cancel()
    rest = [event async for event in it]
    assert time.monotonic() - started < 10

    assert session.cancelled
    assert "never" not in _lines(rest, stderr=False)
    assert sum(1 for e in rest if e.is_eof) == 2
    assert session.returncode is not None and session.returncode != 0


async def test_context_manager_closes_abandoned_session(executor: Executor) -> None:
    async with await executor.async_execute("while true; do echo tick; sleep 0.01; done") as session:
        async for event in session:
            assert event.line == "tick"
            break
    assert session.finished
    assert session.channel.drained


async def test_cancel_after_finish_is_noop(executor: Executor) -> None:
    session = await executor.async_execute("true")
    await _collect(session)
    await session.cancel()
    assert not session.cancelled


class _BrokenMirror(io.StringIO):
    def write(self, text: str) -> int:
        raise BrokenPipeError("mirror closed")


async def test_failing_mirror_does_not_stop_stderr(tmp_path: Path) -> None:
    executor = Executor("bash", cwd=tmp_path, mirror=_BrokenMirror())
    executor.debug()
    session = await executor.async_execute("echo a >&2; head -c 300000 /dev/zero | tr '\\0' 'x' >&2; echo >&2; echo done")
    events = await asyncio.wait_for(_collect(session), 15)

    err = _lines(events, stderr=True)
    assert err[0] == "a"
    assert len(err) == 2 and len(err[1]) == 300000
    assert _lines(events, stderr=False) == ["done"]
    assert sum(1 for e in events if e.is_eof) == 2
    assert session.mirror is None


async def test_decode_failure_ends_path_and_drains_pipe(make_executor) -> None:
    executor = make_executor(errors="strict")
    session = await executor.async_execute("printf 'ok\\n\\xff\\n'; head -c 300000 /dev/zero; echo e >&2")
    events = await asyncio.wait_for(_collect(session), 15)

    stdout = [e for e in events if not e.is_stderr and e.is_error]
    assert len(stdout) == 1
    assert isinstance(stdout[0].error, StreamReadError) and not stdout[0].is_eof
    assert _lines(events, stderr=False) == ["ok"]
    assert _lines(events, stderr=True) == ["e"]
    assert [e.is_stderr for e in events if e.is_eof] == [True]
    assert session.returncode == 0


async def test_cancel_without_consumer_returns_promptly(executor: Executor) -> None:
    session = await executor.async_execute("yes")
    await asyncio.sleep(0.5)

    started = time.monotonic()
    await session.cancel()
    assert time.monotonic() - started < 1.0
    assert session.returncode == -signal.SIGTERM

    await asyncio.wait_for(session.aclose(), 10)
    assert session.finished
