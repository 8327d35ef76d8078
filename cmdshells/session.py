from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, List, Optional, TextIO

from .channel import OutputChannel
from .errors import EndOfStream, ProcessWaitError, StreamReadError
from .events import OutputEvent
from .shutdown import ShutdownPolicy, collect_descendants, terminate_processes

logger = logging.getLogger(__name__)


class ExecutionSession:
    """A running child process streamed line by line.

    Two decode tasks (stdout, stderr) and one coordinator task share the
    output channel. Decoders only send; the coordinator waits for the
    process, then for both decoders, and is the only one that closes the
    channel. Iterate the session until it ends; every failure after launch
    arrives in-band as an event carrying `error`.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        command: str,
        *,
        channel: Optional[OutputChannel] = None,
        encoding: str = "utf-8",
        errors: str = "replace",
        chunk_size: int = 1024,
        flush_partial_lines: bool = True,
        shutdown: ShutdownPolicy = ShutdownPolicy(),
        mirror: Optional[TextIO] = None,
    ) -> None:
        if process.stdout is None or process.stderr is None:
            raise ValueError("process must be started with stdout and stderr pipes")
        self.process = process
        self.command = command
        self.channel = channel or OutputChannel()
        self.encoding = encoding
        self.errors = errors
        self.chunk_size = chunk_size
        self.flush_partial_lines = flush_partial_lines
        self.shutdown = shutdown
        self.mirror = mirror
        self._readers: List[asyncio.Task] = []
        self._coordinator: Optional[asyncio.Task] = None
        self._cancel_lock = asyncio.Lock()
        self.cancelled = False

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    @property
    def finished(self) -> bool:
        # Closing the channel is the coordinator's last action.
        return self.channel.closed

    def start(self) -> "ExecutionSession":
        if self._coordinator is not None:
            raise RuntimeError("session already started")
        self._readers = [
            asyncio.create_task(self._decode(self.process.stdout, is_stderr=False), name=f"cmdshells-stdout-{self.pid}"),
            asyncio.create_task(self._decode(self.process.stderr, is_stderr=True), name=f"cmdshells-stderr-{self.pid}"),
        ]
        self._coordinator = asyncio.create_task(self._coordinate(), name=f"cmdshells-wait-{self.pid}")
        return self

    # ------------------------------------------------------------------
    # Decode paths

    def _mirror_line(self, line: str) -> None:
        if self.mirror is None:
            return
        try:
            self.mirror.write(line + "\n")
            self.mirror.flush()
        except Exception as exc:
            # The mirror is a side channel; losing it must not stop the events.
            logger.warning("pid=%s stderr mirror failed, disabling it: %r", self.pid, exc)
            self.mirror = None

    async def _emit_line(self, raw: bytes, is_stderr: bool) -> None:
        line = raw.decode(self.encoding, self.errors)
        if is_stderr:
            self._mirror_line(line)
        await self.channel.send(OutputEvent(line=line, is_stderr=is_stderr))

    async def _decode(self, stream: asyncio.StreamReader, *, is_stderr: bool) -> None:
        name = "stderr" if is_stderr else "stdout"
        try:
            await self._pump(stream, name, is_stderr)
            return
        except Exception as exc:
            logger.debug("pid=%s %s decode failed: %r", self.pid, name, exc)
            if not self.channel.closed:
                await self.channel.send(OutputEvent(error=StreamReadError(name, exc), is_stderr=is_stderr))
        # Path is terminated; keep emptying the pipe so the child never blocks on it.
        try:
            while await stream.read(65536):
                pass
        except Exception as exc:
            logger.debug("pid=%s %s discard stopped: %r", self.pid, name, exc)

    async def _pump(self, stream: asyncio.StreamReader, name: str, is_stderr: bool) -> None:
        buf = bytearray()
        while True:
            chunk = await stream.read(self.chunk_size)
            if not chunk:
                if buf and self.flush_partial_lines:
                    await self._emit_line(bytes(buf), is_stderr)
                await self.channel.send(OutputEvent(error=EndOfStream(name), is_stderr=is_stderr))
                return

            buf.extend(chunk)
            # Lines are decoded whole so multi-byte characters never split.
            while True:
                idx = buf.find(b"\n")
                if idx < 0:
                    break
                raw = bytes(buf[:idx])
                del buf[: idx + 1]
                await self._emit_line(raw, is_stderr)

    # ------------------------------------------------------------------
    # Lifecycle

    async def _coordinate(self) -> None:
        try:
            try:
                returncode = await self.process.wait()
            except Exception as exc:
                logger.warning("pid=%s wait failed: %r", self.pid, exc)
                await self.channel.send(OutputEvent(error=ProcessWaitError(self.command, None, cause=exc)))
            else:
                logger.debug("pid=%s exited with %s", self.pid, returncode)
                if returncode != 0:
                    await self.channel.send(OutputEvent(error=ProcessWaitError(self.command, returncode)))
            # Barrier: no decoder may still be able to send once we close.
            await asyncio.gather(*self._readers, return_exceptions=True)
        finally:
            await self.channel.close()

    async def wait(self) -> Optional[int]:
        """Wait until the channel is closed and return the exit code.

        Someone must be draining the session concurrently, or the decoders
        block on a full channel.
        """
        if self._coordinator is None:
            raise RuntimeError("session not started")
        await asyncio.shield(self._coordinator)
        return self.process.returncode

    async def _wait_root(self, timeout: float) -> bool:
        # returncode is set by the child watcher as soon as the process exits;
        # process.wait() would also wait for the pipes, which stay open while
        # nobody drains the channel.
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self.process.returncode is None:
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.shutdown.poll_interval_s)
        return True

    def _signal_root(self, *, kill: bool) -> None:
        try:
            if kill:
                self.process.kill()
            else:
                self.process.terminate()
        except ProcessLookupError:
            pass

    async def cancel(self) -> None:
        """Terminate the child and its descendants.

        Killing the tree closes both pipes, so each decoder's next read hits
        end-of-stream and the session winds down through its normal path.
        """
        async with self._cancel_lock:
            if self.finished:
                return
            self.cancelled = True
            logger.info("cancelling pid=%s << %s >>", self.pid, self.command)
            descendants = await asyncio.to_thread(collect_descendants, self.pid)
            if self.process.returncode is None:
                self._signal_root(kill=False)
            # Root exit may also wait on the pipes, which descendants can hold.
            tree = asyncio.create_task(asyncio.to_thread(terminate_processes, descendants, self.shutdown))
            if not await self._wait_root(self.shutdown.sigterm_timeout_s):
                logger.info("pid=%s ignored SIGTERM, killing", self.pid)
                self._signal_root(kill=True)
                if not await self._wait_root(self.shutdown.sigkill_timeout_s):
                    logger.warning("pid=%s still running after SIGKILL", self.pid)
            stats = await tree
            logger.debug("pid=%s descendants shutdown: %s", self.pid, stats)

    async def aclose(self) -> None:
        """Cancel if still running, then discard remaining events until close."""
        if self._coordinator is None:
            return
        # Drain while cancelling: a full channel would stall the pipes.
        drain = asyncio.create_task(self._drain())
        try:
            if not self.finished:
                await self.cancel()
        finally:
            await drain
        await self.wait()

    async def _drain(self) -> None:
        while not self.channel.drained:
            try:
                await self.channel.receive()
            except StopAsyncIteration:
                break

    # ------------------------------------------------------------------
    # Consumption

    def __aiter__(self) -> AsyncIterator[OutputEvent]:
        return self.channel.__aiter__()

    async def lines(self) -> AsyncIterator[str]:
        """Yield stdout lines only, dropping stderr lines and terminal events."""
        async for event in self.channel:
            if not event.is_error and not event.is_stderr:
                yield event.line

    async def __aenter__(self) -> "ExecutionSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        state = "finished" if self.finished else "running"
        return f"<ExecutionSession pid={self.pid} {state} command={self.command!r}>"
