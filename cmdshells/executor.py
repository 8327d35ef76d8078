from __future__ import annotations

import asyncio
import logging
import os
import subprocess
import sys
from typing import Dict, List, Optional, TextIO, Union

import aiofiles.os

from .channel import OutputChannel
from .errors import DirectoryOpError, LaunchError, ProcessWaitError
from .permission import resolve_perm, to_file_mode
from .session import ExecutionSession
from .shellspec import ExecutorConfig, ShellBinding, ShellKind, resolve_shell
from .workdir import PathLike, WorkingDirectoryContext

logger = logging.getLogger(__name__)


class Executor:
    """Runs command strings through a platform shell.

    `execute` buffers the whole stdout; `async_execute` returns a live
    `ExecutionSession` that streams tagged lines. Directory helpers act on
    the executor's own `WorkingDirectoryContext`, which is also the cwd of
    every launched command.
    """

    def __init__(
        self,
        shell: Union[ShellKind, str, None] = None,
        *,
        config: Optional[ExecutorConfig] = None,
        cwd: Optional[Union[PathLike, WorkingDirectoryContext]] = None,
        mirror: Optional[TextIO] = None,
    ) -> None:
        self.config = config or ExecutorConfig()
        self.shell = ShellKind.parse(shell) if shell is not None else self.config.shell
        self._binding = resolve_shell(self.shell)
        self.is_debug = self.config.debug
        self._mirror = mirror
        if isinstance(cwd, WorkingDirectoryContext):
            self.workdir = cwd
        else:
            self.workdir = WorkingDirectoryContext(cwd or self.config.cwd)

    @property
    def binding(self) -> ShellBinding:
        return self._binding

    def debug(self) -> None:
        """Inherit stdin and mirror child stderr to our own stderr."""
        self.is_debug = True

    def _prepare_env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.config.env)
        return env

    def _argv(self, command: str, extra_args) -> List[str]:
        return self._binding.argv(command, extra_args)

    # ------------------------------------------------------------------
    # Launcher

    async def _launch(self, argv: List[str]) -> asyncio.subprocess.Process:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(self.workdir.path),
                env=self._prepare_env(),
                stdin=None if self.is_debug else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            logger.warning("Couldn't launch %s: %s", argv[0], exc)
            raise LaunchError(argv, exc) from exc
        logger.debug("launched pid=%s argv=%r cwd=%s", proc.pid, argv, self.workdir.path)
        return proc

    # ------------------------------------------------------------------
    # Execution

    async def execute(self, command: str, *extra_args: str) -> str:
        """Run `command` to completion and return its decoded stdout.

        A failing exit status raises ProcessWaitError with `output` and
        `stderr` attached.
        """
        argv = self._argv(command, extra_args)
        proc = await self._launch(argv)
        stdout, stderr = await proc.communicate()
        output = stdout.decode(self.config.encoding, self.config.errors)
        err_text = stderr.decode(self.config.encoding, self.config.errors)
        if self.is_debug and err_text:
            mirror = self._mirror or sys.stderr
            mirror.write(err_text)
            mirror.flush()
        if proc.returncode != 0:
            logger.warning("Couldn't Run Command << %s >> (exit status %s)", command, proc.returncode)
            raise ProcessWaitError(command, proc.returncode, output=output, stderr=err_text)
        return output

    async def async_execute(self, command: str, *extra_args: str) -> ExecutionSession:
        """Start `command` and return a session streaming its output.

        Launch failures raise LaunchError here; after that every failure is
        delivered as an event on the session.
        """
        argv = self._argv(command, extra_args)
        proc = await self._launch(argv)
        session = ExecutionSession(
            proc,
            command,
            channel=OutputChannel(self.config.buffer_size),
            encoding=self.config.encoding,
            errors=self.config.errors,
            chunk_size=self.config.chunk_size,
            flush_partial_lines=self.config.flush_partial_lines,
            shutdown=self.config.shutdown,
            mirror=(self._mirror or sys.stderr) if self.is_debug else None,
        )
        return session.start()

    def clear(self) -> None:
        """Clear the attached terminal."""
        argv = ["cmd", "/c", "cls"] if sys.platform.startswith("win") else ["clear"]
        try:
            result = subprocess.run(argv, stdout=sys.stdout, check=False)
        except OSError as exc:
            raise LaunchError(argv, exc) from exc
        if result.returncode != 0:
            raise ProcessWaitError(" ".join(argv), result.returncode)

    # ------------------------------------------------------------------
    # Directory helpers

    async def mkdir(self, name: PathLike, *perm: int) -> None:
        """Create a directory; permission digits default to (7, 5, 5).

        The mode is still subject to the process umask.
        """
        mode = to_file_mode(resolve_perm(*perm))
        target = self.workdir.resolve(name)
        try:
            await aiofiles.os.mkdir(target, mode)
        except OSError as exc:
            raise DirectoryOpError("mkdir", str(name), exc) from exc
        logger.debug("mkdir %s mode=%o", target, mode)

    async def mkdir_and_cd(self, name: PathLike, *perm: int) -> None:
        await self.mkdir(name, *perm)
        await self.cd(name)

    async def cd(self, path: PathLike) -> None:
        target = self.workdir.resolve(path)
        if not await aiofiles.os.path.isdir(target):
            raise DirectoryOpError("cd", str(path), NotADirectoryError(str(target)))
        self.workdir.chdir(target)

    async def rm(self, path: PathLike) -> None:
        """Remove a file or an empty directory."""
        target = self.workdir.resolve(path)
        try:
            if await aiofiles.os.path.isdir(target) and not await aiofiles.os.path.islink(target):
                await aiofiles.os.rmdir(target)
            else:
                await aiofiles.os.remove(target)
        except OSError as exc:
            raise DirectoryOpError("rm", str(path), exc) from exc
        logger.debug("rm %s", target)
