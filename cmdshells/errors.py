from __future__ import annotations

from typing import List, Optional


class CmdShellsError(Exception):
    """Base class for every error raised or delivered by cmdshells."""


class LaunchError(CmdShellsError):
    """The shell could not be started; no session exists."""

    def __init__(self, argv: List[str], cause: Optional[BaseException] = None):
        self.argv = list(argv)
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Couldn't launch {self.argv[0] if self.argv else '<empty>'}{detail}")


class StreamReadError(CmdShellsError):
    """A decode path stopped reading its stream."""

    def __init__(self, stream: str, cause: Optional[BaseException] = None):
        self.stream = stream
        self.cause = cause
        super().__init__(f"{stream} read failed: {cause}" if cause else f"{stream} read failed")


class EndOfStream(StreamReadError):
    """Normal termination of a decode path."""

    def __init__(self, stream: str):
        super().__init__(stream)
        self.args = (f"{stream}: EOF",)


class ProcessWaitError(CmdShellsError):
    """The child exited with a failure status, or waiting for it failed."""

    def __init__(
        self,
        command: str,
        returncode: Optional[int],
        *,
        output: str = "",
        stderr: str = "",
        cause: Optional[BaseException] = None,
    ):
        self.command = command
        self.returncode = returncode
        self.output = output
        self.stderr = stderr
        self.cause = cause
        if cause is not None:
            msg = f"waiting for << {command} >> failed: {cause}"
        elif returncode is not None and returncode < 0:
            msg = f"<< {command} >> killed by signal {-returncode}"
        else:
            msg = f"<< {command} >> exited with status {returncode}"
        super().__init__(msg)


class DirectoryOpError(CmdShellsError):
    """A directory helper failed; wraps the underlying OSError."""

    def __init__(self, op: str, path: str, cause: Optional[BaseException] = None):
        self.op = op
        self.path = path
        self.cause = cause
        super().__init__(f"{op} {path!r} failed: {cause}" if cause else f"{op} {path!r} failed")


class PermissionEncodingError(CmdShellsError, ValueError):
    """A permission component is not a single octal digit."""


class ChannelClosed(CmdShellsError):
    """Send or close attempted on an already closed output channel."""
