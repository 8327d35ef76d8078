"""cmdshells - run shell commands and stream their output line by line."""

from typing import Optional

from .executor import Executor
from .session import ExecutionSession
from .channel import OutputChannel
from .events import OutputEvent
from .shellspec import (
    ShellKind,
    ShellBinding,
    ExecutorConfig,
    resolve_shell,
    load_config,
    parse_config_data,
    config_from_env,
)
from .permission import PermissionMode, merge_perm, to_file_mode, resolve_perm
from .shutdown import ShutdownPolicy
from .workdir import WorkingDirectoryContext
from .errors import (
    CmdShellsError,
    LaunchError,
    StreamReadError,
    EndOfStream,
    ProcessWaitError,
    DirectoryOpError,
    PermissionEncodingError,
    ChannelClosed,
)

__version__ = "0.1.0"

# Process-wide default executor
_executor_instance: Optional[Executor] = None
_executor_kwargs: Optional[dict] = None


def get_executor(**kwargs) -> Executor:
    """Get or create the default Executor.

    Without a `config` kwarg the executor is configured from the
    CMDSHELLS_* environment. Later calls must pass the same kwargs (or none).
    """
    global _executor_instance
    global _executor_kwargs
    if _executor_instance is not None:
        if kwargs and _executor_kwargs is not None and kwargs != _executor_kwargs:
            raise ValueError("default Executor already created with different configuration")
        return _executor_instance

    _executor_kwargs = dict(kwargs)
    if "config" not in kwargs:
        kwargs["config"] = config_from_env()
    _executor_instance = Executor(**kwargs)
    return _executor_instance


__all__ = [
    "Executor",
    "ExecutionSession",
    "OutputChannel",
    "OutputEvent",
    "ShellKind",
    "ShellBinding",
    "ExecutorConfig",
    "resolve_shell",
    "load_config",
    "parse_config_data",
    "config_from_env",
    "PermissionMode",
    "merge_perm",
    "to_file_mode",
    "resolve_perm",
    "ShutdownPolicy",
    "WorkingDirectoryContext",
    "CmdShellsError",
    "LaunchError",
    "StreamReadError",
    "EndOfStream",
    "ProcessWaitError",
    "DirectoryOpError",
    "PermissionEncodingError",
    "ChannelClosed",
    "get_executor",
    "__version__",
]
