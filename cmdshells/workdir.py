from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Union

from .errors import DirectoryOpError

PathLike = Union[str, "os.PathLike[str]"]


class WorkingDirectoryContext:
    """Logical working directory for one executor.

    Relative paths given to directory helpers and the `cwd` of launched
    processes come from here, so executors in one program do not race on
    the process-wide OS working directory. With `follow_process=True` every
    change is also applied with `os.chdir`; that state is shared by the whole
    process and callers must serialize such changes themselves.
    """

    def __init__(self, path: Optional[PathLike] = None, *, follow_process: bool = False) -> None:
        self.path = Path(os.path.expanduser(str(path or os.getcwd()))).resolve()
        self.follow_process = follow_process

    def resolve(self, target: PathLike) -> Path:
        # Lexical only: a trailing symlink must stay a symlink for rm.
        return Path(os.path.normpath(os.path.join(self.path, os.path.expanduser(str(target)))))

    def chdir(self, target: PathLike) -> Path:
        new_path = self.resolve(target)
        if not new_path.is_dir():
            raise DirectoryOpError("cd", str(target), NotADirectoryError(str(new_path)))
        if self.follow_process:
            try:
                os.chdir(new_path)
            except OSError as exc:
                raise DirectoryOpError("cd", str(target), exc) from exc
        self.path = new_path
        return new_path

    def __fspath__(self) -> str:
        return str(self.path)

    def __repr__(self) -> str:
        return f"WorkingDirectoryContext({str(self.path)!r}, follow_process={self.follow_process})"
