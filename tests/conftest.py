import os
from collections.abc import Iterator
from pathlib import Path

import pytest

import cmdshells
from cmdshells import Executor, ExecutorConfig, ShellKind

requires_bash = pytest.mark.skipif(not os.path.exists("/bin/bash"), reason="needs /bin/bash")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def executor(tmp_path: Path) -> Executor:
    return Executor(ShellKind.BASH, cwd=tmp_path)


@pytest.fixture
def make_executor(tmp_path: Path):
    def _make(**config) -> Executor:
        return Executor(ShellKind.BASH, config=ExecutorConfig(**config), cwd=tmp_path)

    return _make


@pytest.fixture(autouse=True)
def _reset_default_executor() -> Iterator[None]:
    yield
    cmdshells._executor_instance = None
    cmdshells._executor_kwargs = None
