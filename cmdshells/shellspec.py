from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import yaml

from .channel import DEFAULT_CAPACITY
from .shutdown import ShutdownPolicy


class ShellKind(Enum):
    AUTO = "auto"
    POWERSHELL = "powershell"
    CMD = "cmd"
    BASH = "bash"

    @classmethod
    def parse(cls, value: Union[str, "ShellKind", None]) -> "ShellKind":
        if isinstance(value, ShellKind):
            return value
        if value is None:
            return cls.AUTO
        text = str(value).strip().lower()
        if text == "pwsh":
            text = "powershell"
        for kind in cls:
            if kind.value == text:
                return kind
        raise ValueError(f"invalid shell kind: {value!r}")


@dataclass(frozen=True)
class ShellBinding:
    executable: str
    inline_flag: str

    def argv(self, command: str, extra_args: Sequence[str] = ()) -> List[str]:
        # Extra args stay separate argv entries; bash sees them as $0, $1, ...
        return [self.executable, self.inline_flag, command, *[str(a) for a in extra_args]]


POWERSHELL_BINDING = ShellBinding("powershell.exe", "/c")
CMD_BINDING = ShellBinding("cmd.exe", "/c")
BASH_BINDING = ShellBinding("/bin/bash", "-c")


def resolve_shell(kind: ShellKind = ShellKind.AUTO, platform: Optional[str] = None) -> ShellBinding:
    """Resolve a shell kind to its executable and inline-command flag.

    `AUTO` picks PowerShell on Windows and bash everywhere else, including
    platforms it does not recognise.
    """
    if kind is ShellKind.POWERSHELL:
        return POWERSHELL_BINDING
    if kind is ShellKind.CMD:
        return CMD_BINDING
    if kind is ShellKind.BASH:
        return BASH_BINDING
    host = sys.platform if platform is None else platform
    if str(host).lower().startswith("win"):
        return POWERSHELL_BINDING
    return BASH_BINDING


@dataclass(frozen=True)
class ExecutorConfig:
    shell: ShellKind = ShellKind.AUTO
    debug: bool = False
    buffer_size: int = DEFAULT_CAPACITY
    chunk_size: int = 1024
    encoding: str = "utf-8"
    errors: str = "replace"
    flush_partial_lines: bool = True
    cwd: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    shutdown: ShutdownPolicy = field(default_factory=ShutdownPolicy)


def _truthy(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in {"1", "true", "yes", "y", "on"}


def _positive_int(raw: Mapping[str, Any], key: str, default: int) -> int:
    value = raw.get(key, default)
    try:
        out = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"config '{key}' must be an integer, got {value!r}") from None
    if out < 1:
        raise ValueError(f"config '{key}' must be positive, got {out}")
    return out


def _parse_shutdown(raw: Any) -> ShutdownPolicy:
    if not isinstance(raw, dict):
        return ShutdownPolicy()
    return ShutdownPolicy(
        sigterm_timeout_s=float(raw.get("sigterm_timeout_s", 2.0)),
        sigkill_timeout_s=float(raw.get("sigkill_timeout_s", 2.0)),
        poll_interval_s=float(raw.get("poll_interval_s", 0.05)),
    )


def parse_config_data(raw: Any) -> ExecutorConfig:
    """Build an ExecutorConfig from an in-memory mapping (e.g. parsed YAML)."""
    if raw is None:
        return ExecutorConfig()
    if not isinstance(raw, dict):
        raise ValueError("config must be a mapping")

    env_raw = raw.get("env") or {}
    if not isinstance(env_raw, dict):
        raise ValueError("config 'env' must be a mapping")

    codec = str(raw.get("encoding") or "utf-8")
    try:
        "".encode(codec)
    except LookupError:
        raise ValueError(f"config 'encoding' is not a known codec: {codec!r}") from None

    return ExecutorConfig(
        shell=ShellKind.parse(raw.get("shell")),
        debug=_truthy(raw.get("debug", False)),
        buffer_size=_positive_int(raw, "buffer_size", DEFAULT_CAPACITY),
        chunk_size=_positive_int(raw, "chunk_size", 1024),
        encoding=codec,
        errors=str(raw.get("errors") or "replace"),
        flush_partial_lines=_truthy(raw.get("flush_partial_lines", True)),
        cwd=(str(raw["cwd"]) if raw.get("cwd") else None),
        env={str(k): str(v) for k, v in env_raw.items()},
        shutdown=_parse_shutdown(raw.get("shutdown")),
    )


def load_config(path: Union[str, Path]) -> ExecutorConfig:
    p = Path(os.path.expanduser(str(path)))
    if not p.exists():
        return ExecutorConfig()
    with p.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    return parse_config_data(raw)


def config_from_env(environ: Optional[Mapping[str, str]] = None) -> ExecutorConfig:
    """Load `CMDSHELLS_CONFIG` (if set), then apply `CMDSHELLS_SHELL` / `CMDSHELLS_DEBUG`."""
    env = os.environ if environ is None else environ
    raw: Dict[str, Any] = {}
    config_path = env.get("CMDSHELLS_CONFIG")
    if config_path:
        p = Path(os.path.expanduser(config_path))
        if p.exists():
            with p.open("r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
            if loaded is not None and not isinstance(loaded, dict):
                raise ValueError(f"config {p} must be a mapping")
            raw.update(loaded or {})
    if env.get("CMDSHELLS_SHELL"):
        raw["shell"] = env["CMDSHELLS_SHELL"]
    if env.get("CMDSHELLS_DEBUG") is not None:
        raw["debug"] = env["CMDSHELLS_DEBUG"]
    return parse_config_data(raw)
