from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

import psutil

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShutdownPolicy:
    sigterm_timeout_s: float = 2.0
    sigkill_timeout_s: float = 2.0
    poll_interval_s: float = 0.05


def collect_descendants(pid: int) -> List[psutil.Process]:
    """Return every live descendant of `pid`, deepest first.

    Must run before the root dies: orphans are reparented and drop out of the tree.
    """
    try:
        children = psutil.Process(pid).children(recursive=True)
    except psutil.NoSuchProcess:
        return []
    return list(reversed(children))


def _signal_all(procs: List[psutil.Process], *, kill: bool) -> None:
    for proc in procs:
        try:
            if kill:
                proc.kill()
            else:
                proc.terminate()
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied as exc:
            logger.warning("cannot signal pid=%s: %s", proc.pid, exc)


def terminate_processes(procs: List[psutil.Process], policy: ShutdownPolicy = ShutdownPolicy()) -> Dict[str, Any]:
    """SIGTERM `procs`, wait, then SIGKILL whatever is left.

    Blocking; run it in a worker thread from async code. Do not pass the
    event loop's own direct children: psutil would reap them and steal the
    exit status from asyncio.
    """
    stats: Dict[str, Any] = {"total": len(procs), "terminated": 0, "force_killed": 0}
    if not procs:
        return stats

    _signal_all(procs, kill=False)
    gone, alive = psutil.wait_procs(procs, timeout=policy.sigterm_timeout_s)
    stats["terminated"] = len(gone)
    if not alive:
        return stats

    logger.info("escalating to SIGKILL for %d process(es)", len(alive))
    _signal_all(alive, kill=True)
    gone, still_alive = psutil.wait_procs(alive, timeout=policy.sigkill_timeout_s)
    stats["force_killed"] = len(gone)
    stats["terminated"] += len(gone)
    for proc in still_alive:
        logger.warning("pid=%s survived SIGKILL", proc.pid)
    return stats
