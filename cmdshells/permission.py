from __future__ import annotations

from enum import IntEnum
from typing import Tuple

from .errors import PermissionEncodingError


class PermissionMode(IntEnum):
    """One octal permission digit (owner, group or other)."""

    RWX = 7
    RW = 6
    RX = 5
    R = 4
    WX = 3
    W = 2
    X = 1
    NONE = 0


DEFAULT_PERMISSION: Tuple[PermissionMode, PermissionMode, PermissionMode] = (
    PermissionMode.RWX,
    PermissionMode.RX,
    PermissionMode.RX,
)


def _digit(value: object) -> int:
    # bool is an int subclass; True would otherwise encode as 1
    if isinstance(value, bool) or not isinstance(value, int):
        raise PermissionEncodingError(f"permission component must be an int 0-7, got {value!r}")
    if not 0 <= value <= 7:
        raise PermissionEncodingError(f"permission component out of range 0-7: {value}")
    return int(value)


def merge_perm(owner: int, group: int, other: int) -> int:
    """Concatenate three digits into one decimal-looking value: (7, 5, 5) -> 755."""
    return int(f"{_digit(owner)}{_digit(group)}{_digit(other)}")


def to_file_mode(value: int) -> int:
    """Reinterpret a merged value as octal bits for OS calls: 755 -> 0o755."""
    try:
        return int(str(value), 8)
    except ValueError as exc:
        raise PermissionEncodingError(f"not an octal permission value: {value!r}") from exc


def resolve_perm(*perm: int) -> int:
    """Merge up to three components, defaulting missing ones to (7, 5, 5).

    Components beyond the third are ignored.
    """
    parts = list(DEFAULT_PERMISSION)
    for i, val in enumerate(perm[:3]):
        parts[i] = val
    return merge_perm(*parts)
