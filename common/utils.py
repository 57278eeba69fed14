from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Tuple, Union


def iso_now_ms() -> str:
    """UTC ISO-8601 timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def lexical_path(p: Union[str, "os.PathLike[str]"]) -> Path:
    """Absolute, normalized form of `p` (`..` collapsed, symlinks not followed)."""
    return Path(os.path.normpath(os.path.abspath(os.fspath(p))))


def dir_usage(root: Union[str, Path]) -> Tuple[int, int]:
    """
    Return (file_count, total_bytes) for all regular files under `root`.
    A missing root counts as empty. Files vanishing mid-walk are skipped.
    """
    files = 0
    total = 0
    if not os.path.isdir(root):
        return 0, 0
    for dirpath, _, names in os.walk(root):
        for name in names:
            try:
                st = os.stat(os.path.join(dirpath, name))
            except OSError:
                continue
            files += 1
            total += st.st_size
    return files, total


def human_bytes(n: int) -> str:
    size = float(n)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if abs(size) < 1024.0 or unit == "GiB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024.0
    return f"{size:.1f} GiB"

