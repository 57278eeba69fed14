"""
Lexical containment checks for paths built from untrusted request segments.

Nothing here touches the filesystem: symlinks are not followed and the
candidate need not exist.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Union

from common.errors import PathViolation
from common.utils import lexical_path

PathLike = Union[str, "os.PathLike[str]"]


def _lexical_abs(p: PathLike) -> str:
    return str(lexical_path(p))


def is_contained(root: PathLike, candidate: PathLike) -> bool:
    """True iff `candidate` is a strict descendant of `root`."""
    try:
        rel = os.path.relpath(_lexical_abs(candidate), _lexical_abs(root))
    except ValueError:
        # different drives on Windows
        return False
    if not rel or rel == os.curdir:
        return False
    if rel == os.pardir or rel.startswith(os.pardir + os.sep):
        return False
    return not os.path.isabs(rel)


def resolve_under(root: PathLike, *segments: str) -> Path:
    """Join `segments` onto `root`; raise PathViolation if the result escapes it."""
    candidate = Path(_lexical_abs(os.path.join(os.fspath(root), *segments)))
    if not is_contained(root, candidate):
        raise PathViolation(root, candidate)
    return candidate
