"""
Relative-path tree visitor shared by undeploy, install and plugin scanning.

Every caller that needs "each file below a source root, together with the
path it would have under some other root" goes through ``walk_files`` so the
traversal order (and therefore last-writer-wins behaviour) is identical
everywhere.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator


def _raise(err: OSError):
    raise err


def walk_files(root: Path) -> Iterator[tuple[Path, Path]]:
    """Yield ``(absolute_path, relative_path)`` for every file below *root*.

    The walk is depth first: a directory's files come before its
    subdirectories, both in case-insensitive name order.  Symlinked
    directories are not followed.  Errors while listing a directory are
    raised instead of being skipped.
    """
    root = Path(root)
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames.sort(key=str.lower)
        current = Path(dirpath)
        rel_dir = current.relative_to(root)
        for name in sorted(filenames, key=str.lower):
            yield current / name, rel_dir / name


def remove_empty_parents(path: Path, stop_at: Path) -> int:
    """Remove empty directories from ``path.parent`` upwards.

    Stops at the first non-empty directory or at *stop_at*, which is never
    removed.  Returns the number of directories removed.
    """
    removed = 0
    stop_at = Path(stop_at)
    current = Path(path).parent
    while current != stop_at and current != current.parent and stop_at in current.parents:
        if not current.is_dir() or any(current.iterdir()):
            break
        current.rmdir()
        removed += 1
        current = current.parent
    return removed
