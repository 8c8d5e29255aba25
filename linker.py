"""
Link backends used to materialise overlay entries under an install root.

``HardlinkBackend`` and ``SymlinkBackend`` work on the real filesystem and are
selected by the game's ``deploy_method``.  ``FakeLinkBackend`` keeps the whole
overlay in memory so the reconciler can be exercised without touching an
install tree.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

from tree_walk import remove_empty_parents

DeployMethod = Literal["hardlink", "symlink"]

_log = logging.getLogger(__name__)


class LinkBackend:
    """Filesystem operations the reconciler needs, with a pluggable link call."""

    method: str = ""

    def exists(self, path: Path) -> bool:
        # is_symlink() catches dangling links left behind by a removed source
        return path.exists() or path.is_symlink()

    def make_dirs(self, path: Path):
        path.mkdir(parents=True, exist_ok=True)

    def remove(self, path: Path) -> bool:
        if not self.exists(path):
            return False
        path.unlink()
        return True

    def prune(self, path: Path, stop_at: Path) -> int:
        return remove_empty_parents(path, stop_at)

    def link(self, src: Path, dst: Path):
        """Point *dst* at *src*, replacing whatever *dst* currently is."""
        if self.exists(dst):
            dst.unlink()
        self._create(src, dst)

    def _create(self, src: Path, dst: Path):
        raise NotImplementedError


class HardlinkBackend(LinkBackend):
    method = "hardlink"

    def _create(self, src: Path, dst: Path):
        os.link(src, dst)


class SymlinkBackend(LinkBackend):
    method = "symlink"

    def _create(self, src: Path, dst: Path):
        try:
            os.symlink(src, dst)
        except OSError:
            # Windows refuses symlinks without developer mode or admin rights
            if os.name != "nt":
                raise
            _log.debug("symlink refused for %s, falling back to a hardlink", dst)
            os.link(src, dst)


class FakeLinkBackend(LinkBackend):
    """In-memory overlay: ``links`` maps destination to source."""

    method = "fake"

    def __init__(self):
        self.links: dict[Path, Path] = {}
        self.dirs: set[Path] = set()

    def exists(self, path: Path) -> bool:
        return path in self.links

    def make_dirs(self, path: Path):
        self.dirs.add(path)
        self.dirs.update(path.parents)

    def remove(self, path: Path) -> bool:
        return self.links.pop(path, None) is not None

    def prune(self, path: Path, stop_at: Path) -> int:
        removed = 0
        for parent in path.parents:
            if parent == stop_at or stop_at not in parent.parents:
                break
            if any(parent in p.parents for p in self.links):
                break
            if parent in self.dirs:
                self.dirs.discard(parent)
                removed += 1
        return removed

    def link(self, src: Path, dst: Path):
        self.links[dst] = src


BACKENDS: dict[str, type[LinkBackend]] = {
    "hardlink": HardlinkBackend,
    "symlink": SymlinkBackend,
}


def make_backend(method: DeployMethod) -> LinkBackend:
    try:
        return BACKENDS[method]()
    except KeyError:
        raise ValueError(f"Unknown deploy method: {method!r}") from None
