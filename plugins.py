"""
plugins.py
Build and write the game's plugin list from the deployed mods.

Format (one plugin per line, load order top to bottom):
  *PluginName.esp

The list is a derived view: it is rebuilt from the enabled mods in registry
order after every deploy pass and never edited in place.
"""

from __future__ import annotations

from pathlib import Path

from config_schema import ManagedMod
from part_resolver import install_roots
from tree_walk import walk_files

PLUGIN_EXTENSIONS = {".esp", ".esm", ".esl"}
ACTIVE_MARKER = "*"


def is_plugin(path: Path) -> bool:
    return path.suffix.lower() in PLUGIN_EXTENSIONS


def collect_plugins(mods: list[ManagedMod]) -> list[str]:
    """
    Plugin file names of the enabled mods, in load order.
    A name contributed by more than one mod (compared case-insensitively)
    keeps the position of its first occurrence.
    """
    seen: set[str] = set()
    plugins: list[str] = []
    for mod in mods:
        if not mod.enabled:
            continue
        for root in install_roots(mod):
            for path, _ in walk_files(root):
                if is_plugin(path) and path.name.lower() not in seen:
                    seen.add(path.name.lower())
                    plugins.append(path.name)
    return plugins


def write_plugin_list(target_path: Path | None, plugins: list[str]) -> bool:
    """Write *plugins* to *target_path*; does nothing when no target is configured."""
    if target_path is None:
        return False
    target_path = Path(target_path)
    target_path.parent.mkdir(parents=True, exist_ok=True)
    target_path.write_text(
        "".join(f"{ACTIVE_MARKER}{name}\n" for name in plugins),
        encoding="utf-8",
    )
    return True


def read_plugin_list(path: Path) -> list[str]:
    """Plugin names from a plugin list file; blank lines and '#' comments are skipped."""
    path = Path(path)
    if not path.is_file():
        return []
    names: list[str] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        names.append(line[len(ACTIVE_MARKER):] if line.startswith(ACTIVE_MARKER) else line)
    return names
