"""
Install-source roots ("parts") of an extracted mod.

A plain mod has a single part: its whole extracted tree.  A mod shipping an
installer descriptor (``fomod/ModuleConfig.xml``) offers several top-level
option folders; a selection collaborator picks some of them and the choice is
recorded on the mod so it is never asked again.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from config_schema import ManagedMod
from errors import PartSelectionError
from tree_walk import walk_files

DESCRIPTOR_FILENAME = "ModuleConfig.xml"
DESCRIPTOR_DIRNAME = "fomod"

# (mod name, candidate option folders) -> chosen folders, in install order
PartSelector = Callable[[str, list[Path]], list[Path]]

_log = logging.getLogger(__name__)


def select_all(mod_name: str, candidates: list[Path]) -> list[Path]:
    return list(candidates)


def find_descriptor(root: Path) -> Path | None:
    target = DESCRIPTOR_FILENAME.lower()
    for path, _ in walk_files(root):
        if path.name.lower() == target:
            return path
    return None


def candidate_parts(root: Path) -> list[Path]:
    """Top-level option folders of a multi-option mod, minus the descriptor folder."""
    return sorted(
        (
            p for p in root.iterdir()
            if p.is_dir() and p.name.lower() != DESCRIPTOR_DIRNAME
        ),
        key=lambda p: p.name.lower(),
    )


def install_roots(mod: ManagedMod) -> list[Path]:
    """The parts a mod currently deploys from, without ever prompting."""
    if mod.extracted_path is None:
        return []
    if mod.parts is not None:
        return mod.part_paths()
    return [mod.extracted_path]


def resolve_parts(mod: ManagedMod, selector: PartSelector | None = None) -> list[Path]:
    """Return the install roots of an extracted mod, recording a new choice if needed."""
    if mod.extracted_path is None:
        raise ValueError(f"{mod.name} has not been extracted")
    if mod.parts is not None:
        return mod.part_paths()

    root = mod.extracted_path
    if find_descriptor(root) is None:
        return [root]

    candidates = candidate_parts(root)
    if not candidates:
        _log.warning("%s has an installer descriptor but no option folders", mod.name)
        return [root]

    chosen = (selector or select_all)(mod.name, candidates)
    unknown = [str(c) for c in chosen if c not in candidates]
    if unknown:
        raise PartSelectionError(
            f"Not an option of {mod.name}: {', '.join(unknown)}"
        )

    ordered: list[Path] = []
    for c in chosen:
        if c not in ordered:
            ordered.append(c)
    mod.parts = [c.relative_to(root).as_posix() for c in ordered]
    _log.info("Recorded parts for %s: %s", mod.name, mod.parts)
    return mod.part_paths()


def install_root_for(part: Path, game_folder: Path, data_folder: Path | None) -> Path:
    """Destination root for one part.

    Parts that already contain the data folder are installed relative to the
    data folder's parent; everything else goes inside the data folder.
    """
    if data_folder is None:
        return game_folder
    data_dir = game_folder / data_folder
    name = data_folder.name.lower()
    for child in part.iterdir():
        if child.is_dir() and child.name.lower() == name:
            return data_dir.parent
    return data_dir
