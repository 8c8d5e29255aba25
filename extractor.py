"""
Extraction of mod archives into the per-mod extraction cache.

The archive format work itself is delegated to an ``ArchiveTool``:

* ``SevenZipTool`` runs ``7z x <archive> -o<dest> -y`` as a blocking
  subprocess.
* ``PyArchiveTool`` extracts in-process with zipfile / py7zr / rarfile, for
  machines without a 7-Zip binary.

Both follow the same contract: exit code 0 means *dest* holds the complete
tree, anything else means its contents are garbage.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import uuid
import zipfile
from pathlib import Path

import py7zr
import rarfile

from config_schema import ManagedMod
from errors import ExtractionError

SUPPORTED_EXTENSIONS = {".zip", ".7z", ".rar"}
SEVEN_ZIP_EXECUTABLES = ("7z", "7za", "7zz")
# 7-Zip's "fatal error" exit status
EXIT_FATAL = 2

_log = logging.getLogger(__name__)


# ── Archive tools ─────────────────────────────────────────────────────


class ArchiveTool:
    name = ""

    def extract(self, archive: Path, dest: Path) -> int:
        raise NotImplementedError


class SevenZipTool(ArchiveTool):
    name = "7z"

    def __init__(self, executable: str = "7z"):
        self.executable = executable

    def extract(self, archive: Path, dest: Path) -> int:
        cmd = [self.executable, "x", str(archive), f"-o{dest}", "-y"]
        _log.debug("Running %s", " ".join(cmd))
        proc = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        if proc.returncode != 0 and proc.stdout:
            for line in proc.stdout.strip().split("\n")[-10:]:
                _log.warning("[7z] %s", line)
        return proc.returncode


class PyArchiveTool(ArchiveTool):
    name = "python"

    def extract(self, archive: Path, dest: Path) -> int:
        ext = archive.suffix.lower()
        try:
            if ext == ".zip":
                with zipfile.ZipFile(archive, "r") as zf:
                    zf.extractall(dest)
            elif ext == ".7z":
                with py7zr.SevenZipFile(archive, "r") as sz:
                    sz.extractall(path=dest)
            elif ext == ".rar":
                with rarfile.RarFile(archive, "r") as rf:
                    rf.extractall(dest)
            else:
                _log.error("Unsupported archive format: %s", ext)
                return EXIT_FATAL
        except (zipfile.BadZipFile, py7zr.Bad7zFile, rarfile.Error, OSError) as exc:
            _log.error("Could not extract %s: %s", archive.name, exc)
            return EXIT_FATAL
        return 0


def default_archive_tool() -> ArchiveTool:
    for exe in SEVEN_ZIP_EXECUTABLES:
        found = shutil.which(exe)
        if found:
            return SevenZipTool(found)
    _log.info("No 7-Zip executable on PATH, using in-process extraction")
    return PyArchiveTool()


# ── Post-extraction normalisation ─────────────────────────────────────


def hoist_single_directory(root: Path, data_folder_name: str | None = None) -> bool:
    """Flatten archives that wrap all of their content in one folder.

    Only applied when *root* holds exactly one entry, that entry is a
    directory, and it is not the game's data folder.  Applied once, never
    recursively.
    """
    entries = list(root.iterdir())
    if len(entries) != 1:
        return False
    inner = entries[0]
    if not inner.is_dir() or inner.is_symlink():
        return False
    if data_folder_name and inner.name.lower() == data_folder_name.lower():
        return False

    # The wrapper may contain a child with its own name
    staging = root / f".hoist-{uuid.uuid4().hex}"
    inner.rename(staging)
    for child in list(staging.iterdir()):
        child.rename(root / child.name)
    staging.rmdir()
    _log.debug("Hoisted contents of %s into %s", inner.name, root)
    return True


def is_case_sensitive(directory: Path) -> bool:
    probe = directory / ".climm-case-probe"
    probe.touch()
    try:
        return not (directory / ".CLIMM-CASE-PROBE").exists()
    finally:
        probe.unlink()


def capitalize_dirs(root: Path) -> int:
    """Upper-case the first letter of every directory name below *root*.

    Game trees are usually written with capitalised folder names
    (``Textures``, ``Meshes``); matching them avoids two differently cased
    copies of a folder on case-sensitive filesystems.  Best effort: a rename
    that fails or would collide is skipped.
    """
    renamed = 0
    for dirpath, dirnames, _ in os.walk(root, topdown=False):
        for name in dirnames:
            titled = name[:1].upper() + name[1:]
            if titled == name:
                continue
            src = Path(dirpath) / name
            dst = Path(dirpath) / titled
            if dst.exists():
                continue
            try:
                src.rename(dst)
                renamed += 1
            except OSError as exc:
                _log.debug("Could not rename %s: %s", src, exc)
    return renamed


# ── Public API ────────────────────────────────────────────────────────


def extraction_dir(extracted_root: Path, mod: ManagedMod) -> Path:
    return Path(extracted_root) / mod.name


def ensure_extracted(
    mod: ManagedMod,
    extracted_root: Path,
    tool: ArchiveTool,
    data_folder_name: str | None = None,
) -> bool:
    """Make sure *mod* has a complete extracted tree.

    Returns ``False`` when the mod was already extracted (the tool is not
    run), ``True`` after a successful extraction.  Raises
    ``ExtractionError`` when the tool fails; the partial output is removed
    and ``mod.extracted_path`` stays unset.
    """
    if mod.extracted_path is not None:
        return False

    dest = extraction_dir(extracted_root, mod)
    if dest.exists():
        # Only a recorded extracted_path marks an extraction as complete
        _log.info("Discarding partial extraction of %s", mod.name)
        shutil.rmtree(dest)
    dest.mkdir(parents=True)

    try:
        code = tool.extract(Path(mod.archive_path), dest)
    except OSError as exc:
        shutil.rmtree(dest)
        raise ExtractionError(mod.archive_path, -1, str(exc)) from exc
    if code != 0:
        shutil.rmtree(dest)
        raise ExtractionError(mod.archive_path, code)

    hoist_single_directory(dest, data_folder_name)
    try:
        if is_case_sensitive(dest):
            capitalize_dirs(dest)
    except OSError as exc:
        _log.debug("Skipping directory capitalisation for %s: %s", mod.name, exc)

    mod.extracted_path = dest
    return True
