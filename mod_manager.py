"""
climm - Core Logic

Registry commands (add, enable, disable, move, uninstall, profiles) and the
deploy pass that rebuilds the link overlay of all enabled mods.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

from filelock import FileLock, Timeout

from config_schema import (
    GameConfig,
    ManagedMod,
    ProfileEntry,
    load_game_config,
    save_game_config,
)
from errors import (
    ExtractionError,
    GameLockedError,
    NoActiveProfileError,
    NoExecutableError,
    UnknownProfileError,
)
from extractor import (
    SUPPORTED_EXTENSIONS,
    ArchiveTool,
    default_archive_tool,
    ensure_extracted,
    extraction_dir,
)
from linker import LinkBackend, make_backend
from load_order import Destination, move, require_mod
from part_resolver import PartSelector, install_root_for, install_roots, resolve_parts
from plugins import collect_plugins, write_plugin_list
from tree_walk import walk_files

GAME_CONFIG_FILENAME = "climm.json"
ARCHIVES_DIRNAME = "archives"
EXTRACTED_DIRNAME = "extracted"
LOCK_FILENAME = "climm.lock"

_log = logging.getLogger(__name__)


@dataclass
class DeployReport:
    """Outcome of one deploy pass."""

    removed: int = 0
    linked: int = 0
    skipped_links: int = 0
    extracted: list[str] = field(default_factory=list)
    extraction_failures: dict[str, ExtractionError] = field(default_factory=dict)
    plugins: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.extraction_failures


class ModManager:
    """
    Per-game mod manager controller.

    Workflow:
        1. add_archive() / scan_archives() to register archives
        2. enable() / disable() / move_mod() to edit the registry
        3. deploy() to rebuild the overlay under the game folder
        4. save() once the command is done, or run steps 1-3 inside session()

    ``lock`` serialises every operation that touches the registry, the
    archive store or the install tree; callers running on other threads
    (a download watcher, say) must hold it too.  ``session()`` adds the
    on-disk ``climm.lock`` so separate climm processes are serialised as
    well.
    """

    def __init__(
        self,
        game_dir: str | Path,
        config: GameConfig,
        archive_tool: Optional[ArchiveTool] = None,
        link_backend: Optional[LinkBackend] = None,
        part_selector: Optional[PartSelector] = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.game_dir = Path(game_dir).absolute()
        self.config = config
        self.config_path = self.game_dir / GAME_CONFIG_FILENAME
        self.archives_dir = self.game_dir / ARCHIVES_DIRNAME
        self.extracted_dir = self.game_dir / EXTRACTED_DIRNAME
        self.archive_tool = archive_tool or default_archive_tool()
        self.backend = link_backend or make_backend(config.deploy_method)
        self.part_selector = part_selector
        self._log_cb = log_callback or print
        self.lock = threading.RLock()
        self.file_lock = FileLock(str(self.game_dir / LOCK_FILENAME))

    @classmethod
    def open(cls, game_dir: str | Path, **kwargs) -> ModManager:
        game_dir = Path(game_dir)
        return cls(game_dir, load_game_config(game_dir / GAME_CONFIG_FILENAME), **kwargs)

    def save(self):
        with self.lock:
            self.game_dir.mkdir(parents=True, exist_ok=True)
            save_game_config(self.config, self.config_path)

    @contextmanager
    def session(self, timeout: float = -1):
        """Hold the game lock for one command.

        The config is re-read once the lock is held, so changes saved by
        another process are not overwritten.  It is saved on the way out even
        when the command fails, so the next pass still knows which links an
        aborted pass created.
        A negative *timeout* waits for as long as the other process runs.
        """
        with self.lock:
            self.game_dir.mkdir(parents=True, exist_ok=True)
            try:
                self.file_lock.acquire(timeout=0)
            except Timeout:
                if timeout == 0:
                    raise GameLockedError(self.file_lock.lock_file) from None
                self.log("Waiting for another climm process to finish...")
                try:
                    self.file_lock.acquire(timeout=timeout)
                except Timeout:
                    raise GameLockedError(self.file_lock.lock_file) from None
            try:
                if self.config_path.exists():
                    self.config = load_game_config(self.config_path)
                try:
                    yield self
                finally:
                    self.save()
            finally:
                self.file_lock.release()

    # ── Logging ───────────────────────────────────────────────────────

    def log(self, msg: str):
        self._log_cb(msg)

    # ── Registry ──────────────────────────────────────────────────────

    @property
    def mods(self) -> list[ManagedMod]:
        return self.config.mods

    def get(self, selector: str) -> ManagedMod:
        return self.mods[require_mod(self.mods, selector).index]

    def _find_exact(self, name: str) -> ManagedMod | None:
        key = name.lower()
        return next((m for m in self.mods if m.key == key), None)

    def _select(self, names: Iterable[str], all_mods: bool) -> list[ManagedMod]:
        # Resolve every selector before touching anything
        if all_mods:
            return list(self.mods)
        selected: list[ManagedMod] = []
        for name in names:
            mod = self.get(name)
            if mod not in selected:
                selected.append(mod)
        return selected

    def add_archive(
        self, archive: str | Path, move_file: bool = False, enable: bool = False
    ) -> ManagedMod:
        """Copy (or move) an archive into the store and register it.

        Adding an archive whose name is already registered replaces that
        mod's archive; its overlay is removed and it is re-extracted on the
        next deploy pass.
        """
        src = Path(archive)
        if not src.is_file():
            raise FileNotFoundError(f"Archive not found: {src}")
        if src.suffix.lower() not in SUPPORTED_EXTENSIONS:
            _log.warning("%s is not a known archive type, adding anyway", src.name)

        with self.lock:
            self.archives_dir.mkdir(parents=True, exist_ok=True)
            dest = self.archives_dir / src.name
            existing = self._find_exact(src.stem)
            if existing is not None:
                self._undeploy_mod(existing)
                self._discard_extraction(existing)
                old = Path(existing.archive_path)
                if old.exists() and old.resolve() != dest.resolve() and old.parent == self.archives_dir:
                    old.unlink()

            if src.resolve() != dest.resolve():
                if move_file:
                    shutil.move(str(src), str(dest))
                else:
                    shutil.copy2(src, dest)

            if existing is not None:
                existing.archive_path = dest
                existing.enabled = existing.enabled or enable
                self.log(f"Updated {existing.name}")
                return existing

            mod = ManagedMod(name=src.stem, archive_path=dest, enabled=enable)
            self.mods.append(mod)
            self.log(f"Added {mod.name}" + (" (enabled)" if enable else ""))
            return mod

    def scan_archives(self, enable: bool = False) -> list[ManagedMod]:
        """Register archives found in the store that the registry does not know."""
        added: list[ManagedMod] = []
        with self.lock:
            if not self.archives_dir.exists():
                self.log(f"Archive store does not exist: {self.archives_dir}")
                return added
            for filepath in sorted(self.archives_dir.iterdir()):
                if not filepath.is_file() or self._find_exact(filepath.stem) is not None:
                    continue
                mod = ManagedMod(name=filepath.stem, archive_path=filepath, enabled=enable)
                self.mods.append(mod)
                added.append(mod)
                self.log(f"  Found {filepath.name}")
        self.log(f"Scan complete: {len(added)} new archive(s)")
        return added

    def enable(self, names: Iterable[str] = (), all_mods: bool = False) -> list[ManagedMod]:
        with self.lock:
            mods = self._select(names, all_mods)
            for mod in mods:
                mod.enabled = True
                self.log(f"Enabled {mod.name}")
            return mods

    def disable(self, names: Iterable[str] = (), all_mods: bool = False) -> list[ManagedMod]:
        with self.lock:
            mods = self._select(names, all_mods)
            for mod in mods:
                mod.enabled = False
                self.log(f"Disabled {mod.name}")
            return mods

    def move_mod(self, selector: str, destination: Destination) -> int:
        with self.lock:
            index = move(self.mods, selector, destination)
            self.log(f"Moved {self.mods[index].name} to position {index + 1}")
            return index

    def uninstall(
        self,
        names: Iterable[str] = (),
        delete_archives: bool = False,
        all_mods: bool = False,
    ) -> list[str]:
        """Remove mods from the game and drop their extracted trees.

        Mods stay registered (disabled) unless *delete_archives* is set, in
        which case the archive and the registry entry go as well.
        """
        removed: list[str] = []
        with self.lock:
            for mod in self._select(names, all_mods):
                self._undeploy_mod(mod)
                self._discard_extraction(mod)
                if delete_archives:
                    archive = Path(mod.archive_path)
                    if archive.exists():
                        archive.unlink()
                    self.mods.remove(mod)
                    self.log(f"Deleted {mod.name}")
                else:
                    mod.enabled = False
                    self.log(f"Uninstalled {mod.name}")
                removed.append(mod.name)
        return removed

    def reset_parts(self, names: Iterable[str]) -> list[ManagedMod]:
        """Forget recorded installer choices so they are asked again on the next deploy."""
        with self.lock:
            mods = self._select(names, False)
            for mod in mods:
                self._undeploy_mod(mod)
                mod.parts = None
                self.log(f"Cleared installer choices of {mod.name}")
            return mods

    # ── Profiles ──────────────────────────────────────────────────────

    def _snapshot(self) -> list[ProfileEntry]:
        return [ProfileEntry(name=m.name, enabled=m.enabled) for m in self.mods]

    def new_profile(self, name: str):
        with self.lock:
            if name in self.config.profiles:
                _log.warning("Overwriting existing profile %r", name)
            self.config.profiles[name] = self._snapshot()
            self.config.active_profile = name
            self.log(f"Created profile {name}")

    def save_profile(self):
        with self.lock:
            name = self.config.active_profile
            if name is None:
                raise NoActiveProfileError()
            self.config.profiles[name] = self._snapshot()
            self.log(f"Saved profile {name}")

    def set_profile(self, name: str, disable_new: bool = False):
        """Apply a profile's order and enabled flags.

        Mods missing from the profile keep their relative order after the
        profiled ones, disabled when *disable_new* is set.
        """
        with self.lock:
            entries = self.config.profiles.get(name)
            if entries is None:
                raise UnknownProfileError(name)
            remaining = {m.key: m for m in self.mods}
            order: list[ManagedMod] = []
            for entry in entries:
                mod = remaining.pop(entry.name.lower(), None)
                if mod is None:
                    _log.warning("Profile %r lists unknown mod %r", name, entry.name)
                    continue
                mod.enabled = entry.enabled
                order.append(mod)
            for mod in self.mods:
                if mod.key in remaining:
                    if disable_new:
                        mod.enabled = False
                    order.append(mod)
            self.mods[:] = order
            self.config.active_profile = name
            self.log(f"Switched to profile {name}")

    # ── Deploy ────────────────────────────────────────────────────────

    def _discard_extraction(self, mod: ManagedMod):
        path = Path(mod.extracted_path) if mod.extracted_path else extraction_dir(self.extracted_dir, mod)
        if path.exists():
            shutil.rmtree(path)
        mod.extracted_path = None
        mod.parts = None

    def _install_root(self, part: Path) -> Path:
        return install_root_for(part, self.config.game_folder, self.config.data_folder)

    def _undeploy_mod(self, mod: ManagedMod) -> int:
        if mod.extracted_path is not None and not Path(mod.extracted_path).is_dir():
            _log.warning(
                "Extracted tree of %s is gone, it will be extracted again", mod.name
            )
            mod.extracted_path = None
            return 0

        removed = 0
        for part in install_roots(mod):
            root = self._install_root(part)
            for _, rel in walk_files(part):
                dest = root / rel
                if self.backend.remove(dest):
                    removed += 1
                    self.backend.prune(dest, root)
        if removed:
            _log.debug("Removed %d file(s) of %s", removed, mod.name)
        return removed

    def _install_mod(self, mod: ManagedMod, report: DeployReport):
        linked = 0
        for part in resolve_parts(mod, self.part_selector):
            root = self._install_root(part)
            for src, rel in walk_files(part):
                dest = root / rel
                try:
                    # Fails when an earlier mod put a file where this one needs a folder
                    self.backend.make_dirs(dest.parent)
                    self.backend.link(src, dest)
                except OSError as exc:
                    _log.warning("Could not link %s: %s", dest, exc)
                    report.skipped_links += 1
                    continue
                linked += 1
        report.linked += linked
        self.log(f"  Installed {mod.name} ({linked} file(s))")

    def deploy(self) -> DeployReport:
        """Tear down the whole overlay and rebuild it in load order.

        Extraction failures are collected in the report and only skip the
        affected mod.  Filesystem errors abort the pass; running it again
        repairs whatever was left half done.
        """
        report = DeployReport()
        with self.lock:
            self.log("Removing deployed files...")
            for mod in self.mods:
                report.removed += self._undeploy_mod(mod)

            enabled = [m for m in self.mods if m.enabled]
            for mod in enabled:
                try:
                    if ensure_extracted(
                        mod, self.extracted_dir, self.archive_tool, self.config.data_folder_name
                    ):
                        report.extracted.append(mod.name)
                        self.log(f"  Extracted {mod.name}")
                except ExtractionError as exc:
                    report.extraction_failures[mod.name] = exc
                    self.log(f"  {exc}")

            self.log("Installing mods...")
            for mod in enabled:
                if mod.extracted_path is None:
                    continue
                self._install_mod(mod, report)

            report.plugins = collect_plugins(self.mods)
            if write_plugin_list(self.config.plugins_file, report.plugins):
                self.log(f"Wrote {len(report.plugins)} plugin(s) to {self.config.plugins_file}")

        self.log(
            f"Deploy complete: {report.linked} file(s) linked, {report.removed} removed"
            + (f", {len(report.extraction_failures)} extraction failure(s)" if report.extraction_failures else "")
        )
        return report

    # ── Run / validation ──────────────────────────────────────────────

    def run_game(self) -> subprocess.Popen:
        exe = self.config.executable
        if exe is None:
            raise NoExecutableError(self.config.game_folder)
        path = exe if exe.is_absolute() else self.config.game_folder / exe
        self.log(f"Running {path}")
        return subprocess.Popen([str(path)], cwd=str(path.parent))

    def validate_paths(self) -> list[str]:
        issues = []

        if not self.config.game_folder.exists():
            issues.append(f"Game folder does not exist: {self.config.game_folder}")
        elif self.config.data_folder is not None and not self.config.install_dir.exists():
            issues.append(f"Data folder does not exist: {self.config.install_dir}")

        for mod in self.mods:
            if not Path(mod.archive_path).exists():
                issues.append(f"Archive of {mod.name} is missing: {mod.archive_path}")

        return issues
