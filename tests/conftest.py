"""
Shared fixtures and helpers for the climm test suite.
"""

import zipfile
from pathlib import Path

import pytest

from config_schema import GameConfig
from extractor import ArchiveTool, PyArchiveTool
from mod_manager import ModManager


def make_zip(path: Path, members: dict[str, str | bytes]) -> Path:
    """Write a zip with the given {archive_path: content} entries."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for member, data in members.items():
            zf.writestr(member, data)
    return path


def read_tree(root: Path) -> dict[str, str]:
    """Map every file below root (posix relative path) to its text content."""
    return {
        p.relative_to(root).as_posix(): p.read_text(encoding="utf-8")
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


class CountingTool(ArchiveTool):
    """In-process extraction that counts calls and fails for chosen archives."""

    name = "counting"

    def __init__(self, fail: set[str] | None = None):
        self.calls: list[Path] = []
        self.fail = fail or set()
        self._inner = PyArchiveTool()

    def extract(self, archive: Path, dest: Path) -> int:
        self.calls.append(archive)
        if archive.name in self.fail:
            (dest / "partial.bin").write_bytes(b"half")
            return 2
        return self._inner.extract(archive, dest)


@pytest.fixture
def tool():
    return CountingTool()


@pytest.fixture
def game_folder(tmp_path):
    folder = tmp_path / "game"
    folder.mkdir()
    return folder


@pytest.fixture
def manager(tmp_path, game_folder, tool):
    config = GameConfig(
        game_folder=game_folder,
        plugins_file=tmp_path / "appdata" / "Plugins.txt",
    )
    return ModManager(
        tmp_path / "climm" / "TestGame",
        config,
        archive_tool=tool,
        log_callback=lambda _: None,
    )


def add_mod(manager: ModManager, name: str, members: dict[str, str | bytes], enable: bool = True):
    """Zip members into a download and register it with the manager."""
    downloads = manager.game_dir.parent.parent / "downloads"
    archive = make_zip(downloads / f"{name}.zip", members)
    return manager.add_archive(archive, enable=enable)
