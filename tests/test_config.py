"""
Tests for persisted state, the game library and the registry commands.
"""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from config_schema import (
    GameConfig,
    GlobalConfig,
    ManagedMod,
    load_game_config,
    load_global_config,
    parse_game_config,
    save_game_config,
)
from errors import (
    AlreadyManagedError,
    AmbiguousModError,
    GameLockedError,
    NoActiveGameError,
    NoActiveProfileError,
    NoExecutableError,
    UnknownGameError,
    UnknownProfileError,
)
from library import CLIMM_HOME_ENV, Library, default_home
from load_order import Bottom
from mod_manager import ModManager
from tests.conftest import CountingTool, add_mod, make_zip


# ── config files ─────────────────────────────────────────────────────────────

def test_game_config_round_trip_keeps_order(tmp_path):
    config = GameConfig(
        game_folder=tmp_path / "game",
        data_folder="Data",
        mods=[
            ManagedMod(name="Zeta", archive_path=tmp_path / "Zeta.7z", enabled=True),
            ManagedMod(name="Alpha", archive_path=tmp_path / "Alpha.zip", parts=["Core"]),
        ],
    )
    path = tmp_path / "climm.json"

    save_game_config(config, path)
    loaded = load_game_config(path)

    assert loaded == config
    assert [m.name for m in loaded.mods] == ["Zeta", "Alpha"]
    assert loaded.mods[1].parts == ["Core"]
    assert loaded.mods[0].parts is None


def test_duplicate_mod_names_are_rejected(tmp_path):
    data = {
        "game_folder": str(tmp_path),
        "mods": [
            {"name": "SkyUI", "archive_path": "/a/SkyUI.zip"},
            {"name": "skyui", "archive_path": "/a/skyui.7z"},
        ],
    }
    with pytest.raises(ValidationError):
        parse_game_config(json.dumps(data))


def test_newer_config_version_is_rejected(tmp_path):
    with pytest.raises(ValidationError):
        parse_game_config(json.dumps({"version": 99, "game_folder": str(tmp_path)}))


def test_unknown_deploy_method_is_rejected(tmp_path):
    with pytest.raises(ValidationError):
        GameConfig(game_folder=tmp_path, deploy_method="copy")


def test_install_dir(tmp_path):
    assert GameConfig(game_folder=tmp_path).install_dir == tmp_path
    config = GameConfig(game_folder=tmp_path, data_folder="Data")
    assert config.install_dir == tmp_path / "Data"
    assert config.data_folder_name == "Data"


def test_global_config_clears_unknown_active_game():
    config = GlobalConfig(active_game="Oblivion", games=["Skyrim", "Skyrim"])
    assert config.games == ["Skyrim"]
    assert config.active_game is None


def test_missing_global_config_is_empty(tmp_path):
    assert load_global_config(tmp_path / "config.json") == GlobalConfig()


# ── library ──────────────────────────────────────────────────────────────────

def test_init_game_creates_layout_and_activates(tmp_path):
    library = Library(tmp_path / "home")

    library.init_game("Skyrim", tmp_path / "game", data_folder="Data")
    library.init_game("Oblivion", tmp_path / "other")

    game_dir = tmp_path / "home" / "Skyrim"
    assert (game_dir / "archives").is_dir()
    assert (game_dir / "extracted").is_dir()
    assert load_game_config(game_dir / "climm.json").data_folder == Path("Data")
    assert library.config.games == ["Oblivion", "Skyrim"]
    assert library.config.active_game == "Skyrim"


def test_init_game_twice_fails(tmp_path):
    library = Library(tmp_path)
    library.init_game("Skyrim", tmp_path / "game")

    with pytest.raises(AlreadyManagedError):
        library.init_game("Skyrim", tmp_path / "game")


def test_set_active_and_reload(tmp_path):
    library = Library(tmp_path)
    library.init_game("Skyrim", tmp_path / "game")
    library.init_game("Oblivion", tmp_path / "other")

    library.set_active("Oblivion")
    library.save()

    reloaded = Library(tmp_path)
    assert reloaded.config.active_game == "Oblivion"
    assert reloaded.active_game(log_callback=lambda _: None).config.game_folder == (tmp_path / "other").absolute()


def test_unknown_and_missing_active_game(tmp_path):
    library = Library(tmp_path)
    with pytest.raises(NoActiveGameError):
        library.active_game()
    with pytest.raises(UnknownGameError):
        library.set_active("Morrowind")


def test_default_home_honours_environment(tmp_path, monkeypatch):
    monkeypatch.setenv(CLIMM_HOME_ENV, str(tmp_path / "custom"))
    assert default_home() == tmp_path / "custom"
    monkeypatch.delenv(CLIMM_HOME_ENV)
    assert default_home().name == ".climm"


# ── registry commands ────────────────────────────────────────────────────────

def test_add_archive_copies_into_store(manager, tmp_path):
    source = make_zip(tmp_path / "downloads" / "SkyUI.zip", {"a.esp": "a"})

    mod = manager.add_archive(source)

    assert mod.archive_path == manager.archives_dir / "SkyUI.zip"
    assert mod.archive_path.exists()
    assert source.exists()
    assert mod.enabled is False


def test_add_archive_move(manager, tmp_path):
    source = make_zip(tmp_path / "downloads" / "SkyUI.zip", {"a.esp": "a"})

    manager.add_archive(source, move_file=True, enable=True)

    assert not source.exists()
    assert manager.mods[0].enabled is True


def test_add_archive_replaces_registered_mod(manager, game_folder):
    first = add_mod(manager, "A", {"old.txt": "old", "x.txt": "x"})
    manager.deploy()

    second = add_mod(manager, "A", {"new.txt": "new", "x.txt": "y"})

    assert second is first
    assert len(manager.mods) == 1
    assert first.extracted_path is None
    assert not (game_folder / "old.txt").exists()

    manager.deploy()
    assert (game_folder / "new.txt").read_text() == "new"
    assert (game_folder / "x.txt").read_text() == "y"


def test_add_missing_archive(manager, tmp_path):
    with pytest.raises(FileNotFoundError):
        manager.add_archive(tmp_path / "nope.zip")


def test_scan_archives_registers_unknown_files(manager):
    add_mod(manager, "Known", {"k.txt": "k"})
    make_zip(manager.archives_dir / "Dropped.zip", {"d.txt": "d"})

    added = manager.scan_archives(enable=True)

    assert [m.name for m in added] == ["Dropped"]
    assert [m.name for m in manager.mods] == ["Known", "Dropped"]
    assert added[0].enabled is True


def test_ambiguous_enable_mutates_nothing(manager):
    add_mod(manager, "Armor Pack", {"a.txt": "a"}, enable=False)
    add_mod(manager, "Armor Fix", {"b.txt": "b"}, enable=False)
    add_mod(manager, "Weapons", {"c.txt": "c"}, enable=False)

    with pytest.raises(AmbiguousModError):
        manager.enable(["weapons", "armor"])

    assert not any(m.enabled for m in manager.mods)


def test_enable_and_disable_all(manager):
    add_mod(manager, "A", {"a.txt": "a"}, enable=False)
    add_mod(manager, "B", {"b.txt": "b"}, enable=False)

    manager.enable(all_mods=True)
    assert all(m.enabled for m in manager.mods)
    manager.disable(["b"])
    assert [m.enabled for m in manager.mods] == [True, False]


def test_save_and_open_round_trip(manager):
    add_mod(manager, "A", {"a.txt": "a", "b.txt": "b"})
    manager.deploy()
    manager.save()

    reopened = ModManager.open(manager.game_dir, log_callback=lambda _: None)

    assert reopened.config == manager.config
    assert reopened.mods[0].extracted_path == manager.mods[0].extracted_path


def test_run_game_without_executable(manager):
    with pytest.raises(NoExecutableError):
        manager.run_game()


def test_validate_paths_reports_missing_archives(manager):
    mod = add_mod(manager, "A", {"a.txt": "a"})
    mod.archive_path.unlink()

    issues = manager.validate_paths()

    assert any("Archive of A is missing" in issue for issue in issues)


# ── profiles ─────────────────────────────────────────────────────────────────

def test_profiles_restore_order_and_flags(manager):
    add_mod(manager, "A", {"a.txt": "a"})
    add_mod(manager, "B", {"b.txt": "b"}, enable=False)
    manager.new_profile("vanilla+")

    manager.enable(["B"])
    manager.move_mod("A", Bottom())
    add_mod(manager, "C", {"c.txt": "c"})

    manager.set_profile("vanilla+", disable_new=True)

    assert [(m.name, m.enabled) for m in manager.mods] == [("A", True), ("B", False), ("C", False)]
    assert manager.config.active_profile == "vanilla+"


def test_save_profile_requires_active_profile(manager):
    with pytest.raises(NoActiveProfileError):
        manager.save_profile()
    with pytest.raises(UnknownProfileError):
        manager.set_profile("missing")


def test_save_profile_updates_snapshot(manager):
    add_mod(manager, "A", {"a.txt": "a"})
    manager.new_profile("main")
    manager.disable(["A"])

    manager.save_profile()

    assert [(e.name, e.enabled) for e in manager.config.profiles["main"]] == [("A", False)]


# ── sessions ─────────────────────────────────────────────────────────────────

def test_session_excludes_a_second_manager(manager, game_folder):
    other = ModManager(
        manager.game_dir,
        GameConfig(game_folder=game_folder),
        archive_tool=CountingTool(),
        log_callback=lambda _: None,
    )

    with manager.session():
        with pytest.raises(GameLockedError):
            with other.session(timeout=0):
                pass

    with other.session(timeout=0):
        pass


def test_session_picks_up_changes_saved_by_another_manager(manager):
    manager.save()
    other = ModManager.open(manager.game_dir, archive_tool=CountingTool(), log_callback=lambda _: None)

    with other.session():
        add_mod(other, "X", {"x.txt": "x"})
    with manager.session():
        assert [m.name for m in manager.mods] == ["X"]
        add_mod(manager, "Y", {"y.txt": "y"})

    assert [m.name for m in load_game_config(manager.config_path).mods] == ["X", "Y"]


def test_session_saves_when_the_command_fails(manager):
    with pytest.raises(FileNotFoundError):
        with manager.session():
            add_mod(manager, "A", {"a.txt": "a"})
            manager.add_archive(manager.game_dir / "missing.zip")

    assert [m.name for m in load_game_config(manager.config_path).mods] == ["A"]
