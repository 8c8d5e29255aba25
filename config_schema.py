"""
Persisted state for climm.

Two JSON files are kept under the climm home directory (``~/.climm`` unless
``CLIMM_HOME`` is set):

    ~/.climm/
    ├── config.json          <- GlobalConfig: active game + known games
    └── Skyrim/
        ├── climm.json       <- GameConfig: folders, deploy method, registry
        ├── archives/        <- archive store, one file per mod
        └── extracted/       <- extraction cache, one directory per mod

GameConfig example:

{
    "version": 1,
    "game_folder": "/games/Skyrim",
    "data_folder": "Data",
    "plugins_file": "/home/me/.local/share/Skyrim/Plugins.txt",
    "deploy_method": "hardlink",
    "mods": [
        {
            "name": "SkyUI",
            "archive_path": "/home/me/.climm/Skyrim/archives/SkyUI.7z",
            "enabled": true,
            "extracted_path": "/home/me/.climm/Skyrim/extracted/SkyUI",
            "parts": null
        }
    ]
}

``mods`` is an array on purpose: its order is the load order.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

from linker import DeployMethod

CONFIG_VERSION = 1

_log = logging.getLogger(__name__)


class ManagedMod(BaseModel):
    """One registered mod archive.

    ``extracted_path`` is only set once extraction finished successfully.
    ``parts`` holds the installer options chosen for a multi-option mod,
    relative to ``extracted_path``.  ``None`` means no choice has been
    recorded (plain mods stay that way); once recorded, even an empty list
    is never recomputed.
    """

    name: str
    archive_path: Path
    enabled: bool = False
    extracted_path: Path | None = None
    parts: list[str] | None = None

    @field_validator("parts")
    @classmethod
    def _normalize_parts(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return None
        return [p.replace("\\", "/").strip("/") or "." for p in v]

    @property
    def key(self) -> str:
        return self.name.lower()

    def part_paths(self) -> list[Path]:
        if self.extracted_path is None or self.parts is None:
            return []
        return [self.extracted_path / p for p in self.parts]


class ProfileEntry(BaseModel):
    name: str
    enabled: bool


class GameConfig(BaseModel):
    """Per-game state; the durable source of truth for every deploy pass."""

    version: int = CONFIG_VERSION
    game_folder: Path
    data_folder: Path | None = None
    plugins_file: Path | None = None
    executable: Path | None = None
    deploy_method: DeployMethod = "hardlink"
    mods: list[ManagedMod] = Field(default_factory=list)
    profiles: dict[str, list[ProfileEntry]] = Field(default_factory=dict)
    active_profile: str | None = None

    @field_validator("version")
    @classmethod
    def _check_version(cls, v: int) -> int:
        if v > CONFIG_VERSION:
            raise ValueError(
                f"Config version {v} requires a newer climm "
                f"(this build supports up to version {CONFIG_VERSION})"
            )
        return v

    @model_validator(mode="after")
    def _no_duplicate_mods(self) -> GameConfig:
        seen = set()
        for mod in self.mods:
            if mod.key in seen:
                raise ValueError(f"Duplicate mod name: {mod.name!r}")
            seen.add(mod.key)
        if self.active_profile is not None and self.active_profile not in self.profiles:
            _log.warning("Active profile %r has no saved entries", self.active_profile)
            self.active_profile = None
        return self

    @property
    def install_dir(self) -> Path:
        if self.data_folder is not None:
            return self.game_folder / self.data_folder
        return self.game_folder

    @property
    def data_folder_name(self) -> str | None:
        return self.data_folder.name if self.data_folder is not None else None


class GlobalConfig(BaseModel):
    active_game: str | None = None
    games: list[str] = Field(default_factory=list)

    @field_validator("games")
    @classmethod
    def _dedupe(cls, v: list[str]) -> list[str]:
        return sorted(set(v))

    @model_validator(mode="after")
    def _active_is_known(self) -> GlobalConfig:
        if self.active_game is not None and self.active_game not in self.games:
            _log.warning("Active game %r is not a managed game, clearing it", self.active_game)
            self.active_game = None
        return self


# ── Load / save ───────────────────────────────────────────────────────


def parse_game_config(data: bytes | str) -> GameConfig:
    """Parse raw JSON into a GameConfig.

    Raises ``pydantic.ValidationError`` if the data is invalid.
    Raises ``json.JSONDecodeError`` if the bytes are not valid JSON.
    """
    return GameConfig.model_validate(json.loads(data))


def load_game_config(path: Path) -> GameConfig:
    return parse_game_config(Path(path).read_bytes())


def save_game_config(config: GameConfig, path: Path):
    Path(path).write_text(config.model_dump_json(indent=2), encoding="utf-8")


def load_global_config(path: Path) -> GlobalConfig:
    """Read the global config; a missing file yields an empty config."""
    path = Path(path)
    if not path.exists():
        return GlobalConfig()
    return GlobalConfig.model_validate(json.loads(path.read_bytes()))


def save_global_config(config: GlobalConfig, path: Path):
    Path(path).write_text(config.model_dump_json(indent=2), encoding="utf-8")
