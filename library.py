"""
The climm home directory and the games it manages.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from config_schema import (
    GameConfig,
    GlobalConfig,
    load_global_config,
    save_global_config,
    save_game_config,
)
from errors import AlreadyManagedError, NoActiveGameError, UnknownGameError
from linker import DeployMethod
from mod_manager import (
    ARCHIVES_DIRNAME,
    EXTRACTED_DIRNAME,
    GAME_CONFIG_FILENAME,
    ModManager,
)

CLIMM_HOME_ENV = "CLIMM_HOME"
GLOBAL_CONFIG_FILENAME = "config.json"

_log = logging.getLogger(__name__)


def default_home() -> Path:
    override = os.environ.get(CLIMM_HOME_ENV)
    if override:
        return Path(override).expanduser().absolute()
    return Path.home() / ".climm"


class Library:
    """Global state: which games are managed and which one is active."""

    def __init__(self, home: str | Path | None = None):
        self.home = Path(home).absolute() if home is not None else default_home()
        self.home.mkdir(parents=True, exist_ok=True)
        self.global_config_path = self.home / GLOBAL_CONFIG_FILENAME
        self.config: GlobalConfig = load_global_config(self.global_config_path)

    def save(self):
        save_global_config(self.config, self.global_config_path)

    def game_dir(self, name: str) -> Path:
        return self.home / name

    def init_game(
        self,
        name: str,
        game_folder: str | Path,
        data_folder: str | Path | None = None,
        plugins_file: str | Path | None = None,
        executable: str | Path | None = None,
        deploy_method: DeployMethod = "hardlink",
    ) -> GameConfig:
        if name in self.config.games:
            raise AlreadyManagedError(name)

        game_dir = self.game_dir(name)
        (game_dir / ARCHIVES_DIRNAME).mkdir(parents=True, exist_ok=True)
        (game_dir / EXTRACTED_DIRNAME).mkdir(parents=True, exist_ok=True)

        config = GameConfig(
            game_folder=Path(game_folder).expanduser().absolute(),
            data_folder=Path(data_folder) if data_folder is not None else None,
            plugins_file=Path(plugins_file).expanduser().absolute() if plugins_file is not None else None,
            executable=Path(executable) if executable is not None else None,
            deploy_method=deploy_method,
        )
        save_game_config(config, game_dir / GAME_CONFIG_FILENAME)

        self.config.games = sorted({*self.config.games, name})
        if self.config.active_game is None:
            self.config.active_game = name
        _log.info("Initialised game %s at %s", name, config.game_folder)
        return config

    def set_active(self, name: str):
        if name not in self.config.games:
            raise UnknownGameError(name)
        self.config.active_game = name

    def open_game(self, name: str, **kwargs) -> ModManager:
        if name not in self.config.games:
            raise UnknownGameError(name)
        return ModManager.open(self.game_dir(name), **kwargs)

    def active_game(self, **kwargs) -> ModManager:
        if self.config.active_game is None:
            raise NoActiveGameError()
        return self.open_game(self.config.active_game, **kwargs)
