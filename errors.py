"""
Exception types raised by climm.

Configuration and lookup errors abort the current command before anything is
mutated.  Extraction errors are collected per mod by a deploy pass.  Plain
``OSError`` from the filesystem is never wrapped and always propagates.
"""

from __future__ import annotations

from pathlib import Path


class ClimmError(Exception):
    """Base class for every error the CLI reports as a plain message."""


# ── Configuration ─────────────────────────────────────────────────────


class ConfigError(ClimmError):
    pass


class UnknownGameError(ConfigError):
    def __init__(self, name: str):
        super().__init__(f"Unknown game: {name}")
        self.name = name


class NoActiveGameError(ConfigError):
    def __init__(self):
        super().__init__("No active game")


class AlreadyManagedError(ConfigError):
    def __init__(self, name: str):
        super().__init__(f"climm already manages {name}")
        self.name = name


class UnknownProfileError(ConfigError):
    def __init__(self, name: str):
        super().__init__(f"Unknown profile: {name}")
        self.name = name


class NoActiveProfileError(ConfigError):
    def __init__(self):
        super().__init__("No active profile")


class GameLockedError(ConfigError):
    def __init__(self, lock_path: Path):
        super().__init__(f"Another climm process is working on this game ({lock_path})")
        self.lock_path = Path(lock_path)


class NoExecutableError(ConfigError):
    def __init__(self, game_folder: Path):
        super().__init__(f"No executable configured for {game_folder}")


# ── Mod lookup ────────────────────────────────────────────────────────


class ModLookupError(ClimmError):
    pass


class UnknownModError(ModLookupError):
    def __init__(self, selector: str):
        super().__init__(f"No mod found for {selector!r}")
        self.selector = selector


class AmbiguousModError(ModLookupError):
    def __init__(self, selector: str, candidates: list[str]):
        super().__init__(
            f"{selector!r} matches more than one mod: {', '.join(candidates)}"
        )
        self.selector = selector
        self.candidates = candidates


class SelfRelativeMoveError(ModLookupError):
    def __init__(self, name: str):
        super().__init__(f"Cannot move {name} in relation to itself")
        self.name = name


# ── Extraction / installer options ────────────────────────────────────


class ExtractionError(ClimmError):
    """The archive tool did not produce a complete tree.

    ``exit_code`` is the tool's exit status, or ``-1`` when the tool could
    not be launched at all.
    """

    def __init__(self, archive_path: Path, exit_code: int, detail: str = ""):
        msg = f"Extraction of {Path(archive_path).name} failed with exit code {exit_code}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.archive_path = Path(archive_path)
        self.exit_code = exit_code


class PartSelectionError(ClimmError):
    pass
