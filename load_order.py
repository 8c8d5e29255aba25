"""
Load-order editing and mod-name resolution.

The registry is a plain ``list[ManagedMod]``; its order is the load order.
Every operation here computes the new order on a copy and only writes it
back once it has succeeded, so a failed move leaves the registry untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from config_schema import ManagedMod
from errors import AmbiguousModError, SelfRelativeMoveError, UnknownModError


# ── Name resolution ───────────────────────────────────────────────────


@dataclass(frozen=True)
class Found:
    name: str
    index: int


@dataclass(frozen=True)
class NotFound:
    selector: str


@dataclass(frozen=True)
class Ambiguous:
    selector: str
    candidates: list[str]


Resolution = Union[Found, NotFound, Ambiguous]


def resolve_mod(mods: list[ManagedMod], selector: str) -> Resolution:
    """Case-insensitive lookup; an exact name beats any substring match."""
    needle = selector.lower()
    for i, mod in enumerate(mods):
        if mod.key == needle:
            return Found(mod.name, i)
    matches = [(i, mod) for i, mod in enumerate(mods) if needle in mod.key]
    if not matches:
        return NotFound(selector)
    if len(matches) > 1:
        return Ambiguous(selector, [mod.name for _, mod in matches])
    i, mod = matches[0]
    return Found(mod.name, i)


def require_mod(mods: list[ManagedMod], selector: str) -> Found:
    result = resolve_mod(mods, selector)
    if isinstance(result, NotFound):
        raise UnknownModError(selector)
    if isinstance(result, Ambiguous):
        raise AmbiguousModError(selector, result.candidates)
    return result


# ── Destinations ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Above:
    other: str


@dataclass(frozen=True)
class Below:
    other: str


@dataclass(frozen=True)
class Top:
    pass


@dataclass(frozen=True)
class Bottom:
    pass


@dataclass(frozen=True)
class Up:
    n: int = 1


@dataclass(frozen=True)
class Down:
    n: int = 1


Destination = Union[Above, Below, Top, Bottom, Up, Down]


def move(mods: list[ManagedMod], selector: str, destination: Destination) -> int:
    """Move one mod within *mods* in place and return its new index.

    Raises ``UnknownModError`` / ``AmbiguousModError`` for selectors that do
    not name exactly one mod and ``SelfRelativeMoveError`` when a mod is
    moved above or below itself.  Nothing is changed when an error is raised.
    """
    moving = require_mod(mods, selector)
    other = None
    if isinstance(destination, (Above, Below)):
        other = require_mod(mods, destination.other)
        if other.name.lower() == moving.name.lower():
            raise SelfRelativeMoveError(moving.name)

    order = list(mods)
    entry = order.pop(moving.index)

    if isinstance(destination, Top):
        index = 0
    elif isinstance(destination, Bottom):
        index = len(order)
    elif isinstance(destination, Up):
        index = max(0, moving.index - max(0, destination.n))
    elif isinstance(destination, Down):
        index = min(len(order), moving.index + max(0, destination.n))
    else:
        anchor = next(i for i, m in enumerate(order) if m.key == other.name.lower())
        index = anchor if isinstance(destination, Above) else anchor + 1

    order.insert(index, entry)
    mods[:] = order
    return index
