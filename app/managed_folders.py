"""Bookmark folders the recommendation engine is allowed to mutate."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal


ContentKind = Literal["movie", "series"]


@dataclass(frozen=True)
class ManagedFolderDefinition:
    """Describes a remote bookmark folder owned by the engine."""

    name: str
    kind: ContentKind
    label: str


MANAGED_FOLDERS: tuple[ManagedFolderDefinition, ...] = (
    ManagedFolderDefinition(name="movies-ai", kind="movie", label="AI movie picks"),
    ManagedFolderDefinition(name="tv-shows-ai", kind="series", label="AI series picks"),
)

MANAGED_FOLDER_NAMES: tuple[str, ...] = tuple(folder.name for folder in MANAGED_FOLDERS)

NOT_INTERESTED_PATTERNS: tuple[str, ...] = ("not interested", "not-interested", "dislike")


def is_managed_folder(name: str | None) -> bool:
    """Return True when ``name`` is on the allow-list (case-insensitive)."""

    if not name:
        return False
    lowered = name.strip().lower()
    return any(lowered == folder.name for folder in MANAGED_FOLDERS)


def folder_for_kind(kind: str) -> ManagedFolderDefinition:
    """Return the managed folder receiving items of ``kind``."""

    for folder in MANAGED_FOLDERS:
        if folder.kind == kind:
            return folder
    raise KeyError(f"No managed folder for content kind {kind!r}")


def folders_for_kind(kind: str | None) -> tuple[ManagedFolderDefinition, ...]:
    """Return the managed folders relevant to a batch of ``kind`` (None means both)."""

    if kind is None:
        return MANAGED_FOLDERS
    return tuple(folder for folder in MANAGED_FOLDERS if folder.kind == kind)


def select_managed_folders(names: Iterable[str] | None) -> tuple[str, ...]:
    """Filter requested folder names down to the allow-list, preserving order."""

    if names is None:
        return MANAGED_FOLDER_NAMES
    selected: list[str] = []
    for name in names:
        if not isinstance(name, str):
            continue
        lowered = name.strip().lower()
        if is_managed_folder(lowered) and lowered not in selected:
            selected.append(lowered)
    return tuple(selected)


def is_not_interested_folder(name: str | None) -> bool:
    """Return True when a folder name marks its items as rejected by the user."""

    if not name:
        return False
    lowered = name.lower()
    return any(pattern in lowered for pattern in NOT_INTERESTED_PATTERNS)
