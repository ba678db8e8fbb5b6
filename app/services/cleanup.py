"""Keep the managed bookmark folders free of excluded titles."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

from ..config import Settings
from ..errors import AuthFailure, KinoPubError
from ..managed_folders import folders_for_kind, select_managed_folders
from .catalog_gateway import KinoPubGateway
from .exclusions import ExclusionSet, ExclusionSetBuilder
from .storage import LibraryStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RemovedItem:
    folder: str
    remote_id: int
    title: str
    reason: str


@dataclass(slots=True)
class CleanupReport:
    """What a cleanup pass removed and where it failed."""

    folders_checked: list[str] = field(default_factory=list)
    removed: list[RemovedItem] = field(default_factory=list)
    failures: int = 0

    @property
    def removed_count(self) -> int:
        return len(self.removed)

    def as_dict(self) -> dict[str, Any]:
        return {
            "folders_checked": list(self.folders_checked),
            "removed": [
                {
                    "folder": item.folder,
                    "remote_id": item.remote_id,
                    "title": item.title,
                    "reason": item.reason,
                }
                for item in self.removed
            ],
            "removed_count": self.removed_count,
            "failures": self.failures,
        }


class FolderSyncCleanup:
    """Removes watched, bookmarked-elsewhere and rejected titles from managed folders."""

    def __init__(
        self,
        settings: Settings,
        gateway: KinoPubGateway,
        store: LibraryStore,
        exclusions: ExclusionSetBuilder | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        self._settings = settings
        self._gateway = gateway
        self._store = store
        self._exclusions = exclusions or ExclusionSetBuilder(store)
        self._sleep = sleep or asyncio.sleep

    async def run(
        self,
        kind: str | None = None,
        exclusions: ExclusionSet | None = None,
    ) -> CleanupReport:
        """Clean the managed folders relevant to ``kind`` (both when None)."""

        if exclusions is None:
            exclusions = await self._exclusions.build(include_managed_bookmarks=False)
        report = CleanupReport()

        for definition in folders_for_kind(kind):
            try:
                folder = await self._gateway.find_folder_by_name(definition.name)
                if folder is None:
                    logger.info("Folder %r not found, skipping cleanup", definition.name)
                    continue
                items = await self._gateway.get_all_folder_items(folder.id)
            except AuthFailure:
                raise
            except KinoPubError as exc:
                logger.warning("Could not read folder %r: %s", definition.name, exc)
                report.failures += 1
                continue

            report.folders_checked.append(definition.name)
            for item in items:
                if exclusions.contains_id(item.remote_id):
                    reason = "id"
                elif exclusions.match_title(item.title) is not None:
                    reason = "title"
                else:
                    continue
                try:
                    await self._gateway.remove_item(item.remote_id, folder.id)
                except AuthFailure:
                    raise
                except KinoPubError as exc:
                    logger.warning(
                        "Failed to remove %r from %s: %s", item.title, definition.name, exc
                    )
                    report.failures += 1
                    continue
                await self._store.remove_bookmark(item.remote_id, folder.id)
                report.removed.append(
                    RemovedItem(
                        folder=definition.name,
                        remote_id=item.remote_id,
                        title=item.title,
                        reason=reason,
                    )
                )
                logger.info(
                    "Removed %r from %s (matched by %s)", item.title, definition.name, reason
                )
                await self._sleep(self._settings.cleanup_delay_seconds)

        logger.info(
            "Cleanup removed %s item(s) from %s folder(s)",
            report.removed_count,
            len(report.folders_checked),
        )
        return report

    async def clean_managed_folders(self, names: Iterable[str] | None = None) -> CleanupReport:
        """Empty allow-listed folders; requested names outside the list are ignored."""

        report = CleanupReport()
        for name in select_managed_folders(names):
            try:
                folder = await self._gateway.find_folder_by_name(name)
                if folder is None:
                    logger.info("Folder %r not found, nothing to clean", name)
                    continue
                items = await self._gateway.get_all_folder_items(folder.id)
            except AuthFailure:
                raise
            except KinoPubError as exc:
                logger.warning("Could not read folder %r: %s", name, exc)
                report.failures += 1
                continue

            report.folders_checked.append(name)
            for item in items:
                try:
                    await self._gateway.remove_item(item.remote_id, folder.id)
                except AuthFailure:
                    raise
                except KinoPubError as exc:
                    logger.warning("Failed to remove %r from %s: %s", item.title, name, exc)
                    report.failures += 1
                    continue
                await self._store.remove_bookmark(item.remote_id, folder.id)
                report.removed.append(
                    RemovedItem(
                        folder=name, remote_id=item.remote_id, title=item.title, reason="bulk"
                    )
                )
                await self._sleep(self._settings.cleanup_delay_seconds)
            logger.info("Emptied folder %r", name)
        return report
