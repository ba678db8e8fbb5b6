"""Import remote history and bookmarks into the local store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..errors import AuthFailure, InputValidationError, KinoPubError
from ..models import BookmarkRecord, ContentKind, NotInterestedRecord, WatchedRecord
from .catalog_gateway import KinoPubGateway
from .storage import LibraryStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ScanReport:
    processed: int = 0
    fully_watched: int = 0
    folders: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "fully_watched": self.fully_watched,
            "folders": dict(self.folders),
            "warnings": list(self.warnings),
        }


class LibraryScanner:
    """Refreshes watched and bookmarked records from kino.pub."""

    def __init__(self, gateway: KinoPubGateway, store: LibraryStore):
        self._gateway = gateway
        self._store = store

    async def scan_watched(self) -> ScanReport:
        report = ScanReport()
        for entry in await self._gateway.list_watching_serials():
            await self._store.upsert_watched(
                WatchedRecord(
                    remote_id=entry.remote_id,
                    title=entry.title,
                    kind="series",
                    year=entry.year,
                    total_units=entry.total_units,
                    completed_units=entry.completed_units,
                    fully_watched=entry.fully_watched,
                )
            )
            report.processed += 1
            report.fully_watched += int(entry.fully_watched)

        try:
            movies = await self._gateway.list_watching_movies()
        except AuthFailure:
            raise
        except KinoPubError as exc:
            # Some accounts have no movie watching list.
            logger.warning("Could not fetch watched movies: %s", exc)
            report.warnings.append(f"movies unavailable: {exc}")
            movies = []
        for entry in movies:
            await self._store.upsert_watched(
                WatchedRecord(
                    remote_id=entry.remote_id,
                    title=entry.title,
                    kind="movie",
                    year=entry.year,
                    fully_watched=True,
                )
            )
            report.processed += 1
            report.fully_watched += 1

        logger.info(
            "Scanned %s watched item(s), %s fully watched",
            report.processed,
            report.fully_watched,
        )
        return report

    async def scan_bookmarks(self, folder_name: str | None = None) -> ScanReport:
        """Import one folder (created when missing) or every folder."""

        if folder_name:
            folders = [await self._gateway.find_or_create_folder(folder_name)]
        else:
            folders = await self._gateway.list_folders()

        report = ScanReport()
        for folder in folders:
            items = await self._gateway.get_all_folder_items(folder.id)
            for item in items:
                await self._store.upsert_bookmark(
                    BookmarkRecord(
                        remote_id=item.remote_id,
                        title=item.title,
                        kind=item.kind,
                        year=item.year,
                        folder_id=folder.id,
                        folder_name=folder.title,
                    )
                )
            report.folders[folder.title] = len(items)
            report.processed += len(items)
        logger.info(
            "Scanned %s bookmark(s) across %s folder(s)", report.processed, len(folders)
        )
        return report


@dataclass(slots=True)
class NotInterestedRemoval:
    status: str
    removed: NotInterestedRecord | None = None
    matches: list[NotInterestedRecord] = field(default_factory=list)


class NotInterestedManager:
    """List, add, remove and sync explicit rejections."""

    def __init__(self, gateway: KinoPubGateway, store: LibraryStore):
        self._gateway = gateway
        self._store = store

    async def list_all(self, kind: ContentKind | None = None) -> list[NotInterestedRecord]:
        return await self._store.list_not_interested(kind)

    async def add(
        self,
        query: str,
        kind: ContentKind | None = None,
        reason: str | None = None,
    ) -> tuple[NotInterestedRecord | None, bool]:
        """Reject the first search hit for ``query``.

        Returns the record and whether it was newly added; ``(None, False)`` when
        nothing matched.
        """

        query = query.strip()
        if not query:
            raise InputValidationError("A search query is required")
        results = await self._gateway.search(query, kind)
        if not results:
            logger.info("No kino.pub match for %r", query)
            return None, False
        hit = results[0]
        record = NotInterestedRecord(
            remote_id=hit.remote_id,
            title=hit.title,
            kind=hit.kind,
            year=hit.year,
            reason=reason or "Manually added",
        )
        if await self._store.is_not_interested(hit.remote_id):
            return record, False
        await self._store.upsert_not_interested(record)
        logger.info("Marked %r as not interested", hit.title)
        return record, True

    async def remove(self, title_fragment: str) -> NotInterestedRemoval:
        """Remove the single record whose title contains ``title_fragment``."""

        fragment = title_fragment.strip().lower()
        if not fragment:
            raise InputValidationError("A title is required")
        matches = [
            record
            for record in await self._store.list_not_interested()
            if fragment in record.title.lower()
        ]
        if not matches:
            return NotInterestedRemoval(status="not_found")
        if len(matches) > 1:
            return NotInterestedRemoval(status="ambiguous", matches=matches)
        await self._store.remove_not_interested(matches[0].remote_id)
        logger.info("Removed %r from not interested", matches[0].title)
        return NotInterestedRemoval(status="removed", removed=matches[0])

    async def sync(self) -> int:
        return await self._store.sync_not_interested_from_bookmarks()


async def rate_watched(
    store: LibraryStore,
    remote_id: int,
    rating: int,
    notes: str | None = None,
) -> WatchedRecord | None:
    """Attach a 1..10 rating and optional notes to a watched record."""

    return await store.update_watched_preferences(remote_id, rating, notes)
