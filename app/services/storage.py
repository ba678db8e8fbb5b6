"""Local exclusion store backed by the async SQLAlchemy session factory."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import BookmarkedItem, NotInterestedItem, RecommendationRecord, WatchedItem
from ..errors import InputValidationError
from ..managed_folders import is_not_interested_folder
from ..models import (
    BookmarkRecord,
    NotInterestedRecord,
    RecommendationEntry,
    RecommendationStatus,
    WatchedRecord,
)
from ..utils import rating_is_valid

logger = logging.getLogger(__name__)

RECOMMENDATION_STATUSES = ("pending", "bookmarked", "rejected")


class LibraryStore:
    """Query contract over the watched, bookmarked and not-interested tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # Watched items

    async def upsert_watched(self, record: WatchedRecord) -> WatchedRecord:
        """Insert or update a watched row keyed by remote id.

        A stored rating or note survives an update that carries none.
        """

        if record.rating is not None and not rating_is_valid(record.rating):
            raise InputValidationError("Rating must be an integer between 1 and 10")
        async with self._session_factory() as session:
            result = await session.execute(
                select(WatchedItem).where(WatchedItem.remote_id == record.remote_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = WatchedItem(remote_id=record.remote_id)
                session.add(row)
            row.title = record.title
            row.kind = record.kind
            row.year = record.year if record.year is not None else row.year
            row.total_units = record.total_units
            row.completed_units = record.completed_units
            row.fully_watched = record.fully_watched
            if record.rating is not None:
                row.rating = record.rating
            if record.notes is not None:
                row.notes = record.notes
            row.updated_at = datetime.utcnow()
            await session.commit()
            await session.refresh(row)
            return WatchedRecord.model_validate(row)

    async def list_watched(
        self,
        kind: str | None = None,
        fully_watched: bool | None = None,
    ) -> list[WatchedRecord]:
        stmt = select(WatchedItem)
        if kind is not None:
            stmt = stmt.where(WatchedItem.kind == kind)
        if fully_watched is not None:
            stmt = stmt.where(WatchedItem.fully_watched == fully_watched)
        stmt = stmt.order_by(WatchedItem.updated_at.desc(), WatchedItem.id.desc())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [WatchedRecord.model_validate(row) for row in result.scalars()]

    async def list_watched_for_recommendation(self) -> list[WatchedRecord]:
        """Fully watched rows: rated first by rating, then most recent first."""

        stmt = (
            select(WatchedItem)
            .where(WatchedItem.fully_watched == True)  # noqa: E712
            .order_by(
                WatchedItem.rating.is_(None),
                WatchedItem.rating.desc(),
                WatchedItem.updated_at.desc(),
                WatchedItem.id.desc(),
            )
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [WatchedRecord.model_validate(row) for row in result.scalars()]

    async def get_watched(self, remote_id: int) -> WatchedRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WatchedItem).where(WatchedItem.remote_id == remote_id)
            )
            row = result.scalar_one_or_none()
            return WatchedRecord.model_validate(row) if row is not None else None

    async def update_watched_preferences(
        self,
        remote_id: int,
        rating: int | None,
        notes: str | None = None,
    ) -> WatchedRecord | None:
        """Set the user's rating and notes; returns None for an unknown id."""

        if rating is not None and not rating_is_valid(rating):
            raise InputValidationError("Rating must be an integer between 1 and 10")
        async with self._session_factory() as session:
            result = await session.execute(
                select(WatchedItem).where(WatchedItem.remote_id == remote_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None
            row.rating = rating
            if notes is not None:
                row.notes = notes.strip() or None
            row.updated_at = datetime.utcnow()
            await session.commit()
            await session.refresh(row)
            return WatchedRecord.model_validate(row)

    # Bookmarks

    async def upsert_bookmark(self, record: BookmarkRecord) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(BookmarkedItem).where(
                    BookmarkedItem.remote_id == record.remote_id,
                    BookmarkedItem.folder_id == record.folder_id,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = BookmarkedItem(remote_id=record.remote_id, folder_id=record.folder_id)
                session.add(row)
            row.title = record.title
            row.kind = record.kind
            row.year = record.year
            row.folder_name = record.folder_name
            await session.commit()

    async def list_bookmarks(self, folder_id: int | None = None) -> list[BookmarkRecord]:
        stmt = select(BookmarkedItem)
        if folder_id is not None:
            stmt = stmt.where(BookmarkedItem.folder_id == folder_id)
        stmt = stmt.order_by(BookmarkedItem.created_at.desc(), BookmarkedItem.id.desc())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [BookmarkRecord.model_validate(row) for row in result.scalars()]

    async def remove_bookmark(self, remote_id: int, folder_id: int) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(BookmarkedItem).where(
                    BookmarkedItem.remote_id == remote_id,
                    BookmarkedItem.folder_id == folder_id,
                )
            )
            await session.commit()

    # Not interested

    async def upsert_not_interested(self, record: NotInterestedRecord) -> bool:
        """Insert or refresh a rejection; returns True when the row is new."""

        async with self._session_factory() as session:
            result = await session.execute(
                select(NotInterestedItem).where(
                    NotInterestedItem.remote_id == record.remote_id
                )
            )
            row = result.scalar_one_or_none()
            created = row is None
            if row is None:
                row = NotInterestedItem(remote_id=record.remote_id)
                session.add(row)
            row.title = record.title
            row.kind = record.kind
            row.year = record.year
            if record.reason is not None or created:
                row.reason = record.reason
            await session.commit()
            return created

    async def list_not_interested(self, kind: str | None = None) -> list[NotInterestedRecord]:
        stmt = select(NotInterestedItem)
        if kind is not None:
            stmt = stmt.where(NotInterestedItem.kind == kind)
        stmt = stmt.order_by(NotInterestedItem.created_at.desc(), NotInterestedItem.id.desc())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [NotInterestedRecord.model_validate(row) for row in result.scalars()]

    async def is_not_interested(self, remote_id: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(NotInterestedItem.id).where(NotInterestedItem.remote_id == remote_id)
            )
            return result.scalar_one_or_none() is not None

    async def remove_not_interested(self, remote_id: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(NotInterestedItem).where(NotInterestedItem.remote_id == remote_id)
            )
            await session.commit()
            return bool(result.rowcount)

    async def sync_not_interested_from_bookmarks(self) -> int:
        """Copy bookmarks from "not interested" folders into the rejection table."""

        inserted = 0
        for bookmark in await self.list_bookmarks():
            if not is_not_interested_folder(bookmark.folder_name):
                continue
            created = await self.upsert_not_interested(
                NotInterestedRecord(
                    remote_id=bookmark.remote_id,
                    title=bookmark.title,
                    kind=bookmark.kind,
                    year=bookmark.year,
                    reason=f"From folder: {bookmark.folder_name}",
                )
            )
            if created:
                inserted += 1
        if inserted:
            logger.info("Synced %s not-interested item(s) from bookmark folders", inserted)
        return inserted

    # Recommendations

    async def add_recommendation(
        self,
        title: str,
        *,
        kind: str | None = None,
        year: int | None = None,
        reasoning: str | None = None,
        source: str = "ai",
    ) -> RecommendationEntry:
        async with self._session_factory() as session:
            row = RecommendationRecord(
                title=title,
                kind=kind,
                year=year,
                reasoning=reasoning,
                source=source,
                status="pending",
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return RecommendationEntry.model_validate(row)

    async def update_recommendation_status(
        self,
        recommendation_id: int,
        status: RecommendationStatus,
        remote_id: int | None = None,
    ) -> None:
        if status not in RECOMMENDATION_STATUSES:
            raise InputValidationError(f"Unknown recommendation status {status!r}")
        async with self._session_factory() as session:
            row = await session.get(RecommendationRecord, recommendation_id)
            if row is None:
                return
            row.status = status
            if remote_id is not None:
                row.remote_id = remote_id
            row.updated_at = datetime.utcnow()
            await session.commit()

    async def list_recommendations(
        self, status: RecommendationStatus | None = None
    ) -> list[RecommendationEntry]:
        stmt = select(RecommendationRecord)
        if status is not None:
            stmt = stmt.where(RecommendationRecord.status == status)
        stmt = stmt.order_by(RecommendationRecord.created_at.desc(), RecommendationRecord.id.desc())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [RecommendationEntry.model_validate(row) for row in result.scalars()]
