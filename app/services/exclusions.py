"""Build the per-pass exclusion set from the local store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..managed_folders import is_managed_folder, is_not_interested_folder
from ..matching import titles_equivalent
from ..models import ExclusionRecord
from .storage import LibraryStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ExclusionSet:
    """Titles and ids the engine must never (re-)suggest during one pass."""

    records: list[ExclusionRecord] = field(default_factory=list)
    ids: set[int] = field(default_factory=set)

    def __len__(self) -> int:
        return len(self.records)

    def add(self, record: ExclusionRecord) -> None:
        self.records.append(record)
        if record.remote_id is not None:
            self.ids.add(record.remote_id)

    def contains_id(self, remote_id: int | None) -> bool:
        return remote_id is not None and remote_id in self.ids

    def match_title(self, title: str | None) -> ExclusionRecord | None:
        """Return the first member whose title is equivalent to ``title``."""

        for record in self.records:
            if titles_equivalent(title, record.title):
                return record
        return None

    def match(self, *, title: str | None, remote_id: int | None = None) -> ExclusionRecord | None:
        """Match by remote id first, then by fuzzy title."""

        if self.contains_id(remote_id):
            for record in self.records:
                if record.remote_id == remote_id:
                    return record
        return self.match_title(title)


class ExclusionSetBuilder:
    """Merges watched, bookmarked and rejected records into one set."""

    def __init__(self, store: LibraryStore):
        self._store = store

    async def build(self, *, include_managed_bookmarks: bool = True) -> ExclusionSet:
        """Return a fresh exclusion set.

        Bookmarks from "not interested" folders are first copied into the
        rejection table. With ``include_managed_bookmarks=False`` the contents of
        the engine's own folders are left out, which is what folder cleanup needs
        so it does not remove the picks it is meant to keep.
        """

        synced = await self._store.sync_not_interested_from_bookmarks()
        exclusions = ExclusionSet()

        for watched in await self._store.list_watched():
            exclusions.add(
                ExclusionRecord(
                    remote_id=watched.remote_id,
                    title=watched.title,
                    year=watched.year,
                    kind=watched.kind,
                    source="watched",
                )
            )

        for bookmark in await self._store.list_bookmarks():
            if is_not_interested_folder(bookmark.folder_name):
                continue
            if not include_managed_bookmarks and is_managed_folder(bookmark.folder_name):
                continue
            exclusions.add(
                ExclusionRecord(
                    remote_id=bookmark.remote_id,
                    title=bookmark.title,
                    year=bookmark.year,
                    kind=bookmark.kind,
                    source="bookmark",
                )
            )

        for rejected in await self._store.list_not_interested():
            exclusions.add(
                ExclusionRecord(
                    remote_id=rejected.remote_id,
                    title=rejected.title,
                    year=rejected.year,
                    kind=rejected.kind,
                    source="not_interested",
                )
            )

        logger.info(
            "Built exclusion set with %s record(s) (%s newly synced rejection(s))",
            len(exclusions),
            synced,
        )
        return exclusions
