"""Typed kino.pub operations over the resilient client."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..errors import ApiError
from ..models import (
    BookmarkFolder,
    CatalogCandidate,
    FolderPage,
    Pagination,
    WatchStatus,
    kind_from_remote_type,
    remote_type_for_kind,
)
from ..utils import extract_year
from .kinopub import KinoPubClient

logger = logging.getLogger(__name__)

RECORD_KEYS = ("data", "item", "folder")
LIST_KEYS = ("items", "data")
MAX_FOLDER_PAGES = 200

UNIT_COMPLETE = 1
UNIT_IN_PROGRESS = 0


@dataclass(slots=True)
class Envelope:
    """Canonical shape of any kino.pub response body."""

    record: dict[str, Any] | None = None
    records: list[dict[str, Any]] = field(default_factory=list)
    pagination: Pagination | None = None


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _parse_pagination(raw: Any) -> Pagination | None:
    if not isinstance(raw, dict):
        return None
    current = _int_or_none(raw.get("current"))
    total = _int_or_none(raw.get("total"))
    if current is None and total is None:
        return None
    return Pagination(current=current or 1, total=total or current or 1)


def normalize_envelope(body: Any) -> Envelope:
    """Collapse the ``data``/``item``/``items``/``folder`` variants into one shape.

    ``record`` is the single object carried by the response (or the body itself
    when it is the object), ``records`` the list of entries, and ``pagination``
    the page metadata wherever it was nested.
    """

    if not isinstance(body, dict):
        return Envelope()

    record: dict[str, Any] | None = None
    for key in RECORD_KEYS:
        value = body.get(key)
        if isinstance(value, dict):
            record = value
            break
    if record is None and "id" in body:
        record = body

    scopes = [record, body] if record is not None and record is not body else [body]
    records: list[dict[str, Any]] = []
    pagination: Pagination | None = None
    for scope in scopes:
        for key in LIST_KEYS:
            value = scope.get(key)
            if isinstance(value, list):
                records = [entry for entry in value if isinstance(entry, dict)]
                break
        if records:
            break
    for scope in scopes:
        pagination = _parse_pagination(scope.get("pagination"))
        if pagination is not None:
            break
    return Envelope(record=record, records=records, pagination=pagination)


def aggregate_watch_status(item: Any) -> WatchStatus:
    """Fold per-episode or per-video ``status`` flags into one summary."""

    if not isinstance(item, dict):
        return WatchStatus()
    units: list[dict[str, Any]] = []
    seasons = item.get("seasons")
    if isinstance(seasons, list):
        for season in seasons:
            episodes = season.get("episodes") if isinstance(season, dict) else None
            if isinstance(episodes, list):
                units.extend(entry for entry in episodes if isinstance(entry, dict))
    videos = item.get("videos")
    if isinstance(videos, list):
        units.extend(entry for entry in videos if isinstance(entry, dict))

    total = len(units)
    completed = sum(1 for unit in units if unit.get("status") == UNIT_COMPLETE)
    started = any(
        unit.get("status") in (UNIT_COMPLETE, UNIT_IN_PROGRESS) for unit in units
    )
    return WatchStatus(
        is_watched=started,
        is_fully_watched=total > 0 and completed == total,
        completed_units=completed,
        total_units=total,
    )


@dataclass(slots=True)
class WatchingEntry:
    """An entry of the remote "currently watching" lists."""

    remote_id: int
    title: str
    kind: str
    year: int | None = None
    total_units: int | None = None
    completed_units: int | None = None
    fully_watched: bool = False


class KinoPubGateway:
    """Bookmark, search and watch-status operations with fixed return shapes."""

    def __init__(self, client: KinoPubClient):
        self._client = client

    @property
    def client(self) -> KinoPubClient:
        return self._client

    async def list_folders(self) -> list[BookmarkFolder]:
        envelope = normalize_envelope(await self._client.get("/bookmarks"))
        folders: list[BookmarkFolder] = []
        for entry in envelope.records:
            folder = BookmarkFolder.from_payload(entry)
            if folder is not None:
                folders.append(folder)
        return folders

    async def get_folder(self, folder_id: int, page: int | None = None) -> FolderPage:
        params = {"page": page} if page and page > 1 else {}
        envelope = normalize_envelope(
            await self._client.get(f"/bookmarks/{folder_id}", **params)
        )
        folder = BookmarkFolder.from_payload(envelope.record) if envelope.record else None
        items = [
            candidate
            for candidate in (CatalogCandidate.from_payload(e) for e in envelope.records)
            if candidate is not None
        ]
        return FolderPage(folder=folder, items=items, pagination=envelope.pagination)

    async def get_all_folder_items(self, folder_id: int) -> list[CatalogCandidate]:
        """Return every item of a folder, following pagination metadata."""

        collected: list[CatalogCandidate] = []
        seen: set[int] = set()
        page = 1
        while page <= MAX_FOLDER_PAGES:
            result = await self.get_folder(folder_id, page)
            for item in result.items:
                if item.remote_id in seen:
                    continue
                seen.add(item.remote_id)
                collected.append(item)
            pagination = result.pagination
            if pagination is None or not result.items:
                break
            if pagination.current >= pagination.total or page >= pagination.total:
                break
            page = max(page, pagination.current) + 1
        else:
            logger.warning(
                "Stopped paging folder %s after %s pages", folder_id, MAX_FOLDER_PAGES
            )
        return collected

    async def find_folder_by_name(self, name: str) -> BookmarkFolder | None:
        wanted = name.strip().lower()
        for folder in await self.list_folders():
            if folder.title.strip().lower() == wanted:
                return folder
        return None

    async def create_folder(self, name: str) -> BookmarkFolder:
        envelope = normalize_envelope(
            await self._client.post("/bookmarks/create", {"title": name})
        )
        folder = BookmarkFolder.from_payload(envelope.record)
        if folder is None:
            raise ApiError(f"Folder creation for {name!r} returned no folder descriptor")
        logger.info("Created bookmark folder %r (id %s)", folder.title, folder.id)
        return folder

    async def find_or_create_folder(self, name: str) -> BookmarkFolder:
        folder = await self.find_folder_by_name(name)
        if folder is not None:
            return folder
        return await self.create_folder(name)

    async def add_item(self, folder_id: int, item_id: int) -> None:
        await self._client.post("/bookmarks/add", {"item": item_id, "folder": folder_id})

    async def remove_item(self, item_id: int, folder_id: int | None = None) -> bool:
        """Remove an item from a folder; an absent item returns False."""

        payload: dict[str, Any] = {"item": item_id}
        if folder_id is not None:
            payload["folder"] = folder_id
        try:
            await self._client.post("/bookmarks/remove-item", payload)
        except ApiError as exc:
            if exc.status_code == 404:
                logger.info("Item %s already absent from folder %s", item_id, folder_id)
                return False
            raise
        return True

    async def search(self, query: str, kind: str | None = None) -> list[CatalogCandidate]:
        body = await self._client.get(
            "/items/search", q=query, type=remote_type_for_kind(kind)
        )
        envelope = normalize_envelope(body)
        return [
            candidate
            for candidate in (CatalogCandidate.from_payload(e) for e in envelope.records)
            if candidate is not None
        ]

    async def get_watch_status(self, item_id: int) -> WatchStatus:
        envelope = normalize_envelope(await self._client.get("/watching", id=item_id))
        return aggregate_watch_status(envelope.record)

    async def list_watching_serials(self) -> list[WatchingEntry]:
        envelope = normalize_envelope(await self._client.get("/watching/serials"))
        entries: list[WatchingEntry] = []
        for raw in envelope.records:
            remote_id = _int_or_none(raw.get("id"))
            title = raw.get("title")
            if remote_id is None or not isinstance(title, str):
                continue
            total = _int_or_none(raw.get("total")) or 0
            watched = _int_or_none(raw.get("watched")) or 0
            entries.append(
                WatchingEntry(
                    remote_id=remote_id,
                    title=title,
                    kind="series",
                    year=extract_year(title),
                    total_units=total,
                    completed_units=watched,
                    fully_watched=total > 0 and watched >= total,
                )
            )
        return entries

    async def list_watching_movies(self) -> list[WatchingEntry]:
        envelope = normalize_envelope(await self._client.get("/watching"))
        entries: list[WatchingEntry] = []
        for raw in envelope.records:
            item = raw.get("item") if isinstance(raw.get("item"), dict) else raw
            candidate = CatalogCandidate.from_payload(item)
            if candidate is None:
                continue
            if kind_from_remote_type(candidate.type, candidate.subtype) != "movie":
                continue
            entries.append(
                WatchingEntry(
                    remote_id=candidate.remote_id,
                    title=candidate.title,
                    kind="movie",
                    year=candidate.year or extract_year(candidate.title),
                    fully_watched=True,
                )
            )
        return entries
