"""Library scanning and not-interested management tests."""

from __future__ import annotations

import pytest

from app.errors import ApiError, InputValidationError
from app.services.catalog_gateway import WatchingEntry
from app.services.scanner import LibraryScanner, NotInterestedManager, rate_watched


@pytest.mark.anyio
async def test_scan_watched_imports_serials_and_movies(gateway, library_store) -> None:
    gateway.serials = [
        WatchingEntry(remote_id=1, title="Dark", kind="series", total_units=26, completed_units=26, fully_watched=True),
        WatchingEntry(remote_id=2, title="Ozark", kind="series", total_units=44, completed_units=5),
    ]
    gateway.movies = [WatchingEntry(remote_id=3, title="Heat", kind="movie", year=1995, fully_watched=True)]

    report = await LibraryScanner(gateway, library_store).scan_watched()

    assert (report.processed, report.fully_watched) == (3, 2)
    assert [r.remote_id for r in await library_store.list_watched(fully_watched=True)] == [3, 1]
    ozark = await library_store.get_watched(2)
    assert ozark.progress() == pytest.approx(5 / 44)


@pytest.mark.anyio
async def test_scan_watched_tolerates_missing_movie_list(gateway, library_store) -> None:
    async def broken() -> list:
        raise ApiError("no movies", status_code=404)

    gateway.list_watching_movies = broken

    report = await LibraryScanner(gateway, library_store).scan_watched()

    assert report.processed == 0
    assert report.warnings and "movies unavailable" in report.warnings[0]


@pytest.mark.anyio
async def test_scan_bookmarks_reads_every_folder(gateway, library_store) -> None:
    dark = gateway.add_catalog(1, "Dark", year=2017)
    heat = gateway.add_catalog(2, "Heat", kind="movie", year=1995)
    gateway.add_folder("Later", [dark, heat])
    gateway.add_folder("Not Interested", [heat])

    report = await LibraryScanner(gateway, library_store).scan_bookmarks()

    assert report.folders == {"Later": 2, "Not Interested": 1}
    assert len(await library_store.list_bookmarks()) == 3


@pytest.mark.anyio
async def test_scan_named_folder_creates_it_when_missing(gateway, library_store) -> None:
    report = await LibraryScanner(gateway, library_store).scan_bookmarks("watch-later")

    assert gateway.created == ["watch-later"]
    assert report.folders == {"watch-later": 0}


@pytest.mark.anyio
async def test_not_interested_add_and_remove(gateway, library_store) -> None:
    gateway.add_catalog(7, "Emily in Paris", year=2020)
    gateway.add_catalog(8, "Emily the Criminal", kind="movie", year=2022)
    manager = NotInterestedManager(gateway, library_store)

    record, created = await manager.add("Emily in Paris", "series")
    assert created and record.remote_id == 7
    assert record.reason == "Manually added"
    _, created_again = await manager.add("Emily in Paris", "series")
    assert created_again is False
    assert await manager.add("Nothing Here") == (None, False)

    await manager.add("Emily the Criminal", "movie", reason="not my genre")
    ambiguous = await manager.remove("emily")
    assert ambiguous.status == "ambiguous" and len(ambiguous.matches) == 2

    removed = await manager.remove("paris")
    assert removed.status == "removed" and removed.removed.remote_id == 7
    assert (await manager.remove("paris")).status == "not_found"
    assert [r.title for r in await manager.list_all()] == ["Emily the Criminal"]


@pytest.mark.anyio
async def test_not_interested_requires_query(gateway, library_store) -> None:
    manager = NotInterestedManager(gateway, library_store)

    with pytest.raises(InputValidationError):
        await manager.add("   ")
    with pytest.raises(InputValidationError):
        await manager.remove("")


@pytest.mark.anyio
async def test_rate_watched(gateway, library_store) -> None:
    await LibraryScanner(gateway, library_store).scan_watched()
    assert await rate_watched(library_store, 1, 9) is None

    gateway.serials = [WatchingEntry(remote_id=1, title="Dark", kind="series", total_units=2, completed_units=2, fully_watched=True)]
    await LibraryScanner(gateway, library_store).scan_watched()

    rated = await rate_watched(library_store, 1, 9, "mind-bending")
    assert (rated.rating, rated.notes) == (9, "mind-bending")
