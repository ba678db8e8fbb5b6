"""Reconciliation engine scenarios over an in-memory gateway and a real store."""

from __future__ import annotations

import pytest

from app.errors import AuthFailure, ServerError
from app.models import BookmarkRecord, CatalogCandidate, NotInterestedRecord, Suggestion, WatchStatus, WatchedRecord
from app.services.reconciliation import (
    OutcomeStatus,
    ReconciliationEngine,
    search_titles,
    select_candidate,
)

from conftest import build_settings


class StaticRecommender:
    def __init__(self, lines: list[str]):
        self.lines = lines
        self.payloads = []

    async def generate_suggestions(self, payload):
        self.payloads.append(payload)
        return list(self.lines)


def _engine(gateway, store, fake_clock, recommender=None) -> ReconciliationEngine:
    return ReconciliationEngine(
        build_settings(), gateway, store, recommender, sleep=fake_clock.sleep
    )


def _statuses(report) -> list[str]:
    return [outcome.status.value for outcome in report.outcomes]


@pytest.mark.anyio
async def test_watched_dual_language_title_is_filtered_before_search(
    gateway, library_store, fake_clock
) -> None:
    await library_store.upsert_watched(
        WatchedRecord(remote_id=1, title="Во все тяжкие / Breaking Bad", kind="series", fully_watched=True)
    )
    gateway.add_catalog(1, "Во все тяжкие / Breaking Bad", imdb_rating=9.5)

    report = await _engine(gateway, library_store, fake_clock).reconcile(["Breaking Bad (2008)"])

    assert _statuses(report) == ["excluded"]
    assert gateway.searches == []
    assert gateway.added == []
    assert [e.status for e in await library_store.list_recommendations()] == ["rejected"]


@pytest.mark.anyio
async def test_animation_is_rejected_regardless_of_rating(gateway, library_store, fake_clock) -> None:
    gateway.add_catalog(2, "Arcane", year=2021, genre_ids=[25, 4], imdb_rating=9.0)

    report = await _engine(gateway, library_store, fake_clock).reconcile(
        ["Arcane (2021)"], kind="series"
    )

    assert _statuses(report) == ["rejected"]
    assert report.outcomes[0].reason == "animation"
    assert gateway.added == []


@pytest.mark.anyio
async def test_rating_floor_depends_on_kind(gateway, library_store, fake_clock) -> None:
    gateway.add_catalog(3, "Weak Movie", kind="movie", year=2019, imdb_rating=5.8)
    gateway.add_catalog(4, "Solid Show", year=2020, imdb_rating=7.2)

    report = await _engine(gateway, library_store, fake_clock).reconcile(
        ["Weak Movie (2019)", "Solid Show (2020)"]
    )

    assert _statuses(report) == ["rejected", "added"]
    assert report.outcomes[0].reason == "rating 5.8 below 6"
    assert report.outcomes[1].folder == "tv-shows-ai"
    assert [item.remote_id for item in gateway.items_in("tv-shows-ai")] == [4]
    assert gateway.created == ["tv-shows-ai"]
    bookmarks = await library_store.list_bookmarks()
    assert [(b.remote_id, b.folder_name) for b in bookmarks] == [(4, "tv-shows-ai")]
    assert [e.status for e in await library_store.list_recommendations("bookmarked")] == ["bookmarked"]


@pytest.mark.anyio
async def test_two_suggestions_resolving_to_one_title_add_once(
    gateway, library_store, fake_clock
) -> None:
    sherlock = gateway.add_catalog(5, "Sherlock", year=2010, imdb_rating=9.1)
    gateway.aliases["BBC Detective Show"] = [sherlock]

    report = await _engine(gateway, library_store, fake_clock).reconcile(
        ["Sherlock (2010)", "BBC Detective Show (2010)"], kind="series"
    )

    assert _statuses(report) == ["added", "duplicate"]
    assert report.outcomes[1].remote_id == 5
    assert len(gateway.added) == 1


@pytest.mark.anyio
async def test_remote_folder_contents_count_as_duplicates(gateway, library_store, fake_clock) -> None:
    shogun = gateway.add_catalog(6, "Shogun", year=2024, imdb_rating=8.7)
    gateway.add_folder("tv-shows-ai", [shogun])

    report = await _engine(gateway, library_store, fake_clock).reconcile(
        ["Shogun (2024)"], kind="series"
    )

    assert _statuses(report) == ["duplicate"]
    assert report.outcomes[0].reason == "already in tv-shows-ai"
    assert gateway.added == []
    assert gateway.created == []


@pytest.mark.anyio
async def test_subscribed_title_is_tracked_as_watched(gateway, library_store, fake_clock) -> None:
    gateway.add_catalog(7, "Slow Horses", year=2022, imdb_rating=8.2, subscribed=True)

    report = await _engine(gateway, library_store, fake_clock).reconcile(
        ["Slow Horses (2022)"], kind="series"
    )

    assert _statuses(report) == ["already_watched"]
    assert report.outcomes[0].reason == "subscribed"
    watched = await library_store.get_watched(7)
    assert watched is not None and watched.fully_watched is False
    assert gateway.added == []


@pytest.mark.anyio
async def test_subscription_wins_over_watch_progress(gateway, library_store, fake_clock) -> None:
    gateway.add_catalog(9, "Severance", year=2022, imdb_rating=8.7, subscribed=True)
    gateway.watch_status[9] = WatchStatus(
        is_watched=True, is_fully_watched=False, completed_units=4, total_units=19
    )

    report = await _engine(gateway, library_store, fake_clock).reconcile(
        ["Severance (2022)"], kind="series"
    )

    assert _statuses(report) == ["already_watched"]
    assert report.outcomes[0].reason == "subscribed"
    watched = await library_store.get_watched(9)
    assert watched.fully_watched is False
    assert (watched.completed_units, watched.total_units) == (None, None)
    assert gateway.status_checks == []


@pytest.mark.anyio
async def test_other_kind_fallback_checks_its_own_folder(gateway, library_store, fake_clock) -> None:
    heat = gateway.add_catalog(10, "Heat", kind="movie", year=1995, imdb_rating=8.3)
    gateway.add_folder("movies-ai", [heat])

    async def movie_only(query: str, kind: str | None = None) -> list:
        gateway.searches.append((query, kind))
        return [heat]

    gateway.search = movie_only

    report = await _engine(gateway, library_store, fake_clock).reconcile(
        ["Heat (1995)"], kind="series"
    )

    assert _statuses(report) == ["duplicate"]
    assert report.outcomes[0].reason == "already in movies-ai"
    assert gateway.added == []


@pytest.mark.anyio
async def test_started_title_records_progress(gateway, library_store, fake_clock) -> None:
    gateway.add_catalog(8, "The Bear", year=2022, imdb_rating=8.5)
    gateway.watch_status[8] = WatchStatus(
        is_watched=True, is_fully_watched=False, completed_units=3, total_units=10
    )

    report = await _engine(gateway, library_store, fake_clock).reconcile(
        ["The Bear (2022)"], kind="series"
    )

    assert _statuses(report) == ["already_watched"]
    watched = await library_store.get_watched(8)
    assert (watched.completed_units, watched.total_units) == (3, 10)


@pytest.mark.anyio
async def test_unknown_and_invalid_lines_do_not_abort_batch(gateway, library_store, fake_clock) -> None:
    gateway.add_catalog(9, "Mr Robot", year=2015, imdb_rating=8.5)

    report = await _engine(gateway, library_store, fake_clock).reconcile(
        ["Nonexistent Show (2001)", "(1999)", "Mr Robot (2015)"], kind="series"
    )

    assert _statuses(report) == ["not_found", "invalid", "added"]
    pending = await library_store.list_recommendations("pending")
    assert [entry.title for entry in pending] == ["Nonexistent Show"]


@pytest.mark.anyio
async def test_search_failure_is_isolated_but_auth_failure_aborts(
    gateway, library_store, fake_clock
) -> None:
    gateway.search_errors["Flaky"] = ServerError("down", status_code=503)
    gateway.add_catalog(10, "Andor", year=2022, imdb_rating=8.4)

    report = await _engine(gateway, library_store, fake_clock).reconcile(
        ["Flaky (2020)", "Andor (2022)"], kind="series"
    )
    assert _statuses(report) == ["not_found", "added"]

    gateway.search_errors["Locked"] = AuthFailure("expired", error_code="UNAUTHORIZED")
    with pytest.raises(AuthFailure):
        await _engine(gateway, library_store, fake_clock).reconcile(["Locked (2020)"], kind="series")


@pytest.mark.anyio
async def test_rerunning_a_batch_adds_nothing(gateway, library_store, fake_clock) -> None:
    gateway.add_catalog(11, "Succession", year=2018, imdb_rating=8.8)
    engine = _engine(gateway, library_store, fake_clock)

    first = await engine.reconcile(["Succession (2018)"], kind="series")
    second = await engine.reconcile(["Succession (2018)"], kind="series")

    assert _statuses(first) == ["added"]
    assert _statuses(second) == ["excluded"]
    assert [item.remote_id for item in gateway.items_in("tv-shows-ai")] == [11]


@pytest.mark.anyio
async def test_batch_starts_with_cleanup(gateway, library_store, fake_clock) -> None:
    stale = gateway.add_catalog(12, "Ozark", year=2017)
    gateway.add_folder("tv-shows-ai", [stale])
    await library_store.upsert_not_interested(
        NotInterestedRecord(remote_id=12, title="Ozark", kind="series")
    )

    report = await _engine(gateway, library_store, fake_clock).reconcile([], kind="series")

    assert report.cleanup is not None and report.cleanup.removed_count == 1
    assert gateway.items_in("tv-shows-ai") == []


@pytest.mark.anyio
async def test_run_builds_preferences_for_the_recommender(gateway, library_store, fake_clock) -> None:
    await library_store.upsert_watched(
        WatchedRecord(remote_id=20, title="The Wire", kind="series", fully_watched=True, rating=10)
    )
    await library_store.upsert_bookmark(
        BookmarkRecord(remote_id=21, title="Deadwood", kind="series", year=2004, folder_id=1, folder_name="Later")
    )
    gateway.add_catalog(22, "Treme", year=2010, imdb_rating=8.0)
    recommender = StaticRecommender(["Treme (2010)"])

    report = await _engine(gateway, library_store, fake_clock, recommender).run("series")

    payload = recommender.payloads[0]
    assert [item.title for item in payload.loved] == ["The Wire"]
    assert payload.bookmarked_titles == ["Deadwood (2004)"]
    assert payload.kind == "series"
    assert _statuses(report) == ["added"]


@pytest.mark.anyio
async def test_run_without_history_skips_the_recommender(gateway, library_store, fake_clock) -> None:
    recommender = StaticRecommender(["Anything (2020)"])

    report = await _engine(gateway, library_store, fake_clock, recommender).run()

    assert report.outcomes == []
    assert recommender.payloads == []


def test_search_titles_try_prefix_before_colon() -> None:
    assert search_titles("Fargo: Year Five") == ["Fargo: Year Five", "Fargo"]
    assert search_titles("Dark") == ["Dark"]


def test_select_candidate_prefers_title_and_year() -> None:
    results = [
        CatalogCandidate(remote_id=1, title="Dune", kind="movie", year=1984),
        CatalogCandidate(remote_id=2, title="Dune", kind="movie", year=2021),
        CatalogCandidate(remote_id=3, title="Dune", kind="series", year=2021),
    ]

    chosen = select_candidate(results, Suggestion(title="Dune", year=2021), "movie")

    assert chosen is not None and chosen.remote_id == 2
    assert select_candidate([], Suggestion(title="Dune"), None) is None
