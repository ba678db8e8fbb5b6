"""Turn free-text suggestions into idempotent managed-folder mutations."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol, Sequence

from ..config import Settings
from ..errors import AuthFailure, InputValidationError, KinoPubError
from ..managed_folders import folder_for_kind, folders_for_kind
from ..matching import titles_equivalent
from ..models import (
    BookmarkFolder,
    BookmarkRecord,
    CatalogCandidate,
    ContentKind,
    ExclusionRecord,
    PreferenceItem,
    PreferencePayload,
    Suggestion,
    WatchedRecord,
)
from ..utils import parse_suggestion
from .catalog_gateway import KinoPubGateway
from .cleanup import CleanupReport, FolderSyncCleanup
from .exclusions import ExclusionSet, ExclusionSetBuilder
from .storage import LibraryStore

logger = logging.getLogger(__name__)

PROGRESS_FALLBACK_THRESHOLD = 0.5


class Recommender(Protocol):
    async def generate_suggestions(self, payload: PreferencePayload) -> list[str]:
        ...


class OutcomeStatus(str, Enum):
    ADDED = "added"
    DUPLICATE = "duplicate"
    EXCLUDED = "excluded"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"
    ALREADY_WATCHED = "already_watched"
    INVALID = "invalid"
    FAILED = "failed"


@dataclass(slots=True)
class SuggestionOutcome:
    suggestion: str
    status: OutcomeStatus
    reason: str | None = None
    remote_id: int | None = None
    remote_title: str | None = None
    folder: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "suggestion": self.suggestion,
            "status": self.status.value,
            "reason": self.reason,
            "remote_id": self.remote_id,
            "remote_title": self.remote_title,
            "folder": self.folder,
        }


@dataclass(slots=True)
class BatchReport:
    """Per-suggestion outcomes of one reconciliation batch."""

    kind: ContentKind | None = None
    outcomes: list[SuggestionOutcome] = field(default_factory=list)
    cleanup: CleanupReport | None = None

    def counts(self) -> dict[str, int]:
        tally = Counter(outcome.status for outcome in self.outcomes)
        return {status.value: tally.get(status, 0) for status in OutcomeStatus}

    @property
    def added(self) -> list[SuggestionOutcome]:
        return [o for o in self.outcomes if o.status is OutcomeStatus.ADDED]

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "counts": self.counts(),
            "outcomes": [outcome.as_dict() for outcome in self.outcomes],
            "cleanup": self.cleanup.as_dict() if self.cleanup else None,
        }


@dataclass(slots=True)
class BatchState:
    """Managed-folder contents as seen at batch start plus this batch's additions."""

    folders: dict[str, BookmarkFolder | None] = field(default_factory=dict)
    contents: dict[str, list[CatalogCandidate]] = field(default_factory=dict)
    added_ids: set[int] = field(default_factory=set)
    added_titles: list[str] = field(default_factory=list)

    def find_duplicate(self, candidate: CatalogCandidate) -> str | None:
        """Return the folder already holding ``candidate``, if any."""

        if candidate.remote_id in self.added_ids:
            return "this batch"
        for title in self.added_titles:
            if titles_equivalent(candidate.title, title):
                return "this batch"
        for name, items in self.contents.items():
            for item in items:
                if item.remote_id == candidate.remote_id:
                    return name
                if titles_equivalent(candidate.title, item.title):
                    return name
        return None

    def record_addition(self, folder_name: str, candidate: CatalogCandidate) -> None:
        self.added_ids.add(candidate.remote_id)
        self.added_titles.append(candidate.title)
        self.contents.setdefault(folder_name, []).append(candidate)


def search_titles(title: str) -> list[str]:
    """Title variants to search, the exact title first."""

    variants = [title.strip()]
    if ":" in title:
        head = title.split(":", 1)[0].strip()
        if head and head not in variants:
            variants.append(head)
    return variants


def search_kinds(kind: ContentKind | None) -> list[ContentKind]:
    return [kind] if kind else ["series", "movie"]


def select_candidate(
    results: Sequence[CatalogCandidate],
    suggestion: Suggestion,
    kind: ContentKind | None,
) -> CatalogCandidate | None:
    """Pick the best search hit: requested kind first, then title and year."""

    if not results:
        return None
    pool = [c for c in results if c.kind == kind] if kind else list(results)
    if not pool:
        pool = list(results)
    titled = [c for c in pool if titles_equivalent(c.title, suggestion.title)]
    if suggestion.year is not None:
        for candidate in titled:
            if candidate.year == suggestion.year:
                return candidate
    if titled:
        return titled[0]
    return pool[0]


class ReconciliationEngine:
    """Runs a reconciliation batch from raw suggestions to folder mutations."""

    def __init__(
        self,
        settings: Settings,
        gateway: KinoPubGateway,
        store: LibraryStore,
        recommender: Recommender | None = None,
        *,
        exclusions: ExclusionSetBuilder | None = None,
        cleanup: FolderSyncCleanup | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        self._settings = settings
        self._gateway = gateway
        self._store = store
        self._recommender = recommender
        self._sleep = sleep or asyncio.sleep
        self._exclusions = exclusions or ExclusionSetBuilder(store)
        self._cleanup = cleanup or FolderSyncCleanup(
            settings, gateway, store, self._exclusions, sleep=self._sleep
        )

    async def build_preferences(self, kind: ContentKind | None = None) -> PreferencePayload:
        """Collect the recommender input from the local store."""

        watched = await self._store.list_watched_for_recommendation()
        all_watched = await self._store.list_watched()
        if not watched:
            watched = [
                record
                for record in all_watched
                if record.kind == "movie"
                or (record.progress() or 0) > PROGRESS_FALLBACK_THRESHOLD
            ]
            if watched:
                logger.info(
                    "No fully watched titles; using %s item(s) with significant progress",
                    len(watched),
                )
        used = {record.remote_id for record in watched}
        partial = [r for r in all_watched if r.remote_id not in used and not r.fully_watched]

        def to_item(record: WatchedRecord) -> PreferenceItem:
            return PreferenceItem(
                title=record.title,
                kind=record.kind,
                year=record.year,
                rating=record.rating,
                notes=record.notes,
                completed_units=record.completed_units,
                total_units=record.total_units,
            )

        bookmarks = await self._store.list_bookmarks()
        rejected = await self._store.list_not_interested()
        return PreferencePayload.from_items(
            [to_item(record) for record in watched],
            partially_watched=[to_item(record) for record in partial],
            bookmarked_titles=list(
                dict.fromkeys(
                    f"{b.title} ({b.year})" if b.year else b.title for b in bookmarks
                )
            ),
            not_interested_titles=[r.title for r in rejected],
            kind=kind,
            limit=self._settings.max_suggestions,
        )

    async def run(self, kind: ContentKind | None = None) -> BatchReport:
        """Ask the recommender for suggestions and reconcile them."""

        if self._recommender is None:
            raise RuntimeError("No recommender configured")
        payload = await self.build_preferences(kind)
        if payload.is_empty():
            logger.info("No watch history to base suggestions on; nothing to do")
            return BatchReport(kind=kind)
        raw = await self._recommender.generate_suggestions(payload)
        logger.info("Recommender returned %s suggestion(s)", len(raw))
        return await self.reconcile(raw, kind=kind, reasoning=self._reasoning(payload))

    @staticmethod
    def _reasoning(payload: PreferencePayload) -> str:
        rated = len(payload.loved) + len(payload.liked) + len(payload.disliked)
        return f"Generated based on {rated} rated item(s)"

    async def prepare_batch(self, kind: ContentKind | None = None) -> BatchState:
        """Read the live contents of the managed folders for this batch."""

        state = BatchState()
        for definition in folders_for_kind(kind):
            await self._load_folder(definition.name, state)
        return state

    async def _load_folder(self, name: str, state: BatchState) -> None:
        """Read a managed folder's live contents once per batch."""

        if name in state.contents:
            return
        folder = await self._gateway.find_folder_by_name(name)
        state.folders[name] = folder
        state.contents[name] = (
            await self._gateway.get_all_folder_items(folder.id) if folder else []
        )

    async def reconcile(
        self,
        raw_suggestions: Sequence[str],
        *,
        kind: ContentKind | None = None,
        reasoning: str | None = None,
        state: BatchState | None = None,
    ) -> BatchReport:
        """Process suggestions strictly in order; per-item failures never abort."""

        report = BatchReport(kind=kind)
        report.cleanup = await self._cleanup.run(kind)
        exclusions = await self._exclusions.build()
        if state is None:
            state = await self.prepare_batch(kind)

        for raw in raw_suggestions:
            outcome = await self._process(raw, kind, exclusions, state, reasoning)
            report.outcomes.append(outcome)

        counts = report.counts()
        logger.info(
            "Batch finished: %s added, %s duplicate, %s excluded, %s rejected, "
            "%s already watched, %s not found, %s failed",
            counts["added"],
            counts["duplicate"],
            counts["excluded"],
            counts["rejected"],
            counts["already_watched"],
            counts["not_found"],
            counts["failed"],
        )
        return report

    async def _process(
        self,
        raw: str,
        kind: ContentKind | None,
        exclusions: ExclusionSet,
        state: BatchState,
        reasoning: str | None,
    ) -> SuggestionOutcome:
        try:
            suggestion = parse_suggestion(raw)
        except InputValidationError as exc:
            logger.warning("%s", exc)
            return SuggestionOutcome(raw, OutcomeStatus.INVALID, reason=str(exc))

        recommendation = await self._store.add_recommendation(
            suggestion.title, kind=kind, year=suggestion.year, reasoning=reasoning
        )

        async def finish(outcome: SuggestionOutcome) -> SuggestionOutcome:
            status = "bookmarked" if outcome.status is OutcomeStatus.ADDED else "rejected"
            if outcome.status in (OutcomeStatus.NOT_FOUND, OutcomeStatus.FAILED):
                return outcome
            await self._store.update_recommendation_status(
                recommendation.id, status, outcome.remote_id
            )
            return outcome

        excluded = exclusions.match_title(suggestion.title)
        if excluded is not None:
            logger.info(
                "Filtered out %r (matches %s %r)", raw, excluded.source, excluded.title
            )
            return await finish(
                SuggestionOutcome(
                    raw,
                    OutcomeStatus.EXCLUDED,
                    reason=f"matches {excluded.source}: {excluded.title}",
                    remote_id=excluded.remote_id,
                )
            )

        try:
            return await finish(await self._resolve(raw, suggestion, kind, exclusions, state))
        except AuthFailure:
            raise
        except KinoPubError as exc:
            logger.warning("Failed to process %r: %s", raw, exc)
            return SuggestionOutcome(raw, OutcomeStatus.FAILED, reason=str(exc))

    async def _search(
        self, suggestion: Suggestion, kind: ContentKind | None
    ) -> list[CatalogCandidate]:
        first = True
        for title in search_titles(suggestion.title):
            for search_kind in search_kinds(kind):
                if not first:
                    await self._sleep(self._settings.search_delay_seconds)
                first = False
                try:
                    results = await self._gateway.search(title, search_kind)
                except AuthFailure:
                    raise
                except KinoPubError as exc:
                    logger.warning(
                        "Search failed for %r as %s: %s", title, search_kind, exc
                    )
                    continue
                if results:
                    return results
        return []

    def _reject_reason(self, candidate: CatalogCandidate) -> str | None:
        if self._settings.animation_genre_id in candidate.genre_ids:
            return "animation"
        floor = self._settings.rating_floor(candidate.kind)
        if candidate.imdb_rating is not None and candidate.imdb_rating < floor:
            return f"rating {candidate.imdb_rating:g} below {floor:g}"
        return None

    async def _resolve(
        self,
        raw: str,
        suggestion: Suggestion,
        kind: ContentKind | None,
        exclusions: ExclusionSet,
        state: BatchState,
    ) -> SuggestionOutcome:
        results = await self._search(suggestion, kind)
        candidate = select_candidate(results, suggestion, kind)
        if candidate is None:
            logger.info("Could not find %r on kino.pub", suggestion.title)
            return SuggestionOutcome(raw, OutcomeStatus.NOT_FOUND)

        found = {"remote_id": candidate.remote_id, "remote_title": candidate.title}

        reason = self._reject_reason(candidate)
        if reason is not None:
            logger.info("Rejected %r: %s", candidate.title, reason)
            return SuggestionOutcome(raw, OutcomeStatus.REJECTED, reason=reason, **found)

        known = exclusions.match(title=candidate.title, remote_id=candidate.remote_id)
        if known is not None:
            return SuggestionOutcome(
                raw,
                OutcomeStatus.DUPLICATE,
                reason=f"already in {known.source}: {known.title}",
                **found,
            )
        # A fallback hit of the other kind lands in a folder not read at batch start.
        await self._load_folder(folder_for_kind(candidate.kind).name, state)
        holder = state.find_duplicate(candidate)
        if holder is not None:
            return SuggestionOutcome(
                raw, OutcomeStatus.DUPLICATE, reason=f"already in {holder}", **found
            )

        if candidate.subscribed:
            await self._remember_watched(candidate, exclusions, fully_watched=False)
            logger.info("Already subscribed to %r, tracking as watched", candidate.title)
            return SuggestionOutcome(
                raw, OutcomeStatus.ALREADY_WATCHED, reason="subscribed", **found
            )

        try:
            status = await self._gateway.get_watch_status(candidate.remote_id)
        except AuthFailure:
            raise
        except KinoPubError as exc:
            logger.warning(
                "Watch status unavailable for %r, assuming unwatched: %s",
                candidate.title,
                exc,
            )
            status = None
        if status is not None and status.is_watched:
            await self._remember_watched(
                candidate,
                exclusions,
                fully_watched=status.is_fully_watched,
                completed_units=status.completed_units,
                total_units=status.total_units,
            )
            logger.info(
                "%r already watched (%s/%s), tracking locally",
                candidate.title,
                status.completed_units,
                status.total_units,
            )
            return SuggestionOutcome(
                raw,
                OutcomeStatus.ALREADY_WATCHED,
                reason=f"progress {status.completed_units}/{status.total_units}",
                **found,
            )

        definition = folder_for_kind(candidate.kind)
        folder = await self._ensure_folder(definition.name, state)
        await self._gateway.add_item(folder.id, candidate.remote_id)
        state.record_addition(definition.name, candidate)
        await self._store.upsert_bookmark(
            BookmarkRecord(
                remote_id=candidate.remote_id,
                title=candidate.title,
                kind=candidate.kind,
                year=candidate.year,
                folder_id=folder.id,
                folder_name=folder.title,
            )
        )
        exclusions.add(
            ExclusionRecord(
                remote_id=candidate.remote_id,
                title=candidate.title,
                year=candidate.year,
                kind=candidate.kind,
                source="bookmark",
            )
        )
        logger.info("Added %r to %s", candidate.title, definition.name)
        await self._sleep(self._settings.mutation_delay_seconds)
        return SuggestionOutcome(
            raw, OutcomeStatus.ADDED, folder=definition.name, **found
        )

    async def _ensure_folder(self, name: str, state: BatchState) -> BookmarkFolder:
        folder = state.folders.get(name)
        if folder is None:
            folder = await self._gateway.find_or_create_folder(name)
            state.folders[name] = folder
            state.contents.setdefault(name, [])
        return folder

    async def _remember_watched(
        self,
        candidate: CatalogCandidate,
        exclusions: ExclusionSet,
        *,
        fully_watched: bool,
        completed_units: int | None = None,
        total_units: int | None = None,
    ) -> None:
        await self._store.upsert_watched(
            WatchedRecord(
                remote_id=candidate.remote_id,
                title=candidate.title,
                kind=candidate.kind,
                year=candidate.year,
                completed_units=completed_units,
                total_units=total_units,
                fully_watched=fully_watched,
            )
        )
        exclusions.add(
            ExclusionRecord(
                remote_id=candidate.remote_id,
                title=candidate.title,
                year=candidate.year,
                kind=candidate.kind,
                source="watched",
            )
        )
