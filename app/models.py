"""Pydantic models describing kino.pub payloads and engine values."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .matching import normalize_title

ContentKind = Literal["movie", "series"]

MOVIE_TYPES = frozenset({"movie", "documovie", "3d"})
SERIES_TYPES = frozenset({"serial", "docuserial", "tvshow"})


def kind_from_remote_type(item_type: str | None, subtype: str | None = None) -> ContentKind:
    """Map a kino.pub ``type``/``subtype`` pair onto the engine's two kinds."""

    if subtype == "movie" or (item_type or "").lower() in MOVIE_TYPES:
        return "movie"
    return "series"


def remote_type_for_kind(kind: str | None) -> str:
    """Return the ``type`` query value the search endpoint expects."""

    return "movie" if kind == "movie" else "serial"


def _coerce_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _coerce_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


class StoredTokens(BaseModel):
    """Token pair persisted to the token file.

    ``access_expiry`` is an absolute instant in epoch milliseconds.
    """

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    refresh_token: str = Field(alias="refreshToken")
    access_expiry: int = Field(alias="accessTokenExpire")

    def to_file_payload(self) -> dict[str, object]:
        return self.model_dump(by_alias=True)


class DeviceAuthorization(BaseModel):
    """Response of the device-code request."""

    code: str
    user_code: str
    verification_uri: str
    interval: float = 5
    expires_in: int | None = None


class TokenResponse(BaseModel):
    """Successful answer from the token endpoint."""

    access_token: str
    refresh_token: str
    expires_in: int


class CatalogCandidate(BaseModel):
    """A search hit or folder entry returned by kino.pub."""

    remote_id: int
    title: str
    kind: ContentKind
    type: str | None = None
    subtype: str | None = None
    year: int | None = None
    genre_ids: list[int] = Field(default_factory=list)
    imdb_rating: float | None = None
    subscribed: bool | None = None

    @classmethod
    def from_payload(cls, data: Any) -> "CatalogCandidate | None":
        """Build a candidate from a loosely shaped remote item, or return None."""

        if not isinstance(data, dict):
            return None
        remote_id = _coerce_int(data.get("id"))
        title = data.get("title")
        if remote_id is None or not isinstance(title, str) or not title.strip():
            return None

        item_type = data.get("type") if isinstance(data.get("type"), str) else None
        subtype = data.get("subtype") if isinstance(data.get("subtype"), str) else None

        genre_ids: list[int] = []
        for genre in data.get("genres") or []:
            if isinstance(genre, dict):
                genre_id = _coerce_int(genre.get("id"))
            else:
                genre_id = _coerce_int(genre)
            if genre_id is not None:
                genre_ids.append(genre_id)

        rating = None
        nested = data.get("rating")
        if isinstance(nested, dict):
            rating = _coerce_float(nested.get("imdb"))
        if rating is None:
            rating = _coerce_float(data.get("imdb_rating"))

        subscribed = data.get("subscribed")
        return cls(
            remote_id=remote_id,
            title=title.strip(),
            kind=kind_from_remote_type(item_type, subtype),
            type=item_type,
            subtype=subtype,
            year=_coerce_int(data.get("year")),
            genre_ids=genre_ids,
            imdb_rating=rating,
            subscribed=subscribed if isinstance(subscribed, bool) else None,
        )


class BookmarkFolder(BaseModel):
    """A remote bookmark folder descriptor."""

    id: int
    title: str
    count: int | None = None

    @classmethod
    def from_payload(cls, data: Any) -> "BookmarkFolder | None":
        if not isinstance(data, dict):
            return None
        folder_id = _coerce_int(data.get("id"))
        title = data.get("title")
        if folder_id is None or not isinstance(title, str):
            return None
        return cls(id=folder_id, title=title, count=_coerce_int(data.get("count")))


class Pagination(BaseModel):
    current: int = 1
    total: int = 1


class FolderPage(BaseModel):
    """One page of a folder's contents."""

    folder: BookmarkFolder | None = None
    items: list[CatalogCandidate] = Field(default_factory=list)
    pagination: Pagination | None = None


class WatchStatus(BaseModel):
    """Aggregated per-unit watch progress of a single item."""

    is_watched: bool = False
    is_fully_watched: bool = False
    completed_units: int = 0
    total_units: int = 0


class Suggestion(BaseModel):
    """A parsed ``"Title (Year)"`` line produced by the recommender."""

    title: str
    year: int | None = None
    raw: str = ""

    def display(self) -> str:
        return f"{self.title} ({self.year})" if self.year else self.title


class ExclusionRecord(BaseModel):
    """A title the engine must never (re-)suggest during one pass."""

    remote_id: int | None = None
    title: str
    year: int | None = None
    kind: ContentKind = "series"
    normalized_title: str = ""
    source: Literal["watched", "bookmark", "not_interested"] = "watched"

    def model_post_init(self, __context: Any) -> None:
        if not self.normalized_title:
            self.normalized_title = normalize_title(self.title)


class WatchedRecord(BaseModel):
    """Local view of a started or finished title."""

    model_config = ConfigDict(from_attributes=True)

    remote_id: int
    title: str
    kind: ContentKind
    year: int | None = None
    total_units: int | None = None
    completed_units: int | None = None
    fully_watched: bool = False
    rating: int | None = None
    notes: str | None = None
    updated_at: datetime | None = None

    def progress(self) -> float | None:
        if self.total_units and self.completed_units is not None:
            return self.completed_units / self.total_units
        return None


class BookmarkRecord(BaseModel):
    """Local view of a title sitting in a remote folder."""

    model_config = ConfigDict(from_attributes=True)

    remote_id: int
    title: str
    kind: ContentKind
    year: int | None = None
    folder_id: int
    folder_name: str


class NotInterestedRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    remote_id: int
    title: str
    kind: ContentKind
    year: int | None = None
    reason: str | None = None


RecommendationStatus = Literal["pending", "bookmarked", "rejected"]


class RecommendationEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    kind: ContentKind | None = None
    year: int | None = None
    source: str = "ai"
    reasoning: str | None = None
    remote_id: int | None = None
    status: RecommendationStatus = "pending"


class PreferenceItem(BaseModel):
    """A watched title as presented to the recommender."""

    title: str
    kind: ContentKind
    year: int | None = None
    rating: int | None = None
    notes: str | None = None
    completed_units: int | None = None
    total_units: int | None = None


class PreferencePayload(BaseModel):
    """Structured input for the recommender."""

    loved: list[PreferenceItem] = Field(default_factory=list)
    liked: list[PreferenceItem] = Field(default_factory=list)
    disliked: list[PreferenceItem] = Field(default_factory=list)
    unrated: list[PreferenceItem] = Field(default_factory=list)
    partially_watched: list[PreferenceItem] = Field(default_factory=list)
    bookmarked_titles: list[str] = Field(default_factory=list)
    not_interested_titles: list[str] = Field(default_factory=list)
    kind: ContentKind | None = None
    limit: int = 12

    @classmethod
    def from_items(
        cls,
        watched: list[PreferenceItem],
        *,
        partially_watched: list[PreferenceItem] | None = None,
        bookmarked_titles: list[str] | None = None,
        not_interested_titles: list[str] | None = None,
        kind: ContentKind | None = None,
        limit: int = 12,
    ) -> "PreferencePayload":
        """Bucket watched items by the user's rating."""

        payload = cls(
            partially_watched=list(partially_watched or []),
            bookmarked_titles=list(bookmarked_titles or []),
            not_interested_titles=list(not_interested_titles or []),
            kind=kind,
            limit=limit,
        )
        for item in watched:
            if item.rating is None:
                payload.unrated.append(item)
            elif item.rating >= 8:
                payload.loved.append(item)
            elif item.rating >= 6:
                payload.liked.append(item)
            else:
                payload.disliked.append(item)
        return payload

    def is_empty(self) -> bool:
        return not (self.loved or self.liked or self.disliked or self.unrated)


class FolderCleanRequest(BaseModel):
    """Body of the bulk-clean endpoint; omitted folders means every managed folder."""

    folders: list[str] | None = Field(
        default=None, validation_alias=AliasChoices("folders", "names")
    )


class CleanupRequest(BaseModel):
    kind: ContentKind | None = None


class RecommendationRequest(BaseModel):
    """Run a batch; explicit ``suggestions`` bypass the recommender."""

    kind: ContentKind | None = None
    suggestions: list[str] | None = None


class ScanBookmarksRequest(BaseModel):
    folder: str | None = None


class NotInterestedRequest(BaseModel):
    query: str = Field(min_length=1)
    kind: ContentKind | None = None
    reason: str | None = None


class RatingRequest(BaseModel):
    rating: int
    notes: str | None = None
