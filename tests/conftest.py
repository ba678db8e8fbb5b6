"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.config import Settings  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base: dict[str, Any] = {
        "KINOPUB_API_URL": "https://kinopub.test/v1",
        "KINOPUB_OAUTH_URL": "https://kinopub.test/oauth2/device",
        "KINOPUB_CLIENT_SECRET": "secret",
        "OPENROUTER_API_KEY": "sk-test",
        "REQUEST_RETRY_DELAY": 2.0,
        "SEARCH_DELAY": 0,
        "MUTATION_DELAY": 0,
        "CLEANUP_DELAY": 0,
    }
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


class FakeClock:
    """Millisecond clock advanced by the fake sleeper."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now_ms = start_ms
        self.sleeps: list[float] = []

    def __call__(self) -> int:
        return self.now_ms

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now_ms += int(seconds * 1000)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def database(tmp_path):
    """A fresh SQLite database file with every table created."""

    from app.database import Database

    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'kinopicks.db'}")
    await db.create_all()
    try:
        yield db
    finally:
        await db.dispose()


@pytest.fixture
def library_store(database):
    from app.services.storage import LibraryStore

    return LibraryStore(database.session_factory)


class FakeGateway:
    """In-memory stand-in for ``KinoPubGateway`` with the same coroutine surface."""

    def __init__(self) -> None:
        from app.models import WatchStatus

        self._watch_status_type = WatchStatus
        self.folders: dict[int, Any] = {}
        self.folder_items: dict[int, list[Any]] = {}
        self.catalog: list[Any] = []
        self.aliases: dict[str, list[Any]] = {}
        self.watch_status: dict[int, Any] = {}
        self.search_errors: dict[str, Exception] = {}
        self.remove_errors: dict[int, Exception] = {}
        self.serials: list[Any] = []
        self.movies: list[Any] = []
        self.searches: list[tuple[str, str | None]] = []
        self.added: list[tuple[int, int]] = []
        self.removed: list[tuple[int, int | None]] = []
        self.created: list[str] = []
        self.status_checks: list[int] = []
        self._next_folder_id = 100

    def add_folder(self, title: str, items=()) -> Any:
        from app.models import BookmarkFolder

        folder = BookmarkFolder(id=self._next_folder_id, title=title)
        self._next_folder_id += 1
        self.folders[folder.id] = folder
        self.folder_items[folder.id] = list(items)
        return folder

    def add_catalog(self, remote_id: int, title: str, **fields: Any) -> Any:
        from app.models import CatalogCandidate

        fields.setdefault("kind", "series")
        candidate = CatalogCandidate(remote_id=remote_id, title=title, **fields)
        self.catalog.append(candidate)
        return candidate

    def items_in(self, name: str) -> list[Any]:
        for folder in self.folders.values():
            if folder.title == name:
                return list(self.folder_items[folder.id])
        return []

    async def list_folders(self) -> list[Any]:
        return list(self.folders.values())

    async def find_folder_by_name(self, name: str) -> Any:
        for folder in self.folders.values():
            if folder.title.lower() == name.strip().lower():
                return folder
        return None

    async def create_folder(self, name: str) -> Any:
        self.created.append(name)
        return self.add_folder(name)

    async def find_or_create_folder(self, name: str) -> Any:
        folder = await self.find_folder_by_name(name)
        return folder if folder is not None else await self.create_folder(name)

    async def get_all_folder_items(self, folder_id: int) -> list[Any]:
        return list(self.folder_items.get(folder_id, []))

    async def add_item(self, folder_id: int, item_id: int) -> None:
        self.added.append((folder_id, item_id))
        candidate = next(c for c in self.catalog if c.remote_id == item_id)
        self.folder_items.setdefault(folder_id, []).append(candidate)

    async def remove_item(self, item_id: int, folder_id: int | None = None) -> bool:
        self.removed.append((item_id, folder_id))
        if item_id in self.remove_errors:
            raise self.remove_errors[item_id]
        items = self.folder_items.get(folder_id, [])
        remaining = [item for item in items if item.remote_id != item_id]
        self.folder_items[folder_id] = remaining
        return len(remaining) != len(items)

    async def search(self, query: str, kind: str | None = None) -> list[Any]:
        from app.matching import titles_equivalent

        self.searches.append((query, kind))
        if query in self.search_errors:
            raise self.search_errors[query]
        wanted = kind or "series"
        if query in self.aliases:
            return [c for c in self.aliases[query] if c.kind == wanted]
        return [
            c for c in self.catalog if c.kind == wanted and titles_equivalent(query, c.title)
        ]

    async def get_watch_status(self, item_id: int) -> Any:
        self.status_checks.append(item_id)
        return self.watch_status.get(item_id, self._watch_status_type())

    async def list_watching_serials(self) -> list[Any]:
        return list(self.serials)

    async def list_watching_movies(self) -> list[Any]:
        return list(self.movies)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()
