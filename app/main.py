"""Entry point for the FastAPI-powered KinoPicks service."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, TypeVar

import httpx
from fastapi import FastAPI, HTTPException

from .config import Settings, settings
from .database import Database
from .errors import AuthFailure, InputValidationError, KinoPubError
from .models import (
    CleanupRequest,
    ContentKind,
    DeviceAuthorization,
    FolderCleanRequest,
    NotInterestedRequest,
    RatingRequest,
    RecommendationRequest,
    ScanBookmarksRequest,
)
from .services.auth import TokenLifecycle
from .services.catalog_gateway import KinoPubGateway
from .services.cleanup import FolderSyncCleanup
from .services.exclusions import ExclusionSetBuilder
from .services.kinopub import KinoPubClient
from .services.openrouter import OpenRouterClient
from .services.reconciliation import ReconciliationEngine
from .services.scanner import LibraryScanner, NotInterestedManager, rate_watched
from .services.storage import LibraryStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

T = TypeVar("T")

app: FastAPI


@dataclass(slots=True)
class ServiceContainer:
    """Everything the routes need, wired once per application lifetime."""

    settings: Settings
    database: Database
    auth: TokenLifecycle
    gateway: KinoPubGateway
    store: LibraryStore
    engine: ReconciliationEngine
    cleanup: FolderSyncCleanup
    scanner: LibraryScanner
    not_interested: NotInterestedManager


def build_services(
    config: Settings,
    *,
    database: Database,
    oauth_http: httpx.AsyncClient,
    api_http: httpx.AsyncClient,
    openrouter_http: httpx.AsyncClient,
) -> ServiceContainer:
    auth = TokenLifecycle(config, oauth_http)
    gateway = KinoPubGateway(KinoPubClient(config, api_http, auth))
    store = LibraryStore(database.session_factory)
    exclusions = ExclusionSetBuilder(store)
    cleanup = FolderSyncCleanup(config, gateway, store, exclusions)
    engine = ReconciliationEngine(
        config,
        gateway,
        store,
        OpenRouterClient(config, openrouter_http),
        exclusions=exclusions,
        cleanup=cleanup,
    )
    return ServiceContainer(
        settings=config,
        database=database,
        auth=auth,
        gateway=gateway,
        store=store,
        engine=engine,
        cleanup=cleanup,
        scanner=LibraryScanner(gateway, store),
        not_interested=NotInterestedManager(gateway, store),
    )


async def poll_device_authorization(
    auth: TokenLifecycle, device: DeviceAuthorization
) -> bool:
    """Background half of the device flow; failures are logged, never raised."""

    try:
        await auth.wait_for_authorization(device)
    except AuthFailure as exc:
        logger.error("Device authorization failed: %s", exc)
        return False
    except OSError as exc:
        logger.error("Device authorized but tokens could not be saved: %s", exc)
        return False
    return True


def _cancel_device_task(fastapi_app: FastAPI) -> None:
    task = getattr(fastapi_app.state, "device_task", None)
    if task is not None and not task.done():
        task.cancel()


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    preset = getattr(fastapi_app.state, "services", None)
    if isinstance(preset, ServiceContainer):
        await preset.database.create_all()
        try:
            yield
        finally:
            _cancel_device_task(fastapi_app)
            await preset.database.dispose()
        return

    exit_stack = AsyncExitStack()
    oauth_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(settings.request_timeout_seconds))
    )
    api_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=settings.kinopub_api_url,
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=5.0),
        )
    )
    openrouter_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.openrouter_api_url),
            timeout=httpx.Timeout(60.0, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    fastapi_app.state.services = build_services(
        settings,
        database=database,
        oauth_http=oauth_http,
        api_http=api_http,
        openrouter_http=openrouter_http,
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        _cancel_device_task(fastapi_app)
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Keeps kino.pub recommendation folders in sync with viewing history",
        version="1.0.0",
        lifespan=lifespan,
    )
    fastapi_app.state.device_task = None
    register_routes(fastapi_app)
    return fastapi_app


def get_services(fastapi_app: FastAPI) -> ServiceContainer:
    services = getattr(fastapi_app.state, "services", None)
    if not isinstance(services, ServiceContainer):
        raise RuntimeError("Services not initialised")
    return services


async def _guard(awaitable: Awaitable[T]) -> T:
    """Await a service call, mapping domain errors onto HTTP errors."""

    try:
        return await awaitable
    except AuthFailure as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except InputValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except KinoPubError as exc:
        raise HTTPException(
            status_code=502,
            detail={"error": exc.error_code or "kinopub_error", "description": str(exc)},
        ) from exc


def _auth_status(services: ServiceContainer) -> dict[str, Any]:
    auth = services.auth
    return {
        "state": auth.state.value,
        "authenticated": auth.is_authenticated(),
        "access_expiry": auth.access_expiry,
        "token_file": str(auth.store.path),
    }


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/auth/status")
    async def auth_status() -> dict[str, Any]:
        return _auth_status(get_services(fastapi_app))

    @fastapi_app.post("/api/auth/device")
    async def start_device_flow() -> dict[str, Any]:
        services = get_services(fastapi_app)
        running = fastapi_app.state.device_task
        if running is not None and not running.done():
            raise HTTPException(status_code=409, detail="Device authorization already pending")
        device = await _guard(services.auth.start_device_authorization())
        fastapi_app.state.device_task = asyncio.create_task(
            poll_device_authorization(services.auth, device)
        )
        return {
            "user_code": device.user_code,
            "verification_uri": device.verification_uri,
            "interval": device.interval,
            "expires_in": device.expires_in,
        }

    @fastapi_app.post("/api/auth/refresh")
    async def refresh_auth() -> dict[str, Any]:
        services = get_services(fastapi_app)
        refreshed = await services.auth.refresh_session()
        return {"refreshed": refreshed, **_auth_status(services)}

    @fastapi_app.post("/api/scan/watched")
    async def scan_watched() -> dict[str, Any]:
        services = get_services(fastapi_app)
        report = await _guard(services.scanner.scan_watched())
        return report.as_dict()

    @fastapi_app.post("/api/scan/bookmarks")
    async def scan_bookmarks(payload: ScanBookmarksRequest | None = None) -> dict[str, Any]:
        services = get_services(fastapi_app)
        folder = payload.folder if payload else None
        report = await _guard(services.scanner.scan_bookmarks(folder))
        return report.as_dict()

    @fastapi_app.post("/api/recommendations")
    async def run_recommendations(
        payload: RecommendationRequest | None = None,
    ) -> dict[str, Any]:
        services = get_services(fastapi_app)
        request = payload or RecommendationRequest()
        if request.suggestions is not None:
            report = await _guard(
                services.engine.reconcile(request.suggestions, kind=request.kind)
            )
            return report.as_dict()
        try:
            report = await _guard(services.engine.run(request.kind))
        except HTTPException:
            raise
        except RuntimeError as exc:
            # The recommender reports configuration and upstream failures this way.
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return report.as_dict()

    @fastapi_app.post("/api/folders/cleanup")
    async def cleanup_folders(payload: CleanupRequest | None = None) -> dict[str, Any]:
        services = get_services(fastapi_app)
        kind: ContentKind | None = payload.kind if payload else None
        report = await _guard(services.cleanup.run(kind))
        return report.as_dict()

    @fastapi_app.post("/api/folders/clean")
    async def clean_folders(payload: FolderCleanRequest | None = None) -> dict[str, Any]:
        services = get_services(fastapi_app)
        names = payload.folders if payload else None
        report = await _guard(services.cleanup.clean_managed_folders(names))
        return report.as_dict()

    @fastapi_app.get("/api/not-interested")
    async def list_not_interested(kind: ContentKind | None = None) -> dict[str, Any]:
        services = get_services(fastapi_app)
        records = await services.not_interested.list_all(kind)
        return {"items": [record.model_dump() for record in records]}

    @fastapi_app.post("/api/not-interested")
    async def add_not_interested(payload: NotInterestedRequest) -> dict[str, Any]:
        services = get_services(fastapi_app)
        record, created = await _guard(
            services.not_interested.add(payload.query, payload.kind, payload.reason)
        )
        if record is None:
            raise HTTPException(status_code=404, detail=f"No match for {payload.query!r}")
        return {"item": record.model_dump(), "created": created}

    @fastapi_app.delete("/api/not-interested")
    async def remove_not_interested(title: str) -> dict[str, Any]:
        services = get_services(fastapi_app)
        result = await _guard(services.not_interested.remove(title))
        if result.status == "not_found":
            raise HTTPException(status_code=404, detail=f"No entry matches {title!r}")
        if result.status == "ambiguous":
            raise HTTPException(
                status_code=409,
                detail={
                    "error": "ambiguous",
                    "matches": [record.title for record in result.matches],
                },
            )
        removed = result.removed
        return {"removed": removed.model_dump() if removed else None}

    @fastapi_app.post("/api/not-interested/sync")
    async def sync_not_interested() -> dict[str, int]:
        services = get_services(fastapi_app)
        return {"synced": await services.not_interested.sync()}

    @fastapi_app.put("/api/watched/{remote_id}/rating")
    async def rate_item(remote_id: int, payload: RatingRequest) -> dict[str, Any]:
        services = get_services(fastapi_app)
        record = await _guard(
            rate_watched(services.store, remote_id, payload.rating, payload.notes)
        )
        if record is None:
            raise HTTPException(status_code=404, detail="Watched item not found")
        return {"item": record.model_dump(mode="json")}


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
