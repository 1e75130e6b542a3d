"""CitySounds API."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import date

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import APIRouter, FastAPI, HTTPException, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.config import Settings, configure_logging
from api.database import init_db
from api.jobs import ScheduledJobManager
from api.notifications import ConcertBroadcaster
from api.repository import ConcertRepository
from api.security import AuditLogger, InMemoryRateLimiter, RateLimiter, SearchQuery, SecretValidator
from api.webhooks import WEBHOOK_PROVIDERS, WebhookHandler
from providers import build_providers
from providers.base import BaseProvider
from providers.errors import ProviderAPIError
from providers.models import Borough, ConcertSource
from providers.search import search_all_sources

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
}

router = APIRouter()


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    configure_logging(settings.log_level)
    if settings.is_production:
        app.state.secrets.validate_required()

    await init_db(settings.database_path)

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        _cleanup_rate_limits,
        "interval",
        minutes=settings.rate_limit_cleanup_minutes,
        args=[app.state.rate_limiter],
        id="rate_limit_cleanup",
    )
    scheduler.start()

    if settings.scheduled_jobs_enabled:
        app.state.job_manager = ScheduledJobManager(
            app.state.providers,
            app.state.repository,
            scheduler=scheduler,
            interval_minutes=settings.sync_interval_minutes,
        )
        app.state.job_manager.start()
    else:
        logger.info("Scheduled jobs disabled (environment=%s)", settings.environment)

    logger.info("CitySounds API started with providers: %s", ", ".join(app.state.providers) or "none")
    try:
        yield
    finally:
        if app.state.job_manager is not None:
            app.state.job_manager.stop()
        scheduler.shutdown(wait=False)
        for provider in app.state.providers.values():
            await provider.aclose()


def _cleanup_rate_limits(limiter: RateLimiter) -> None:
    removed = limiter.cleanup()
    if removed:
        logger.debug("Expired %d rate limit window(s)", removed)


def create_app(
    settings: Settings | None = None,
    *,
    providers: dict[str, BaseProvider] | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """Build the application and its services from *settings*.

    *providers* and *rate_limiter* replace the ones derived from settings.
    """
    settings = settings or Settings()

    app = FastAPI(title="CitySounds", version="0.1.0", lifespan=lifespan)

    repository = ConcertRepository(settings.database_path)
    secrets = SecretValidator(settings.secrets())
    audit = AuditLogger(repository)
    broadcaster = ConcertBroadcaster()
    if rate_limiter is None:
        rate_limiter = InMemoryRateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )

    app.state.settings = settings
    app.state.providers = providers if providers is not None else build_providers(settings.secrets())
    app.state.repository = repository
    app.state.secrets = secrets
    app.state.audit = audit
    app.state.broadcaster = broadcaster
    app.state.rate_limiter = rate_limiter
    app.state.webhooks = WebhookHandler(repository, audit, rate_limiter, secrets, broadcaster)
    app.state.job_manager = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)
        return response

    # Unhandled errors are answered outside the middleware stack.
    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception):
        return JSONResponse(
            {"message": "Internal server error"}, status_code=500, headers=SECURITY_HEADERS
        )

    app.include_router(router)
    return app


@router.get("/health")
async def health():
    return {"status": "ok"}


# ----------------------------------------------------------------------
# Webhooks
# ----------------------------------------------------------------------


@router.api_route("/api/webhooks/{provider}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def receive_webhook(provider: str, request: Request):
    if provider not in WEBHOOK_PROVIDERS:
        return JSONResponse({"message": "Not found"}, status_code=404)
    if request.method != "POST":
        return JSONResponse(
            {"message": "Method not allowed"}, status_code=405, headers={"Allow": "POST"}
        )

    raw_body = await request.body()
    try:
        result = await request.app.state.webhooks.handle(
            provider, raw_body, request.headers, client_ip(request)
        )
    except Exception:
        logger.exception("%s webhook processing failed", provider)
        return JSONResponse({"message": "Webhook processing failed"}, status_code=500)

    return JSONResponse({"message": result.message}, status_code=200 if result.success else 400)


# ----------------------------------------------------------------------
# Catalog
# ----------------------------------------------------------------------


@router.get("/api/concerts")
async def list_concerts(
    request: Request,
    q: str | None = None,
    genre: str | None = None,
    borough: Borough | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    is_free: bool | None = None,
    source: ConcertSource | None = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    """List stored concerts with pagination and filtering."""
    concerts, total = await request.app.state.repository.list_concerts(
        q=q,
        genre=genre,
        borough=borough.value if borough else None,
        date_from=date_from,
        date_to=date_to,
        is_free=is_free,
        source=source.value if source else None,
        page=page,
        per_page=per_page,
    )
    return {
        "concerts": concerts,
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": max(1, (total + per_page - 1) // per_page),
    }


@router.get("/api/concerts/{concert_id}")
async def get_concert(concert_id: int, request: Request):
    concert = await request.app.state.repository.get_concert(concert_id)
    if not concert:
        raise HTTPException(status_code=404, detail="Concert not found")
    return concert


@router.get("/api/venues")
async def list_venues(request: Request, borough: Borough | None = None):
    return await request.app.state.repository.list_venues(borough.value if borough else None)


@router.get("/api/sources")
async def list_sources(request: Request):
    """Concert counts per source."""
    return await request.app.state.repository.count_by_source()


@router.get("/api/stats")
async def get_stats(request: Request):
    return await request.app.state.repository.stats()


# ----------------------------------------------------------------------
# Live provider access
# ----------------------------------------------------------------------


@router.get("/api/search")
async def search(request: Request):
    """Search every configured provider live, without touching the catalog."""
    raw = dict(request.query_params)
    try:
        params = SearchQuery.model_validate(raw)
    except ValidationError:
        await request.app.state.audit.log_suspicious_query(
            client_ip(request), raw, request.headers.get("user-agent")
        )
        return JSONResponse({"message": "Invalid search parameters"}, status_code=400)

    return await search_all_sources(
        request.app.state.providers,
        query=params.query,
        genre=params.genre,
        location=params.location,
        price_range=params.price_range,
        page=params.page,
    )


@router.get("/api/providers/{name}/categories")
async def provider_categories(name: str, request: Request):
    provider = request.app.state.providers.get(name)
    if provider is None:
        raise HTTPException(status_code=404, detail=f"Provider {name!r} is not configured")
    try:
        return await provider.list_categories()
    except ProviderAPIError as exc:
        logger.warning("Category lookup failed for %s: %s", name, exc)
        raise HTTPException(status_code=502, detail=f"{provider.display_name} request failed")


@router.get("/api/sync/status")
async def sync_status(request: Request):
    job_manager = request.app.state.job_manager
    if job_manager is None:
        return {"is_running": False, "last_run": None, "interval_minutes": None, "last_result": None}
    return job_manager.status()


@router.websocket("/ws/concerts")
async def concert_updates(websocket: WebSocket):
    """Stream ``new-concert`` notifications until the client disconnects."""
    async with websocket.app.state.broadcaster.subscribe() as queue:
        await websocket.accept()

        async def forward():
            while True:
                await websocket.send_json(await queue.get())

        sender = asyncio.create_task(forward())
        try:
            while (await websocket.receive())["type"] != "websocket.disconnect":
                pass
        finally:
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender
