from __future__ import annotations

import logging
import threading
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .errors import ConfigurationError, SearchFailedError
from .pipeline import IngestionPipeline
from .repositories import VideoRepository, get_repository
from .scheduler import AutoFetchScheduler
from .settings import DEFAULT_MANUAL_KEYWORDS, Settings, log_environment_check
from .youtube import VideoSource, YouTubeSource

logger = logging.getLogger(__name__)

FEED_MAX_LIMIT = 50


class FetchShortsIn(BaseModel):
    keywords: list[str] = Field(default_factory=lambda: list(DEFAULT_MANUAL_KEYWORDS))
    region: str | None = None
    limit: int = 25


def create_app(
    settings: Settings,
    *,
    repository: VideoRepository | None = None,
    source: VideoSource | None = None,
) -> FastAPI:
    repo = repository if repository is not None else get_repository(settings)
    source_lock = threading.Lock()
    cached: dict[str, VideoSource] = {}
    if source is not None:
        cached["source"] = source

    def _source() -> VideoSource:
        with source_lock:
            if "source" not in cached:
                cached["source"] = YouTubeSource(settings.YOUTUBE_API_KEY, timeout=settings.VS_SOURCE_TIMEOUT_SEC)
            return cached["source"]

    def _pipeline() -> IngestionPipeline:
        return IngestionPipeline.from_settings(settings, _source(), repo)

    def _auto_fetch() -> dict:
        return _pipeline().run_scheduled(settings.schedule_regions, settings.schedule_keywords)

    scheduler = AutoFetchScheduler(
        _auto_fetch,
        interval_sec=settings.VS_SCHEDULE_INTERVAL_SEC,
        run_on_start=settings.VS_SCHEDULE_RUN_ON_START,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log_environment_check(settings)
        if settings.VS_SCHEDULE_ENABLED:
            scheduler.start()
        try:
            yield
        finally:
            scheduler.stop()

    app = FastAPI(title="vibestream API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.repository = repo
    app.state.scheduler = scheduler

    if settings.VS_API_CORS_ALLOW_ALL:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def access_log_middleware(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        if settings.VS_API_LOG_ACCESS:
            logger.info(
                "%s %s -> %s (%.1f ms)",
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - started) * 1000,
            )
        return response

    @app.exception_handler(ConfigurationError)
    async def _configuration_error(_request: Request, exc: ConfigurationError):
        logger.error("configuration error: %s", exc)
        return JSONResponse(status_code=503, content={"ok": False, "detail": str(exc)})

    @app.exception_handler(SearchFailedError)
    async def _search_failed(_request: Request, exc: SearchFailedError):
        return JSONResponse(status_code=502, content={"ok": False, "detail": str(exc)})

    @app.get("/")
    def root():
        return {
            "service": "vibestream API",
            "ok": True,
            "endpoints": {
                "health": "/health",
                "feed": "/feed?limit=20&cursor=...",
                "video": "/videos/{id}",
                "stats": "/stats",
                "trending": "/trending?region=IN&limit=20",
                "fetch": "POST /fetch/shorts",
                "docs": "/docs",
            },
        }

    @app.get("/health")
    def health():
        return {"ok": True, "backend": repo.backend_name}

    @app.get("/feed")
    def feed(
        limit: int = Query(default=20),
        cursor: str | None = Query(default=None),
    ):
        limit = max(1, min(int(limit), FEED_MAX_LIMIT))
        try:
            page = repo.list_recent(limit=limit, cursor=cursor or None)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"items": page.items, "next_cursor": page.next_cursor}

    @app.get("/videos/{video_id}")
    def get_video(video_id: str):
        row = repo.get(video_id)
        if row is None:
            raise HTTPException(status_code=404, detail="Video not found")
        return row

    @app.get("/stats")
    def stats():
        out = repo.stats()
        out["scheduler"] = scheduler.state()
        return out

    @app.get("/trending")
    def trending(
        region: str | None = Query(default=None),
        limit: int = Query(default=20),
    ):
        reg = (region or settings.VS_DEFAULT_REGION).upper()
        res = _pipeline().run_trending(reg, limit=limit)
        return {"items": [r.to_dict() for r in res.records], "region": reg}

    @app.post("/fetch/shorts")
    def fetch_shorts(payload: FetchShortsIn | None = None):
        body = payload or FetchShortsIn()
        reg = (body.region or settings.VS_DEFAULT_REGION).upper()
        res = _pipeline().run_keywords(body.keywords, reg, limit=body.limit)
        logger.info("manual fetch completed. added=%d", res.upserted)
        return {"added": res.upserted, "stats": res.summary()}

    return app
