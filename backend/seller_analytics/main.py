import asyncio
import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from seller_analytics.config import settings
from seller_analytics.exceptions import SellerAnalyticsError, UnexpectedError
from seller_analytics.routers import analytics, marketplace_sync
from seller_analytics.utils.logger import logger

app = FastAPI(title="Seller Analytics API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=3600,
)


# Request logging middleware with request ID
@app.middleware("http")
async def request_logger(request: Request, call_next):
    rid = uuid.uuid4().hex[:8]
    request.state.rid = rid
    logger.info("→ %s %s rid=%s", request.method, request.url.path, rid)
    try:
        resp = await call_next(request)
        logger.info("← %s status=%s rid=%s", request.url.path, resp.status_code, rid)
        resp.headers["X-Request-ID"] = rid
        return resp
    except Exception as e:
        logger.exception("Unhandled error rid=%s: %s", rid, str(e))
        unexpected = UnexpectedError.wrap(e)
        error_resp = JSONResponse(
            {**unexpected.to_dict(), "rid": rid},
            status_code=unexpected.status_code,
        )
        error_resp.headers["X-Request-ID"] = rid
        return error_resp


@app.exception_handler(SellerAnalyticsError)
async def seller_analytics_error_handler(request: Request, exc: SellerAnalyticsError):
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, "%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


app.include_router(analytics.router)
app.include_router(marketplace_sync.router)


@app.on_event("startup")
async def startup_event():
    logger.info("=" * 60)
    logger.info("Seller Analytics API starting")
    logger.info("=" * 60)

    if settings.DATABASE_URL.startswith("sqlite"):
        from seller_analytics.models_sqlalchemy import init_db

        logger.info("Using SQLite database - creating tables if missing")
        init_db()

    if settings.SCHEDULER_ENABLED:
        from seller_analytics.workers import run_sync_scheduler_loop

        asyncio.create_task(run_sync_scheduler_loop())
        logger.info(
            "✅ Sync scheduler started (warehouses at %s, analytics at %s)",
            settings.WAREHOUSE_SYNC_TIME,
            settings.ANALYTICS_SYNC_TIME,
        )
    else:
        logger.info("Sync scheduler disabled (SCHEDULER_ENABLED=false)")


@app.on_event("shutdown")
async def shutdown_event():
    from seller_analytics.services.marketplace_sync import sync_orchestrator

    sync_orchestrator.shutdown()


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.get("/")
async def root():
    return {
        "message": "Seller Analytics API",
        "version": "1.0.0",
        "docs": "/docs",
    }
