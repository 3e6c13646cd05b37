"""
FILE: api/main.py
Role: FastAPI application entry point: logging, CORS, lifespan, router registration,
      catch-all error handler.
Dependencies: db.py (pool), routes/*.py (endpoints)
Output: HTTP JSON API on :8000 with prefix /api/
How to test: uvicorn main:app --reload; curl http://localhost:8000/api/categories

Endpoints registered:
  GET  /api/facilities?q&category&state&city&lat&lng&radius&page&limit
  GET  /api/facilities/nearby?lat&lng&radius&limit
  GET  /api/facilities/{id}
  GET  /api/categories
  GET  /api/categories/{slug}?page&limit
  GET  /api/categories/{slug}/stats
  GET  /api/search/suggest?q&limit
  GET  /api/search/states
  GET  /api/search/cities?state&limit
  POST /api/search/log
  POST /api/admin/invalidate-cache?namespace  (X-Admin-Key header required)

ARCHITECTURE NOTE: FastAPI serves JSON only. The frontend is a separate
single-page app; map rendering and routing live there.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_cache import FastAPICache
from fastapi_cache.backends.inmemory import InMemoryBackend

from db import init_pool, close_pool
from routes import facilities, categories, search, admin

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Init DB pool on startup, close on shutdown."""
    await init_pool()
    FastAPICache.init(InMemoryBackend())
    logger.info("Railhub API started")
    yield
    await close_pool()
    logger.info("Railhub API stopped")


app = FastAPI(
    title="Railhub API",
    description="Directory of rail-freight facilities: search, filter, nearby and category browsing.",
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS ──────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.environ.get("FRONTEND_URL", "http://localhost:3000")],
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Admin-Key"],
)


# ── Errors ────────────────────────────────────────────────────
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the failure server-side; callers only ever see a generic 500."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ── Routers ───────────────────────────────────────────────────
app.include_router(facilities.router, prefix="/api")
app.include_router(categories.router, prefix="/api")
app.include_router(search.router,     prefix="/api")
app.include_router(admin.router,      prefix="/api")


@app.get("/health")
async def health():
    """Health check endpoint for Docker healthcheck."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
