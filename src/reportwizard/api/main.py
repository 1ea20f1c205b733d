from __future__ import annotations

import logging
import os
from datetime import UTC, datetime

from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from ..observability.metrics import metrics_middleware_factory
from .routers.ai import router as ai_router
from .routers.auth import router as auth_router
from .routers.hubspot import router as hubspot_router
from .routers.story import router as story_router
from .routers.user import router as user_router

load_dotenv()  # Load environment variables from .env if present (OPENAI_API_KEY, HUBSPOT_BASE_URL, JWT_SECRET, etc.)

app = FastAPI(title="Report Wizard API", version="0.1.0")

logging.basicConfig(level=logging.INFO)

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

ROUTERS = (auth_router, user_router, hubspot_router, ai_router, story_router)

for _router in ROUTERS:
    app.include_router(_router)

# The browser client calls everything under /api
for _router in ROUTERS:
    app.include_router(_router, prefix="/api")

_origins = [o.strip() for o in os.getenv("RW_CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _health() -> dict:
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "user_store": os.getenv("RW_USER_STORE_IMPL", "memory").lower(),
        },
    }


@app.get("/")
def root():
    return {"name": "Report Wizard API", "version": "0.1.0"}


@app.get("/health")
def health():
    return _health()


@app.get("/api/health")
def api_health():
    return _health()


@app.get("/metrics")
def metrics() -> Response:
    # Expose Prometheus metrics
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.get("/api/metrics")
def api_metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
