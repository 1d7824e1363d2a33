"""FastAPI application hosting the pomopair rendezvous server."""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from .core.config import settings
from .routers import signaling
from .services.rendezvous import registry

app = FastAPI(title="pomopair Rendezvous API", version="0.1.0")

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(signaling.router)

ROBOTS_TXT = "User-agent: *\nDisallow: /ws\nDisallow: /api/\n"


@app.api_route("/api/health", methods=["GET", "HEAD"], tags=["meta"])
async def health() -> dict[str, object]:
    """Liveness probe; also reports how many rooms are open."""

    return {"status": "ok", "rooms": registry.room_count}


@app.get("/robots.txt", response_class=PlainTextResponse, include_in_schema=False)
async def robots() -> str:
    return ROBOTS_TXT
