"""
Mindforge — Mind Map Synthesis Engine
=====================================
FastAPI entry point.
  • Global exception handler — never crashes, always returns JSON
  • /api/v1/mindmap         — text → laid-out mind map graph
  • /api/v1/mindmap/stream  — same, as Server-Sent Events
  • /api/v1/mindmap/expand  — additive children for one node
  • /api/v1/mindmap/cache   — cached graph per session
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mindforge.api.v1.endpoints.mindmap import router as mindmap_router
from mindforge.core.config import settings
from mindforge.schemas.mindmap import ErrorResponse

# ── Logging ──────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
)
logger = logging.getLogger(__name__)

# ── App ──────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="Mindforge — Mind Map Synthesis Engine",
    description=(
        "Turns chat answers and document text into a navigable, laid-out mind map.\n"
        "Oracle failures degrade the map; they never fail the request."
    ),
    version="1.0.0",
    responses={500: {"model": ErrorResponse}},
)


# ── Global Exception Handler ────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all: every unhandled exception returns a clean JSON envelope."""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    body = ErrorResponse(
        status="error",
        message="An internal server error occurred.",
        detail=str(exc),
    )
    return JSONResponse(status_code=500, content=body.model_dump())


# ── CORS ─────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Health Check ─────────────────────────────────────────────────────────────
@app.get("/", tags=["System"])
async def health_check():
    return {
        "status": "operational",
        "service": "Mindforge Mind Map Engine",
        "version": app.version,
        "ai_provider": settings.AI_PROVIDER,
    }


app.include_router(mindmap_router, prefix="/api/v1", tags=["Mind Map"])
