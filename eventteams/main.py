import asyncio
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import DBAPIError, OperationalError

import eventteams.database as database
from eventteams.config import get_settings
from eventteams.routes.teams import router as team_router

# ----- Logging -----
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger("eventteams")

settings = get_settings()

# ----- FastAPI app -----
app = FastAPI(
    title="Event Teams",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# ----- CORS (enabled only if ALLOWED_ORIGINS is set) -----
if settings.allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin"],
        max_age=86400,
    )

app.include_router(team_router)


def sqlite_fallback_allowed() -> bool:
    """Only fall back to the bundled SQLite file when explicitly allowed."""

    configured = os.getenv("DB_ALLOW_SQLITE_FALLBACK")
    if configured is not None:
        return configured.lower() in {"1", "true", "yes", "on"}
    return database.CURRENT_DATABASE_URL == database.DEFAULT_SQLITE_URL


@app.on_event("startup")
async def on_startup():
    """Create tables, retrying while the database comes up."""

    max_attempts = int(os.getenv("DB_INIT_MAX_ATTEMPTS", "10"))
    base_delay = float(os.getenv("DB_INIT_RETRY_SECONDS", "1.0"))

    attempt = 0
    while True:
        attempt += 1
        try:
            await database.init_models()
        except (OperationalError, DBAPIError, OSError) as exc:  # pragma: no cover - depends on timing
            if attempt >= max_attempts:
                if sqlite_fallback_allowed() and (
                    database.CURRENT_DATABASE_URL != database.DEFAULT_SQLITE_URL
                ):
                    logger.error(
                        "Database not reachable after %s attempts: %s."
                        " Falling back to local SQLite for development.",
                        attempt,
                        exc,
                    )
                    await database.engine.dispose()
                    database.configure_engine(database.DEFAULT_SQLITE_URL)
                    attempt = 0
                    continue

                logger.exception("Database not reachable after %s attempts", attempt)
                raise

            wait_time = base_delay * min(2 ** (attempt - 1), 8)
            logger.warning(
                "Database not ready (attempt %s/%s): %s. Retrying in %.1f seconds...",
                attempt,
                max_attempts,
                exc,
                wait_time,
            )
            await asyncio.sleep(wait_time)
        else:
            logger.info(
                "Event teams API started; team codes use prefix %s.",
                settings.team_code_prefix,
            )
            break


@app.on_event("shutdown")
async def on_shutdown():
    await database.engine.dispose()


@app.get("/health", tags=["meta"])
async def health():
    return {"ok": True}


# Log presence of secrets, never their values
if os.getenv("DATABASE_URL"):
    logger.info("DATABASE_URL loaded.")
if os.getenv("JWT_SECRET"):
    logger.info("JWT_SECRET loaded.")
