# main.py
"""
Account Shop Backend Entry Point.

Responsibilities:
- Builds the FastAPI application (create_app) and mounts the /api routes.
- Maps shop errors to JSON responses.
- LIFESPAN: creates the store, applies schema, bootstraps the admin, seeds
  defaults and starts the Telegram bot (or stays in demo mode).
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from account_shop.bot_service import BotService
from account_shop.config import Settings, get_settings
from account_shop.create_tables import initialize_database
from account_shop.db import Database
from account_shop.exceptions import NotFoundError, ShopError, ValidationError
from account_shop.web_routes import router as api_router

# ==============================================================================
# LOGGING
# ==============================================================================

logger = logging.getLogger("main")


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - [%(levelname)s] - %(name)s - %(message)s",
    )
    # PTB polls through httpx; every getUpdates call would be logged at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ==============================================================================
# LIFESPAN (STARTUP/SHUTDOWN)
# ==============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    settings: Settings = app.state.settings

    # --- STARTUP ---
    logger.info(f"🚀 Initializing {settings.PROJECT_NAME} ({settings.ENV})...")

    database = Database(settings.DATABASE_URL, echo=settings.DB_ECHO)
    bot_service = BotService(database, settings)
    app.state.database = database
    app.state.bot_service = bot_service

    try:
        await initialize_database(database, settings)

        if await database.healthcheck():
            logger.info("✅ Database is reachable and initialized.")
        else:
            logger.warning("⚠️ Database check returned False. Check your DATABASE_URL.")
    except Exception as e:
        logger.critical(f"🔥 Initialization Failed: {e}")
        raise

    if await bot_service.start():
        logger.info("✅ Telegram bot is running.")
    else:
        logger.info("Running in demo mode: dashboard only, bot polling disabled.")

    yield  # --- Application is now live and serving requests ---

    # --- SHUTDOWN ---
    logger.info("🛑 Shutting down backend...")
    await bot_service.stop()
    await database.dispose()


# ==============================================================================
# EXCEPTION HANDLERS
# ==============================================================================

async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Bad request bodies are reported as 400 rather than FastAPI's default 422
    errors = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": errors})


async def shop_error_handler(request: Request, exc: ShopError):
    logger.error(f"Unhandled shop error on {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"🔥 Unhandled error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Internal server error"})


# ==============================================================================
# FASTAPI INSTANCE
# ==============================================================================

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        lifespan=lifespan,
        docs_url="/docs",
    )
    app.state.settings = settings

    # GZip for faster loading of large JSON lists (orders/customers)
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ShopError, shop_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(api_router)
    return app


# ==============================================================================
# ENTRY POINT
# ==============================================================================

def run():
    import uvicorn

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=int(os.getenv("PORT", 8000)))


if __name__ == "__main__":
    run()
