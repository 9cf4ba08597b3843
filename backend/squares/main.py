"""
Squares pool FastAPI application entry point.

Configures FastAPI, registers the routers and the error handler, and
manages the MongoDB connection and the number assignment scheduler.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from squares.config import settings
from squares.dal.database import (
    close_mongo_connection,
    connect_to_mongo,
    ensure_indexes,
    get_database,
)
from squares.errors import ErrorKind, SquaresError
from squares.routes.games import router as games_router
from squares.routes.health import router as health_router
from squares.routes.settlement import router as settlement_router
from squares.routes.wallet import router as wallet_router
from squares.routes.withdrawals import router as withdrawals_router
from squares.tasks import start_assignment_scheduler, stop_assignment_scheduler

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("squares.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.
    Handles startup and shutdown of the MongoDB connection and scheduler.
    """
    try:
        await connect_to_mongo()
        await ensure_indexes(get_database())
        logger.info("Squares v%s started with database connection", settings.APP_VERSION)

        if settings.DISABLE_SCHEDULER:
            logger.info("Number assignment scheduler disabled")
        else:
            start_assignment_scheduler()
    except Exception as e:
        # Start anyway so health checks can report the outage
        logger.warning(
            "Failed to connect to MongoDB during startup: %s. "
            "Database operations will fail until connection is established.",
            str(e),
        )

    yield

    stop_assignment_scheduler()
    await close_mongo_connection()
    logger.info("Squares shutdown complete")


app = FastAPI(
    title="Squares Pool API",
    description="Grid claim and settlement engine for squares pools - REST API",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID", "X-Admin-Id"],
    expose_headers=["X-Request-ID"],
    max_age=600,
)


@app.exception_handler(SquaresError)
async def squares_error_handler(request: Request, exc: SquaresError) -> JSONResponse:
    """Render engine errors as ``{"error": kind, "detail": msg}``."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies, paths and headers use the same error envelope."""
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()))
        problems.append(f"{location}: {err.get('msg', 'invalid')}")
    return JSONResponse(
        status_code=422,
        content={"error": str(ErrorKind.VALIDATION_ERROR), "detail": "; ".join(problems)},
    )


app.include_router(health_router)  # Health endpoint at root level
app.include_router(health_router, prefix="/api")
app.include_router(games_router, prefix="/api")
app.include_router(settlement_router, prefix="/api")
app.include_router(wallet_router, prefix="/api")
app.include_router(withdrawals_router, prefix="/api")


@app.get("/")
async def root():
    """API information."""
    return {
        "name": "Squares Pool API",
        "version": settings.APP_VERSION,
        "status": "operational",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "squares.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
