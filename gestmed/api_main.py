from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import BACKENDS, Settings, configure_logging
from .db import Database
from .errors import GestMedError
from .mongo import MongoDatabase
from .repository import AppointmentRepository
from .repository_mongo import MongoAppointmentRepository
from .repository_sql import SqlAppointmentRepository
from .routes import ROUTERS

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
}


def build_repository(settings: Settings, database: Database, mongo: MongoDatabase | None = None) -> AppointmentRepository:
    if settings.appointments_backend not in BACKENDS:
        raise RuntimeError(f"APPOINTMENTS_BACKEND must be one of: {', '.join(BACKENDS)}")
    if settings.appointments_backend == "mongo":
        mongo = mongo or MongoDatabase(settings.mongo_uri, settings.mongo_db_name)
        return MongoAppointmentRepository(mongo)
    return SqlAppointmentRepository(database)


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    mongo: MongoDatabase | None = None,
) -> FastAPI:
    """
    Applicazione FastAPI per il modulo (o i moduli) indicati da settings.service.
    Database e repository sono creati qui, inizializzati allo startup e chiusi allo shutdown.
    """
    settings = settings or Settings.from_env()
    mounted = settings.mounted_services()

    database = database or Database(settings.database_url)
    repository = build_repository(settings, database, mongo)

    app = FastAPI(title="GestMed API", version="1.0.0")
    app.state.settings = settings
    app.state.database = database
    app.state.repository = repository

    for name in mounted:
        app.include_router(ROUTERS[name])

    # Startup / shutdown

    @app.on_event("startup")
    def startup() -> None:
        if settings.create_tables:
            database.init()
            repository.init()
        logger.info(
            "GestMed avviato: servizi=%s, backend appuntamenti=%s",
            ",".join(mounted),
            settings.appointments_backend,
        )

    @app.on_event("shutdown")
    def shutdown() -> None:
        repository.close()
        database.close()

    # Middleware

    @app.middleware("http")
    async def request_timeout(request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=settings.request_timeout)
        except asyncio.TimeoutError:
            logger.warning("Request timeout for: %s %s", request.method, request.url.path)
            return JSONResponse(status_code=status.HTTP_408_REQUEST_TIMEOUT, content={"error": "Request timeout"})

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        logger.info("%s %s %d %.1fms", request.method, request.url.path, response.status_code, elapsed_ms)
        return response

    # Errori -> {"error": ...}

    @app.exception_handler(GestMedError)
    async def domain_error_handler(request: Request, exc: GestMedError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request", "details": details},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = "Route not found" if exc.status_code == status.HTTP_404_NOT_FOUND else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": message})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Errore non gestito su %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    # Health check

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


def app_from_env() -> FastAPI:
    """Factory per uvicorn: `uvicorn --factory gestmed.api_main:app_from_env`."""
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return create_app(settings)
