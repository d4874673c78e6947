"""
FastAPI application factory for the ride-hailing backend.
"""

from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import time

from config import Settings
from database import connect_db, disconnect_db
from logging_config import configure_logging
from routes import auth_routes, driver_routes, message_routes, ride_routes, user_routes
from services.exceptions import RideHailError
from services.ride_lifecycle import RideLifecycleController
from sockets import ride_socket
from sockets.ride_socket import ConnectionManager
from utils.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


def _validation_errors(exc: RequestValidationError) -> list:
    errors = []
    for err in exc.errors():
        # Drop the "body"/"query"/"path" prefix so fields read like the payload
        location = [str(part) for part in err.get("loc", ())[1:]]
        errors.append({"field": ".".join(location), "message": err.get("msg")})
    return errors


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RideHailError)
    async def ride_hail_error_handler(request: Request, exc: RideHailError):
        return JSONResponse(
            status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "message": "Validation failed",
                "errors": _validation_errors(exc),
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        # Anything not mapped above
        logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": "Internal server error"},
        )


def create_app(
    settings: Optional[Settings] = None, manage_database: bool = True
) -> FastAPI:
    """
    Build the API application

    Args:
        settings: Defaults to Settings.from_env()
        manage_database: Connect/disconnect MongoDB on startup/shutdown;
            tests connect their own in-memory database instead
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Ride-hailing API",
        description="Backend API for ride requests, ride lifecycle and in-ride chat",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    channel = ConnectionManager()
    app.state.settings = settings
    app.state.channel = channel
    app.state.rides = RideLifecycleController(notifier=channel.emit_to_room_nowait)
    app.state.auth_rate_limiter = SlidingWindowRateLimiter(
        max_requests=settings.auth_rate_limit_max,
        window_seconds=settings.auth_rate_limit_window_seconds,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.0f}ms)"
        )
        return response

    register_exception_handlers(app)

    @app.on_event("startup")
    async def startup_event():
        logger.info("Starting ride-hailing API...")
        if manage_database:
            connect_db(settings.mongo_uri)

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down ride-hailing API...")
        await channel.stop()
        if manage_database:
            disconnect_db()

    # Liveness
    @app.get("/")
    async def root():
        return {
            "success": True,
            "message": "Ride-hailing API is running",
            "version": app.version,
        }

    @app.get("/health")
    async def health_check():
        return {
            "success": True,
            "status": "healthy",
            "activeConnections": channel.get_stats()["active_connections"],
        }

    # REST API
    app.include_router(auth_routes.router, prefix="/api/auth", tags=["Authentication"])
    app.include_router(ride_routes.router, prefix="/api/rides", tags=["Rides"])
    app.include_router(user_routes.router, prefix="/api/users", tags=["Users"])
    app.include_router(driver_routes.router, prefix="/api/drivers", tags=["Drivers"])
    app.include_router(message_routes.router, prefix="/api/messages", tags=["Messages"])

    # Realtime channel
    app.include_router(ride_socket.router, prefix="/ws", tags=["WebSocket"])

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
