"""
FastAPI Dashboard Application
"""
import logging
from contextlib import asynccontextmanager

import psycopg2
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import dashboard.config as config
from dashboard.dependencies import close_rate_change_service
from dashboard.routes import register_routes
from db import close_pools
from errors import AuthError, ConfigurationError, ConflictError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_rate_change_service()
    close_pools()


# Create FastAPI app
app = FastAPI(
    title=config.APP_NAME,
    version=config.APP_VERSION,
    lifespan=lifespan,
)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _error(400, str(exc))


@app.exception_handler(ConflictError)
async def conflict_error_handler(request: Request, exc: ConflictError):
    return _error(409, str(exc))


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Configuration error on %s: %s", request.url.path, exc)
    return _error(500, str(exc))


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    logger.error("Clio auth error on %s: %s", request.url.path, exc)
    return _error(502, str(exc))


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    return _error(502, str(exc))


@app.exception_handler(psycopg2.Error)
async def database_error_handler(request: Request, exc: psycopg2.Error):
    logger.exception("Database error on %s", request.url.path)
    return _error(500, "Database error")


# Register domain-specific route groups
register_routes(app)


def run_server(host: str = None, port: int = None, reload: bool = False):
    """Run the dashboard server."""
    import uvicorn
    uvicorn.run(
        "dashboard.app:app",
        host=host or config.HOST,
        port=port or config.PORT,
        reload=reload,
    )


if __name__ == "__main__":
    run_server(reload=True)
