from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from mealshare_api.core.settings import settings
from .api.dependencies.commerce import close_commerce_client
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .services.commerce.errors import CommerceAPIError
from .services.errors import ServiceError
from .services.secrets.cipher import SecretCipherError


APP_VERSION = "0.1.0"
INTERNAL_ERROR_MESSAGE = "Internal server error"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "MealShare API starting",
        commerce_api_base_url=settings.commerce_api_base_url,
        session_ttl_seconds=settings.commerce_session_ttl_seconds,
    )
    try:
        yield
    finally:
        await close_commerce_client()


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "Request failed",
                path=request.url.path,
                error_type=type(exc).__name__,
                cause_type=type(exc.__cause__).__name__ if exc.__cause__ else None,
            )
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            f"{location}: {message}" if location else message,
        )

    @app.exception_handler(SecretCipherError)
    @app.exception_handler(CommerceAPIError)
    async def handle_internal_error(request: Request, exc: Exception) -> JSONResponse:
        # Secret and upstream details stay in the log record only.
        logger.error("Unhandled integration failure", path=request.url.path, error_type=type(exc).__name__)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR_MESSAGE)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error", path=request.url.path, error_type=type(exc).__name__)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR_MESSAGE)


def create_app() -> FastAPI:
    """Application factory for the MealShare FastAPI service."""
    configure_logging(
        service_name="mealshare-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="MealShare API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="mealshare-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
