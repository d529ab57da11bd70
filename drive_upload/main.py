"""FastAPI application entry point."""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from drive_upload.config import Settings
from drive_upload.deps import Services, build_services
from drive_upload.errors import (
    ConfigurationError,
    NotAuthenticatedError,
    ReauthenticationRequiredError,
    TokenExchangeError,
)
from drive_upload.routers import files, oauth, upload
from drive_upload.utils.logging import setup_logging

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra}
    )


def register_error_handlers(app: FastAPI) -> None:
    """Map fault-type errors to HTTP statuses."""

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError):
        fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
        return _error(400, f"Missing or invalid fields: {', '.join(fields)}")

    @app.exception_handler(ConfigurationError)
    async def configuration_handler(request: Request, exc: ConfigurationError):
        logger.error(f"Configuration error: {exc.message}")
        return _error(500, exc.message)

    @app.exception_handler(ReauthenticationRequiredError)
    async def reauth_handler(request: Request, exc: ReauthenticationRequiredError):
        return _error(401, exc.message, reauthenticate=True)

    @app.exception_handler(NotAuthenticatedError)
    async def not_authenticated_handler(request: Request, exc: NotAuthenticatedError):
        return _error(401, exc.message)

    @app.exception_handler(TokenExchangeError)
    async def token_exchange_handler(request: Request, exc: TokenExchangeError):
        logger.error(f"Token exchange error ({exc.status_code}): {exc.message}")
        return _error(502, exc.message)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Build the application with explicitly constructed services.

    Args:
        settings: Loaded from the environment if None
        services: Built from settings if None

    Returns:
        Configured FastAPI app
    """
    if services is not None:
        settings = services.settings
    settings = settings or Settings()

    setup_logging(settings.log_level)

    app = FastAPI(
        title="Drive Upload API",
        description="Google Drive uploads for service-account and user-delegated credentials",
        version="1.0.0"
    )
    app.state.services = services or build_services(settings)

    # Browser clients call the upload handler directly
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"ok": True}

    # Register routers
    app.include_router(upload.router, prefix="/api/v1", tags=["Upload"])
    app.include_router(oauth.router, prefix="/api/v1/auth/google", tags=["Auth"])
    app.include_router(files.router, prefix="/api/v1/files", tags=["Files"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
