"""
Punto de entrada de la API del motor de sincronización.

    uvicorn main:app --reload

El worker del outbox corre normalmente como proceso aparte
(scripts/sync_worker.py); con SYNC_WORKER_IN_API=true arranca dentro de la API.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from coaching_sync.api.middlewares.error_handler import ErrorHandlerMiddleware
from coaching_sync.api.v1.router import api_router
from coaching_sync.core.config import get_cors_origins, settings
from coaching_sync.core.events import lifespan
from coaching_sync.shared.exceptions.base import AppException


def _register_exception_handlers(application: FastAPI) -> None:
    @application.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())


def _register_health(application: FastAPI) -> None:
    @application.get("/health", tags=["Health"])
    async def health_check():
        """Estado del proceso: configuración de Airtable y worker embebido."""
        state = application.state
        return {
            "status": "healthy",
            "app_name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "airtable_configured": bool(settings.AIRTABLE_TOKEN and settings.AIRTABLE_BASE_ID),
            "worker_running": state.scheduler is not None,
        }


def create_application() -> FastAPI:
    """
    Factory de la aplicación FastAPI.

    Returns:
        FastAPI: Instancia con middlewares, rutas /api/v1/sync y /health
    """
    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Motor de sincronización Airtable <-> PostgreSQL (outbox, webhooks y sweep)",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # El lifespan completa sync_config, airtable_client y el worker
    application.state.scheduler = None
    application.state.sync_worker = None

    application.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(settings.CORS_ORIGINS),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(ErrorHandlerMiddleware)

    application.include_router(api_router, prefix="/api")
    _register_exception_handlers(application)
    _register_health(application)

    return application


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
