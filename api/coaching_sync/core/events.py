"""
Startup y shutdown de la API.

El startup deja en app.state lo que comparten los requests:
- sync_config: SyncEngineConfig construido una sola vez desde Settings
- airtable_client: cliente REST (None si faltan credenciales)
- sync_worker / scheduler: solo con SYNC_WORKER_IN_API=true

FastAPI recibe ambos pasos juntos a través de `lifespan`.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List

from fastapi import FastAPI
from loguru import logger

from coaching_sync.application.use_cases.sync_worker import SyncWorker
from coaching_sync.core.config import settings
from coaching_sync.infrastructure.database.session import AsyncSessionLocal, close_db, init_db
from coaching_sync.infrastructure.external.airtable_sync.airtable_client import build_airtable_client
from coaching_sync.infrastructure.external.airtable_sync.sync_config import (
    SyncConfigError,
    SyncEngineConfig,
)


def _config_warnings() -> List[str]:
    warnings = []
    if not settings.AIRTABLE_TOKEN or not settings.AIRTABLE_BASE_ID:
        warnings.append("AIRTABLE_TOKEN/AIRTABLE_BASE_ID no configurados: no habra sync con Airtable")
    if settings.USER_WEBHOOK_SYNC_ENABLED and not settings.AIRTABLE_USER_SYNC_SECRET:
        warnings.append("AIRTABLE_USER_SYNC_SECRET vacio: el webhook de usuarios respondera 500")
    if not settings.AIRTABLE_INBOUND_SYNC_SECRET:
        warnings.append("AIRTABLE_INBOUND_SYNC_SECRET vacio: los endpoints de operacion rechazaran todo")
    return warnings


def _init_sync_engine(app: FastAPI) -> None:
    """Configuracion del motor, cliente Airtable y worker embebido opcional."""
    sync_config = SyncEngineConfig.from_settings(settings)
    app.state.sync_config = sync_config

    try:
        app.state.airtable_client = build_airtable_client(sync_config)
    except SyncConfigError as e:
        app.state.airtable_client = None
        logger.warning(f"Cliente Airtable no disponible: {e}")
        return

    if settings.SYNC_WORKER_IN_API:
        worker = SyncWorker(AsyncSessionLocal, app.state.airtable_client, sync_config)
        app.state.sync_worker = worker
        app.state.scheduler = worker.start()


def _log_endpoints() -> None:
    host = "localhost" if settings.HOST == "0.0.0.0" else settings.HOST
    base_url = f"http://{host}:{settings.PORT}"
    sync_url = f"{base_url}/api/v1/sync"

    banner = "<bold><green>" + "=" * 80 + "</green></bold>"
    logger.opt(colors=True).info(banner)
    logger.opt(colors=True).info(f"<cyan>  Swagger UI:     {base_url}/docs</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Health:         {base_url}/health</cyan>")
    logger.opt(colors=True).info(f"<cyan>  User webhook:   {sync_url}/users/webhook</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Inbound batch:  {sync_url}/inbound</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Outbox status:  {sync_url}/status</cyan>")
    logger.opt(colors=True).info(banner)


def startup_handler(app: FastAPI) -> Callable:
    """
    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de inicio
    """
    async def startup() -> None:
        logger.add(
            settings.LOG_FILE,
            rotation="500 MB",
            retention="10 days",
            level=settings.LOG_LEVEL,
        )
        logger.info(f"Iniciando {settings.APP_NAME} v{settings.APP_VERSION} ({settings.ENVIRONMENT})")

        for warning in _config_warnings():
            logger.warning(f"CONFIG: {warning}")

        try:
            await init_db()
            _init_sync_engine(app)
        except Exception:
            logger.exception("Error durante startup")
            raise

        worker_state = "activo" if app.state.scheduler is not None else "fuera de proceso"
        logger.success(f"Motor de sync listo (worker {worker_state})")
        _log_endpoints()

    return startup


def shutdown_handler(app: FastAPI) -> Callable:
    """
    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de cierre
    """
    async def shutdown() -> None:
        worker = getattr(app.state, "sync_worker", None)
        if worker is not None:
            worker.shutdown()
            app.state.scheduler = None

        client = getattr(app.state, "airtable_client", None)
        if client is not None:
            client.close()

        await close_db()
        logger.success("Motor de sync detenido, conexiones cerradas")

    return shutdown


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup antes del primer request, shutdown al cerrar (aunque el servidor falle)."""
    await startup_handler(app)()
    try:
        yield
    finally:
        await shutdown_handler(app)()
