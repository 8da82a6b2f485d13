"""
Worker de sincronización: jobs periódicos con APScheduler.

Jobs:
- outbox_dispatch: cada SYNC_POLL_INTERVAL_SECONDS, procesa un lote del outbox
- user_fallback_poll: cada SYNC_USER_FALLBACK_POLL_SECONDS (si el fast-lane está activo)
- full_airtable_sync: cada SYNC_FULL_POLL_SECONDS (si FULL_AIRTABLE_POLL_SYNC_ENABLED)

Cada job usa max_instances=1 y coalesce=True: una corrida lenta no se solapa
con la siguiente y las ejecuciones perdidas se agrupan en una sola.
"""
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from coaching_sync.application.use_cases.outbox_dispatcher import DispatchSummary, OutboxDispatcher
from coaching_sync.application.use_cases.user_sync_use_cases import UserSyncUseCases
from coaching_sync.infrastructure.external.airtable_sync.airtable_client import AirtableClient
from coaching_sync.infrastructure.external.airtable_sync.sync_config import SyncEngineConfig
from coaching_sync.infrastructure.external.airtable_sync.sync_service import (
    AirtableToPostgresSync,
    FullSyncCounts,
)
from coaching_sync.infrastructure.external.airtable_sync.writers import AirtableWriters
from coaching_sync.infrastructure.repositories.id_map_repository import IdentifierMapper


class SyncWorker:
    """Agrupa dispatcher, poll de usuarios y sweep bajo un mismo scheduler."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        airtable: AirtableClient,
        config: SyncEngineConfig,
    ):
        self.session_factory = session_factory
        self.airtable = airtable
        self.config = config
        self.dispatcher = OutboxDispatcher(
            session_factory,
            AirtableWriters(airtable, IdentifierMapper(session_factory), config),
            config,
        )
        self.full_sync = AirtableToPostgresSync(airtable, session_factory, config)
        self.scheduler: Optional[AsyncIOScheduler] = None

    async def run_outbox_once(self) -> DispatchSummary:
        return await self.dispatcher.process_batch()

    async def run_user_poll(self) -> int:
        async with self.session_factory() as session:
            return await UserSyncUseCases(session, self.airtable, self.config).sync_all_users_from_airtable()

    async def run_full_sync(self) -> FullSyncCounts:
        return await self.full_sync.run()

    async def _guarded(self, name: str, job) -> None:
        # Un fallo de un job no debe detener el scheduler
        try:
            await job()
        except Exception:
            logger.exception(f"Job {name} falló")

    async def _outbox_job(self) -> None:
        await self._guarded("outbox_dispatch", self.run_outbox_once)

    async def _user_poll_job(self) -> None:
        await self._guarded("user_fallback_poll", self.run_user_poll)

    async def _full_sync_job(self) -> None:
        await self._guarded("full_airtable_sync", self.run_full_sync)

    def build_scheduler(self) -> AsyncIOScheduler:
        """Crea el scheduler con los jobs habilitados por configuración."""
        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            self._outbox_job,
            trigger=IntervalTrigger(seconds=self.config.poll_interval_seconds),
            id="outbox_dispatch",
            max_instances=1,
            coalesce=True,
        )
        if self.config.user_fast_lane_enabled:
            scheduler.add_job(
                self._user_poll_job,
                trigger=IntervalTrigger(seconds=self.config.user_fallback_poll_seconds),
                id="user_fallback_poll",
                max_instances=1,
                coalesce=True,
            )
        if self.config.full_poll_sync_enabled:
            scheduler.add_job(
                self._full_sync_job,
                trigger=IntervalTrigger(seconds=self.config.full_poll_seconds),
                id="full_airtable_sync",
                max_instances=1,
                coalesce=True,
            )
        return scheduler

    def start(self) -> AsyncIOScheduler:
        """Arranca el scheduler en el event loop actual."""
        self.scheduler = self.build_scheduler()
        self.scheduler.start()
        jobs = ", ".join(job.id for job in self.scheduler.get_jobs())
        logger.info(f"Worker de sync iniciado (jobs: {jobs})")
        return self.scheduler

    def shutdown(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Worker de sync detenido")
        self.scheduler = None
