"""
CLI: worker del motor de sincronización.

Ejecuta el dispatcher del outbox (Postgres -> Airtable), el poll de respaldo
de usuarios y, si está habilitado, el sweep completo periódico.

Ejecución:
  python scripts/sync_worker.py            # proceso de larga duración
  python scripts/sync_worker.py --once     # procesa un lote del outbox y sale
  python scripts/sync_worker.py --drain    # vacía el outbox y sale
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from loguru import logger
from dotenv import load_dotenv

_API_ROOT = Path(__file__).resolve().parents[1]
if str(_API_ROOT) not in sys.path:
    sys.path.insert(0, str(_API_ROOT))

_REPO_ROOT = _API_ROOT.parent
load_dotenv(_API_ROOT / ".env", override=False)
load_dotenv(_REPO_ROOT / ".env", override=False)

from coaching_sync.application.use_cases.sync_worker import SyncWorker
from coaching_sync.core.config import settings
from coaching_sync.infrastructure.database.session import AsyncSessionLocal, close_db
from coaching_sync.infrastructure.external.airtable_sync.airtable_client import build_airtable_client
from coaching_sync.infrastructure.external.airtable_sync.sync_config import (
    SyncConfigError,
    SyncEngineConfig,
)


async def _run_forever(worker: SyncWorker) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: Ctrl+C llega como KeyboardInterrupt
            pass

    worker.start()
    try:
        await stop.wait()
    finally:
        worker.shutdown()


async def _run(once: bool, drain: bool) -> None:
    config = SyncEngineConfig.from_settings(settings)
    airtable = build_airtable_client(config)
    worker = SyncWorker(AsyncSessionLocal, airtable, config)
    try:
        if once:
            summary = await worker.run_outbox_once()
            logger.info(f"Lote procesado: {summary}")
        elif drain:
            summary = await worker.dispatcher.drain()
            logger.info(f"Outbox vaciado: {summary}")
        else:
            await _run_forever(worker)
    finally:
        airtable.close()
        await close_db()


def main() -> int:
    parser = argparse.ArgumentParser(description="Worker de sincronización Postgres <-> Airtable")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--once", action="store_true", help="Procesa un solo lote del outbox.")
    group.add_argument("--drain", action="store_true", help="Procesa lotes hasta vaciar el outbox.")
    args = parser.parse_args()

    logger.add(
        settings.LOG_FILE,
        rotation="500 MB",
        retention="10 days",
        level=settings.LOG_LEVEL
    )

    try:
        asyncio.run(_run(args.once, args.drain))
    except SyncConfigError as e:
        raise SystemExit(str(e))
    except KeyboardInterrupt:
        logger.info("Worker interrumpido")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
