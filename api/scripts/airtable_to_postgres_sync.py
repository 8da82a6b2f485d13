"""
CLI: sweep completo Airtable -> Postgres.

Uso recomendado:
  - Ejecutar como job (cron/systemd timer) o a mano tras un incidente.
  - Es seguro re-ejecutarlo: sin cambios en Airtable no modifica ninguna fila.

Variables de entorno requeridas:
  - AIRTABLE_TOKEN
  - AIRTABLE_BASE_ID
  - DATABASE_URL (o DATABASE_HOST/PORT/USER/PASSWORD/NAME)

Ejecución:
  python scripts/airtable_to_postgres_sync.py
  python scripts/airtable_to_postgres_sync.py --users-only
  python scripts/airtable_to_postgres_sync.py --no-lock
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from loguru import logger
from dotenv import load_dotenv

# Permite ejecutar este script desde cualquier cwd sin configurar PYTHONPATH.
# La carpeta "api" contiene el paquete raíz `coaching_sync/`.
_API_ROOT = Path(__file__).resolve().parents[1]
if str(_API_ROOT) not in sys.path:
    sys.path.insert(0, str(_API_ROOT))

# Cargar variables desde api/.env y desde la raíz del repo, si existen.
_REPO_ROOT = _API_ROOT.parent
load_dotenv(_API_ROOT / ".env", override=False)
load_dotenv(_REPO_ROOT / ".env", override=False)

from coaching_sync.application.use_cases.user_sync_use_cases import UserSyncUseCases
from coaching_sync.core.config import settings
from coaching_sync.infrastructure.database.session import AsyncSessionLocal, close_db
from coaching_sync.infrastructure.external.airtable_sync.airtable_client import build_airtable_client
from coaching_sync.infrastructure.external.airtable_sync.sync_config import (
    SyncConfigError,
    SyncEngineConfig,
)
from coaching_sync.infrastructure.external.airtable_sync.sync_service import AirtableToPostgresSync


async def _run(users_only: bool, use_lock: bool) -> dict:
    config = SyncEngineConfig.from_settings(settings)
    airtable = build_airtable_client(config)
    try:
        if users_only:
            async with AsyncSessionLocal() as session:
                synced = await UserSyncUseCases(session, airtable, config).sync_all_users_from_airtable()
            return {"users": synced}

        service = AirtableToPostgresSync(
            airtable,
            AsyncSessionLocal,
            config,
            use_advisory_lock=use_lock,
        )
        counts = await service.run()
        return counts.to_dict()
    finally:
        airtable.close()
        await close_db()


def main() -> int:
    parser = argparse.ArgumentParser(description="Sweep completo Airtable -> Postgres")
    parser.add_argument(
        "--users-only",
        action="store_true",
        help="Solo importa la tabla de usuarios (poll del fast-lane).",
    )
    parser.add_argument(
        "--no-lock",
        action="store_true",
        help="No tomar el advisory lock (solo para depuración local).",
    )
    args = parser.parse_args()

    logger.info("Iniciando Airtable -> Postgres sync...")
    try:
        counts = asyncio.run(_run(args.users_only, not args.no_lock))
    except SyncConfigError as e:
        raise SystemExit(str(e))

    print(json.dumps(counts, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
