"""
Configuración de fixtures para pytest.

Cada test usa su propia base SQLite (archivo temporal) creada desde
Base.metadata, y un cliente Airtable en memoria.
"""
import os

# Antes de importar coaching_sync: el engine global no debe apuntar a Postgres
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("LOG_FILE", os.devnull)

import itertools
import re
from collections import defaultdict
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from coaching_sync.infrastructure.database.session import Base
from coaching_sync.infrastructure.external.airtable_sync.airtable_client import AirtableNotFoundError
from coaching_sync.infrastructure.external.airtable_sync.field_mappings import USER_FIELDS
from coaching_sync.infrastructure.external.airtable_sync.sync_config import SyncEngineConfig
from coaching_sync.infrastructure.external.airtable_sync.types import AirtableRecord

import coaching_sync.infrastructure.database  # noqa: F401  (registra los modelos)


class FakeAirtableClient:
    """
    Cliente Airtable en memoria con la misma interfaz que AirtableClient.

    - tables: {tabla: {record_id: fields}}
    - calls: historial (método, tabla, record_id, fields)
    - fail_next(método, excepción): la próxima llamada a ese método falla
    """

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self.calls: List[tuple] = []
        self._failures: Dict[str, List[Exception]] = defaultdict(list)
        self._ids = itertools.count(1)

    def new_record_id(self) -> str:
        return f"rec{next(self._ids):014d}"

    def add_record(self, table: str, fields: Dict[str, Any], record_id: Optional[str] = None) -> str:
        record_id = record_id or self.new_record_id()
        self.tables[table][record_id] = dict(fields)
        return record_id

    def fail_next(self, method: str, exc: Exception) -> None:
        self._failures[method].append(exc)

    def _maybe_fail(self, method: str) -> None:
        if self._failures[method]:
            raise self._failures[method].pop(0)

    def calls_for(self, method: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == method]

    # Interfaz de AirtableClient

    def iter_all_records(self, table, *, by_field_id=True, filter_formula=None, max_records=None, page_size=100):
        self._maybe_fail("list")
        for record_id, fields in list(self.tables[table].items()):
            yield AirtableRecord(record_id=record_id, fields=dict(fields))

    def list_all(self, table, *, by_field_id=True):
        return list(self.iter_all_records(table, by_field_id=by_field_id))

    def select_first(self, table, *, filter_formula, by_field_id=True):
        self._maybe_fail("select")
        self.calls.append(("select", table, None, filter_formula))
        match = re.search(r'"(.*)"', filter_formula)
        wanted = match.group(1) if match else None
        for record_id, fields in self.tables[table].items():
            if fields.get(USER_FIELDS["email"]) == wanted:
                return AirtableRecord(record_id=record_id, fields=dict(fields))
        return None

    def find(self, table, record_id, *, by_field_id=True):
        self._maybe_fail("find")
        self.calls.append(("find", table, record_id, None))
        if record_id not in self.tables[table]:
            raise AirtableNotFoundError(f"{record_id} no existe", status_code=404)
        return AirtableRecord(record_id=record_id, fields=dict(self.tables[table][record_id]))

    def create(self, table, fields, *, by_field_id=True):
        self._maybe_fail("create")
        record_id = self.add_record(table, fields)
        self.calls.append(("create", table, record_id, dict(fields)))
        return AirtableRecord(record_id=record_id, fields=dict(fields))

    def update(self, table, record_id, fields, *, by_field_id=True):
        self._maybe_fail("update")
        self.calls.append(("update", table, record_id, dict(fields)))
        if record_id not in self.tables[table]:
            raise AirtableNotFoundError(f"{record_id} no existe", status_code=404)
        self.tables[table][record_id].update(fields)
        return AirtableRecord(record_id=record_id, fields=dict(self.tables[table][record_id]))

    def destroy(self, table, record_id):
        self._maybe_fail("destroy")
        self.calls.append(("destroy", table, record_id, None))
        if record_id not in self.tables[table]:
            raise AirtableNotFoundError(f"{record_id} no existe", status_code=404)
        del self.tables[table][record_id]

    def close(self) -> None:
        pass


@pytest.fixture(scope="function")
async def engine(tmp_path):
    """Engine SQLite en un archivo temporal con todas las tablas creadas."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Sesión de base de datos para tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def sync_config() -> SyncEngineConfig:
    return SyncEngineConfig(
        airtable_token="pat-test",
        airtable_base_id="appTest",
        batch_size=10,
        max_retries=3,
        retry_base_seconds=5.0,
        retry_max_seconds=60.0,
        user_webhook_enabled=True,
        user_sync_secret="webhook-secret",
        inbound_sync_secret="inbound-secret",
    )


@pytest.fixture
def fake_airtable() -> FakeAirtableClient:
    return FakeAirtableClient()
