"""
Sincronización Airtable <-> Postgres.

- airtable_client: cliente HTTP síncrono (requests) con reintentos
- payloads / field_mappings: variantes tipadas y tablas de campos
- writers: aplican eventos del outbox en Airtable
- sync_service: sweep completo Airtable -> Postgres
"""
from coaching_sync.infrastructure.external.airtable_sync.airtable_client import (
    AirtableClient,
    AirtableCredentials,
)
from coaching_sync.infrastructure.external.airtable_sync.results import (
    Ok,
    PermanentErr,
    RetryableErr,
    WriteResult,
)
from coaching_sync.infrastructure.external.airtable_sync.sync_config import SyncEngineConfig

__all__ = [
    "AirtableClient",
    "AirtableCredentials",
    "Ok",
    "PermanentErr",
    "RetryableErr",
    "WriteResult",
    "SyncEngineConfig",
]
