"""
Constantes del motor de sincronización.
"""
from enum import Enum


class OutboxStatus(str, Enum):
    """Estados de un evento del outbox."""
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DONE = "done"
    FAILED_RETRYABLE = "failed_retryable"
    DEAD_LETTERED = "dead_lettered"


class EventType(str, Enum):
    """Operación que se replica hacia Airtable."""
    UPSERT = "upsert"
    DELETE = "delete"


class InboxSource(str, Enum):
    """Orígenes de eventos entrantes con deduplicación."""
    AIRTABLE_USER_WEBHOOK = "airtable_user_webhook"
    AIRTABLE_INBOUND = "airtable_inbound"
    AIRTABLE_READTHROUGH = "airtable_readthrough"


# Prioridades del outbox (menor = antes)
DEFAULT_PRIORITY = 100
REPLAY_PRIORITY = 50
USER_PRIORITY = 10

# Identificador del advisory lock de Postgres que serializa sweeps completos
FULL_SYNC_ADVISORY_LOCK_ID = 48151623

# Mapeo de estado de usuario Airtable -> Postgres
AIRTABLE_USER_STATUS_MAP = {
    "Actief": "active",
    "Geen toegang": "disabled",
}
