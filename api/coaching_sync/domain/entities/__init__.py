"""
Entidades del dominio.
"""
from coaching_sync.domain.entities.sync_event import OutboxEvent, IdMapping, DeadLetter

__all__ = [
    "OutboxEvent",
    "IdMapping",
    "DeadLetter",
]
