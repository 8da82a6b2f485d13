"""
Data Transfer Objects (DTOs) para la capa de aplicacion.
"""
from .sync_dto import (
    WebhookUserDTO,
    UserWebhookEventDTO,
    WebhookResponseDTO,
    InboundUserRecordDTO,
    InboundSyncRequestDTO,
    InboundSyncResponseDTO,
    FullSyncResponseDTO,
    DeadLetterDTO,
    ReplayResponseDTO,
    SyncStatusDTO,
)

__all__ = [
    "WebhookUserDTO",
    "UserWebhookEventDTO",
    "WebhookResponseDTO",
    "InboundUserRecordDTO",
    "InboundSyncRequestDTO",
    "InboundSyncResponseDTO",
    "FullSyncResponseDTO",
    "DeadLetterDTO",
    "ReplayResponseDTO",
    "SyncStatusDTO",
]
