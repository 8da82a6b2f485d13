"""
Casos de uso de la aplicacion.
"""
from .outbox_dispatcher import OutboxDispatcher, DispatchSummary
from .replay_use_cases import ReplayUseCases
from .user_sync_use_cases import UserSyncUseCases
from .sync_worker import SyncWorker

__all__ = ["OutboxDispatcher", "DispatchSummary", "ReplayUseCases", "UserSyncUseCases", "SyncWorker"]
