"""
Configuración inmutable del motor de sincronización.

Se resuelve UNA vez al arrancar el proceso (API o worker) a partir de Settings
y se pasa por parámetro a repositorios, writers y servicios. Ningún componente
del motor lee variables de entorno por su cuenta.

Este módulo no realiza I/O: solo define configuración.
"""

from __future__ import annotations

from dataclasses import dataclass


class SyncConfigError(RuntimeError):
    """Error de configuración del pipeline."""


@dataclass(frozen=True)
class AirtableTables:
    """IDs (o nombres) de las tablas Airtable que participan en el sync."""

    users: str = "tbl6i8jw3DNSzcHgE"
    methods: str = "tblB0QvbGg3zWARt4"
    goals: str = "tbl6ngkyNrv0LFzGb"
    days_of_week: str = "tblS3gleG8cSlWOJ3"
    programs: str = "tblqW4xeCx1tprNgX"
    programmaplanning: str = "tbl2PHUaonvs1MYRx"
    method_usage: str = "tblktNOXF3yPPavXU"
    habit_usage: str = "tblpWiRiseAZ7jfHm"
    personal_goals: str = "Persoonlijke doelen"
    personal_goal_usage: str = "Persoonlijke doelen gebruik"
    overtuigingen: str = "Overtuigingen"
    overtuigingen_gebruik: str = "Overtuigingen gebruik"
    persoonlijke_overtuigingen: str = "Persoonlijke overtuigingen"
    mindset_categories: str = "Mindset categorieen"
    translations: str = "Translations"


@dataclass(frozen=True)
class SyncEngineConfig:
    """
    Parámetros del outbox, del fast-lane de usuarios y del sweep.

    - max_retries: intentos fallidos tolerados antes de mover a dead letter
    - retry_base_seconds / retry_max_seconds: backoff exponencial acotado
    - claim_lease_seconds: tras este tiempo un evento in_flight abandonado
      (worker caído) vuelve a ser reclamable
    """

    airtable_token: str = ""
    airtable_base_id: str = ""
    airtable_timeout_seconds: float = 15.0
    airtable_max_retries: int = 3
    user_status_field: str = "Status"
    tables: AirtableTables = AirtableTables()

    batch_size: int = 20
    max_retries: int = 6
    retry_base_seconds: float = 5.0
    retry_max_seconds: float = 900.0
    poll_interval_seconds: float = 2.0
    claim_lease_seconds: int = 300

    user_fast_lane_enabled: bool = True
    user_webhook_enabled: bool = False
    user_readthrough_enabled: bool = True
    full_poll_sync_enabled: bool = False
    user_fallback_poll_seconds: int = 60
    full_poll_seconds: int = 120

    user_sync_secret: str = ""
    inbound_sync_secret: str = ""

    def backoff_seconds(self, attempt_count: int) -> float:
        """Espera antes del siguiente intento: base * 2^(n-1), con tope."""
        exponent = max(attempt_count - 1, 0)
        return min(self.retry_max_seconds, self.retry_base_seconds * (2**exponent))

    def require_airtable(self) -> None:
        missing = [
            name
            for name, value in (
                ("AIRTABLE_TOKEN", self.airtable_token),
                ("AIRTABLE_BASE_ID", self.airtable_base_id),
            )
            if not value
        ]
        if missing:
            raise SyncConfigError(
                f"Faltan variables de entorno obligatorias: {', '.join(missing)}"
            )

    @classmethod
    def from_settings(cls, settings) -> "SyncEngineConfig":
        """Construye la configuración desde coaching_sync.core.config.Settings."""
        tables = AirtableTables(
            users=settings.AIRTABLE_TABLE_USERS,
            methods=settings.AIRTABLE_TABLE_METHODS,
            goals=settings.AIRTABLE_TABLE_GOALS,
            days_of_week=settings.AIRTABLE_TABLE_DAYS_OF_WEEK,
            programs=settings.AIRTABLE_TABLE_PROGRAMS,
            programmaplanning=settings.AIRTABLE_TABLE_PROGRAMMAPLANNING,
            method_usage=settings.AIRTABLE_TABLE_METHOD_USAGE,
            habit_usage=settings.AIRTABLE_TABLE_HABIT_USAGE,
            personal_goals=settings.AIRTABLE_TABLE_PERSONAL_GOALS,
            personal_goal_usage=settings.AIRTABLE_TABLE_PERSONAL_GOAL_USAGE,
            overtuigingen=settings.AIRTABLE_TABLE_OVERTUIGINGEN,
            overtuigingen_gebruik=settings.AIRTABLE_TABLE_OVERTUIGINGEN_GEBRUIK,
            persoonlijke_overtuigingen=settings.AIRTABLE_TABLE_PERSOONLIJKE_OVERTUIGINGEN,
            mindset_categories=settings.AIRTABLE_TABLE_MINDSET_CATEGORIES,
            translations=settings.AIRTABLE_TABLE_TRANSLATIONS,
        )
        return cls(
            airtable_token=settings.AIRTABLE_TOKEN,
            airtable_base_id=settings.AIRTABLE_BASE_ID,
            airtable_timeout_seconds=settings.AIRTABLE_TIMEOUT_SECONDS,
            airtable_max_retries=settings.AIRTABLE_MAX_RETRIES,
            user_status_field=settings.AIRTABLE_USER_STATUS_FIELD,
            tables=tables,
            batch_size=settings.SYNC_BATCH_SIZE,
            max_retries=settings.SYNC_MAX_RETRIES,
            retry_base_seconds=settings.SYNC_RETRY_BASE_SECONDS,
            retry_max_seconds=settings.SYNC_RETRY_MAX_SECONDS,
            poll_interval_seconds=settings.SYNC_POLL_INTERVAL_SECONDS,
            claim_lease_seconds=settings.SYNC_CLAIM_LEASE_SECONDS,
            user_fast_lane_enabled=settings.USER_FAST_LANE_ENABLED,
            user_webhook_enabled=settings.USER_WEBHOOK_SYNC_ENABLED,
            user_readthrough_enabled=settings.USER_READTHROUGH_FALLBACK_ENABLED,
            full_poll_sync_enabled=settings.FULL_AIRTABLE_POLL_SYNC_ENABLED,
            user_fallback_poll_seconds=settings.SYNC_USER_FALLBACK_POLL_SECONDS,
            full_poll_seconds=settings.SYNC_FULL_POLL_SECONDS,
            user_sync_secret=settings.AIRTABLE_USER_SYNC_SECRET,
            inbound_sync_secret=settings.AIRTABLE_INBOUND_SYNC_SECRET,
        )
