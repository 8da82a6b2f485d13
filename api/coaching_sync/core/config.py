"""
Settings del servicio de sincronizacion (variables de entorno y .env).

El motor de sincronizacion NO lee esta clase directamente: se construye un
SyncEngineConfig inmutable una sola vez (ver airtable_sync.sync_config) y se
inyecta por parametro en repositorios, writers y workers.
"""
import json
from typing import List
from pydantic_settings import BaseSettings
from pydantic import Field, computed_field


class Settings(BaseSettings):
    """
    Grupos:
    - App / servidor / base de datos
    - Airtable (token, base, IDs de tablas)
    - Outbox (batch, reintentos, backoff, lease)
    - Feature flags del fast-lane de usuarios y del polling completo
    - Secretos de webhooks
    """

    # Configuracion de la aplicacion
    APP_NAME: str = Field(default="Coaching Sync Engine")
    APP_VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="production")

    # Configuracion del servidor
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    # Postgres espejo de Airtable
    DATABASE_HOST: str = Field(default="localhost")
    DATABASE_PORT: int = Field(default=5432)
    DATABASE_USER: str = Field(default="coaching_user")
    DATABASE_PASSWORD: str = Field(default="coaching_pass")
    DATABASE_NAME: str = Field(default="coaching_db")

    # URL completa; tiene prioridad sobre los componentes
    DATABASE_URL: str = Field(default="")
    DB_POOL_SIZE: int = Field(default=5)
    DB_MAX_OVERFLOW: int = Field(default=10)

    # CORS (acepta lista JSON o "*" para todos los origenes)
    CORS_ORIGINS: str = Field(default="*")

    # Airtable
    AIRTABLE_TOKEN: str = Field(default="")
    AIRTABLE_BASE_ID: str = Field(default="")
    AIRTABLE_TIMEOUT_SECONDS: float = Field(default=15.0)
    AIRTABLE_MAX_RETRIES: int = Field(default=3)
    # Campo de estado del usuario (ID fldXXX o nombre; las lecturas usan field IDs)
    AIRTABLE_USER_STATUS_FIELD: str = Field(default="Status")

    # Airtable - IDs (o nombres) de tablas
    AIRTABLE_TABLE_USERS: str = Field(default="tbl6i8jw3DNSzcHgE")
    AIRTABLE_TABLE_METHODS: str = Field(default="tblB0QvbGg3zWARt4")
    AIRTABLE_TABLE_GOALS: str = Field(default="tbl6ngkyNrv0LFzGb")
    AIRTABLE_TABLE_DAYS_OF_WEEK: str = Field(default="tblS3gleG8cSlWOJ3")
    AIRTABLE_TABLE_PROGRAMS: str = Field(default="tblqW4xeCx1tprNgX")
    AIRTABLE_TABLE_PROGRAMMAPLANNING: str = Field(default="tbl2PHUaonvs1MYRx")
    AIRTABLE_TABLE_METHOD_USAGE: str = Field(default="tblktNOXF3yPPavXU")
    AIRTABLE_TABLE_HABIT_USAGE: str = Field(default="tblpWiRiseAZ7jfHm")
    AIRTABLE_TABLE_PERSONAL_GOALS: str = Field(default="Persoonlijke doelen")
    AIRTABLE_TABLE_PERSONAL_GOAL_USAGE: str = Field(default="Persoonlijke doelen gebruik")
    AIRTABLE_TABLE_OVERTUIGINGEN: str = Field(default="Overtuigingen")
    AIRTABLE_TABLE_OVERTUIGINGEN_GEBRUIK: str = Field(default="Overtuigingen gebruik")
    AIRTABLE_TABLE_PERSOONLIJKE_OVERTUIGINGEN: str = Field(default="Persoonlijke overtuigingen")
    AIRTABLE_TABLE_MINDSET_CATEGORIES: str = Field(default="Mindset categorieen")
    AIRTABLE_TABLE_TRANSLATIONS: str = Field(default="Translations")

    # Outbox
    SYNC_BATCH_SIZE: int = Field(default=20)
    SYNC_MAX_RETRIES: int = Field(default=6)
    SYNC_RETRY_BASE_SECONDS: float = Field(default=5.0)
    SYNC_RETRY_MAX_SECONDS: float = Field(default=900.0)
    SYNC_POLL_INTERVAL_SECONDS: float = Field(default=2.0)
    SYNC_CLAIM_LEASE_SECONDS: int = Field(default=300)

    # Feature flags
    USER_FAST_LANE_ENABLED: bool = Field(default=True)
    USER_WEBHOOK_SYNC_ENABLED: bool = Field(default=False)
    USER_READTHROUGH_FALLBACK_ENABLED: bool = Field(default=True)
    FULL_AIRTABLE_POLL_SYNC_ENABLED: bool = Field(default=False)

    # Intervalos de jobs del worker
    SYNC_USER_FALLBACK_POLL_SECONDS: int = Field(default=60)
    SYNC_FULL_POLL_SECONDS: int = Field(default=120)
    # Arrancar el worker dentro del proceso de la API (por defecto es un proceso aparte)
    SYNC_WORKER_IN_API: bool = Field(default=False)

    # Secretos de sincronizacion entrante
    AIRTABLE_USER_SYNC_SECRET: str = Field(default="")
    AIRTABLE_INBOUND_SYNC_SECRET: str = Field(default="")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="logs/app.log")

    @computed_field
    @property
    def effective_database_url(self) -> str:
        """
        DATABASE_URL si esta definida; si no, la URL asyncpg armada con los
        componentes DATABASE_*.
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}"
            f"@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"
        )

    class Config:
        """Configuracion de Pydantic."""
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignorar campos extra del .env


def get_cors_origins(cors_string: str) -> List[str]:
    """
    Parsea la configuracion de CORS.
    Acepta "*" para todos los origenes o una lista JSON.
    """
    if cors_string == "*":
        return ["*"]
    try:
        return json.loads(cors_string)
    except json.JSONDecodeError:
        # Si no es JSON valido, retornar como lista simple
        return [origin.strip() for origin in cors_string.split(",")]


# Instancia global de configuracion
settings = Settings()
