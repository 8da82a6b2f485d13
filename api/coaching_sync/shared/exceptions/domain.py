"""
Excepciones relacionadas con la lógica de dominio del motor de sync.
"""
from typing import Any

from coaching_sync.shared.exceptions.base import AppException


class DomainException(AppException):
    """Excepción base para errores de dominio."""

    def __init__(self, message: str, error_code: str = "DOMAIN_ERROR", details=None):
        super().__init__(
            message=message,
            status_code=400,
            error_code=error_code,
            details=details
        )


class EntityNotFoundException(DomainException):
    """Excepción cuando no se encuentra una entidad."""

    def __init__(self, entity_name: str, entity_id: Any):
        super().__init__(
            message=f"{entity_name} con ID {entity_id} no encontrado",
            error_code="ENTITY_NOT_FOUND",
            details={"entity": entity_name, "id": str(entity_id)}
        )
        self.status_code = 404


class ValidationException(DomainException):
    """Excepción para errores de validación (payload de outbox o webhook)."""

    def __init__(self, message: str, field: str = None):
        details = {"field": field} if field else None
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details=details
        )


class FeatureDisabledException(AppException):
    """El flag que habilita el endpoint está apagado."""

    def __init__(self, feature: str):
        super().__init__(
            message=f"La funcionalidad '{feature}' está deshabilitada",
            status_code=503,
            error_code="FEATURE_DISABLED",
            details={"feature": feature}
        )


class SyncNotConfiguredException(AppException):
    """Falta configuración obligatoria (secreto, credenciales)."""

    def __init__(self, setting: str):
        super().__init__(
            message=f"Sincronización no configurada: falta {setting}",
            status_code=500,
            error_code="SYNC_NOT_CONFIGURED",
            details={"setting": setting}
        )
