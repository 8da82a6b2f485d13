"""
Excepción base para todas las excepciones personalizadas del servicio de sync.
"""
from typing import Optional, Dict, Any


class AppException(Exception):
    """
    Excepción base de la aplicación.
    Todas las excepciones que terminan en una respuesta HTTP heredan de esta clase;
    el handler global de main.py las serializa como {error, message, details}.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Args:
            message: Mensaje de error descriptivo
            status_code: Código de estado HTTP
            error_code: Código de error para el cliente
            details: Detalles adicionales del error
        """
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_response(self) -> Dict[str, Any]:
        """Cuerpo JSON estándar de error."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }
