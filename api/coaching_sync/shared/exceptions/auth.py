"""
Excepciones de autenticación para los endpoints de sincronización entrante.
"""
from coaching_sync.shared.exceptions.base import AppException


class AuthException(AppException):
    """Excepción base para errores de autenticación."""

    def __init__(self, message: str, error_code: str = "AUTH_ERROR", details=None):
        super().__init__(
            message=message,
            status_code=401,
            error_code=error_code,
            details=details
        )


class MissingSignatureException(AuthException):
    """El webhook llegó sin cabecera de firma."""

    def __init__(self, header: str = "X-Signature"):
        super().__init__(
            message="Falta la firma del webhook",
            error_code="MISSING_SIGNATURE",
            details={"header": header}
        )


class InvalidSignatureException(AuthException):
    """La firma HMAC no coincide con el cuerpo recibido."""

    def __init__(self):
        super().__init__(
            message="Firma del webhook inválida",
            error_code="INVALID_SIGNATURE"
        )


class UnauthorizedException(AuthException):
    """Secreto compartido ausente o incorrecto."""

    def __init__(self, message: str = "No autorizado"):
        super().__init__(
            message=message,
            error_code="UNAUTHORIZED"
        )
