"""
Middleware de errores no controlados.

Las AppException las resuelve el handler de main.py; aquí llega todo lo demás.
Una base de datos caída responde 503 para que Airtable Automations reintente
el webhook; cualquier otro error es un 500 genérico.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import OperationalError
from starlette.middleware.base import BaseHTTPMiddleware


def _error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": {}},
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except OperationalError:
            logger.exception(f"Base de datos no disponible en {request.method} {request.url.path}")
            return _error_response(
                status.HTTP_503_SERVICE_UNAVAILABLE,
                "DATABASE_UNAVAILABLE",
                "La base de datos no está disponible, reintentar más tarde",
            )
        except Exception:
            logger.exception(f"Error no manejado en {request.method} {request.url.path}")
            return _error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "INTERNAL_SERVER_ERROR",
                "Ha ocurrido un error interno del servidor",
            )
