"""
Cliente mínimo de Airtable REST API (sin SDKs externos).

Requisitos cubiertos:
- requests
- paginación por offset
- rate-limit/backoff (429, 5xx)
- timeout acotado en cada request (un timeout es un error reintentable)
- create/update/destroy con typecast para los writers del outbox

Jerarquía de errores (los writers la traducen a resultados explícitos):
- AirtableRetryableError: timeout, conexión, 429/5xx tras agotar reintentos
- AirtableNotFoundError: 404 (record o tabla inexistente)
- AirtableRequestError: resto de 4xx (payload inválido, permisos) -> permanente
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Iterable, Optional
from urllib.parse import quote

import requests

from .types import AirtableRecord


@dataclass(frozen=True)
class AirtableCredentials:
    token: str
    base_id: str


class AirtableApiError(RuntimeError):
    """Error de integración con Airtable."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AirtableRetryableError(AirtableApiError):
    """Fallo transitorio: se puede reintentar más tarde."""


class AirtableTimeoutError(AirtableRetryableError):
    """El request superó el timeout configurado."""


class AirtableNotFoundError(AirtableApiError):
    """Airtable respondió 404."""


class AirtableRequestError(AirtableApiError):
    """Airtable rechazó el request (4xx no recuperable)."""


class AirtableClient:
    """
    Cliente HTTP de Airtable.

    Importante:
    - No hace cast de tipos de campos al leer: eso se decide en el mapeo.
    - Al escribir pide typecast=true para que Airtable coercione tipos.
    """

    def __init__(
        self,
        credentials: AirtableCredentials,
        *,
        session: Optional[requests.Session] = None,
        base_url: str = "https://api.airtable.com/v0",
        timeout_s: float = 15.0,
        max_retries: int = 3,
        min_backoff_s: float = 0.8,
        max_backoff_s: float = 20.0,
    ) -> None:
        self._creds = credentials
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._min_backoff_s = min_backoff_s
        self._max_backoff_s = max_backoff_s
        self._session = session or requests.Session()

    def close(self) -> None:
        """Cierra la sesión HTTP subyacente."""
        self._session.close()

    def _table_url(self, table: str) -> str:
        return f"{self._base_url}/{self._creds.base_id}/{quote(table, safe='')}"

    def iter_all_records(
        self,
        table: str,
        *,
        by_field_id: bool = True,
        filter_formula: Optional[str] = None,
        max_records: Optional[int] = None,
        page_size: int = 100,
    ) -> Iterable[AirtableRecord]:
        """
        Itera todos los registros de una tabla manejando paginación por 'offset'.

        - by_field_id: pide returnFieldsByFieldId para que las claves sean fldXXX
        - filter_formula: fórmula opcional (filterByFormula usa NOMBRES de campo)
        """
        url = self._table_url(table)
        offset: Optional[str] = None

        while True:
            query: list[tuple[str, Any]] = [("pageSize", page_size)]
            if by_field_id:
                query.append(("returnFieldsByFieldId", "true"))
            if filter_formula:
                query.append(("filterByFormula", filter_formula))
            if max_records is not None:
                query.append(("maxRecords", max_records))
            if offset:
                query.append(("offset", offset))

            payload = self._request_json("GET", url, query=query)
            for rec in payload.get("records") or []:
                yield self._to_record(rec)

            offset = payload.get("offset")
            if not offset:
                break

    def list_all(self, table: str, *, by_field_id: bool = True) -> list[AirtableRecord]:
        return list(self.iter_all_records(table, by_field_id=by_field_id))

    def select_first(
        self, table: str, *, filter_formula: str, by_field_id: bool = True
    ) -> Optional[AirtableRecord]:
        """Primer registro que cumple la fórmula, o None."""
        for record in self.iter_all_records(
            table, by_field_id=by_field_id, filter_formula=filter_formula, max_records=1
        ):
            return record
        return None

    def find(self, table: str, record_id: str, *, by_field_id: bool = True) -> AirtableRecord:
        """Obtiene un registro por id. Lanza AirtableNotFoundError si no existe."""
        query: list[tuple[str, Any]] = []
        if by_field_id:
            query.append(("returnFieldsByFieldId", "true"))
        payload = self._request_json("GET", f"{self._table_url(table)}/{record_id}", query=query)
        return self._to_record(payload)

    def create(
        self, table: str, fields: dict[str, Any], *, by_field_id: bool = True
    ) -> AirtableRecord:
        body = {"fields": fields, "typecast": True, "returnFieldsByFieldId": by_field_id}
        payload = self._request_json("POST", self._table_url(table), body=body)
        return self._to_record(payload)

    def update(
        self, table: str, record_id: str, fields: dict[str, Any], *, by_field_id: bool = True
    ) -> AirtableRecord:
        """PATCH: solo toca los campos enviados."""
        body = {"fields": fields, "typecast": True, "returnFieldsByFieldId": by_field_id}
        payload = self._request_json("PATCH", f"{self._table_url(table)}/{record_id}", body=body)
        return self._to_record(payload)

    def destroy(self, table: str, record_id: str) -> None:
        self._request_json("DELETE", f"{self._table_url(table)}/{record_id}")

    @staticmethod
    def _to_record(rec: dict[str, Any]) -> AirtableRecord:
        rec_id = rec.get("id")
        if not rec_id:
            # Caso raro; preferimos fallar temprano y visible.
            raise AirtableApiError("Airtable devolvió un record sin 'id'")
        return AirtableRecord(record_id=rec_id, fields=rec.get("fields") or {})

    def _request_json(
        self,
        method: str,
        url: str,
        *,
        query: Optional[list[tuple[str, Any]]] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Request HTTP con backoff para 429/5xx.

        Estrategia:
        - 429: respeta Retry-After si existe, si no exponencial con jitter simple.
        - 5xx: exponencial con jitter.
        - timeout / conexión: error reintentable inmediato (lo reintenta el outbox).
        - 404: AirtableNotFoundError.
        - 4xx (no 429): error inmediato no recuperable.
        """
        headers = {
            "Authorization": f"Bearer {self._creds.token}",
            "Content-Type": "application/json",
        }

        for attempt in range(self._max_retries + 1):
            try:
                resp = self._session.request(
                    method=method,
                    url=url,
                    params=query,
                    json=body,
                    headers=headers,
                    timeout=self._timeout_s,
                )
            except requests.Timeout as e:
                raise AirtableTimeoutError(
                    f"Timeout ({self._timeout_s}s) en {method} {url}"
                ) from e
            except requests.ConnectionError as e:
                raise AirtableRetryableError(f"Error de conexión con Airtable: {e}") from e

            if 200 <= resp.status_code < 300:
                return resp.json() if resp.content else {}

            # Errores recuperables
            if resp.status_code == 429 or 500 <= resp.status_code < 600:
                if attempt >= self._max_retries:
                    raise AirtableRetryableError(
                        f"Airtable error {resp.status_code} tras {attempt} reintentos: {resp.text}",
                        status_code=resp.status_code,
                    )

                retry_after = resp.headers.get("Retry-After")
                if retry_after:
                    try:
                        sleep_s = float(retry_after)
                    except ValueError:
                        sleep_s = self._min_backoff_s
                else:
                    # Exponencial simple + jitter proporcional
                    base = min(self._max_backoff_s, self._min_backoff_s * (2**attempt))
                    sleep_s = base + (0.15 * base)

                time.sleep(sleep_s)
                continue

            if resp.status_code == 404:
                raise AirtableNotFoundError(
                    f"Airtable 404 en {method} {url}: {resp.text}", status_code=404
                )

            # Errores no recuperables
            raise AirtableRequestError(
                f"Airtable request falló {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )

        raise AirtableRetryableError(f"Airtable sin respuesta válida para {method} {url}")


def build_airtable_client(config) -> AirtableClient:
    """
    Constructor "oficial" del cliente a partir de SyncEngineConfig.

    Lanza SyncConfigError si faltan AIRTABLE_TOKEN o AIRTABLE_BASE_ID.
    """
    config.require_airtable()
    return AirtableClient(
        AirtableCredentials(token=config.airtable_token, base_id=config.airtable_base_id),
        timeout_s=config.airtable_timeout_seconds,
        max_retries=config.airtable_max_retries,
    )
