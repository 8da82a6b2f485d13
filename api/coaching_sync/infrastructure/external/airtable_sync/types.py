"""
Tipos y utilidades puras para el motor de sincronizacion Airtable <-> Postgres.

Se mantienen libres de I/O para poder testearlos fácilmente.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Optional

_AIRTABLE_RECORD_ID_RE = re.compile(r"^rec[A-Za-z0-9]{14}$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EUROPEAN_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def utc_now() -> datetime:
    """Retorna la hora actual en UTC, como datetime aware."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normaliza datetime a UTC (aware).

    SQLite devuelve datetimes naive aunque la columna sea timezone=True;
    normalizamos para comparar/almacenar de forma consistente.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def today_iso() -> str:
    """Fecha de hoy (UTC) en formato YYYY-MM-DD."""
    return utc_now().date().isoformat()


def is_airtable_record_id(value: Any) -> bool:
    """True si el valor tiene la forma de un record id de Airtable (rec + 14)."""
    return isinstance(value, str) and bool(_AIRTABLE_RECORD_ID_RE.match(value))


def parse_european_date(value: Any) -> Optional[str]:
    """
    Convierte DD/MM/YYYY a ISO (YYYY-MM-DD).

    Los campos fórmula de Airtable pueden devolver fechas en formato europeo.
    Si ya viene en ISO se retorna tal cual; cualquier otro formato se deja intacto.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()[:10]
    text = str(value).strip()
    if _ISO_DATE_RE.match(text):
        return text
    match = _EUROPEAN_DATE_RE.match(text)
    if match:
        day, month, year = match.groups()
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"
    return text


def escape_formula_value(value: str) -> str:
    """Escapa backslashes y comillas dobles para usar el valor en filterByFormula."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def first_link(value: Any) -> Optional[str]:
    """Primer id de un campo link de Airtable (lista de record ids)."""
    if isinstance(value, list):
        return str(value[0]) if value else None
    if isinstance(value, str) and value:
        return value
    return None


def link_list(value: Any) -> list[str]:
    """Normaliza un campo link a lista de strings (vacía si falta)."""
    if isinstance(value, list):
        return [str(v) for v in value]
    return []


@dataclass(frozen=True)
class AirtableRecord:
    """Registro Airtable mínimo para sync."""

    record_id: str
    fields: dict[str, Any]
