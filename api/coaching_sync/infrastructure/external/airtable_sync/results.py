"""
Resultados explícitos de un writer del outbox.

El dispatcher decide el siguiente estado del evento según el tipo de resultado:
- Ok: done
- RetryableErr: failed_retryable con backoff (o dead letter si se agotan intentos)
- PermanentErr: dead letter inmediato
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class Ok:
    external_id: Optional[str] = None
    created: bool = False
    skipped: bool = False
    detail: str = ""


@dataclass(frozen=True)
class RetryableErr:
    error: str


@dataclass(frozen=True)
class PermanentErr:
    error: str


WriteResult = Union[Ok, RetryableErr, PermanentErr]
