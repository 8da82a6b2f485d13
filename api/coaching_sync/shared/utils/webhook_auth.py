"""
Verificación de firmas HMAC-SHA256 de webhooks entrantes.

La firma se calcula sobre los bytes EXACTOS del cuerpo (no sobre el JSON
re-serializado). Se acepta el hex "pelado" o con prefijo "sha256=".
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Optional

_PREFIX = "sha256="


def compute_signature(raw_body: bytes, secret: str) -> str:
    """HMAC-SHA256(secret, body) en hex."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_hmac_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    True si `signature` corresponde al cuerpo con el secreto dado.

    Usa comparación en tiempo constante (hmac.compare_digest) para no filtrar
    información por timing.
    """
    if not signature or not secret:
        return False

    provided = signature.strip()
    if provided.lower().startswith(_PREFIX):
        provided = provided[len(_PREFIX):]

    expected = compute_signature(raw_body, secret)
    # compare_digest requiere mismo tipo: str vs str (solo ASCII)
    try:
        return hmac.compare_digest(provided.lower(), expected)
    except TypeError:
        return False
