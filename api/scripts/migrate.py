#!/usr/bin/env python
"""
Wrapper de Alembic para las tablas del motor de sync.

Uso:
    python scripts/migrate.py upgrade            # Aplicar migraciones pendientes
    python scripts/migrate.py downgrade -1       # Revertir la última
    python scripts/migrate.py revision "desc"    # Nueva migración (autogenerate)
    python scripts/migrate.py current            # Versión actual
    python scripts/migrate.py history            # Historial

Se ejecuta siempre desde api/ para que alembic.ini y alembic/env.py resuelvan
el paquete coaching_sync.
"""
import argparse
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv


API_DIR = Path(__file__).resolve().parent.parent
load_dotenv(API_DIR / ".env", override=False)
load_dotenv(API_DIR.parent / ".env", override=False)


def run_alembic(args: list) -> int:
    """Ejecuta `alembic <args>` en api/ y retorna el código de salida."""
    cmd = ["alembic"] + args
    print(f"Ejecutando: {' '.join(cmd)}")
    return subprocess.run(cmd, cwd=API_DIR).returncode


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Migraciones de base de datos (Alembic)")
    sub = parser.add_subparsers(dest="command", required=True)

    up = sub.add_parser("upgrade", help="Aplicar migraciones")
    up.add_argument("target", nargs="?", default="head")

    down = sub.add_parser("downgrade", help="Revertir migraciones")
    down.add_argument("target", nargs="?", default="-1")

    rev = sub.add_parser("revision", help="Crear nueva migración")
    rev.add_argument("message")
    rev.add_argument("--empty", action="store_true", help="Sin autogenerate")

    sub.add_parser("current", help="Versión actual")
    sub.add_parser("history", help="Historial de migraciones")
    return parser


def main() -> int:
    args = build_parser().parse_args()

    if args.command in ("upgrade", "downgrade"):
        return run_alembic([args.command, args.target])
    if args.command == "revision":
        cmd = ["revision", "-m", args.message]
        if not args.empty:
            cmd.append("--autogenerate")
        return run_alembic(cmd)
    if args.command == "history":
        return run_alembic(["history", "--verbose"])
    return run_alembic([args.command])


if __name__ == "__main__":
    sys.exit(main())
