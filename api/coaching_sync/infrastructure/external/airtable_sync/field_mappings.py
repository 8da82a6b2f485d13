"""
Tablas estáticas de mapeo: campo canónico (snake_case) -> campo Airtable.

Se usan field IDs (fldXXX) siempre que se conocen: sobreviven a renombres que
hacen usuarios no técnicos en Airtable. Las tablas cuyo esquema no tiene IDs
documentados se leen/escriben por NOMBRE de campo (by_field_id=False).

Nota: filterByFormula de Airtable solo acepta NOMBRES de campo; por eso se
mantiene USER_FORMULA_FIELDS aparte.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


USER_FIELDS: Mapping[str, str] = MappingProxyType({
    "name": "fldIK4uXpJluMZwEg",              # Naam
    "email": "fldybwT82FkYEDN2j",             # E-mailadres
    "password_hash": "fldjzJzy8mvpU39Jz",     # Paswoord Hash
    "last_login": "fldMlP3KCqMwJeXbN",        # Laatste login
    "role": "fldu0CiOBgfDlZ7HI",              # Rol
    "language_code": "fldMQEv7JI5PjNeyk",     # Taalcode
    "bonus_points": "fldnTqsjBrzV37WPG",      # Bonus Punten
    "current_streak": "fldDsfIZH929xN30H",    # Huidige Streak
    "longest_streak": "fldUI14lfcoJAI329",    # Langste Streak
    "last_active_date": "fldwl4wC7pT4hKZVN",  # Laatste Actieve Dag
    "badges": "fldMbIUw4uzjNKYy9",            # Badges (JSON en texto largo)
    "level": "fldBp9BHyhbiGxK8V",             # Niveau
})

USER_FORMULA_FIELDS: Mapping[str, str] = MappingProxyType({
    "email": "E-mailadres",
})

PROGRAM_FIELDS: Mapping[str, str] = MappingProxyType({
    "program_id": "fldKHAHbREuKbbi1N",        # Programma ID (fórmula, nombre visible)
    "user_id": "fldDc1mJUjBl2y7Hy",           # Gebruiker
    "start_date": "fldY5UGS0XSd1eUxu",        # Startdatum
    "duration": "fld3mrRTtqPX2a1fX",          # Duur van programma
    "end_date": "fld2zTiRAKOXTenP4",          # Einddatum Programma (fórmula)
    "days_of_week": "fldC9mH8v5UjLSPVU",      # Dagen van de week
    "goals": "fldo1Lc26dqEkUkwU",             # Doelstellingen
    "methods": "fldvcpSF78ATEk12U",           # Mentale methode
    "notes": "fldAUf1ENHtF8NRPl",             # Notities
    # Sin field ID documentado: Airtable acepta el nombre al escribir.
    "status": "Status",
    "creation_type": "Type creatie",
    "overtuigingen": "Overtuigingen",
})

PROGRAMMAPLANNING_FIELDS: Mapping[str, str] = MappingProxyType({
    "planning_id": "fldufZbBLil7jDKnj",       # Planning ID
    "program_id": "fldTPzVYhmSBxYRa3",        # Mentale Fitnessprogramma
    "date": "fldvqnZDdjaVxB25H",              # Datum
    "day_of_week": "fldxC8uxRqMdS7InU",       # Dag van de week
    "session_description": "fldnY9fKqbItJVxel",
    "methods": "fldxQn8r2ySIFs4pg",           # Beoogde methodes
    "goals": "fld2Xyx6dzgSMR7Yy",             # Doelstelling(en)
    "method_usage": "fldoxGlLYZ5NI60hl",      # Methodegebruik
    "notes": "fld28cHcjefZFQr9P",             # Opmerkingen
})

METHOD_USAGE_FIELDS: Mapping[str, str] = MappingProxyType({
    "user_id": "fldlJtJOwZ4poOcoN",
    "method_id": "fldPyWglLXgXVO0ru",
    "program_id": "fld18WcaPR8nXNr4a",
    "program_schedule_id": "fldVyFTiTqVZ3BVoH",
    "used_at": "fldvUGcgnwuux1bvi",
    "remark": "fldpskQnKFWDFGRFk",
})

HABIT_USAGE_FIELDS: Mapping[str, str] = MappingProxyType({
    "user_id": "fld0kGrTAfzCg35Zb",
    "method_id": "fldXY6F1q5UM4e148",
    "date": "fldL34wbT2NxYPUKh",
})

PERSONAL_GOAL_FIELDS: Mapping[str, str] = MappingProxyType({
    "user_id": "Gebruiker",
    "name": "Naam",
    "description": "Beschrijving",
    "status": "Status",
    "schedule_days": "Planning dagen",
})

PERSONAL_GOAL_USAGE_FIELDS: Mapping[str, str] = MappingProxyType({
    "user_id": "Gebruiker",
    "personal_goal_id": "Persoonlijk doel",
    "date": "Datum",
})

OVERTUIGING_USAGE_FIELDS: Mapping[str, str] = MappingProxyType({
    "user_id": "Gebruiker",
    "overtuiging_id": "Overtuiging",
    "program_id": "Mentale Fitnessprogramma",
    "date": "Datum",
})

PERSOONLIJKE_OVERTUIGING_FIELDS: Mapping[str, str] = MappingProxyType({
    "user_id": "Gebruiker",
    "name": "Naam",
    "status": "Status",
    "completed_date": "Datum afgerond",
    "program_id": "Mentale Fitnessprogramma",
})

TRANSLATION_FIELDS: Mapping[str, str] = MappingProxyType({
    "key": "Key",
    "nl": "nl",
    "fr": "fr",
    "en": "en",
    "context": "Context",
})


@dataclass(frozen=True)
class EntityFieldTable:
    """
    Layout Airtable de un tipo de entidad del outbox.

    - table_key: atributo de AirtableTables con el ID/nombre de la tabla
    - fields: campo canónico -> campo Airtable
    - links: campos canónicos que son un único record id y se envían como [id]
    - by_field_id: si las claves de `fields` son IDs (True) o nombres (False)
    """

    table_key: str
    fields: Mapping[str, str]
    links: frozenset[str] = field(default_factory=frozenset)
    by_field_id: bool = True


ENTITY_FIELD_TABLES: Mapping[str, EntityFieldTable] = MappingProxyType({
    "program": EntityFieldTable(
        table_key="programs",
        fields=PROGRAM_FIELDS,
        links=frozenset({"user_id"}),
    ),
    "program_schedule": EntityFieldTable(
        table_key="programmaplanning",
        fields=PROGRAMMAPLANNING_FIELDS,
        links=frozenset({"program_id", "day_of_week"}),
    ),
    "method_usage": EntityFieldTable(
        table_key="method_usage",
        fields=METHOD_USAGE_FIELDS,
        links=frozenset({"user_id", "method_id", "program_id", "program_schedule_id"}),
    ),
    "habit_usage": EntityFieldTable(
        table_key="habit_usage",
        fields=HABIT_USAGE_FIELDS,
        links=frozenset({"user_id", "method_id"}),
    ),
    "personal_goal": EntityFieldTable(
        table_key="personal_goals",
        fields=PERSONAL_GOAL_FIELDS,
        links=frozenset({"user_id"}),
        by_field_id=False,
    ),
    "personal_goal_usage": EntityFieldTable(
        table_key="personal_goal_usage",
        fields=PERSONAL_GOAL_USAGE_FIELDS,
        links=frozenset({"user_id", "personal_goal_id"}),
        by_field_id=False,
    ),
    "overtuiging_usage": EntityFieldTable(
        table_key="overtuigingen_gebruik",
        fields=OVERTUIGING_USAGE_FIELDS,
        links=frozenset({"user_id", "overtuiging_id", "program_id"}),
        by_field_id=False,
    ),
    "persoonlijke_overtuiging": EntityFieldTable(
        table_key="persoonlijke_overtuigingen",
        fields=PERSOONLIJKE_OVERTUIGING_FIELDS,
        links=frozenset({"user_id", "program_id"}),
        by_field_id=False,
    ),
    "user": EntityFieldTable(
        table_key="users",
        fields=USER_FIELDS,
    ),
})

# Campos que referencian OTRA entidad del outbox: se resuelven vía IdentifierMapper.
REFERENCE_FIELDS: Mapping[str, str] = MappingProxyType({
    "program_id": "program",
    "program_schedule_id": "program_schedule",
    "personal_goal_id": "personal_goal",
})


def table_for(entity_type: str) -> EntityFieldTable:
    try:
        return ENTITY_FIELD_TABLES[entity_type]
    except KeyError:
        raise KeyError(f"Tipo de entidad sin layout Airtable: {entity_type}") from None
