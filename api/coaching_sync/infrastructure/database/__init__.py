"""
Configuración de base de datos.

Importa todos los modelos para que se registren con Base
antes de crear las tablas.
"""
from coaching_sync.infrastructure.database.models import (
    SyncOutboxModel,
    AirtableIdMapModel,
    SyncInboxEventModel,
    SyncDeadLetterModel,
    UserModel,
    ReferenceMethodModel,
    ReferenceGoalModel,
    ReferenceDayModel,
    ReferenceOvertuigingModel,
    ReferenceMindsetCategoryModel,
    TranslationModel,
    PersonalGoalModel,
    ProgramModel,
    ProgramScheduleModel,
    MethodUsageModel,
    HabitUsageModel,
    PersonalGoalUsageModel,
    OvertuigingUsageModel,
)
