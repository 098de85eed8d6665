"""Configuration and audit models for the procure kernel."""

from procure_kernel.models.generation_log import GenerationLogModel
from procure_kernel.models.ui_config import (
    ActionPermissionModel,
    EntityTypeModel,
    FieldDefinitionModel,
    FieldPermissionModel,
    RoleModel,
    TemplateModel,
    UserModel,
)

__all__ = [
    "ActionPermissionModel",
    "EntityTypeModel",
    "FieldDefinitionModel",
    "FieldPermissionModel",
    "GenerationLogModel",
    "RoleModel",
    "TemplateModel",
    "UserModel",
]
