"""ORM model registry: import all models so Alembic autogenerate discovers them."""

from crm_api.models.client import Client
from crm_api.models.custom_field_setting import CustomFieldSetting
from crm_api.models.import_job import ImportJob, ImportStatus, ImportType
from crm_api.models.import_mapping_template import ImportMappingTemplate
from crm_api.models.prospect import Prospect, ProspectStatus
from crm_api.models.temp_import_user import TempImportUser
from crm_api.models.user import User, UserRole

__all__ = [
    "Client",
    "CustomFieldSetting",
    "ImportJob",
    "ImportMappingTemplate",
    "ImportStatus",
    "ImportType",
    "Prospect",
    "ProspectStatus",
    "TempImportUser",
    "User",
    "UserRole",
]
