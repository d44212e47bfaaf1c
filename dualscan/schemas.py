"""Pydantic request schemas for the FastAPI endpoints."""
from typing import Any, List, Optional

from pydantic import BaseModel, field_validator

from dualscan.constants import DEFAULT_FIELD_TYPE, FIELD_TYPE_ALIASES, FIELD_TYPES


class TemplateInfoRequest(BaseModel):
    """Basic information of a template."""

    name: str
    description: Optional[str] = None
    custom_prompt: Optional[str] = None


class FieldDefinitionRequest(BaseModel):
    """One field of a submitted field list."""

    name: str
    label: str
    fieldType: str = DEFAULT_FIELD_TYPE
    required: bool = False
    options: Optional[List[str]] = None
    defaultValue: Optional[Any] = None
    placeholder: Optional[str] = None
    order: int = 0

    @field_validator("fieldType")
    @classmethod
    def check_field_type(cls, value: str) -> str:
        """Accept the supported types and their aliases (``tel`` -> ``phone``)."""
        field_type = value.strip().lower()
        field_type = FIELD_TYPE_ALIASES.get(field_type, field_type)
        if field_type not in FIELD_TYPES:
            raise ValueError(f"unsupported field type '{value}'; expected one of {', '.join(FIELD_TYPES)}")
        return field_type


class SaveFieldsRequest(BaseModel):
    """Replacement field list for a template."""

    fields: List[FieldDefinitionRequest]


class SelectWinnerRequest(BaseModel):
    """Backend whose merged candidate is adopted."""

    backend: str
