"""Base schemas for the application."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseSchema(BaseModel):
    """Base schema class with common configuration."""
    model_config = ConfigDict(from_attributes=True)


class CamelSchema(BaseSchema):
    """Schema exchanged with chat clients, which speak camelCase."""
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)


class BaseModelSchema(CamelSchema):
    """Base schema for database models."""
    id: UUID
    created_at: datetime


class ErrorResponse(BaseSchema):
    """Error body returned for every non-2xx response."""
    code: str
    cause: str
