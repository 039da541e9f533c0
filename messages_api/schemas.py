"""
Pydantic schemas for request/response bodies.

The same record shape is used in both directions: {"id": int, "message": str}.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator


class MessageRecord(BaseModel):
    """
    Wire representation of a message.

    Strict mode makes "id": "5" or a non-object body a decode failure rather
    than a silent coercion. A JSON null, for the whole body or for a field,
    leaves the zero value in place. Unknown fields are ignored; missing
    fields fall back to their zero values.
    """
    id: int = Field(default=0, description="Message identifier, assigned by the store")
    message: str = Field(default="", description="Message text")

    model_config = ConfigDict(
        strict=True,
        extra="ignore",
        json_schema_extra={
            "examples": [
                {"id": 1, "message": "Hello"}
            ]
        },
    )

    @model_validator(mode="before")
    @classmethod
    def null_body_is_empty(cls, data):
        return {} if data is None else data

    @field_validator("id", "message", mode="before")
    @classmethod
    def null_field_is_zero(cls, value, info: ValidationInfo):
        if value is None:
            return cls.model_fields[info.field_name].default
        return value


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
