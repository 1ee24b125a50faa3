"""Request and response models for the control API."""

from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class HealthResponse(BaseModel):
    status: Literal["healthy"]


class ErrorResponse(BaseModel):
    error: str


class SuccessResponse(BaseModel):
    success: bool = True


class StartedResponse(SuccessResponse):
    pid: int


class LogEntryResponse(BaseModel):
    timestamp: str
    channel: str
    message: str


class InstanceUpdateRequest(BaseModel):
    """Editable instance fields; at least one must be given."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    name: str | None = Field(default=None, min_length=1)
    auto_restart: bool | None = None
