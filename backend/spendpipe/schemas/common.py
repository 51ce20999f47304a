"""Response envelopes shared by the spend pipeline endpoints."""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Successful pipeline payloads are wrapped as ``{"data": ...}``."""

    data: T


class PipelineErrorDetail(BaseModel):
    """``detail`` body of a failed pipeline request; error meta is merged in as extra keys."""

    model_config = ConfigDict(extra="allow")

    error: str
    message: str
