from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

OperationType = Literal["reconstruct3d", "generateInfoCard", "colorize"]

OPERATION_TYPES: tuple[str, ...] = ("reconstruct3d", "generateInfoCard", "colorize")


class Reconstruct3DRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    imageBase64: str
    method: Literal["trellis", "triposr"] = "trellis"
    removeBackground: bool = True


class InfoCardMetadata(BaseModel):
    discoveryLocation: str | None = None
    excavationLayer: str | None = None
    siteName: str | None = None
    notes: str | None = None


class GenerateInfoCardRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    imageBase64: str
    metadata: InfoCardMetadata | None = None


class ColorizeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    imageBase64: str
    colorScheme: Literal["roman", "greek", "egyptian", "mesopotamian", "weathered", "original", "custom"]
    customPrompt: str | None = None


PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    "reconstruct3d": Reconstruct3DRequest,
    "generateInfoCard": GenerateInfoCardRequest,
    "colorize": ColorizeRequest,
}


def normalize_payload(op_type: str, payload: dict) -> dict:
    """Validate payload for op_type and return its compact JSON form.

    Raises KeyError for an unknown type and pydantic.ValidationError for a bad payload.
    """

    model = PAYLOAD_MODELS[op_type]
    return model.model_validate(payload).model_dump(mode="json", exclude_none=True)


class QueuedOperationOut(BaseModel):
    """Read-only snapshot of a queued operation as shown to the UI."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)

    id: str
    type: str
    payload: dict = Field(default_factory=dict)
    createdAt: datetime = Field(alias="created_at")
    retryCount: int = Field(default=0, alias="retry_count")
