from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    ok: bool = Field(..., description="Process is alive.")


class ReadinessResponse(BaseModel):
    ready: bool = Field(..., description="True once a bridge payload has been applied to the state tree.")
    reason: str | None = Field(
        default=None,
        description="When not ready: missing_bridge_settings, terminated or not_synced.",
    )
    details: Any | None = Field(
        default=None,
        description="Optional extra details for debugging; do not rely on this shape.",
    )


class StateNodeResponse(BaseModel):
    path: str = Field(..., description="Dot-separated state path.", examples=["lights.001-lamp.action.bri"])
    type: str = Field(..., description="Value type, or `channel` for folder nodes.", examples=["number"])
    role: str = Field(..., description="Semantic role of the node.", examples=["level.brightness"])
    description: str = Field(..., description="Human readable description.")
    writable: bool = Field(False, description="True when writes are forwarded to the bridge.")
    value: Any = Field(default=None, description="Current value (null for channels).")
    ack: bool = Field(True, description="False while a user write has not been confirmed by a poll.")
    updatedAt: float = Field(..., description="Unix time of the last change.")


class StateListResponse(BaseModel):
    states: list[StateNodeResponse]


class StateWriteRequest(BaseModel):
    val: Any = Field(..., description="New value for the state.", examples=[True, 128, "255,0,0"])


class PairRequest(BaseModel):
    devicetype: str | None = Field(
        default=None,
        description="Bridge registration device type (free-form string). Defaults to DEVICETYPE.",
        examples=["hue-extended#python"],
    )


class PairResponse(BaseModel):
    ok: bool = Field(True, description="True when the bridge created a user.")
    username: str = Field(..., description="Bridge user to configure as HUE_BRIDGE_USER.")


class ErrorResponse(BaseModel):
    detail: dict[str, Any] = Field(
        ...,
        description="FastAPI error envelope with a machine-readable `error` code.",
        examples=[{"error": "link_button_not_pressed", "message": "link button not pressed"}],
    )


class UnauthorizedResponse(BaseModel):
    detail: dict[str, Any] = Field(
        ...,
        description="FastAPI error envelope. For this API, typically `{ \"detail\": {\"error\":\"unauthorized\"} }`.",
        examples=[{"error": "unauthorized"}],
    )
