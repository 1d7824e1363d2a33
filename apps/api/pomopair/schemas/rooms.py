"""Data contracts for room inspection endpoints."""
from __future__ import annotations

from pydantic import BaseModel, Field


class RoomStatus(BaseModel):
    room: str = Field(..., description="Room identifier")
    occupancy: int = Field(..., ge=0, le=2, description="Participants currently in the room")
    full: bool = Field(..., description="Whether a further join would be rejected")
