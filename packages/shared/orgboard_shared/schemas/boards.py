"""Board schemas."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class BoardCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


class BoardUpdateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


class BoardResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    title: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BoardListResponse(BaseModel):
    data: list[BoardResponse]
