"""
Board API endpoints.

GET    /api/v1/orgs/{org_id}/boards — List boards by title (member)
POST   /api/v1/orgs/{org_id}/boards — Create a board (member)
PATCH  /api/v1/boards/{board_id}    — Rename (member)
DELETE /api/v1/boards/{board_id}    — Delete (admin)
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user_id
from app.core.database import get_session
from app.services import boards as board_service
from orgboard_shared.schemas.boards import (
    BoardCreateRequest,
    BoardListResponse,
    BoardResponse,
    BoardUpdateRequest,
)
from orgboard_shared.schemas.common import MessageResponse

# Mounted under /orgs/{org_id}/boards
org_router = APIRouter()

# Mounted under /boards
router = APIRouter()


@org_router.get("", response_model=BoardListResponse)
async def list_boards(
    org_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    boards = await board_service.list_boards(org_id, user_id, session)
    return BoardListResponse(data=[BoardResponse.model_validate(b) for b in boards])


@org_router.post("", response_model=BoardResponse, status_code=201)
async def create_board(
    org_id: uuid.UUID,
    body: BoardCreateRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    board = await board_service.create_board(org_id, body.title, user_id, session)
    return BoardResponse.model_validate(board)


@router.patch("/{board_id}", response_model=BoardResponse)
async def update_board(
    board_id: uuid.UUID,
    body: BoardUpdateRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    board = await board_service.update_board(board_id, body.title, user_id, session)
    return BoardResponse.model_validate(board)


@router.delete("/{board_id}", response_model=MessageResponse)
async def delete_board(
    board_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    await board_service.delete_board(board_id, user_id, session)
    return MessageResponse(message="Board deleted")
