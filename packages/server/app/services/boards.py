"""
Board service — boards are scoped to exactly one organization.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import NotFound, ValidationFailed, classify_storage_error
from app.core.permissions import require_permission
from app.models.board import Board
from app.models.organization import Organization

from orgboard_shared.schemas.common import OrgRole

log = structlog.get_logger()


def _clean_title(title: str) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationFailed("Board title is required")
    return title


async def _get_board(board_id: uuid.UUID, session: AsyncSession) -> Board:
    try:
        result = await session.execute(select(Board).where(Board.id == board_id))
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="board.load") from exc
    board = result.scalar_one_or_none()
    if not board:
        raise NotFound("Board not found")
    return board


async def create_board(
    organization_id: uuid.UUID,
    title: str,
    requester_id: uuid.UUID,
    session: AsyncSession,
) -> Board:
    title = _clean_title(title)
    try:
        org = await session.execute(
            select(Organization.id).where(Organization.id == organization_id)
        )
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="board.create") from exc
    if org.first() is None:
        raise NotFound("Organization not found")
    await require_permission(organization_id, requester_id, OrgRole.MEMBER, session)

    board = Board(organization_id=organization_id, title=title)
    session.add(board)
    try:
        await session.flush()
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="board.create") from exc

    log.info("board.created", board_id=str(board.id), org_id=str(organization_id))
    return board


async def list_boards(
    organization_id: uuid.UUID, requester_id: uuid.UUID, session: AsyncSession
) -> list[Board]:
    """Boards of an organization ordered by title."""
    await require_permission(organization_id, requester_id, OrgRole.MEMBER, session)
    try:
        result = await session.execute(
            select(Board)
            .where(Board.organization_id == organization_id)
            .order_by(Board.title, Board.created_at)
        )
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="board.list") from exc
    return list(result.scalars().all())


async def update_board(
    board_id: uuid.UUID, title: str, requester_id: uuid.UUID, session: AsyncSession
) -> Board:
    title = _clean_title(title)
    board = await _get_board(board_id, session)
    await require_permission(board.organization_id, requester_id, OrgRole.MEMBER, session)

    board.title = title
    session.add(board)
    try:
        await session.flush()
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="board.update") from exc

    log.info("board.updated", board_id=str(board.id))
    return board


async def delete_board(
    board_id: uuid.UUID, requester_id: uuid.UUID, session: AsyncSession
) -> None:
    board = await _get_board(board_id, session)
    await require_permission(board.organization_id, requester_id, OrgRole.ADMIN, session)
    try:
        await session.delete(board)
        await session.flush()
    except SQLAlchemyError as exc:
        raise classify_storage_error(exc, action="board.delete") from exc

    log.info("board.deleted", board_id=str(board_id), org_id=str(board.organization_id))
