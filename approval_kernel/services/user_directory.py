"""
SqlUserDirectory -- default identity collaborator backed by the users table.

Implements the ``UserDirectory`` protocol from ``domain/identity.py``.
Read-only; callers that keep users elsewhere inject their own directory
into ``ApprovalCommandService`` and ``ApprovalSelector``.
"""

from __future__ import annotations

from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.identity import UserInfo
from approval_kernel.models.user import UserModel


class SqlUserDirectory:
    """UserDirectory over ``UserModel`` rows in the caller's session."""

    def __init__(self, session: Session):
        self._session = session

    def user_exists(self, user_id: UUID) -> bool:
        return self._session.get(UserModel, user_id) is not None

    def find_user(self, user_id: UUID) -> UserInfo | None:
        model = self._session.get(UserModel, user_id)
        return model.to_dto() if model is not None else None

    def find_users(self, user_ids: Iterable[UUID]) -> dict[UUID, UserInfo]:
        ids = set(user_ids)
        if not ids:
            return {}
        rows = self._session.scalars(
            select(UserModel).where(UserModel.id.in_(ids))
        ).all()
        return {row.id: row.to_dto() for row in rows}

    def find_user_by_username(self, username: str) -> UserInfo | None:
        model = self._session.scalars(
            select(UserModel).where(UserModel.username == username)
        ).one_or_none()
        return model.to_dto() if model is not None else None
