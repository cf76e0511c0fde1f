"""
Module: approval_kernel.models.user
Responsibility: ORM persistence for the users that submit and approve
    requests.  Backs the default SqlUserDirectory identity collaborator.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - username is globally unique (uq_users_username).

Failure modes:
    - IntegrityError on duplicate username.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import TimestampedBase

if TYPE_CHECKING:
    from approval_kernel.domain.identity import UserInfo


class UserModel(TimestampedBase):
    """
    A person who can submit approval requests or act as an approver.

    Role-based permissions live outside the kernel; the kernel only cares
    whether the user exists and who they are.
    """

    __tablename__ = "users"

    __table_args__ = (
        UniqueConstraint("username", name="uq_users_username"),
    )

    username: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<User {self.username}>"

    def to_dto(self) -> UserInfo:
        from approval_kernel.domain.identity import UserInfo

        return UserInfo(
            id=self.id,
            username=self.username,
            display_name=self.display_name,
            is_active=self.is_active,
        )
