"""
Identity port (``approval_kernel.domain.identity``).

The kernel needs only to know whether a user exists and what to call
them.  Role-based access control is the caller's concern; the kernel's
own authorization rule is "is this the expected approver of the current
level".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol, runtime_checkable
from uuid import UUID


@dataclass(frozen=True)
class UserInfo:
    """Minimal identity DTO."""

    id: UUID
    username: str
    display_name: str
    is_active: bool = True


@runtime_checkable
class UserDirectory(Protocol):
    """Pluggable interface for user identity lookups."""

    def user_exists(self, user_id: UUID) -> bool:
        """Return True if the user exists."""
        ...

    def find_user(self, user_id: UUID) -> UserInfo | None:
        """Return the user, or None."""
        ...

    def find_users(self, user_ids: Iterable[UUID]) -> dict[UUID, UserInfo]:
        """Batch lookup; missing ids are absent from the result."""
        ...

    def find_user_by_username(self, username: str) -> UserInfo | None:
        """Return the user with this username, or None."""
        ...
