"""
Authorization policy for posts.

Everything here is a pure function of its arguments: no session, no request,
no store access.  Callers are passed in explicitly by the service layer.
"""
from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    USER = "user"
    AUTHOR = "author"
    ADMIN = "admin"


@dataclass(frozen=True)
class Caller:
    """The identity resolved for one request by the identity service."""

    user_id: int
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def can_mutate(caller_id: int | None, caller_role: Role | str | None, author_id: int) -> bool:
    """
    Return True when the caller may update or delete a post written by
    *author_id*: admins always, everyone else only for their own posts.
    """
    if caller_id is None:
        return False
    if caller_role == Role.ADMIN:
        return True
    return caller_id == author_id


def caller_can_mutate(caller: Caller | None, author_id: int) -> bool:
    if caller is None:
        return False
    return can_mutate(caller.user_id, caller.role, author_id)


def can_view(caller: Caller | None, author_id: int, is_published: bool) -> bool:
    """Drafts are visible to whoever may edit them; published posts to anyone."""
    return is_published or caller_can_mutate(caller, author_id)
