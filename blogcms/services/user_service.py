"""
User service — the local registry of author profiles.

Credentials and roles belong to the identity service.  A profile only holds
what posts and comments embed about their author (name, avatar, bio), and
its existence is what lets an identity write content here.
"""
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blogcms.exceptions import Conflict, NotFound, Unauthorized
from blogcms.models import Post, User, is_record_id
from blogcms.schemas import UserCreate

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "display_name": user.display_name,
        "avatar": user.avatar,
        "bio": user.bio,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def author_summary(user: User | None) -> dict | None:
    """The public slice of a profile embedded in posts and comments."""
    if user is None:
        return None
    return {
        "id": user.id,
        "username": user.username,
        "display_name": user.display_name,
        "avatar": user.avatar,
        "bio": user.bio,
    }


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_users(db: AsyncSession) -> list[dict]:
    """Return all profiles, newest first."""
    q = select(User).order_by(User.created_at.desc(), User.id.desc())
    result = await db.execute(q)
    return [user_to_dict(u) for u in result.scalars().all()]


async def get_user(db: AsyncSession, user_id: int) -> dict:
    """
    Return the profile for *user_id* with the number of published posts it
    has authored.
    """
    user = await db.get(User, user_id) if is_record_id(user_id) else None
    if user is None:
        raise NotFound("User not found")

    count_q = (
        select(func.count())
        .select_from(Post)
        .where(Post.author_id == user_id, Post.is_published.is_(True))
    )
    data = user_to_dict(user)
    data["published_posts"] = (await db.execute(count_q)).scalar_one()
    return data


async def create_user(db: AsyncSession, data: UserCreate) -> dict:
    """
    Register a new profile.  Username and email are unique; a duplicate is
    reported as ``Conflict`` whether caught by the pre-check or by the
    database constraint.
    """
    existing = await db.execute(
        select(User.id).where((User.username == data.username) | (User.email == data.email))
    )
    if existing.first() is not None:
        raise Conflict("A user with this username or email already exists")

    user = User(
        username=data.username,
        email=data.email,
        display_name=data.display_name,
        avatar=data.avatar,
        bio=data.bio,
    )
    try:
        async with db.begin_nested():
            db.add(user)
    except IntegrityError:
        raise Conflict("A user with this username or email already exists")

    logger.info("Registered author profile id=%s username=%s", user.id, user.username)
    return user_to_dict(user)


async def require_profile(db: AsyncSession, user_id: int) -> User:
    """
    Return the profile behind an authenticated identity, or raise
    ``Unauthorized`` when the identity is unknown to this service.
    """
    user = await db.get(User, user_id) if is_record_id(user_id) else None
    if user is None:
        raise Unauthorized("Unknown user")
    return user
