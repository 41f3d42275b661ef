"""
Category service — admin-managed classification of posts.

Deleting a category that posts still reference is rejected with
``Conflict``; posts are never re-homed or orphaned implicitly.  The
``RESTRICT`` foreign key on ``posts.category_id`` backs the check up at the
database level.
"""
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blogcms.exceptions import Conflict, NotFound, ValidationError
from blogcms.models import Category, Post, is_record_id
from blogcms.schemas import CategoryCreate, CategoryUpdate

logger = logging.getLogger(__name__)


def _category_to_dict(category: Category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "color": category.color,
        "description": category.description,
        "created_at": category.created_at.isoformat() if category.created_at else None,
    }


def _clean_fields(fields: dict) -> dict:
    """Strip text fields and reject blank name or color."""
    errors: dict[str, str] = {}
    cleaned = dict(fields)
    for field in ("name", "color"):
        if field in fields:
            value = (fields[field] or "").strip()
            if not value:
                errors[field] = f"{field.capitalize()} is required"
            cleaned[field] = value
    if "description" in fields:
        cleaned["description"] = (fields["description"] or "").strip() or None
    if errors:
        raise ValidationError(errors)
    return cleaned


async def _ensure_name_free(db: AsyncSession, name: str, exclude_id: int | None = None) -> None:
    q = select(Category.id).where(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        q = q.where(Category.id != exclude_id)
    if (await db.execute(q)).first() is not None:
        raise Conflict(f"Category {name!r} already exists")


async def _get_category(db: AsyncSession, category_id: int) -> Category:
    category = await db.get(Category, category_id) if is_record_id(category_id) else None
    if category is None:
        raise NotFound("Category not found")
    return category


async def get_categories(db: AsyncSession) -> list[dict]:
    """Return every category ordered by name."""
    result = await db.execute(select(Category).order_by(Category.name))
    return [_category_to_dict(c) for c in result.scalars().all()]


async def get_category(db: AsyncSession, category_id: int) -> dict:
    return _category_to_dict(await _get_category(db, category_id))


async def create_category(db: AsyncSession, data: CategoryCreate) -> dict:
    fields = _clean_fields(data.model_dump())
    await _ensure_name_free(db, fields["name"])

    category = Category(**fields)
    try:
        async with db.begin_nested():
            db.add(category)
    except IntegrityError:
        raise Conflict(f"Category {fields.get('name')!r} already exists")

    logger.info("Created category id=%s name=%s", category.id, category.name)
    return _category_to_dict(category)


async def update_category(db: AsyncSession, category_id: int, data: CategoryUpdate) -> dict:
    category = await _get_category(db, category_id)
    fields = _clean_fields(data.model_dump(exclude_unset=True))
    if "name" in fields:
        await _ensure_name_free(db, fields["name"], exclude_id=category_id)

    try:
        async with db.begin_nested():
            for field, value in fields.items():
                setattr(category, field, value)
    except IntegrityError:
        raise Conflict(f"Category {fields.get('name')!r} already exists")

    logger.info("Updated category id=%s fields=%s", category_id, sorted(fields))
    return _category_to_dict(category)


async def delete_category(db: AsyncSession, category_id: int) -> None:
    """Delete an unreferenced category; ``Conflict`` while any post uses it."""
    category = await _get_category(db, category_id)

    count_q = select(func.count()).select_from(Post).where(Post.category_id == category_id)
    in_use: int = (await db.execute(count_q)).scalar_one()
    if in_use:
        raise Conflict(f"Category is used by {in_use} post(s) and cannot be deleted")

    await db.delete(category)
    await db.flush()
    logger.info("Deleted category id=%s", category_id)
