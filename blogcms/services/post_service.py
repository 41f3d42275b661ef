"""
Post service — business logic for the Post aggregate.

Design notes
------------
- Every function takes the request's ``AsyncSession`` and an explicit
  ``Caller`` (or None for anonymous reads); nothing is read from ambient
  request state, so the authorization rules in ``blogcms.policy`` stay pure.
- Listing and search share one pagination path: filters go into the WHERE
  clause of both the COUNT and the page query, and the page query is
  ordered by ``created_at DESC, id ASC`` so page boundaries are stable.
- Eager loading: ``joinedload`` for the many-to-one author/category,
  ``selectinload`` for the comment collection (plus each comment's author).
- Mutations lock the post row with ``SELECT ... FOR UPDATE``.  View counts
  are bumped with a single ``UPDATE ... SET view_count = view_count + 1``
  so concurrent reads never lose an increment.
- Slugs are unique at the database level.  A candidate is chosen by
  suffixing (``-2``, ``-3``, ...) and inserted inside a SAVEPOINT; losing a
  race to a concurrent writer rolls back only the savepoint and the next
  free suffix is tried.
- Service functions flush but do not commit; the transaction boundary
  is owned by the ``get_db`` dependency in the router layer.
"""
import logging
import math
import re
import unicodedata

from sqlalchemy import false, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from blogcms.config import settings
from blogcms.exceptions import Conflict, Forbidden, InvalidQuery, NotFound, ValidationError
from blogcms.models import Category, Comment, Post, is_record_id, utcnow
from blogcms.policy import Caller, caller_can_mutate, can_view
from blogcms.schemas import PaginatedResponse, PostCreate, PostUpdate
from blogcms.services import user_service

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 100
EXCERPT_MAX_LENGTH = 200

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_SLUG_STRIP_RE = re.compile(r"[^\w\s-]")
_SLUG_SPACE_RE = re.compile(r"[\s_]+")
_SLUG_DASH_RE = re.compile(r"-+")
_SLUG_MAX_LENGTH = 80


def slugify(text: str) -> str:
    """Return an ASCII, lowercase slug derived from *text* (``post`` if nothing survives)."""
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = _SLUG_STRIP_RE.sub("", text.lower().strip())
    text = _SLUG_SPACE_RE.sub("-", text)
    text = _SLUG_DASH_RE.sub("-", text).strip("-")
    text = text[:_SLUG_MAX_LENGTH].rstrip("-")
    return text or "post"


def normalize_tags(tags: list[str] | None) -> list[str]:
    """Strip tags, drop blanks and repeats; first occurrence keeps its position."""
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags or []:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


async def _category_exists(db: AsyncSession, category_id: int) -> bool:
    if not is_record_id(category_id):
        return False
    q = select(Category.id).where(Category.id == category_id)
    return (await db.execute(q)).first() is not None


async def _validate_post_fields(db: AsyncSession, fields: dict) -> dict:
    """
    Re-assert the post invariants on *fields* (only the keys present are
    checked) and return the cleaned values.

    Raises ``ValidationError`` carrying every failing field at once.
    """
    errors: dict[str, str] = {}
    cleaned = dict(fields)

    if "title" in fields:
        title = _clean_text(fields["title"])
        if title is None:
            errors["title"] = "Title is required"
        elif len(title) > TITLE_MAX_LENGTH:
            errors["title"] = f"Title must be at most {TITLE_MAX_LENGTH} characters"
        cleaned["title"] = title

    if "content" in fields:
        content = fields["content"]
        if content is None or not content.strip():
            errors["content"] = "Content is required"

    if "excerpt" in fields:
        excerpt = _clean_text(fields["excerpt"])
        if excerpt is not None and len(excerpt) > EXCERPT_MAX_LENGTH:
            errors["excerpt"] = f"Excerpt must be at most {EXCERPT_MAX_LENGTH} characters"
        cleaned["excerpt"] = excerpt

    if "category_id" in fields:
        category_id = fields["category_id"]
        if category_id is None:
            errors["category_id"] = "Category is required"
        elif not await _category_exists(db, category_id):
            errors["category_id"] = "Category does not exist"

    if "tags" in fields:
        cleaned["tags"] = normalize_tags(fields["tags"])

    if "featured_image" in fields:
        cleaned["featured_image"] = _clean_text(fields["featured_image"])

    if "is_published" in fields and fields["is_published"] is None:
        errors["is_published"] = "is_published must be true or false"

    if errors:
        raise ValidationError(errors)
    return cleaned


def _visibility_clause(caller: Caller | None):
    """Published posts for everyone; drafts only for their own author."""
    if caller is None:
        return Post.is_published.is_(True)
    return or_(Post.is_published.is_(True), Post.author_id == caller.user_id)


async def _next_free_slug(db: AsyncSession, base: str, exclude_id: int | None = None) -> str:
    """Return *base* or the first ``base-N`` (N >= 2) not used by another post."""
    q = select(Post.slug).where(
        or_(Post.slug == base, Post.slug.startswith(f"{base}-", autoescape=True))
    )
    if exclude_id is not None:
        q = q.where(Post.id != exclude_id)
    taken = set((await db.execute(q)).scalars().all())
    if base not in taken:
        return base
    n = 2
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


def _parse_post_id(key: str) -> int | None:
    """Return *key* as a post id when it is plain ASCII digits in key range."""
    if not (key.isascii() and key.isdigit()):
        return None
    value = int(key)
    return value if is_record_id(value) else None


async def _slug_in_use(db: AsyncSession, slug: str) -> bool:
    return (await db.execute(select(Post.id).where(Post.slug == slug))).first() is not None


async def _raise_for_lost_reference(db: AsyncSession, category_id: int | None) -> None:
    """
    Translate a foreign-key failure on write.  A category deleted after
    validation is a field error; any other lost reference is a conflict.
    """
    if category_id is not None and not await _category_exists(db, category_id):
        raise ValidationError({"category_id": "Category does not exist"})
    raise Conflict("Post could not be saved; a referenced record changed")


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _category_summary(category: Category | None) -> dict | None:
    if category is None:
        return None
    return {"id": category.id, "name": category.name, "color": category.color}


def _post_to_dict(post: Post) -> dict:
    """Serialise a Post ORM instance to a plain dict (list view)."""
    return {
        "id": post.id,
        "title": post.title,
        "slug": post.slug,
        "excerpt": post.excerpt,
        "tags": list(post.tags or []),
        "featured_image": post.featured_image,
        "is_published": post.is_published,
        "view_count": post.view_count,
        "created_at": post.created_at.isoformat() if post.created_at else None,
        "updated_at": post.updated_at.isoformat() if post.updated_at else None,
        "category_id": post.category_id,
        "author_id": post.author_id,
        "category": _category_summary(post.category),
        "author": user_service.author_summary(post.author),
    }


def _post_detail_to_dict(post: Post) -> dict:
    """Serialise a Post ORM instance to a plain dict (detail view)."""
    data = _post_to_dict(post)
    data["content"] = post.content
    data["comments"] = [
        {
            "id": c.id,
            "content": c.content,
            "post_id": c.post_id,
            "author": user_service.author_summary(c.author),
            "created_at": c.created_at.isoformat() if c.created_at else None,
        }
        for c in post.comments
    ]
    return data


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------

_LIST_OPTIONS = (joinedload(Post.author), joinedload(Post.category))
_DETAIL_OPTIONS = (
    joinedload(Post.author),
    joinedload(Post.category),
    selectinload(Post.comments).joinedload(Comment.author),
)


async def load_post_detail(db: AsyncSession, post_id: int) -> dict:
    """
    Fetch *post_id* with category, author and comments embedded.

    ``populate_existing`` overwrites any copy already in the identity map so
    column-level UPDATEs issued earlier in the transaction are reflected.
    """
    q = (
        select(Post)
        .where(Post.id == post_id)
        .options(*_DETAIL_OPTIONS)
        .execution_options(populate_existing=True)
    )
    post = (await db.execute(q)).unique().scalar_one_or_none()
    if post is None:
        raise NotFound("Post not found")
    return _post_detail_to_dict(post)


async def _get_post_for_update(db: AsyncSession, post_id: int) -> Post:
    if not is_record_id(post_id):
        raise NotFound("Post not found")
    q = select(Post).where(Post.id == post_id).with_for_update()
    post = (await db.execute(q)).scalar_one_or_none()
    if post is None:
        raise NotFound("Post not found")
    return post


async def _paginate(db: AsyncSession, clauses: list, page: int, page_size: int) -> PaginatedResponse:
    if page_size < 1:
        raise ValidationError({"page_size": "page_size must be a positive integer"})
    page = max(page, 1)
    page_size = min(page_size, settings.MAX_PAGE_SIZE)

    count_q = select(func.count()).select_from(Post).where(*clauses)
    total: int = (await db.execute(count_q)).scalar_one()

    posts_q = (
        select(Post)
        .where(*clauses)
        .options(*_LIST_OPTIONS)
        .order_by(Post.created_at.desc(), Post.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    posts = (await db.execute(posts_q)).unique().scalars().all()

    return PaginatedResponse(
        items=[_post_to_dict(p) for p in posts],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def list_posts(
    db: AsyncSession,
    caller: Caller | None = None,
    page: int = 1,
    page_size: int = settings.DEFAULT_PAGE_SIZE,
    category_id: int | None = None,
) -> PaginatedResponse:
    """
    Return one page of posts visible to *caller*, newest first, optionally
    restricted to *category_id*.  A page past the end is empty, not an error.
    """
    clauses = [_visibility_clause(caller)]
    if category_id is not None:
        clauses.append(Post.category_id == category_id if is_record_id(category_id) else false())
    return await _paginate(db, clauses, page, page_size)


async def search_posts(
    db: AsyncSession,
    query: str | None,
    caller: Caller | None = None,
    page: int = 1,
    page_size: int = settings.DEFAULT_PAGE_SIZE,
) -> PaginatedResponse:
    """
    Case-insensitive substring search over title, excerpt and content.

    Results use the same visibility rule, ordering and pagination envelope
    as ``list_posts``.  A blank query raises ``InvalidQuery``.
    """
    term = (query or "").strip()
    if not term:
        raise InvalidQuery("Search query must not be empty")

    match = or_(
        Post.title.icontains(term, autoescape=True),
        Post.excerpt.icontains(term, autoescape=True),
        Post.content.icontains(term, autoescape=True),
    )
    return await _paginate(db, [_visibility_clause(caller), match], page, page_size)


async def get_post(db: AsyncSession, id_or_slug: str | int, caller: Caller | None = None) -> dict:
    """
    Return the fully embedded post for a slug or numeric id (slug wins) and
    count the view.

    Drafts resolve only for callers allowed to edit them.  Anything else,
    including a post deleted between lookup and increment, is ``NotFound``.
    """
    key = str(id_or_slug).strip()
    lookup = select(Post.id, Post.author_id, Post.is_published)
    row = (await db.execute(lookup.where(Post.slug == key))).first()
    post_id = _parse_post_id(key)
    if row is None and post_id is not None:
        row = (await db.execute(lookup.where(Post.id == post_id))).first()
    if row is None or not can_view(caller, row.author_id, row.is_published):
        raise NotFound("Post not found")

    bump = (
        update(Post)
        .where(Post.id == row.id)
        .values(view_count=Post.view_count + 1)
        .execution_options(synchronize_session=False)
    )
    if (await db.execute(bump)).rowcount == 0:
        raise NotFound("Post not found")

    return await load_post_detail(db, row.id)


async def create_post(db: AsyncSession, caller: Caller, data: PostCreate) -> dict:
    """Validate, allocate a unique slug, persist, and return the new post's detail dict."""
    await user_service.require_profile(db, caller.user_id)
    fields = await _validate_post_fields(db, data.model_dump())
    base = slugify(fields["title"])
    now = utcnow()

    for attempt in range(1, settings.SLUG_MAX_ATTEMPTS + 1):
        slug = await _next_free_slug(db, base)
        post = Post(
            title=fields["title"],
            slug=slug,
            content=fields["content"],
            excerpt=fields["excerpt"],
            tags=fields["tags"],
            featured_image=fields["featured_image"],
            is_published=fields["is_published"],
            category_id=fields["category_id"],
            author_id=caller.user_id,
            view_count=0,
            created_at=now,
            updated_at=now,
        )
        try:
            async with db.begin_nested():
                db.add(post)
        except IntegrityError:
            if not await _slug_in_use(db, slug):
                await _raise_for_lost_reference(db, fields["category_id"])
            logger.warning("Slug %r taken concurrently (attempt %d)", slug, attempt)
            continue
        logger.info("Created post id=%s slug=%s author=%s", post.id, post.slug, caller.user_id)
        return await load_post_detail(db, post.id)

    raise Conflict(f"Could not allocate a unique slug for {fields['title']!r}")


async def update_post(db: AsyncSession, caller: Caller, post_id: int, data: PostUpdate) -> dict:
    """
    Partially update a post the caller owns (or any post, for admins).

    Only fields explicitly set in the payload change.  The slug is
    re-derived when the title yields a different base slug.
    """
    post = await _get_post_for_update(db, post_id)
    if not caller_can_mutate(caller, post.author_id):
        raise Forbidden("Only the author or an admin may edit this post")

    fields = await _validate_post_fields(db, data.model_dump(exclude_unset=True))
    old_base = slugify(post.title)
    new_base = slugify(fields["title"]) if "title" in fields else None

    try:
        async with db.begin_nested():
            for field, value in fields.items():
                setattr(post, field, value)
            post.updated_at = utcnow()
    except IntegrityError:
        await _raise_for_lost_reference(db, fields.get("category_id"))

    if new_base is not None and new_base != old_base:
        for attempt in range(1, settings.SLUG_MAX_ATTEMPTS + 1):
            slug = await _next_free_slug(db, new_base, exclude_id=post.id)
            try:
                async with db.begin_nested():
                    post.slug = slug
            except IntegrityError:
                await db.refresh(post)
                logger.warning("Slug %r taken concurrently (attempt %d)", slug, attempt)
                continue
            break
        else:
            raise Conflict(f"Could not allocate a unique slug for {fields['title']!r}")

    logger.info("Updated post id=%s by user=%s fields=%s", post.id, caller.user_id, sorted(fields))
    return await load_post_detail(db, post.id)


async def delete_post(db: AsyncSession, caller: Caller, post_id: int) -> None:
    """Permanently delete a post; its comments go with it."""
    post = await _get_post_for_update(db, post_id)
    if not caller_can_mutate(caller, post.author_id):
        raise Forbidden("Only the author or an admin may delete this post")

    await db.delete(post)
    await db.flush()
    logger.info("Deleted post id=%s by user=%s", post_id, caller.user_id)
