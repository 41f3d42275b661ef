"""
Comment service — append-only comments on the Post aggregate.

Comments have no identity outside their post: there is no endpoint to read,
edit or delete one on its own.  Adding a comment returns the whole post so
the caller sees the thread in order with the new entry last.

A comment racing a delete of its post never survives the delete: either it
commits first and is cascaded away with the post, or its insert fails the
foreign key check and the caller gets ``NotFound``.
"""
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blogcms.exceptions import NotFound, ValidationError
from blogcms.models import Comment, Post, is_record_id, utcnow
from blogcms.policy import Caller, can_view
from blogcms.schemas import CommentCreate
from blogcms.services import post_service, user_service

logger = logging.getLogger(__name__)


async def add_comment(
    db: AsyncSession,
    caller: Caller,
    post_id: int,
    data: CommentCreate,
) -> dict:
    """
    Append a comment by *caller* to the post identified by *post_id* and
    return the post's detail dict.
    """
    await user_service.require_profile(db, caller.user_id)

    content = data.content.strip() if data.content else ""
    if not content:
        raise ValidationError({"content": "Comment content is required"})

    post = None
    if is_record_id(post_id):
        q = select(Post).where(Post.id == post_id).with_for_update()
        post = (await db.execute(q)).scalar_one_or_none()
    if post is None or not can_view(caller, post.author_id, post.is_published):
        raise NotFound("Post not found")

    comment = Comment(
        content=content,
        post_id=post_id,
        author_id=caller.user_id,
        created_at=utcnow(),
    )
    try:
        async with db.begin_nested():
            db.add(comment)
    except IntegrityError:
        raise NotFound("Post not found")

    logger.info("Comment id=%s added to post id=%s by user=%s", comment.id, post_id, caller.user_id)
    return await post_service.load_post_detail(db, post_id)
