from fastapi import Depends, Header, Query

from blogcms.config import settings
from blogcms.exceptions import Forbidden, Unauthorized
from blogcms.models import is_record_id
from blogcms.policy import Caller, Role


class PaginationParams:
    """
    Reusable FastAPI dependency that parses pagination query parameters.

    Usage in a router::

        @router.get("/posts")
        async def list_posts(pagination: PaginationParams = Depends()):
            ...

    Attributes
    ----------
    page:
        1-based page number.  Values below 1 are treated as page 1 rather
        than rejected.
    page_size:
        Number of items per page, clamped to ``settings.MAX_PAGE_SIZE``
        regardless of the value supplied by the caller.
    """

    def __init__(
        self,
        page: int = Query(1, description="Page number (1-based)."),
        page_size: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            description="Number of items returned per page.",
        ),
    ) -> None:
        self.page = max(page, 1)
        self.page_size = min(page_size, settings.MAX_PAGE_SIZE)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


async def get_caller(
    x_user_id: str | None = Header(None),
    x_user_role: str | None = Header(None),
) -> Caller | None:
    """
    Resolve the caller from the identity headers set by the upstream
    identity service.  Returns None for anonymous requests.
    """
    if x_user_id is None:
        return None
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise Unauthorized("Malformed identity")
    if not is_record_id(user_id):
        raise Unauthorized("Malformed identity")
    try:
        role = Role(x_user_role) if x_user_role else Role.USER
    except ValueError:
        raise Unauthorized(f"Unknown role {x_user_role!r}")
    return Caller(user_id=user_id, role=role)


async def require_caller(caller: Caller | None = Depends(get_caller)) -> Caller:
    if caller is None:
        raise Unauthorized("Authentication required")
    return caller


async def require_admin(caller: Caller = Depends(require_caller)) -> Caller:
    if not caller.is_admin:
        raise Forbidden("Admin role required")
    return caller
