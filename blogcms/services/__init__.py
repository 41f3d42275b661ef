# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access for a single domain aggregate:
#
#   post_service      — listing, search, retrieval + view counting, CRUD
#   comment_service   — append-only comments on a post
#   category_service  — admin-managed categories
#   user_service      — author profiles embedded in posts and comments
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency.  Callers are passed explicitly as ``Caller``
# values; services raise ``blogcms.exceptions`` errors instead of
# returning sentinels.
