"""
FILE: api/cache_keys.py
Role: Cache namespaces and key builder for fastapi-cache decorated routes.

The default fastapi-cache key hashes every endpoint kwarg, including the pooled
asyncpg connection, whose repr differs per checkout. Keying on the request path
and query string keeps identical requests on one cache entry.

Keys look like ":{namespace}:{path}?{query}", so FastAPICache.clear(namespace)
drops one namespace at a time (see routes/admin.py).
"""

from typing import Any, Callable

from starlette.requests import Request

# Category list with per-category facility counts
CATEGORIES_NAMESPACE = "categories"
# Search dropdown data (states with counts)
SEARCH_NAMESPACE = "search"

CACHE_NAMESPACES = (CATEGORIES_NAMESPACE, SEARCH_NAMESPACE)


def request_key_builder(
    func: Callable[..., Any],
    namespace: str = "",
    request: Request | None = None,
    response: Any = None,
    args: tuple = (),
    kwargs: dict | None = None,
) -> str:
    if request is None:
        return f"{namespace}:{func.__module__}:{func.__name__}"
    return f"{namespace}:{request.url.path}?{request.url.query}"
