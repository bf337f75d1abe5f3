import hashlib
import json
from typing import Any, Callable, Dict, Iterable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from backend.medibook_app.utils.logger import cache_logger

DEFAULT_QUERY_TTL = 300

# Per-operation TTLs in seconds
QUERY_TTLS = {
    "GetDoctors": 600,
    "GetDoctor": 900,
    "GetAppointments": 120,
    "GetMedicalDocuments": 300,
    "GetReviews": 300,
}


def get_ttl_for_query(operation_name: Optional[str], default_ttl: int = DEFAULT_QUERY_TTL) -> int:
    return QUERY_TTLS.get(operation_name, default_ttl)


def default_cache_key(payload: Dict[str, Any]) -> str:
    query_hash = hashlib.md5(json.dumps(
        {"query": payload["query"], "variables": payload.get("variables") or {}},
        sort_keys=True
    ).encode("utf-8")).hexdigest()
    return f"graphql:{payload.get('operationName') or 'anonymous'}:{query_hash}"


class GraphQLCacheMiddleware(BaseHTTPMiddleware):
    """Cache successful GraphQL responses in Redis, keyed by query and variables."""

    def __init__(self, app, path: str = "/graphql", default_ttl: int = DEFAULT_QUERY_TTL,
                 enabled_queries: Optional[Iterable[str]] = None,
                 disabled_queries: Optional[Iterable[str]] = None,
                 key_generator: Optional[Callable[[Request, Dict[str, Any]], str]] = None):
        super().__init__(app)
        self.path = path
        self.default_ttl = default_ttl
        self.enabled_queries = set(enabled_queries or [])
        self.disabled_queries = set(disabled_queries or [])
        self.key_generator = key_generator

    def should_cache(self, operation_name: Optional[str]) -> bool:
        if operation_name in self.disabled_queries:
            return False
        if self.enabled_queries and operation_name not in self.enabled_queries:
            return False
        return True

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method != "POST" or request.url.path != self.path:
            return await call_next(request)

        try:
            payload = await request.json()
        except ValueError:
            return await call_next(request)

        if not isinstance(payload, dict) or not payload.get("query"):
            return await call_next(request)

        operation_name = payload.get("operationName")
        if not self.should_cache(operation_name):
            return await call_next(request)

        cache = request.app.state.container.cache
        cache_key = (self.key_generator(request, payload) if self.key_generator
                     else default_cache_key(payload))

        cached_result = await cache.get(cache_key)
        if cached_result is not None:
            cache_logger.log_debug("GraphQL cache hit", {"operation": operation_name or "anonymous"})
            return JSONResponse(cached_result, headers={"X-Cache": "HIT"})

        response = await call_next(request)
        if (response.status_code != 200
                or not response.headers.get("content-type", "").startswith("application/json")):
            return response

        body = b"".join([chunk async for chunk in response.body_iterator])
        try:
            data = json.loads(body)
        except ValueError:
            data = None

        if isinstance(data, dict) and not data.get("errors"):
            ttl = get_ttl_for_query(operation_name, self.default_ttl)
            await cache.set(cache_key, data, ttl)
            cache_logger.log_debug("GraphQL response cached", {
                "operation": operation_name or "anonymous",
                "ttl": ttl
            })

        return Response(content=body, status_code=response.status_code,
                        headers=dict(response.headers), media_type=response.media_type)
