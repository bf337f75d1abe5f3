from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.medibook_app import config
from backend.medibook_app.api.v1.endpoints import auth_router, notification_router, websocket_router
from backend.medibook_app.middleware.auth_middleware import SecurityHeadersMiddleware
from backend.medibook_app.middleware.graphql_cache import GraphQLCacheMiddleware
from backend.medibook_app.services.container import ServiceContainer
from backend.medibook_app.utils.handle_errors import ApiError, api_error_handler
from backend.medibook_app.utils.logger import error_logger


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the application around ``container`` (a Redis-backed one by default)."""
    container = container or ServiceContainer()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await container.startup()
        error_logger.log_info("Services initialized")
        try:
            yield
        finally:
            await container.shutdown()
            error_logger.log_info("Services shut down")

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_middleware(GraphQLCacheMiddleware, path="/graphql")
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware, allow_origins=config.CORS_ORIGINS,
        allow_credentials=True, allow_methods=["*"], allow_headers=["*"], )

    #  Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring."""
        return {"status": "healthy"}

    app.include_router(auth_router.router)
    app.include_router(notification_router.router)
    app.include_router(websocket_router.router)
    return app


app = create_app()
