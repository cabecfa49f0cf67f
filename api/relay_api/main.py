"""Main FastAPI application module."""

import uuid
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from relay_api.config import Settings, get_settings
from relay_api.routes import health_router, messages_router
from relay_shared.errors import BrokerConnectionError, PublishError
from relay_shared.logging import bind_request_id, clear_request_id, get_logger, setup_logging
from relay_shared.queue import BrokerConnection, MessagePublisher

logger = get_logger(__name__)


def error_response(status_code: int, message: str) -> JSONResponse:
    """Error body shared by every failing route."""
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "statusCode": status_code, "message": message},
    )


def create_app(
    settings: Optional[Settings] = None,
    broker: Optional[BrokerConnection] = None,
) -> FastAPI:
    """
    Build the relay API application.

    Args:
        settings: API settings (default: environment)
        broker: Broker connection to publish through; built from settings when omitted

    Returns:
        FastAPI: configured application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        FastAPI lifespan context manager for startup and shutdown events.

        Args:
            app: The FastAPI application instance
        """
        connection = broker or BrokerConnection(
            settings.rabbitmq_url,
            settings.topology(),
            prefetch_count=settings.rabbitmq_prefetch,
            reconnect_delay=settings.rabbitmq_reconnect_delay,
            connection_name="mq-search-relay-api",
        )
        app.state.settings = settings
        app.state.broker = connection
        app.state.publisher = MessagePublisher(connection)

        logger.info("Starting API", version=app.version, base_path=settings.api_base_path)
        try:
            await connection.connect()
        except BrokerConnectionError as e:
            # Requests answer 503 until the background reconnect succeeds
            logger.warning("Broker unavailable at startup", error=str(e))

        try:
            yield
        finally:
            await connection.close()
            logger.info("Shutting down API")

    app = FastAPI(
        title=settings.api_title,
        description=settings.api_description,
        version=settings.api_version,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next):
        """
        Middleware to add request ID to each request for tracing.

        Args:
            request: FastAPI request
            call_next: Next middleware or route handler

        Returns:
            Response from the next middleware or route handler
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        bind_request_id(request_id)

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_request_id()

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return error_response(status.HTTP_400_BAD_REQUEST, "Empty or invalid payload")

    @app.exception_handler(PublishError)
    async def publish_error_handler(request: Request, exc: PublishError) -> JSONResponse:
        logger.error("Message could not be queued", error=str(exc))
        return error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "Message broker unavailable")

    app.include_router(health_router, prefix=settings.api_base_path)
    app.include_router(messages_router, prefix=settings.api_base_path)

    return app


app = create_app()


def run() -> None:
    """Run the API with uvicorn."""
    settings = get_settings()
    setup_logging(level=settings.log_level, json_format=settings.log_json)
    uvicorn.run(
        "relay_api.main:app",
        host=settings.api_host,
        port=settings.api_port,
    )


if __name__ == "__main__":
    run()
