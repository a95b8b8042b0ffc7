import asyncio
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from redis.exceptions import RedisError
from uvicorn import Config, Server

from .routers import auth, incidents
from ..config import settings
from ..database.redis import get_redis
from ..incidents.errors import (
    AlreadyOwnedError,
    CompatibilityError,
    ConcurrentModificationError,
    IncidentNotFoundError,
    IncidentWorkflowError,
    InvalidAssigneeError,
    NotOwnerError,
    PermissionDeniedError,
    TerminalStateError,
    UsageHistoryError,
)
from ..messaging.nats_client import nats_client
from ..service_manager.base_service import BaseService

logger = logging.getLogger("infirmary.api-gateway")

# Checked in order; the first matching class decides the status code.
ERROR_STATUS: list[tuple[type[IncidentWorkflowError], int]] = [
    (IncidentNotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (NotOwnerError, status.HTTP_403_FORBIDDEN),
    (CompatibilityError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidAssigneeError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (AlreadyOwnedError, status.HTTP_409_CONFLICT),
    (TerminalStateError, status.HTTP_409_CONFLICT),
    (UsageHistoryError, status.HTTP_409_CONFLICT),
    (ConcurrentModificationError, status.HTTP_409_CONFLICT),
]


def status_for(exc: IncidentWorkflowError) -> int:
    for error_cls, code in ERROR_STATUS:
        if isinstance(exc, error_cls):
            return code
    return status.HTTP_400_BAD_REQUEST


app = FastAPI(title="Infirmary Core API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api/v1")
app.include_router(incidents.router, prefix="/api/v1/incidents", tags=["Incidents"])


@app.exception_handler(IncidentWorkflowError)
async def workflow_error_handler(request: Request, exc: IncidentWorkflowError):
    code = status_for(exc)
    logger.info(f"{request.method} {request.url.path} rejected ({code}): {exc.message}")
    body = {"detail": exc.message, "error": type(exc).__name__}
    if exc.incident_id is not None:
        body["incident_id"] = str(exc.incident_id)
    return JSONResponse(status_code=code, content=body)


@app.exception_handler(TimeoutError)
async def timeout_handler(request: Request, exc: TimeoutError):
    logger.error(f"{request.method} {request.url.path} timed out")
    return JSONResponse(
        status_code=status.HTTP_504_GATEWAY_TIMEOUT,
        content={"detail": "Operation timed out; it may not have been applied, reload before retrying"},
    )


@app.get("/health")
async def health(redis: Redis = Depends(get_redis)):
    components = {"notifications": "ok" if nats_client.is_connected else "degraded"}
    try:
        await redis.ping()
        components["cache"] = "ok"
    except RedisError as e:
        logger.warning(f"Redis health check failed: {e}")
        components["cache"] = "degraded"
    return {
        "status": "ok" if all(v == "ok" for v in components.values()) else "degraded",
        "components": components,
    }


class APIGatewayService(BaseService):
    """
    API Gateway Service.
    Responsibility: Expose the incident workflow over REST.
    """

    def __init__(self):
        super().__init__("APIGatewayService")
        self._server: Optional[Server] = None

    async def start(self):
        logger.info(f"APIGatewayService starting on {settings.API_HOST}:{settings.API_PORT}")
        config = Config(app=app, host=settings.API_HOST, port=settings.API_PORT, log_level="info")
        self._server = Server(config)
        asyncio.create_task(self._server.serve())

    async def stop(self):
        if self._server:
            self._server.should_exit = True
        logger.info("APIGatewayService stopped.")
