"""FastAPI application exposing the tool approval callback and run event stream."""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from toolgate.infra.config import config
from toolgate.infra.logging import app_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    app_logger.info(f"Application starting up (env: {config.APP_ENV}, flow store: {config.FLOW_STORE})")

    yield

    app_logger.info("Application shutting down")

    from toolgate.infra.flow_state import RedisFlowStore, flow_state_manager
    if isinstance(flow_state_manager.store, RedisFlowStore):
        flow_state_manager.store.redis.close()


app = FastAPI(
    title="Toolgate API",
    description="""
    Toolgate resolves and executes agent tool calls and gates them behind
    human approval when the approval policy requires it.

    ## Endpoints

    - **Tool Approvals**: approve or reject a pending tool call, inspect its validation flow
    - **Events**: Server-Sent Events stream of run step events (pending approvals)
    - **Health**: health check and Prometheus metrics

    ## Authentication

    Approval endpoints require the `X-User-ID` header set by the fronting chat server.
    """,
    version="1.0.0",
    lifespan=lifespan,
    tags_metadata=[
        {
            "name": "Tool Approvals",
            "description": "Human-in-the-loop decisions for gated tool calls",
        },
        {
            "name": "Events",
            "description": "Live run step events",
        },
        {
            "name": "Health",
            "description": "Health check and monitoring endpoints",
        },
    ],
)

# Setup middleware
from toolgate.infra.middleware import RequestIDMiddleware, RequestLoggingMiddleware, setup_cors

app.add_middleware(RequestIDMiddleware)
app.add_middleware(RequestLoggingMiddleware)
setup_cors(app)

# Import and register routers
from toolgate.api.routers import events, health, tool_approvals

app.include_router(tool_approvals.router)
app.include_router(events.router)
app.include_router(health.router)


# Error handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    error_id = str(uuid.uuid4())
    app_logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"error_id": error_id})
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error. Error ID: {error_id}"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30,
    )
