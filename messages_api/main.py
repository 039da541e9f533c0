import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import APIRouter, FastAPI, Response, Request, Depends, status
from fastapi.exception_handlers import http_exception_handler
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.requests import ClientDisconnect

from messages_api import handlers
from messages_api.config import Settings, get_settings
from messages_api.storage import Store, get_db
from messages_api.logging_utils import setup_logging, RequestLoggingMiddleware, log_message_data
from messages_api.metrics import get_metrics, get_metrics_content_type
from messages_api.schemas import ErrorResponse, HealthResponse, MessageRecord


logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Unreadable body or invalid id"},
    500: {"model": ErrorResponse, "description": "Store error"},
}


def app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def read_body(request: Request, operation: str) -> bytes:
    """Read the whole request body, failing with 400 if the client went away."""
    try:
        return await request.body()
    except ClientDisconnect:
        logger.warning(f"{operation}: client disconnected while sending body")
        raise handlers.fail(operation, "bad_request", status.HTTP_400_BAD_REQUEST, handlers.BODY_READ_ERROR)


def respond(request: Request, outcome: handlers.Outcome, message_id: Optional[int] = None):
    """Attach the outcome to the request log and return the response body."""
    log_message_data(
        request,
        result=outcome.result,
        message_id=message_id,
        rows_affected=outcome.rows_affected,
    )
    return outcome.body


async def operation_error_handler(request: Request, exc: handlers.OperationError) -> Response:
    log_message_data(request, result=exc.result)
    return await http_exception_handler(request, exc)


# =============================================================================
# Health Check Routes
# =============================================================================

@router.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@router.get("/health/ready", response_model=HealthResponse)
def health_ready(request: Request, response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    messages table exists. Otherwise returns 503 (Service Unavailable).
    """
    if not request.app.state.store.check_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Messages Route
# =============================================================================
# GET and DELETE are plain functions, so FastAPI runs them in its threadpool.
# POST and PUT await the body on the event loop and then hand the blocking
# store work to the threadpool. Any other verb gets Starlette's 405.

@router.get("/messages", response_model=List[MessageRecord], responses={500: ERROR_RESPONSES[500]})
def list_messages(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(app_settings),
) -> List[MessageRecord]:
    """
    List every stored message in insertion order.
    An empty store yields an empty array.
    """
    log_message_data(request, operation="list")
    outcome = handlers.list_messages(db, expose_store_errors=settings.EXPOSE_STORE_ERRORS)
    return respond(request, outcome)


@router.post(
    "/messages",
    status_code=status.HTTP_201_CREATED,
    response_model=MessageRecord,
    responses=ERROR_RESPONSES,
)
async def create_message(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(app_settings),
) -> MessageRecord:
    """
    Store a new message.

    Body: {"message": "..."}; an "id" field is accepted but ignored.
    Responds 201 with the record carrying the id the store assigned.
    """
    log_message_data(request, operation="create")
    raw_body = await read_body(request, "create")

    outcome = await run_in_threadpool(
        handlers.create_message,
        raw_body,
        db,
        expose_store_errors=settings.EXPOSE_STORE_ERRORS,
    )
    return respond(request, outcome, message_id=outcome.body.id)


@router.put(
    "/messages",
    response_model=MessageRecord,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "Only with REPORT_MISSING_ROWS"}},
)
async def update_message(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(app_settings),
) -> MessageRecord:
    """
    Replace the text of an existing message.

    Body: {"id": N, "message": "..."}. Echoes the submitted record; an id
    that matches no row is not an error.
    """
    log_message_data(request, operation="update")
    raw_body = await read_body(request, "update")

    outcome = await run_in_threadpool(
        handlers.update_message,
        raw_body,
        db,
        expose_store_errors=settings.EXPOSE_STORE_ERRORS,
        report_missing_rows=settings.REPORT_MISSING_ROWS,
    )
    return respond(request, outcome, message_id=outcome.body.id)


@router.delete(
    "/messages",
    response_model=MessageRecord,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "Only with REPORT_MISSING_ROWS"}},
    openapi_extra={
        "parameters": [{
            "name": "id",
            "in": "query",
            "required": False,
            "schema": {"type": "string"},
            "description": "Id of the message to delete; if repeated, the first value is used",
        }]
    },
)
def delete_message(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(app_settings),
) -> MessageRecord:
    """
    Delete a message by id (query parameter).
    Responds {"id": id, "message": ""} even when nothing was deleted.
    """
    log_message_data(request, operation="delete")
    raw_ids = request.query_params.getlist("id")

    outcome = handlers.delete_message(
        raw_ids[0] if raw_ids else None,
        db,
        expose_store_errors=settings.EXPOSE_STORE_ERRORS,
        report_missing_rows=settings.REPORT_MISSING_ROWS,
    )
    return respond(request, outcome, message_id=outcome.body.id)


# =============================================================================
# Metrics Route
# =============================================================================

@router.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


# =============================================================================
# Application
# =============================================================================

def create_app(settings: Optional[Settings] = None, store: Optional[Store] = None) -> FastAPI:
    """
    Build the FastAPI application around a single Store.

    The store is opened and its schema ensured on startup; if that fails the
    exception propagates and the server never starts serving.
    """
    settings = settings or get_settings()
    store = store or Store(settings.DATABASE_URL)

    setup_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.init_schema()
        yield
        store.dispose()

    app = FastAPI(
        title="Messages API",
        description="CRUD service for a single messages table",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store

    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(handlers.OperationError, operation_error_handler)
    app.include_router(router)

    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    settings = get_settings()
    # log_config=None keeps the JSON handlers installed by setup_logging
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)
