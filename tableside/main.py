"""
FastAPI Application Entry Point

Tableside Ordering - QR table ordering and billing
Supports the in-memory document store (development) and the SQL store
with Redis fan-out (staging/production).

Endpoints:
    - GET /api/menu: Menu for diners (falls back to the built-in menu)
    - POST /api/sessions: Start a session with the first order
    - GET /api/sessions/recover: Find a diner's session for a table
    - POST /api/sessions/{id}/extras: Add extra items
    - POST /api/sessions/{id}/bill-request: Ask for the bill
    - GET /api/sessions/{id}/bill: Computed bill
    - POST /api/sessions/{id}/bill/download: Invoice, closes the session
    - GET /bill/{id}: Rendered invoice
    - /api/chef/...: Chef dashboard operations (X-Chef-Token)
    - WS /ws/sessions, /ws/sessions/{id}, /ws/menu: Live feeds
    - GET /health: System health check
"""

import hmac
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from fastapi import (
    Depends,
    FastAPI,
    Header,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from kombu.exceptions import OperationalError as BrokerUnavailable

from tableside.core.config import get_settings, setup_logging
from tableside.core.exceptions import AuthenticationError, SessionClosedError, TablesideError
from tableside.database import dispose_engine, init_db
from tableside.schemas import (
    BillResponse,
    BillStatus,
    BulkImportResponse,
    ChefLogin,
    ChefLoginResponse,
    ClearClosedResponse,
    ErrorResponse,
    ExtraBatchCreate,
    HealthResponse,
    KitchenStatusUpdate,
    MenuCategory,
    MenuItem,
    MenuItemCreate,
    RecoveryResponse,
    Session,
    SessionCreate,
    SessionListResponse,
)
from tableside.services.archive import SessionArchive, archive_row
from tableside.services.billing import build_invoice, format_money
from tableside.services.menu import MenuCatalog, get_menu_catalog
from tableside.services.sessions import SessionService, get_session_service
from tableside.services.store import Subscription, get_document_store
from tableside.tasks import archive_sessions

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    if settings.use_real_services:
        await init_db()
        logger.info("✅ Database initialized")

        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing or unsafe production config: {missing}")

    store = get_document_store()
    await store.start()
    logger.info(f"✅ Document Store: {store.provider_name}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield

    logger.info("Shutting down...")
    await store.close()
    await dispose_engine()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "QR table ordering and billing: diners order and extend their order "
        "during a dining session, the kitchen follows live orders and approves bills."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def _valid_chef_token(token: Optional[str]) -> bool:
    return bool(token) and hmac.compare_digest(token, settings.chef_api_token)


async def require_chef(
    x_chef_token: Optional[str] = Header(None, alias="X-Chef-Token"),
) -> None:
    """Chef-only routes need the token handed out by /api/chef/login."""
    if not _valid_chef_token(x_chef_token):
        raise AuthenticationError("Chef login required")


def _session_payload(session: Optional[Session]) -> Optional[dict[str, Any]]:
    return session.model_dump(mode="json", by_alias=True) if session else None


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍽️ Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "menu": "/api/menu",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check() -> HealthResponse:
    """Verify the document store is reachable."""
    store = get_document_store()
    report = await store.health_check()
    if report.get("status") != "healthy":
        logger.error(f"Store health check failed: {report}")

    return HealthResponse(
        status="operational" if report.get("status") == "healthy" else "degraded",
        store=store.provider_name,
        environment=settings.env_mode.value,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# MENU ENDPOINTS
# =============================================================================

@app.get(
    "/api/menu",
    response_model=list[MenuItem],
    tags=["Menu"],
    summary="Menu",
)
async def list_menu(
    category: Optional[MenuCategory] = Query(None),
    catalog: MenuCatalog = Depends(get_menu_catalog),
) -> list[MenuItem]:
    return await catalog.list_items(category=category)


@app.post(
    "/api/menu",
    response_model=MenuItem,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Menu"],
    dependencies=[Depends(require_chef)],
)
async def add_menu_item(
    item: MenuItemCreate,
    catalog: MenuCatalog = Depends(get_menu_catalog),
) -> MenuItem:
    return await catalog.add_item(item)


@app.delete(
    "/api/menu/{item_id}",
    responses=ERROR_RESPONSES,
    tags=["Menu"],
    dependencies=[Depends(require_chef)],
)
async def delete_menu_item(
    item_id: str,
    catalog: MenuCatalog = Depends(get_menu_catalog),
) -> dict[str, Any]:
    await catalog.delete_item(item_id)
    return {"success": True, "message": f"Menu item {item_id} deleted"}


@app.post(
    "/api/menu/bulk-import",
    response_model=BulkImportResponse,
    responses=ERROR_RESPONSES,
    tags=["Menu"],
    dependencies=[Depends(require_chef)],
)
async def bulk_import_menu(
    catalog: MenuCatalog = Depends(get_menu_catalog),
) -> BulkImportResponse:
    """Replace the whole menu with the standard card."""
    deleted, added = await catalog.bulk_import()
    return BulkImportResponse(
        success=True,
        message=f"Menu updated! Deleted {deleted} items and added {added} new items.",
        deleted_count=deleted,
        added_count=added,
    )


# =============================================================================
# DINER SESSION ENDPOINTS
# =============================================================================

@app.post(
    "/api/sessions",
    response_model=Session,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Sessions"],
    summary="Start Session",
)
async def create_session(
    payload: SessionCreate,
    service: SessionService = Depends(get_session_service),
) -> Session:
    """
    Start a dining session with the diner's first order.

    Keep the returned ``id``: it is the key for every later call.
    """
    return await service.create_session(
        payload.table_number,
        payload.customer_name,
        payload.number_of_people,
        payload.items,
    )


@app.get(
    "/api/sessions/recover",
    response_model=RecoveryResponse,
    responses=ERROR_RESPONSES,
    tags=["Sessions"],
)
async def recover_session(
    table: Optional[str] = Query(None, description="Table number from the QR code"),
    customer_name: Optional[str] = Query(None),
    service: SessionService = Depends(get_session_service),
) -> RecoveryResponse:
    result = await service.recover_session(table, customer_name)
    return RecoveryResponse(
        outcome=result.outcome.value,
        message=result.message,
        session=result.session,
    )


@app.get(
    "/api/sessions/{session_id}",
    response_model=Session,
    responses=ERROR_RESPONSES,
    tags=["Sessions"],
)
async def get_session(
    session_id: str,
    service: SessionService = Depends(get_session_service),
) -> Session:
    return await service.get_session(session_id)


@app.post(
    "/api/sessions/{session_id}/extras",
    response_model=Session,
    responses=ERROR_RESPONSES,
    tags=["Sessions"],
    summary="Add Extra Items",
)
async def add_extras(
    session_id: str,
    payload: ExtraBatchCreate,
    service: SessionService = Depends(get_session_service),
) -> Session:
    return await service.append_extra_batch(session_id, payload.items)


@app.post(
    "/api/sessions/{session_id}/bill-request",
    response_model=Session,
    responses=ERROR_RESPONSES,
    tags=["Sessions"],
)
async def request_bill(
    session_id: str,
    service: SessionService = Depends(get_session_service),
) -> Session:
    return await service.request_bill(session_id)


@app.get(
    "/api/sessions/{session_id}/bill",
    response_model=BillResponse,
    responses=ERROR_RESPONSES,
    tags=["Billing"],
)
async def get_bill(
    session_id: str,
    service: SessionService = Depends(get_session_service),
) -> BillResponse:
    session = await service.get_session(session_id)
    return build_invoice(session, settings).to_response()


@app.post(
    "/api/sessions/{session_id}/bill/download",
    response_model=BillResponse,
    responses=ERROR_RESPONSES,
    tags=["Billing"],
    summary="Download Bill",
)
async def download_bill(
    session_id: str,
    service: SessionService = Depends(get_session_service),
) -> BillResponse:
    """
    Issue the invoice for an approved bill and close the session.

    Downloading again after the session closed returns the same invoice.
    """
    session = await service.get_session(session_id)
    if session.bill_status == BillStatus.DOWNLOADED:
        return build_invoice(session, settings).to_response()
    if session.bill_status != BillStatus.ACCEPTED:
        raise SessionClosedError("Bill is waiting for chef approval")

    invoice = build_invoice(session, settings)
    await service.mark_downloaded(session_id)
    return invoice.to_response()


@app.get(
    "/bill/{session_id}",
    response_class=HTMLResponse,
    tags=["Billing"],
)
async def bill_page(
    request: Request,
    session_id: str,
    service: SessionService = Depends(get_session_service),
) -> HTMLResponse:
    """Printable invoice."""
    session = await service.get_session(session_id)
    invoice = build_invoice(session, settings)
    return templates.TemplateResponse(
        request,
        "invoice.html",
        {
            "invoice": invoice,
            "session": session,
            "approved": session.bill_status in (BillStatus.ACCEPTED, BillStatus.DOWNLOADED),
            "money": format_money,
            "rates": settings,
        },
    )


# =============================================================================
# CHEF ENDPOINTS
# =============================================================================

@app.post(
    "/api/chef/login",
    response_model=ChefLoginResponse,
    responses={401: {"model": ErrorResponse}},
    tags=["Chef"],
)
async def chef_login(credentials: ChefLogin) -> ChefLoginResponse:
    email_ok = hmac.compare_digest(credentials.email.strip().lower(), settings.chef_email.lower())
    password_ok = hmac.compare_digest(credentials.password, settings.chef_password)
    if not (email_ok and password_ok):
        logger.warning(f"Failed chef login for {credentials.email}")
        raise AuthenticationError("Invalid email or password")
    return ChefLoginResponse(access_token=settings.chef_api_token)


@app.get(
    "/api/chef/sessions",
    response_model=SessionListResponse,
    responses=ERROR_RESPONSES,
    tags=["Chef"],
    dependencies=[Depends(require_chef)],
)
async def list_sessions(
    service: SessionService = Depends(get_session_service),
) -> SessionListResponse:
    """All sessions by last update, split into open and closed."""
    sessions = await service.list_sessions()
    open_sessions, closed = service.split_by_state(sessions)
    return SessionListResponse(total=len(sessions), active=open_sessions, closed=closed)


@app.patch(
    "/api/chef/sessions/{session_id}/kitchen-status",
    response_model=Session,
    responses=ERROR_RESPONSES,
    tags=["Chef"],
    dependencies=[Depends(require_chef)],
)
async def update_kitchen_status(
    session_id: str,
    payload: KitchenStatusUpdate,
    service: SessionService = Depends(get_session_service),
) -> Session:
    return await service.update_kitchen_status(session_id, payload.status)


@app.post(
    "/api/chef/sessions/{session_id}/accept-bill",
    response_model=Session,
    responses=ERROR_RESPONSES,
    tags=["Chef"],
    dependencies=[Depends(require_chef)],
)
async def accept_bill(
    session_id: str,
    service: SessionService = Depends(get_session_service),
) -> Session:
    return await service.accept_bill(session_id)


@app.post(
    "/api/chef/sessions/{session_id}/force-close",
    response_model=Session,
    responses=ERROR_RESPONSES,
    tags=["Chef"],
    dependencies=[Depends(require_chef)],
)
async def force_close(
    session_id: str,
    service: SessionService = Depends(get_session_service),
) -> Session:
    return await service.force_close(session_id)


@app.post(
    "/api/chef/sessions/{session_id}/acknowledge-extras",
    response_model=Session,
    responses=ERROR_RESPONSES,
    tags=["Chef"],
    dependencies=[Depends(require_chef)],
)
async def acknowledge_extras(
    session_id: str,
    service: SessionService = Depends(get_session_service),
) -> Session:
    return await service.acknowledge_extras(session_id)


@app.delete(
    "/api/chef/sessions/closed",
    response_model=ClearClosedResponse,
    responses=ERROR_RESPONSES,
    tags=["Chef"],
    dependencies=[Depends(require_chef)],
)
async def clear_closed_sessions(
    service: SessionService = Depends(get_session_service),
) -> ClearClosedResponse:
    """Delete every closed session; deleted sessions go to the archive."""
    result = await service.clear_closed_sessions()

    rows = [archive_row(session, settings) for session in result.deleted]
    archived = True
    if rows:
        try:
            archive_sessions.delay(rows)
        except BrokerUnavailable as exc:
            logger.warning(f"Task queue unavailable ({exc}), archiving inline")
            export = await run_in_threadpool(SessionArchive().export_sessions, rows)
            if not export.get("success"):
                archived = False
                session_ids = [row["session_id"] for row in rows]
                logger.error(f"Archive export failed for {session_ids}: {export.get('message')}")

    if result.failed:
        message = (
            f"Cleared {len(result.deleted)} sessions. "
            f"Failed to clear: {', '.join(result.failed_tables)}"
        )
    else:
        message = f"Cleared {len(result.deleted)} closed sessions"
    if not archived:
        message += ". Archive export failed, see server log"

    return ClearClosedResponse(
        success=not result.failed,
        message=message,
        deleted_count=len(result.deleted),
        failed=[session.id for session in result.failed],
        archived=archived,
    )


# =============================================================================
# LIVE FEEDS
# =============================================================================

async def _stream(
    websocket: WebSocket,
    subscribe: Callable[..., Awaitable[Subscription]],
    encode: Callable[[Any], dict[str, Any]],
) -> None:
    """
    Forward every push of a subscription to the socket until the client
    disconnects; the subscription is always cancelled on the way out.
    """
    await websocket.accept()

    async def send(value: Any) -> None:
        await websocket.send_json(encode(value))

    async def report(exc: Exception) -> None:
        logger.warning(f"Live feed error: {exc}")
        await websocket.send_json({"type": "error", "detail": str(exc)})

    subscription = await subscribe(send, report)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Live feed client disconnected")
    finally:
        subscription.cancel()


@app.websocket("/ws/sessions")
async def sessions_feed(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    service: SessionService = Depends(get_session_service),
) -> None:
    """Chef dashboard: every session, most recently updated first."""
    if not _valid_chef_token(token):
        await websocket.close(code=4401)
        return
    await _stream(
        websocket,
        service.watch_sessions,
        lambda sessions: {
            "type": "sessions",
            "sessions": [_session_payload(s) for s in sessions],
        },
    )


@app.websocket("/ws/sessions/{session_id}")
async def session_feed(
    websocket: WebSocket,
    session_id: str,
    service: SessionService = Depends(get_session_service),
) -> None:
    """Diner device: one session; ``session`` is null once it is deleted."""
    async def subscribe(on_change, on_error):
        return await service.watch_session(session_id, on_change, on_error)

    await _stream(
        websocket,
        subscribe,
        lambda session: {"type": "session", "session": _session_payload(session)},
    )


@app.websocket("/ws/menu")
async def menu_feed(
    websocket: WebSocket,
    catalog: MenuCatalog = Depends(get_menu_catalog),
) -> None:
    await _stream(
        websocket,
        catalog.watch,
        lambda items: {
            "type": "menu",
            "items": [item.model_dump(mode="json", by_alias=True) for item in items],
        },
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(TablesideError)
async def domain_exception_handler(request: Request, exc: TablesideError) -> JSONResponse:
    """Map the error taxonomy onto HTTP status codes."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    )
    return JSONResponse(
        status_code=422,
        content={"success": False, "error": "validation_error", "detail": errors},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "internal_error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tableside.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
