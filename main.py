import asyncio
import logging
import math
import re
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo import DESCENDING
from starlette.concurrency import run_in_threadpool

from config import Settings, get_settings
from database import INSPECTIONS, NOTIFICATIONS, MongoStore, get_store, parse_object_id
from errors import register_exception_handlers
from log_config import RequestLoggingMiddleware, configure_logging
from schemas import Inspection, Notification, StatusPatch

logger = logging.getLogger("fleet")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
MAX_LIMIT = 100
# keeps skip = (page - 1) * limit inside a BSON int64
MAX_PAGE = 1_000_000_000
LEGACY_LIST_LIMIT = 50
RECENT_LIMIT = 5

router = APIRouter(prefix="/api")


# Helpers
def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def contains(value: str) -> dict:
    """Case-insensitive substring match."""
    return {"$regex": re.escape(value), "$options": "i"}


def parse_positive_int(raw: Optional[str], default: int, maximum: Optional[int] = None) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    if value < 1:
        return default
    if maximum is not None:
        value = min(value, maximum)
    return value


def pagination_block(page: int, limit: int, total: int) -> dict:
    pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "pages": pages,
        "total": total,
        "hasNext": page < pages,
        "hasPrev": page > 1,
    }


async def paginate(store: MongoStore, collection: str, query: dict, sort_field: str,
                   page_raw: Optional[str], limit_raw: Optional[str]):
    page = parse_positive_int(page_raw, DEFAULT_PAGE, MAX_PAGE)
    limit = parse_positive_int(limit_raw, DEFAULT_LIMIT, MAX_LIMIT)
    items, total = await asyncio.gather(
        run_in_threadpool(
            store.get_documents, collection, query, (sort_field, DESCENDING), (page - 1) * limit, limit
        ),
        run_in_threadpool(store.count_documents, collection, query),
    )
    return items, pagination_block(page, limit, total)


async def fetch_or_404(store: MongoStore, collection: str, raw_id: str, label: str) -> dict:
    oid = parse_object_id(raw_id)
    doc = await run_in_threadpool(store.get_document, collection, oid)
    if not doc:
        raise HTTPException(404, f"{label} not found")
    return doc


async def save_notification(store: MongoStore, payload: Notification) -> dict:
    doc = await run_in_threadpool(store.create_document, NOTIFICATIONS, payload)
    logger.info(
        "Notification saved: %s - %s", doc["driver"], doc["status"],
        extra={"collection": NOTIFICATIONS, "record_id": doc["_id"]},
    )
    return doc


# Health
@router.get("/health")
async def health(request: Request, store: MongoStore = Depends(get_store)):
    settings: Settings = request.app.state.settings
    connected = await run_in_threadpool(store.ping)
    body = {
        "status": "healthy" if connected else "unhealthy",
        "message": "Driver Return System API is running",
        "timestamp": now_iso(),
        "environment": settings.ENVIRONMENT,
        "uptime": round(time.monotonic() - request.app.state.started_at, 3),
        "database": "connected" if connected else "disconnected",
    }
    if not connected:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body


@router.get("/ping")
def ping():
    return {"status": "ok", "timestamp": now_iso(), "message": "API is responsive"}


# Stats
@router.get("/stats")
async def stats(store: MongoStore = Depends(get_store)):
    (
        total_notifications,
        unread_notifications,
        total_inspections,
        pending_inspections,
        urgent_inspections,
        recent_notifications,
        recent_inspections,
    ) = await asyncio.gather(
        run_in_threadpool(store.count_documents, NOTIFICATIONS, {}),
        run_in_threadpool(store.count_documents, NOTIFICATIONS, {"isRead": False}),
        run_in_threadpool(store.count_documents, INSPECTIONS, {}),
        run_in_threadpool(store.count_documents, INSPECTIONS, {"status": "pending"}),
        run_in_threadpool(
            store.count_documents, INSPECTIONS, {"urgencyLevel": {"$in": ["high", "critical"]}}
        ),
        run_in_threadpool(
            store.get_documents, NOTIFICATIONS, {}, ("timestamp", DESCENDING), 0, RECENT_LIMIT
        ),
        run_in_threadpool(
            store.get_documents, INSPECTIONS, {}, ("submittedAt", DESCENDING), 0, RECENT_LIMIT
        ),
    )
    return {
        "success": True,
        "data": {
            "notifications": {
                "total": total_notifications,
                "unread": unread_notifications,
                "recent": recent_notifications,
            },
            "inspections": {
                "total": total_inspections,
                "pending": pending_inspections,
                "urgent": urgent_inspections,
                "recent": recent_inspections,
            },
            "lastUpdated": now_iso(),
        },
    }


# Notifications
@router.post("/notifications", status_code=status.HTTP_201_CREATED)
async def create_notification(payload: Notification, store: MongoStore = Depends(get_store)):
    doc = await save_notification(store, payload)
    return {"success": True, "message": "Notification created successfully", "data": doc}


@router.post("/notifications/simple")
async def create_notification_simple(payload: Notification, store: MongoStore = Depends(get_store)):
    doc = await save_notification(store, payload)
    return {"success": True, "id": doc["_id"], "message": "Notification saved successfully"}


@router.post("/driver/notification")
async def create_driver_notification(payload: Notification, store: MongoStore = Depends(get_store)):
    doc = await save_notification(store, payload)
    return {"success": True, "id": doc["_id"], "message": "Driver notification received"}


@router.get("/notifications")
async def list_notifications(
    driver: Optional[str] = None,
    warehouse: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    unreadOnly: Optional[str] = None,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    store: MongoStore = Depends(get_store),
):
    query = {}
    if driver:
        query["driver"] = contains(driver)
    if warehouse:
        query["warehouse"] = contains(warehouse)
    if status:
        query["status"] = status
    if priority:
        query["priority"] = priority
    if unreadOnly == "true":
        query["isRead"] = False

    items, pagination = await paginate(store, NOTIFICATIONS, query, "timestamp", page, limit)
    return {"success": True, "data": items, "pagination": pagination}


@router.get("/notifications/list")
async def list_notifications_legacy(store: MongoStore = Depends(get_store)):
    items = await run_in_threadpool(
        store.get_documents, NOTIFICATIONS, {}, ("timestamp", DESCENDING), 0, LEGACY_LIST_LIMIT
    )
    return {"notifications": items, "count": len(items), "timestamp": now_iso()}


@router.get("/notifications/{nid}")
async def get_notification(nid: str, store: MongoStore = Depends(get_store)):
    doc = await fetch_or_404(store, NOTIFICATIONS, nid, "Notification")
    return {"success": True, "data": doc}


@router.patch("/notifications/{nid}/read")
async def mark_notification_read(nid: str, store: MongoStore = Depends(get_store)):
    oid = parse_object_id(nid)
    doc = await run_in_threadpool(store.update_document, NOTIFICATIONS, oid, {"isRead": True})
    if not doc:
        raise HTTPException(404, "Notification not found")
    return {"success": True, "message": "Notification marked as read", "data": doc}


# Inspections
@router.post("/inspections", status_code=status.HTTP_201_CREATED)
async def create_inspection(payload: Inspection, store: MongoStore = Depends(get_store)):
    doc = await run_in_threadpool(store.create_document, INSPECTIONS, payload)
    logger.info(
        "Inspection submitted: %s tractor %s urgency %s",
        doc["driver"], doc["tractorNumber"], doc["urgencyLevel"],
        extra={"collection": INSPECTIONS, "record_id": doc["_id"]},
    )
    return {
        "success": True,
        "message": "Inspection submitted successfully",
        "data": doc,
        "inspection": doc,
    }


@router.get("/inspections")
async def list_inspections(
    driver: Optional[str] = None,
    tractorNumber: Optional[str] = None,
    status: Optional[str] = None,
    urgencyLevel: Optional[str] = None,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    store: MongoStore = Depends(get_store),
):
    query = {}
    if driver:
        query["driver"] = contains(driver)
    if tractorNumber:
        query["tractorNumber"] = contains(tractorNumber)
    if status:
        query["status"] = status
    if urgencyLevel:
        query["urgencyLevel"] = urgencyLevel

    items, pagination = await paginate(store, INSPECTIONS, query, "submittedAt", page, limit)
    return {"success": True, "data": items, "inspections": items, "pagination": pagination}


@router.get("/inspections/{iid}")
async def get_inspection(iid: str, store: MongoStore = Depends(get_store)):
    doc = await fetch_or_404(store, INSPECTIONS, iid, "Inspection")
    return {"success": True, "data": doc}


@router.patch("/inspections/{iid}/status")
async def update_inspection_status(iid: str, body: StatusPatch, store: MongoStore = Depends(get_store)):
    oid = parse_object_id(iid)
    doc = await run_in_threadpool(store.update_document, INSPECTIONS, oid, {"status": body.status})
    if not doc:
        raise HTTPException(404, "Inspection not found")
    logger.info(
        "Inspection status set to %s", body.status,
        extra={"collection": INSPECTIONS, "record_id": doc["_id"]},
    )
    return {"success": True, "message": "Inspection status updated", "data": doc}


# App factory
def create_app(settings: Optional[Settings] = None, store: Optional[MongoStore] = None) -> FastAPI:
    settings = settings or get_settings()
    store = store or MongoStore.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # A failed ping raises here and aborts startup
        await run_in_threadpool(store.connect)
        yield
        await run_in_threadpool(store.close)

    app = FastAPI(title="Fleet Check-in API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.started_at = time.monotonic()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app, is_production=settings.is_production)

    @app.get("/")
    def read_root():
        return {
            "message": "Driver Return System API",
            "version": app.version,
            "endpoints": [
                "GET /api/health - Health check",
                "GET /api/ping - Simple ping test",
                "GET /api/stats - Dashboard statistics",
                "GET /api/notifications - Filtered, paginated notifications",
                "POST /api/notifications - Create new notification",
                "GET /api/notifications/:id - Single notification",
                "PATCH /api/notifications/:id/read - Mark notification read",
                "POST /api/notifications/simple - Legacy create",
                "GET /api/notifications/list - Legacy list (latest 50)",
                "POST /api/driver/notification - Alternative driver endpoint",
                "GET /api/inspections - Filtered, paginated inspections",
                "POST /api/inspections - Submit inspection",
                "GET /api/inspections/:id - Single inspection",
                "PATCH /api/inspections/:id/status - Update inspection status",
            ],
        }

    app.include_router(router)
    return app


def run():
    try:
        settings = get_settings()
    except ValidationError as exc:
        configure_logging()
        logger.critical("Invalid configuration, MONGODB_URI must be set: %s", exc)
        sys.exit(1)

    configure_logging(settings.LOG_LEVEL)
    import uvicorn
    logger.info("Fleet API starting on port %s (%s)", settings.PORT, settings.ENVIRONMENT)
    uvicorn.run(create_app(settings), host=settings.HOST, port=settings.PORT, log_config=None, access_log=False)


if __name__ == "__main__":
    run()
