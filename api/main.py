"""
FastAPI application for the logistics notification core.

This application provides:
1. Shipment intake and delivery status updates (/shipments/...)
2. Manifest dispatch, receipt and listings (/manifests/...)
3. The notification center and push subscriptions (/notifications/...)

Identity comes from the trusted gateway headers X-User-Id, X-User-Role and
X-Tenant-Id. Domain errors are returned as {"reason", "detail",
"offending_ids"} with the matching 4xx status.

Run with:
    uv run uvicorn api.main:app --reload

Then visit http://localhost:8000/docs for interactive API documentation.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from logistics.intake import ShipmentIntake
from logistics.manifests import ManifestCoordinator, ManifestPage
from logistics.transitions import StatusTransitionValidator
from notifications.dispatcher import EventDispatcher
from notifications.notification_service import NotificationService
from notifications.push import PushDeliveryService
from notifications.store_writer import NotificationStoreWriter
from notifications.subscriptions import PushSubscriptionRegistry
from shared.channels import PushChannel
from shared.config import get_settings
from shared.data_store import DataStore
from shared.errors import LogisticsError
from shared.models import (
    Actor,
    DeliveryProof,
    Manifest,
    ManifestMeta,
    ManifestStatus,
    Notification,
    Role,
    Shipment,
    ShipmentStatus,
)

# Configure logging
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger("api")


# =============================================================================
# Request / Response models
# =============================================================================

class CreateShipmentRequest(BaseModel):
    destination_branch: str
    tracking_id: Optional[str] = None
    note: Optional[str] = Field(default=None, max_length=500)


class StatusUpdateRequest(BaseModel):
    """
    Requested delivery status change.

    ``version`` is the shipment version the client last read; when given,
    a newer stored version is rejected with 409.
    """
    status: ShipmentStatus
    version: Optional[int] = None
    note: Optional[str] = Field(default=None, max_length=500)
    failure_reason: Optional[str] = Field(default=None, max_length=500)
    delivery_proof: Optional[DeliveryProof] = None
    assigned_staff_id: Optional[str] = None


class CreateManifestRequest(BaseModel):
    to_branch: str
    shipment_ids: list[str]
    vehicle_number: Optional[str] = Field(default=None, max_length=50)
    driver_name: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=500)


class PushKeys(BaseModel):
    auth: str
    p256dh: str


class SubscribeRequest(BaseModel):
    """The browser's PushSubscription JSON."""
    endpoint: str
    keys: PushKeys


class UnsubscribeRequest(BaseModel):
    endpoint: str


class ReceiveManifestResult(BaseModel):
    manifest: Manifest
    shipments: list[Shipment]


class NotificationList(BaseModel):
    data: list[Notification]
    unread_count: int


# =============================================================================
# Application state
# =============================================================================

@dataclass
class AppState:
    """Process-wide wiring of the core components."""
    data_store: DataStore
    dispatcher: EventDispatcher
    notifications: NotificationService
    writer: NotificationStoreWriter
    registry: PushSubscriptionRegistry
    intake: ShipmentIntake
    coordinator: ManifestCoordinator
    validator: StatusTransitionValidator


_state: Optional[AppState] = None


def build_state(data_store: Optional[DataStore] = None, channel: Optional[PushChannel] = None) -> AppState:
    settings = get_settings()
    data_store = data_store or DataStore(settings.data_dir)
    dispatcher = EventDispatcher(history_limit=settings.history_limit)
    writer = NotificationStoreWriter(data_store)
    return AppState(
        data_store=data_store,
        dispatcher=dispatcher,
        notifications=NotificationService(
            dispatcher=dispatcher,
            data_store=data_store,
            writer=writer,
            push=PushDeliveryService(data_store, channel or PushChannel(settings)),
            history_limit=settings.history_limit,
        ),
        writer=writer,
        registry=PushSubscriptionRegistry(data_store),
        intake=ShipmentIntake(data_store, dispatcher),
        coordinator=ManifestCoordinator(data_store, dispatcher),
        validator=StatusTransitionValidator(data_store, dispatcher),
    )


def get_state() -> AppState:
    global _state
    if _state is None:
        _state = build_state()
    return _state


def reset_api_state(data_store: Optional[DataStore] = None, channel: Optional[PushChannel] = None) -> AppState:
    """Rebuild the application wiring (useful for testing)."""
    global _state
    _state = build_state(data_store, channel)
    return _state


# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the notification service; drain pending notifications on shutdown."""
    state = get_state()
    state.notifications.start()
    logger.info("Starting logistics notification API")
    yield
    await state.dispatcher.drain()
    state.notifications.stop()
    logger.info("Shutting down")


app = FastAPI(
    title="Logistics Notification Core",
    description="""
    Branch transfer, last-mile delivery and the notifications they trigger.

    ## Endpoints

    - `/shipments/*` - Intake and delivery status transitions
    - `/manifests/*` - Dispatch and receive batches of shipments between branches
    - `/notifications/*` - Notification center and push subscriptions
    """,
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(LogisticsError)
async def logistics_error_handler(request: Request, exc: LogisticsError):
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.reason}: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def get_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[Role] = Header(default=None),
    x_tenant_id: Optional[str] = Header(default=None),
) -> Actor:
    """The verified caller, as forwarded by the gateway."""
    if not x_user_id or not x_user_role or not x_tenant_id:
        raise HTTPException(status_code=401, detail="Missing identity headers")
    return Actor(user_id=x_user_id, role=x_user_role, tenant_id=x_tenant_id)


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "logistics-notification-core",
        "push_enabled": get_settings().push_enabled,
    }


# =============================================================================
# Shipments
# =============================================================================

@app.post("/shipments", response_model=Shipment, status_code=201, tags=["Shipments"])
async def create_shipment(request: CreateShipmentRequest, actor: Actor = Depends(get_actor)):
    """Register a shipment at the caller's branch."""
    return await get_state().intake.create_shipment(
        actor,
        request.destination_branch,
        tracking_id=request.tracking_id,
        note=request.note,
    )


@app.patch("/shipments/{shipment_id}/status", response_model=Shipment, tags=["Shipments"])
async def update_shipment_status(
    shipment_id: str,
    request: StatusUpdateRequest,
    actor: Actor = Depends(get_actor),
):
    """
    Move a shipment through delivery.

    Sending the pre-assignment status of an Assigned shipment unassigns it.
    """
    return await get_state().validator.transition_by_id(
        shipment_id,
        request.status,
        actor,
        expected_version=request.version,
        note=request.note,
        failure_reason=request.failure_reason,
        delivery_proof=request.delivery_proof,
        assigned_staff_id=request.assigned_staff_id,
    )


# =============================================================================
# Manifests
# =============================================================================

@app.get("/manifests", response_model=ManifestPage, tags=["Manifests"])
async def list_manifests(
    direction: str = "all",
    status: Optional[ManifestStatus] = None,
    page: int = 1,
    limit: int = 20,
    actor: Actor = Depends(get_actor),
):
    return get_state().coordinator.list_manifests(actor, direction, status, page, limit)


@app.get("/manifests/available-shipments", response_model=list[Shipment], tags=["Manifests"])
async def available_shipments(
    destination_branch: Optional[str] = None,
    actor: Actor = Depends(get_actor),
):
    """Shipments at the caller's branch that can go on a manifest."""
    return get_state().coordinator.available_shipments(actor, destination_branch)


@app.post("/manifests", response_model=Manifest, status_code=201, tags=["Manifests"])
async def create_manifest(request: CreateManifestRequest, actor: Actor = Depends(get_actor)):
    """Dispatch a batch of shipments to another branch."""
    meta = ManifestMeta(
        vehicle_number=request.vehicle_number,
        driver_name=request.driver_name,
        notes=request.notes,
    )
    return await get_state().coordinator.create_manifest(actor, request.to_branch, request.shipment_ids, meta)


@app.put("/manifests/{manifest_id}/receive", response_model=ReceiveManifestResult, tags=["Manifests"])
async def receive_manifest(manifest_id: str, actor: Actor = Depends(get_actor)):
    state = get_state()
    manifest = await state.coordinator.receive_manifest(manifest_id, actor)
    shipments = state.data_store.get_shipments(manifest.shipment_ids)
    return ReceiveManifestResult(manifest=manifest, shipments=list(shipments.values()))


# =============================================================================
# Notification center
# =============================================================================

@app.get("/notifications", response_model=NotificationList, tags=["Notifications"])
async def list_notifications(
    read: Optional[bool] = None,
    limit: Optional[int] = None,
    actor: Actor = Depends(get_actor),
):
    """The caller's notifications in their branch, newest first."""
    writer = get_state().writer
    return NotificationList(
        data=writer.list_notifications(actor.tenant_id, actor.user_id, read=read, limit=limit),
        unread_count=writer.unread_count(actor.tenant_id, actor.user_id),
    )


@app.get("/notifications/unread-count", tags=["Notifications"])
async def unread_count(actor: Actor = Depends(get_actor)):
    return {"unread_count": get_state().writer.unread_count(actor.tenant_id, actor.user_id)}


@app.patch("/notifications/{notification_id}/read", response_model=Notification, tags=["Notifications"])
async def mark_read(notification_id: str, actor: Actor = Depends(get_actor)):
    return get_state().writer.mark_read(actor.tenant_id, actor.user_id, notification_id)


@app.post("/notifications/read-all", tags=["Notifications"])
async def mark_all_read(actor: Actor = Depends(get_actor)):
    updated = get_state().writer.mark_all_read(actor.tenant_id, actor.user_id)
    return {"updated": updated}


@app.post("/notifications/subscribe", status_code=201, tags=["Notifications"])
async def subscribe(request: SubscribeRequest, actor: Actor = Depends(get_actor)):
    """Register this device for push notifications."""
    subscription = get_state().registry.subscribe(
        actor,
        request.endpoint,
        request.keys.auth,
        request.keys.p256dh,
    )
    return {"id": subscription.id, "endpoint": subscription.endpoint}


@app.post("/notifications/unsubscribe", tags=["Notifications"])
async def unsubscribe(request: UnsubscribeRequest, actor: Actor = Depends(get_actor)):
    get_state().registry.unsubscribe(actor, request.endpoint)
    return {"success": True}
