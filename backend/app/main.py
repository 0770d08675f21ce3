from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from tailorflow_core import (
    CollectionClient,
    EntityStore,
    ExtrasPreset,
    LocalStorageError,
    RecordNotFoundError,
    RemoteGateway,
    Session,
    SyncCoordinator,
    parse_identifier,
)

app = FastAPI(title="TailorFlow Sync API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = logging.getLogger(__name__)


class CustomerPayload(BaseModel):
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    email: Optional[str] = None
    address: Optional[str] = None
    measurements: Dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None
    outstanding_balance: float = Field(default=0, alias="outstandingBalance")

    model_config = ConfigDict(populate_by_name=True)


class EmployeePayload(BaseModel):
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    email: Optional[str] = None
    role: Literal["tailor", "manager", "admin"] = "tailor"
    is_active: bool = Field(default=True, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)


class OrderItemExtraPayload(BaseModel):
    id: Optional[str] = None
    label: str
    amount: float = Field(ge=0)


class OrderItemPayload(BaseModel):
    id: Optional[str] = None
    name: str
    quantity: int = Field(default=1, ge=1)
    base_price: float = Field(default=0, alias="basePrice", ge=0)
    notes: Optional[str] = None
    extras: List[OrderItemExtraPayload] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class OrderPayload(BaseModel):
    customer_id: str = Field(alias="customerId", min_length=1)
    customer_name: str = Field(alias="customerName")
    description: str = ""
    status: Literal["pending", "inProgress", "completed", "delivered"] = "pending"
    amount: float = Field(default=0, ge=0)
    paid_amount: float = Field(default=0, alias="paidAmount", ge=0)
    due_date: Optional[str] = Field(default=None, alias="dueDate")
    notes: Optional[str] = None
    assigned_employee_id: Optional[str] = Field(default=None, alias="assignedEmployeeId")
    items: List[OrderItemPayload] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class PaymentPayload(BaseModel):
    order_id: str = Field(alias="orderId", min_length=1)
    customer_id: str = Field(alias="customerId", min_length=1)
    customer_name: str = Field(alias="customerName")
    amount: float = Field(gt=0)
    payment_mode: Literal["cash", "card", "upi", "wallet", "bank"] = Field(default="cash", alias="paymentMode")
    notes: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class ExtrasPresetPayload(BaseModel):
    id: Optional[str] = None
    label: str = Field(min_length=1)
    amount: float = Field(ge=0)
    category: Literal["design", "material", "finishing", "other"] = "other"


class AssignEmployeeRequest(BaseModel):
    employee_id: str = Field(alias="employeeId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class SyncStatusModel(BaseModel):
    is_online: bool = Field(alias="isOnline")
    is_syncing: bool = Field(alias="isSyncing")
    authenticated: bool
    last_synced_at: Optional[str] = Field(default=None, alias="lastSyncedAt")
    last_error: Optional[str] = Field(default=None, alias="lastError")
    pending: Dict[str, int]

    model_config = ConfigDict(populate_by_name=True)


@lru_cache(maxsize=1)
def store() -> EntityStore:
    return EntityStore()


@lru_cache(maxsize=1)
def get_coordinator() -> SyncCoordinator:
    return SyncCoordinator(store(), RemoteGateway())


def request_session(
    authorization: str = Header(default=""),
    shop_id: str = Header(default="", alias="X-Shop-Id"),
) -> Session:
    """Build the session from the request headers; missing values mean local-only."""
    token = None
    if authorization.startswith("Bearer "):
        token = authorization.split(" ", 1)[1].strip() or None
    return Session(access_token=token, tenant_scope=shop_id.strip() or None)


def sync_coordinator(
    session: Session = Depends(request_session),
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> SyncCoordinator:
    coordinator.use_session(session)
    return coordinator


@app.exception_handler(RecordNotFoundError)
async def record_not_found(request: Request, exc: RecordNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(LocalStorageError)
async def local_storage_failed(request: Request, exc: LocalStorageError) -> JSONResponse:
    logger.error("Local data store failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def _storage_dump(payload: BaseModel) -> Dict[str, Any]:
    return payload.model_dump(by_alias=True, exclude_unset=True)


def _build(entity: Any, data: Dict[str, Any]) -> Any:
    try:
        return entity.from_storage(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _existing(client: CollectionClient, record_id: str) -> Any:
    try:
        identifier = parse_identifier(record_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    record = client.get(identifier)
    if record is None:
        raise HTTPException(status_code=404, detail=f"{client.collection.name} record {record_id} not found")
    return record


async def _create(client: CollectionClient, payload: BaseModel) -> Dict[str, Any]:
    record = _build(client.collection.entity, payload.model_dump(by_alias=True))
    created = await client.create(record)
    return created.to_storage()


async def _update(client: CollectionClient, record_id: str, payload: BaseModel) -> Dict[str, Any]:
    existing = _existing(client, record_id)
    # fields the caller left out keep their cached values
    merged = {**existing.to_storage(), **_storage_dump(payload), "id": str(existing.id)}
    record = _build(client.collection.entity, merged)
    updated = await client.update(record)
    return updated.to_storage()


async def _delete(client: CollectionClient, record_id: str) -> Dict[str, Any]:
    existing = _existing(client, record_id)
    await client.delete(existing.id)
    return {"deleted": str(existing.id)}


async def _list(client: CollectionClient) -> List[Dict[str, Any]]:
    return [record.to_storage() for record in await client.list()]


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/status", response_model=SyncStatusModel)
def status(coordinator: SyncCoordinator = Depends(sync_coordinator)):
    return coordinator.status()


@app.post("/resync")
async def resync(coordinator: SyncCoordinator = Depends(sync_coordinator)) -> Dict[str, Any]:
    if not coordinator.authenticated:
        raise HTTPException(status_code=401, detail="Authorization token and shop id are required to sync")
    report = await coordinator.force_resync()
    if report is None:
        raise HTTPException(status_code=409, detail="A sync pass is already running")
    return {"report": report.to_dict(), "status": coordinator.status()}


@app.get("/customers")
async def list_customers(coordinator: SyncCoordinator = Depends(sync_coordinator)):
    return await _list(coordinator.customers)


@app.post("/customers", status_code=201)
async def create_customer(payload: CustomerPayload, coordinator: SyncCoordinator = Depends(sync_coordinator)):
    return await _create(coordinator.customers, payload)


@app.put("/customers/{customer_id}")
async def update_customer(
    customer_id: str,
    payload: CustomerPayload,
    coordinator: SyncCoordinator = Depends(sync_coordinator),
):
    return await _update(coordinator.customers, customer_id, payload)


@app.delete("/customers/{customer_id}")
async def delete_customer(customer_id: str, coordinator: SyncCoordinator = Depends(sync_coordinator)):
    return await _delete(coordinator.customers, customer_id)


@app.get("/employees")
async def list_employees(coordinator: SyncCoordinator = Depends(sync_coordinator)):
    return await _list(coordinator.employees)


@app.post("/employees", status_code=201)
async def create_employee(payload: EmployeePayload, coordinator: SyncCoordinator = Depends(sync_coordinator)):
    return await _create(coordinator.employees, payload)


@app.put("/employees/{employee_id}")
async def update_employee(
    employee_id: str,
    payload: EmployeePayload,
    coordinator: SyncCoordinator = Depends(sync_coordinator),
):
    return await _update(coordinator.employees, employee_id, payload)


@app.delete("/employees/{employee_id}")
async def delete_employee(employee_id: str, coordinator: SyncCoordinator = Depends(sync_coordinator)):
    return await _delete(coordinator.employees, employee_id)


@app.get("/orders")
async def list_orders(coordinator: SyncCoordinator = Depends(sync_coordinator)):
    return await _list(coordinator.orders)


@app.post("/orders", status_code=201)
async def create_order(payload: OrderPayload, coordinator: SyncCoordinator = Depends(sync_coordinator)):
    return await _create(coordinator.orders, payload)


@app.put("/orders/{order_id}")
async def update_order(
    order_id: str,
    payload: OrderPayload,
    coordinator: SyncCoordinator = Depends(sync_coordinator),
):
    return await _update(coordinator.orders, order_id, payload)


@app.delete("/orders/{order_id}")
async def delete_order(order_id: str, coordinator: SyncCoordinator = Depends(sync_coordinator)):
    return await _delete(coordinator.orders, order_id)


@app.post("/orders/{order_id}/assign")
async def assign_order(
    order_id: str,
    payload: AssignEmployeeRequest,
    coordinator: SyncCoordinator = Depends(sync_coordinator),
):
    try:
        order = await coordinator.assign_employee(order_id, payload.employee_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return order.to_storage()


@app.post("/orders/{order_id}/unassign")
async def unassign_order(order_id: str, coordinator: SyncCoordinator = Depends(sync_coordinator)):
    try:
        order = await coordinator.unassign_employee(order_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return order.to_storage()


@app.get("/payments")
async def list_payments(coordinator: SyncCoordinator = Depends(sync_coordinator)):
    return await _list(coordinator.payments)


@app.post("/payments", status_code=201)
async def create_payment(payload: PaymentPayload, coordinator: SyncCoordinator = Depends(sync_coordinator)):
    return await _create(coordinator.payments, payload)


@app.get("/activities")
async def list_activities(coordinator: SyncCoordinator = Depends(sync_coordinator)):
    return await _list(coordinator.activities)


@app.get("/extras-presets")
async def list_extras_presets(coordinator: SyncCoordinator = Depends(sync_coordinator)):
    return await _list(coordinator.presets)


@app.put("/extras-presets")
async def save_extras_presets(
    payload: List[ExtrasPresetPayload],
    coordinator: SyncCoordinator = Depends(sync_coordinator),
):
    presets = [_build(ExtrasPreset, item.model_dump()) for item in payload]
    saved = await coordinator.save_presets(presets)
    return [preset.to_storage() for preset in saved]

