"""Business records and their local (camelCase) and remote (snake_case) shapes.

Local records are persisted in the shape the UI renders. Remote rows follow the
Supabase table columns; ``shop_id`` is added by the gateway, never here.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type, TypeVar

from .identifiers import (
    Identifier,
    format_identifier,
    parse_identifier,
    parse_optional_identifier,
)

RecordT = TypeVar("RecordT")


def utc_now_iso() -> str:
    return dt.datetime.now(dt.UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _number(value: Any, default: float = 0) -> float:
    if value is None or value == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return int(number) if number.is_integer() else number


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _id_or_none(data: Dict[str, Any]) -> Optional[Identifier]:
    return parse_optional_identifier(data.get("id"))


@dataclass
class Customer:
    name: str
    phone: str
    id: Optional[Identifier] = None
    email: Optional[str] = None
    address: Optional[str] = None
    measurements: Dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None
    created_at: Optional[str] = None
    outstanding_balance: float = 0

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "Customer":
        measurements = data.get("measurements")
        return cls(
            id=_id_or_none(data),
            name=str(data.get("name") or ""),
            phone=str(data.get("phone") or ""),
            email=_optional_str(data.get("email")),
            address=_optional_str(data.get("address")),
            measurements=dict(measurements) if isinstance(measurements, dict) else {},
            notes=_optional_str(data.get("notes")),
            created_at=_optional_str(data.get("createdAt")),
            outstanding_balance=_number(data.get("outstandingBalance")),
        )

    def to_storage(self) -> Dict[str, Any]:
        return {
            "id": format_identifier(self.id),
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "measurements": dict(self.measurements),
            "notes": self.notes,
            "createdAt": self.created_at,
            "outstandingBalance": self.outstanding_balance,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Customer":
        measurements = row.get("measurements")
        return cls(
            id=parse_identifier(row.get("id")),
            name=str(row.get("name") or ""),
            phone=str(row.get("phone") or ""),
            email=_optional_str(row.get("email")),
            address=_optional_str(row.get("address")),
            measurements=dict(measurements) if isinstance(measurements, dict) else {},
            notes=_optional_str(row.get("notes")),
            created_at=_optional_str(row.get("created_at")),
            outstanding_balance=_number(row.get("outstanding_balance")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "measurements": dict(self.measurements),
            "notes": self.notes,
            "outstanding_balance": self.outstanding_balance or 0,
        }


@dataclass
class Employee:
    name: str
    phone: str
    id: Optional[Identifier] = None
    email: Optional[str] = None
    role: str = "tailor"
    assigned_orders: List[Identifier] = field(default_factory=list)
    joined_at: Optional[str] = None
    is_active: bool = True

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "Employee":
        assigned = data.get("assignedOrders") or []
        return cls(
            id=_id_or_none(data),
            name=str(data.get("name") or ""),
            phone=str(data.get("phone") or ""),
            email=_optional_str(data.get("email")),
            role=str(data.get("role") or "tailor"),
            assigned_orders=[parse_identifier(item) for item in assigned if item],
            joined_at=_optional_str(data.get("joinedAt")),
            is_active=bool(data.get("isActive", True)),
        )

    def to_storage(self) -> Dict[str, Any]:
        return {
            "id": format_identifier(self.id),
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "role": self.role,
            "assignedOrders": [str(item) for item in self.assigned_orders],
            "joinedAt": self.joined_at,
            "isActive": self.is_active,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Employee":
        # assigned orders are derived from the orders table, not stored remotely
        return cls(
            id=parse_identifier(row.get("id")),
            name=str(row.get("name") or ""),
            phone=str(row.get("phone") or ""),
            email=_optional_str(row.get("email")),
            role=str(row.get("role") or "tailor"),
            joined_at=_optional_str(row.get("joined_at") or row.get("created_at")),
            is_active=bool(row.get("is_active", True)),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
        }


@dataclass
class OrderItemExtra:
    label: str
    amount: float
    id: Optional[Identifier] = None

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "OrderItemExtra":
        return cls(
            id=_id_or_none(data),
            label=str(data.get("label") or ""),
            amount=_number(data.get("amount")),
        )

    def to_storage(self) -> Dict[str, Any]:
        return {"id": format_identifier(self.id), "label": self.label, "amount": self.amount}

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "OrderItemExtra":
        return cls(
            id=parse_identifier(row.get("id")),
            label=str(row.get("label") or ""),
            amount=_number(row.get("amount")),
        )

    def to_row(self, order_item_id: Identifier) -> Dict[str, Any]:
        return {"order_item_id": str(order_item_id), "label": self.label, "amount": self.amount}


@dataclass
class OrderItem:
    name: str
    quantity: int = 1
    base_price: float = 0
    id: Optional[Identifier] = None
    notes: Optional[str] = None
    extras: List[OrderItemExtra] = field(default_factory=list)

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "OrderItem":
        # older local records stored a flat ``price``
        base_price = data.get("basePrice", data.get("price"))
        return cls(
            id=_id_or_none(data),
            name=str(data.get("name") or ""),
            quantity=_int(data.get("quantity"), 1),
            base_price=_number(base_price),
            notes=_optional_str(data.get("notes")),
            extras=[
                OrderItemExtra.from_storage(extra)
                for extra in data.get("extras") or []
                if isinstance(extra, dict)
            ],
        )

    def to_storage(self) -> Dict[str, Any]:
        return {
            "id": format_identifier(self.id),
            "name": self.name,
            "quantity": self.quantity,
            "basePrice": self.base_price,
            "notes": self.notes,
            "extras": [extra.to_storage() for extra in self.extras],
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any], extras: List[OrderItemExtra]) -> "OrderItem":
        return cls(
            id=parse_identifier(row.get("id")),
            name=str(row.get("name") or ""),
            quantity=_int(row.get("quantity"), 1),
            base_price=_number(row.get("base_price")),
            notes=_optional_str(row.get("notes")),
            extras=extras,
        )

    def to_row(self, order_id: Identifier) -> Dict[str, Any]:
        return {
            "order_id": str(order_id),
            "name": self.name,
            "quantity": self.quantity,
            "base_price": self.base_price,
            "notes": self.notes,
        }


@dataclass
class Order:
    customer_id: Identifier
    customer_name: str
    id: Optional[Identifier] = None
    description: str = ""
    status: str = "pending"
    amount: float = 0
    paid_amount: float = 0
    due_date: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    delivered_at: Optional[str] = None
    notes: Optional[str] = None
    assigned_employee_id: Optional[Identifier] = None
    items: List[OrderItem] = field(default_factory=list)

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "Order":
        return cls(
            id=_id_or_none(data),
            customer_id=parse_identifier(data.get("customerId")),
            customer_name=str(data.get("customerName") or ""),
            description=str(data.get("description") or ""),
            status=str(data.get("status") or "pending"),
            amount=_number(data.get("amount")),
            paid_amount=_number(data.get("paidAmount")),
            due_date=_optional_str(data.get("dueDate")),
            created_at=_optional_str(data.get("createdAt")),
            completed_at=_optional_str(data.get("completedAt")),
            delivered_at=_optional_str(data.get("deliveredAt")),
            notes=_optional_str(data.get("notes")),
            assigned_employee_id=parse_optional_identifier(data.get("assignedEmployeeId")),
            items=[OrderItem.from_storage(item) for item in data.get("items") or [] if isinstance(item, dict)],
        )

    def to_storage(self) -> Dict[str, Any]:
        return {
            "id": format_identifier(self.id),
            "customerId": str(self.customer_id),
            "customerName": self.customer_name,
            "description": self.description,
            "status": self.status,
            "amount": self.amount,
            "paidAmount": self.paid_amount,
            "dueDate": self.due_date,
            "createdAt": self.created_at,
            "completedAt": self.completed_at,
            "deliveredAt": self.delivered_at,
            "notes": self.notes,
            "assignedEmployeeId": format_identifier(self.assigned_employee_id),
            "items": [item.to_storage() for item in self.items],
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any], items: List[OrderItem] | None = None) -> "Order":
        return cls(
            id=parse_identifier(row.get("id")),
            customer_id=parse_identifier(row.get("customer_id")),
            customer_name=str(row.get("customer_name") or ""),
            description=str(row.get("description") or ""),
            status=str(row.get("status") or "pending"),
            amount=_number(row.get("amount")),
            paid_amount=_number(row.get("paid_amount")),
            due_date=_optional_str(row.get("due_date")),
            created_at=_optional_str(row.get("created_at")),
            completed_at=_optional_str(row.get("completed_at")),
            delivered_at=_optional_str(row.get("delivered_at")),
            notes=_optional_str(row.get("notes")),
            assigned_employee_id=parse_optional_identifier(row.get("assigned_employee_id")),
            items=list(items or []),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "customer_id": str(self.customer_id),
            "customer_name": self.customer_name,
            "description": self.description,
            "status": self.status,
            "amount": self.amount,
            "paid_amount": self.paid_amount,
            "due_date": self.due_date,
            "assigned_employee_id": format_identifier(self.assigned_employee_id),
            "notes": self.notes,
            "completed_at": self.completed_at,
            "delivered_at": self.delivered_at,
        }


@dataclass
class Payment:
    order_id: Identifier
    customer_id: Identifier
    customer_name: str
    amount: float
    id: Optional[Identifier] = None
    payment_mode: str = "cash"
    created_at: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "Payment":
        return cls(
            id=_id_or_none(data),
            order_id=parse_identifier(data.get("orderId")),
            customer_id=parse_identifier(data.get("customerId")),
            customer_name=str(data.get("customerName") or ""),
            amount=_number(data.get("amount")),
            payment_mode=str(data.get("paymentMode") or "cash"),
            created_at=_optional_str(data.get("createdAt")),
            notes=_optional_str(data.get("notes")),
        )

    def to_storage(self) -> Dict[str, Any]:
        return {
            "id": format_identifier(self.id),
            "orderId": str(self.order_id),
            "customerId": str(self.customer_id),
            "customerName": self.customer_name,
            "amount": self.amount,
            "paymentMode": self.payment_mode,
            "createdAt": self.created_at,
            "notes": self.notes,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Payment":
        return cls(
            id=parse_identifier(row.get("id")),
            order_id=parse_identifier(row.get("order_id")),
            customer_id=parse_identifier(row.get("customer_id")),
            customer_name=str(row.get("customer_name") or ""),
            amount=_number(row.get("amount")),
            payment_mode=str(row.get("payment_mode") or "cash"),
            created_at=_optional_str(row.get("created_at")),
            notes=_optional_str(row.get("notes")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "order_id": str(self.order_id),
            "customer_id": str(self.customer_id),
            "customer_name": self.customer_name,
            "amount": self.amount,
            "payment_mode": self.payment_mode,
            "notes": self.notes,
        }


@dataclass
class ExtrasPreset:
    label: str
    amount: float
    id: Optional[Identifier] = None
    category: str = "other"

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "ExtrasPreset":
        return cls(
            id=_id_or_none(data),
            label=str(data.get("label") or ""),
            amount=_number(data.get("amount")),
            category=str(data.get("category") or "other"),
        )

    def to_storage(self) -> Dict[str, Any]:
        return {
            "id": format_identifier(self.id),
            "label": self.label,
            "amount": self.amount,
            "category": self.category,
        }

    from_row = from_storage

    def to_row(self) -> Dict[str, Any]:
        return {"label": self.label, "amount": self.amount, "category": self.category}


@dataclass
class ActivityItem:
    type: str
    customer_name: str
    description: str
    id: Optional[Identifier] = None
    order_id: Optional[Identifier] = None
    timestamp: Optional[str] = None

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "ActivityItem":
        return cls(
            id=_id_or_none(data),
            type=str(data.get("type") or "order_updated"),
            order_id=parse_optional_identifier(data.get("orderId")),
            customer_name=str(data.get("customerName") or ""),
            description=str(data.get("description") or ""),
            timestamp=_optional_str(data.get("timestamp")),
        )

    def to_storage(self) -> Dict[str, Any]:
        return {
            "id": format_identifier(self.id),
            "type": self.type,
            "orderId": format_identifier(self.order_id),
            "customerName": self.customer_name,
            "description": self.description,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ActivityItem":
        return cls(
            id=parse_identifier(row.get("id")),
            type=str(row.get("type") or "order_updated"),
            order_id=parse_optional_identifier(row.get("order_id")),
            customer_name=str(row.get("customer_name") or ""),
            description=str(row.get("description") or ""),
            timestamp=_optional_str(row.get("created_at")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "order_id": format_identifier(self.order_id),
            "customer_name": self.customer_name,
            "description": self.description,
        }


@dataclass(frozen=True)
class Collection:
    """Describes one persisted collection and where it lives remotely."""

    name: str
    entity: Type[Any]
    table_env: str
    default_table: str
    created_field: Optional[str] = "created_at"
    order_by: str = "created_at.desc"
    drainable: bool = False

    @property
    def storage_file(self) -> str:
        return f"{self.name}_local.json"


CUSTOMERS = Collection("customers", Customer, "SUPABASE_CUSTOMERS_TABLE", "customers", drainable=True)
EMPLOYEES = Collection(
    "employees",
    Employee,
    "SUPABASE_EMPLOYEES_TABLE",
    "employees",
    created_field="joined_at",
    drainable=True,
)
ORDERS = Collection("orders", Order, "SUPABASE_ORDERS_TABLE", "orders", drainable=True)
PAYMENTS = Collection("payments", Payment, "SUPABASE_PAYMENTS_TABLE", "payments", drainable=True)
ACTIVITIES = Collection(
    "activities",
    ActivityItem,
    "SUPABASE_ACTIVITIES_TABLE",
    "activities",
    created_field="timestamp",
)
PRESETS = Collection(
    "extras_presets",
    ExtrasPreset,
    "SUPABASE_EXTRAS_PRESETS_TABLE",
    "extras_presets",
    created_field=None,
    order_by="category.asc",
)

# Promotion order follows the foreign-key graph.
DRAIN_ORDER = (CUSTOMERS, EMPLOYEES, ORDERS, PAYMENTS)


def with_id(record: RecordT, identifier: Identifier) -> RecordT:
    return dataclasses.replace(record, id=identifier)  # type: ignore[type-var]
