"""Derived figures kept in step with orders and payments."""

from __future__ import annotations

import dataclasses
from typing import Iterable, List, Optional

from .identifiers import Identifier
from .models import ActivityItem, Employee, Order, OrderItem, Payment, utc_now_iso


def item_total(item: OrderItem) -> float:
    extras = sum(extra.amount for extra in item.extras)
    return (item.base_price + extras) * item.quantity


def order_total(items: Iterable[OrderItem]) -> float:
    return sum(item_total(item) for item in items)


def cap_paid_amount(order: Order) -> Order:
    if order.paid_amount > order.amount:
        return dataclasses.replace(order, paid_amount=order.amount)
    return order


def apply_payment(order: Order, amount: float) -> Order:
    return cap_paid_amount(dataclasses.replace(order, paid_amount=order.paid_amount + amount))


def outstanding_balance(customer_id: Identifier, orders: Iterable[Order]) -> float:
    return sum(order.amount - order.paid_amount for order in orders if order.customer_id == customer_id)


def stamp_status_change(before: Optional[Order], after: Order) -> Order:
    """Fill ``completedAt``/``deliveredAt`` the first time an order reaches that status."""
    if before is not None and before.status == after.status:
        return after
    now = utc_now_iso()
    if after.status == "completed" and not after.completed_at:
        return dataclasses.replace(after, completed_at=now)
    if after.status == "delivered" and not after.delivered_at:
        return dataclasses.replace(after, delivered_at=now)
    return after


def with_assignment(employee: Employee, order_id: Identifier, assigned: bool) -> Employee:
    orders: List[Identifier] = [item for item in employee.assigned_orders if item != order_id]
    if assigned:
        orders.append(order_id)
    if orders == employee.assigned_orders:
        return employee
    return dataclasses.replace(employee, assigned_orders=orders)


def format_currency(amount: float) -> str:
    return f"₹{amount:,.0f}"


def activity_for_new_order(order: Order) -> ActivityItem:
    return ActivityItem(
        type="order_created",
        order_id=order.id,
        customer_name=order.customer_name,
        description=f"New order created for {order.customer_name}",
    )


def activity_for_status_change(before: Optional[Order], after: Order) -> Optional[ActivityItem]:
    if before is None or before.status == after.status:
        return None
    if after.status == "completed":
        kind, verb = "order_completed", "completed"
    elif after.status == "delivered":
        kind, verb = "order_delivered", "delivered"
    else:
        kind, verb = "order_updated", "updated"
    return ActivityItem(
        type=kind,
        order_id=after.id,
        customer_name=after.customer_name,
        description=f"Order {verb} for {after.customer_name}",
    )


def activity_for_payment(payment: Payment) -> ActivityItem:
    return ActivityItem(
        type="payment_received",
        order_id=payment.order_id,
        customer_name=payment.customer_name,
        description=f"Payment of {format_currency(payment.amount)} received from {payment.customer_name}",
    )
