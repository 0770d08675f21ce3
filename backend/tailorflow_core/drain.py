"""Promotion of locally created records into the remote store.

Collections are promoted in foreign-key order (customers and employees, then
orders, then payments) so every reference can be rewritten through the
remapper before the referencing record is submitted. A failed record stays
pending and the pass moves on.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List

from .errors import AuthError, GatewayError, TransportError
from .gateway import RemoteGateway
from .identifiers import Identifier, LocalId, RemoteId, is_local
from .models import (
    CUSTOMERS,
    DRAIN_ORDER,
    EMPLOYEES,
    ORDERS,
    PAYMENTS,
    Collection,
    Employee,
    Order,
    OrderItem,
    Payment,
    with_id,
)
from .remapper import IdentifierRemapper
from .store import EntityStore

logger = logging.getLogger(__name__)


@dataclass
class CollectionReport:
    promoted: int = 0
    pending: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "promoted": self.promoted,
            "pending": self.pending,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


@dataclass
class DrainReport:
    collections: Dict[str, CollectionReport] = field(
        default_factory=lambda: {collection.name: CollectionReport() for collection in DRAIN_ORDER}
    )
    connectivity_failed: bool = False

    def __getitem__(self, name: str) -> CollectionReport:
        return self.collections[name]

    @property
    def promoted_total(self) -> int:
        return sum(report.promoted for report in self.collections.values())

    @property
    def pending_total(self) -> int:
        return sum(report.pending for report in self.collections.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connectivityFailed": self.connectivity_failed,
            "collections": {name: report.to_dict() for name, report in self.collections.items()},
        }


async def create_order_items(
    gateway: RemoteGateway,
    order_id: Identifier,
    items: List[OrderItem],
    created: List[OrderItem],
) -> List[OrderItem]:
    """Create each item and its extras under ``order_id``, appending to ``created`` as they land."""
    for item in items:
        remote_item = await gateway.create_order_item(order_id, item)
        created.append(remote_item)
        for extra in item.extras:
            remote_extra = await gateway.create_item_extra(remote_item.id, extra)
            remote_item.extras.append(remote_extra)
    return created


async def submit_order(gateway: RemoteGateway, order: Order) -> Order:
    """Create an order with its line items.

    The items are separate requests. If one fails, the parent row is deleted
    again and the error re-raised so the order can be retried whole. If that
    compensating delete fails too, the partially created order is returned so
    it is not submitted a second time.
    """
    parent = await gateway.create(ORDERS, order)
    created: List[OrderItem] = []
    try:
        await create_order_items(gateway, parent.id, order.items, created)
    except GatewayError as exc:
        try:
            await gateway.delete(ORDERS, parent.id)
        except GatewayError as cleanup_exc:
            logger.warning(
                "Compensating delete of order %s failed (%s); keeping it with %d of %d items",
                parent.id,
                cleanup_exc,
                len(created),
                len(order.items),
            )
            return dataclasses.replace(parent, items=created)
        raise exc
    return dataclasses.replace(parent, items=created)


async def replace_order_items(gateway: RemoteGateway, order_id: Identifier, items: List[OrderItem]) -> List[OrderItem]:
    await gateway.delete_order_items(order_id)
    return await create_order_items(gateway, order_id, items, [])


async def push_update(gateway: RemoteGateway, collection: Collection, record: Any) -> Any:
    """Write a remote record's current state, replacing an order's line items."""
    remote = await gateway.update(collection, record.id, record)
    if collection is ORDERS:
        items = await replace_order_items(gateway, record.id, record.items)
        return dataclasses.replace(remote, items=items)
    if collection is EMPLOYEES:
        return dataclasses.replace(remote, assigned_orders=list(record.assigned_orders))
    return remote


def resolve_references(remapper: IdentifierRemapper, record: Any) -> Any:
    """Rewrite the foreign keys ``record`` holds through ``remapper``."""
    if isinstance(record, Order):
        return dataclasses.replace(
            record,
            customer_id=remapper.resolve(record.customer_id),
            assigned_employee_id=remapper.resolve_optional(record.assigned_employee_id),
        )
    if isinstance(record, Payment):
        return dataclasses.replace(
            record,
            order_id=remapper.resolve(record.order_id),
            customer_id=remapper.resolve(record.customer_id),
        )
    if isinstance(record, Employee):
        return dataclasses.replace(
            record,
            assigned_orders=[remapper.resolve(order_id) for order_id in record.assigned_orders],
        )
    return record


def has_local_references(record: Any) -> bool:
    """True when a submitted column of ``record`` still points at an unpromoted record."""
    if isinstance(record, Order):
        return is_local(record.customer_id) or is_local(record.assigned_employee_id)
    if isinstance(record, Payment):
        return is_local(record.order_id) or is_local(record.customer_id)
    return False


class DrainPass:
    def __init__(self, store: EntityStore, gateway: RemoteGateway, remapper: IdentifierRemapper) -> None:
        self.store = store
        self.gateway = gateway
        self.remapper = remapper

    async def run(self) -> DrainReport:
        self.remapper.reset()
        report = DrainReport()
        pending = {collection.name: [record.id for record in self.store.pending(collection)] for collection in DRAIN_ORDER}

        for collection in DRAIN_ORDER:
            for local_id in pending[collection.name]:
                await self._promote(collection, local_id, report)

        self._rewrite_pending_references()
        for collection in DRAIN_ORDER:
            report[collection.name].pending = len(self.store.pending(collection))

        logger.info(
            "Drain pass promoted %d record(s); %d still pending",
            report.promoted_total,
            report.pending_total,
        )
        return report

    async def _promote(self, collection: Collection, local_id: LocalId, report: DrainReport) -> None:
        # read the current copy: it may have been edited or deleted while an
        # earlier request was in flight
        record = self.store.get(collection, local_id)
        if record is None:
            return
        candidate = resolve_references(self.remapper, record)
        if has_local_references(candidate):
            logger.debug("%s %s skipped: references an unpromoted record", collection.name, local_id)
            report[collection.name].skipped += 1
            return

        remote = await self._submit(collection, candidate, report)
        if remote is None:
            return
        if collection is EMPLOYEES:
            remote = dataclasses.replace(remote, assigned_orders=list(record.assigned_orders))
        if not await self._promoted(collection, record, remote, report):
            return

        if collection is PAYMENTS:
            # Totals on records that were already remote were only changed locally.
            if isinstance(record.order_id, RemoteId):
                await self._push_cached(ORDERS, record.order_id, report)
            if isinstance(record.customer_id, RemoteId):
                await self._push_cached(CUSTOMERS, record.customer_id, report)

    async def _submit(self, collection: Collection, record: Any, report: DrainReport) -> Any:
        try:
            if collection is ORDERS:
                return await submit_order(self.gateway, record)
            return await self.gateway.create(collection, record)
        except (TransportError, AuthError) as exc:
            logger.warning("Promotion of %s %s failed (%s); leaving it pending", collection.name, record.id, exc)
            report.connectivity_failed = True
            report[collection.name].errors.append(str(exc))
        except GatewayError as exc:
            logger.warning("Supabase rejected %s %s (%s); leaving it pending", collection.name, record.id, exc)
            report[collection.name].errors.append(str(exc))
        return None

    async def _promoted(self, collection: Collection, submitted: Any, remote: Any, report: DrainReport) -> bool:
        local_id = submitted.id
        latest = self.store.get(collection, local_id)
        if latest is None:
            # deleted locally while the create was in flight
            logger.info("%s %s was deleted during promotion; removing %s", collection.name, local_id, remote.id)
            try:
                await self.gateway.delete(collection, remote.id)
            except GatewayError as exc:
                report[collection.name].errors.append(str(exc))
            return False

        self.remapper.record(local_id, remote.id)
        self.store.replace(collection, local_id, remote)
        report[collection.name].promoted += 1
        logger.info("Promoted %s %s -> %s", collection.name, local_id, remote.id)

        if latest != submitted:
            # edited while the create was in flight; the edit wins
            edited = resolve_references(self.remapper, with_id(latest, remote.id))
            self.store.replace(collection, remote.id, edited)
            if not has_local_references(edited):
                await self._push_edit(collection, edited, report)
        return True

    async def _push_cached(self, collection: Collection, record_id: Identifier, report: DrainReport) -> None:
        record = self.store.get(collection, record_id)
        if record is not None:
            await self._remote_write(self.gateway.update(collection, record_id, record), collection, report)

    async def _push_edit(self, collection: Collection, record: Any, report: DrainReport) -> None:
        remote = await self._remote_write(push_update(self.gateway, collection, record), collection, report)
        if remote is not None and self.store.get(collection, record.id) == record:
            self.store.upsert(collection, remote)

    async def _remote_write(self, request: Awaitable[Any], collection: Collection, report: DrainReport) -> Any:
        try:
            return await request
        except (TransportError, AuthError) as exc:
            report.connectivity_failed = True
            report[collection.name].errors.append(str(exc))
        except GatewayError as exc:
            report[collection.name].errors.append(str(exc))
        return None

    def _rewrite_pending_references(self) -> None:
        if not len(self.remapper):
            return

        def rewrite(record: Any) -> Any:
            if isinstance(record, (Order, Payment)) and not is_local(record.id):
                return record
            return resolve_references(self.remapper, record)

        self.store.update_each(ORDERS, rewrite)
        self.store.update_each(PAYMENTS, rewrite)
        self.store.update_each(EMPLOYEES, rewrite)
