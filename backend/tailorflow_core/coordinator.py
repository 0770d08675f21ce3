"""Single decision point for where every read and write goes.

Each operation tries the remote store when the session is authenticated and
the coordinator believes it is online, mirrors the result into the entity
store, and degrades to the local cache on any ``GatewayError``. Local storage
failures are the only errors that reach callers.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, List, Optional

from . import bookkeeping
from .auth import Session, SessionProvider
from .drain import DrainPass, DrainReport, has_local_references, push_update, resolve_references, submit_order
from .errors import GatewayError, RecordNotFoundError
from .gateway import RemoteGateway
from .identifiers import Identifier, is_local, new_local_id, parse_identifier
from .models import (
    ACTIVITIES,
    CUSTOMERS,
    DRAIN_ORDER,
    EMPLOYEES,
    ORDERS,
    PAYMENTS,
    PRESETS,
    ActivityItem,
    Collection,
    Employee,
    ExtrasPreset,
    Order,
    Payment,
    utc_now_iso,
    with_id,
)
from .remapper import IdentifierRemapper
from .state import SyncState
from .store import ACTIVITY_LOG_LIMIT, EntityStore

logger = logging.getLogger(__name__)


class CollectionClient:
    """The uniform ``list/create/update/delete`` contract for one collection."""

    def __init__(self, coordinator: "SyncCoordinator", collection: Collection) -> None:
        self._coordinator = coordinator
        self.collection = collection

    async def list(self) -> List[Any]:
        return await self._coordinator.list(self.collection)

    async def create(self, payload: Any) -> Any:
        return await self._coordinator.create(self.collection, payload)

    async def update(self, record: Any) -> Any:
        return await self._coordinator.update(self.collection, record)

    async def delete(self, record_id: Identifier | str) -> bool:
        return await self._coordinator.delete(self.collection, parse_identifier(record_id))

    def get(self, record_id: Identifier | str) -> Optional[Any]:
        """Look a record up in the local cache only."""
        return self._coordinator.store.get(self.collection, parse_identifier(record_id))


class SyncCoordinator:
    def __init__(
        self,
        store: EntityStore,
        gateway: RemoteGateway,
        sessions: SessionProvider | None = None,
        state: SyncState | None = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.sessions = sessions or SessionProvider()
        self.state = state or SyncState(last_synced_at=store.last_synced_at())
        self.remapper = IdentifierRemapper()

        self.customers = CollectionClient(self, CUSTOMERS)
        self.employees = CollectionClient(self, EMPLOYEES)
        self.orders = CollectionClient(self, ORDERS)
        self.payments = CollectionClient(self, PAYMENTS)
        self.activities = CollectionClient(self, ACTIVITIES)
        self.presets = CollectionClient(self, PRESETS)

        self._bind_gateway()

    # ------------------------------------------------------------------
    # Status

    @property
    def authenticated(self) -> bool:
        return self.sessions.authenticated

    @property
    def is_online(self) -> bool:
        return self.state.online

    @property
    def is_syncing(self) -> bool:
        return self.state.syncing

    def status(self) -> Dict[str, Any]:
        return {
            "isOnline": self.state.online,
            "isSyncing": self.state.syncing,
            "authenticated": self.authenticated,
            "lastSyncedAt": self.state.last_synced_at,
            "lastError": self.state.last_error,
            "pending": {collection.name: len(self.store.pending(collection)) for collection in DRAIN_ORDER},
        }

    def use_session(self, session: Session) -> None:
        self.sessions.set_session(session)
        self._bind_gateway()

    def _bind_gateway(self) -> None:
        session = self.sessions.session
        self.gateway.bind_session(session.tenant_scope, session.access_token)

    def _remote_available(self) -> bool:
        return self.authenticated and self.state.online

    def _remote_ready(self, collection: Collection, record: Any) -> bool:
        if not self._remote_available():
            return False
        if has_local_references(record):
            # the referenced record is still pending; keep this one local too
            logger.info("%s record references an unpromoted record; keeping it local", collection.name)
            return False
        return True

    def _go_offline(self, operation: str, exc: GatewayError) -> None:
        logger.warning("Supabase %s failed (%s); using local fallback", operation, exc)
        self.state.mark_offline(str(exc))

    # ------------------------------------------------------------------
    # Uniform operations

    async def list(self, collection: Collection) -> List[Any]:
        # a drain pass in flight owns the cache; serve it as is
        if self._remote_available() and not self.state.syncing:
            try:
                await self.ensure_synced()
                if self._remote_available():
                    records = await self.gateway.list(collection)
                    return self._mirror(collection, records)
            except GatewayError as exc:
                self._go_offline(f"list_{collection.name}", exc)
        return self.store.load(collection)

    async def create(self, collection: Collection, payload: Any) -> Any:
        draft = self._prepare_create(collection, payload)

        if self._remote_available():
            try:
                await self.ensure_synced()
                draft = resolve_references(self.remapper, draft)
                if self._remote_ready(collection, draft):
                    remote = await self._create_remote(collection, draft)
                    self.store.add(collection, remote, limit=self._limit_for(collection))
                    await self._after_create(collection, remote)
                    return remote
            except GatewayError as exc:
                self._go_offline(f"create_{collection.name}", exc)

        record = _with_local_ids(with_id(draft, new_local_id()))
        self.store.add(collection, record, limit=self._limit_for(collection))
        await self._after_create(collection, record)
        return record

    async def update(self, collection: Collection, record: Any) -> Any:
        if record.id is None:
            raise ValueError(f"Cannot update a {collection.name} record without an id")
        before = self.store.get(collection, record.id)
        if before is None:
            raise RecordNotFoundError(f"{collection.name} record {record.id} not found")
        record = self._prepare_update(collection, before, record)

        if not is_local(record.id) and self._remote_available():
            try:
                await self.ensure_synced()
                record = resolve_references(self.remapper, record)
                if self._remote_ready(collection, record):
                    record = await push_update(self.gateway, collection, record)
            except GatewayError as exc:
                self._go_offline(f"update_{collection.name}", exc)

        self.store.upsert(collection, record)
        await self._after_update(collection, before, record)
        return record

    async def delete(self, collection: Collection, record_id: Identifier) -> bool:
        before = self.store.get(collection, record_id)

        if not is_local(record_id) and self._remote_available():
            try:
                await self.ensure_synced()
                if self._remote_available():
                    await self.gateway.delete(collection, record_id)
            except GatewayError as exc:
                # the local copy is removed regardless; no inline retry
                self._go_offline(f"delete_{collection.name}", exc)

        removed = self.store.remove(collection, record_id)
        if before is not None:
            await self._after_delete(collection, before)
        return removed

    # ------------------------------------------------------------------
    # Synchronisation

    async def ensure_synced(self) -> Optional[DrainReport]:
        """Run a drain pass if online, idle and anything is pending; otherwise do nothing."""
        if not self._remote_available() or self.state.syncing:
            return None
        if not any(self.store.pending(collection) for collection in DRAIN_ORDER):
            return None

        self.state.syncing = True
        try:
            report = await DrainPass(self.store, self.gateway, self.remapper).run()
        finally:
            self.state.syncing = False
        self._finish_pass(report)
        return report

    async def force_resync(self) -> Optional[DrainReport]:
        """Drain every pending record, then replace the cache with a full remote pull."""
        if not self.authenticated:
            logger.info("Skipping resync: no authenticated session")
            return None
        if self.state.syncing:
            return None

        self.state.syncing = True
        try:
            report = await DrainPass(self.store, self.gateway, self.remapper).run()
            if not report.connectivity_failed:
                try:
                    await self._pull_all()
                except GatewayError as exc:
                    logger.warning("Supabase full pull failed (%s); keeping local cache", exc)
                    report.connectivity_failed = True
        finally:
            self.state.syncing = False
        self._finish_pass(report)
        return report

    def _finish_pass(self, report: DrainReport) -> None:
        if report.connectivity_failed:
            self.state.mark_offline("Sync pass could not reach Supabase")
            return
        self.state.mark_online()
        self.state.last_synced_at = utc_now_iso()
        self.store.set_last_synced_at(self.state.last_synced_at)

    async def _pull_all(self) -> None:
        snapshots: Dict[str, List[Any]] = {}
        for collection in (CUSTOMERS, ORDERS, EMPLOYEES, PAYMENTS, ACTIVITIES, PRESETS):
            snapshots[collection.name] = await self.gateway.list(collection)
        # orders first: employees derive their assignments from the cached orders
        for collection in (CUSTOMERS, ORDERS, EMPLOYEES, PAYMENTS, ACTIVITIES, PRESETS):
            self._mirror(collection, snapshots[collection.name])

    def _mirror(self, collection: Collection, records: List[Any]) -> List[Any]:
        if collection is EMPLOYEES:
            records = self._with_assigned_orders(records)
        elif collection is ACTIVITIES:
            records = records[:ACTIVITY_LOG_LIMIT]
        return self.store.mirror_snapshot(collection, records)

    def _with_assigned_orders(self, employees: List[Employee]) -> List[Employee]:
        orders = self.store.load(ORDERS)
        return [
            dataclasses.replace(
                employee,
                assigned_orders=[order.id for order in orders if order.assigned_employee_id == employee.id],
            )
            for employee in employees
        ]

    # ------------------------------------------------------------------
    # Remote write helpers

    async def _create_remote(self, collection: Collection, record: Any) -> Any:
        if collection is ORDERS:
            return await submit_order(self.gateway, record)
        remote = await self.gateway.create(collection, record)
        if collection is EMPLOYEES:
            remote = dataclasses.replace(remote, assigned_orders=list(record.assigned_orders))
        return remote

    # ------------------------------------------------------------------
    # Bookkeeping

    def _prepare_create(self, collection: Collection, payload: Any) -> Any:
        draft = payload
        if collection.created_field and not getattr(draft, collection.created_field):
            draft = dataclasses.replace(draft, **{collection.created_field: utc_now_iso()})
        if collection is ORDERS:
            if not draft.amount and draft.items:
                draft = dataclasses.replace(draft, amount=bookkeeping.order_total(draft.items))
            draft = bookkeeping.stamp_status_change(None, bookkeeping.cap_paid_amount(draft))
        return draft

    def _prepare_update(self, collection: Collection, before: Any, record: Any) -> Any:
        if collection is ORDERS:
            record = _with_local_ids(record)
            return bookkeeping.stamp_status_change(before, bookkeeping.cap_paid_amount(record))
        return record

    def _limit_for(self, collection: Collection) -> Optional[int]:
        return ACTIVITY_LOG_LIMIT if collection is ACTIVITIES else None

    async def _after_create(self, collection: Collection, record: Any) -> None:
        if collection is ORDERS:
            await self._record_activity(bookkeeping.activity_for_new_order(record))
            if record.assigned_employee_id is not None:
                self._move_assignment(record.id, None, record.assigned_employee_id)
            await self._refresh_customer_balance(record.customer_id)
        elif collection is PAYMENTS:
            await self._apply_payment(record)

    async def _after_update(self, collection: Collection, before: Any, record: Any) -> None:
        if collection is not ORDERS:
            return
        activity = bookkeeping.activity_for_status_change(before, record)
        if activity is not None:
            await self._record_activity(activity)
        if before.assigned_employee_id != record.assigned_employee_id:
            self._move_assignment(record.id, before.assigned_employee_id, record.assigned_employee_id)
        if (before.amount, before.paid_amount, before.customer_id) != (
            record.amount,
            record.paid_amount,
            record.customer_id,
        ):
            await self._refresh_customer_balance(record.customer_id)
            if before.customer_id != record.customer_id:
                await self._refresh_customer_balance(before.customer_id)

    async def _after_delete(self, collection: Collection, before: Any) -> None:
        if collection is not ORDERS:
            return
        self.store.update_each(
            EMPLOYEES,
            lambda employee: bookkeeping.with_assignment(employee, before.id, assigned=False),
        )
        await self._refresh_customer_balance(before.customer_id)

    async def _apply_payment(self, payment: Payment) -> None:
        await self._record_activity(bookkeeping.activity_for_payment(payment))
        order = self.store.get(ORDERS, payment.order_id)
        if order is not None:
            # updating the order refreshes the customer's balance
            await self.update(ORDERS, bookkeeping.apply_payment(order, payment.amount))
        else:
            await self._refresh_customer_balance(payment.customer_id)

    async def _refresh_customer_balance(self, customer_id: Identifier) -> None:
        customer = self.store.get(CUSTOMERS, customer_id)
        if customer is None:
            return
        balance = bookkeeping.outstanding_balance(customer_id, self.store.load(ORDERS))
        if balance == customer.outstanding_balance:
            return
        await self.update(CUSTOMERS, dataclasses.replace(customer, outstanding_balance=balance))

    def _move_assignment(
        self,
        order_id: Identifier,
        old_employee_id: Optional[Identifier],
        new_employee_id: Optional[Identifier],
    ) -> None:
        # employee assignments are derived remotely, so they are only kept locally
        def change(employee: Employee) -> Employee:
            if employee.id == new_employee_id:
                return bookkeeping.with_assignment(employee, order_id, assigned=True)
            if employee.id == old_employee_id:
                return bookkeeping.with_assignment(employee, order_id, assigned=False)
            return employee

        self.store.update_each(EMPLOYEES, change)

    async def _record_activity(self, activity: ActivityItem) -> ActivityItem:
        activity = dataclasses.replace(activity, timestamp=activity.timestamp or utc_now_iso())
        # activities are never drained, so one about a pending order stays local
        if self._remote_available() and not is_local(activity.order_id):
            try:
                remote = await self.gateway.create(ACTIVITIES, activity)
                self.store.add(ACTIVITIES, remote, limit=ACTIVITY_LOG_LIMIT)
                return remote
            except GatewayError as exc:
                self._go_offline("create_activity", exc)
        record = with_id(activity, new_local_id())
        self.store.add(ACTIVITIES, record, limit=ACTIVITY_LOG_LIMIT)
        return record

    # ------------------------------------------------------------------
    # Order assignment and presets

    async def assign_employee(self, order_id: Identifier | str, employee_id: Identifier | str) -> Order:
        order = self._require(ORDERS, order_id)
        employee = self._require(EMPLOYEES, employee_id)
        return await self.update(ORDERS, dataclasses.replace(order, assigned_employee_id=employee.id))

    async def unassign_employee(self, order_id: Identifier | str) -> Order:
        order = self._require(ORDERS, order_id)
        return await self.update(ORDERS, dataclasses.replace(order, assigned_employee_id=None))

    async def save_presets(self, presets: List[ExtrasPreset]) -> List[ExtrasPreset]:
        presets = [preset if preset.id is not None else with_id(preset, new_local_id()) for preset in presets]
        self.store.save(PRESETS, presets)
        if not self._remote_available():
            return presets

        saved: List[ExtrasPreset] = []
        try:
            for preset in presets:
                if is_local(preset.id):
                    saved.append(await self.gateway.create(PRESETS, preset))
                else:
                    saved.append(await self.gateway.update(PRESETS, preset.id, preset))
        except GatewayError as exc:
            self._go_offline("save_extras_presets", exc)
        result = saved + presets[len(saved):]
        self.store.save(PRESETS, result)
        return result

    def _require(self, collection: Collection, record_id: Identifier | str) -> Any:
        identifier = parse_identifier(record_id)
        record = self.store.get(collection, identifier)
        if record is None:
            raise RecordNotFoundError(f"{collection.name} record {identifier} not found")
        return record


def _with_local_ids(record: Any) -> Any:
    """Give line items and extras of a locally created order their own local ids."""
    if not isinstance(record, Order):
        return record
    items = []
    for item in record.items:
        extras = [extra if extra.id is not None else with_id(extra, new_local_id()) for extra in item.extras]
        item = dataclasses.replace(item, extras=extras)
        items.append(item if item.id is not None else with_id(item, new_local_id()))
    return dataclasses.replace(record, items=items)
