from __future__ import annotations

import asyncio
import dataclasses
import itertools
from typing import Any, Dict, List, Optional

import pytest

from tailorflow_core import EntityStore, Session, SyncCoordinator
from tailorflow_core.errors import GatewayError, ServerError
from tailorflow_core.identifiers import Identifier, RemoteId
from tailorflow_core.models import EMPLOYEES, ORDERS, Collection, OrderItem, OrderItemExtra


class FakeGateway:
    """In-memory stand-in for ``RemoteGateway`` with scripted failures.

    ``fail(operation, exc)`` queues an error for the next call of that
    operation; ``reject(operation, predicate, exc)`` fails every call whose
    record matches. ``assign_ids`` lets a test choose the id the next create
    returns for a given collection.
    """

    def __init__(self) -> None:
        self.tables: Dict[str, List[Any]] = {}
        self.items: Dict[Identifier, List[OrderItem]] = {}
        self.calls: List[tuple] = []
        self.tenant_scope: Optional[str] = None
        self.access_token: Optional[str] = None
        self._failures: Dict[str, List[GatewayError]] = {}
        self._rejections: List[tuple] = []
        self._next_ids: Dict[str, List[str]] = {}
        self._counter = itertools.count(1)

    # -- scripting -------------------------------------------------------

    def fail(self, operation: str, exc: GatewayError, times: int = 1) -> None:
        self._failures.setdefault(operation, []).extend([exc] * times)

    def reject(self, operation: str, predicate, exc: GatewayError) -> None:
        self._rejections.append((operation, predicate, exc))

    def assign_ids(self, collection: Collection, *ids: str) -> None:
        self._next_ids.setdefault(collection.name, []).extend(ids)

    def seed(self, collection: Collection, *records: Any) -> None:
        self.tables.setdefault(collection.name, []).extend(records)

    def rows(self, collection: Collection) -> List[Any]:
        return list(self.tables.get(collection.name, []))

    def operations(self, prefix: str = "") -> List[str]:
        return [call[0] for call in self.calls if call[0].startswith(prefix)]

    def _check(self, operation: str, record: Any = None) -> None:
        self.calls.append((operation, record))
        queued = self._failures.get(operation)
        if queued:
            raise queued.pop(0)
        for name, predicate, exc in self._rejections:
            if name == operation and predicate(record):
                raise exc

    def _new_id(self, collection_name: str) -> RemoteId:
        queued = self._next_ids.get(collection_name)
        if queued:
            return RemoteId(queued.pop(0))
        return RemoteId(f"{collection_name}-{next(self._counter)}")

    # -- gateway contract ------------------------------------------------

    @property
    def configured(self) -> bool:
        return True

    def bind_session(self, tenant_scope: Optional[str], access_token: Optional[str]) -> None:
        self.tenant_scope = tenant_scope
        self.access_token = access_token

    async def list(self, collection: Collection) -> List[Any]:
        self._check(f"list_{collection.name}")
        records = self.rows(collection)
        if collection is ORDERS:
            records = [dataclasses.replace(order, items=list(self.items.get(order.id, []))) for order in records]
        return records

    async def create(self, collection: Collection, record: Any) -> Any:
        self._check(f"create_{collection.name}", record)
        # yield like a real request so concurrent operations can interleave
        await asyncio.sleep(0)
        remote = dataclasses.replace(record, id=self._new_id(collection.name))
        if collection is ORDERS:
            remote = dataclasses.replace(remote, items=[])
        if collection is EMPLOYEES:
            remote = dataclasses.replace(remote, assigned_orders=[])
        self.seed(collection, remote)
        return remote

    async def update(self, collection: Collection, record_id: Identifier, record: Any) -> Any:
        self._check(f"update_{collection.name}", record)
        rows = self.tables.get(collection.name, [])
        for index, existing in enumerate(rows):
            if existing.id == record_id:
                rows[index] = dataclasses.replace(record, id=record_id)
                return rows[index]
        raise ServerError(f"update_{collection.name} matched no rows", status_code=404)

    async def delete(self, collection: Collection, record_id: Identifier) -> None:
        self._check(f"delete_{collection.name}", record_id)
        self.tables[collection.name] = [row for row in self.tables.get(collection.name, []) if row.id != record_id]
        if collection is ORDERS:
            self.items.pop(record_id, None)

    async def create_order_item(self, order_id: Identifier, item: OrderItem) -> OrderItem:
        self._check("create_order_item", item)
        remote = dataclasses.replace(item, id=self._new_id("order_items"), extras=[])
        self.items.setdefault(order_id, []).append(remote)
        return remote

    async def create_item_extra(self, order_item_id: Identifier, extra: OrderItemExtra) -> OrderItemExtra:
        self._check("create_order_item_extra", extra)
        return dataclasses.replace(extra, id=self._new_id("order_item_extras"))

    async def delete_order_items(self, order_id: Identifier) -> None:
        self._check("delete_order_items", order_id)
        self.items.pop(order_id, None)


@pytest.fixture
def store(tmp_path) -> EntityStore:
    return EntityStore(data_dir=tmp_path)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def session() -> Session:
    return Session(access_token="token-1", user_id="user-1", tenant_scope="shop-1")


@pytest.fixture
def coordinator(store, gateway, session) -> SyncCoordinator:
    coordinator = SyncCoordinator(store, gateway)
    coordinator.use_session(session)
    return coordinator


@pytest.fixture
def offline_coordinator(store, gateway) -> SyncCoordinator:
    """A coordinator with no session: everything stays in the local cache."""
    return SyncCoordinator(store, gateway)
