from __future__ import annotations

import asyncio

import pytest

from tailorflow_core.errors import AuthError, RecordNotFoundError, ServerError, TransportError
from tailorflow_core.identifiers import LocalId, RemoteId, is_local
from tailorflow_core.models import (
    ACTIVITIES,
    CUSTOMERS,
    EMPLOYEES,
    ORDERS,
    PAYMENTS,
    PRESETS,
    ActivityItem,
    Customer,
    Employee,
    ExtrasPreset,
    Order,
    OrderItem,
    OrderItemExtra,
    Payment,
)


def _asha():
    return Customer(name="Asha", phone="9999")


def _order_for(customer, amount=1000, **overrides):
    return Order(customer_id=customer.id, customer_name=customer.name, amount=amount, **overrides)


# ---------------------------------------------------------------------------
# Routing and fallback


@pytest.mark.asyncio
async def test_offline_create_returns_local_record_without_remote_call(coordinator, gateway, store):
    coordinator.state.mark_offline("no network")

    customer = await coordinator.customers.create(_asha())

    assert is_local(customer.id)
    assert str(customer.id).startswith("local_")
    assert customer.created_at is not None
    assert store.get(CUSTOMERS, customer.id) == customer
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_unauthenticated_create_stays_local(offline_coordinator, gateway):
    employee = await offline_coordinator.employees.create(Employee(name="Ravi", phone="1"))

    assert is_local(employee.id)
    assert employee.joined_at is not None
    assert gateway.calls == []
    assert offline_coordinator.is_online is True


@pytest.mark.asyncio
async def test_online_create_stores_remote_record(coordinator, gateway, store):
    gateway.assign_ids(CUSTOMERS, "cust_1")

    customer = await coordinator.customers.create(_asha())

    assert customer.id == RemoteId("cust_1")
    assert store.load(CUSTOMERS) == [customer]
    assert gateway.rows(CUSTOMERS) == [customer]


@pytest.mark.asyncio
async def test_failed_remote_create_goes_offline_and_falls_back(coordinator, gateway, store):
    gateway.fail("create_customers", TransportError("connection refused"))

    customer = await coordinator.customers.create(_asha())

    assert is_local(customer.id)
    assert coordinator.is_online is False
    assert coordinator.state.last_error == "connection refused"
    assert store.pending(CUSTOMERS) == [customer]

    # offline now: no further remote attempts
    calls = len(gateway.calls)
    await coordinator.customers.create(Customer(name="Bina", phone="2"))
    assert len(gateway.calls) == calls


@pytest.mark.asyncio
async def test_list_mirrors_remote_snapshot(coordinator, gateway, store):
    store.save(CUSTOMERS, [Customer(id=RemoteId("stale"), name="Old", phone="0")])
    gateway.seed(CUSTOMERS, Customer(id=RemoteId("cust_1"), name="Asha", phone="9999"))

    customers = await coordinator.customers.list()

    assert [customer.id for customer in customers] == [RemoteId("cust_1")]
    assert store.load(CUSTOMERS) == customers


@pytest.mark.asyncio
async def test_list_failure_returns_cache_and_goes_offline(coordinator, gateway, store):
    cached = Customer(id=RemoteId("cust_1"), name="Asha", phone="9999")
    store.save(CUSTOMERS, [cached])
    gateway.fail("list_customers", AuthError("JWT expired"))

    customers = await coordinator.customers.list()

    assert customers == [cached]
    assert coordinator.is_online is False


@pytest.mark.asyncio
async def test_list_drains_pending_records_before_reading(coordinator, gateway, store):
    store.save(CUSTOMERS, [Customer(id=LocalId("a"), name="Asha", phone="9999")])

    customers = await coordinator.customers.list()

    assert gateway.operations() == ["create_customers", "list_customers"]
    assert len(customers) == 1
    assert not is_local(customers[0].id)
    assert coordinator.state.last_synced_at is not None


@pytest.mark.asyncio
async def test_list_serves_cache_while_a_pass_is_running(coordinator, gateway, store):
    store.save(CUSTOMERS, [Customer(id=LocalId("a"), name="Asha", phone="9999")])
    coordinator.state.syncing = True

    assert await coordinator.ensure_synced() is None
    customers = await coordinator.customers.list()

    assert [customer.id for customer in customers] == [LocalId("a")]
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_update_of_local_record_never_reaches_remote(coordinator, gateway, store):
    coordinator.state.mark_offline("flaky")
    customer = await coordinator.customers.create(_asha())
    coordinator.state.mark_online()
    coordinator.state.syncing = True  # keep the pending record out of a drain pass

    updated = await coordinator.customers.update(Customer(id=customer.id, name="Asha R", phone="9999"))

    assert updated.name == "Asha R"
    assert store.get(CUSTOMERS, customer.id).name == "Asha R"
    assert gateway.operations("update_") == []


@pytest.mark.asyncio
async def test_update_of_remote_record_writes_remote_then_cache(coordinator, gateway, store):
    original = Customer(id=RemoteId("cust_1"), name="Asha", phone="9999")
    gateway.seed(CUSTOMERS, original)
    store.save(CUSTOMERS, [original])

    await coordinator.customers.update(Customer(id=RemoteId("cust_1"), name="Asha R", phone="9999"))

    assert gateway.rows(CUSTOMERS)[0].name == "Asha R"
    assert store.get(CUSTOMERS, RemoteId("cust_1")).name == "Asha R"


@pytest.mark.asyncio
async def test_failed_remote_update_still_applies_locally(coordinator, gateway, store):
    original = Customer(id=RemoteId("cust_1"), name="Asha", phone="9999")
    store.save(CUSTOMERS, [original])
    gateway.fail("update_customers", TransportError("timeout"))

    await coordinator.customers.update(Customer(id=RemoteId("cust_1"), name="Asha R", phone="9999"))

    assert store.get(CUSTOMERS, RemoteId("cust_1")).name == "Asha R"
    assert coordinator.is_online is False


@pytest.mark.asyncio
async def test_update_of_unknown_record_raises(coordinator):
    with pytest.raises(RecordNotFoundError):
        await coordinator.customers.update(Customer(id=RemoteId("nope"), name="X", phone="1"))


@pytest.mark.asyncio
async def test_delete_removes_locally_even_when_remote_fails(coordinator, gateway, store):
    store.save(CUSTOMERS, [Customer(id=RemoteId("cust_1"), name="Asha", phone="9999")])
    gateway.fail("delete_customers", TransportError("timeout"))

    assert await coordinator.customers.delete("cust_1") is True

    assert store.load(CUSTOMERS) == []
    assert coordinator.is_online is False


@pytest.mark.asyncio
async def test_deleted_pending_record_is_never_promoted(coordinator, gateway, store):
    coordinator.state.mark_offline("offline")
    customer = await coordinator.customers.create(_asha())

    await coordinator.customers.delete(customer.id)
    report = await coordinator.force_resync()

    assert report.promoted_total == 0
    assert gateway.operations("create_customers") == []
    assert gateway.operations("delete_") == []


@pytest.mark.asyncio
async def test_record_deleted_during_promotion_is_removed_remotely(coordinator, gateway, store):
    store.save(CUSTOMERS, [Customer(id=LocalId("a"), name="Asha", phone="9999")])

    await asyncio.gather(coordinator.ensure_synced(), coordinator.customers.delete(LocalId("a")))

    assert store.load(CUSTOMERS) == []
    assert gateway.rows(CUSTOMERS) == []
    assert gateway.operations("delete_customers") == ["delete_customers"]


@pytest.mark.asyncio
async def test_online_create_sends_promoted_customer_id(coordinator, gateway, store):
    coordinator.state.mark_offline("no network")
    asha = await coordinator.customers.create(_asha())
    coordinator.state.mark_online()
    gateway.assign_ids(CUSTOMERS, "cust_42")

    order = await coordinator.orders.create(_order_for(asha, amount=500))

    assert gateway.operations("create_customers") == ["create_customers"]
    assert gateway.rows(ORDERS)[0].customer_id == RemoteId("cust_42")
    assert order.customer_id == RemoteId("cust_42")
    assert store.get(ORDERS, order.id).customer_id == RemoteId("cust_42")
    assert store.get(CUSTOMERS, RemoteId("cust_42")).outstanding_balance == 500


@pytest.mark.asyncio
async def test_create_referencing_unpromoted_customer_stays_pending(coordinator, gateway, store):
    coordinator.state.mark_offline("no network")
    asha = await coordinator.customers.create(_asha())
    coordinator.state.mark_online()
    gateway.reject("create_customers", lambda record: True, ServerError("duplicate phone", status_code=409))

    order = await coordinator.orders.create(_order_for(asha, amount=500))
    payment = await coordinator.payments.create(
        Payment(order_id=order.id, customer_id=asha.id, customer_name="Asha", amount=100)
    )

    assert gateway.operations("create_orders") == []
    assert gateway.operations("create_payments") == []
    assert is_local(order.id) and order.customer_id == asha.id
    assert is_local(payment.id)
    assert store.pending(ORDERS) == [store.get(ORDERS, order.id)]
    assert coordinator.is_online is True


@pytest.mark.asyncio
async def test_update_pointing_at_unpromoted_customer_is_cached_only(coordinator, gateway, store):
    remote_order = Order(id=RemoteId("ord_1"), customer_id=RemoteId("cust_1"), customer_name="Asha", amount=1000)
    gateway.seed(ORDERS, remote_order)
    store.save(ORDERS, [remote_order])
    store.save(CUSTOMERS, [Customer(id=LocalId("b"), name="Bina", phone="2")])
    gateway.fail("create_customers", ServerError("bad row", status_code=400))

    updated = await coordinator.orders.update(
        Order(id=RemoteId("ord_1"), customer_id=LocalId("b"), customer_name="Bina", amount=1000)
    )

    assert gateway.operations("update_") == []
    assert gateway.rows(ORDERS)[0].customer_id == RemoteId("cust_1")
    assert store.get(ORDERS, RemoteId("ord_1")).customer_id == LocalId("b")
    assert updated.customer_name == "Bina"


@pytest.mark.asyncio
async def test_update_rewrites_references_promoted_by_the_pass(coordinator, gateway, store):
    remote_order = Order(id=RemoteId("ord_1"), customer_id=RemoteId("cust_1"), customer_name="Asha", amount=1000)
    gateway.seed(ORDERS, remote_order)
    store.save(ORDERS, [remote_order])
    store.save(CUSTOMERS, [Customer(id=LocalId("b"), name="Bina", phone="2")])
    gateway.assign_ids(CUSTOMERS, "cust_2")

    await coordinator.orders.update(
        Order(id=RemoteId("ord_1"), customer_id=LocalId("b"), customer_name="Bina", amount=1000)
    )

    assert gateway.rows(ORDERS)[0].customer_id == RemoteId("cust_2")
    assert store.get(ORDERS, RemoteId("ord_1")).customer_id == RemoteId("cust_2")


# ---------------------------------------------------------------------------
# Synchronisation


@pytest.mark.asyncio
async def test_force_resync_rewrites_order_references(offline_coordinator, gateway, session):
    coordinator = offline_coordinator
    asha = await coordinator.customers.create(_asha())
    order = await coordinator.orders.create(_order_for(asha, amount=500))
    assert is_local(asha.id)
    assert order.customer_id == asha.id

    coordinator.use_session(session)
    gateway.assign_ids(CUSTOMERS, "cust_42")
    report = await coordinator.force_resync()

    assert report.connectivity_failed is False
    orders = await coordinator.orders.list()
    assert [str(order.customer_id) for order in orders] == ["cust_42"]
    assert coordinator.is_online is True
    assert coordinator.status()["pending"] == {"customers": 0, "employees": 0, "orders": 0, "payments": 0}


@pytest.mark.asyncio
async def test_force_resync_pulls_every_collection(coordinator, gateway, store):
    gateway.seed(EMPLOYEES, Employee(id=RemoteId("emp_1"), name="Ravi", phone="1"))
    gateway.seed(
        ORDERS,
        Order(id=RemoteId("ord_1"), customer_id=RemoteId("cust_1"), customer_name="Asha", assigned_employee_id=RemoteId("emp_1")),
    )
    gateway.seed(PRESETS, ExtrasPreset(id=RemoteId("p1"), label="Lining", amount=100, category="material"))

    await coordinator.force_resync()

    listed = set(gateway.operations("list_"))
    assert listed == {
        "list_customers",
        "list_orders",
        "list_employees",
        "list_payments",
        "list_activities",
        "list_extras_presets",
    }
    assert store.load(EMPLOYEES)[0].assigned_orders == [RemoteId("ord_1")]
    assert [preset.label for preset in store.load(PRESETS)] == ["Lining"]
    assert store.last_synced_at() == coordinator.state.last_synced_at


@pytest.mark.asyncio
async def test_force_resync_with_connectivity_failure_keeps_cache(coordinator, gateway, store):
    store.save(CUSTOMERS, [Customer(id=LocalId("a"), name="Asha", phone="9999")])
    gateway.fail("create_customers", TransportError("offline"))

    report = await coordinator.force_resync()

    assert report.connectivity_failed is True
    assert gateway.operations("list_") == []
    assert coordinator.is_online is False
    assert store.pending(CUSTOMERS)[0].id == LocalId("a")


@pytest.mark.asyncio
async def test_force_resync_restores_online_after_success(coordinator):
    coordinator.state.mark_offline("earlier failure")

    await coordinator.force_resync()

    assert coordinator.is_online is True
    assert coordinator.state.last_error is None


@pytest.mark.asyncio
async def test_force_resync_without_session_does_nothing(offline_coordinator, gateway):
    assert await offline_coordinator.force_resync() is None
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_concurrent_passes_do_not_double_promote(coordinator, gateway, store):
    store.save(CUSTOMERS, [Customer(id=LocalId("a"), name="Asha", phone="9999")])

    reports = await asyncio.gather(coordinator.force_resync(), coordinator.force_resync())

    assert reports.count(None) == 1
    assert gateway.operations("create_customers") == ["create_customers"]
    assert coordinator.is_syncing is False


@pytest.mark.asyncio
async def test_ensure_synced_is_a_noop_without_pending_records(coordinator, gateway):
    assert await coordinator.ensure_synced() is None
    assert gateway.calls == []


# ---------------------------------------------------------------------------
# Bookkeeping


@pytest.mark.asyncio
async def test_order_amount_defaults_to_item_total(offline_coordinator):
    asha = await offline_coordinator.customers.create(_asha())
    item = OrderItem(name="Blouse", quantity=2, base_price=500, extras=[OrderItemExtra(label="Lining", amount=100)])

    order = await offline_coordinator.orders.create(_order_for(asha, amount=0, items=[item]))

    assert order.amount == 1200
    assert is_local(order.items[0].id)
    assert is_local(order.items[0].extras[0].id)


@pytest.mark.asyncio
async def test_new_order_records_activity_and_balance(offline_coordinator, store):
    asha = await offline_coordinator.customers.create(_asha())

    await offline_coordinator.orders.create(_order_for(asha, amount=1500, paid_amount=500))

    activity = store.load(ACTIVITIES)[0]
    assert activity.type == "order_created"
    assert activity.description == "New order created for Asha"
    assert store.get(CUSTOMERS, asha.id).outstanding_balance == 1000


@pytest.mark.asyncio
async def test_payment_updates_order_and_balance(offline_coordinator, store):
    asha = await offline_coordinator.customers.create(_asha())
    order = await offline_coordinator.orders.create(_order_for(asha, amount=1000))

    await offline_coordinator.payments.create(
        Payment(order_id=order.id, customer_id=asha.id, customer_name="Asha", amount=400, payment_mode="upi")
    )

    assert store.get(ORDERS, order.id).paid_amount == 400
    assert store.get(CUSTOMERS, asha.id).outstanding_balance == 600
    assert store.load(ACTIVITIES)[0].description == "Payment of ₹400 received from Asha"
    assert len(store.pending(PAYMENTS)) == 1


@pytest.mark.asyncio
async def test_overpayment_is_capped_at_order_amount(offline_coordinator, store):
    asha = await offline_coordinator.customers.create(_asha())
    order = await offline_coordinator.orders.create(_order_for(asha, amount=1000))

    await offline_coordinator.payments.create(
        Payment(order_id=order.id, customer_id=asha.id, customer_name="Asha", amount=1500)
    )

    assert store.get(ORDERS, order.id).paid_amount == 1000
    assert store.get(CUSTOMERS, asha.id).outstanding_balance == 0


@pytest.mark.asyncio
async def test_status_change_stamps_and_logs(offline_coordinator, store):
    asha = await offline_coordinator.customers.create(_asha())
    order = await offline_coordinator.orders.create(_order_for(asha))

    completed = await offline_coordinator.orders.update(
        Order(id=order.id, customer_id=asha.id, customer_name="Asha", amount=1000, status="completed")
    )

    assert completed.completed_at is not None
    assert store.load(ACTIVITIES)[0].type == "order_completed"


@pytest.mark.asyncio
async def test_assignment_follows_the_order(offline_coordinator, store):
    asha = await offline_coordinator.customers.create(_asha())
    ravi = await offline_coordinator.employees.create(Employee(name="Ravi", phone="1"))
    meena = await offline_coordinator.employees.create(Employee(name="Meena", phone="2"))
    order = await offline_coordinator.orders.create(_order_for(asha, assigned_employee_id=ravi.id))

    assert store.get(EMPLOYEES, ravi.id).assigned_orders == [order.id]

    await offline_coordinator.assign_employee(order.id, str(meena.id))
    assert store.get(EMPLOYEES, ravi.id).assigned_orders == []
    assert store.get(EMPLOYEES, meena.id).assigned_orders == [order.id]

    await offline_coordinator.unassign_employee(order.id)
    assert store.get(EMPLOYEES, meena.id).assigned_orders == []
    assert store.get(ORDERS, order.id).assigned_employee_id is None


@pytest.mark.asyncio
async def test_assigning_unknown_employee_raises(offline_coordinator):
    asha = await offline_coordinator.customers.create(_asha())
    order = await offline_coordinator.orders.create(_order_for(asha))

    with pytest.raises(RecordNotFoundError):
        await offline_coordinator.assign_employee(order.id, "emp_missing")


@pytest.mark.asyncio
async def test_deleting_order_clears_assignment_and_balance(offline_coordinator, store):
    asha = await offline_coordinator.customers.create(_asha())
    ravi = await offline_coordinator.employees.create(Employee(name="Ravi", phone="1"))
    order = await offline_coordinator.orders.create(_order_for(asha, assigned_employee_id=ravi.id))

    await offline_coordinator.orders.delete(order.id)

    assert store.get(EMPLOYEES, ravi.id).assigned_orders == []
    assert store.get(CUSTOMERS, asha.id).outstanding_balance == 0


@pytest.mark.asyncio
async def test_remote_activity_list_is_capped(coordinator, gateway, store):
    for index in range(60):
        gateway.seed(ACTIVITIES, ActivityItem(id=RemoteId(f"a{index}"), type="order_created", customer_name="A", description="x"))

    activities = await coordinator.activities.list()

    assert len(activities) == 50
    assert len(store.load(ACTIVITIES)) == 50


@pytest.mark.asyncio
async def test_save_presets_creates_new_and_updates_existing(coordinator, gateway, store):
    existing = ExtrasPreset(id=RemoteId("p1"), label="Lining", amount=100, category="material")
    gateway.seed(PRESETS, existing)

    saved = await coordinator.save_presets(
        [
            ExtrasPreset(id=RemoteId("p1"), label="Lining", amount=120, category="material"),
            ExtrasPreset(label="Zari", amount=150, category="design"),
        ]
    )

    assert saved[0].id == RemoteId("p1")
    assert not is_local(saved[1].id)
    assert gateway.rows(PRESETS)[0].amount == 120
    assert store.load(PRESETS) == saved


@pytest.mark.asyncio
async def test_save_presets_keeps_local_copy_when_remote_fails(coordinator, gateway, store):
    gateway.fail("create_extras_presets", ServerError("rejected"))

    saved = await coordinator.save_presets([ExtrasPreset(label="Zari", amount=150, category="design")])

    assert is_local(saved[0].id)
    assert store.load(PRESETS) == saved
    assert coordinator.is_online is False


def test_status_reports_pending_counts(offline_coordinator, store):
    store.save(ORDERS, [Order(id=LocalId("o"), customer_id=LocalId("c"), customer_name="Asha")])

    status = offline_coordinator.status()

    assert status["isOnline"] is True
    assert status["isSyncing"] is False
    assert status["authenticated"] is False
    assert status["pending"]["orders"] == 1
