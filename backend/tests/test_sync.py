"""
Sync layer tests: write-through, offline queueing, drain, refresh and the
change feed, against an InMemoryRemoteLedger with injected failures.
"""

import threading

import pytest

from stocksync.services.change_feed import DASHBOARD
from stocksync.services.coordinator import InventoryCoordinator
from stocksync.services.errors import RemoteAuthorizationError
from stocksync.services.local_store import KEY_PRODUCTS, LocalStore
from stocksync.services.mutations import OpType, RemoteOp
from stocksync.services.remote_ledger import ChangeEvent, ChangeType


def _product(coordinator, code="SKU001", stock=10):
    return coordinator.create_product({"code": code, "name": f"Product {code}", "price": 1000, "current_stock": stock}).value


def _local_product(coordinator, product_id):
    return coordinator.state.find_product(product_id)


def _assert_balanced(coordinator):
    assert coordinator.verify_ledger() == []


# --- write path -----------------------------------------------------------------

def test_online_writes_reach_remote_immediately(coordinator, remote):
    product = _product(coordinator, stock=10)
    coordinator.record_stock_in(product.id, 5)

    assert coordinator.queue.is_empty()
    assert remote.tables["products"][product.id]["current_stock"] == 15
    assert len(remote.tables["stock_movements"]) == 2
    assert coordinator.status()["status"] == "online"
    _assert_balanced(coordinator)


def test_offline_writes_are_queued_and_drained_on_reconnect(coordinator, remote):
    coordinator.set_online(False)

    product = _product(coordinator, stock=10)
    coordinator.record_stock_out(product.id, 4)

    assert _local_product(coordinator, product.id).current_stock == 6
    assert remote.tables["products"] == {}
    pending = coordinator.pending_entries()
    assert [(e["type"], e["table"]) for e in pending] == [
        ("CREATE", "categories"),
        ("CREATE", "products"),
        ("CREATE", "stock_movements"),
        ("UPDATE", "products"),
        ("CREATE", "stock_movements"),
    ]
    status = coordinator.status()
    assert status["status"] == "offline"
    assert status["pending"] == 5

    coordinator.set_online(True)

    assert coordinator.queue.is_empty()
    assert remote.tables["products"][product.id]["current_stock"] == 6
    assert len(remote.tables["stock_movements"]) == 2
    assert _local_product(coordinator, product.id).current_stock == 6
    assert coordinator.status()["status"] == "online"
    assert coordinator.status()["last_sync_at"] is not None
    _assert_balanced(coordinator)


def test_queued_writes_are_not_overtaken(coordinator, remote):
    product = _product(coordinator)
    coordinator.queue.append(RemoteOp(OpType.DELETE, "orders", record_id="o-old"))

    coordinator.record_stock_in(product.id, 1)

    assert remote.tables["products"][product.id]["current_stock"] == 10
    assert [(e["type"], e["table"]) for e in coordinator.pending_entries()] == [
        ("DELETE", "orders"),
        ("UPDATE", "products"),
        ("CREATE", "stock_movements"),
    ]


def test_transient_failure_queues_the_rest_of_the_action(coordinator, remote):
    product = _product(coordinator)
    remote.fail_when(lambda operation, table, key: table == "stock_movements")

    coordinator.record_stock_in(product.id, 3)

    assert _local_product(coordinator, product.id).current_stock == 13
    assert remote.tables["products"][product.id]["current_stock"] == 13
    entries = coordinator.pending_entries()
    assert [(e["type"], e["table"]) for e in entries] == [("CREATE", "stock_movements")]
    status = coordinator.status()
    assert status["status"] == "degraded"
    assert "injected failure" in status["last_error"]

    remote.clear_failures()
    result = coordinator.drain()
    assert (result.succeeded, result.remaining, result.refreshed) == (1, 0, True)
    _assert_balanced(coordinator)


# --- drain ----------------------------------------------------------------------

def test_drain_keeps_failed_entries_in_order(coordinator, remote):
    coordinator.queue.extend([
        RemoteOp(OpType.DELETE, "orders", record_id=f"o{i}") for i in range(1, 5)
    ])
    remote.fail_when(lambda operation, table, key: key in ("o1", "o3"))

    result = coordinator.drain()

    assert (result.attempted, result.succeeded, result.remaining) == (4, 2, 2)
    assert result.refreshed is False
    entries = coordinator.pending_entries()
    assert [e["id"] for e in entries] == ["o1", "o3"]
    assert all(e["attempts"] == 1 and e["last_error"] for e in entries)

    result = coordinator.drain()
    assert [e["attempts"] for e in coordinator.pending_entries()] == [2, 2]

    remote.clear_failures()
    result = coordinator.drain()
    assert result.remaining == 0
    assert result.refreshed is True
    assert coordinator.status()["status"] == "online"


def test_drain_replays_create_as_upsert(coordinator, remote):
    product = _product(coordinator, stock=0)
    coordinator.queue.append(RemoteOp(OpType.CREATE, "products", payload=dict(remote.tables["products"][product.id], name="Replayed")))

    result = coordinator.drain()

    assert result.succeeded == 1
    assert remote.tables["products"][product.id]["name"] == "Replayed"


def test_drain_drops_malformed_entries(coordinator):
    coordinator.store.write("syncQueue", [{"type": "BOGUS", "table": "orders"}, "junk"])

    result = coordinator.drain()

    assert result.remaining == 0
    assert coordinator.pending_entries() == []


def test_drain_does_nothing_offline(coordinator, remote):
    coordinator.queue.append(RemoteOp(OpType.DELETE, "orders", record_id="o1"))
    coordinator.set_online(False)
    calls = len(remote.calls)

    result = coordinator.drain()

    assert (result.attempted, result.remaining, result.status) == (0, 1, "offline")
    assert len(remote.calls) == calls


# --- authorization ----------------------------------------------------------------

def test_authorization_failure_blocks_remote_writes(coordinator, remote):
    product = _product(coordinator)
    remote.deny_access("stock_movements")

    coordinator.record_stock_in(product.id, 2)

    status = coordinator.status()
    assert status["status"] == "config_error"
    assert status["blocked"] is True
    assert "stock_movements" in status["message"]
    assert [e["table"] for e in coordinator.pending_entries()] == ["stock_movements"]
    assert _local_product(coordinator, product.id).current_stock == 12

    calls = len(remote.calls)
    coordinator.record_stock_in(product.id, 1)
    assert len(remote.calls) == calls
    assert len(coordinator.pending_entries()) == 3

    drained = coordinator.drain()
    assert (drained.attempted, drained.status) == (0, "config_error")

    remote.clear_failures()
    coordinator.reset_auth()
    drained = coordinator.drain()
    assert drained.remaining == 0
    assert remote.tables["products"][product.id]["current_stock"] == 13
    _assert_balanced(coordinator)


def test_authorization_failure_during_drain_keeps_remaining_entries(coordinator, remote):
    coordinator.queue.extend([
        RemoteOp(OpType.DELETE, "orders", record_id="o1"),
        RemoteOp(OpType.DELETE, "sales", record_id="s1"),
        RemoteOp(OpType.DELETE, "orders", record_id="o2"),
    ])
    remote.deny_access("sales")

    result = coordinator.drain()

    assert (result.attempted, result.succeeded, result.remaining) == (2, 1, 2)
    assert [e["id"] for e in coordinator.pending_entries()] == ["s1", "o2"]
    assert coordinator.gateway.blocked


# --- refresh ----------------------------------------------------------------------

def test_refresh_replaces_local_collections(coordinator, remote):
    remote.emit_changes = False
    remote.insert("products", {"id": "p-remote", "code": "R1", "name": "From another device", "current_stock": 0})
    remote.insert("categories", {"name": "Remote"})
    remote.insert("settings", {"id": 1, "data": {"minStockLimit": 7, "currency": "IDR"}})

    assert coordinator.refresh() is True

    assert [p.code for p in coordinator.state.products] == ["R1"]
    assert coordinator.list_categories() == ["Remote"]
    assert coordinator.get_settings()["minStockLimit"] == 7
    stored = LocalStore().read(KEY_PRODUCTS)
    assert [p["id"] for p in stored] == ["p-remote"]


def test_refresh_skipped_while_writes_are_queued(coordinator, remote):
    coordinator.queue.append(RemoteOp(OpType.DELETE, "orders", record_id="o1"))
    assert coordinator.refresh() is False
    assert not any(op == "select" for op, _, _ in remote.calls)


def test_refresh_aborts_on_denied_collections(coordinator, remote):
    product = _product(coordinator)
    remote.deny_access("orders", "sales")

    with pytest.raises(RemoteAuthorizationError) as excinfo:
        coordinator.refresh()

    assert excinfo.value.collections == ["orders", "sales"]
    assert coordinator.status()["status"] == "config_error"
    assert [p.id for p in coordinator.state.products] == [product.id]


def test_denial_wins_over_later_transient_failure(coordinator, remote):
    product = _product(coordinator)
    remote.deny_access("categories")
    remote.fail_when(lambda operation, table, key: operation == "select" and table == "orders")

    with pytest.raises(RemoteAuthorizationError) as excinfo:
        coordinator.refresh()

    assert excinfo.value.collections == ["categories"]
    assert coordinator.status()["blocked"] is True
    assert [p.id for p in coordinator.state.products] == [product.id]


def _held_by_another_thread(lock):
    held = []

    def attempt():
        acquired = lock.acquire(blocking=False)
        if acquired:
            lock.release()
        held.append(not acquired)

    worker = threading.Thread(target=attempt)
    worker.start()
    worker.join()
    return held[0]


def test_refresh_keeps_actions_out_until_applied(coordinator, remote):
    io_lock = coordinator.gateway.io_lock
    during_pull = []
    remote.fail_when(lambda operation, table, key: during_pull.append(_held_by_another_thread(io_lock)) or False)

    apply_refresh = coordinator.gateway.refresh_handler
    during_apply = []

    def observed_apply(data):
        during_apply.append(_held_by_another_thread(io_lock))
        apply_refresh(data)

    coordinator.gateway.refresh_handler = observed_apply

    assert coordinator.refresh() is True
    assert len(during_pull) == 6 and all(during_pull)
    assert during_apply == [True]
    assert not _held_by_another_thread(io_lock)


# --- change feed --------------------------------------------------------------------

def test_remote_insert_is_merged_once(coordinator, remote):
    seen = []
    coordinator.change_feed.subscribe(seen.append)
    record = {"id": "p-x", "code": "X1", "name": "Pushed", "current_stock": 0}

    remote.dispatch(ChangeEvent(ChangeType.INSERT, "products", record))
    remote.dispatch(ChangeEvent(ChangeType.INSERT, "products", record))

    assert [p.id for p in coordinator.state.products] == ["p-x"]
    assert seen == [KEY_PRODUCTS, DASHBOARD]
    assert [p["id"] for p in LocalStore().read(KEY_PRODUCTS)] == ["p-x"]


def test_update_before_insert_is_dropped(coordinator):
    changed = coordinator.change_feed.handle(
        ChangeEvent(ChangeType.UPDATE, "products", {"id": "p-late", "code": "L", "name": "Late", "current_stock": 3})
    )

    assert changed is False
    assert coordinator.state.find_product("p-late") is None


def test_remote_update_and_delete(coordinator):
    product = _product(coordinator, stock=0)
    record = dict(coordinator.get_product(product.id), name="Renamed elsewhere")

    assert coordinator.change_feed.handle(ChangeEvent(ChangeType.UPDATE, "products", record)) is True
    assert coordinator.get_product(product.id)["name"] == "Renamed elsewhere"

    delete = ChangeEvent(ChangeType.DELETE, "products", None, {"id": product.id})
    assert coordinator.change_feed.handle(delete) is True
    assert coordinator.change_feed.handle(delete) is False
    assert coordinator.state.find_product(product.id) is None


def test_category_and_settings_events(coordinator):
    feed = coordinator.change_feed

    assert feed.handle(ChangeEvent(ChangeType.INSERT, "categories", {"name": "Mainan"})) is True
    assert feed.handle(ChangeEvent(ChangeType.INSERT, "categories", {"name": "Mainan"})) is False
    assert feed.handle(ChangeEvent(ChangeType.DELETE, "categories", None, {"name": "Mainan"})) is True
    assert "Mainan" not in coordinator.list_categories()

    settings = {"id": 1, "data": {"minStockLimit": 1, "currency": "USD", "storeName": "Remote"}}
    assert feed.handle(ChangeEvent(ChangeType.UPDATE, "settings", settings)) is True
    assert coordinator.get_settings()["storeName"] == "Remote"
    assert feed.handle(ChangeEvent(ChangeType.UPDATE, "settings", settings)) is False


def test_malformed_event_is_ignored(coordinator):
    assert coordinator.change_feed.handle(ChangeEvent(ChangeType.INSERT, "orders", None)) is False
    assert coordinator.change_feed.handle(ChangeEvent(ChangeType.INSERT, "orders", {"order_number": "X"})) is False
    assert coordinator.state.orders == []


def test_change_event_payload_aliases():
    event = ChangeEvent.from_payload({"eventType": "delete", "table": "sales", "old": {"id": "s1"}})
    assert event.type is ChangeType.DELETE
    assert event.old_record == {"id": "s1"}
    assert event.record is None


# --- durability ----------------------------------------------------------------------

def test_queue_and_state_survive_restart(app, coordinator, remote):
    coordinator.set_online(False)
    product = _product(coordinator, stock=4)

    restarted = InventoryCoordinator(LocalStore(), remote, online=False)
    restarted.initialize()
    try:
        assert restarted.state.find_product(product.id).current_stock == 4
        assert len(restarted.queue) == len(coordinator.queue) == 3
        restarted.set_online(True)
        assert restarted.queue.is_empty()
        assert product.id in remote.tables["products"]
    finally:
        restarted.change_feed.detach()


def test_restart_while_online_drains_leftover_queue(app, coordinator, remote):
    product = _product(coordinator, stock=4)
    coordinator.set_online(False)
    coordinator.delete_product(product.id)
    assert len(coordinator.queue) >= 1

    restarted = InventoryCoordinator(LocalStore(), remote, online=True)
    restarted.initialize()
    try:
        assert restarted.queue.is_empty()
        assert product.id not in remote.tables["products"]
        assert restarted.state.find_product(product.id) is None

        other = restarted.create_product({"code": "SKU002", "name": "After restart"}).value
        assert restarted.queue.is_empty()
        assert other.id in remote.tables["products"]
    finally:
        restarted.change_feed.detach()
