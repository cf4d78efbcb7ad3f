# Overview: Owns the application state and wires mutators, local store and the sync layer together.

"""
Inventory Coordinator

Every action follows the same path:

1. under the state lock: run the mutator against AppState, persist the
   touched collections to the Local Store
2. after releasing the lock: hand the resulting remote ops to the gateway,
   which writes them or queues them

Remote failures never undo step 1.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from flask import current_app

from ..models import AppState
from . import (
    backup_service,
    import_service,
    inventory_service,
    orders_service,
    products_service,
    reporting_service,
    sales_service,
)
from .change_feed import ChangeFeedListener, state_from_remote
from .concurrency import StateLock, serialized
from .connectivity import ConnectivityMonitor
from .local_store import COLLECTION_KEYS, LocalStore
from .mutations import MutationResult
from .remote_gateway import DrainResult, RemoteGateway
from .remote_ledger import RemoteLedger
from .sync_queue import SyncQueue

logger = logging.getLogger(__name__)

EXTENSION_KEY = "stocksync"


class InventoryCoordinator:
    def __init__(
        self,
        store: LocalStore,
        remote: RemoteLedger,
        *,
        online: bool = True,
        reconcile_stock: bool = True,
        error_detail_limit: int = 5,
    ):
        self.lock = StateLock()
        self.store = store
        self.remote = remote
        self.state = AppState()
        self.reconcile_stock = reconcile_stock
        self.error_detail_limit = error_detail_limit

        self.queue = SyncQueue(store, self.lock)
        self.connectivity = ConnectivityMonitor(online)
        self.gateway = RemoteGateway(remote, self.queue, self.connectivity, refresh_handler=self._apply_refresh)
        self.change_feed = ChangeFeedListener(store, self.lock, lambda: self.state)
        self.connectivity.subscribe(self._on_connectivity_change)
        self._initialized = False

    # --- lifecycle -------------------------------------------------------------------

    def initialize(self) -> None:
        """
        Load persisted state and subscribe to the remote change feed. Writes
        left queued by a previous run are drained right away when online.
        """
        with self.lock:
            self.state = self.store.load_state()
            self._initialized = True
        self.change_feed.attach(self.remote)
        pending = len(self.queue)
        logger.info(
            "Loaded %d products, %d movements, %d pending sync entries",
            len(self.state.products), len(self.state.stock_movements), pending,
        )
        if pending and self.connectivity.is_online:
            self.drain()

    def ensure_initialized(self) -> None:
        if not self._initialized:
            self.initialize()

    def reload(self) -> None:
        with self.lock:
            self.state = self.store.load_state()

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            self.drain()

    # --- action plumbing ---------------------------------------------------------------

    def _execute(self, mutator: Callable[..., MutationResult], *args, **kwargs) -> MutationResult:
        self.ensure_initialized()
        # Remote ops must reach the gateway in mutation order
        with self.gateway.io_lock:
            with self.lock:
                result = mutator(self.state, *args, **kwargs)
                self.store.save_state(self.state, sorted(result.touched))
            if result.ops:
                self.gateway.submit(result.ops)
        for key in sorted(result.touched):
            self.change_feed.notify(key)
        return result

    # --- products / categories / settings --------------------------------------------

    def create_product(self, data: dict) -> MutationResult:
        return self._execute(products_service.create_product, data)

    def update_product(self, product_id: str, data: dict) -> MutationResult:
        return self._execute(products_service.update_product, product_id, data)

    def delete_product(self, product_id: str) -> MutationResult:
        return self._execute(products_service.delete_product, product_id)

    def add_category(self, name) -> MutationResult:
        return self._execute(products_service.add_category, name)

    def delete_category(self, name) -> MutationResult:
        return self._execute(products_service.delete_category, name)

    def save_settings(self, data: dict) -> MutationResult:
        return self._execute(products_service.save_settings, data)

    # --- stock ledger -----------------------------------------------------------------

    def record_stock_in(self, product_id: str, quantity, date=None, note=None) -> MutationResult:
        return self._execute(inventory_service.record_stock_in, product_id, quantity, date, note)

    def record_stock_out(self, product_id: str, quantity, date=None, note=None) -> MutationResult:
        return self._execute(inventory_service.record_stock_out, product_id, quantity, date, note)

    # --- orders ---------------------------------------------------------------------------

    def create_order(self, product_id: str, quantity, note=None) -> MutationResult:
        return self._execute(orders_service.create_order, product_id, quantity, note)

    def approve_order(self, order_id: str, approved_at=None) -> MutationResult:
        return self._execute(orders_service.approve_order, order_id, approved_at)

    def reject_order(self, order_id: str) -> MutationResult:
        return self._execute(orders_service.reject_order, order_id)

    def delete_order(self, order_id: str) -> MutationResult:
        return self._execute(orders_service.delete_order, order_id)

    # --- sales ------------------------------------------------------------------------------

    def create_sale(self, customer_name, sale_date, payment_method, items) -> MutationResult:
        return self._execute(sales_service.create_sale, customer_name, sale_date, payment_method, items)

    def confirm_indent_payment(self, sale_id: str, payment_method=None) -> MutationResult:
        return self._execute(sales_service.confirm_indent_payment, sale_id, payment_method)

    def delete_sale(self, sale_id: str) -> MutationResult:
        return self._execute(sales_service.delete_sale, sale_id)

    # --- import / backup ------------------------------------------------------------------

    def import_rows(self, kind: str, rows: list[dict], *, reconcile_stock: bool | None = None) -> dict:
        """Run a batch import and return its summary."""
        if reconcile_stock is None:
            reconcile_stock = self.reconcile_stock

        def _mutator(state: AppState) -> MutationResult:
            report = import_service.run_import(state, kind, rows, reconcile_stock=reconcile_stock)
            report.result.value = report
            return report.result

        report = self._execute(_mutator).value
        summary = report.summary(self.error_detail_limit)
        logger.info("Import %s: %s", kind, summary["message"])
        return summary

    def restore_from_backup(self, snapshot: Any) -> MutationResult:
        return self._execute(backup_service.restore_from_backup, snapshot)

    @serialized
    def build_backup(self) -> dict:
        return backup_service.build_backup(self.state)

    # --- reads ------------------------------------------------------------------------------

    @serialized
    def get_product(self, product_id: str) -> dict:
        return inventory_service.require_product(self.state, product_id).to_dict()

    @serialized
    def list_products(self, *, category: str | None = None, search: str | None = None) -> list[dict]:
        needle = (search or "").strip().lower()
        products = [
            p for p in self.state.products
            if (not category or p.category == category)
            and (not needle or needle in p.code.lower() or needle in p.name.lower())
        ]
        return [p.to_dict() for p in sorted(products, key=lambda p: p.code)]

    @serialized
    def list_categories(self) -> list[str]:
        return list(self.state.categories)

    @serialized
    def get_settings(self) -> dict:
        return self.state.settings.to_dict()

    @serialized
    def list_movements(self, product_id: str | None = None) -> list[dict]:
        movements = self.state.stock_movements
        if product_id:
            movements = [m for m in movements if m.product_id == product_id]
        return [m.to_dict() for m in sorted(movements, key=lambda m: m.date, reverse=True)]

    @serialized
    def list_orders(self, status: str | None = None) -> list[dict]:
        orders = [o for o in self.state.orders if not status or o.status.value == status]
        return [o.to_dict() for o in sorted(orders, key=lambda o: o.created_at or datetime.min, reverse=True)]

    @serialized
    def list_sales(self, status: str | None = None) -> list[dict]:
        sales = [s for s in self.state.sales if not status or s.status.value == status]
        return [s.to_dict() for s in sorted(sales, key=lambda s: s.sale_date, reverse=True)]

    @serialized
    def get_sale(self, sale_id: str) -> dict:
        return sales_service.require_sale(self.state, sale_id).to_dict()

    @serialized
    def stock_card(self, product_id: str) -> dict:
        return inventory_service.stock_card(self.state, product_id)

    @serialized
    def verify_ledger(self) -> list[dict]:
        return inventory_service.verify_ledger(self.state)

    @serialized
    def dashboard(self, **filters) -> dict:
        return reporting_service.dashboard(self.state, **filters)

    @serialized
    def export(self, report: str, **options) -> str:
        if report == "products":
            return reporting_service.export_products(self.state)
        if report == "sales":
            return reporting_service.export_sales(self.state, **options)
        if report == "stock-card":
            return reporting_service.export_stock_card(self.state, options["product_id"])
        raise KeyError(report)

    # --- sync -------------------------------------------------------------------------------

    def status(self) -> dict:
        return self.gateway.status()

    def pending_entries(self) -> list[dict]:
        return self.queue.entries()

    def drain(self) -> DrainResult:
        self.ensure_initialized()
        return self.gateway.drain()

    def refresh(self) -> bool:
        """Replace local collections with the remote contents; False when skipped."""
        self.ensure_initialized()
        return self.gateway.refresh()

    def set_online(self, online: bool) -> dict:
        self.connectivity.set_online(online)
        return self.status()

    def probe(self) -> bool:
        return self.connectivity.probe(self.remote)

    def reset_auth(self) -> dict:
        self.gateway.reset_auth()
        return self.status()

    def _apply_refresh(self, data: dict[str, list[dict]]) -> None:
        with self.lock:
            self.state = state_from_remote(data, self.state)
            self.store.save_state(self.state, COLLECTION_KEYS)
        for key in COLLECTION_KEYS:
            self.change_feed.notify(key)


def init_coordinator(app, remote: RemoteLedger | None = None) -> InventoryCoordinator:
    from .remote_ledger import build_remote_ledger

    coordinator = InventoryCoordinator(
        LocalStore(),
        remote or build_remote_ledger(app.config),
        online=app.config.get("START_ONLINE", True),
        reconcile_stock=app.config.get("IMPORT_RECONCILES_STOCK", True),
        error_detail_limit=int(app.config.get("IMPORT_ERROR_DETAIL_LIMIT", 5)),
    )
    app.extensions[EXTENSION_KEY] = coordinator
    return coordinator


def get_coordinator() -> InventoryCoordinator:
    coordinator = current_app.extensions[EXTENSION_KEY]
    coordinator.ensure_initialized()
    return coordinator
