# Overview: Merges remote change events into the local state without losing or duplicating records.

"""
Change Feed Listener

Per collection:
- INSERT appends when the identifier is new, otherwise it is ignored.
- UPDATE replaces the matching record. An UPDATE for a record that is not
  known locally is dropped (its INSERT has not arrived yet, or the record was
  deleted here); the next full refresh reconciles it.
- DELETE removes by identifier; an unknown identifier is a no-op.

Categories are keyed by name, settings are the singleton row {id: 1, data}.
Accepted changes persist the collection, then observers are notified with
the collection key and then "dashboard".
"""
from __future__ import annotations

import logging
from typing import Any, Callable

from ..models import AppState, Order, Product, Sale, StockMovement, StoreSettings
from ..validation import ValidationError
from .concurrency import StateLock
from .local_store import KEY_ORDERS, KEY_PRODUCTS, KEY_SALES, KEY_STOCK_MOVEMENTS, LocalStore
from .mutations import TABLE_CATEGORIES, TABLE_SETTINGS, TABLE_TO_KEY, TABLES, key_field_for
from .remote_ledger import ChangeEvent, ChangeType, RemoteLedger

logger = logging.getLogger(__name__)

DASHBOARD = "dashboard"

Observer = Callable[[str], None]

# Local store key -> (AppState attribute, record factory)
_RECORD_COLLECTIONS: dict[str, tuple[str, Callable[[dict], Any]]] = {
    KEY_PRODUCTS: ("products", Product.from_dict),
    KEY_STOCK_MOVEMENTS: ("stock_movements", StockMovement.from_dict),
    KEY_ORDERS: ("orders", Order.from_dict),
    KEY_SALES: ("sales", Sale.from_dict),
}


class ChangeFeedListener:
    def __init__(self, store: LocalStore, lock: StateLock, get_state: Callable[[], AppState]):
        self.store = store
        self.lock = lock
        self.get_state = get_state
        self._observers: list[Observer] = []
        self._unsubscribers: list[Callable[[], None]] = []

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def attach(self, remote: RemoteLedger) -> None:
        """Subscribe to every table of the remote (once)."""
        if self._unsubscribers:
            return
        for table in TABLES:
            self._unsubscribers.append(remote.on_change(table, self.handle))

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def notify(self, key: str) -> None:
        for observer in list(self._observers):
            observer(key)
        for observer in list(self._observers):
            observer(DASHBOARD)

    def handle(self, event: ChangeEvent) -> bool:
        """Apply one event. Returns True when local state changed."""
        key = TABLE_TO_KEY.get(event.table)
        if key is None:
            logger.warning("Ignoring change event for unknown table %r", event.table)
            return False

        try:
            with self.lock:
                state = self.get_state()
                if event.table == TABLE_SETTINGS:
                    changed = self._apply_settings(state, event)
                elif event.table == TABLE_CATEGORIES:
                    changed = self._apply_category(state, event)
                else:
                    changed = self._apply_record(state, key, event)
                if changed:
                    self.store.save_state(state, [key])
        except ValidationError as e:
            logger.warning("Ignoring malformed %s event for %s: %s", event.type.value, event.table, e)
            return False

        if changed:
            self.notify(key)
        return changed

    # --- per collection ------------------------------------------------------------

    @staticmethod
    def _identifier(table: str, event: ChangeEvent) -> Any:
        source = event.old_record if event.type is ChangeType.DELETE else event.record
        if source is None and event.type is ChangeType.DELETE:
            source = event.record
        if not source:
            raise ValidationError(f"{event.type.value} event without a record")
        ident = source.get(key_field_for(table))
        if ident is None or str(ident).strip() == "":
            raise ValidationError(f"{event.type.value} event record without {key_field_for(table)}")
        return ident

    def _apply_record(self, state: AppState, key: str, event: ChangeEvent) -> bool:
        attr, factory = _RECORD_COLLECTIONS[key]
        records = getattr(state, attr)
        ident = str(self._identifier(event.table, event))
        index = next((i for i, r in enumerate(records) if r.id == ident), None)

        if event.type is ChangeType.DELETE:
            if index is None:
                return False
            setattr(state, attr, [r for r in records if r.id != ident])
            return True

        record = factory(event.record)
        if event.type is ChangeType.INSERT:
            if index is not None:
                return False
            records.append(record)
            return True

        if index is None:
            logger.debug("Dropping UPDATE for unknown %s record %s", event.table, ident)
            return False
        if records[index] == record:
            return False
        records[index] = record
        return True

    def _apply_category(self, state: AppState, event: ChangeEvent) -> bool:
        name = str(self._identifier(event.table, event)).strip()
        if event.type is ChangeType.DELETE:
            if name not in state.categories:
                return False
            state.categories = [c for c in state.categories if c != name]
            return True
        if event.type is ChangeType.UPDATE and event.old_record:
            old_name = str(event.old_record.get("name") or "").strip()
            if old_name and old_name != name and old_name in state.categories:
                state.categories = [name if c == old_name else c for c in state.categories]
                return True
        if name in state.categories:
            return False
        if event.type is ChangeType.UPDATE:
            logger.debug("Dropping UPDATE for unknown category %s", name)
            return False
        state.categories.append(name)
        return True

    def _apply_settings(self, state: AppState, event: ChangeEvent) -> bool:
        if event.type is ChangeType.DELETE:
            return False
        data = (event.record or {}).get("data")
        if not isinstance(data, dict):
            raise ValidationError("settings event without data")
        settings = StoreSettings.from_dict(data)
        if settings == state.settings:
            return False
        state.settings = settings
        return True


def state_from_remote(data: dict[str, list[dict]], current: AppState) -> AppState:
    """Build application state from a full remote pull, skipping malformed rows."""

    def parse(table: str, factory) -> list:
        parsed = []
        for row in data.get(table, []):
            try:
                parsed.append(factory(row))
            except ValidationError as e:
                logger.warning("Skipping malformed remote %s record: %s", table, e)
        return parsed

    categories: list[str] = []
    for row in data.get(TABLE_CATEGORIES, []):
        name = str(row.get("name") or "").strip()
        if name and name not in categories:
            categories.append(name)

    settings = current.settings
    for row in data.get(TABLE_SETTINGS, []):
        if isinstance(row.get("data"), dict):
            settings = StoreSettings.from_dict(row["data"])
            break

    return AppState(
        products=parse("products", Product.from_dict),
        categories=categories,
        stock_movements=parse("stock_movements", StockMovement.from_dict),
        orders=parse("orders", Order.from_dict),
        sales=parse("sales", Sale.from_dict),
        settings=settings,
    )
