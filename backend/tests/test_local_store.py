import pytest

from stocksync.extensions import db
from stocksync.models import AppState, LocalStoreEntry
from stocksync.services import products_service
from stocksync.services.local_store import (
    COLLECTION_KEYS,
    KEY_CATEGORIES,
    KEY_PRODUCTS,
    KEY_SETTINGS,
    KEY_SYNC_QUEUE,
    LocalStore,
)


@pytest.fixture
def store(app):
    store = LocalStore()
    store.clear()
    yield store
    store.clear()


def _put_raw(key, value_json):
    db.session.merge(LocalStoreEntry(key=key, value_json=value_json))
    db.session.commit()


def test_missing_keys_return_typed_defaults(store):
    assert store.read(KEY_PRODUCTS) == []
    assert store.read(KEY_SYNC_QUEUE) == []
    assert store.read(KEY_CATEGORIES) == ["Elektronik", "Makanan", "Minuman", "Pakaian"]
    assert store.read(KEY_SETTINGS)["minStockLimit"] == 10


def test_defaults_are_not_shared(store):
    store.read(KEY_CATEGORIES).append("Mutated")
    assert "Mutated" not in store.read(KEY_CATEGORIES)


def test_unreadable_value_returns_default(store):
    _put_raw(KEY_PRODUCTS, "{not json")
    assert store.read(KEY_PRODUCTS) == []


def test_value_of_wrong_shape_returns_default(store):
    _put_raw(KEY_PRODUCTS, '{"id": "p1"}')
    _put_raw(KEY_SETTINGS, "[1, 2]")
    assert store.read(KEY_PRODUCTS) == []
    assert store.read(KEY_SETTINGS)["currency"] == "IDR"


def test_write_then_read(store):
    store.write(KEY_SYNC_QUEUE, [{"type": "DELETE", "table": "orders", "id": "o1"}])
    assert store.read(KEY_SYNC_QUEUE) == [{"type": "DELETE", "table": "orders", "id": "o1"}]

    store.write(KEY_SYNC_QUEUE, [])
    assert store.read(KEY_SYNC_QUEUE) == []


def test_state_survives_save_and_load(store):
    state = AppState()
    product = products_service.create_product(state, {"code": "SKU001", "name": "Kopi", "current_stock": 12}).value
    products_service.save_settings(state, {"minStockLimit": 2, "currency": "IDR"})

    store.save_state(state, COLLECTION_KEYS)
    loaded = store.load_state()

    assert [p.id for p in loaded.products] == [product.id]
    assert loaded.products[0].current_stock == 12
    assert loaded.ledger_balance(product.id) == 12
    assert loaded.settings.min_stock_limit == 2
    assert "Uncategorized" in loaded.categories


def test_malformed_records_are_skipped_on_load(store):
    _put_raw(KEY_PRODUCTS, '[{"id": "p1", "code": "A", "name": "A"}, {"code": "no-id"}, "junk"]')

    loaded = store.load_state()

    assert [p.id for p in loaded.products] == ["p1"]


def test_save_state_only_writes_requested_keys(store):
    state = AppState()
    products_service.create_product(state, {"code": "A", "name": "A"})

    store.save_state(state, [KEY_PRODUCTS])

    keys = {e["key"] for e in store.entries()}
    assert keys == {KEY_PRODUCTS}
