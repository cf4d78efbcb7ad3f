import json
import unittest

from stocksync.models import AppState
from stocksync.services import backup_service, inventory_service, products_service, sales_service
from stocksync.services.errors import ValidationError
from stocksync.services.local_store import COLLECTION_KEYS
from stocksync.services.mutations import OpType


def _seeded_state():
    state = AppState()
    product = products_service.create_product(state, {
        "code": "SKU001", "name": "Kopi", "category": "Minuman", "price": 5000, "current_stock": 20,
    }).value
    inventory_service.record_stock_out(state, product.id, 4)
    sales_service.create_sale(state, "Budi", "2024-01-10", "cash", [{"product_id": product.id, "quantity": 2}])
    products_service.save_settings(state, {"minStockLimit": 3, "currency": "IDR", "storeName": "Toko Maju"})
    return state, product


class BackupTests(unittest.TestCase):
    def test_backup_contains_every_collection(self):
        state, _ = _seeded_state()

        snapshot = backup_service.build_backup(state)

        for key in COLLECTION_KEYS:
            self.assertIn(key, snapshot)
        self.assertIn("timestamp", snapshot)
        self.assertEqual(snapshot["settings"]["storeName"], "Toko Maju")
        # Must be plain JSON
        json.dumps(snapshot)

    def test_restore_reproduces_backed_up_state(self):
        source, product = _seeded_state()
        snapshot = json.loads(json.dumps(backup_service.build_backup(source)))

        target = AppState()
        products_service.create_product(target, {"code": "OLD", "name": "Old product", "current_stock": 1})
        backup_service.restore_from_backup(target, snapshot)

        self.assertEqual([p.code for p in target.products], ["SKU001"])
        self.assertEqual(target.find_product(product.id).current_stock, 14)
        self.assertEqual(target.ledger_balance(product.id), 14)
        self.assertEqual(len(target.sales), 1)
        self.assertEqual(target.settings.store_name, "Toko Maju")
        self.assertEqual(backup_service.build_backup(target)["products"], snapshot["products"])

    def test_restore_deletes_remote_records_then_upserts_snapshot(self):
        source, _ = _seeded_state()
        snapshot = backup_service.build_backup(source)

        target = AppState()
        old = products_service.create_product(target, {"code": "OLD", "name": "Old", "current_stock": 1}).value
        result = backup_service.restore_from_backup(target, snapshot)

        deletes = [op for op in result.ops if op.type is OpType.DELETE]
        creates = [op for op in result.ops if op.type is OpType.CREATE]
        self.assertIn(("products", old.id), [(op.table, op.record_id) for op in deletes])
        self.assertTrue(all(op.upsert for op in creates))
        self.assertLess(result.ops.index(deletes[-1]), result.ops.index(creates[0]))
        self.assertEqual(creates[-1].table, "settings")
        self.assertEqual(result.touched, set(COLLECTION_KEYS))

    def test_categories_include_product_categories(self):
        source, _ = _seeded_state()
        snapshot = backup_service.build_backup(source)
        snapshot["categories"] = []

        restored = backup_service.parse_backup(snapshot)

        self.assertIn("Minuman", restored.categories)

    def test_missing_keys_rejected_without_changes(self):
        state, product = _seeded_state()
        snapshot = backup_service.build_backup(state)
        del snapshot["orders"]
        del snapshot["sales"]

        with self.assertRaises(ValidationError) as ctx:
            backup_service.restore_from_backup(state, snapshot)

        self.assertEqual(ctx.exception.details["missing"], ["orders", "sales"])
        self.assertEqual(state.find_product(product.id).current_stock, 14)

    def test_malformed_records_rejected(self):
        state, _ = _seeded_state()
        snapshot = backup_service.build_backup(state)
        snapshot["products"].append({"code": "NOID"})

        with self.assertRaises(ValidationError):
            backup_service.parse_backup(snapshot)

        with self.assertRaises(ValidationError):
            backup_service.parse_backup(["not", "an", "object"])
