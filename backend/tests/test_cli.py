import json


def _seed(coordinator):
    return coordinator.create_product({"code": "SKU001", "name": "Kopi", "current_stock": 3}).value


def test_check_ledger(app, coordinator):
    product = _seed(coordinator)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["system", "check-ledger"])
    assert result.exit_code == 0
    assert "Ledger consistent" in result.output

    coordinator.state.find_product(product.id).current_stock = 1
    result = runner.invoke(args=["system", "check-ledger"])
    assert result.exit_code == 1
    assert "FAIL SKU001" in result.output


def test_sync_status_lists_entries(app, coordinator):
    coordinator.set_online(False)
    _seed(coordinator)

    result = app.test_cli_runner().invoke(args=["sync", "status", "--entries"])

    assert result.exit_code == 0
    assert "Status:  offline" in result.output
    assert "Pending: 3" in result.output
    assert "CREATE products" in result.output


def test_sync_watch_drains_when_reachable(app, coordinator, remote):
    coordinator.set_online(False)
    _seed(coordinator)

    result = app.test_cli_runner().invoke(args=["sync", "watch", "--interval", "0.01", "--iterations", "1"])

    assert result.exit_code == 0
    assert coordinator.queue.is_empty()
    assert len(remote.tables["products"]) == 1


def test_backup_and_restore_files(app, coordinator, tmp_path):
    _seed(coordinator)
    out = tmp_path / "backup.json"
    runner = app.test_cli_runner()

    result = runner.invoke(args=["data", "backup", "--out", str(out)])
    assert result.exit_code == 0
    assert json.loads(out.read_text(encoding="utf-8"))["products"][0]["code"] == "SKU001"

    result = runner.invoke(args=["data", "restore", str(out), "--yes"])
    assert result.exit_code == 0
    assert "Restored 1 products" in result.output


def test_import_file(app, coordinator, tmp_path):
    path = tmp_path / "products.csv"
    path.write_text("code,name,current_stock\nA1,Alpha,2\n,Broken,1\n", encoding="utf-8")

    result = app.test_cli_runner().invoke(args=["data", "import", "products", str(path)])

    assert result.exit_code == 0
    assert "1 succeeded, 1 failed" in result.output
    assert "row 3" in result.output
