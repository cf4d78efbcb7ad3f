import json

import httpx
import pytest

from stocksync.services.errors import RemoteAuthorizationError, RemoteError, RemoteWriteError
from stocksync.services.remote_ledger import HttpRemoteLedger, InMemoryRemoteLedger, build_remote_ledger


class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        response = self.responses.pop(0) if self.responses else httpx.Response(204)
        if isinstance(response, Exception):
            raise response
        return response


def _remote(*responses, api_key="secret"):
    recorder = Recorder(*responses)
    remote = HttpRemoteLedger(
        "http://remote.test/", api_key, transport=httpx.MockTransport(recorder)
    )
    return remote, recorder


def test_insert_posts_record_and_returns_representation():
    remote, recorder = _remote(httpx.Response(201, json=[{"id": "p1", "code": "A", "name": "Stored"}]))

    stored = remote.insert("products", {"id": "p1", "code": "A", "name": "A"})

    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/rest/v1/products"
    assert request.headers["Prefer"] == "return=representation"
    assert request.headers["apikey"] == "secret"
    assert request.headers["Authorization"] == "Bearer secret"
    assert json.loads(request.content) == {"id": "p1", "code": "A", "name": "A"}
    assert stored["name"] == "Stored"


def test_upsert_merges_on_key_column():
    remote, recorder = _remote(httpx.Response(201))

    record = {"name": "Mainan"}
    assert remote.insert("categories", record, upsert=True) == record

    request = recorder.requests[0]
    assert "resolution=merge-duplicates" in request.headers["Prefer"]
    assert request.url.params["on_conflict"] == "name"


def test_update_and_delete_match_by_key():
    remote, recorder = _remote(httpx.Response(204), httpx.Response(204))

    remote.update("products", "p1", {"current_stock": 3})
    remote.delete("categories", "Mainan")

    patch, delete = recorder.requests
    assert patch.method == "PATCH"
    assert patch.url.params["id"] == "eq.p1"
    assert json.loads(patch.content) == {"current_stock": 3}
    assert delete.method == "DELETE"
    assert delete.url.params["name"] == "eq.Mainan"


def test_select_all():
    remote, recorder = _remote(httpx.Response(200, json=[{"id": "o1"}, "junk"]))

    assert remote.select_all("orders") == [{"id": "o1"}]
    assert recorder.requests[0].url.params["select"] == "*"


def test_select_all_rejects_non_list():
    remote, _ = _remote(httpx.Response(200, json={"unexpected": True}))
    with pytest.raises(RemoteError):
        remote.select_all("orders")


@pytest.mark.parametrize("response", [
    httpx.Response(401),
    httpx.Response(403, json={"message": "forbidden"}),
    httpx.Response(400, json={"code": "42501", "message": "permission denied for table sales"}),
])
def test_permission_errors(response):
    remote, _ = _remote(response)

    with pytest.raises(RemoteAuthorizationError) as excinfo:
        remote.insert("sales", {"id": "s1"})

    assert excinfo.value.collections == ["sales"]


@pytest.mark.parametrize("response", [
    httpx.Response(409, json={"code": "23505"}),
    httpx.Response(500, text="boom"),
    httpx.ConnectError("connection refused"),
    httpx.ReadTimeout("timed out"),
])
def test_other_failures_are_transient(response):
    remote, _ = _remote(response)

    with pytest.raises(RemoteWriteError) as excinfo:
        remote.update("products", "p1", {"name": "x"})

    assert not isinstance(excinfo.value, RemoteAuthorizationError)


def test_ping():
    remote, _ = _remote(httpx.Response(200))
    assert remote.ping() is True

    remote, _ = _remote(httpx.ConnectError("down"))
    assert remote.ping() is False

    remote, _ = _remote(httpx.Response(503))
    assert remote.ping() is False


def test_build_remote_ledger_from_config():
    assert isinstance(build_remote_ledger({"REMOTE_LEDGER_URL": ""}), InMemoryRemoteLedger)

    remote = build_remote_ledger({"REMOTE_LEDGER_URL": "http://remote.test", "REMOTE_LEDGER_PATH": "/api"})
    try:
        assert isinstance(remote, HttpRemoteLedger)
        assert remote.base_url == "http://remote.test/api"
    finally:
        remote.close()
