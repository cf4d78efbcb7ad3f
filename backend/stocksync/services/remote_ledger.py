# Overview: Remote Ledger Service clients (in-memory and REST over httpx) and change events.

"""
Remote Ledger Service

The remote is a plain record store with six tables and a change feed:

    insert(table, record, upsert=False)
    update(table, record_id, fields)
    delete(table, record_id)
    select_all(table) -> list[dict]
    on_change(table, handler)
    ping() -> bool

Errors:
- RemoteAuthorizationError: permission denied (HTTP 401/403, code 42501)
- RemoteWriteError: everything else (transport, timeout, non-2xx)

Update and delete of a record that does not exist succeed with no effect,
which keeps queue replay idempotent.
"""
from __future__ import annotations

import copy
import enum
import logging
import threading
from collections import OrderedDict, defaultdict
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from ..validation import ValidationError
from .errors import RemoteAuthorizationError, RemoteError, RemoteWriteError
from .mutations import TABLES, key_field_for

logger = logging.getLogger(__name__)

PERMISSION_DENIED_CODE = "42501"


class ChangeType(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    type: ChangeType
    table: str
    record: dict | None = None
    old_record: dict | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "ChangeEvent":
        """Accepts {type|eventType, table, record|new, old_record|old}."""
        if not isinstance(payload, dict):
            raise ValidationError("change event must be an object")
        raw_type = str(payload.get("type") or payload.get("eventType") or "").upper()
        try:
            change_type = ChangeType(raw_type)
        except ValueError:
            raise ValidationError(f"invalid change type {raw_type!r}")
        table = str(payload.get("table") or "")
        if table not in TABLES:
            raise ValidationError(f"unknown table {table!r}")
        record = payload.get("record", payload.get("new"))
        old_record = payload.get("old_record", payload.get("old"))
        return cls(
            type=change_type,
            table=table,
            record=record if isinstance(record, dict) and record else None,
            old_record=old_record if isinstance(old_record, dict) and old_record else None,
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "table": self.table,
            "record": self.record,
            "old_record": self.old_record,
        }


ChangeHandler = Callable[[ChangeEvent], None]


class RemoteLedger:
    """Base class: the change subscriber registry shared by every implementation."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[ChangeHandler]] = defaultdict(list)
        self._handlers_lock = threading.Lock()

    def insert(self, table: str, record: dict, upsert: bool = False) -> dict:
        raise NotImplementedError

    def update(self, table: str, record_id, fields: dict) -> None:
        raise NotImplementedError

    def delete(self, table: str, record_id) -> None:
        raise NotImplementedError

    def select_all(self, table: str) -> list[dict]:
        raise NotImplementedError

    def ping(self) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def on_change(self, table: str, handler: ChangeHandler) -> Callable[[], None]:
        """Subscribe to change events for one table. Returns an unsubscribe callable."""
        with self._handlers_lock:
            self._handlers[table].append(handler)

        def unsubscribe() -> None:
            with self._handlers_lock:
                if handler in self._handlers[table]:
                    self._handlers[table].remove(handler)

        return unsubscribe

    def dispatch(self, event: ChangeEvent) -> int:
        """Deliver one event to the subscribers of its table."""
        with self._handlers_lock:
            handlers = list(self._handlers.get(event.table, ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Change handler failed for %s %s", event.type.value, event.table)
        return len(handlers)


class InMemoryRemoteLedger(RemoteLedger):
    """
    Process-local remote used by tests and offline demos.

    Emits change events for its own writes. Failures can be injected with
    fail_when() / deny_access() / set_reachable(False).
    """

    def __init__(self, *, emit_changes: bool = True):
        super().__init__()
        self.tables: dict[str, OrderedDict] = {t: OrderedDict() for t in TABLES}
        self.emit_changes = emit_changes
        self.calls: list[tuple[str, str, Any]] = []
        self._reachable = True
        self._denied: set[str] = set()
        self._rules: list[tuple[Callable[[str, str, Any], bool], Exception | None]] = []
        self._lock = threading.RLock()

    # --- failure injection -----------------------------------------------------

    def set_reachable(self, reachable: bool) -> None:
        self._reachable = reachable

    def deny_access(self, *tables: str) -> None:
        self._denied.update(tables or TABLES)

    def fail_when(self, predicate: Callable[[str, str, Any], bool], error: Exception | None = None) -> None:
        """predicate(operation, table, key) -> True makes that call fail."""
        self._rules.append((predicate, error))

    def clear_failures(self) -> None:
        self._rules.clear()
        self._denied.clear()
        self._reachable = True

    def _check(self, operation: str, table: str, key: Any) -> None:
        self.calls.append((operation, table, key))
        if table not in self.tables:
            raise RemoteWriteError(f"unknown table {table!r}")
        if table in self._denied:
            raise RemoteAuthorizationError(f"permission denied for table {table}", [table])
        if not self._reachable:
            raise RemoteWriteError("remote unreachable")
        for predicate, error in self._rules:
            if predicate(operation, table, key):
                raise error or RemoteWriteError(f"injected failure: {operation} {table}/{key}")

    def _emit(self, change_type: ChangeType, table: str, record: dict | None, old_record: dict | None = None) -> None:
        if self.emit_changes:
            self.dispatch(ChangeEvent(change_type, table, copy.deepcopy(record), copy.deepcopy(old_record)))

    # --- RemoteLedger ------------------------------------------------------------

    def insert(self, table: str, record: dict, upsert: bool = False) -> dict:
        key = record.get(key_field_for(table)) if isinstance(record, dict) else None
        self._check("insert", table, key)
        if key is None:
            raise RemoteWriteError(f"{table} record missing {key_field_for(table)}")
        with self._lock:
            rows = self.tables[table]
            existed = key in rows
            if existed and not upsert:
                raise RemoteWriteError(f"duplicate key {key!r} in {table}")
            old = rows.get(key)
            rows[key] = copy.deepcopy(record)
            stored = copy.deepcopy(rows[key])
        if existed:
            self._emit(ChangeType.UPDATE, table, stored, old)
        else:
            self._emit(ChangeType.INSERT, table, stored)
        return stored

    def update(self, table: str, record_id, fields: dict) -> None:
        self._check("update", table, record_id)
        with self._lock:
            rows = self.tables[table]
            if record_id not in rows:
                return
            old = copy.deepcopy(rows[record_id])
            rows[record_id].update(copy.deepcopy(fields))
            stored = copy.deepcopy(rows[record_id])
        self._emit(ChangeType.UPDATE, table, stored, old)

    def delete(self, table: str, record_id) -> None:
        self._check("delete", table, record_id)
        with self._lock:
            old = self.tables[table].pop(record_id, None)
        if old is not None:
            self._emit(ChangeType.DELETE, table, None, old)

    def select_all(self, table: str) -> list[dict]:
        self._check("select", table, None)
        with self._lock:
            return [copy.deepcopy(r) for r in self.tables[table].values()]

    def ping(self) -> bool:
        return self._reachable


class HttpRemoteLedger(RemoteLedger):
    """
    REST client for a PostgREST-style endpoint:

        POST   {base}/{table}               insert (upsert via Prefer header)
        PATCH  {base}/{table}?{key}=eq.{id}
        DELETE {base}/{table}?{key}=eq.{id}
        GET    {base}/{table}?select=*

    Change events arrive through the webhook route and are handed to
    dispatch().
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        path: str = "/rest/v1",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        super().__init__()
        headers = {"Accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self.base_url = base_url.rstrip("/") + "/" + path.strip("/")
        self.client = httpx.Client(
            base_url=self.base_url.rstrip("/") + "/",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def _request(self, method: str, table: str, **kwargs) -> httpx.Response:
        try:
            response = self.client.request(method, table, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteWriteError(f"{method} {table} timed out", details={"table": table}) from e
        except httpx.HTTPError as e:
            raise RemoteWriteError(f"{method} {table} failed: {e}", details={"table": table}) from e

        if response.status_code in (401, 403) or _error_code(response) == PERMISSION_DENIED_CODE:
            raise RemoteAuthorizationError(
                f"permission denied for table {table} (HTTP {response.status_code})", [table]
            )
        if response.status_code >= 400:
            raise RemoteWriteError(
                f"{method} {table} returned HTTP {response.status_code}",
                details={"table": table, "status": response.status_code, "body": response.text[:500]},
            )
        return response

    @staticmethod
    def _match(table: str, record_id) -> dict:
        return {key_field_for(table): f"eq.{record_id}"}

    def insert(self, table: str, record: dict, upsert: bool = False) -> dict:
        prefer = "return=representation"
        params = {}
        if upsert:
            prefer += ",resolution=merge-duplicates"
            params["on_conflict"] = key_field_for(table)
        response = self._request("POST", table, json=record, params=params, headers={"Prefer": prefer})
        body = _json_or_none(response)
        if isinstance(body, list) and body:
            return body[0]
        return record

    def update(self, table: str, record_id, fields: dict) -> None:
        self._request("PATCH", table, json=fields, params=self._match(table, record_id),
                      headers={"Prefer": "return=minimal"})

    def delete(self, table: str, record_id) -> None:
        self._request("DELETE", table, params=self._match(table, record_id),
                      headers={"Prefer": "return=minimal"})

    def select_all(self, table: str) -> list[dict]:
        body = _json_or_none(self._request("GET", table, params={"select": "*"}))
        if not isinstance(body, list):
            raise RemoteError(f"unexpected response for {table}: expected a list")
        return [r for r in body if isinstance(r, dict)]

    def ping(self) -> bool:
        try:
            response = self.client.get("", timeout=min(self.client.timeout.connect or 5.0, 5.0))
        except httpx.HTTPError as e:
            logger.debug("Remote ping failed: %s", e)
            return False
        return response.status_code < 500


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def _error_code(response: httpx.Response) -> str | None:
    if response.status_code < 400:
        return None
    body = _json_or_none(response)
    if isinstance(body, dict) and body.get("code") is not None:
        return str(body["code"])
    return None


def build_remote_ledger(config) -> RemoteLedger:
    """Remote from app config: HTTP when REMOTE_LEDGER_URL is set, else in-memory."""
    url = config.get("REMOTE_LEDGER_URL")
    if not url:
        return InMemoryRemoteLedger()
    return HttpRemoteLedger(
        url,
        config.get("REMOTE_LEDGER_KEY"),
        path=config.get("REMOTE_LEDGER_PATH", "/rest/v1"),
        timeout=float(config.get("REMOTE_TIMEOUT_SECONDS", 10.0)),
    )
