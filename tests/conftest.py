import pytest

from database import DataService
from local_cache import LocalCacheStore
from remote_store import RemoteError, RemoteResult
from seed_data import empty_seed

VALID_URL = "https://xyzcompany.supabase.co"
VALID_KEY = "eyJ" + "a" * 150


class FakeRemote:
    """In-memory stand-in for RemoteStoreClient."""

    def __init__(self, tables=None, fail_reads=False, fail_writes=False):
        self.tables = {name: list(rows) for name, rows in (tables or {}).items()}
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.upsert_errors = []
        self.calls = []

    def _down(self):
        return RemoteResult.failure(RemoteError(code="network", message="connection refused"))

    def select_all(self, table, order_by=None, ascending=True):
        self.calls.append(("select_all", table, order_by, ascending))
        if self.fail_reads:
            return self._down()
        rows = list(self.tables.get(table, []))
        if order_by:
            rows.sort(key=lambda r: r.get(order_by) or "", reverse=not ascending)
        return RemoteResult.success(rows)

    def upsert(self, table, record):
        self.calls.append(("upsert", table, dict(record)))
        if self.upsert_errors:
            return RemoteResult.failure(self.upsert_errors.pop(0))
        if self.fail_writes:
            return self._down()
        rows = self.tables.setdefault(table, [])
        for index, row in enumerate(rows):
            if row["id"] == record["id"]:
                rows[index] = dict(record)
                break
        else:
            rows.append(dict(record))
        return RemoteResult.success()

    def delete_by_id(self, table, record_id):
        self.calls.append(("delete_by_id", table, record_id))
        if self.fail_writes:
            return self._down()
        self.tables[table] = [r for r in self.tables.get(table, []) if r["id"] != record_id]
        return RemoteResult.success()

    def delete_by_ids(self, table, ids):
        self.calls.append(("delete_by_ids", table, list(ids)))
        if self.fail_writes:
            return self._down()
        self.tables[table] = [r for r in self.tables.get(table, []) if r["id"] not in ids]
        return RemoteResult.success()


def make_patient(id="p-1", last="Alaoui", first="Sara", phone="0600000001", cin="", **extra):
    record = {
        "id": id,
        "firstName": first,
        "lastName": last,
        "birthDate": "1988-02-14",
        "phone": phone,
        "email": "",
        "cin": cin,
        "insuranceType": "CNSS",
        "insuranceNumber": "",
        "address": "",
        "medicalHistory": [],
        "allergies": [],
        "createdAt": "2024-01-01T00:00:00Z",
    }
    record.update(extra)
    return record


@pytest.fixture
def cache(tmp_path):
    return LocalCacheStore(str(tmp_path / "cache"))


@pytest.fixture
def local_service(cache):
    """Local-only data service with no seed data."""
    return DataService(cache=cache, remote=None, seed_provider=empty_seed)


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
def synced_service(cache, fake_remote):
    return DataService(cache=cache, remote=fake_remote, seed_provider=empty_seed)
