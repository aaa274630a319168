import json
from datetime import date

import pytest

from backup_service import (
    BACKUP_VERSION, BackupFormatError, backup_filename, dumps_backup, export_all_data, import_data,
)
from database import DataService
from local_cache import LocalCacheStore
from seed_data import default_seed, empty_seed
from conftest import make_patient


async def test_export_then_import_into_empty_store_round_trips(cache, tmp_path):
    source = DataService(cache=cache, remote=None, seed_provider=default_seed)
    document = json.loads(dumps_backup(await export_all_data(source)))
    assert document["version"] == BACKUP_VERSION
    assert document["exportDate"].endswith("Z")

    target = DataService(cache=LocalCacheStore(str(tmp_path / "other")), remote=None, seed_provider=empty_seed)
    result = await import_data(target, json.dumps(document))

    expected_total = sum(len(document[t]) for t in DataService.TABLES)
    assert result == {"count": expected_total, "skipped": 0}
    for table in DataService.TABLES:
        assert await target.collection(table).list() == document[table]


async def test_import_is_additive(local_service):
    await local_service.patients.save(make_patient(id="keep"))
    await local_service.patients.save(make_patient(id="over", phone="0600"))
    document = {"patients": [make_patient(id="over", phone="0699")], "version": "1.0"}

    result = await import_data(local_service, document)

    assert result["count"] == 1
    by_id = {p["id"]: p for p in await local_service.patients.list()}
    assert set(by_id) == {"keep", "over"}
    assert by_id["over"]["phone"] == "0699"


async def test_invalid_records_are_skipped(local_service):
    document = {
        "appointments": [
            {"id": "a1", "patientId": "p", "date": "2024-01-01", "durationMinutes": 30,
             "reason": "x", "status": "Planifié"},
            {"id": "a2", "patientId": "p", "date": "2024-01-01", "durationMinutes": -5,
             "reason": "x", "status": "Planifié"},
        ]
    }
    result = await import_data(local_service, document)
    assert result == {"count": 1, "skipped": 1}


@pytest.mark.parametrize("payload", [
    "{not json",
    "[1, 2, 3]",
    '{"patients": {"id": "p1"}}',
    '{"invoices": ["not-an-object"]}',
])
async def test_malformed_documents_abort_without_writes(local_service, payload):
    with pytest.raises(BackupFormatError):
        await import_data(local_service, payload)
    assert await local_service.patients.list() == []
    assert await local_service.invoices.list() == []


async def test_bytes_payload_is_accepted(local_service):
    payload = json.dumps({"users": [{"id": "u9", "name": "Nadia", "email": "n@x.ma",
                                     "role": "Secrétaire", "permissions": []}]}).encode("utf-8")
    assert (await import_data(local_service, payload))["count"] == 1


def test_backup_filename():
    assert backup_filename(date(2024, 12, 31)) == "backup_cabinet_medical_2024-12-31.json"
