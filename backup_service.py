"""
backup_service.py
-----------------
Full export of every collection into one JSON document, and additive restore
from such a document (each record is replayed through the collection's save).
"""

import json
import logging
from datetime import date, datetime, timezone
from typing import Dict, Optional

from models import RecordValidationError

logger = logging.getLogger(__name__)

BACKUP_VERSION = "1.0"
EXPORT_ORDER = ("patients", "appointments", "invoices", "consultations", "expenses", "users")
RESTORE_ORDER = ("patients", "consultations", "appointments", "invoices", "expenses", "users")


class BackupFormatError(Exception):
    """The backup document is not valid JSON or not the expected structure."""


async def export_all_data(data_service) -> Dict:
    data = {}
    for table in EXPORT_ORDER:
        data[table] = await data_service.collection(table).list()
    data["exportDate"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    data["version"] = BACKUP_VERSION
    logger.info("Backup exported: " + ", ".join(f"{t}={len(data[t])}" for t in EXPORT_ORDER))
    return data


def dumps_backup(document: Dict) -> str:
    return json.dumps(document, ensure_ascii=False, indent=2)


def backup_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"backup_cabinet_medical_{today.isoformat()}.json"


def parse_backup(payload) -> Dict:
    """
    Validates the document structure before anything is written.

    Args:
        payload: JSON text, bytes, or an already decoded dict.

    Raises:
        BackupFormatError: Invalid JSON, not an object, or a collection that is
            not a list of objects.
    """
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise BackupFormatError(f"Le fichier n'est pas un texte UTF-8: {e}") from e
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise BackupFormatError(f"JSON invalide: {e.msg} (ligne {e.lineno})") from e

    if not isinstance(payload, dict):
        raise BackupFormatError("Le document de sauvegarde doit être un objet JSON")

    for table in RESTORE_ORDER:
        if table not in payload or payload[table] is None:
            continue
        records = payload[table]
        if not isinstance(records, list):
            raise BackupFormatError(f"'{table}' doit être une liste")
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                raise BackupFormatError(f"'{table}'[{index}] n'est pas un objet")
    return payload


async def import_data(data_service, payload) -> Dict:
    """
    Replays every record of the backup through save (upsert).
    Records absent from the document are left untouched.

    Returns:
        dict: count of records written and skipped (invalid records).
    """
    document = parse_backup(payload)
    count = skipped = 0

    for table in RESTORE_ORDER:
        records = document.get(table) or []
        collection = data_service.collection(table)
        for record in records:
            try:
                await collection.save(record)
            except RecordValidationError as e:
                logger.warning(f"Skipping invalid {table} record {record.get('id')!r}: {e}")
                skipped += 1
                continue
            count += 1

    logger.info(f"Backup restored: {count} records written, {skipped} skipped")
    return {"count": count, "skipped": skipped}
