"""
database.py
-----------
Data access layer for the clinic collections.
Reads try the remote store first and mirror successful results into the local
cache; writes always land in the local cache first and are then pushed to the
remote store on a best-effort basis.
"""

import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional

from config import load_clean_config
from local_cache import LocalCacheStore, LocalStorageError
from models import VALIDATORS
from remote_store import get_remote_store
from seed_data import default_seed

logger = logging.getLogger(__name__)

CACHE_PREFIX = "clinic_"

# table name -> (order column, ascending)
COLLECTION_ORDER = {
    "patients": ("lastName", True),
    "appointments": ("date", True),
    "invoices": ("date", False),
    "consultations": ("date", False),
    "expenses": ("date", False),
    "users": (None, True),
}

PATIENT_CORE_FIELDS = (
    "id", "firstName", "lastName", "birthDate", "phone", "email", "cin",
    "insuranceType", "insuranceNumber", "address", "medicalHistory", "allergies", "createdAt",
)

_UNSET = object()


class Collection:
    """One entity collection backed by the local cache and, optionally, the remote store."""

    def __init__(self, table: str, cache: LocalCacheStore, remote=None,
                 seed_provider: Callable[[str], List[Dict]] = default_seed,
                 validator: Optional[Callable[[Dict], Dict]] = None):
        self.table = table
        self.cache_key = CACHE_PREFIX + table
        self.cache = cache
        self.remote = remote
        self.seed_provider = seed_provider
        self.validator = validator
        self.order_by, self.ascending = COLLECTION_ORDER.get(table, (None, True))

    @property
    def remote_configured(self) -> bool:
        return self.remote is not None

    def _read_cache(self) -> List[Dict]:
        stored = self.cache.get(self.cache_key)
        if stored is None:
            return list(self.seed_provider(self.table))
        if not isinstance(stored, list):
            logger.warning(f"Cache entry {self.cache_key} is not a list, using seed data")
            return list(self.seed_provider(self.table))
        return stored

    async def list(self) -> List[Dict]:
        """
        Returns every record of the collection.

        The remote result (sorted by the collection's canonical order) replaces the
        cached snapshot; on any remote failure the cached snapshot, or the seed
        data when nothing was ever cached, is returned as stored.
        """
        if self.remote_configured:
            result = await asyncio.to_thread(self.remote.select_all, self.table, self.order_by, self.ascending)
            if result.ok:
                try:
                    self.cache.set(self.cache_key, result.data)
                except LocalStorageError as e:
                    logger.error(f"Could not mirror {self.table} into local cache: {e}")
                return result.data
            logger.error(f"Cloud read failed for {self.table}, using local cache: {result.error.describe()}")
        return self._read_cache()

    async def get(self, record_id: str) -> Optional[Dict]:
        for record in await self.list():
            if record.get("id") == record_id:
                return record
        return None

    async def save(self, record: Dict) -> None:
        """
        Upserts a record by id.

        Raises:
            RecordValidationError: The record breaks an entity invariant.
            LocalStorageError: The local cache could not be written.
        """
        if self.validator:
            record = self.validator(record)

        records = self._read_cache()
        for index, existing in enumerate(records):
            if existing.get("id") == record["id"]:
                records[index] = record
                break
        else:
            records.append(record)
        self.cache.set(self.cache_key, records)

        if self.remote_configured:
            await self._push(record)

    async def _push(self, record: Dict) -> None:
        result = await asyncio.to_thread(self.remote.upsert, self.table, record)
        if result.ok:
            logger.info(f"Synced {self.table} record {record['id']}")
            return
        if self.table == "patients" and result.error.is_schema_mismatch:
            logger.warning("Schema mismatch detected on patients, retrying with core columns only")
            core = {k: v for k, v in record.items() if k in PATIENT_CORE_FIELDS}
            retry = await asyncio.to_thread(self.remote.upsert, self.table, core)
            if not retry.ok:
                logger.error(f"Core save fallback failed for patient {record['id']}: {retry.error.describe()}")
            logger.warning(f"Patient {record['id']} synced without extended columns: {result.error.describe()}")
            return
        logger.error(f"Cloud save failed for {self.table} record {record['id']}: {result.error.describe()}")

    async def delete(self, record_id: str) -> None:
        records = self._read_cache()
        self.cache.set(self.cache_key, [r for r in records if r.get("id") != record_id])

        if self.remote_configured:
            result = await asyncio.to_thread(self.remote.delete_by_id, self.table, record_id)
            if not result.ok:
                logger.error(f"Cloud delete failed for {self.table} record {record_id}: {result.error.describe()}")

    async def delete_bulk(self, record_ids: Iterable[str]) -> None:
        ids = list(dict.fromkeys(record_ids))
        if not ids:
            return
        id_set = set(ids)
        records = self._read_cache()
        self.cache.set(self.cache_key, [r for r in records if r.get("id") not in id_set])

        if self.remote_configured:
            result = await asyncio.to_thread(self.remote.delete_by_ids, self.table, ids)
            if not result.ok:
                logger.error(f"Cloud bulk delete failed for {self.table} ({len(ids)} ids): {result.error.describe()}")


class DataService:
    """Entry point the HTTP layer and the import/backup services talk to."""

    TABLES = ("patients", "appointments", "invoices", "consultations", "expenses", "users")

    def __init__(self, cache: Optional[LocalCacheStore] = None, remote=_UNSET,
                 seed_provider: Callable[[str], List[Dict]] = default_seed, config=None):
        if cache is None or remote is _UNSET:
            config = config or load_clean_config()
        if cache is None:
            cache = LocalCacheStore(config["LOCAL_CACHE_DIR"])
        if remote is _UNSET:
            remote = get_remote_store(config)
        self.cache = cache
        self.remote = remote
        self.collections = {
            table: Collection(table, cache, remote, seed_provider, VALIDATORS.get(table))
            for table in self.TABLES
        }

    @property
    def remote_configured(self) -> bool:
        return self.remote is not None

    def collection(self, name: str) -> Collection:
        try:
            return self.collections[name]
        except KeyError:
            raise KeyError(f"Unknown collection: {name}") from None

    @property
    def patients(self) -> Collection:
        return self.collections["patients"]

    @property
    def appointments(self) -> Collection:
        return self.collections["appointments"]

    @property
    def invoices(self) -> Collection:
        return self.collections["invoices"]

    @property
    def consultations(self) -> Collection:
        return self.collections["consultations"]

    @property
    def expenses(self) -> Collection:
        return self.collections["expenses"]

    @property
    def users(self) -> Collection:
        return self.collections["users"]
