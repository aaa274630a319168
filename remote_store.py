"""
remote_store.py
---------------
Supabase REST (PostgREST) client for the clinic tables.
Every call returns a RemoteResult instead of raising, so callers branch on
result.ok to decide whether to fall back to the local cache.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

import requests

from config import load_clean_config, sanitize_key, sanitize_url, is_url_valid, is_key_valid

logger = logging.getLogger(__name__)

SCHEMA_MISMATCH_CODES = ("42703", "PGRST204")
PERMISSION_DENIED_CODE = "42501"


@dataclass
class RemoteError:
    code: str
    message: str
    details: Optional[str] = None
    hint: Optional[str] = None
    status: Optional[int] = None

    @property
    def is_schema_mismatch(self) -> bool:
        return self.code in SCHEMA_MISMATCH_CODES

    def describe(self) -> str:
        """User facing explanation of the failure."""
        if self.is_schema_mismatch:
            return ("STRUCTURE SQL ABSENTE : Une ou plusieurs colonnes manquent dans la table distante. "
                    "Exécutez le script de migration dans votre Dashboard Supabase.")
        if self.code == PERMISSION_DENIED_CODE:
            return ("PERMISSION REFUSÉE : Vérifiez les politiques RLS de la table dans Supabase. "
                    "Assurez-vous que l'accès anonyme ou authentifié est autorisé.")
        text = f"[Supabase {self.code}] {self.message}"
        if self.details:
            text += f" | Détails: {self.details}"
        if self.hint:
            text += f" | Aide: {self.hint}"
        return text


@dataclass
class RemoteResult:
    ok: bool
    data: Any = None
    error: Optional[RemoteError] = None

    @classmethod
    def success(cls, data=None):
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: RemoteError):
        return cls(ok=False, error=error)


def _error_from_response(response) -> RemoteError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    return RemoteError(
        code=str(body.get("code") or response.status_code),
        message=body.get("message") or (response.text or "")[:200] or "Erreur technique sans message",
        details=body.get("details"),
        hint=body.get("hint"),
        status=response.status_code,
    )


def _quote(value) -> str:
    text = str(value).replace('"', '\\"')
    return f'"{text}"'


class RemoteStoreClient:
    """Thin wrapper around the Supabase REST endpoint for one project."""

    def __init__(self, url: str, key: str, session=None, timeout: float = 15.0):
        if not is_url_valid(url):
            raise ValueError(f"Invalid Supabase URL: {url!r}")
        if not is_key_valid(key):
            raise ValueError("Invalid Supabase anon key")
        self.base_url = url.rstrip("/") + "/rest/v1"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }

    def _request(self, method, table, params=None, payload=None, prefer=None) -> RemoteResult:
        headers = dict(self.headers)
        if prefer:
            headers["Prefer"] = prefer
        url = f"{self.base_url}/{table}"
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                data=json.dumps(payload) if payload is not None else None,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Network error on {method} {table}: {e}")
            return RemoteResult.failure(RemoteError(code="network", message=str(e)))

        if response.status_code >= 400:
            error = _error_from_response(response)
            logger.error(f"Supabase {method} {table} failed: {error.describe()}")
            return RemoteResult.failure(error)

        if not response.content:
            return RemoteResult.success(None)
        try:
            return RemoteResult.success(response.json())
        except ValueError as e:
            logger.error(f"Unreadable Supabase response for {table}: {e}")
            return RemoteResult.failure(RemoteError(code="decode", message=str(e), status=response.status_code))

    def select_all(self, table: str, order_by: Optional[str] = None, ascending: bool = True) -> RemoteResult:
        params = {"select": "*"}
        if order_by:
            params["order"] = f"{order_by}.{'asc' if ascending else 'desc'}"
        result = self._request("GET", table, params=params)
        if result.ok and not isinstance(result.data, list):
            return RemoteResult.failure(RemoteError(code="schema", message=f"Expected a list of rows for {table}"))
        return result

    def upsert(self, table: str, record: dict) -> RemoteResult:
        clean = {k: v for k, v in record.items() if v is not None}
        return self._request(
            "POST", table, payload=clean,
            prefer="resolution=merge-duplicates,return=minimal",
        )

    def delete_by_id(self, table: str, record_id: str) -> RemoteResult:
        return self._request("DELETE", table, params={"id": f"eq.{record_id}"})

    def delete_by_ids(self, table: str, ids: List[str]) -> RemoteResult:
        id_list = ",".join(_quote(i) for i in ids)
        return self._request("DELETE", table, params={"id": f"in.({id_list})"})


_client: Optional[RemoteStoreClient] = None
_client_initialized = False


def get_remote_store(config=None) -> Optional[RemoteStoreClient]:
    """
    Returns the shared client, building it the first time credentials are valid.
    Construction failures leave the application in local-only mode.
    """
    global _client, _client_initialized
    if _client_initialized:
        return _client

    if config is None:
        config = load_clean_config()
    url = sanitize_url(config.get("SUPABASE_URL"))
    key = sanitize_key(config.get("SUPABASE_ANON_KEY"))
    if not (is_url_valid(url) and is_key_valid(key)):
        logger.info("Supabase not configured, running in local-only mode")
        return None

    try:
        _client = RemoteStoreClient(url, key)
        logger.info("✅ Supabase configured successfully")
    except Exception as e:
        logger.error(f"❌ Failed to initialize Supabase client: {e}", exc_info=True)
        _client = None
    _client_initialized = True
    return _client


def reset_remote_store():
    """Forget the shared client (used when configuration changes)."""
    global _client, _client_initialized
    _client = None
    _client_initialized = False
