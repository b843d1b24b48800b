"""
api_client.py - Supabase (PostgREST) Remote Store

Async client used by the sync manager and coordinator to write queued
operations and to load movements/staff. Every call returns a
``(success, data)`` tuple; on failure ``data`` is the error message.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
import requests

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("SupabaseStore")

MOVEMENTS_TABLE = "goods_movements"
STAFF_TABLE = "staff"

MOVEMENTS_SELECT = (
    "*,"
    "sent_by_staff:staff!goods_movements_sent_by_fkey(name),"
    "received_by_staff:staff!goods_movements_received_by_fkey(name)"
)


class RemoteStoreError(Exception):
    """The remote store rejected a request or answered with an error status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class SupabaseStore:
    """Thin async wrapper over the Supabase REST endpoint for one project."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 30,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip('/')
        self.rest_url = f"{self.base_url}/rest/v1"
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self.headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        logger.info(f"SupabaseStore initialized for {self.rest_url}")

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self.headers, timeout=self.timeout)
        return self._session

    async def _request(self, method: str, table: str, params: Optional[Dict] = None,
                       json: Any = None, prefer: Optional[str] = None) -> Any:
        headers = {"Prefer": prefer} if prefer else None
        session = self._get_session()

        async with session.request(
            method,
            f"{self.rest_url}/{table}",
            params=params,
            json=json,
            headers=headers,
        ) as response:
            if response.status >= 400:
                error_text = await response.text()
                raise RemoteStoreError(f"HTTP {response.status}: {error_text}", response.status)
            if response.status == 204:
                return None
            return await response.json()

    async def insert(self, table: str, record: Dict) -> Tuple[bool, Any]:
        """Insert one row and return it as stored remotely."""
        try:
            rows = await self._request("POST", table, json=[record], prefer="return=representation")
            return True, (rows[0] if rows else record)
        except (RemoteStoreError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Insert into {table} failed: {e}")
            return False, str(e) or type(e).__name__

    async def update(self, table: str, row_id: str, patch: Dict) -> Tuple[bool, Any]:
        """Patch the row whose ``id`` equals row_id."""
        try:
            await self._request(
                "PATCH", table,
                params={"id": f"eq.{row_id}"},
                json=patch,
                prefer="return=minimal",
            )
            return True, None
        except (RemoteStoreError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Update of {table}/{row_id} failed: {e}")
            return False, str(e) or type(e).__name__

    async def select_all(self, table: str, select: str = "*",
                         order: Optional[str] = None) -> Tuple[bool, Any]:
        """
        Fetch every row of a table.

        Args:
            table: Table name
            select: PostgREST select expression (may embed joins)
            order: e.g. "created_at.desc"
        """
        params = {"select": select}
        if order:
            params["order"] = order
        try:
            rows = await self._request("GET", table, params=params)
            return True, rows or []
        except (RemoteStoreError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Select from {table} failed: {e}")
            return False, str(e) or type(e).__name__

    async def ping(self) -> bool:
        """Cheap reachability check used by the connectivity probe loop."""
        try:
            await self._request("GET", STAFF_TABLE, params={"select": "id", "limit": "1"})
            return True
        except (RemoteStoreError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Ping failed: {e}")
            return False

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()


def verify_credentials(base_url: str, api_key: str, timeout: float = 15) -> Tuple[bool, Optional[List], Optional[str]]:
    """
    Blocking credential check used by the setup wizard before saving them.

    Returns:
        (success, data, error_msg)
    """
    endpoint = f"{base_url.rstrip('/')}/rest/v1/{STAFF_TABLE}"
    headers = {
        "apikey": api_key,
        "Authorization": f"Bearer {api_key}",
        "Accept": "application/json",
    }

    try:
        print(f"[*] Verifying credentials with {endpoint}...")
        response = requests.get(
            endpoint,
            params={"select": "id,name", "limit": 1},
            headers=headers,
            timeout=timeout,
        )
        response.raise_for_status()
        return True, response.json(), None
    except requests.exceptions.HTTPError as e:
        return False, None, f"Server rejected credentials: {e}"
    except requests.exceptions.RequestException as e:
        print(f"[!] Network Error during verification: {str(e)}")
        return False, None, str(e)
