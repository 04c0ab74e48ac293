# courier-dispatch/courier_dispatch/rest.py
"""
PostgREST-style hosted data store.

Talks to the `delivery_requests`, `drivers` and `tracking_updates` tables
over HTTP. Each call is independent; there are no transactions, so this
adapter does not advertise conditional assignment.

Blocking `requests` calls are moved off the event loop with
`asyncio.to_thread`, and every call carries a timeout.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from . import config
from .datastore import DataStore, driver_assigned_update
from .errors import DataStoreError
from .models import DRIVER_ACTIVE, DeliveryRequest, DeliveryStatus, Driver

logger = logging.getLogger(__name__)

DELIVERY_SELECT = "*,tracking_updates(*)"


class RestDataStore(DataStore):
    """
    Data store backed by a PostgREST endpoint (e.g. a Supabase project).

    Args:
        base_url: Project URL; defaults to DATASTORE_URL
        api_key: API key; defaults to DATASTORE_API_KEY
        timeout: Per-request timeout in seconds
        session: Optional requests.Session (or compatible) to reuse
    """

    supports_conditional_assign = False

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        base_url = base_url or config.DATASTORE_URL
        if not base_url:
            raise ValueError("No data store URL configured (set DATASTORE_URL)")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key if api_key is not None else config.DATASTORE_API_KEY
        self.timeout = timeout if timeout is not None else config.DATASTORE_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    @property
    def headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Perform one HTTP call against a table.

        Raises:
            DataStoreError: On timeout, connection error, HTTP error or bad JSON
        """
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=payload,
                headers=self.headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            if not response.content:
                return []
            data = response.json()
        except requests.exceptions.Timeout as e:
            logger.warning(f"{method} {table} timed out after {self.timeout}s")
            raise DataStoreError(f"{method} {table} timed out") from e
        except requests.exceptions.RequestException as e:
            logger.warning(f"{method} {table} failed: {e}")
            raise DataStoreError(f"{method} {table} failed: {e}") from e
        except ValueError as e:
            logger.warning(f"{method} {table} returned invalid JSON: {e}")
            raise DataStoreError(f"{method} {table} returned invalid JSON") from e

        if isinstance(data, dict):
            return [data]
        return data

    async def _call(self, *args, **kwargs) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._request, *args, **kwargs)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_pending_deliveries(self) -> List[DeliveryRequest]:
        rows = await self._call("GET", "delivery_requests", params={
            "select": DELIVERY_SELECT,
            "status": f"eq.{DeliveryStatus.PENDING.value}",
            "order": "created_at.asc",
        })
        return [_delivery_from_row(row) for row in rows]

    async def list_eligible_drivers(self) -> List[Driver]:
        rows = await self._call("GET", "drivers", params={
            "select": "*",
            "status": f"eq.{DRIVER_ACTIVE}",
            "current_delivery": "is.null",
        })
        return [Driver.from_row(row) for row in rows]

    async def list_active_deliveries(self) -> List[DeliveryRequest]:
        rows = await self._call("GET", "delivery_requests", params={
            "select": DELIVERY_SELECT,
            "status": f"eq.{DeliveryStatus.IN_PROGRESS.value}",
            "order": "created_at.asc",
        })
        return [_delivery_from_row(row) for row in rows]

    async def get_delivery(self, delivery_id: str) -> Optional[DeliveryRequest]:
        rows = await self._call("GET", "delivery_requests", params={
            "select": DELIVERY_SELECT,
            "id": f"eq.{delivery_id}",
        })
        return _delivery_from_row(rows[0]) if rows else None

    async def get_driver(self, driver_id: str) -> Optional[Driver]:
        rows = await self._call("GET", "drivers", params={
            "select": "*",
            "id": f"eq.{driver_id}",
        })
        return Driver.from_row(rows[0]) if rows else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def update_delivery_status(self, delivery_id: str, status: DeliveryStatus) -> None:
        await self._call(
            "PATCH", "delivery_requests",
            params={"id": f"eq.{delivery_id}"},
            payload={"status": DeliveryStatus(status).value},
        )

    async def assign_driver(self, driver_id: str, delivery_id: str) -> None:
        """Three sequential writes: driver link, request link, tracking entry."""
        await self._call(
            "PATCH", "drivers",
            params={"id": f"eq.{driver_id}"},
            payload={"current_delivery": delivery_id},
        )
        await self._call(
            "PATCH", "delivery_requests",
            params={"id": f"eq.{delivery_id}"},
            payload={"assigned_driver": driver_id, "status": DeliveryStatus.IN_PROGRESS.value},
        )
        update = driver_assigned_update()
        await self._call(
            "POST", "tracking_updates",
            payload={"request_id": delivery_id, **update.to_row()},
        )


def _delivery_from_row(row: Dict[str, Any]) -> DeliveryRequest:
    """Map a delivery row, ordering embedded tracking updates by timestamp."""
    updates = sorted(row.get("tracking_updates") or [], key=lambda u: u.get("timestamp") or "")
    return DeliveryRequest.from_row({**row, "tracking_updates": updates})
