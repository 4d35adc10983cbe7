"""
Supabase client module for database operations and the realtime change feed.
Table reads/writes go through PostgREST over httpx; change events come from
the supabase async realtime client.
"""
import asyncio
import logging
from typing import Optional, List, Dict, Any, Callable, Iterable, Set, Tuple

import httpx
from supabase import acreate_client, AsyncClient

from app.config import get_settings, Settings
from app.models import (
    ChangeEvent,
    ChangeEventType,
    Document,
    Notification,
    Table,
)
from app.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], Any]


class DatabaseError(Exception):
    """Relational store request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def parse_change_payload(payload: Dict[str, Any], table: Optional[str] = None) -> Optional[ChangeEvent]:
    """
    Normalise a realtime payload into a ChangeEvent.

    Accepts the realtime server shape ({"data": {"type", "table", "record",
    "old_record"}}), the supabase-js shape ({"eventType", "new", "old"})
    and a flat {"eventType", "table", "record"} shape.
    Returns None for payloads that cannot be interpreted.
    """
    if not isinstance(payload, dict):
        return None

    body = payload.get("data") if isinstance(payload.get("data"), dict) else payload

    raw_type = body.get("type") or body.get("eventType") or body.get("event_type")
    table_name = body.get("table") or table
    if not raw_type or not table_name:
        return None

    try:
        event_type = ChangeEventType(str(raw_type).lower())
        table_enum = Table(table_name)
    except ValueError:
        logger.debug(f"Ignoring change payload type={raw_type} table={table_name}")
        return None

    if event_type == ChangeEventType.DELETE:
        record = body.get("old_record") or body.get("old") or body.get("record") or {}
    else:
        record = body.get("record") or body.get("new") or {}

    if not record.get("id"):
        return None

    return ChangeEvent(event_type=event_type, table=table_enum, record=record)


class SupabaseClient:
    """Supabase client wrapper using the anon key (RLS applies)."""

    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self._http_client = http_client or httpx.AsyncClient(
            base_url=f"{self.settings.supabase_url.rstrip('/')}/rest/v1",
            headers={
                "apikey": self.settings.supabase_anon_key,
                "Authorization": f"Bearer {self.settings.supabase_anon_key}",
                "Content-Type": "application/json",
            },
            timeout=self.settings.http_timeout_seconds,
        )
        self._realtime: Optional[AsyncClient] = None
        self._channel = None
        # Strong references to scheduled async callbacks until they finish
        self._tasks: Set[asyncio.Task] = set()

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self._http_client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{method} {url} failed: {e}")
            raise DatabaseError(f"Database request failed: {e}")

        if response.status_code >= 400:
            logger.warning(f"{method} {url}: status={response.status_code} body='{response.text[:200]}'")
            raise DatabaseError(
                f"Database request failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        return response.json()

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[Tuple[str, bool]] = ("created_at", True),
    ) -> List[Dict[str, Any]]:
        """
        Select rows. filters map column -> value (eq) or (op, value).
        order is (column, descending).
        """
        params: Dict[str, str] = {"select": "*"}
        for k, v in (filters or {}).items():
            if isinstance(v, tuple) and len(v) == 2:
                op, val = v
                params[k] = f"{op}.{val}"
            else:
                params[k] = f"eq.{v}"
        if order:
            column, descending = order
            params["order"] = f"{column}.{'desc' if descending else 'asc'}"

        result = await self._request("GET", f"/{table}", params=params)
        return result or []

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._request(
            "POST",
            f"/{table}",
            json=record,
            headers={"Prefer": "return=representation"},
        )
        if isinstance(result, list):
            return result[0] if result else dict(record)
        return result or dict(record)

    async def update(self, table: str, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._request(
            "PATCH",
            f"/{table}",
            params={"id": f"eq.{record_id}"},
            json=patch,
            headers={"Prefer": "return=representation"},
        )
        if isinstance(result, list):
            if not result:
                raise DatabaseError(f"{table} row not found: {record_id}", status_code=404)
            return result[0]
        return result or {}

    # Document operations
    async def list_documents(self) -> List[Document]:
        return [Document(**row) for row in await self.select(Table.DOCUMENTS.value)]

    async def insert_document(self, document: Document) -> Document:
        return Document(**await self.insert(Table.DOCUMENTS.value, document.to_record()))

    async def update_document(self, document_id: str, updates: Dict[str, Any]) -> Document:
        updates = dict(updates)
        updates["updated_at"] = utc_now().isoformat()
        return Document(**await self.update(Table.DOCUMENTS.value, document_id, updates))

    # Notification operations
    async def list_notifications(self) -> List[Notification]:
        return [Notification(**row) for row in await self.select(Table.NOTIFICATIONS.value)]

    async def insert_notification(self, notification: Notification) -> Notification:
        return Notification(**await self.insert(Table.NOTIFICATIONS.value, notification.to_record()))

    async def update_notification(self, notification_id: str, updates: Dict[str, Any]) -> Notification:
        updates = dict(updates)
        updates["updated_at"] = utc_now().isoformat()
        return Notification(**await self.update(Table.NOTIFICATIONS.value, notification_id, updates))

    # Change feed
    async def subscribe(
        self,
        callback: ChangeCallback,
        tables: Iterable[str] = (Table.DOCUMENTS.value, Table.NOTIFICATIONS.value),
    ) -> None:
        """
        Subscribe to insert/update/delete events on the given tables.
        The callback receives normalised ChangeEvents on the running loop.
        """
        if self._realtime is None:
            self._realtime = await acreate_client(
                self.settings.supabase_url,
                self.settings.supabase_anon_key,
            )

        channel = self._realtime.channel("docsign-changes")
        for table in tables:
            channel = channel.on_postgres_changes(
                "*",
                schema="public",
                table=table,
                callback=self._make_handler(callback, table),
            )
        await channel.subscribe()
        self._channel = channel
        logger.info(f"Subscribed to change feed for {', '.join(tables)}")

    def _make_handler(self, callback: ChangeCallback, table: str) -> Callable[[Dict[str, Any]], None]:
        def handler(payload: Dict[str, Any]) -> None:
            event = parse_change_payload(payload, table)
            if event is None:
                return
            result = callback(event)
            if asyncio.iscoroutine(result):
                task = asyncio.get_running_loop().create_task(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)
        return handler

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Change feed callback failed: {error!r}", exc_info=error)

    async def unsubscribe(self) -> None:
        if self._realtime is not None and self._channel is not None:
            await self._realtime.remove_channel(self._channel)
            logger.info("Unsubscribed from change feed")
        self._channel = None
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

    async def close(self) -> None:
        await self.unsubscribe()
        await self._http_client.aclose()
