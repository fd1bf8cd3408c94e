"""
Remote Backend Port
===================
The only surface through which the sync core talks to the hosted
database: bulk queries, row mutations and change subscriptions.

`SupabaseBackend` is the production adapter (PostgREST + Realtime).
Tests substitute an in-memory implementation of the same protocol.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Protocol

from postgrest.exceptions import APIError
from supabase import AsyncClient

from config.logging_config import logger
from livesync.events import EventType

MessageCallback = Callable[[dict[str, Any]], None]
StatusCallback  = Callable[["SubscribeStatus", Optional[str]], None]


class RemoteServiceError(Exception):
    """A query, mutation or subscription request rejected by the remote service."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code    = code


class SubscribeStatus(str, Enum):
    SUBSCRIBED    = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT     = "TIMED_OUT"
    CLOSED        = "CLOSED"

    @classmethod
    def from_remote(cls, state: Any) -> "SubscribeStatus":
        return cls(str(getattr(state, "value", state)).upper())


@dataclass(frozen=True)
class SearchClause:
    term:   str
    fields: tuple[str, ...]


@dataclass(frozen=True)
class QuerySpec:
    select:     str = "*"
    equals:     Mapping[str, Any] = field(default_factory=dict)
    search:     Optional[SearchClause] = None
    order_by:   Optional[str] = None
    descending: bool = False
    range:      Optional[tuple[int, int]] = None


class RemoteBackend(Protocol):
    async def query(self, collection: str, spec: QuerySpec) -> list[dict[str, Any]]: ...

    async def insert(self, collection: str, fields: Mapping[str, Any]) -> dict[str, Any]: ...

    async def update(
        self, collection: str, record_id: str, fields: Mapping[str, Any]
    ) -> dict[str, Any] | None: ...

    async def delete(self, collection: str, record_id: str) -> None: ...

    async def subscribe(
        self,
        collection:  str,
        *,
        event_mask:  EventType,
        filter_expr: str | None,
        on_message:  MessageCallback,
        on_status:   StatusCallback,
    ) -> Any: ...

    async def remove_channel(self, channel: Any) -> None: ...


# ── Supabase adapter ───────────────────────────────────────────────────────────
class SupabaseBackend:
    """RemoteBackend backed by an async Supabase client."""

    def __init__(self, client: AsyncClient, schema: str = "public") -> None:
        self._client = client
        self._schema = schema

    async def query(self, collection: str, spec: QuerySpec) -> list[dict[str, Any]]:
        request = self._client.table(collection).select(spec.select)
        for column, value in spec.equals.items():
            request = request.eq(column, value)
        if spec.search and spec.search.term:
            clauses = ",".join(f"{f}.ilike.%{spec.search.term}%" for f in spec.search.fields)
            request = request.or_(clauses)
        if spec.order_by:
            request = request.order(spec.order_by, desc=spec.descending)
        if spec.range:
            request = request.range(*spec.range)

        try:
            response = await request.execute()
        except APIError as exc:
            raise RemoteServiceError(exc.message or str(exc), exc.code) from exc
        return list(response.data or [])

    async def insert(self, collection: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.table(collection).insert(dict(fields)).execute()
        except APIError as exc:
            raise RemoteServiceError(exc.message or str(exc), exc.code) from exc
        if not response.data:
            raise RemoteServiceError(f"Insert into {collection} returned no row")
        return response.data[0]

    async def update(
        self, collection: str, record_id: str, fields: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        try:
            response = await (
                self._client.table(collection).update(dict(fields)).eq("id", record_id).execute()
            )
        except APIError as exc:
            raise RemoteServiceError(exc.message or str(exc), exc.code) from exc
        return response.data[0] if response.data else None

    async def delete(self, collection: str, record_id: str) -> None:
        try:
            await self._client.table(collection).delete().eq("id", record_id).execute()
        except APIError as exc:
            raise RemoteServiceError(exc.message or str(exc), exc.code) from exc

    async def subscribe(
        self,
        collection:  str,
        *,
        event_mask:  EventType,
        filter_expr: str | None,
        on_message:  MessageCallback,
        on_status:   StatusCallback,
    ) -> Any:
        channel = self._client.channel(f"realtime:{collection}:{uuid.uuid4().hex}")

        options: dict[str, Any] = {"schema": self._schema, "table": collection}
        if filter_expr:
            options["filter"] = filter_expr
        channel.on_postgres_changes(event_mask.value, callback=on_message, **options)

        def _status(state: Any, error: Exception | None = None) -> None:
            on_status(SubscribeStatus.from_remote(state), str(error) if error else None)

        await channel.subscribe(_status)
        logger.debug(f"Channel requested for {collection} (event={event_mask.value}, filter={filter_expr})")
        return channel

    async def remove_channel(self, channel: Any) -> None:
        await self._client.remove_channel(channel)


async def create_supabase_backend() -> SupabaseBackend:
    from config.settings import settings
    from config.supabase_config import get_supabase_client

    client = await get_supabase_client()
    return SupabaseBackend(client, schema=settings.supabase_schema)
