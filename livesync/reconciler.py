"""
Entity Reconciler
=================
Keeps an ordered, de-duplicated in-memory collection of one table in sync
with an initial bulk fetch plus the live change stream, scoped by a filter.

Ordering is most-recent-first: the fetch is sorted by ``created_at``
descending and live inserts are prepended. After live mutations the order
is a display order only, not the server's sort.
"""
from __future__ import annotations

from typing import Generic, Optional, TypeVar

from config.logging_config import logger
from livesync.backend import QuerySpec, RemoteBackend, SearchClause
from livesync.change_stream import ChangeStreamClient, ConnectionStatus, Subscription
from livesync.events import ChangeEvent, Deleted, EventType, Inserted, Updated
from livesync.models import Entity, EntityFilter, Grade, GradeFilter, Student, StudentFilter
from livesync.notifications import Notification, NotificationKind, Notifier

E = TypeVar("E", bound=Entity)


class EntityReconciler(Generic[E]):
    def __init__(
        self,
        backend:    RemoteBackend,
        stream:     ChangeStreamClient,
        collection: str,
        model:      type[E],
        *,
        filter:     Optional[EntityFilter] = None,
        notifier:   Optional[Notifier] = None,
    ) -> None:
        self._backend    = backend
        self._stream     = stream
        self.collection  = collection
        self.model       = model
        self._filter     = filter
        self._notifier   = notifier

        self._items: list[E] = []
        self._handle: Subscription | None = None
        self._generation = 0
        self._closed     = False

        self.loading: bool = False
        self.error: str | None = None

    # ── Read side ─────────────────────────────────────────────────────────────
    @property
    def items(self) -> list[E]:
        return list(self._items)

    @property
    def filter(self) -> Optional[EntityFilter]:
        return self._filter

    @property
    def status(self) -> ConnectionStatus:
        return self._handle.status if self._handle else ConnectionStatus()

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, entity_id: str) -> E | None:
        for item in self._items:
            if item.id == entity_id:
                return item
        return None

    def matches(self, entity: E) -> bool:
        return self._filter is None or self._filter.matches(entity)

    # ── Lifecycle ─────────────────────────────────────────────────────────────
    async def start(self) -> None:
        """Subscribe to every change on the table, then load the first page of truth."""
        # No server-side filter: rows that stop matching must still be seen.
        self._handle = await self._stream.open(
            self.collection, self.apply_event, event_mask=EventType.ALL
        )
        await self.fetch_all()

    async def close(self) -> None:
        self._closed = True
        self._generation += 1
        if self._handle is not None:
            await self._stream.close(self._handle)

    async def reconnect(self) -> None:
        """Fresh subscription plus a resync, since events may have been missed."""
        if self._handle is None or self._closed:
            return
        await self._stream.reconnect(self._handle)
        await self.fetch_all()

    async def set_filter(self, new_filter: Optional[EntityFilter]) -> None:
        self._filter = new_filter
        await self.fetch_all()

    # ── Fetch ─────────────────────────────────────────────────────────────────
    def _query_spec(self, flt: Optional[EntityFilter]) -> QuerySpec:
        equals: dict = {}
        search = None
        if flt is not None:
            equals = flt.equalities()
            if flt.search_term:
                search = SearchClause(term=flt.search_term, fields=flt.search_fields)
        return QuerySpec(equals=equals, search=search, order_by="created_at", descending=True)

    async def fetch_all(self, filter: Optional[EntityFilter] = None) -> None:
        """
        Replace the collection with a fresh server-side filtered query.

        On failure the previous collection is kept and `error` is set. A
        response that arrives after `close()` or after a newer fetch has
        started is dropped without touching any state.
        """
        if self._closed:
            return
        if filter is not None:
            self._filter = filter

        self._generation += 1
        generation = self._generation
        self.loading = True

        try:
            rows = await self._backend.query(self.collection, self._query_spec(self._filter))
            fetched = [self.model.model_validate(row) for row in rows]
        except Exception as exc:
            if self._is_stale(generation):
                return
            logger.error(f"Error fetching {self.collection}: {exc}")
            self.error   = str(exc) or f"Failed to fetch {self.collection}"
            self.loading = False
            return

        if self._is_stale(generation):
            logger.debug(f"Discarding stale {self.collection} fetch (generation {generation})")
            return

        seen: set[str] = set()
        unique: list[E] = []
        for item in fetched:
            if item.id not in seen:
                seen.add(item.id)
                unique.append(item)

        self._items  = unique
        self.error   = None
        self.loading = False
        logger.info(f"Fetched {len(unique):,} {self.collection} rows")

    def _is_stale(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    # ── Reconciliation ────────────────────────────────────────────────────────
    def apply_event(self, event: ChangeEvent) -> None:
        """Apply one change event to the collection. Idempotent, never suspends."""
        if self._closed:
            return

        if isinstance(event, Inserted):
            self._apply_insert(self.model.model_validate(event.record))
        elif isinstance(event, Updated):
            self._apply_update(self.model.model_validate(event.new))
        elif isinstance(event, Deleted):
            self._apply_delete(event.id)
        else:
            raise TypeError(f"Unhandled change event: {event!r}")

    def _apply_insert(self, entity: E) -> None:
        if not self.matches(entity):
            return
        if self._index_of(entity.id) is not None:
            return
        self._items.insert(0, entity)
        logger.debug(f"✨ New {self.model.__name__.lower()} added: {entity.display_name}")
        self._notify(NotificationKind.ENTITY_ADDED, entity.id, entity.display_name)

    def _apply_update(self, entity: E) -> None:
        index = self._index_of(entity.id)

        if not self.matches(entity):
            if index is not None:
                del self._items[index]
                logger.debug(f"{self.model.__name__} {entity.id} left the {self.collection} view")
                self._notify(NotificationKind.ENTITY_UPDATED, entity.id, entity.display_name)
            return

        if index is None:
            self._items.insert(0, entity)
            self._notify(NotificationKind.ENTITY_ADDED, entity.id, entity.display_name)
            return

        self._items[index] = entity
        logger.debug(f"🔄 {self.model.__name__} updated: {entity.display_name}")
        self._notify(NotificationKind.ENTITY_UPDATED, entity.id, entity.display_name)

    def _apply_delete(self, entity_id: str) -> None:
        index = self._index_of(entity_id)
        if index is None:
            return
        removed = self._items.pop(index)
        logger.debug(f"🗑️ {self.model.__name__} deleted: {entity_id}")
        self._notify(NotificationKind.ENTITY_DELETED, entity_id, removed.display_name)

    def _index_of(self, entity_id: str) -> int | None:
        for index, item in enumerate(self._items):
            if item.id == entity_id:
                return index
        return None

    def _notify(self, kind: NotificationKind, entity_id: str, display_name: str) -> None:
        if self._notifier is not None:
            self._notifier.emit(Notification(kind, self.collection, entity_id, display_name))


# ── Concrete reconcilers ───────────────────────────────────────────────────────
def student_reconciler(
    backend:  RemoteBackend,
    stream:   ChangeStreamClient,
    filter:   Optional[StudentFilter] = None,
    notifier: Optional[Notifier] = None,
) -> EntityReconciler[Student]:
    return EntityReconciler(backend, stream, "students", Student, filter=filter, notifier=notifier)


def grade_reconciler(
    backend:  RemoteBackend,
    stream:   ChangeStreamClient,
    filter:   Optional[GradeFilter] = None,
    notifier: Optional[Notifier] = None,
) -> EntityReconciler[Grade]:
    return EntityReconciler(backend, stream, "grades", Grade, filter=filter, notifier=notifier)
