"""Process-shared batching caches for identify and state records.

Each cache merges records by subject: an incoming record joins the first
entry (insertion order) of the same model whose id set intersects its ids,
and the id sets are unioned. A record that bridges two existing entries only
joins the first one; the entries themselves are never merged together.

Flushing swaps the entry list for an empty one before anything is sent, so
calls arriving while a delivery is in flight land in the next batch.
"""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

from functionary.cache.scheduler import TrailingScheduler
from functionary.core.logs import DebugLog
from functionary.core.types import CacheEntry, Entity, IdentifyRecord, StateRecord
from functionary.surface.base import SurfaceDelegate
from functionary.transport.client import DeliveryResult

DEFAULT_FLUSH_DELAY_S = 10.0
DEFAULT_MAX_RECORDS = 300

RecordT = TypeVar("RecordT", IdentifyRecord, StateRecord)


class Sender(Protocol):
    """Delivery side of a transport, bound to a cache when its timer starts."""

    def send_identify(self, payload: dict[str, Any]) -> DeliveryResult: ...

    def send_states(self, batch: list[dict[str, Any]]) -> DeliveryResult: ...

    async def asend_identify(self, payload: dict[str, Any]) -> DeliveryResult: ...

    async def asend_states(self, batch: list[dict[str, Any]]) -> DeliveryResult: ...


class BatchingCache(ABC, Generic[RecordT]):
    """Append-merge cache with a trailing flush and a record cap."""

    kind: str = ""

    def __init__(
        self,
        *,
        delay_s: float = DEFAULT_FLUSH_DELAY_S,
        max_records: int = DEFAULT_MAX_RECORDS,
        log: DebugLog | None = None,
    ) -> None:
        self.max_records = max_records
        self._log = log or DebugLog()
        self._lock = threading.RLock()
        self._entries: list[CacheEntry] = []
        self._record_count = 0
        self._sender: Sender | None = None
        self._scheduler = TrailingScheduler(delay_s, self._flush_now)
        self._in_flight: set[asyncio.Task[None]] = set()
        # batches handed to a task but not yet delivered, keyed by ticket
        self._detached: dict[int, tuple[Sender, list[CacheEntry]]] = {}
        self._tickets = 0
        self.last_results: list[DeliveryResult] = []

    @property
    def scheduler(self) -> TrailingScheduler:
        return self._scheduler

    @property
    def entries(self) -> list[CacheEntry]:
        with self._lock:
            return list(self._entries)

    @property
    def record_count(self) -> int:
        with self._lock:
            return self._record_count

    def cache_or_send(
        self,
        record: RecordT,
        entity: Entity,
        *,
        sender: Sender,
        surface: SurfaceDelegate,
        force: bool = False,
    ) -> None:
        """Merge ``record`` under ``entity`` and arrange for it to be flushed."""
        ids = entity.str_ids()
        with self._lock:
            entry = self._find(entity.model, ids)
            if entry is None:
                entry = CacheEntry(model=entity.model, ids=list(ids))
                self._entries.append(entry)
            else:
                entry.merge_ids(ids)
            self._absorb(entry, record)
            self._record_count += 1
            flush_now = force or self._record_count >= self.max_records
            if not self._scheduler.pending:
                # the facade that opens a batch owns its delivery
                self._sender = sender
                surface.on_exit(self.flush_sync)
        self._scheduler.schedule()
        if flush_now:
            self.flush()

    def flush(self) -> None:
        """Send everything cached so far and cancel the pending timer."""
        self._scheduler.flush()

    def flush_sync(self) -> None:
        """Deliver the cache and every undelivered batch on the calling thread.

        Registered as the exit hook; it never hands work to the event loop.
        """
        self._scheduler.cancel_pending()
        with self._lock:
            batch, self._entries = self._entries, []
            self._record_count = 0
            sender = self._sender
            detached = list(self._detached.values())
            self._detached.clear()
        for detached_sender, detached_batch in detached:
            self._deliver(detached_sender, detached_batch)
        if batch and sender is not None:
            self._deliver(sender, batch)

    async def drain(self) -> None:
        """Wait for deliveries started from inside the running event loop."""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def _find(self, model: str, ids: list[str]) -> CacheEntry | None:
        for entry in self._entries:
            if entry.matches(model, ids):
                return entry
        return None

    def _flush_now(self) -> None:
        with self._lock:
            batch, self._entries = self._entries, []
            self._record_count = 0
            sender = self._sender
        if not batch or sender is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deliver(sender, batch)
            return
        with self._lock:
            self._tickets += 1
            ticket = self._tickets
            self._detached[ticket] = (sender, batch)
        task = loop.create_task(self._adeliver(ticket, sender, batch))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    def _deliver(self, sender: Sender, batch: list[CacheEntry]) -> None:
        try:
            self.last_results = self._send(sender, batch)
        except Exception as exc:
            self._log.error("unexpected %s flush failure: %r", self.kind, exc)

    async def _adeliver(self, ticket: int, sender: Sender, batch: list[CacheEntry]) -> None:
        try:
            self.last_results = await self._asend(sender, batch)
        except asyncio.CancelledError:
            # loop shutting down mid-delivery; finish on this thread
            if self._claim(ticket):
                self._deliver(sender, batch)
            raise
        except Exception as exc:
            self._log.error("unexpected %s flush failure: %r", self.kind, exc)
        self._claim(ticket)

    def _claim(self, ticket: int) -> bool:
        with self._lock:
            return self._detached.pop(ticket, None) is not None

    @abstractmethod
    def _absorb(self, entry: CacheEntry, record: RecordT) -> None: ...

    @abstractmethod
    def _send(self, sender: Sender, batch: list[CacheEntry]) -> list[DeliveryResult]: ...

    @abstractmethod
    async def _asend(self, sender: Sender, batch: list[CacheEntry]) -> list[DeliveryResult]: ...


class IdentifyCache(BatchingCache[IdentifyRecord]):
    """Identify records merged field by field; one request per subject."""

    kind = "identify"

    def _absorb(self, entry: CacheEntry, record: IdentifyRecord) -> None:
        current = entry.identify
        if current is None:
            entry.identify = IdentifyRecord(
                model=record.model,
                ids=list(entry.ids),
                display_name=record.display_name,
                properties=dict(record.properties) if record.properties else None,
                parent=record.parent,
                children=list(record.children),
            )
            return
        if record.properties:
            current.properties = {**(current.properties or {}), **record.properties}
        if record.parent is not None:
            current.parent = record.parent
        if record.display_name is not None:
            current.display_name = record.display_name
        for child in record.children:
            if not any(child.same_subject(known) for known in current.children):
                current.children.append(child)

    def _send(self, sender: Sender, batch: list[CacheEntry]) -> list[DeliveryResult]:
        return [sender.send_identify(payload) for payload in identify_payloads(batch)]

    async def _asend(self, sender: Sender, batch: list[CacheEntry]) -> list[DeliveryResult]:
        return [await sender.asend_identify(payload) for payload in identify_payloads(batch)]


class StateCache(BatchingCache[StateRecord]):
    """State records appended per subject; one request per flush."""

    kind = "state"

    def _absorb(self, entry: CacheEntry, record: StateRecord) -> None:
        entry.states.append(record)

    def _send(self, sender: Sender, batch: list[CacheEntry]) -> list[DeliveryResult]:
        return [sender.send_states(state_payloads(batch))]

    async def _asend(self, sender: Sender, batch: list[CacheEntry]) -> list[DeliveryResult]:
        return [await sender.asend_states(state_payloads(batch))]


def identify_payloads(batch: Sequence[CacheEntry]) -> list[dict[str, Any]]:
    payloads = []
    for entry in batch:
        if entry.identify is None:
            continue
        payload = entry.identify.to_payload()
        payload["ids"] = list(entry.ids)
        payloads.append(payload)
    return payloads


def state_payloads(batch: Sequence[CacheEntry]) -> list[dict[str, Any]]:
    return [
        {
            "model": entry.model,
            "ids": list(entry.ids),
            "states": [state.to_payload() for state in entry.states],
        }
        for entry in batch
    ]


@dataclass(slots=True)
class CacheHub:
    """The pair of caches shared by every facade of one application root."""

    identify: IdentifyCache
    state: StateCache

    @classmethod
    def create(
        cls,
        *,
        delay_s: float = DEFAULT_FLUSH_DELAY_S,
        max_records: int = DEFAULT_MAX_RECORDS,
        log: DebugLog | None = None,
    ) -> CacheHub:
        return cls(
            identify=IdentifyCache(delay_s=delay_s, max_records=max_records, log=log),
            state=StateCache(delay_s=delay_s, max_records=max_records, log=log),
        )

    def flush(self) -> None:
        self.identify.flush()
        self.state.flush()

    def flush_sync(self) -> None:
        self.identify.flush_sync()
        self.state.flush_sync()

    async def drain(self) -> None:
        await self.identify.drain()
        await self.state.drain()

    async def aflush(self) -> None:
        """Flush both caches and wait until the requests complete."""
        self.flush()
        await self.drain()
