"""Persistence gateway for schedule snapshots.

Responsibilities:
- save: write a whole snapshot to a slot, verify the read-back copy, retry
  with linear backoff, escalate only after the retry budget is spent
- load: one-shot read of a slot
- subscribe: push the full snapshot to listeners after every committed
  change, including changes made by other sessions (revision watcher)

Concurrent sessions are not merged: the last save to reach a slot replaces
it entirely.
"""
import asyncio
import inspect
from contextlib import suppress
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from ..errors import IntegrityError, PersistenceError
from ..integrity import verify_snapshot
from ..models import Snapshot, now_ms
from ..types import Slot
from .backends import SlotBackend, StoredDocument

logger = logger.bind(module="schedule.gateway")

SlotListener = Callable[[Snapshot], Awaitable[None] | None]
T = TypeVar("T")


class PersistenceGateway:
    """Durable storage adapter with retry and integrity verification."""

    def __init__(
        self,
        backend: SlotBackend,
        max_attempts: int = 3,
        retry_delay_ms: int = 1000,
        poll_interval_ms: int = 2000,
    ):
        """Initialize gateway.

        Args:
            backend: Slot storage implementation
            max_attempts: Attempts per save/load before failing fatally
            retry_delay_ms: Base backoff; attempt N waits N * retry_delay_ms
            poll_interval_ms: Revision watcher polling interval
        """
        self.backend = backend
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_ms = retry_delay_ms
        self.poll_interval_ms = poll_interval_ms
        self._listeners: dict[Slot, list[SlotListener]] = {slot: [] for slot in Slot}
        self._revisions: dict[Slot, int] = {}
        self._watch_task: asyncio.Task | None = None

    # ============== Lifecycle ==============

    async def initialize(self, seed: Snapshot | None = None) -> None:
        """Write ``seed`` into every slot that is still empty."""
        for slot in Slot:
            stored = await self._with_retry(f"read {slot.value}", slot, lambda s=slot: self.backend.read(s.value))
            if stored is not None:
                self._revisions[slot] = stored.revision
            elif seed is not None:
                await self.save(slot, seed)
                logger.info(f"Initialized empty slot {slot.value} from seed")

    async def close(self) -> None:
        await self.stop_watching()
        for listeners in self._listeners.values():
            listeners.clear()
        self.backend.close()

    # ============== Retry ==============

    async def _with_retry(self, action: str, slot: Slot, operation: Callable[[], T]) -> T:
        last_error: PersistenceError | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except PersistenceError as e:
                last_error = e
                logger.warning(
                    f"{action} failed (attempt {attempt}/{self.max_attempts}): {e}"
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay_ms * attempt / 1000)

        logger.error(f"{action} failed after {self.max_attempts} attempts: {last_error}")
        raise PersistenceError(
            f"{action} failed after {self.max_attempts} attempts: {last_error}",
            slot=slot.value,
            attempts=self.max_attempts,
        ) from last_error

    # ============== Save / Load ==============

    @staticmethod
    def _verifier(slot: Slot, document: dict[str, Any]) -> Callable[[dict[str, Any]], None]:
        def verify(readback: dict[str, Any]) -> None:
            if readback != document:
                raise IntegrityError(["read-back document differs from the written one"], slot=slot.value)
            problems = verify_snapshot(Snapshot.from_dict(readback))
            if problems:
                raise IntegrityError(problems, slot=slot.value)

        return verify

    async def save(self, slot: Slot | str, snapshot: Snapshot) -> Snapshot:
        """Persist a whole snapshot and return the verified stored copy.

        Raises:
            PersistenceError: every attempt failed; the slot keeps its previous content
        """
        slot = Slot(slot)
        document = snapshot.to_dict()

        def attempt() -> StoredDocument:
            stamped = dict(document)
            stamped["lastUpdated"] = now_ms()
            return self.backend.write(slot.value, stamped, self._verifier(slot, stamped))

        stored = await self._with_retry(f"save {slot.value}", slot, attempt)
        self._revisions[slot] = stored.revision
        result = Snapshot.from_dict(stored.document)
        logger.info(f"Saved slot {slot.value} (revision {stored.revision})")

        await self._notify(slot, result)
        return result

    async def load(self, slot: Slot | str) -> Snapshot | None:
        """Read a slot once; None when the slot has never been written."""
        slot = Slot(slot)

        def attempt() -> Snapshot | None:
            stored = self.backend.read(slot.value)
            if stored is None:
                return None
            return self._decode(slot, stored.document)

        return await self._with_retry(f"load {slot.value}", slot, attempt)

    @staticmethod
    def _decode(slot: Slot, document: Any) -> Snapshot:
        try:
            return Snapshot.from_dict(document)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            raise IntegrityError([f"undecodable document: {e!r}"], slot=slot.value) from e

    # ============== Subscriptions ==============

    def subscribe(self, slot: Slot | str, callback: SlotListener) -> Callable[[], None]:
        """Register a listener for full-snapshot pushes. Returns an unsubscribe function."""
        listeners = self._listeners[Slot(slot)]
        listeners.append(callback)

        def unsubscribe() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    async def _notify(self, slot: Slot, snapshot: Snapshot) -> None:
        for callback in list(self._listeners[slot]):
            try:
                result = callback(snapshot.copy())
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Listener for slot {slot.value} failed: {e}")

    # ============== External Change Watcher ==============

    async def poll_once(self) -> list[Slot]:
        """Check every slot's revision and push external changes.

        Returns the slots whose listeners were notified.
        """
        changed = []
        for slot in Slot:
            try:
                revision = self.backend.revision(slot.value)
            except PersistenceError as e:
                logger.warning(f"Revision check of {slot.value} failed: {e}")
                continue
            if revision == self._revisions.get(slot, 0):
                continue

            self._revisions[slot] = revision
            try:
                snapshot = await self.load(slot)
            except PersistenceError as e:
                # Skipped until the next revision
                logger.error(f"Cannot reload slot {slot.value} at revision {revision}: {e}")
                continue
            if snapshot is not None:
                logger.info(f"External change on slot {slot.value} (revision {revision})")
                await self._notify(slot, snapshot)
                changed.append(slot)
        return changed

    async def _watch_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval_ms / 1000)
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Watcher poll failed: {e!r}")

    def start_watching(self) -> None:
        if self._watch_task is None or self._watch_task.done():
            self._watch_task = asyncio.create_task(self._watch_loop())
            logger.info(f"Watching slots every {self.poll_interval_ms} ms")

    async def stop_watching(self) -> None:
        if self._watch_task is not None:
            self._watch_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None
