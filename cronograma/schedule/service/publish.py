"""Publish pipeline: moves snapshots between the store and the gateway.

- save_draft: persist the working copy
- publish: copy the whole draft into the published slot, all-or-nothing
- connect/close: load both slots and follow changes pushed by the gateway
"""
from typing import Callable

from loguru import logger

from ..models import Snapshot
from ..permissions import Permission, PermissionChecker, require_permission
from ..store import ScheduleStore
from ..types import Slot
from .gateway import PersistenceGateway

logger = logger.bind(module="schedule.publish")


def same_content(a: Snapshot, b: Snapshot) -> bool:
    """Compare snapshots ignoring their persistence timestamp."""
    left, right = a.to_dict(), b.to_dict()
    left.pop("lastUpdated", None)
    right.pop("lastUpdated", None)
    return left == right


class PublishPipeline:
    """Orchestrates a ScheduleStore and a PersistenceGateway."""

    def __init__(self, store: ScheduleStore, gateway: PersistenceGateway):
        self.store = store
        self.gateway = gateway
        self._unsubscribers: list[Callable[[], None]] = []
        self._saving: set[Slot] = set()

    # ============== Lifecycle ==============

    async def connect(self, seed: Snapshot | None = None, watch: bool = True) -> None:
        """Initialize slots, load them into the store and follow remote changes."""
        await self.gateway.initialize(seed)

        draft = await self.gateway.load(Slot.DRAFT)
        published = await self.gateway.load(Slot.PUBLISHED)
        if draft is not None:
            self.store.replace_draft(draft)
        if published is not None:
            self.store.replace_published(published)

        self._sync_unpublished_flag()

        self._unsubscribers = [
            self.gateway.subscribe(Slot.DRAFT, self._on_remote_draft),
            self.gateway.subscribe(Slot.PUBLISHED, self._on_remote_published),
        ]
        if watch:
            self.gateway.start_watching()
        logger.info(
            f"Connected: {len(self.store.draft.rows)} draft rows, "
            f"unpublished changes={self.store.has_unpublished_changes}"
        )

    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        await self.gateway.stop_watching()

    # ============== Remote Changes ==============

    def _sync_unpublished_flag(self) -> None:
        if same_content(self.store.draft, self.store.published):
            self.store.mark_clean()
        else:
            self.store.mark_dirty()

    def _on_remote_draft(self, snapshot: Snapshot) -> None:
        # Echo of our own save, or nothing new
        if Slot.DRAFT in self._saving or same_content(snapshot, self.store.draft):
            return
        logger.info("Draft replaced by a change from another session")
        self.store.replace_draft(snapshot)
        self._sync_unpublished_flag()

    def _on_remote_published(self, snapshot: Snapshot) -> None:
        if Slot.PUBLISHED in self._saving or same_content(snapshot, self.store.published):
            return
        logger.info("Published schedule replaced by a change from another session")
        self.store.replace_published(snapshot)
        self._sync_unpublished_flag()

    # ============== Operations ==============

    async def _save(self, slot: Slot, snapshot: Snapshot) -> Snapshot:
        self._saving.add(slot)
        try:
            return await self.gateway.save(slot, snapshot)
        finally:
            self._saving.discard(slot)

    async def save_draft(self) -> Snapshot:
        """Persist a copy of the current draft."""
        stored = await self._save(Slot.DRAFT, self.store.snapshot(Slot.DRAFT))
        logger.info("Draft saved")
        return stored

    async def publish(self, permissions: PermissionChecker | None = None) -> Snapshot:
        """Copy the draft into the published slot.

        On failure the published snapshot and the unpublished-changes flag
        are left as they were.

        Raises:
            PermissionDeniedError: the permission collaborator refused
            PersistenceError: the gateway exhausted its retries
        """
        if permissions is not None:
            require_permission(permissions, Permission.PUBLISH)

        candidate = self.store.snapshot(Slot.DRAFT)
        stored = await self._save(Slot.PUBLISHED, candidate)

        candidate.last_updated_ms = stored.last_updated_ms
        self.store.replace_published(candidate)
        # Edits made while the save was in flight remain unpublished
        if same_content(self.store.draft, candidate):
            self.store.mark_clean()
        logger.info(
            f"Published {sum(r.event_count() for r in candidate.rows)} events "
            f"for {len(candidate.rows)} instructors"
        )
        return candidate.copy()
