"""Tests for the persistence gateway and slot backends."""
import asyncio
import json

import pytest

from cronograma.schedule.errors import PersistenceError
from cronograma.schedule.models import Event
from cronograma.schedule.service import MemorySlotBackend, PersistenceGateway, SQLiteSlotBackend
from cronograma.schedule.service.seed import load_seed, write_seed
from cronograma.schedule.types import Slot

from conftest import FlakyBackend


def content(snapshot):
    data = snapshot.to_dict()
    data.pop("lastUpdated")
    return data


def make_gateway(backend, attempts=3):
    return PersistenceGateway(backend, max_attempts=attempts, retry_delay_ms=0, poll_interval_ms=10)


class TestRetry:
    """Tests for bounded retry on save."""

    @pytest.mark.asyncio
    async def test_save_succeeds_after_two_failures(self, seed):
        backend = FlakyBackend(failures=2)
        gateway = make_gateway(backend)

        stored = await gateway.save(Slot.DRAFT, seed)

        assert backend.write_calls == 3
        assert stored.last_updated_ms is not None
        loaded = await gateway.load(Slot.DRAFT)
        assert content(loaded) == content(seed)

    @pytest.mark.asyncio
    async def test_save_exhausts_retries(self, seed):
        backend = FlakyBackend()
        gateway = make_gateway(backend)
        await gateway.save(Slot.PUBLISHED, seed)

        changed = seed.copy()
        changed.config.title = "Cronograma 2025"
        backend.failures = 99
        with pytest.raises(PersistenceError) as exc_info:
            await gateway.save(Slot.PUBLISHED, changed)

        assert exc_info.value.attempts == 3
        assert exc_info.value.slot == "published"
        assert backend.write_calls == 4
        loaded = await gateway.load(Slot.PUBLISHED)
        assert loaded.config.title == "Cronograma 2024"

    @pytest.mark.asyncio
    async def test_integrity_failure_keeps_previous(self, seed):
        gateway = make_gateway(MemorySlotBackend())
        await gateway.save(Slot.DRAFT, seed)

        broken = seed.copy()
        broken.find_row("instructor-2").events["2024-06-28"] = [Event(id="evt-1", title="X", location="Y", color="#000")]
        with pytest.raises(PersistenceError):
            await gateway.save(Slot.DRAFT, broken)

        loaded = await gateway.load(Slot.DRAFT)
        assert "2024-06-28" not in loaded.find_row("instructor-2").events

    @pytest.mark.asyncio
    async def test_load_empty_slot(self):
        gateway = make_gateway(MemorySlotBackend())
        assert await gateway.load(Slot.DRAFT) is None


class TestSubscriptions:
    """Tests for snapshot pushes."""

    @pytest.mark.asyncio
    async def test_subscribers_receive_saved_snapshot(self, seed):
        gateway = make_gateway(MemorySlotBackend())
        received = []
        unsubscribe = gateway.subscribe(Slot.DRAFT, received.append)

        await gateway.save(Slot.DRAFT, seed)
        await gateway.save(Slot.PUBLISHED, seed)
        unsubscribe()
        await gateway.save(Slot.DRAFT, seed)

        assert len(received) == 1
        assert content(received[0]) == content(seed)

    @pytest.mark.asyncio
    async def test_async_subscriber(self, seed):
        gateway = make_gateway(MemorySlotBackend())
        received = []

        async def on_change(snapshot):
            received.append(snapshot)

        gateway.subscribe("draft", on_change)
        await gateway.save(Slot.DRAFT, seed)
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_poll_detects_external_write(self, seed):
        backend = MemorySlotBackend()
        watcher = make_gateway(backend)
        writer = make_gateway(backend)
        await watcher.initialize()
        received = []
        watcher.subscribe(Slot.PUBLISHED, received.append)

        await writer.save(Slot.PUBLISHED, seed)

        assert await watcher.poll_once() == [Slot.PUBLISHED]
        assert await watcher.poll_once() == []
        assert content(received[0]) == content(seed)

    @pytest.mark.asyncio
    async def test_own_saves_are_not_reported_by_poll(self, seed):
        gateway = make_gateway(MemorySlotBackend())
        await gateway.save(Slot.DRAFT, seed)
        assert await gateway.poll_once() == []


class BrokenRevisionBackend(MemorySlotBackend):
    def __init__(self):
        super().__init__()
        self.revision_calls = 0

    def revision(self, slot):
        self.revision_calls += 1
        raise RuntimeError("disk unplugged")


class TestCorruptDocuments:
    """A bad stored document is reported without stopping the watcher."""

    @staticmethod
    def corrupt(backend, text):
        backend.db.execute(
            "UPDATE slots SET document = ?, revision = revision + 1 WHERE slot = 'draft'",
            (text,),
        )

    @pytest.mark.asyncio
    async def test_unknown_view_mode_fails_load(self, seed, tmp_path):
        backend = SQLiteSlotBackend(tmp_path / "schedule.db")
        gateway = make_gateway(backend, attempts=2)
        try:
            await gateway.save(Slot.DRAFT, seed)
            document = seed.to_dict()
            document["globalConfig"]["viewMode"] = "daily"
            self.corrupt(backend, json.dumps(document))

            with pytest.raises(PersistenceError) as excinfo:
                await gateway.load(Slot.DRAFT)
            assert excinfo.value.slot == "draft"
            assert excinfo.value.attempts == 2
        finally:
            await gateway.close()

    @pytest.mark.asyncio
    async def test_invalid_json_fails_load(self, seed, tmp_path):
        backend = SQLiteSlotBackend(tmp_path / "schedule.db")
        gateway = make_gateway(backend, attempts=1)
        try:
            await gateway.save(Slot.DRAFT, seed)
            self.corrupt(backend, "{not json")

            with pytest.raises(PersistenceError):
                await gateway.load(Slot.DRAFT)
        finally:
            await gateway.close()

    @pytest.mark.asyncio
    async def test_poll_skips_undecodable_revision(self, seed, tmp_path):
        backend = SQLiteSlotBackend(tmp_path / "schedule.db")
        gateway = make_gateway(backend, attempts=1)
        received = []
        gateway.subscribe(Slot.DRAFT, received.append)
        try:
            await gateway.save(Slot.DRAFT, seed)
            received.clear()
            self.corrupt(backend, "{not json")

            assert await gateway.poll_once() == []
            assert await gateway.poll_once() == []
            assert received == []
        finally:
            await gateway.close()

    @pytest.mark.asyncio
    async def test_watcher_survives_corrupt_document(self, seed, tmp_path):
        backend = SQLiteSlotBackend(tmp_path / "schedule.db")
        gateway = make_gateway(backend, attempts=1)
        await gateway.save(Slot.DRAFT, seed)
        document = seed.to_dict()
        document["globalConfig"]["viewMode"] = "daily"
        self.corrupt(backend, json.dumps(document))

        gateway.start_watching()
        await asyncio.sleep(0.05)

        assert not gateway._watch_task.done()
        await gateway.close()

    @pytest.mark.asyncio
    async def test_watcher_keeps_polling_after_unexpected_error(self):
        backend = BrokenRevisionBackend()
        gateway = make_gateway(backend)

        gateway.start_watching()
        await asyncio.sleep(0.05)

        assert backend.revision_calls > 1
        assert not gateway._watch_task.done()
        await gateway.close()


class TestInitialization:
    """Tests for seeding and SQLite storage."""

    @pytest.mark.asyncio
    async def test_initialize_seeds_empty_slots_once(self, seed):
        backend = MemorySlotBackend()
        gateway = make_gateway(backend)
        await gateway.initialize(seed)

        changed = seed.copy()
        changed.config.title = "Otro"
        await make_gateway(backend).initialize(changed)

        for slot in Slot:
            assert (await gateway.load(slot)).config.title == "Cronograma 2024"
            assert backend.revision(slot.value) == 1

    @pytest.mark.asyncio
    async def test_sqlite_round_trip(self, seed, tmp_path):
        backend = SQLiteSlotBackend(tmp_path / "schedule.db")
        gateway = make_gateway(backend)
        try:
            await gateway.save(Slot.DRAFT, seed)
            await gateway.save(Slot.DRAFT, seed)

            loaded = await gateway.load(Slot.DRAFT)
            assert content(loaded) == content(seed)
            assert backend.revision("draft") == 2
            assert backend.revision("published") == 0
        finally:
            await gateway.close()

    @pytest.mark.asyncio
    async def test_sqlite_rolls_back_failed_verification(self, seed, tmp_path):
        backend = SQLiteSlotBackend(tmp_path / "schedule.db")
        gateway = make_gateway(backend, attempts=1)
        try:
            await gateway.save(Slot.DRAFT, seed)
            broken = seed.copy()
            broken.rows[0].events["lunes"] = [Event(title="X", location="Y", color="#000")]

            with pytest.raises(PersistenceError):
                await gateway.save(Slot.DRAFT, broken)

            assert backend.revision("draft") == 1
            loaded = await gateway.load(Slot.DRAFT)
            assert "lunes" not in loaded.rows[0].events
        finally:
            await gateway.close()

    def test_seed_file_written_and_reloaded(self, seed, tmp_path):
        path = tmp_path / "seed.yaml"

        first = load_seed(path)
        assert path.exists()
        assert content(first) == content(seed)

        first.config.title = "Cronograma editado"
        write_seed(path, first)
        assert load_seed(path).config.title == "Cronograma editado"
        assert path.read_text(encoding="utf-8").startswith("# Cronograma seed schedule")
