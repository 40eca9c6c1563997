import asyncio
import os
import shutil
import tempfile

import pytest

from LOGWATCH.config.config_service import ConfigService
from LOGWATCH.core.coordinator import NO_MATCHING_FILE, EventKind, WatchCoordinator, WatchEvent
from LOGWATCH.errors import FileIOError
from LOGWATCH.log_viewer.log_reader import ContentReader

INFO_LINE = "2026-02-13 16:04:23.091 INFO [main] server started\n"
ERROR_LINE = "2026-02-13 16:04:23.089 ERROR [main] database connection lost\n"
DEBUG_LINE = "2026-02-13 16:04:23.092 DEBUG [pool] acquired connection\n"

# Ticks are driven by hand, the scheduled ones never fire during a test
SLOW_OPTIONS = {"fileCheckInterval": 60000, "fileListInterval": 60000}


@pytest.fixture
def temp_dir_manager(request):
    temp_dir = tempfile.mkdtemp(prefix="coordinator_test_")

    def cleanup_dir():
        if os.path.exists(temp_dir):
            shutil.rmtree(temp_dir)

    request.addfinalizer(cleanup_dir)
    return temp_dir


def document(*patterns):
    return {"watch": [{"title": f"watch {i}", "pattern": p} for i, p in enumerate(patterns)],
            "options": SLOW_OPTIONS}


def write_log(path, content, mode="w"):
    with open(path, mode) as f:
        f.write(content)
    return path


@pytest.fixture
def setup(request, temp_dir_manager):
    """Coordinator over one watch of temp_dir/*.log, plus its recorded events"""
    config = ConfigService(data=document(f"{temp_dir_manager}/*.log"))
    coordinator = WatchCoordinator(config)
    events = []
    coordinator.subscribe(events.append)
    request.addfinalizer(coordinator.dispose)
    return temp_dir_manager, config, coordinator, events


def watcher_of(coordinator, identity):
    return coordinator._states[identity].watcher


class TestStartStop:

    @pytest.mark.asyncio
    async def test_start_reads_matched_file(self, setup):
        base, _, coordinator, events = setup
        path = write_log(os.path.join(base, "app.log"), INFO_LINE)

        state = await coordinator.start_watch(0)

        assert state.running
        assert state.matched_file == path
        assert state.raw_bytes == INFO_LINE.encode()
        assert state.filtered_bytes == INFO_LINE.encode()
        assert events == [WatchEvent(0, EventKind.STARTED), WatchEvent(0, EventKind.FILE_CHANGED)]
        assert coordinator.is_watching(0)

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, setup):
        base, _, coordinator, events = setup
        write_log(os.path.join(base, "app.log"), INFO_LINE)

        first = await coordinator.start_watch(0)
        watcher = watcher_of(coordinator, 0)
        second = await coordinator.start_watch(0)

        assert second.matched_file == first.matched_file
        assert second.created_at == first.created_at
        assert watcher_of(coordinator, 0) is watcher
        assert [e.kind for e in events].count(EventKind.STARTED) == 1

    @pytest.mark.asyncio
    async def test_stop_and_explicit_restart(self, setup):
        base, _, coordinator, events = setup
        write_log(os.path.join(base, "app.log"), INFO_LINE)

        await coordinator.start_watch(0)
        old_watcher = watcher_of(coordinator, 0)
        assert coordinator.stop_watch(0) is True
        assert old_watcher.disposed
        assert not coordinator.get_state(0).running
        assert events[-1] == WatchEvent(0, EventKind.STOPPED)

        # a stopped watch is only restarted on request
        state = await coordinator.start_watch(0)
        assert not state.running
        state = await coordinator.start_watch(0, start_if_stopped=True)
        assert state.running
        assert watcher_of(coordinator, 0) is not old_watcher

    @pytest.mark.asyncio
    async def test_stop_all(self, temp_dir_manager):
        write_log(os.path.join(temp_dir_manager, "a.log"), INFO_LINE)
        config = ConfigService(data=document(f"{temp_dir_manager}/*.log", f"{temp_dir_manager}/a.*"))
        coordinator = WatchCoordinator(config)
        try:
            await coordinator.start_watch(0)
            await coordinator.start_watch(1)
            coordinator.stop_all()
            assert not coordinator.is_watching(0)
            assert not coordinator.is_watching(1)
        finally:
            coordinator.dispose()

    @pytest.mark.asyncio
    async def test_no_matching_file(self, setup):
        _, _, coordinator, events = setup
        state = await coordinator.start_watch(0)
        assert state.running
        assert state.matched_file is None
        assert state.filtered_bytes is None
        assert coordinator.get_content(0) == NO_MATCHING_FILE
        assert events == [WatchEvent(0, EventKind.STARTED)]


class TestNotFound:

    @pytest.mark.asyncio
    async def test_unknown_identity(self, setup):
        _, _, coordinator, _ = setup
        assert await coordinator.start_watch(99) is None
        assert coordinator.get_state(99) is None
        assert coordinator.get_stats(99) is None
        assert coordinator.stop_watch(99) is False
        assert await coordinator.clear_contents(99) is False
        assert await coordinator.restore_contents(99) is False
        assert await coordinator.export_filtered(99, "unused.log") is None
        assert not coordinator.is_watching(99)

    @pytest.mark.asyncio
    async def test_get_content_can_start_missing_watch(self, setup):
        base, _, coordinator, _ = setup
        write_log(os.path.join(base, "app.log"), INFO_LINE)

        assert coordinator.get_content(0, start_if_missing=True) == NO_MATCHING_FILE
        await coordinator.wait_idle()
        assert coordinator.get_content(0) == INFO_LINE.encode()


class TestContentChanges:

    @pytest.mark.asyncio
    async def test_growth_emits_content_changed(self, setup):
        base, _, coordinator, events = setup
        path = write_log(os.path.join(base, "app.log"), INFO_LINE)
        await coordinator.start_watch(0)
        created = coordinator.get_state(0).created_at

        write_log(path, ERROR_LINE, mode="a")
        assert await watcher_of(coordinator, 0).file_tick() is True

        state = coordinator.get_state(0)
        assert state.filtered_bytes == (INFO_LINE + ERROR_LINE).encode()
        assert state.created_at == created
        assert state.last_changed_at >= created
        assert events[-1] == WatchEvent(0, EventKind.CONTENT_CHANGED)

    @pytest.mark.asyncio
    async def test_hidden_growth_is_not_reported(self, setup):
        base, config, coordinator, events = setup
        path = write_log(os.path.join(base, "app.log"), ERROR_LINE)
        config.set_filter_overrides(min_level="ERROR")
        await coordinator.start_watch(0)
        count = len(events)

        write_log(path, DEBUG_LINE, mode="a")
        await watcher_of(coordinator, 0).file_tick()

        state = coordinator.get_state(0)
        assert state.raw_bytes == (ERROR_LINE + DEBUG_LINE).encode()
        assert state.filtered_bytes == ERROR_LINE.rstrip("\n").encode()
        assert len(events) == count

    @pytest.mark.asyncio
    async def test_clear_then_restore(self, setup):
        base, _, coordinator, events = setup
        path = write_log(os.path.join(base, "app.log"), INFO_LINE)
        await coordinator.start_watch(0)

        assert await coordinator.clear_contents(0) is True
        assert coordinator.get_state(0).filtered_bytes == b""
        assert events[-1] == WatchEvent(0, EventKind.CONTENT_CHANGED)

        write_log(path, ERROR_LINE, mode="a")
        await watcher_of(coordinator, 0).file_tick()
        assert coordinator.get_state(0).filtered_bytes == ERROR_LINE.encode()

        assert await coordinator.restore_contents(0) is True
        assert coordinator.get_state(0).filtered_bytes == (INFO_LINE + ERROR_LINE).encode()

    @pytest.mark.asyncio
    async def test_newer_file_resets_offset(self, setup):
        base, _, coordinator, events = setup
        first = write_log(os.path.join(base, "a.log"), INFO_LINE)
        os.utime(first, (1_000_000, 1_000_000))
        await coordinator.start_watch(0)
        await coordinator.clear_contents(0)

        second = write_log(os.path.join(base, "b.log"), ERROR_LINE)
        await watcher_of(coordinator, 0).list_tick()

        state = coordinator.get_state(0)
        assert state.matched_file == second
        assert state.filtered_bytes == ERROR_LINE.encode()
        assert events[-1] == WatchEvent(0, EventKind.FILE_CHANGED)

    @pytest.mark.asyncio
    async def test_removed_file_clears_content(self, setup):
        base, _, coordinator, events = setup
        path = write_log(os.path.join(base, "app.log"), INFO_LINE)
        await coordinator.start_watch(0)

        os.remove(path)
        await watcher_of(coordinator, 0).file_tick()

        state = coordinator.get_state(0)
        assert state.matched_file is None
        assert state.filtered_bytes is None
        assert coordinator.get_content(0) == NO_MATCHING_FILE
        assert events[-1] == WatchEvent(0, EventKind.FILE_CHANGED)

    @pytest.mark.asyncio
    async def test_stats_cover_unfiltered_content(self, setup):
        base, config, coordinator, _ = setup
        write_log(os.path.join(base, "app.log"), INFO_LINE + ERROR_LINE + DEBUG_LINE + "garbage\n")
        config.set_filter_overrides(min_level="ERROR")
        await coordinator.start_watch(0)

        stats = coordinator.get_stats(0)
        assert stats.total_lines == 4
        assert stats.error_count == 1
        assert stats.info_count == 1
        assert stats.debug_count == 1
        assert stats.unparsed_count == 1

    @pytest.mark.asyncio
    async def test_tail_lines_bound(self, setup):
        base, config, coordinator, _ = setup
        write_log(os.path.join(base, "app.log"), "".join(f"L{i}\n" for i in range(1, 11)))
        config.set_tail_lines(3)
        await coordinator.start_watch(0)
        # the trailing newline leaves an empty last line
        assert coordinator.get_state(0).raw_bytes == b"L9\nL10\n"


class TestConfigurationChanges:

    @pytest.mark.asyncio
    async def test_filter_change_reapplies_and_notifies(self, setup):
        base, config, coordinator, events = setup
        write_log(os.path.join(base, "app.log"), INFO_LINE + ERROR_LINE)
        await coordinator.start_watch(0)

        config.set_filter_overrides(min_level="ERROR", clean_format=True)
        await coordinator.wait_idle()

        assert coordinator.get_state(0).filtered_bytes == b"database connection lost"
        assert events[-1] == WatchEvent(0, EventKind.CONTENT_CHANGED)

    @pytest.mark.asyncio
    async def test_filter_change_without_effect_is_silent(self, setup):
        base, config, coordinator, events = setup
        write_log(os.path.join(base, "app.log"), ERROR_LINE)
        config.set_filter_overrides(min_level="ERROR")
        await coordinator.start_watch(0)
        count = len(events)

        config.set_filter_overrides(min_level="WARN")
        await coordinator.wait_idle()

        assert len(events) == count

    @pytest.mark.asyncio
    async def test_orphan_sweep_on_reload(self, setup):
        base, config, coordinator, events = setup
        write_log(os.path.join(base, "app.log"), INFO_LINE)
        await coordinator.start_watch(0)
        watcher = watcher_of(coordinator, 0)

        config.reload({"watch": [], "options": SLOW_OPTIONS})
        await coordinator.wait_idle()

        assert coordinator.get_state(0) is None
        assert not coordinator.is_watching(0)
        assert watcher.disposed
        assert events[-1] == WatchEvent(0, EventKind.STOPPED)

    @pytest.mark.asyncio
    async def test_changed_definition_is_orphaned(self, setup):
        base, config, coordinator, _ = setup
        await coordinator.start_watch(0)

        config.reload(document(f"{base}/*.txt"))
        await coordinator.wait_idle()

        assert coordinator.get_state(0) is None

    @pytest.mark.asyncio
    async def test_unchanged_definition_survives_reload(self, setup):
        base, config, coordinator, _ = setup
        write_log(os.path.join(base, "app.log"), INFO_LINE)
        await coordinator.start_watch(0)
        watcher = watcher_of(coordinator, 0)

        config.reload(document(f"{base}/*.log"))
        await coordinator.wait_idle()

        assert coordinator.is_watching(0)
        assert watcher_of(coordinator, 0) is watcher


class TestExport:

    @pytest.mark.asyncio
    async def test_export_filtered(self, setup):
        base, config, coordinator, _ = setup
        write_log(os.path.join(base, "app.log"), INFO_LINE + ERROR_LINE)
        config.set_filter_overrides(min_level="ERROR")
        await coordinator.start_watch(0)

        destination = os.path.join(base, "export.txt")
        written = await coordinator.export_filtered(0, destination)

        with open(destination, "rb") as f:
            data = f.read()
        assert data == ERROR_LINE.rstrip("\n").encode()
        assert written == len(data)

    @pytest.mark.asyncio
    async def test_nothing_to_export(self, setup):
        base, _, coordinator, _ = setup
        await coordinator.start_watch(0)
        assert await coordinator.export_filtered(0, os.path.join(base, "export.txt")) is None


class UnreadableReader(ContentReader):
    """Fails like a permission-denied open for one file name"""

    def __init__(self, unreadable_name):
        super().__init__()
        self.unreadable_name = unreadable_name

    async def read(self, file_path, offset=None, encoding=None, tail_lines=0):
        if os.path.basename(file_path) == self.unreadable_name:
            raise FileIOError(file_path, PermissionError(13, "Permission denied", file_path))
        return await super().read(file_path, offset, encoding, tail_lines)


class GatedReader(ContentReader):
    """Holds every read until the gate is opened"""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()
        self.gate.set()
        self.entered = asyncio.Event()

    async def read(self, file_path, offset=None, encoding=None, tail_lines=0):
        self.entered.set()
        await self.gate.wait()
        return await super().read(file_path, offset, encoding, tail_lines)


def coordinator_with(request, base, reader):
    config = ConfigService(data=document(f"{base}/*.log"))
    coordinator = WatchCoordinator(config, reader=reader)
    events = []
    coordinator.subscribe(events.append)
    request.addfinalizer(coordinator.dispose)
    return config, coordinator, events


class TestUnreadableFiles:

    @pytest.mark.asyncio
    async def test_unreadable_new_file_shows_no_content(self, request, temp_dir_manager):
        base = temp_dir_manager
        old = write_log(os.path.join(base, "a.log"), INFO_LINE)
        os.utime(old, (1_000_000, 1_000_000))
        reader = UnreadableReader("b.log")
        _, coordinator, events = coordinator_with(request, base, reader)
        await coordinator.start_watch(0)
        assert coordinator.get_state(0).matched_file == old

        new = write_log(os.path.join(base, "b.log"), ERROR_LINE)
        watcher = watcher_of(coordinator, 0)
        assert await watcher.list_tick() is True

        state = coordinator.get_state(0)
        assert watcher.last_file_path == new
        assert state.matched_file == new
        assert state.raw_bytes is None
        assert state.filtered_bytes is None
        assert coordinator.get_content(0) == NO_MATCHING_FILE
        assert events[-1] == WatchEvent(0, EventKind.FILE_CHANGED)

        # readable again: the next growth brings the content back
        reader.unreadable_name = None
        write_log(new, DEBUG_LINE, mode="a")
        await watcher.file_tick()

        assert coordinator.get_state(0).filtered_bytes == (ERROR_LINE + DEBUG_LINE).encode()
        assert events[-1] == WatchEvent(0, EventKind.CONTENT_CHANGED)

    @pytest.mark.asyncio
    async def test_file_becoming_unreadable_is_a_file_change(self, request, temp_dir_manager):
        base = temp_dir_manager
        path = write_log(os.path.join(base, "a.log"), INFO_LINE)
        reader = UnreadableReader(None)
        _, coordinator, events = coordinator_with(request, base, reader)
        await coordinator.start_watch(0)

        reader.unreadable_name = "a.log"
        write_log(path, ERROR_LINE, mode="a")
        await watcher_of(coordinator, 0).file_tick()

        state = coordinator.get_state(0)
        assert state.matched_file == path
        assert state.filtered_bytes is None
        assert events[-1] == WatchEvent(0, EventKind.FILE_CHANGED)


class TestReadsInFlight:

    @pytest.mark.asyncio
    async def test_read_finishing_after_stop_is_discarded(self, request, temp_dir_manager):
        base = temp_dir_manager
        path = write_log(os.path.join(base, "a.log"), INFO_LINE)
        reader = GatedReader()
        _, coordinator, events = coordinator_with(request, base, reader)
        await coordinator.start_watch(0)
        runtime = coordinator._states[0]
        raw_before, filtered_before = runtime.raw_bytes, runtime.filtered_bytes
        count = len(events)

        reader.gate.clear()
        reader.entered.clear()
        write_log(path, ERROR_LINE, mode="a")
        tick = asyncio.ensure_future(runtime.watcher.file_tick())
        await reader.entered.wait()

        assert coordinator.stop_watch(0) is True
        reader.gate.set()
        await tick

        assert events[count:] == [WatchEvent(0, EventKind.STOPPED)]
        assert runtime.raw_bytes == raw_before
        assert runtime.filtered_bytes == filtered_before
        assert coordinator.get_state(0).filtered_bytes == INFO_LINE.encode()

    @pytest.mark.asyncio
    async def test_read_finishing_after_orphan_sweep_is_discarded(self, request, temp_dir_manager):
        base = temp_dir_manager
        path = write_log(os.path.join(base, "a.log"), INFO_LINE)
        reader = GatedReader()
        config, coordinator, events = coordinator_with(request, base, reader)
        await coordinator.start_watch(0)
        runtime = coordinator._states[0]
        raw_before, filtered_before = runtime.raw_bytes, runtime.filtered_bytes
        count = len(events)

        reader.gate.clear()
        reader.entered.clear()
        write_log(path, ERROR_LINE, mode="a")
        tick = asyncio.ensure_future(runtime.watcher.file_tick())
        await reader.entered.wait()

        config.reload({"watch": [], "options": SLOW_OPTIONS})
        reader.gate.set()
        await tick
        await coordinator.wait_idle()

        assert events[count:] == [WatchEvent(0, EventKind.STOPPED)]
        assert coordinator.get_state(0) is None
        assert runtime.raw_bytes == raw_before
        assert runtime.filtered_bytes == filtered_before
