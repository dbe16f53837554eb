import tempfile
import unittest
from pathlib import Path

from watchfiles import Change

from treebridge.sync.file_watcher import ChangeWatcher
from treebridge.sync.ignore_registry import IgnoreRegistry
from treebridge.sync.outbound_queue import OutboundQueue


class _FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class ChangeWatcherHandlingTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.queue = OutboundQueue()
        self.clock = _FakeClock()
        self.registry = IgnoreRegistry(clock=self.clock)
        self.watcher = ChangeWatcher(label="session-1")
        self.watcher._bind(self.root, self.queue, self.registry)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _write(self, relative: str, content: str) -> str:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return str(path)

    def test_modified_script_becomes_write_record(self) -> None:
        path = self._write("ServerScriptService/Main.server.lua", "print('hi')")

        pushed = self.watcher.handle_changes({(Change.modified, path)})

        self.assertEqual(pushed, 1)
        record = self.queue.drain()[0]
        self.assertEqual(record.changeType, "write")
        self.assertEqual(record.path, "ServerScriptService/Main.server.lua")
        self.assertEqual(record.content, "print('hi')")
        self.assertTrue(record.isScript)
        self.assertEqual(record.contentTypeHint, "Script")
        self.assertIsNone(record.nodeId)

    def test_hint_inferred_from_suffix(self) -> None:
        client = self._write("StarterPlayer/Hud.client.lua", "c")
        module = self._write("ReplicatedStorage/Util.lua", "m")
        self.watcher.handle_changes([(Change.added, client), (Change.added, module)])

        hints = {r.path: r.contentTypeHint for r in self.queue.drain()}
        self.assertEqual(hints["StarterPlayer/Hud.client.lua"], "LocalScript")
        self.assertEqual(hints["ReplicatedStorage/Util.lua"], "ModuleScript")

    def test_irrelevant_extensions_and_directories_are_skipped(self) -> None:
        notes = self._write("notes.txt", "ignore me")
        folder = self.root / "Folder.lua"
        folder.mkdir()

        pushed = self.watcher.handle_changes([(Change.modified, notes), (Change.added, str(folder))])

        self.assertEqual(pushed, 0)
        self.assertEqual(len(self.queue), 0)

    def test_json_files_are_not_scripts(self) -> None:
        path = self._write("Workspace/attrs.json", "{}")
        self.watcher.handle_changes([(Change.modified, path)])
        record = self.queue.drain()[0]
        self.assertFalse(record.isScript)

    def test_vanished_file_is_skipped(self) -> None:
        missing = str(self.root / "Workspace" / "Gone.lua")
        self.assertEqual(self.watcher.handle_changes([(Change.modified, missing)]), 0)

    def test_deleted_file_becomes_delete_record(self) -> None:
        missing = str(self.root / "Workspace" / "Gone.lua")
        self.watcher.handle_changes([(Change.deleted, missing)])
        record = self.queue.drain()[0]
        self.assertEqual(record.changeType, "delete")
        self.assertEqual(record.path, "Workspace/Gone.lua")
        self.assertIsNone(record.content)

    def test_suppressed_path_is_not_reported_until_window_passes(self) -> None:
        path = self._write("Workspace/Part.server.lua", "X")
        self.registry.suppress("Workspace/Part.server.lua", 2.0)

        self.clock.now = 1.0
        self.assertEqual(self.watcher.handle_changes([(Change.modified, path)]), 0)
        self.assertEqual(self.queue.drain(), [])

        self.clock.now = 3.0
        self.assertEqual(self.watcher.handle_changes([(Change.modified, path)]), 1)
        self.assertEqual(self.queue.drain()[0].content, "X")

    def test_two_changes_before_poll_coalesce(self) -> None:
        path = self._write("Workspace/Part.lua", "first")
        self.watcher.handle_changes([(Change.modified, path)])
        self._write("Workspace/Part.lua", "second")
        self.watcher.handle_changes([(Change.modified, path)])

        drained = self.queue.drain()
        self.assertEqual(len(drained), 1)
        self.assertEqual(drained[0].content, "second")

    def test_paths_outside_root_are_ignored(self) -> None:
        with tempfile.TemporaryDirectory() as other:
            outside = Path(other) / "x.lua"
            outside.write_text("x", encoding="utf-8")
            self.assertEqual(self.watcher.handle_changes([(Change.modified, str(outside))]), 0)

    def test_unbound_watcher_ignores_changes(self) -> None:
        watcher = ChangeWatcher()
        self.assertEqual(watcher.handle_changes([(Change.modified, "/tmp/a.lua")]), 0)


class ChangeWatcherLifecycleTests(unittest.IsolatedAsyncioTestCase):
    async def test_start_fails_softly_for_missing_directory(self) -> None:
        watcher = ChangeWatcher()
        started = await watcher.start("/nonexistent/treebridge/dir", OutboundQueue(), IgnoreRegistry())
        self.assertFalse(started)
        self.assertFalse(watcher.is_running)

    async def test_start_and_stop(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            watcher = ChangeWatcher(label="s")
            started = await watcher.start(tmpdir, OutboundQueue(), IgnoreRegistry())
            self.assertTrue(started)
            self.assertTrue(watcher.is_running)

            await watcher.stop()
            self.assertFalse(watcher.is_running)


if __name__ == "__main__":
    unittest.main()
