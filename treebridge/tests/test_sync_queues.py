import unittest

from treebridge.models import ChangeRecord
from treebridge.sync.ignore_registry import IgnoreRegistry
from treebridge.sync.outbound_queue import OutboundQueue


class _FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class IgnoreRegistryTests(unittest.TestCase):
    def test_entry_suppresses_until_expiry(self) -> None:
        clock = _FakeClock()
        registry = IgnoreRegistry(clock=clock)
        registry.suppress("Workspace/Part.server.lua", 2.0)

        clock.now += 1.5
        self.assertTrue(registry.is_suppressed("Workspace/Part.server.lua"))

        clock.now += 1.0
        self.assertFalse(registry.is_suppressed("Workspace/Part.server.lua"))

    def test_expired_entry_is_evicted_on_lookup(self) -> None:
        clock = _FakeClock()
        registry = IgnoreRegistry(clock=clock)
        registry.suppress("a.lua", 2.0)
        clock.now += 5

        self.assertIn("a.lua", registry)
        registry.is_suppressed("a.lua")
        self.assertNotIn("a.lua", registry)
        self.assertEqual(len(registry), 0)

    def test_unknown_path_is_not_suppressed(self) -> None:
        self.assertFalse(IgnoreRegistry().is_suppressed("other.lua"))

    def test_resuppressing_extends_window(self) -> None:
        clock = _FakeClock()
        registry = IgnoreRegistry(clock=clock)
        registry.suppress("a.lua", 2.0)
        clock.now += 1.5
        registry.suppress("a.lua", 2.0)
        clock.now += 1.5
        self.assertTrue(registry.is_suppressed("a.lua"))


class OutboundQueueTests(unittest.TestCase):
    def test_same_path_coalesces_to_latest(self) -> None:
        queue = OutboundQueue()
        queue.push(ChangeRecord(path="a.lua", content="one"))
        queue.push(ChangeRecord(path="b.lua", content="b"))
        queue.push(ChangeRecord(path="a.lua", content="two"))

        drained = queue.drain()
        self.assertEqual([r.path for r in drained], ["b.lua", "a.lua"])
        self.assertEqual(drained[1].content, "two")

    def test_drain_empties_queue(self) -> None:
        queue = OutboundQueue()
        queue.push(ChangeRecord(path="a.lua", content="one"))
        self.assertEqual(len(queue.drain()), 1)
        self.assertEqual(queue.drain(), [])
        self.assertEqual(len(queue), 0)

    def test_change_record_accepts_class_name_alias(self) -> None:
        record = ChangeRecord.model_validate({"path": "Workspace.Part", "isScript": True, "className": "Script"})
        self.assertEqual(record.contentTypeHint, "Script")
        record = ChangeRecord.model_validate({"path": "Workspace.Part", "class": "LocalScript"})
        self.assertEqual(record.contentTypeHint, "LocalScript")


if __name__ == "__main__":
    unittest.main()
