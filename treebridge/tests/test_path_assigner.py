import tempfile
import unittest
from pathlib import Path

from treebridge.errors import AccessDenied
from treebridge.sync.path_assigner import PathAssigner, content_type_from_filename, sanitize_segment


class PathAssignerResolveTests(unittest.TestCase):
    def setUp(self) -> None:
        self.assigner = PathAssigner(Path("/tmp/unused-root"))

    def test_script_extensions_follow_class_hint(self) -> None:
        self.assertEqual(self.assigner.resolve_path("a", "Workspace.Part", True, "Script"), "Workspace/Part.server.lua")
        self.assertEqual(self.assigner.resolve_path("b", "StarterPlayer.Hud", True, "LocalScript"), "StarterPlayer/Hud.client.lua")
        self.assertEqual(self.assigner.resolve_path("c", "ReplicatedStorage.Util", True, "ModuleScript"), "ReplicatedStorage/Util.lua")
        self.assertEqual(self.assigner.resolve_path("d", "ReplicatedStorage.Other", True, None), "ReplicatedStorage/Other.lua")

    def test_non_script_gets_no_extension(self) -> None:
        self.assertEqual(self.assigner.resolve_path("a", "Workspace.Model", False, "Model"), "Workspace/Model")

    def test_segments_are_sanitized(self) -> None:
        self.assertEqual(sanitize_segment("Bad/Name:*?"), "BadName")
        path = self.assigner.resolve_path("a", "Work/space.My Part-1_x", True, "Script")
        self.assertEqual(path, "Workspace/My Part-1_x.server.lua")

    def test_traversal_segments_collapse(self) -> None:
        path = self.assigner.resolve_path("a", "..Workspace...Part", True, None)
        self.assertEqual(path, "Workspace/Part.lua")

    def test_empty_name_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.assigner.resolve_path("a", "...", True, None)

    def test_same_identifier_resolves_deterministically(self) -> None:
        first = self.assigner.resolve_path("node-1", "Workspace.Part", True, "Script")
        self.assigner.resolve_path("node-2", "Workspace.Other", True, "Script")
        self.assigner.resolve_path("node-3", "Lighting.Thing", False, None)
        again = self.assigner.resolve_path("node-1", "Workspace.Part", True, "Script")
        self.assertEqual(first, again)
        self.assertEqual(self.assigner.identifier_for(first), "node-1")

    def test_collision_transfers_ownership(self) -> None:
        path_a = self.assigner.resolve_path("A", "Workspace.Part", True, "Script")
        path_b = self.assigner.resolve_path("B", "Workspace.Part", True, "Script")

        self.assertEqual(path_a, path_b)
        self.assertEqual(self.assigner.identifier_for(path_b), "B")
        self.assertEqual(self.assigner.path_for("B"), path_b)
        self.assertIsNone(self.assigner.path_for("A"))
        self.assertEqual(len(self.assigner), 1)

    def test_reassignment_drops_old_reverse_entry(self) -> None:
        old = self.assigner.resolve_path("A", "Workspace.Part", True, "Script")
        new = self.assigner.resolve_path("A", "Workspace.Renamed", True, "Script")

        self.assertNotEqual(old, new)
        self.assertIsNone(self.assigner.identifier_for(old))
        self.assertEqual(self.assigner.identifier_for(new), "A")

    def test_class_change_moves_to_new_extension(self) -> None:
        self.assigner.resolve_path("A", "Workspace.Part", True, "Script")
        moved = self.assigner.resolve_path("A", "Workspace.Part", True, "LocalScript")
        self.assertEqual(moved, "Workspace/Part.client.lua")
        self.assertIsNone(self.assigner.identifier_for("Workspace/Part.server.lua"))

    def test_content_type_from_filename(self) -> None:
        self.assertEqual(content_type_from_filename("a/b.server.lua"), "Script")
        self.assertEqual(content_type_from_filename("a/b.client.lua"), "LocalScript")
        self.assertEqual(content_type_from_filename("a/b.lua"), "ModuleScript")


class PathAssignerWriteTests(unittest.TestCase):
    def test_write_node_creates_nested_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            assigner = PathAssigner(root)
            seen: list[str] = []

            relative = assigner.write_node("guid-1", "Workspace.Part", True, "Script", "X", before_write=seen.append)

            self.assertEqual(relative, "Workspace/Part.server.lua")
            self.assertEqual((root / "Workspace" / "Part.server.lua").read_text(encoding="utf-8"), "X")
            self.assertEqual(seen, ["Workspace/Part.server.lua"])

    def test_write_relative_rejects_escape(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir) / "project"
            root.mkdir()
            assigner = PathAssigner(root)

            with self.assertRaises(AccessDenied):
                assigner.write_relative("../outside.lua", "nope")
            with self.assertRaises(AccessDenied):
                assigner.write_relative(str(Path(tmpdir) / "abs.lua"), "nope")
            self.assertFalse((Path(tmpdir) / "outside.lua").exists())

    def test_delete_node_removes_file_and_mapping(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            assigner = PathAssigner(root)
            relative = assigner.write_node("guid-1", "Workspace.Part", True, "Script", "X")

            deleted = assigner.delete_node("guid-1", "Workspace.Part", True, "Script")

            self.assertEqual(deleted, relative)
            self.assertFalse((root / relative).exists())
            self.assertIsNone(assigner.path_for("guid-1"))
            self.assertIsNone(assigner.identifier_for(relative))

    def test_delete_unknown_node_is_not_an_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            assigner = PathAssigner(Path(tmpdir))
            self.assertEqual(assigner.delete_node("ghost", "Workspace.Ghost", True, None), "Workspace/Ghost.lua")


if __name__ == "__main__":
    unittest.main()
