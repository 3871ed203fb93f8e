"""Tests for buildbench.changes — reversible file mutations."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from bench_test_helpers import write_project

from buildbench.changes import ApplicableChanges, ChangesApplier, NothingToRevertError
from buildbench.dsl import ChangeableFile, FileChange, RevertLastStep, SimpleStep, StopDaemon


def _change(target: str, content: bytes, name: str | None = None) -> FileChange:
    return FileChange(ChangeableFile(name or target, target), "edit", content=content)


class ChangesTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        write_project(self.root, {"a.txt": "A0", "sub/b.txt": "B0"})
        self.applier = ChangesApplier(self.root)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def read(self, rel: str) -> str:
        return (self.root / rel).read_text()


class TestApply(ChangesTestCase):
    def test_apply_then_revert_restores_bytes(self) -> None:
        step = SimpleStep(file_changes=(_change("a.txt", b"A1"), _change("sub/b.txt", b"B1")))
        self.assertTrue(self.applier.apply_step_changes(step))
        self.assertEqual(self.read("a.txt"), "A1")
        self.assertEqual(self.read("sub/b.txt"), "B1")
        self.assertTrue(self.applier.has_applied_changes)

        self.assertTrue(self.applier.apply_step_changes(RevertLastStep()))
        self.assertEqual(self.read("a.txt"), "A0")
        self.assertEqual(self.read("sub/b.txt"), "B0")
        self.assertFalse(self.applier.has_applied_changes)

    def test_new_file_is_deleted_on_revert(self) -> None:
        step = SimpleStep(file_changes=(_change("new/c.txt", b"C"),))
        self.assertTrue(self.applier.apply_step_changes(step))
        self.assertTrue((self.root / "new/c.txt").exists())
        self.applier.revert_applied_changes()
        self.assertFalse((self.root / "new/c.txt").exists())

    def test_same_file_changed_twice_in_one_step(self) -> None:
        step = SimpleStep(file_changes=(_change("a.txt", b"first"), _change("a.txt", b"second")))
        self.assertTrue(self.applier.apply_step_changes(step))
        self.assertEqual(self.read("a.txt"), "second")
        self.applier.revert_applied_changes()
        self.assertEqual(self.read("a.txt"), "A0")

    def test_content_from_variant_file(self) -> None:
        changes_dir = self.root / "changes"
        write_project(changes_dir, {"util/add.txt": "from variant"})
        f = ChangeableFile("util", "a.txt", changes_dir)
        step = SimpleStep(file_changes=(FileChange(f, "add"),))
        self.assertTrue(self.applier.apply_step_changes(step))
        self.assertEqual(self.read("a.txt"), "from variant")

    def test_failed_apply_reverts_partial_step(self) -> None:
        missing = FileChange(ChangeableFile("b", "sub/b.txt"), "x", source=self.root / "nope")
        step = SimpleStep(file_changes=(_change("a.txt", b"A1"), missing))
        with self.assertLogs("buildbench", level="ERROR"):
            self.assertFalse(self.applier.apply_step_changes(step))
        self.assertEqual(self.read("a.txt"), "A0")
        self.assertEqual(self.read("sub/b.txt"), "B0")
        self.assertFalse(self.applier.has_applied_changes)

    def test_stop_daemon_is_noop(self) -> None:
        self.assertTrue(self.applier.apply_step_changes(StopDaemon()))
        self.assertFalse(self.applier.has_applied_changes)


class TestRevert(ChangesTestCase):
    def test_revert_on_empty_stack_raises(self) -> None:
        with self.assertRaises(NothingToRevertError):
            self.applier.apply_step_changes(RevertLastStep())

    def test_revert_is_lifo(self) -> None:
        self.applier.apply_step_changes(SimpleStep(file_changes=(_change("a.txt", b"A1"),)))
        self.applier.apply_step_changes(SimpleStep(file_changes=(_change("a.txt", b"A2"),)))
        self.assertEqual(self.applier.pending_count, 2)

        self.applier.apply_step_changes(RevertLastStep())
        self.assertEqual(self.read("a.txt"), "A1")
        self.applier.apply_step_changes(RevertLastStep())
        self.assertEqual(self.read("a.txt"), "A0")

    def test_revert_all_restores_original_state(self) -> None:
        self.applier.apply_step_changes(SimpleStep(file_changes=(_change("a.txt", b"A1"),)))
        self.applier.apply_step_changes(
            SimpleStep(file_changes=(_change("a.txt", b"A2"), _change("sub/b.txt", b"B2")))
        )
        self.applier.revert_applied_changes()
        self.assertEqual(self.read("a.txt"), "A0")
        self.assertEqual(self.read("sub/b.txt"), "B0")
        self.assertFalse(self.applier.has_applied_changes)

    def test_failed_revert_keeps_record(self) -> None:
        self.applier.apply_step_changes(SimpleStep(file_changes=(_change("a.txt", b"A1"),)))
        with patch.object(Path, "write_bytes", side_effect=OSError("read-only")):
            with self.assertLogs("buildbench", level="WARNING"):
                self.applier.revert_applied_changes()
        self.assertTrue(self.applier.has_applied_changes)
        # A later retry succeeds.
        self.applier.revert_applied_changes()
        self.assertEqual(self.read("a.txt"), "A0")
        self.assertFalse(self.applier.has_applied_changes)

    def test_failed_revert_step_returns_false(self) -> None:
        self.applier.apply_step_changes(SimpleStep(file_changes=(_change("a.txt", b"A1"),)))
        with patch.object(Path, "write_bytes", side_effect=OSError("read-only")):
            with self.assertLogs("buildbench", level="ERROR"):
                self.assertFalse(self.applier.apply_step_changes(RevertLastStep()))
        self.assertEqual(self.applier.pending_count, 1)


class TestApplicableChanges(unittest.TestCase):
    def test_is_reverted(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            record = ApplicableChanges(root, (_change("x.txt", b"X"),))
            self.assertTrue(record.apply())
            self.assertFalse(record.is_reverted)
            self.assertTrue(record.revert())
            self.assertTrue(record.is_reverted)
            self.assertFalse((root / "x.txt").exists())


if __name__ == "__main__":
    unittest.main()
