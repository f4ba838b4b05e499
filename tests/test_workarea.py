import os
import tempfile
import time
import unittest
from pathlib import Path

from pdf_tools.core.exceptions import WorkAreaFailureError
from pdf_tools.engine.workarea import WORK_AREA_PREFIX, WorkAreaManager


class TestWorkArea(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name) / "root"
        self.manager = WorkAreaManager(self.root, max_bytes=1024)

    def tearDown(self):
        self._tmp.cleanup()

    def test_scoped_area_removed_after_success(self):
        with self.manager.scoped() as area:
            self.assertTrue(area.path.is_dir())
            self.assertEqual(area.path.parent, self.root)
            self.assertTrue(area.path.name.startswith(WORK_AREA_PREFIX))
            area.new_path("in").write_bytes(b"%PDF-")
        self.assertFalse(area.path.exists())
        self.assertEqual(list(self.root.iterdir()), [])

    def test_scoped_area_removed_after_failure(self):
        with self.assertRaises(RuntimeError):
            with self.manager.scoped() as area:
                area.new_path("in").write_bytes(b"data")
                raise RuntimeError("stage failed")
        self.assertFalse(area.path.exists())

    def test_scoped_area_removed_when_interrupted(self):
        with self.assertRaises(KeyboardInterrupt):
            with self.manager.scoped() as area:
                raise KeyboardInterrupt
        self.assertFalse(area.path.exists())

    def test_areas_are_isolated(self):
        with self.manager.scoped() as first, self.manager.scoped() as second:
            self.assertNotEqual(first.path, second.path)
            self.assertNotEqual(first.new_path("out"), first.new_path("out"))

    def test_reserve_enforces_budget(self):
        with self.manager.scoped() as area:
            area.reserve(1000)
            with self.assertRaises(WorkAreaFailureError) as ctx:
                area.reserve(100)
            self.assertEqual(ctx.exception.status_code, 500)
            self.assertEqual(ctx.exception.details["limit_bytes"], 1024)

    def test_account_file_counts_bytes(self):
        with self.manager.scoped() as area:
            path = area.new_path("part")
            path.write_bytes(b"x" * 100)
            self.assertEqual(area.account_file(path), 100)
            self.assertEqual(area.used_bytes, 100)

    def test_acquire_failure_is_work_area_failure(self):
        blocker = Path(self._tmp.name) / "file"
        blocker.write_text("not a directory")
        manager = WorkAreaManager(blocker / "root", max_bytes=1024)
        with self.assertRaises(WorkAreaFailureError):
            manager.acquire()

    def test_sweep_removes_only_stale_areas(self):
        stale = self.manager.acquire()
        fresh = self.manager.acquire()
        unrelated = self.root / "keep-me"
        unrelated.mkdir()
        old = time.time() - 7200
        os.utime(stale.path, (old, old))
        os.utime(unrelated, (old, old))

        removed = self.manager.sweep_stale(max_age_seconds=3600)

        self.assertEqual(removed, 1)
        self.assertFalse(stale.path.exists())
        self.assertTrue(fresh.path.exists())
        self.assertTrue(unrelated.exists())

    def test_sweep_without_root(self):
        manager = WorkAreaManager(Path(self._tmp.name) / "missing", max_bytes=1)
        self.assertEqual(manager.sweep_stale(60), 0)


if __name__ == "__main__":
    unittest.main()
