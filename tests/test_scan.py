import logging
import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import build_tree
from folder_mirror import IgnoreMatcher, Snapshot, carry_unreadable, scan_tree


def failing_read(names, error):
    real_read_bytes = Path.read_bytes

    def read_bytes(self):
        if self.name in names:
            raise error
        return real_read_bytes(self)

    return patch.object(Path, "read_bytes", new=read_bytes)


class TestScanTree:

    def test_captures_nested_directories_and_contents(self, tmp_path):
        build_tree(tmp_path, {
            "a.txt": "x",
            "docs": {"guide.md": "# guide", "img": {"logo.bin": b"\x00\x01\xff"}},
            "empty": {},
        })

        snap = scan_tree(tmp_path)

        assert set(snap.directories) == {"docs", "docs/img", "empty"}
        assert snap.files == {
            "a.txt": b"x",
            "docs/guide.md": b"# guide",
            "docs/img/logo.bin": b"\x00\x01\xff",
        }

    def test_parents_come_before_children(self, tmp_path):
        build_tree(tmp_path, {"z": {"y": {"x": {"f.txt": "1"}}}, "a": {"b": {}}})

        snap = scan_tree(tmp_path)

        for i, rel in enumerate(snap.directories):
            parent = rel.rsplit("/", 1)[0] if "/" in rel else None
            if parent:
                assert parent in snap.directories[:i]

    def test_order_is_deterministic(self, tmp_path):
        build_tree(tmp_path, {name: {"f.txt": name} for name in "qwertyuiop"})

        assert scan_tree(tmp_path) == scan_tree(tmp_path)

    def test_empty_root(self, tmp_path):
        assert scan_tree(tmp_path) == Snapshot()

    def test_missing_root_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            scan_tree(tmp_path / "nope")

    def test_file_root_raises(self, tmp_path):
        (tmp_path / "file.txt").write_text("x")
        with pytest.raises(NotADirectoryError):
            scan_tree(tmp_path / "file.txt")

    @pytest.mark.skipif(sys.platform == "win32", reason="symlinks need privileges on Windows")
    def test_symlinks_are_skipped(self, tmp_path):
        build_tree(tmp_path, {"real.txt": "x", "dir": {"inner.txt": "y"}})
        os.symlink(tmp_path / "real.txt", tmp_path / "link.txt")
        os.symlink(tmp_path / "dir", tmp_path / "dirlink")

        snap = scan_tree(tmp_path)

        assert snap.directories == ["dir"]
        assert set(snap.files) == {"real.txt", "dir/inner.txt"}


class TestIgnore:

    def test_no_patterns_ignores_nothing(self):
        assert not IgnoreMatcher().is_ignored("anything.tmp")

    def test_file_and_directory_patterns(self):
        ignore = IgnoreMatcher(["*.tmp", "build/"])

        assert ignore.is_ignored("scratch.tmp")
        assert ignore.is_ignored("deep/down/scratch.tmp")
        assert ignore.is_ignored("build", is_dir=True)
        assert not ignore.is_ignored("build", is_dir=False)
        assert not ignore.is_ignored("keep.txt")

    def test_scan_leaves_out_ignored_paths(self, tmp_path):
        build_tree(tmp_path, {
            "keep.txt": "k",
            "drop.tmp": "d",
            "build": {"out.o": "o", "nested": {"x.txt": "x"}},
            "src": {"main.py": "print()", "cache.tmp": "c"},
        })

        snap = scan_tree(tmp_path, IgnoreMatcher(["*.tmp", "build/"]))

        assert snap.directories == ["src"]
        assert set(snap.files) == {"keep.txt", "src/main.py"}

    def test_files_under_ignored_directory_are_dropped(self, tmp_path):
        build_tree(tmp_path, {"logs": {"today.txt": "t"}, "a.txt": "a"})

        # the negation re-includes the file, but its folder stays out
        snap = scan_tree(tmp_path, IgnoreMatcher(["logs/", "!logs/today.txt"]))

        assert snap.directories == []
        assert set(snap.files) == {"a.txt"}


class TestUnreadablePaths:

    def test_file_vanishing_before_read_is_skipped(self, tmp_path, logger, caplog):
        build_tree(tmp_path, {"a.txt": "a", "gone.txt": "g"})

        with failing_read({"gone.txt"}, FileNotFoundError(2, "No such file or directory")):
            snap = scan_tree(tmp_path, logger=logger)

        assert snap.files == {"a.txt": b"a"}
        assert snap.unreadable == []
        assert not [r for r in caplog.records if r.levelno == logging.ERROR]

    def test_unreadable_file_does_not_stop_scan(self, tmp_path, logger, caplog):
        build_tree(tmp_path, {"a.txt": "a", "secret.bin": b"\x00", "sub": {"b.txt": "b"}})

        with failing_read({"secret.bin"}, PermissionError(13, "Permission denied")):
            snap = scan_tree(tmp_path, logger=logger)

        assert snap.files == {"a.txt": b"a", "sub/b.txt": b"b"}
        assert snap.unreadable == ["secret.bin"]
        errors = [r.getMessage() for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert errors[0].startswith("Could not read file secret.bin in source folder")

    def test_unreadable_subdirectory_does_not_stop_scan(self, tmp_path, logger, caplog):
        build_tree(tmp_path, {"a.txt": "a", "locked": {"inside.txt": "i"}})
        real_scandir = os.scandir

        def scandir(path):
            if os.path.basename(path) == "locked":
                raise PermissionError(13, "Permission denied")
            return real_scandir(path)

        with patch("folder_mirror.os.scandir", side_effect=scandir):
            snap = scan_tree(tmp_path, logger=logger)

        assert snap.directories == ["locked"]
        assert snap.files == {"a.txt": b"a"}
        assert snap.unreadable == ["locked"]
        assert any(r.getMessage().startswith("Could not read directory locked") for r in caplog.records)

    def test_unreadable_root_raises(self, tmp_path, logger):
        real_scandir = os.scandir

        def scandir(path):
            if os.fspath(path) == os.fspath(tmp_path):
                raise PermissionError(13, "Permission denied")
            return real_scandir(path)

        with patch("folder_mirror.os.scandir", side_effect=scandir):
            with pytest.raises(PermissionError):
                scan_tree(tmp_path, logger=logger)


class TestCarryUnreadable:

    def test_nothing_unreadable_returns_current(self):
        current = Snapshot(["d"], {"d/f": b"1"})

        assert carry_unreadable(Snapshot(), current) is current

    def test_previous_state_kept_for_unreadable_paths(self):
        previous = Snapshot(["locked", "locked/deep"], {"locked/deep/x": b"x", "secret.bin": b"s", "old.txt": b"o"})
        current = Snapshot(["locked"], {"new.txt": b"n"}, unreadable=["locked", "secret.bin"])

        merged = carry_unreadable(previous, current)

        assert merged.directories == ["locked", "locked/deep"]
        assert merged.files == {"locked/deep/x": b"x", "new.txt": b"n", "secret.bin": b"s"}
