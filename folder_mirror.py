# /folder_mirror.py
"""
Folder Mirror
- Periodically mirrors a source folder into a replica folder (one-way).
- Each cycle scans the source, diffs it against the previous scan and applies
  the difference to the replica.
- Files are compared by their full byte content.
- Replica changes are applied in a fixed order:
  mkdir, create files, delete files, delete dirs (deepest first), update files.
- Every change is appended to the log file and echoed to the console:
  - Created green
  - Deleted orange
  - Updated light brown
  - failures red
  - file paths white
  - folder paths light brown
- Log file is always plain (no color codes).
- A failed operation is logged and retried on the next cycle; it never blocks
  the rest of the cycle.
- Optional gitignore-style ignore patterns.

Usage
  pip install watchdog pathspec colorama
  python folder_mirror.py SOURCE REPLICA PERIOD LOG_FILE
  python folder_mirror.py "/src" "/dst" 10 sync.log --ignore "*.tmp" --reconcile
"""

from __future__ import annotations

import argparse
import logging
import os
import shutil
import stat
import sys
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Optional

from colorama import just_fix_windows_console
from pathspec import PathSpec
from watchdog.utils.dirsnapshot import DirectorySnapshot

LOGGER_NAME = "folder_mirror"

LOG_FORMAT = "%(asctime)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

CREATED = "Created"
DELETED = "Deleted"
UPDATED = "Updated"

DIRECTORY = "directory"
FILE = "file"

VERBS = {CREATED: "create", DELETED: "delete", UPDATED: "update"}


# -------------------------
# Console styling
# -------------------------

class Ansi:
    RESET = "\x1b[0m"
    RED = "\x1b[31m"
    GREEN = "\x1b[32m"
    ORANGE = "\x1b[38;5;208m"
    WHITE = "\x1b[97m"
    LIGHT_BROWN = "\x1b[33m"


ACTION_COLORS = {
    CREATED: Ansi.GREEN,
    DELETED: Ansi.ORANGE,
    UPDATED: Ansi.LIGHT_BROWN,
}


def _supports_color(stream) -> bool:
    try:
        return hasattr(stream, "isatty") and stream.isatty()
    except (AttributeError, ValueError):
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base

        if record.levelno >= logging.ERROR:
            return f"{Ansi.RED}{base}{Ansi.RESET}"

        action = getattr(record, "action", None)
        is_dir = getattr(record, "is_dir", None)
        path_text = getattr(record, "path_text", None)

        if action and action in base:
            action_color = ACTION_COLORS.get(action, "")
            base = base.replace(action, f"{action_color}{action}{Ansi.RESET}", 1)

        if path_text and path_text in base:
            pcolor = Ansi.LIGHT_BROWN if is_dir else Ansi.WHITE
            base = base.replace(path_text, f"{pcolor}{path_text}{Ansi.RESET}")

        return base


def setup_logger(log_file: Path, name: str = LOGGER_NAME) -> logging.Logger:
    """Logger writing to ``log_file`` (appending) and to stdout."""
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    if logger.handlers:
        return logger

    just_fix_windows_console()

    fh = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    fh.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    fh.setLevel(logging.INFO)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(logging.INFO)
    ch.setFormatter(ColorizingFormatter(use_color=_supports_color(sys.stdout), fmt=LOG_FORMAT, datefmt=DATE_FORMAT))

    logger.addHandler(fh)
    logger.addHandler(ch)
    return logger


def log_change(
    logger: logging.Logger,
    action: str,
    kind: str,
    rel_path: str,
    error: Optional[BaseException] = None,
) -> None:
    extra = {"action": action, "path_text": rel_path, "is_dir": kind == DIRECTORY}
    if error is None:
        logger.info("%s %s %s in replica folder.", action, kind, rel_path, extra=extra)
    else:
        logger.error(
            "Failed to %s %s %s in replica folder: %s",
            VERBS[action], kind, rel_path, error,
            extra=extra,
        )


# -------------------------
# Snapshots
# -------------------------

@dataclass
class Snapshot:
    """Directories and file contents of a tree, keyed by relative POSIX path."""

    directories: list[str] = field(default_factory=list)
    files: dict[str, bytes] = field(default_factory=dict)
    # paths below the root that exist but could not be read
    unreadable: list[str] = field(default_factory=list)


class IgnoreMatcher:
    def __init__(self, patterns: list[str] | tuple[str, ...] = ()):
        self.patterns = list(patterns)
        self.spec = PathSpec.from_lines("gitwildmatch", self.patterns)

    def is_ignored(self, rel_posix: str, is_dir: bool = False) -> bool:
        if not self.patterns:
            return False
        if is_dir and not rel_posix.endswith("/"):
            rel_posix += "/"
        return self.spec.match_file(rel_posix)


def tree_order(rel_posix: str) -> tuple[str, ...]:
    # a parent's components are a prefix of its children's, so it sorts first
    return PurePosixPath(rel_posix).parts


def _parent_of(rel_posix: str) -> str:
    return PurePosixPath(rel_posix).parent.as_posix()


def _is_under(rel_posix: str, prefixes: list[str]) -> bool:
    return any(rel_posix == p or rel_posix.startswith(p + "/") for p in prefixes)


def scan_tree(
    root: Path,
    ignore: Optional[IgnoreMatcher] = None,
    logger: Optional[logging.Logger] = None,
) -> Snapshot:
    """Capture every directory and regular file under ``root``.

    Symbolic links are not followed and, like other special files, are left
    out. Raises ``OSError`` when the root itself cannot be read. A directory or
    file below the root that cannot be read is logged and listed in
    ``Snapshot.unreadable`` instead.
    """
    logger = logger or logging.getLogger(LOGGER_NAME)
    root = Path(root)
    if not root.is_dir():
        if not root.exists():
            raise FileNotFoundError(f"No such directory: {root}")
        raise NotADirectoryError(f"Not a directory: {root}")

    root_text = os.fspath(root)
    unreadable: list[str] = []

    def listdir(path):
        try:
            with os.scandir(path) as entries:
                return list(entries)
        except OSError as e:
            if path == root_text:
                raise
            rel = Path(path).relative_to(root).as_posix()
            logger.error("Could not read directory %s in source folder: %s", rel, e)
            unreadable.append(rel)
            return []

    listing = DirectorySnapshot(root_text, recursive=True, stat=os.lstat, listdir=listdir)

    found_dirs: list[str] = []
    found_files: list[str] = []
    for path in listing.paths:
        if path == root_text:
            continue
        mode = listing.stat_info(path).st_mode
        rel = Path(path).relative_to(root).as_posix()
        if stat.S_ISDIR(mode):
            if ignore is None or not ignore.is_ignored(rel, is_dir=True):
                found_dirs.append(rel)
        elif stat.S_ISREG(mode):
            if ignore is None or not ignore.is_ignored(rel, is_dir=False):
                found_files.append(rel)

    # drop anything whose parent was left out so the tree stays connected
    kept_dirs = {"."}
    directories = []
    for rel in sorted(found_dirs, key=tree_order):
        if _parent_of(rel) in kept_dirs:
            kept_dirs.add(rel)
            directories.append(rel)

    files: dict[str, bytes] = {}
    for rel in sorted(found_files, key=tree_order):
        if _parent_of(rel) not in kept_dirs:
            continue
        try:
            files[rel] = (root / rel).read_bytes()
        except FileNotFoundError:
            continue  # removed while scanning; the next cycle sees it gone
        except OSError as e:
            logger.error("Could not read file %s in source folder: %s", rel, e)
            unreadable.append(rel)

    return Snapshot(directories=directories, files=files, unreadable=sorted(unreadable, key=tree_order))


def carry_unreadable(previous: Snapshot, current: Snapshot) -> Snapshot:
    """``current`` with the previous state restored for paths it could not read.

    Leaves the replica copies of unreadable paths alone until they can be read
    again, instead of deleting them.
    """
    if not current.unreadable:
        return current

    directories = list(current.directories)
    known_dirs = set(directories)
    files = dict(current.files)

    for rel in previous.directories:
        if rel not in known_dirs and rel not in files and _is_under(rel, current.unreadable):
            directories.append(rel)
            known_dirs.add(rel)
    for rel, data in previous.files.items():
        if rel not in files and rel not in known_dirs and _is_under(rel, current.unreadable):
            files[rel] = data

    return Snapshot(
        directories=sorted(directories, key=tree_order),
        files={rel: files[rel] for rel in sorted(files, key=tree_order)},
        unreadable=list(current.unreadable),
    )


# -------------------------
# Diff
# -------------------------

@dataclass
class ChangeSet:
    created_directories: list[str] = field(default_factory=list)
    deleted_directories: list[str] = field(default_factory=list)
    created_files: list[str] = field(default_factory=list)
    deleted_files: list[str] = field(default_factory=list)
    modified_files: list[str] = field(default_factory=list)
    # bytes to write for every created or modified file
    contents: dict[str, bytes] = field(default_factory=dict)

    def __len__(self) -> int:
        return (
            len(self.created_directories)
            + len(self.deleted_directories)
            + len(self.created_files)
            + len(self.deleted_files)
            + len(self.modified_files)
        )

    @property
    def is_empty(self) -> bool:
        return len(self) == 0


def diff_snapshots(previous: Snapshot, current: Snapshot) -> ChangeSet:
    """Operations that turn a replica matching ``previous`` into ``current``.

    A path that switched between file and directory is reported only as the
    creation of its new kind; applying the creation replaces the old entry.
    """
    prev_dirs = set(previous.directories)
    cur_dirs = set(current.directories)

    created_directories = [d for d in current.directories if d not in prev_dirs]
    deleted_directories = sorted(
        (d for d in previous.directories if d not in cur_dirs and d not in current.files),
        key=tree_order,
        reverse=True,
    )

    created_files = []
    modified_files = []
    for rel, data in current.files.items():
        if rel not in previous.files:
            created_files.append(rel)
        elif previous.files[rel] != data:
            modified_files.append(rel)

    deleted_files = [
        rel for rel in previous.files
        if rel not in current.files and rel not in cur_dirs
    ]

    contents = {rel: current.files[rel] for rel in created_files + modified_files}

    return ChangeSet(
        created_directories=created_directories,
        deleted_directories=deleted_directories,
        created_files=created_files,
        deleted_files=deleted_files,
        modified_files=modified_files,
        contents=contents,
    )


# -------------------------
# Replica updates
# -------------------------

@dataclass
class Outcome:
    action: str
    kind: str
    path: str
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


class MirrorExecutor:
    """Applies change sets to the replica root, one logged operation at a time."""

    def __init__(self, replica_root: Path, logger: logging.Logger):
        self.replica_root = Path(replica_root)
        self.logger = logger

    def apply(self, changes: ChangeSet) -> list[Outcome]:
        outcomes = []
        for rel in changes.created_directories:
            outcomes.append(self._attempt(CREATED, DIRECTORY, rel, self._make_dir))
        for rel in changes.created_files:
            outcomes.append(self._attempt(CREATED, FILE, rel, self._write_file, changes.contents[rel]))
        for rel in changes.deleted_files:
            outcomes.append(self._attempt(DELETED, FILE, rel, self._remove_file))
        # only after the file deletions, so each directory is already emptied
        for rel in changes.deleted_directories:
            outcomes.append(self._attempt(DELETED, DIRECTORY, rel, self._remove_dir))
        for rel in changes.modified_files:
            outcomes.append(self._attempt(UPDATED, FILE, rel, self._write_file, changes.contents[rel]))
        return outcomes

    def _attempt(self, action: str, kind: str, rel: str, operation, *args) -> Outcome:
        target = self.replica_root / rel
        try:
            operation(target, *args)
        except OSError as e:
            log_change(self.logger, action, kind, rel, error=e)
            return Outcome(action, kind, rel, error=e)
        log_change(self.logger, action, kind, rel)
        return Outcome(action, kind, rel)

    def _make_dir(self, target: Path) -> None:
        if target.is_symlink() or (target.exists() and not target.is_dir()):
            target.unlink()
        target.mkdir(parents=True, exist_ok=True)

    def _write_file(self, target: Path, data: bytes) -> None:
        if target.is_symlink():
            target.unlink()
        elif target.is_dir():
            shutil.rmtree(target)
        ensure_parent(target)
        target.write_bytes(data)

    def _remove_file(self, target: Path) -> None:
        try:
            target.unlink()
        except (FileNotFoundError, NotADirectoryError):
            pass  # already gone with a replaced parent

    def _remove_dir(self, target: Path) -> None:
        if target.is_symlink():
            target.unlink()
        elif target.is_dir():
            shutil.rmtree(target)


# -------------------------
# Scheduler
# -------------------------

@dataclass(frozen=True)
class MirrorConfig:
    source_dir: Path
    replica_dir: Path
    period_sec: int
    log_file: Path
    ignore_patterns: tuple[str, ...] = ()
    reconcile: bool = False


def retain_snapshot(previous: Snapshot, current: Snapshot, outcomes: list[Outcome]) -> Snapshot:
    """Snapshot the next cycle diffs against.

    Paths whose replica operation failed keep their previous state, so the
    next cycle derives the same operation again.
    """
    directories = list(current.directories)
    files = dict(current.files)
    written = [o.path for o in outcomes if o.ok and o.action != DELETED]

    for outcome in outcomes:
        if outcome.ok:
            continue
        rel = outcome.path
        if outcome.kind == DIRECTORY:
            if outcome.action == CREATED:
                # writing anything below it created the folder as a parent
                if not any(p.startswith(rel + "/") for p in written):
                    directories.remove(rel)
            elif rel not in directories:
                directories.append(rel)
        elif rel in previous.files:
            files[rel] = previous.files[rel]
        else:
            files.pop(rel, None)

    return Snapshot(directories=directories, files=files)


class MirrorScheduler(threading.Thread):
    def __init__(
        self,
        config: MirrorConfig,
        logger: logging.Logger,
        stop_event: Optional[threading.Event] = None,
    ):
        super().__init__(daemon=True, name="folder-mirror")
        self.config = config
        self.logger = logger
        self.stop_event = stop_event or threading.Event()
        self.ignore = IgnoreMatcher(config.ignore_patterns)
        self.executor = MirrorExecutor(config.replica_dir, logger)
        self.cycles = 0
        self._previous: Optional[Snapshot] = None
        self._cycle_active = threading.Event()

    @property
    def previous(self) -> Optional[Snapshot]:
        return self._previous

    @property
    def is_running(self) -> bool:
        return self._cycle_active.is_set()

    def baseline(self) -> Snapshot:
        if self.config.reconcile:
            return scan_tree(self.config.replica_dir, self.ignore, self.logger)
        return Snapshot()

    def run_cycle(self) -> ChangeSet:
        """Scan, diff and apply once. Scan errors propagate, leaving state as it was."""
        self._cycle_active.set()
        try:
            previous = self._previous if self._previous is not None else self.baseline()
            current = carry_unreadable(previous, scan_tree(self.config.source_dir, self.ignore, self.logger))
            changes = diff_snapshots(previous, current)
            outcomes = self.executor.apply(changes)
            self._previous = retain_snapshot(previous, current, outcomes)
            self.cycles += 1
            return changes
        finally:
            self._cycle_active.clear()

    def run(self) -> None:
        self.logger.info(
            "Mirroring %s to %s every %ss.",
            self.config.source_dir, self.config.replica_dir, self.config.period_sec,
        )
        # first cycle runs right away, not one period after start
        while not self.stop_event.is_set():
            start = time.monotonic()
            try:
                self.run_cycle()
            except OSError as e:
                self.logger.error("Cycle aborted, could not scan folders: %s", e)

            elapsed = time.monotonic() - start
            self.stop_event.wait(max(0.0, self.config.period_sec - elapsed))
        self.logger.info("Mirroring stopped.")

    def stop(self) -> None:
        self.stop_event.set()


# -------------------------
# Config / CLI
# -------------------------

def positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a whole number of seconds: {text!r}")
    if value < 1:
        raise argparse.ArgumentTypeError(f"period must be at least 1 second, got {value}")
    return value


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="folder-mirror",
        description="Periodically mirror a source folder into a replica folder.",
    )
    p.add_argument("source", help="Folder to mirror (source).")
    p.add_argument("replica", help="Folder kept identical to the source (replica).")
    p.add_argument("period", type=positive_int, help="Seconds between synchronization cycles.")
    p.add_argument("log_file", help="File every replica change is appended to.")
    p.add_argument(
        "--ignore", action="append", default=[], metavar="PATTERN",
        help="gitignore-style pattern to leave out of the mirror (repeatable).",
    )
    p.add_argument(
        "--reconcile", action="store_true",
        help="Compare the first cycle against the replica's actual contents instead of an empty tree.",
    )
    return p.parse_args(argv)


def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.resolve().relative_to(parent.resolve())
        return True
    except ValueError:
        return False


def validate_paths(source: Path, replica: Path, log_file: Path) -> tuple[Path, Path, Path]:
    source = source.expanduser().resolve()
    replica = replica.expanduser().resolve()
    log_file = log_file.expanduser().resolve()

    if not source.exists() or not source.is_dir():
        raise ValueError(f"Source folder does not exist or is not a folder: {source}")
    if source == replica:
        raise ValueError("Source and replica folders must be different.")
    if _is_subpath(replica, source):
        raise ValueError("Replica folder must NOT be inside source folder (would cause loops).")
    if _is_subpath(source, replica):
        raise ValueError("Source folder must NOT be inside replica folder (would cause confusion).")
    if _is_subpath(log_file, source) or _is_subpath(log_file, replica):
        raise ValueError("Log file must be outside the source and replica folders.")

    replica.mkdir(parents=True, exist_ok=True)
    return source, replica, log_file


def build_config(args: argparse.Namespace) -> MirrorConfig:
    source, replica, log_file = validate_paths(Path(args.source), Path(args.replica), Path(args.log_file))
    return MirrorConfig(
        source_dir=source,
        replica_dir=replica,
        period_sec=args.period,
        log_file=log_file,
        ignore_patterns=tuple(args.ignore),
        reconcile=args.reconcile,
    )


def wait_for_exit(stop_event: threading.Event) -> None:
    """Block until a line is entered, stdin closes and Ctrl+C follows, or the event is set."""
    print("\nPress Enter to exit the application...\n")
    try:
        if not sys.stdin.readline():
            # no console attached; keep running until interrupted
            while not stop_event.is_set():
                time.sleep(0.5)
    except KeyboardInterrupt:
        pass


# -------------------------
# Main
# -------------------------

def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])

    try:
        cfg = build_config(args)
    except ValueError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2

    try:
        logger = setup_logger(cfg.log_file)
    except OSError as e:
        print(f"Could not open log file {cfg.log_file}: {e}", file=sys.stderr)
        return 2

    logger.info("Source : %s", cfg.source_dir)
    logger.info("Replica: %s", cfg.replica_dir)

    scheduler = MirrorScheduler(cfg, logger)
    scheduler.start()
    logger.info("The application started at %s", time.strftime("%H:%M:%S"))

    try:
        wait_for_exit(scheduler.stop_event)
    finally:
        logger.info("Terminating the application...")
        scheduler.stop()
        scheduler.join()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
