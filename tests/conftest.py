import logging
from pathlib import Path

import pytest

from folder_mirror import MirrorConfig, MirrorScheduler


def build_tree(root: Path, layout: dict) -> None:
    """Create ``layout`` under ``root``: str/bytes values are files, dicts are folders."""
    root.mkdir(parents=True, exist_ok=True)
    for name, value in layout.items():
        path = root / name
        if isinstance(value, dict):
            build_tree(path, value)
        elif isinstance(value, bytes):
            path.write_bytes(value)
        else:
            path.write_text(value)


@pytest.fixture
def logger(caplog):
    caplog.set_level(logging.INFO)
    log = logging.getLogger("mirror_tests")
    log.setLevel(logging.INFO)
    return log


@pytest.fixture
def folders(tmp_path):
    source = tmp_path / "source"
    replica = tmp_path / "replica"
    source.mkdir()
    replica.mkdir()
    return source, replica


@pytest.fixture
def make_scheduler(folders, tmp_path, logger):
    source, replica = folders

    def make(**overrides):
        options = dict(
            source_dir=source,
            replica_dir=replica,
            period_sec=1,
            log_file=tmp_path / "sync.log",
        )
        options.update(overrides)
        return MirrorScheduler(MirrorConfig(**options), logger)

    return make


def change_lines(caplog) -> list[str]:
    return [r.getMessage() for r in caplog.records if r.name == "mirror_tests" and hasattr(r, "action")]
