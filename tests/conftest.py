"""Shared fixtures: a small source tree and a DecoFS serving it."""

from types import SimpleNamespace

import pytest

from audit_logger import AuditLogger
from decofs import DecoFS, DecoFSConfig, MountMode


@pytest.fixture
def source(tmp_path):
    """Source tree with a file, a subdirectory and a symlink."""
    root = tmp_path / "source"
    root.mkdir()
    (root / "hello.txt").write_text("world")
    (root / "sub").mkdir()
    (root / "sub" / "nested.bin").write_bytes(b"\x00" * 10)
    (root / "link").symlink_to("hello.txt")
    return root


@pytest.fixture
def ctx():
    """Stand-in for pyfuse3.RequestContext."""
    return SimpleNamespace(pid=4242, uid=1000, gid=1000, umask=0o022)


@pytest.fixture
def audit():
    return AuditLogger(console_output=False)


@pytest.fixture
def fs(source, audit):
    return DecoFS(str(source), audit=audit)


@pytest.fixture
def read_only_fs(source, audit):
    return DecoFS(
        str(source),
        config=DecoFSConfig(mode=MountMode.READ_ONLY),
        audit=audit,
    )
