"""
Tests for per-request workspaces: layout, body streaming, limits, cleanup.
"""

import asyncio
import os
import stat
import time
from pathlib import Path

import pytest
from starlette.requests import ClientDisconnect

from asyeval_backend.errors import InputTooLarge, InputWriteError, WorkspaceCreateError
from asyeval_backend.workspace import WorkspaceManager, input_size_hint


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


async def _disconnecting():
    yield b"\\documentclass"
    raise ClientDisconnect()


def _write(manager, ws, name, body):
    return asyncio.run(manager.write_input(ws, name, body))


@pytest.fixture
def manager(tmp_path):
    return WorkspaceManager(tmp_path / "root", max_input_bytes=16)


def test_prepare_creates_owner_only_dirs_under_identity(manager):
    ws = manager.prepare(77)

    assert ws.root.is_dir()
    assert ws.root.parent == manager.root / "user-77"
    assert stat.S_IMODE(ws.root.stat().st_mode) == 0o700
    assert stat.S_IMODE(ws.root.parent.stat().st_mode) == 0o700


def _sweep_after_create(monkeypatch, times):
    """Remove user-77 right after it is created, as a concurrent sweep would."""
    original_mkdir = Path.mkdir
    swept = []

    def mkdir(self, *args, **kwargs):
        original_mkdir(self, *args, **kwargs)
        if self.name == "user-77" and len(swept) < times:
            self.rmdir()
            swept.append(self)

    monkeypatch.setattr(Path, "mkdir", mkdir)
    return swept


def test_prepare_survives_identity_dir_swept_concurrently(manager, monkeypatch):
    manager.ensure_root()
    swept = _sweep_after_create(monkeypatch, times=1)

    ws = manager.prepare(77)

    assert len(swept) == 1
    assert ws.root.is_dir()
    assert stat.S_IMODE(ws.root.parent.stat().st_mode) == 0o700


def test_prepare_gives_up_when_identity_dir_keeps_vanishing(manager, monkeypatch):
    manager.ensure_root()
    _sweep_after_create(monkeypatch, times=100)

    with pytest.raises(WorkspaceCreateError):
        manager.prepare(77)


def test_same_identity_gets_distinct_request_dirs(manager):
    first = manager.prepare(77)
    second = manager.prepare(77)

    assert first.root != second.root
    assert first.root.parent == second.root.parent


def test_prepare_wraps_filesystem_errors(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    manager = WorkspaceManager(blocker, max_input_bytes=16)

    with pytest.raises(WorkspaceCreateError):
        manager.prepare(1)


def test_write_input_streams_all_chunks(manager):
    ws = manager.prepare(1)

    written = _write(manager, ws, "input.asy", _chunks(b"draw(", b"(0,0)", b"--(1,1));"))

    assert written == len(b"draw((0,0)--(1,1));")
    assert ws.path("input.asy").read_bytes() == b"draw((0,0)--(1,1));"


def test_write_input_empty_body_creates_empty_file(manager):
    ws = manager.prepare(1)

    assert _write(manager, ws, "input.tex", _chunks()) == 0
    assert ws.path("input.tex").read_bytes() == b""


def test_write_input_enforces_limit(manager):
    ws = manager.prepare(1)

    with pytest.raises(InputTooLarge):
        _write(manager, ws, "input.tex", _chunks(b"x" * 10, b"y" * 10))

    # Partial input stays behind until the directory is released.
    assert ws.path("input.tex").read_bytes() == b"x" * 10


def test_write_input_client_disconnect(manager):
    ws = manager.prepare(1)

    with pytest.raises(InputWriteError):
        _write(manager, ws, "input.tex", _disconnecting())


def test_write_input_wraps_io_errors(manager):
    ws = manager.prepare(1)
    manager.release(ws)

    with pytest.raises(InputWriteError):
        _write(manager, ws, "input.tex", _chunks(b"x"))


def test_release_removes_request_dir_only(manager):
    ws = manager.prepare(5)
    other = manager.prepare(5)

    manager.release(ws)

    assert not ws.root.exists()
    assert other.root.exists()


def test_cleanup_expired_removes_old_request_dirs(manager):
    old = manager.prepare(1)
    fresh = manager.prepare(2)
    past = time.time() - 7200
    os.utime(old.root, (past, past))

    deleted = manager.cleanup_expired(ttl_seconds=3600)

    assert deleted == 1
    assert not old.root.exists()
    assert not old.root.parent.exists()
    assert fresh.root.exists()


def test_cleanup_expired_on_missing_root(tmp_path):
    manager = WorkspaceManager(tmp_path / "missing", max_input_bytes=16)

    assert manager.cleanup_expired(ttl_seconds=0) == 0


def test_destroy_root(manager):
    manager.prepare(1)

    manager.destroy_root()

    assert not manager.root.exists()


@pytest.mark.parametrize(
    "header, expected",
    [(None, None), ("12", 12), ("0", 0), ("-1", None), ("abc", None)],
)
def test_input_size_hint(header, expected):
    assert input_size_hint(header) == expected
