from __future__ import annotations

import shutil
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterable

from starlette.requests import ClientDisconnect

from .config import INPUT_BASENAME, USER_DIR_PREFIX
from .errors import InputTooLarge, InputWriteError, WorkspaceCreateError
from .security import safe_join


_DIR_MODE = 0o700
_PREPARE_ATTEMPTS = 3


@dataclass(frozen=True)
class Workspace:
    identity: int
    nonce: str
    root: Path

    def path(self, filename: str) -> Path:
        return safe_join(self.root, filename)

    def input_name(self, ext: str) -> str:
        return f"{INPUT_BASENAME}.{ext}"


def _now_epoch() -> float:
    return time.time()


class WorkspaceManager:
    """Per-request working directories under a shared root.

    Layout: ``<root>/user-<identity>/<nonce>/``. The identity directory is
    reused across requests; each request gets its own nonce directory so
    concurrent compiles for one identity never touch the same files.
    """

    def __init__(self, root: Path, max_input_bytes: int):
        self.root = Path(root).resolve()
        self.max_input_bytes = max_input_bytes

    def user_dir(self, identity: int) -> Path:
        return safe_join(self.root, f"{USER_DIR_PREFIX}{identity}")

    def ensure_root(self) -> None:
        self.root.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)

    def prepare(self, identity: int) -> Workspace:
        nonce = uuid.uuid4().hex
        for _ in range(_PREPARE_ATTEMPTS):
            try:
                user_dir = self.user_dir(identity)
                user_dir.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
                ws_root = user_dir / nonce
                ws_root.mkdir(mode=_DIR_MODE)
            except FileNotFoundError:
                # cleanup_expired removed the empty identity dir in between.
                continue
            except (OSError, ValueError) as exc:
                raise WorkspaceCreateError(f"create user dir failed: {exc}") from exc
            return Workspace(identity=identity, nonce=nonce, root=ws_root)
        raise WorkspaceCreateError("create user dir failed: removed concurrently")

    async def write_input(
        self,
        workspace: Workspace,
        input_name: str,
        body: AsyncIterable[bytes],
    ) -> int:
        """Stream ``body`` into ``input_name`` inside the workspace.

        Returns the number of bytes written. A failed write leaves the
        partial file behind; it goes away with the request directory.
        """
        written = 0
        try:
            dest = workspace.path(input_name)
            with dest.open("wb") as f:
                async for chunk in body:
                    if not chunk:
                        continue
                    written += len(chunk)
                    if written > self.max_input_bytes:
                        raise InputTooLarge(f"input exceeds {self.max_input_bytes} bytes")
                    f.write(chunk)
        except ClientDisconnect as exc:
            raise InputWriteError("client disconnected while sending body") from exc
        except (OSError, ValueError) as exc:
            raise InputWriteError(f"cannot write to input file: {exc}") from exc
        return written

    def release(self, workspace: Workspace) -> None:
        shutil.rmtree(workspace.root, ignore_errors=True)

    def cleanup_expired(self, ttl_seconds: float) -> int:
        """Delete request directories not modified within ``ttl_seconds``.

        Empty identity directories are removed too. Returns the number of
        deleted request directories.
        """
        if not self.root.exists():
            return 0

        deleted = 0
        now = _now_epoch()
        for user_dir in self.root.iterdir():
            if not user_dir.is_dir() or not user_dir.name.startswith(USER_DIR_PREFIX):
                continue
            for ws_root in user_dir.iterdir():
                if not ws_root.is_dir():
                    continue
                try:
                    age = now - ws_root.stat().st_mtime
                except OSError:
                    continue
                if age > ttl_seconds:
                    shutil.rmtree(ws_root, ignore_errors=True)
                    deleted += 1
            try:
                user_dir.rmdir()
            except OSError:
                # Not empty or already gone.
                pass
        return deleted

    def destroy_root(self) -> None:
        shutil.rmtree(self.root, ignore_errors=True)


def input_size_hint(content_length: str | None) -> int | None:
    if content_length is None:
        return None
    try:
        size = int(content_length)
    except ValueError:
        return None
    return size if size >= 0 else None
