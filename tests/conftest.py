from __future__ import annotations

import pytest

from asyeval_backend.config import Settings


TEST_SECRET = "test-secret-not-for-production"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_path=str(tmp_path / "usage.sqlite"),
        secret_key=TEST_SECRET,
        workspaces_root=tmp_path / "workspaces",
        step_timeout_seconds=5.0,
        max_input_bytes=4096,
        cors_origins=["http://localhost:5173"],
        log_level="DEBUG",
    )
