from __future__ import annotations

import pytest

from fakes import make_config


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    for name in ("QG_CONFIG", "QG_ADMIN_TOKEN", "QG_LOG_FILE", "QG_LOG_LEVELS"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _plenty_of_disk(monkeypatch):
    monkeypatch.setattr(
        "qagen.publish.check_disk_space",
        lambda path: {"available_mb": 10_000.0, "sufficient": True},
    )


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)
