"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest

from threadline.config import reset_config
from threadline.config.schema import Config, ToolPolicyConfig
from threadline.threads.log import InMemoryEventLog
from threadline.timeline.projector import TimelineProjector
from tests.utils import StepClock

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch):
    """Keep the real user config and THREADLINE_* variables out of tests."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path_factory.mktemp("xdg")))
    for name in (
        "THREADLINE_LOG",
        "THREADLINE_AUTO_APPROVE_TOOLS",
        "THREADLINE_DISABLE_TOOLS",
        "THREADLINE_DISABLE_ALL_TOOLS",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def event_log() -> InMemoryEventLog:
    return InMemoryEventLog(clock=StepClock())


@pytest.fixture
def projector() -> TimelineProjector:
    return TimelineProjector()


@pytest.fixture
def config() -> Config:
    """Config with default tool policy (everything asks)."""
    return Config(tools=ToolPolicyConfig())
