"""Shared fixtures for trendline tests."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Callable, Generator
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
import pytest
from hypothesis import Phase, Verbosity, settings

# =============================================================================
# Hypothesis Configuration
# =============================================================================

# Register Hypothesis profiles for different environments
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.target, Phase.shrink],
)

settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.normal,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.target, Phase.shrink],
    derandomize=True,  # Reproducible in CI
)

settings.register_profile(
    "dev",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.target, Phase.shrink],
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.target, Phase.shrink],
    report_multiple_bugs=False,
)

# Load profile from HYPOTHESIS_PROFILE env var, default to "default"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))

if TYPE_CHECKING:
    from trendline._internal.completion_client import CompletionClient
    from trendline._internal.config import ConfigManager
    from trendline._internal.storage import StorageEngine


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment variables out of settings resolution."""
    for name in (
        "TRENDLINE_PROJECT_ID",
        "TRENDLINE_DATABASE",
        "TRENDLINE_TIMEZONE",
        "TRENDLINE_QUERY_TIMEOUT",
        "TRENDLINE_TRANSLATOR_URL",
        "TRENDLINE_TRANSLATOR_MODEL",
        "TRENDLINE_TRANSLATOR_API_KEY",
        "TRENDLINE_CONFIG_PATH",
        "TRENDLINE_PROJECT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config_path(temp_dir: Path) -> Path:
    """Return path for a temporary config file."""
    return temp_dir / "config.toml"


@pytest.fixture
def config_manager(config_path: Path) -> ConfigManager:
    """Create a ConfigManager with a temporary config file."""
    from trendline._internal.config import ConfigManager

    return ConfigManager(config_path=config_path)


@pytest.fixture
def storage() -> Generator[StorageEngine, None, None]:
    """In-memory store with the events and people tables created."""
    from trendline._internal.storage import StorageEngine

    with StorageEngine.memory() as engine:
        engine.ensure_schema()
        yield engine


# =============================================================================
# Sample data
# =============================================================================


def _make_event(
    name: str,
    distinct_id: str,
    when: datetime,
    insert_id: str | None = None,
    **properties: Any,
) -> dict[str, Any]:
    """Build a stored-format event record (output of transform_event)."""
    return {
        "event_name": name,
        "event_time": when,
        "distinct_id": distinct_id,
        "insert_id": insert_id or f"{name}-{distinct_id}-{when.isoformat()}",
        "properties": properties,
    }


@pytest.fixture
def sample_events() -> list[dict[str, Any]]:
    """A small January 2024 dataset for project proj-1.

    Signups on Jan 1 (u1, u2) and Jan 3 (u3); purchases by u1 (twice on
    Jan 2) and u2 (once on Jan 3), amounts in cents.
    """
    return [
        _make_event("Signup", "u1", datetime(2024, 1, 1, 9), country="US"),
        _make_event("Signup", "u2", datetime(2024, 1, 1, 15), country="CA"),
        _make_event("Signup", "u3", datetime(2024, 1, 3, 12), country="US"),
        _make_event("Purchase", "u1", datetime(2024, 1, 2, 10), amount=1250),
        _make_event("Purchase", "u1", datetime(2024, 1, 2, 18), amount=750),
        _make_event("Purchase", "u2", datetime(2024, 1, 3, 8), amount=500),
    ]


@pytest.fixture
def make_event() -> Callable[..., dict[str, Any]]:
    """Factory for stored-format event records."""
    return _make_event


@pytest.fixture
def sample_people() -> list[dict[str, Any]]:
    """Profiles for the sample users; u3 has no profile."""
    return [
        {"distinct_id": "u1", "properties": {"plan": "pro"}, "last_seen": None},
        {"distinct_id": "u2", "properties": {"plan": "free"}, "last_seen": None},
    ]


@pytest.fixture
def loaded_storage(
    storage: StorageEngine,
    sample_events: list[dict[str, Any]],
    sample_people: list[dict[str, Any]],
) -> StorageEngine:
    """In-memory store holding the sample dataset under proj-1."""
    storage.insert_events("proj-1", sample_events)
    storage.upsert_people("proj-1", sample_people)
    return storage


# =============================================================================
# Translator client fixtures
# =============================================================================


@pytest.fixture
def mock_completion_factory() -> Callable[
    [Callable[[httpx.Request], httpx.Response]], CompletionClient
]:
    """Factory for completion clients backed by a MockTransport.

    Usage:
        def test_something(mock_completion_factory):
            def handler(request):
                return httpx.Response(200, json=completion_body("{}"))

            client = mock_completion_factory(handler)
            with client:
                text = client.complete("prompt")
    """
    from trendline._internal.completion_client import CompletionClient

    def factory(
        handler: Callable[[httpx.Request], httpx.Response],
    ) -> CompletionClient:
        transport = httpx.MockTransport(handler)
        return CompletionClient(
            api_key="test-key",
            base_url="https://translator.test/v1",
            _transport=transport,
        )

    return factory


@pytest.fixture
def completion_body() -> Callable[[str | None], dict[str, Any]]:
    """Build a chat completion response body with one choice."""

    def build(content: str | None) -> dict[str, Any]:
        return {"choices": [{"index": 0, "message": {"content": content}}]}

    return build
