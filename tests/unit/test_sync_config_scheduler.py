"""
Configuration and background sync tests

Tests for:
- Config defaults, environment and YAML loading
- Background drain on trigger, including from other threads
- Bounded report history
"""

import asyncio
import tempfile
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest


class TestSyncConfig:
    """Test sync configuration."""

    def test_config_defaults(self):
        """Config has the policy defaults."""
        from offline_sync.config import SyncConfig

        config = SyncConfig()

        assert config.timeout_seconds == 10.0
        assert config.max_retries == 5
        assert config.sync_interval_seconds == 1800
        assert config.fail_fast_on_client_error is False

    def test_config_from_env(self):
        """Config loads from environment variables."""
        from offline_sync.config import SyncConfig

        with patch.dict("os.environ", {
            "OFFLINE_SYNC_BASE_URL": "https://test.example.com",
            "OFFLINE_SYNC_API_KEY": "test-key-123",
            "OFFLINE_SYNC_MAX_RETRIES": "3",
            "OFFLINE_SYNC_FAIL_FAST": "true",
        }):
            config = SyncConfig.from_env()

        assert config.base_url == "https://test.example.com"
        assert config.api_key == "test-key-123"
        assert config.max_retries == 3
        assert config.fail_fast_on_client_error is True

    def test_config_from_env_invalid(self):
        """Malformed numbers raise ConfigError."""
        from offline_sync.config import SyncConfig
        from offline_sync.errors import ConfigError

        with patch.dict("os.environ", {"OFFLINE_SYNC_TIMEOUT": "soon"}):
            with pytest.raises(ConfigError):
                SyncConfig.from_env()

    def test_config_from_yaml(self):
        """Config loads from a YAML file."""
        from offline_sync.config import SyncConfig

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "sync.yaml"
            path.write_text(
                "base_url: https://api.lidacacau.example\n"
                "timeout_seconds: 5\n"
                "max_retries: 3\n"
                "fail_fast_on_client_error: true\n"
            )

            config = SyncConfig.from_yaml(path)

        assert config.base_url == "https://api.lidacacau.example"
        assert config.timeout_seconds == 5
        assert config.max_retries == 3
        assert config.fail_fast_on_client_error is True

    def test_config_yaml_unknown_keys(self):
        """Unknown keys are rejected."""
        from offline_sync.config import SyncConfig
        from offline_sync.errors import ConfigError

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "sync.yaml"
            path.write_text("max_retry: 3\n")

            with pytest.raises(ConfigError):
                SyncConfig.from_yaml(path)

    def test_config_yaml_not_mapping(self):
        """A YAML list is not a config."""
        from offline_sync.config import SyncConfig
        from offline_sync.errors import ConfigError

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "sync.yaml"
            path.write_text("- a\n- b\n")

            with pytest.raises(ConfigError):
                SyncConfig.from_yaml(path)

    @pytest.mark.parametrize("field,value", [
        ("timeout_seconds", 0),
        ("max_retries", 0),
        ("sync_interval_seconds", -1),
        ("base_url", ""),
    ])
    def test_config_validation(self, field, value):
        """Unusable settings are rejected."""
        from offline_sync.config import SyncConfig
        from offline_sync.errors import ConfigError

        with pytest.raises(ConfigError):
            SyncConfig.from_dict({field: value})


def make_offline_coordinator():
    from offline_sync.config import SyncConfig
    from offline_sync.coordinator import SyncCoordinator
    from offline_sync.payloads import JsonPayload
    from offline_sync.store import MemoryStore

    config = SyncConfig(base_url="https://api.example.com", sync_interval_seconds=3600)
    coordinator = SyncCoordinator.from_config(config, MemoryStore())
    coordinator.gateway._client = httpx.Client(
        base_url=config.base_url,
        transport=httpx.MockTransport(lambda request: httpx.Response(201, json={"success": True})),
    )
    coordinator.queue.enqueue(JsonPayload("/api/cacau-precos", {"city": "Uruara"}))
    return coordinator


class TestBackgroundSync:
    """TEST: drains run on connectivity events without blocking callers"""

    def test_sync_now(self):
        """sync_now drains in a worker thread and records the report."""
        from offline_sync.scheduler import BackgroundSync

        coordinator = make_offline_coordinator()
        background = BackgroundSync(coordinator)

        report = asyncio.run(background.sync_now())

        assert report.synced == 1
        assert list(background.reports) == [report]
        assert background.last_report is report
        assert coordinator.pending_count() == 0

    def test_trigger_wakes_loop(self):
        """trigger() causes a drain long before the interval elapses."""
        from offline_sync.scheduler import BackgroundSync

        coordinator = make_offline_coordinator()
        seen = []
        background = BackgroundSync(coordinator, on_report=seen.append)

        async def scenario():
            await background.start_background_sync()
            assert background.running
            background.trigger()
            for _ in range(200):
                if seen:
                    break
                await asyncio.sleep(0.01)
            await background.stop_background_sync()

        asyncio.run(scenario())

        assert len(seen) == 1
        assert seen[0].synced == 1
        assert not background.running

    def test_idle_loop_skips_drain(self):
        """Nothing pending means no drain."""
        from offline_sync.scheduler import BackgroundSync

        coordinator = make_offline_coordinator()
        coordinator.queue.clear()
        background = BackgroundSync(coordinator, interval_seconds=0.01)

        async def scenario():
            await background.start_background_sync()
            await asyncio.sleep(0.05)
            await background.stop_background_sync()

        asyncio.run(scenario())

        assert len(background.reports) == 0
        assert background.last_report is None

    def test_report_history_is_bounded(self):
        """Only the most recent history_limit reports are kept."""
        from offline_sync.payloads import JsonPayload
        from offline_sync.scheduler import BackgroundSync

        coordinator = make_offline_coordinator()
        background = BackgroundSync(coordinator, history_limit=2)

        async def scenario():
            reports = []
            for city in ["Uruara", "Altamira", "Medicilandia"]:
                coordinator.queue.enqueue(JsonPayload("/api/cacau-precos", {"city": city}))
                reports.append(await background.sync_now())
            return reports

        reports = asyncio.run(scenario())

        assert len(background.reports) == 2
        assert list(background.reports) == reports[1:]
        assert background.last_report is reports[-1]

    def test_trigger_from_another_thread(self):
        """trigger() called off the loop thread still wakes the loop."""
        from offline_sync.scheduler import BackgroundSync

        coordinator = make_offline_coordinator()
        seen = []
        background = BackgroundSync(coordinator, on_report=seen.append)

        async def scenario():
            await background.start_background_sync()
            await asyncio.to_thread(background.trigger)
            for _ in range(200):
                if seen:
                    break
                await asyncio.sleep(0.01)
            await background.stop_background_sync()

        asyncio.run(scenario())

        assert len(seen) == 1
        assert seen[0].synced == 1

    def test_trigger_when_stopped_is_ignored(self):
        """trigger() before start or after stop does nothing."""
        from offline_sync.scheduler import BackgroundSync

        background = BackgroundSync(make_offline_coordinator())
        background.trigger()

        async def scenario():
            await background.start_background_sync()
            await background.stop_background_sync()

        asyncio.run(scenario())
        background.trigger()

        assert not background.running
        assert len(background.reports) == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
