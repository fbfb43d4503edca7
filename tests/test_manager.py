"""
Unit tests for the model lifecycle manager.
"""

import asyncio
from unittest.mock import Mock

import pytest

from modelhub.errors import (
    ChecksumMismatchError,
    LoadCancelledError,
    LoadFailureError,
    LoadTimeoutError,
    NotRegisteredError,
    UnsupportedFormatError,
)
from modelhub.registry import (
    ArtifactRegistry,
    DEFAULT_ARTIFACTS,
    LoadConfig,
    ModelLifecycleManager,
    ModelLoader,
)

from tests.utils.helpers import StubLoader, make_metadata, write_artifact


@pytest.fixture
def manager(stub_loader, cache, hub_config, clock):
    manager = ModelLifecycleManager(stub_loader, cache, registry=None, config=hub_config, clock=clock)
    manager.register_model(make_metadata("alpha", size_bytes=400))
    manager.register_model(make_metadata("beta", size_bytes=300))
    return manager


def feed_registry(tmp_path, entries):
    session = Mock()
    session.get.return_value.json.return_value = entries
    return ArtifactRegistry(
        registry_path=str(tmp_path / "registry.json"),
        registry_url="https://feed.example.org/models",
        session=session,
    )


class TestRegistration:

    @pytest.mark.asyncio
    async def test_initialize_registers_default_models(self, stub_loader, cache, hub_config):
        registry = ArtifactRegistry(registry_path=hub_config.registry_path)
        manager = ModelLifecycleManager(stub_loader, cache, registry=registry, config=hub_config)

        await manager.initialize()

        assert [m.id for m in manager.get_all_models()] == sorted(a["id"] for a in DEFAULT_ARTIFACTS)
        assert manager.get_health_status() == {"healthy": 0, "loading": 0, "failed": 0, "total": 4}

    def test_register_from_dict(self, manager):
        manager.register_model({"id": "gamma", "format": "npz", "version": "0.3.0"})

        status = manager.get_model_status("gamma")
        assert manager.get_model_metadata("gamma").version == "0.3.0"
        assert (status.is_loaded, status.is_loading, status.load_progress) == (False, False, 0.0)

    def test_register_unknown_format_fails(self, manager):
        with pytest.raises(UnsupportedFormatError):
            manager.register_model({"id": "gamma", "format": "caffe"})
        assert manager.get_model_metadata("gamma") is None

    def test_registering_same_id_twice_is_idempotent(self, manager):
        before = len(manager.get_all_models())

        manager.register_model(make_metadata("alpha", size_bytes=400))
        manager.register_model(make_metadata("alpha", size_bytes=400))

        assert len(manager.get_all_models()) == before
        assert manager.get_model_metadata("alpha").size_bytes == 400
        assert manager.get_model_status("alpha").is_loaded is False

    @pytest.mark.asyncio
    async def test_reregistering_drops_loaded_handle(self, manager):
        await manager.load_model("alpha")

        manager.register_model(make_metadata("alpha", version="2.0.0"))

        assert not manager.is_model_loaded("alpha")
        assert manager.get_model_status("alpha").is_loaded is False


class TestLoading:

    @pytest.mark.asyncio
    async def test_load_success_updates_status_and_memory(self, manager, cache):
        artifact = await manager.load_model("alpha")

        status = manager.get_model_status("alpha")
        assert artifact.artifact_id == "alpha"
        assert (status.is_loaded, status.is_loading, status.load_progress, status.error) == (True, False, 1.0, None)
        assert status.memory_usage == 400
        assert manager.get_memory_usage() == {"total": 400, "by_model": {"alpha": 400}}
        assert await cache.has("alpha")

    @pytest.mark.asyncio
    async def test_second_load_returns_same_handle(self, manager, stub_loader):
        first = await manager.load_model("alpha")
        second = await manager.load_model("alpha")

        assert first is second
        assert stub_loader.calls == ["alpha"]

    @pytest.mark.asyncio
    async def test_unregistered_id(self, manager):
        with pytest.raises(NotRegisteredError):
            await manager.load_model("nope")
        with pytest.raises(KeyError):
            await manager.unload_model("nope")

    @pytest.mark.asyncio
    async def test_status_is_loading_before_first_await(self, manager, stub_loader):
        stub_loader.delay = 0.05

        task = asyncio.ensure_future(manager.load_model("alpha"))
        await asyncio.sleep(0)

        assert manager.get_model_status("alpha").is_loading is True
        assert manager.get_health_status()["loading"] == 1
        await task

    @pytest.mark.asyncio
    async def test_concurrent_loads_coalesce(self, manager, stub_loader):
        stub_loader.delay = 0.05

        results = await asyncio.gather(*(manager.load_model("alpha") for _ in range(5)))

        assert all(r is results[0] for r in results)
        assert stub_loader.calls == ["alpha"]

    @pytest.mark.asyncio
    async def test_failure_reaches_every_caller_and_is_recorded(self, manager, stub_loader):
        stub_loader.error = LoadFailureError("Failed to download model: 503")
        stub_loader.delay = 0.02

        results = await asyncio.gather(
            manager.load_model("alpha"), manager.load_model("alpha"), return_exceptions=True
        )

        status = manager.get_model_status("alpha")
        assert all(isinstance(r, LoadFailureError) for r in results)
        assert results[0] is results[1]
        assert (status.is_loaded, status.is_loading, status.load_progress) == (False, False, 0.0)
        assert "503" in status.error
        assert manager.get_health_status()["failed"] == 1

    @pytest.mark.asyncio
    async def test_retry_after_failure_clears_error(self, manager, stub_loader):
        stub_loader.error = LoadFailureError("boom")
        with pytest.raises(LoadFailureError):
            await manager.load_model("alpha")

        stub_loader.error = None
        await manager.load_model("alpha")

        assert manager.get_model_status("alpha").error is None
        assert manager.get_health_status()["healthy"] == 1

    @pytest.mark.asyncio
    async def test_timeout_cancels_loader(self, manager, stub_loader, hub_config):
        hub_config.load_timeout_seconds = 0.05
        stub_loader.delay = 1.0

        with pytest.raises(LoadTimeoutError):
            await manager.load_model("alpha")

        assert stub_loader.cancelled == ["alpha"]
        assert "timed out" in manager.get_model_status("alpha").error

    @pytest.mark.asyncio
    async def test_offline_disabled_skips_cache_write(self, manager, cache):
        await manager.load_model("alpha", LoadConfig(enable_offline=False))

        assert not await cache.has("alpha")

    @pytest.mark.asyncio
    async def test_reregistration_during_load_uses_new_metadata(self, manager, stub_loader):
        stub_loader.delay = 0.05
        task = asyncio.ensure_future(manager.load_model("alpha"))
        await asyncio.sleep(0.01)

        manager.register_model(make_metadata("alpha", version="2.0.0", size_bytes=500))
        assert manager.get_model_status("alpha").is_loading is True

        artifact = await task

        assert artifact.version == "2.0.0"
        assert manager.get_model_status("alpha").memory_usage == 500
        assert stub_loader.calls == ["alpha", "alpha"]


class TestCacheIntegration:

    @pytest.mark.asyncio
    async def test_cache_hit_skips_loader(self, manager, cache, hub_config, clock):
        await manager.load_model("alpha")

        fresh_loader = StubLoader()
        fresh = ModelLifecycleManager(fresh_loader, cache, config=hub_config, clock=clock)
        fresh.register_model(make_metadata("alpha", size_bytes=400))

        artifact = await fresh.load_model("alpha")

        assert artifact.payload == {"weights": [1.0, 2.0]}
        assert fresh_loader.calls == []
        assert fresh.get_model_status("alpha").load_progress == 1.0

    @pytest.mark.asyncio
    async def test_stale_cached_version_is_ignored(self, manager, cache, hub_config, clock):
        await manager.load_model("alpha")

        fresh_loader = StubLoader()
        fresh = ModelLifecycleManager(fresh_loader, cache, config=hub_config, clock=clock)
        fresh.register_model(make_metadata("alpha", version="2.0.0"))

        artifact = await fresh.load_model("alpha")

        assert artifact.version == "2.0.0"
        assert fresh_loader.calls == ["alpha"]

    @pytest.mark.asyncio
    async def test_expired_cache_entry_triggers_download(self, manager, cache, hub_config, clock):
        await manager.load_model("alpha")
        await manager.unload_model("alpha")
        clock.advance(10)

        await manager.load_model("alpha", LoadConfig(max_cache_age_seconds=5))

        assert manager.loader.calls == ["alpha", "alpha"]


class TestWaitAndCancel:

    @pytest.mark.asyncio
    async def test_wait_for_in_flight_load(self, manager, stub_loader):
        stub_loader.delay = 0.05
        task = asyncio.ensure_future(manager.load_model("alpha"))
        await asyncio.sleep(0)

        artifact = await manager.wait_for_model_load("alpha", timeout_seconds=2)

        assert artifact is await task

    @pytest.mark.asyncio
    async def test_wait_times_out_but_load_continues(self, manager, stub_loader):
        stub_loader.delay = 0.2
        task = asyncio.ensure_future(manager.load_model("alpha"))
        await asyncio.sleep(0)

        with pytest.raises(LoadTimeoutError):
            await manager.wait_for_model_load("alpha", timeout_seconds=0.01)

        await task
        assert manager.is_model_loaded("alpha")

    @pytest.mark.asyncio
    async def test_wait_without_load_fails(self, manager):
        with pytest.raises(LoadFailureError):
            await manager.wait_for_model_load("alpha")

    @pytest.mark.asyncio
    async def test_cancel_load(self, manager, stub_loader):
        stub_loader.delay = 1.0
        task = asyncio.ensure_future(manager.load_model("alpha"))
        await asyncio.sleep(0)

        assert await manager.cancel_load("alpha") is True

        with pytest.raises(LoadCancelledError):
            await task
        assert not manager.is_model_loaded("alpha")
        assert manager.get_model_status("alpha").is_loading is False
        assert await manager.cancel_load("alpha") is False

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_loads(self, manager, stub_loader):
        stub_loader.delay = 1.0
        task = asyncio.ensure_future(manager.load_model("alpha"))
        await asyncio.sleep(0)

        await manager.shutdown()

        with pytest.raises(LoadCancelledError):
            await task
        assert manager.get_model_status("alpha").is_loading is False


class TestMaintenance:

    @pytest.mark.asyncio
    async def test_unload_keeps_cache(self, manager, cache):
        await manager.load_model("alpha")

        await manager.unload_model("alpha")

        status = manager.get_model_status("alpha")
        assert (status.is_loaded, status.memory_usage) == (False, 0)
        assert manager.get_model("alpha") is None
        assert await cache.has("alpha")

    @pytest.mark.asyncio
    async def test_reload_after_unload_is_served_from_cache(self, manager, stub_loader):
        first = await manager.load_model("alpha")
        await manager.unload_model("alpha")
        assert not manager.is_model_loaded("alpha")

        second = await manager.load_model("alpha")

        assert stub_loader.calls == ["alpha"]
        assert manager.is_model_loaded("alpha")
        assert second.version == first.version
        assert second.payload == first.payload

    @pytest.mark.asyncio
    async def test_unload_of_unloaded_model_is_noop(self, manager):
        await manager.unload_model("alpha")
        assert manager.get_loaded_models() == []

    @pytest.mark.asyncio
    async def test_cleanup_unloads_idle_models(self, manager, clock):
        await manager.preload_models(["alpha", "beta"])
        clock.advance(3000)
        assert manager.mark_used("beta") is True
        clock.advance(1000)

        unloaded = await manager.cleanup_unused_models(max_age_seconds=3600)

        assert unloaded == ["alpha"]
        assert manager.get_loaded_models() == ["beta"]

    @pytest.mark.asyncio
    async def test_preload_counts_successes(self, manager):
        loaded = await manager.preload_models(["alpha", "missing", "beta"])

        assert loaded == 2
        assert manager.get_loaded_models() == ["alpha", "beta"]

    @pytest.mark.asyncio
    async def test_get_model_never_loads(self, manager, stub_loader):
        assert manager.get_model("alpha") is None
        assert manager.get_model("unknown") is None
        assert stub_loader.calls == []

    @pytest.mark.asyncio
    async def test_get_model_does_not_change_status(self, manager, clock):
        await manager.load_model("alpha")
        before = manager.get_model_status("alpha")
        clock.advance(600)

        assert manager.get_model("alpha") is not None

        assert manager.get_model_status("alpha") == before
        assert manager.mark_used("beta") is False


class TestUpdates:

    @pytest.mark.asyncio
    async def test_check_for_updates(self, tmp_path, stub_loader, cache, hub_config):
        registry = feed_registry(tmp_path, [
            {"id": "alpha", "format": "json", "version": "2.0.0"},
            {"id": "beta", "format": "json", "version": "1.0.0"},
            {"id": "delta", "format": "json", "version": "1.0.0"},
        ])
        manager = ModelLifecycleManager(stub_loader, cache, registry=registry, config=hub_config)
        manager.register_model(make_metadata("alpha"))
        manager.register_model(make_metadata("beta"))

        updates = await manager.check_for_updates()

        assert [(m.id, m.version) for m in updates] == [("alpha", "2.0.0"), ("delta", "1.0.0")]

    @pytest.mark.asyncio
    async def test_update_model_loads_latest_version(self, tmp_path, stub_loader, cache, hub_config):
        registry = feed_registry(tmp_path, [{"id": "alpha", "format": "json", "version": "2.0.0"}])
        manager = ModelLifecycleManager(stub_loader, cache, registry=registry, config=hub_config)
        manager.register_model(make_metadata("alpha"))
        await manager.load_model("alpha")

        artifact = await manager.update_model("alpha")

        assert artifact.version == "2.0.0"
        assert manager.get_model_metadata("alpha").version == "2.0.0"
        assert (await cache.get("alpha")).metadata.version == "2.0.0"
        assert stub_loader.calls == ["alpha", "alpha"]

    @pytest.mark.asyncio
    async def test_update_without_feed_reloads_current(self, manager, stub_loader):
        await manager.load_model("alpha")

        artifact = await manager.update_model("alpha")

        assert artifact.version == "1.0.0"
        assert stub_loader.calls == ["alpha", "alpha"]


class TestWithRealLoader:

    @pytest.mark.asyncio
    async def test_checksum_failure_surfaces_through_manager(self, tmp_path, cache, hub_config, clock):
        write_artifact(tmp_path / "alpha.json", b"{}")
        loader = ModelLoader(artifact_dir=str(tmp_path))
        manager = ModelLifecycleManager(loader, cache, config=hub_config, clock=clock)
        manager.register_model(make_metadata("alpha", checksum="f" * 64))

        with pytest.raises(ChecksumMismatchError):
            await manager.load_model("alpha")
        assert "Checksum mismatch" in manager.get_model_status("alpha").error

    @pytest.mark.asyncio
    async def test_progress_recorded_in_status(self, tmp_path, cache, hub_config, clock):
        digest = write_artifact(tmp_path / "alpha.json", b'{"ok": true}')
        loader = ModelLoader(artifact_dir=str(tmp_path))
        manager = ModelLifecycleManager(loader, cache, config=hub_config, clock=clock)
        manager.register_model(make_metadata("alpha", checksum=digest))

        artifact = await manager.load_model("alpha")

        assert artifact.payload == {"ok": True}
        assert manager.get_model_status("alpha").load_progress == 1.0
