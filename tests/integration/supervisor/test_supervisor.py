import math
import os
import subprocess
import sys
from pathlib import Path

import anyio
import pytest

from proxyfleet.config import SupervisorConfig
from proxyfleet.exceptions import (
    AlreadyRunningError,
    InstanceNotFoundError,
    NotRunningError,
    RegistryError,
)
from proxyfleet.registry import InMemoryInstanceRegistry, Instance
from proxyfleet.supervisor import EventType, InstanceSupervisor
from tests._helpers import CRASHER, SLEEPER, collect_events, drain, wait_for_event
from tests.conftest import MakeBinary


def _instance(
    instance_id: str,
    binary: Path,
    data_dir: Path,
    *,
    auto_restart: bool = False,
    pid: int | None = None,
) -> Instance:
    return Instance(
        id=instance_id,
        name=f"proxy-{instance_id}",
        binary_path=str(binary),
        data_dir=str(data_dir),
        config_path=str(data_dir / "config.yml"),
        auto_restart=auto_restart,
        pid=pid,
    )


class _UnwritableRegistry(InMemoryInstanceRegistry):
    """In-memory registry whose writes fail once `broken` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.broken = False

    def _persist(self) -> None:
        if self.broken:
            msg = "Failed to write registry file services.json: disk full"
            raise RegistryError(msg, path=Path("services.json"))
        super()._persist()


def _dead_pid() -> int:
    process = subprocess.Popen([sys.executable, "-c", "pass"])  # noqa: S603
    _ = process.wait()
    return process.pid


@pytest.mark.anyio
class TestLifecycle:
    async def test_start_and_stop(
        self,
        make_binary: MakeBinary,
        tmp_path: Path,
        registry: InMemoryInstanceRegistry,
        fast_settings: SupervisorConfig,
    ) -> None:
        registry.add(_instance("a1", make_binary("sleeper", SLEEPER), tmp_path, auto_restart=True))
        supervisor = InstanceSupervisor(registry, config=fast_settings)
        events = supervisor.bus.subscribe(math.inf)

        async with supervisor:
            # auto_restart instances are started on entry
            started = await wait_for_event(events, EventType.INSTANCE_STARTED, instance_id="a1")
            instance = supervisor.get_instance("a1")
            assert instance.pid == started.data["pid"]
            assert instance.last_started is not None
            assert supervisor.snapshot()[0]["running"] is True

            supervisor.stop_instance("a1")
            _ = await wait_for_event(events, EventType.INSTANCE_STOPPED, instance_id="a1")
            exit_event = await wait_for_event(events, EventType.PROCESS_EXIT, instance_id="a1")

            assert exit_event.data["requested"] is True
            assert supervisor.get_instance("a1").pid is None
            assert not supervisor.is_running("a1")
            await anyio.sleep(0.1)
            assert not supervisor.restarts.is_scheduled("a1")
            assert not any(e.type == EventType.AUTO_RESTART_SCHEDULED for e in drain(events))

    async def test_unknown_instance(
        self, registry: InMemoryInstanceRegistry, fast_settings: SupervisorConfig
    ) -> None:
        async with InstanceSupervisor(registry, config=fast_settings) as supervisor:
            with pytest.raises(InstanceNotFoundError, match="Instance nope not found"):
                supervisor.stop_instance("nope")
            with pytest.raises(InstanceNotFoundError):
                _ = await supervisor.start_instance("nope")

    async def test_conflicts(
        self,
        make_binary: MakeBinary,
        tmp_path: Path,
        registry: InMemoryInstanceRegistry,
        fast_settings: SupervisorConfig,
    ) -> None:
        registry.add(_instance("a1", make_binary("sleeper", SLEEPER), tmp_path))

        async with InstanceSupervisor(registry, config=fast_settings) as supervisor:
            with pytest.raises(NotRunningError):
                supervisor.stop_instance("a1")

            _ = await supervisor.start_instance("a1")
            with pytest.raises(AlreadyRunningError):
                _ = await supervisor.start_instance("a1")

    async def test_restart_instance(
        self,
        make_binary: MakeBinary,
        tmp_path: Path,
        registry: InMemoryInstanceRegistry,
        fast_settings: SupervisorConfig,
    ) -> None:
        registry.add(_instance("a1", make_binary("sleeper", SLEEPER), tmp_path))
        supervisor = InstanceSupervisor(registry, config=fast_settings)
        events = supervisor.bus.subscribe(math.inf)

        async with supervisor:
            first = await supervisor.start_instance("a1")
            second = await supervisor.restart_instance("a1")

            restarted = await wait_for_event(events, EventType.INSTANCE_RESTARTED)
            assert restarted.data == {"pid": second}
            assert second != first
            assert supervisor.get_instance("a1").pid == second

    async def test_exit_stops_children_and_clears_pids(
        self,
        make_binary: MakeBinary,
        tmp_path: Path,
        registry: InMemoryInstanceRegistry,
        fast_settings: SupervisorConfig,
    ) -> None:
        registry.add(_instance("a1", make_binary("sleeper", SLEEPER), tmp_path))

        async with InstanceSupervisor(registry, config=fast_settings) as supervisor:
            pid = await supervisor.start_instance("a1")

        instance = registry.get_by_id("a1")
        assert instance is not None
        assert instance.pid is None
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)


@pytest.mark.anyio
class TestAutoRestart:
    async def test_crash_loop_gives_up_after_five_attempts(
        self,
        make_binary: MakeBinary,
        tmp_path: Path,
        registry: InMemoryInstanceRegistry,
        fast_settings: SupervisorConfig,
    ) -> None:
        registry.add(_instance("a1", make_binary("crasher", CRASHER), tmp_path, auto_restart=True))
        supervisor = InstanceSupervisor(registry, config=fast_settings)
        events = supervisor.bus.subscribe(math.inf)

        async with supervisor:
            failed = await wait_for_event(events, EventType.AUTO_RESTART_FAILED, timeout=15)
            await anyio.sleep(0.2)

            assert failed.data == {"attempts": 5}
            assert not supervisor.is_running("a1")

        received = drain(events)
        assert not any(e.type == EventType.AUTO_RESTART_FAILED for e in received)
        assert not any(e.type == EventType.AUTO_RESTART_SCHEDULED for e in received)

    async def test_respawns_are_announced(
        self,
        make_binary: MakeBinary,
        tmp_path: Path,
        registry: InMemoryInstanceRegistry,
        fast_settings: SupervisorConfig,
    ) -> None:
        registry.add(_instance("a1", make_binary("crasher", CRASHER), tmp_path, auto_restart=True))
        supervisor = InstanceSupervisor(registry, config=fast_settings)
        events = supervisor.bus.subscribe(math.inf)

        async with supervisor:
            scheduled = await collect_events(events, EventType.AUTO_RESTART_SCHEDULED, 2)
            respawned = await wait_for_event(events, EventType.INSTANCE_STARTED)

        assert [e.data["attempt"] for e in scheduled] == [1, 2]
        assert [e.data["delayMs"] for e in scheduled] == [10, 20]
        assert respawned.data["automatic"] is True
        messages = [e.message for e in supervisor.get_logs("a1")]
        assert any(m.startswith("Automatically restarted (PID: ") for m in messages)

    async def test_disabling_auto_restart_cancels_pending_respawn(
        self,
        make_binary: MakeBinary,
        tmp_path: Path,
        registry: InMemoryInstanceRegistry,
    ) -> None:
        registry.add(_instance("a1", make_binary("crasher", CRASHER), tmp_path, auto_restart=True))
        settings = SupervisorConfig(backoff_step=5.0, stop_poll_interval=0.01, shutdown_timeout=1.0)
        supervisor = InstanceSupervisor(registry, config=settings)
        events = supervisor.bus.subscribe(math.inf)

        async with supervisor:
            _ = await wait_for_event(events, EventType.AUTO_RESTART_SCHEDULED)
            assert supervisor.restarts.is_scheduled("a1")

            instance = supervisor.update_instance("a1", auto_restart=False)

            assert instance.auto_restart is False
            assert not supervisor.restarts.is_scheduled("a1")
            updated = await wait_for_event(events, EventType.INSTANCE_UPDATED)
            assert updated.data == {"updates": {"autoRestart": False}}


@pytest.mark.anyio
class TestBoot:
    async def test_reconciles_registry(
        self,
        make_binary: MakeBinary,
        tmp_path: Path,
        registry: InMemoryInstanceRegistry,
        fast_settings: SupervisorConfig,
    ) -> None:
        sleeper = make_binary("sleeper", SLEEPER)
        registry.add(_instance("stale", sleeper, tmp_path, pid=_dead_pid()))
        registry.add(_instance("orphan", sleeper, tmp_path, auto_restart=True, pid=os.getpid()))
        registry.add(_instance("missing", tmp_path / "nope", tmp_path, auto_restart=True))
        registry.add(_instance("auto", sleeper, tmp_path, auto_restart=True))

        async with InstanceSupervisor(registry, config=fast_settings) as supervisor:
            assert supervisor.get_instance("stale").pid is None
            assert not supervisor.is_running("stale")
            assert supervisor.get_instance("orphan").pid == os.getpid()
            assert not supervisor.is_running("orphan")
            assert not supervisor.is_running("missing")
            assert supervisor.is_running("auto")


@pytest.mark.anyio
class TestInstanceManagement:
    async def test_remove_running_instance(
        self,
        make_binary: MakeBinary,
        tmp_path: Path,
        registry: InMemoryInstanceRegistry,
        fast_settings: SupervisorConfig,
    ) -> None:
        registry.add(_instance("a1", make_binary("sleeper", SLEEPER), tmp_path))
        supervisor = InstanceSupervisor(registry, config=fast_settings)
        events = supervisor.bus.subscribe(math.inf)

        async with supervisor:
            _ = await supervisor.start_instance("a1")

            await supervisor.remove_instance("a1")

            assert registry.get_by_id("a1") is None
            assert not supervisor.is_running("a1")
            assert supervisor.get_logs("a1") == []
            removed = await wait_for_event(events, EventType.INSTANCE_REMOVED)
            assert removed.instance_id == "a1"
            snapshot = await wait_for_event(events, EventType.INSTANCES)
            assert snapshot.data == {"data": []}
            assert tmp_path.exists()

    async def test_update_instance(
        self, tmp_path: Path, registry: InMemoryInstanceRegistry, fast_settings: SupervisorConfig
    ) -> None:
        registry.add(_instance("a1", tmp_path / "bin", tmp_path))

        async with InstanceSupervisor(registry, config=fast_settings) as supervisor:
            instance = supervisor.update_instance("a1", name="  renamed  ")
            assert instance.name == "renamed"

            with pytest.raises(ValueError, match="No valid fields to update"):
                _ = supervisor.update_instance("a1")

    async def test_read_config(
        self, tmp_path: Path, registry: InMemoryInstanceRegistry, fast_settings: SupervisorConfig
    ) -> None:
        registry.add(_instance("a1", tmp_path / "bin", tmp_path))

        async with InstanceSupervisor(registry, config=fast_settings) as supervisor:
            assert supervisor.read_config("a1") == {}

            _ = (tmp_path / "config.yml").write_text("port: 8080\n")
            assert supervisor.read_config("a1") == {"port": 8080}

            _ = (tmp_path / "config.yml").write_text("port: [oops\n")
            with pytest.raises(ValueError, match="not valid YAML"):
                _ = supervisor.read_config("a1")

    async def test_config_change_is_published(
        self,
        make_binary: MakeBinary,
        tmp_path: Path,
        registry: InMemoryInstanceRegistry,
        fast_settings: SupervisorConfig,
    ) -> None:
        config_path = tmp_path / "config.yml"
        _ = config_path.write_text("port: 1\n")
        registry.add(_instance("a1", make_binary("sleeper", SLEEPER), tmp_path))
        supervisor = InstanceSupervisor(registry, config=fast_settings)
        events = supervisor.bus.subscribe(math.inf)

        async with supervisor:
            _ = await supervisor.start_instance("a1")
            assert supervisor.watcher.watched == {"a1": config_path}
            await anyio.sleep(0.5)

            _ = config_path.write_text("port: 2\n")
            changed = await wait_for_event(events, EventType.CONFIG_CHANGE, timeout=10)

            assert changed.data == {"config": {"port": 2}}

            supervisor.stop_instance("a1")
            assert supervisor.watcher.watched == {}


@pytest.mark.anyio
class TestFailedOperations:
    async def test_stop_without_process_keeps_pending_respawn(
        self,
        make_binary: MakeBinary,
        tmp_path: Path,
        registry: InMemoryInstanceRegistry,
    ) -> None:
        registry.add(_instance("a1", make_binary("crasher", CRASHER), tmp_path, auto_restart=True))
        settings = SupervisorConfig(backoff_step=5.0, stop_poll_interval=0.01, shutdown_timeout=1.0)
        supervisor = InstanceSupervisor(registry, config=settings)
        events = supervisor.bus.subscribe(math.inf)

        async with supervisor:
            _ = await wait_for_event(events, EventType.AUTO_RESTART_SCHEDULED)
            assert supervisor.restarts.is_scheduled("a1")
            assert supervisor.restarts.attempts("a1") == 1

            with pytest.raises(NotRunningError):
                supervisor.stop_instance("a1")

            assert supervisor.restarts.is_scheduled("a1")
            assert supervisor.restarts.attempts("a1") == 1
            assert not any(e.type == EventType.INSTANCE_STOPPED for e in drain(events))

    async def test_start_is_undone_when_pid_cannot_be_saved(
        self,
        make_binary: MakeBinary,
        tmp_path: Path,
        fast_settings: SupervisorConfig,
    ) -> None:
        registry = _UnwritableRegistry()
        registry.add(_instance("a1", make_binary("sleeper", SLEEPER), tmp_path))
        registry.broken = True
        supervisor = InstanceSupervisor(registry, config=fast_settings)
        events = supervisor.bus.subscribe(math.inf)

        async with supervisor:
            with pytest.raises(RegistryError, match="disk full"):
                _ = await supervisor.start_instance("a1")

            assert not supervisor.is_running("a1")
            assert supervisor.get_instance("a1").pid is None
            assert supervisor.watcher.watched == {}
            received = drain(events)
            [exit_event] = [e for e in received if e.type == EventType.PROCESS_EXIT]
            assert exit_event.data["requested"] is True
            assert not any(e.type == EventType.INSTANCE_STARTED for e in received)
            await anyio.sleep(0.1)
            assert not supervisor.restarts.is_scheduled("a1")

        with pytest.raises(ProcessLookupError):
            os.kill(exit_event.data["pid"], 0)

    async def test_restart_is_undone_when_pid_cannot_be_saved(
        self,
        make_binary: MakeBinary,
        tmp_path: Path,
        fast_settings: SupervisorConfig,
    ) -> None:
        registry = _UnwritableRegistry()
        registry.add(_instance("a1", make_binary("sleeper", SLEEPER), tmp_path))

        async with InstanceSupervisor(registry, config=fast_settings) as supervisor:
            first = await supervisor.start_instance("a1")
            registry.broken = True

            with pytest.raises(RegistryError):
                _ = await supervisor.restart_instance("a1")

            assert not supervisor.is_running("a1")
            assert supervisor.watcher.watched == {}
            # The registry keeps the last pid it managed to save
            assert supervisor.get_instance("a1").pid == first


@pytest.mark.anyio
class TestPlayerIps:
    async def test_read_player_ips(
        self, tmp_path: Path, registry: InMemoryInstanceRegistry, fast_settings: SupervisorConfig
    ) -> None:
        registry.add(_instance("a1", tmp_path / "bin", tmp_path))

        async with InstanceSupervisor(registry, config=fast_settings) as supervisor:
            assert supervisor.read_player_ips("a1") == []

            _ = (tmp_path / "playerIP.json").write_text(
                '[{"username": "alex", "ips": [{"ip": "198.51.100.2", "protocol": "udp", "lastSeen": 1}]}]'
            )
            [entry] = supervisor.read_player_ips("a1")
            assert entry["username"] == "alex"
            assert entry["ips"][0]["ip"] == "198.51.100.2"

            _ = (tmp_path / "playerIP.json").write_text("[oops")
            with pytest.raises(ValueError, match="not valid JSON"):
                _ = supervisor.read_player_ips("a1")

            with pytest.raises(InstanceNotFoundError):
                _ = supervisor.read_player_ips("nope")
