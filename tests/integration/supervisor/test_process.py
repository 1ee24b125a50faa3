from pathlib import Path

import anyio
import pytest

from proxyfleet.exceptions import AlreadyRunningError, NotRunningError, SpawnError
from proxyfleet.supervisor import EventBus, EventType, LogChannel, ProcessSupervisor
from tests._helpers import CRASHER, SLEEPER, STUBBORN, wait_for_event
from tests.conftest import MakeBinary

CHATTY = """
for n in range(1500):
    print(f"line {n}", flush=True)
"""


def _supervisor(bus: EventBus, **overrides: float) -> ProcessSupervisor:
    settings: dict[str, float] = {
        "stop_poll_interval": 0.01,
        "stop_timeout": 1.0,
        "kill_grace": 0.5,
        "shutdown_timeout": 1.0,
    }
    settings.update(overrides)
    return ProcessSupervisor(bus, **settings)


async def _wait_for_log(processes: ProcessSupervisor, instance_id: str, message: str) -> None:
    with anyio.fail_after(5):
        while not any(e.message == message for e in processes.get_logs(instance_id)):
            await anyio.sleep(0.01)


@pytest.mark.anyio
class TestStartStop:
    async def test_start_captures_output_and_stop_reports_signal(
        self, make_binary: MakeBinary, tmp_path: Path
    ) -> None:
        bus = EventBus()
        events = bus.subscribe()
        binary = make_binary("sleeper", SLEEPER)

        async with _supervisor(bus) as processes:
            pid = await processes.start("a1", binary, tmp_path)

            assert processes.is_running("a1")
            assert processes.get_pid("a1") == pid
            await _wait_for_log(processes, "a1", "ready")

            processes.stop("a1")
            exit_event = await wait_for_event(events, EventType.PROCESS_EXIT, instance_id="a1")

            assert exit_event.data == {"code": None, "signal": "SIGTERM", "pid": pid, "requested": True}
            assert not processes.is_running("a1")
            messages = [e.message for e in processes.get_logs("a1")]
            assert messages[0] == f"Process started (PID: {pid})"
            assert "Stopping process (force: false)" in messages
            assert messages[-1] == "Process exited with code None, signal SIGTERM"

    async def test_exit_code_and_stderr_are_recorded(
        self, make_binary: MakeBinary, tmp_path: Path
    ) -> None:
        bus = EventBus()
        events = bus.subscribe()
        binary = make_binary("crasher", CRASHER)

        async with _supervisor(bus) as processes:
            _ = await processes.start("a1", binary, tmp_path)
            exit_event = await wait_for_event(events, EventType.PROCESS_EXIT)

            assert exit_event.data["code"] == 3
            assert exit_event.data["signal"] is None
            assert exit_event.data["requested"] is False
            stderr = [e for e in processes.get_logs("a1") if e.channel is LogChannel.STDERR]
            assert [e.message for e in stderr] == ["boom"]

    async def test_blank_lines_are_not_recorded(
        self, make_binary: MakeBinary, tmp_path: Path
    ) -> None:
        bus = EventBus()
        events = bus.subscribe()
        binary = make_binary("spacer", 'print("  first  \\n\\n   \\n\\tsecond", flush=True)\n')

        async with _supervisor(bus) as processes:
            _ = await processes.start("a1", binary, tmp_path)
            _ = await wait_for_event(events, EventType.PROCESS_EXIT)

            stdout = [e for e in processes.get_logs("a1") if e.channel is LogChannel.STDOUT]
            assert [e.message for e in stdout] == ["first", "second"]

    async def test_output_events_precede_exit(self, make_binary: MakeBinary, tmp_path: Path) -> None:
        bus = EventBus()
        events = bus.subscribe()
        binary = make_binary("crasher", CRASHER)

        async with _supervisor(bus) as processes:
            _ = await processes.start("a1", binary, tmp_path)
            order: list[str] = []
            with anyio.fail_after(5):
                async for event in events:
                    order.append(str(event.data.get("message", event.type)))
                    if event.type == EventType.PROCESS_EXIT:
                        break

        assert order.index("boom") < order.index("processExit")
        assert order[-2] == "Process exited with code 3, signal None"

    async def test_force_stop_kills(self, make_binary: MakeBinary, tmp_path: Path) -> None:
        bus = EventBus()
        events = bus.subscribe()
        binary = make_binary("stubborn", STUBBORN)

        async with _supervisor(bus) as processes:
            _ = await processes.start("a1", binary, tmp_path)
            await _wait_for_log(processes, "a1", "ready")

            processes.stop("a1", force=True)
            exit_event = await wait_for_event(events, EventType.PROCESS_EXIT)

            assert exit_event.data["signal"] == "SIGKILL"

    async def test_stop_when_not_running_raises(self) -> None:
        async with _supervisor(EventBus()) as processes:
            with pytest.raises(NotRunningError, match="Instance a1 is not running"):
                processes.stop("a1")

    async def test_missing_binary_raises_spawn_error(self, tmp_path: Path) -> None:
        bus = EventBus()
        events = bus.subscribe()

        async with _supervisor(bus) as processes:
            with pytest.raises(SpawnError) as exc_info:
                _ = await processes.start("a1", tmp_path / "missing", tmp_path)

            assert exc_info.value.instance_id == "a1"
            assert not processes.is_running("a1")
            error_event = await wait_for_event(events, EventType.PROCESS_ERROR)
            assert "error" in error_event.data
            assert processes.get_logs("a1")[-1].message.startswith("Process error:")

    async def test_start_requires_context(self, tmp_path: Path) -> None:
        with pytest.raises(RuntimeError, match="context manager"):
            _ = await ProcessSupervisor(EventBus()).start("a1", "/bin/true", tmp_path)


@pytest.mark.anyio
class TestSingleProcessPerInstance:
    async def test_concurrent_starts_spawn_once(
        self, make_binary: MakeBinary, tmp_path: Path
    ) -> None:
        binary = make_binary("sleeper", SLEEPER)
        results: list[int | Exception] = []

        async def attempt(processes: ProcessSupervisor) -> None:
            try:
                results.append(await processes.start("a1", binary, tmp_path))
            except AlreadyRunningError as e:
                results.append(e)

        async with _supervisor(EventBus()) as processes:
            async with anyio.create_task_group() as tg:
                for _ in range(5):
                    tg.start_soon(attempt, processes)

            pids = [r for r in results if isinstance(r, int)]
            errors = [r for r in results if isinstance(r, AlreadyRunningError)]
            assert len(pids) == 1
            assert len(errors) == 4
            assert processes.running_ids() == ["a1"]

    async def test_instances_are_isolated(self, make_binary: MakeBinary, tmp_path: Path) -> None:
        bus = EventBus()
        events = bus.subscribe()
        sleeper = make_binary("sleeper", SLEEPER)
        crasher = make_binary("crasher", CRASHER)

        async with _supervisor(bus) as processes:
            _ = await processes.start("steady", sleeper, tmp_path)
            _ = await processes.start("crashy", crasher, tmp_path)
            _ = await wait_for_event(events, EventType.PROCESS_EXIT, instance_id="crashy")

            assert processes.is_running("steady")
            assert not any(e.message == "boom" for e in processes.get_logs("steady"))


@pytest.mark.anyio
class TestLogRetention:
    async def test_buffer_keeps_most_recent_lines(
        self, make_binary: MakeBinary, tmp_path: Path
    ) -> None:
        bus = EventBus()
        events = bus.subscribe(float("inf"))
        binary = make_binary("chatty", CHATTY)

        async with _supervisor(bus) as processes:
            _ = await processes.start("a1", binary, tmp_path)
            _ = await wait_for_event(events, EventType.PROCESS_EXIT)

            logs = processes.get_logs("a1")
            recent = processes.get_logs("a1", 50)

        assert len(logs) == 1000
        assert len(recent) == 50
        assert recent[-1].message.startswith("Process exited with code 0")
        assert recent[-2].message == "line 1499"
        assert recent[0].message == "line 1451"

    async def test_clear_and_drop_logs(self, make_binary: MakeBinary, tmp_path: Path) -> None:
        bus = EventBus()
        events = bus.subscribe()
        binary = make_binary("crasher", CRASHER)

        async with _supervisor(bus) as processes:
            _ = await processes.start("a1", binary, tmp_path)
            _ = await wait_for_event(events, EventType.PROCESS_EXIT)

            processes.clear_logs("a1")
            assert processes.get_logs("a1") == []

            processes.append_log("a1", LogChannel.SYSTEM, "note")
            processes.drop_logs("a1")
            assert processes.get_logs("a1") == []


@pytest.mark.anyio
class TestRestartAndShutdown:
    async def test_restart_replaces_process(self, make_binary: MakeBinary, tmp_path: Path) -> None:
        binary = make_binary("sleeper", SLEEPER)

        async with _supervisor(EventBus()) as processes:
            first = await processes.start("a1", binary, tmp_path)
            second = await processes.restart("a1", binary, tmp_path)

            assert second != first
            assert processes.get_pid("a1") == second

    async def test_restart_kills_process_ignoring_sigterm(
        self, make_binary: MakeBinary, tmp_path: Path
    ) -> None:
        binary = make_binary("stubborn", STUBBORN)

        async with _supervisor(EventBus(), stop_timeout=0.3) as processes:
            first = await processes.start("a1", binary, tmp_path)
            await _wait_for_log(processes, "a1", "ready")

            second = await processes.restart("a1", binary, tmp_path)

            assert second != first
            messages = [e.message for e in processes.get_logs("a1")]
            assert "Process did not stop in time, killing" in messages
            assert "Process exited with code None, signal SIGKILL" in messages

    async def test_restart_when_stopped_starts(self, make_binary: MakeBinary, tmp_path: Path) -> None:
        binary = make_binary("sleeper", SLEEPER)

        async with _supervisor(EventBus()) as processes:
            pid = await processes.restart("a1", binary, tmp_path)

            assert processes.get_pid("a1") == pid

    async def test_exit_stops_every_child(self, make_binary: MakeBinary, tmp_path: Path) -> None:
        bus = EventBus()
        events = bus.subscribe(float("inf"))
        sleeper = make_binary("sleeper", SLEEPER)
        stubborn = make_binary("stubborn", STUBBORN)

        async with _supervisor(bus, shutdown_timeout=0.3) as processes:
            _ = await processes.start("a1", sleeper, tmp_path)
            _ = await processes.start("a2", stubborn, tmp_path)
            await _wait_for_log(processes, "a2", "ready")

        exits: dict[str | None, object] = {}
        while True:
            try:
                event = events.receive_nowait()
            except anyio.WouldBlock:
                break
            if event.type == EventType.PROCESS_EXIT:
                exits[event.instance_id] = event.data["signal"]
        assert exits == {"a1": "SIGTERM", "a2": "SIGKILL"}
