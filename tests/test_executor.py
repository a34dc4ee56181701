import shlex
import signal
import threading
import time

import pytest

from mfer.core import executor as executor_mod
from mfer.core.cancellation import CancellationController
from mfer.core.errors import RunCancelled
from mfer.core.executor import Executor
from mfer.core.models import ExecutionMode, ExecutionSpec, FailureKind, KillPolicy
from mfer.core.targets import build_targets


def _targets(tmp_path, names):
    for n in names:
        (tmp_path / n).mkdir(exist_ok=True)
    return build_targets(names, str(tmp_path))


@pytest.fixture
def spawned(monkeypatch):
    procs = []
    real = executor_mod.spawn_target

    def recording(target, command, *, stream):
        proc = real(target, command, stream=stream)
        procs.append((target.name, proc))
        return proc

    monkeypatch.setattr(executor_mod, "spawn_target", recording)
    return procs


def test_sequential_order_and_continue_on_error(tmp_path, console):
    log = tmp_path / "order.log"
    cmd = f'echo "start $(basename "$PWD")" >> {shlex.quote(str(log))}; sleep 0.1; ' \
          f'echo "end $(basename "$PWD")" >> {shlex.quote(str(log))}; test "$(basename "$PWD")" != b'
    report = Executor(console=console).run(_targets(tmp_path, ["a", "b", "c"]), ExecutionSpec(command_line=cmd))
    assert log.read_text().split("\n")[:-1] == ["start a", "end a", "start b", "end b", "start c", "end c"]
    assert [o.target.name for o in report.outcomes] == ["a", "b", "c"]
    assert [o.exit_code for o in report.outcomes] == [0, 1, 0]
    assert report.frozen
    out = console.text()
    assert "[a] Running" in out
    assert "b failed" in out and "with exit code 1" in out


def test_sequential_spawn_failure_is_recorded(tmp_path, console):
    (tmp_path / "ok").mkdir()
    targets = build_targets(["ok", "ghost"], str(tmp_path))
    report = Executor(console=console).run(targets, ExecutionSpec(command_line="true"))
    ghost = report.outcomes[1]
    assert report.outcomes[0].succeeded
    assert ghost.exit_code is None and ghost.failure_kind is FailureKind.SPAWN_FAILED
    assert "could not be started" in console.text()


def test_sequential_cancel_before_start_spawns_nothing(tmp_path, console, spawned):
    controller = CancellationController()
    controller.cancel()
    with pytest.raises(RunCancelled) as exc:
        Executor(controller, console).run(_targets(tmp_path, ["a", "b"]), ExecutionSpec(command_line="true"))
    assert exc.value.completed == []
    assert spawned == []


def test_concurrent_spawns_everything_before_waiting(tmp_path, console):
    spec = ExecutionSpec(command_line="sleep 0.5", mode=ExecutionMode.CONCURRENT, kill_others_on=KillPolicy.NONE)
    started = time.monotonic()
    report = Executor(console=console).run(_targets(tmp_path, ["a", "b", "c", "d"]), spec)
    assert time.monotonic() - started < 1.8
    assert report.all_succeeded and len(report.outcomes) == 4


def test_concurrent_report_is_in_target_order(tmp_path, console):
    spec = ExecutionSpec(
        command_line='case "$(basename "$PWD")" in a) sleep 0.6;; b) sleep 0.3;; *) true;; esac',
        mode=ExecutionMode.CONCURRENT,
        kill_others_on=KillPolicy.NONE,
    )
    report = Executor(console=console).run(_targets(tmp_path, ["a", "b", "c"]), spec)
    assert [o.target.name for o in report.outcomes] == ["a", "b", "c"]


def test_concurrent_output_is_prefixed(tmp_path, console):
    spec = ExecutionSpec(command_line='echo "hello from $(basename "$PWD")"; echo oops >&2',
                         mode=ExecutionMode.CONCURRENT, kill_others_on=KillPolicy.NONE)
    Executor(console=console).run(_targets(tmp_path, ["a", "b"]), spec)
    lines = console.text().splitlines()
    assert "a | hello from a" in lines
    assert "b | hello from b" in lines
    assert "a | oops" in lines


def test_failure_terminates_running_siblings(tmp_path, console):
    spec = ExecutionSpec(
        command_line='if [ "$(basename "$PWD")" = a ]; then sleep 0.2; exit 3; fi; sleep 30',
        mode=ExecutionMode.CONCURRENT,
        kill_others_on=KillPolicy.FAILURE,
    )
    started = time.monotonic()
    report = Executor(console=console).run(_targets(tmp_path, ["a", "b", "c"]), spec)
    assert time.monotonic() - started < 10
    a, b, c = report.outcomes
    assert a.exit_code == 3 and a.failure_kind is FailureKind.EXIT_CODE
    for sibling in (b, c):
        assert sibling.exit_code == 128 + signal.SIGTERM
        assert "stopped after a exited" in sibling.error_detail
    assert "stopping 2 other process(es)" in console.text()


def test_failure_policy_ignores_success(tmp_path, console):
    spec = ExecutionSpec(
        command_line='[ "$(basename "$PWD")" = a ] || sleep 0.5',
        mode=ExecutionMode.CONCURRENT,
        kill_others_on=KillPolicy.FAILURE,
    )
    report = Executor(console=console).run(_targets(tmp_path, ["a", "b"]), spec)
    assert report.all_succeeded


def test_success_policy_stops_siblings_when_one_exits(tmp_path, console):
    spec = ExecutionSpec(
        command_line='[ "$(basename "$PWD")" = a ] || sleep 30',
        mode=ExecutionMode.CONCURRENT,
        kill_others_on=KillPolicy.FAILURE_OR_SUCCESS,
    )
    report = Executor(console=console).run(_targets(tmp_path, ["a", "b"]), spec)
    a, b = report.outcomes
    assert a.succeeded
    assert not b.succeeded and b.failure_kind is FailureKind.TERMINATED


def test_concurrent_spawn_failure_triggers_policy(tmp_path, console):
    (tmp_path / "slow").mkdir()
    ok, ghost = build_targets(["slow", "ghost"], str(tmp_path))
    spec = ExecutionSpec(command_line="sleep 30", mode=ExecutionMode.CONCURRENT, kill_others_on=KillPolicy.FAILURE)
    started = time.monotonic()
    report = Executor(console=console).run([ok, ghost], spec)
    assert time.monotonic() - started < 10
    slow, missing = report.outcomes
    assert missing.failure_kind is FailureKind.SPAWN_FAILED
    assert slow.failure_kind is FailureKind.TERMINATED
    assert "ghost | failed to start" in console.text()


def test_cancel_during_concurrent_run_stops_everything(tmp_path, console, spawned):
    controller = CancellationController()
    spec = ExecutionSpec(command_line="sleep 30", mode=ExecutionMode.CONCURRENT)
    result = {}

    def work():
        try:
            Executor(controller, console, grace_seconds=2).run(_targets(tmp_path, ["a", "b", "c"]), spec)
        except RunCancelled as e:
            result["cancelled"] = e

    thread = threading.Thread(target=work)
    started = time.monotonic()
    thread.start()
    deadline = time.monotonic() + 10
    while len(controller.running()) < 3 and time.monotonic() < deadline:
        time.sleep(0.05)
    assert len(controller.running()) == 3
    controller.cancel()
    thread.join(timeout=15)
    assert not thread.is_alive()
    assert "cancelled" in result
    assert time.monotonic() - started < 15
    assert len(spawned) == 3
    assert all(proc.poll() is not None for _name, proc in spawned)


def test_sequential_cancel_kills_child_that_ignores_sigterm(tmp_path, console, spawned):
    controller = CancellationController()
    spec = ExecutionSpec(command_line='if [ "$(basename "$PWD")" = b ]; then trap \'\' TERM; sleep 30; fi')
    result = {}

    def work():
        try:
            Executor(controller, console, grace_seconds=0.5).run(_targets(tmp_path, ["a", "b", "c"]), spec)
        except RunCancelled as e:
            result["cancelled"] = e

    thread = threading.Thread(target=work)
    thread.start()
    deadline = time.monotonic() + 10
    while controller.running() != ["b"] and time.monotonic() < deadline:
        time.sleep(0.05)
    assert controller.running() == ["b"]
    time.sleep(0.2)
    cancelled_at = time.monotonic()
    controller.cancel()
    thread.join(timeout=15)
    assert not thread.is_alive()
    assert time.monotonic() - cancelled_at < 5
    completed = result["cancelled"].completed
    assert [o.target.name for o in completed] == ["a", "b"]
    assert completed[0].succeeded
    assert completed[1].exit_code == 128 + signal.SIGKILL
    assert [name for name, _proc in spawned] == ["a", "b"]
