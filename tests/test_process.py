"""
프로세스 감시 모듈 테스트
"""

import sys
import time

from ts_container_agent.process import ProcessSupervisor, SupervisedProcess

SLEEPER = ["-c", "import time; time.sleep(60)"]
IGNORE_TERM = (
    "import pathlib, signal, sys, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
    "pathlib.Path(sys.argv[1]).write_text('ready'); time.sleep(60)"
)


def wait_for_exit(supervisor, proc, timeout=5.0):
    deadline = time.time() + timeout
    while supervisor.is_alive(proc) and time.time() < deadline:
        time.sleep(0.05)


def test_launch_and_stop():
    supervisor = ProcessSupervisor()
    proc = supervisor.launch(sys.executable, SLEEPER)

    assert proc.pid is not None
    assert supervisor.is_alive(proc)

    returncode = supervisor.stop(proc, timeout=5)
    assert returncode is not None
    assert proc.handle is None
    assert supervisor.is_alive(proc) == False


def test_is_alive_after_exit():
    """종료된 프로세스에 대해 예외 없이 False"""
    supervisor = ProcessSupervisor()
    proc = supervisor.launch(sys.executable, ["-c", "raise SystemExit(3)"])

    wait_for_exit(supervisor, proc)
    assert supervisor.is_alive(proc) == False
    assert proc.returncode == 3


def test_is_alive_none():
    supervisor = ProcessSupervisor()
    assert supervisor.is_alive(None) == False
    assert supervisor.is_alive(SupervisedProcess(command="x", args=[])) == False


def test_stop_is_idempotent():
    supervisor = ProcessSupervisor()
    proc = supervisor.launch(sys.executable, SLEEPER)

    supervisor.stop(proc, timeout=5)
    assert supervisor.stop(proc, timeout=5) is None


def test_stop_already_exited():
    supervisor = ProcessSupervisor()
    proc = supervisor.launch(sys.executable, ["-c", "pass"])
    wait_for_exit(supervisor, proc)

    assert supervisor.stop(proc, timeout=1) == 0


def test_stop_does_not_escalate(tmp_path):
    """SIGTERM을 무시하는 프로세스는 강제 종료하지 않는다"""
    supervisor = ProcessSupervisor()
    marker = tmp_path / "ready"
    proc = supervisor.launch(sys.executable, ["-c", IGNORE_TERM, str(marker)])
    handle = proc.handle
    # 핸들러 등록 전에 SIGTERM을 보내지 않도록 대기
    deadline = time.time() + 10
    while not marker.exists() and time.time() < deadline:
        time.sleep(0.05)

    try:
        assert supervisor.stop(proc, timeout=0.5) is None
        assert handle.poll() is None
        assert proc.handle is handle
    finally:
        handle.kill()
        handle.wait()


def test_second_launch_does_not_stop_first():
    supervisor = ProcessSupervisor()
    first = supervisor.launch(sys.executable, SLEEPER)
    second = supervisor.launch(sys.executable, SLEEPER)

    try:
        assert supervisor.is_alive(first)
        assert supervisor.is_alive(second)
        assert first.pid != second.pid
    finally:
        supervisor.stop(first, timeout=5)
        supervisor.stop(second, timeout=5)
