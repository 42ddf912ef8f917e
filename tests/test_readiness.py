"""
준비 상태 게이트 테스트
"""

from ts_container_agent.readiness import ReadinessGate, path_exists


class FakeClock:
    """sleep 호출을 기록하는 가짜 시계"""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class CountingPredicate:
    def __init__(self, succeed_on=None):
        self.succeed_on = succeed_on
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.succeed_on is not None and self.calls >= self.succeed_on


def test_ready_on_first_poll():
    clock = FakeClock()
    predicate = CountingPredicate(succeed_on=1)

    assert ReadinessGate(clock.sleep).await_ready(predicate, 0.5, 20) == True
    assert predicate.calls == 1
    assert clock.sleeps == []


def test_ready_after_some_polls():
    clock = FakeClock()
    predicate = CountingPredicate(succeed_on=4)

    assert ReadinessGate(clock.sleep).await_ready(predicate, 0.5, 20) == True
    assert predicate.calls == 4
    assert clock.now == 1.5


def test_exhaustion_elapses_full_deadline():
    """20회 x 0.5초 = 10초 후 False"""
    clock = FakeClock()
    predicate = CountingPredicate()

    assert ReadinessGate(clock.sleep).await_ready(predicate, 0.5, 20) == False
    assert predicate.calls == 20
    assert clock.now == 10.0


def test_predicate_exception_counts_as_failure():
    clock = FakeClock()
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise OSError("not yet")
        return True

    assert ReadinessGate(clock.sleep).await_ready(flaky, 1, 5) == True
    assert len(calls) == 3


def test_abort_stops_polling():
    clock = FakeClock()
    predicate = CountingPredicate()

    ready = ReadinessGate(clock.sleep).await_ready(predicate, 0.5, 20, abort=lambda: predicate.calls >= 2)
    assert ready == False
    assert predicate.calls == 2


def test_path_exists(tmp_path):
    target = tmp_path / "tailscaled.sock"
    check = path_exists(str(target))
    assert check() == False
    target.write_text("")
    assert check() == True

