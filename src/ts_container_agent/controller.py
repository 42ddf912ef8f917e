"""
라이프사이클 컨트롤러
provision -> launch -> wait-ready -> configure -> keep-alive 순서로 실행하고,
시그널 또는 오류 발생 시 감시 중인 데몬을 정확히 한 번 종료한다
"""

import contextlib
import enum
import os
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console
from rich.panel import Panel

from .commands import CommandRunner, down_args, mask_args, status_args, tailscaled_args, up_args
from .config import Config, mask_secret
from .errors import (
    AgentError,
    ConfigurationError,
    ReadinessTimeoutError,
    UnexpectedExitError,
)
from .logger import get_logger
from .network import NetworkChecker
from .process import ProcessSupervisor, SupervisedProcess
from .provisioner import BinaryProvisioner, ProvisionSpec
from .readiness import ReadinessGate, path_exists

console = Console()

EXIT_OK = 0
EXIT_FATAL = 1

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class State(enum.Enum):
    """컨트롤러 상태 (선언 순서대로만 전이)"""
    UNINITIALIZED = "uninitialized"
    PROVISIONING = "provisioning"
    LAUNCHING = "launching"
    AWAITING_READINESS = "awaiting-readiness"
    CONFIGURING = "configuring"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"


_STATE_ORDER = list(State)


class ShutdownRequested(BaseException):
    """종료 시그널 수신 시 메인 흐름을 중단시키기 위한 예외"""

    def __init__(self, signum: int):
        super().__init__(signum)
        self.signum = signum


class SupervisorState:
    """메인 루프와 시그널 핸들러가 공유하는 상태 객체"""

    def __init__(self):
        self.state = State.UNINITIALIZED
        self.process: Optional[SupervisedProcess] = None
        self.shutdown_signal: Optional[int] = None
        self.failed = False
        self.defer_signals = False
        self._teardown_lock = threading.Lock()
        self._teardown_started = False

    def transition(self, new_state: State):
        """단방향 상태 전이"""
        if _STATE_ORDER.index(new_state) < _STATE_ORDER.index(self.state):
            raise RuntimeError(f"Invalid transition {self.state.value} -> {new_state.value}")
        get_logger().debug(f"State: {self.state.value} -> {new_state.value}")
        self.state = new_state

    @property
    def shutting_down(self) -> bool:
        return self._teardown_started or self.shutdown_signal is not None

    def request_shutdown(self, signum: int) -> bool:
        """첫 번째 종료 요청만 True (이미 종료/실패 처리 중이면 False)"""
        if self.shutting_down or self.failed:
            return False
        self.shutdown_signal = signum
        return True

    def begin_teardown(self) -> bool:
        """정리 작업 진입, 프로세스 생애 동안 정확히 한 번만 True"""
        if not self._teardown_lock.acquire(blocking=False):
            return False
        try:
            if self._teardown_started:
                return False
            self._teardown_started = True
            return True
        finally:
            self._teardown_lock.release()


class LifecycleController:
    """Tailscale 데몬 라이프사이클 오케스트레이터"""

    def __init__(self, config: Config,
                 provisioner: Optional[BinaryProvisioner] = None,
                 supervisor: Optional[ProcessSupervisor] = None,
                 gate: Optional[ReadinessGate] = None,
                 runner_factory: Callable[..., CommandRunner] = CommandRunner,
                 network_checker: Optional[NetworkChecker] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.logger = get_logger()
        self.provisioner = provisioner or BinaryProvisioner(config.provision.download_timeout)
        self.supervisor = supervisor or ProcessSupervisor()
        self.gate = gate or ReadinessGate(sleep)
        self.runner_factory = runner_factory
        self.network_checker = network_checker or NetworkChecker()
        self.sleep = sleep
        self.clock = clock
        self.state = SupervisorState()
        self.spec: Optional[ProvisionSpec] = None
        self.runner: Optional[CommandRunner] = None
        self._previous_handlers = {}

    # --------- 시그널 처리 ----------

    def install_signal_handlers(self):
        """SIGINT/SIGTERM 핸들러 등록"""
        for signum in HANDLED_SIGNALS:
            try:
                self._previous_handlers[signum] = signal.signal(signum, self.handle_signal)
            except ValueError:
                # 메인 스레드가 아니면 등록할 수 없음
                self.logger.warning(f"Cannot install handler for {signal.Signals(signum).name}")

    def restore_signal_handlers(self):
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers = {}

    def handle_signal(self, signum, frame=None):
        """종료 시그널 핸들러 (멱등)"""
        name = signal.Signals(signum).name
        if not self.state.request_shutdown(signum):
            self.logger.warning(f"Received {name} while already shutting down, ignoring")
            return
        self.logger.warning(f"Received {name}, shutting down...")
        if self.state.defer_signals:
            # 데몬 핸들이 기록될 때까지 종료를 미룬다
            self.logger.debug(f"Deferring {name} until the daemon handle is recorded")
            return
        raise ShutdownRequested(signum)

    @contextlib.contextmanager
    def deferred_signals(self):
        """블록 안에서 받은 종료 시그널은 블록이 끝난 뒤에 처리"""
        self.state.defer_signals = True
        try:
            yield
        finally:
            self.state.defer_signals = False
        if self.state.shutdown_signal is not None:
            raise ShutdownRequested(self.state.shutdown_signal)

    # --------- 메인 실행 ----------

    def run(self, duration: Optional[float] = None) -> int:
        """전체 라이프사이클 실행

        Args:
            duration: keep-alive 루프 최대 실행 시간 (초). None이면 무한 실행

        Returns:
            int: 종료 코드 (0: 정상 종료, 1: 치명적 오류)
        """
        exit_code = EXIT_FATAL
        self.install_signal_handlers()
        try:
            self.start()
            self.keep_alive(duration)
            exit_code = EXIT_OK

        except ShutdownRequested as e:
            self.logger.info(f"Shutdown requested by {signal.Signals(e.signum).name}")
            exit_code = EXIT_OK

        except AgentError as e:
            self.state.failed = True
            self.report_fatal(e)

        except Exception:
            self.state.failed = True
            self.logger.exception("Unexpected error occurred")

        finally:
            self.teardown()
            self.restore_signal_handlers()

        return exit_code

    def start(self):
        """설정 검증부터 running 상태 진입까지"""
        # 잘못된 설정이면 어떤 네트워크/프로세스 작업도 하지 않는다
        self.config.validate()

        ts = self.config.tailscale
        agent = self.config.agent

        console.print(Panel.fit(
            "[bold cyan]Tailscale Container Agent[/bold cyan]\n"
            "컨테이너 내부에서 Tailscale (userspace networking)을 실행합니다.",
            border_style="cyan"
        ))
        self.logger.info("=== Agent execution started ===")

        # 1. 바이너리 준비
        self.state.transition(State.PROVISIONING)
        self.spec = ProvisionSpec.from_config(self.config)
        install_dir = self.provisioner.ensure(self.spec)

        # 2. tailscaled 실행
        self.state.transition(State.LAUNCHING)
        socket_path = Path(ts.socket_file)
        if not socket_path.is_absolute():
            socket_path = Path(install_dir) / socket_path
        self.remove_stale_socket(socket_path)

        self.logger.info("Starting tailscaled (userspace networking)...")
        with self.deferred_signals():
            proc = self.supervisor.launch(
                str(self.spec.executable("tailscaled")),
                tailscaled_args(ts),
                cwd=str(install_dir),
            )
            self.state.process = proc

        # 3. 제어 소켓 대기
        self.state.transition(State.AWAITING_READINESS)
        ready = self.gate.await_ready(
            path_exists(str(socket_path)),
            agent.readiness_interval,
            agent.readiness_attempts,
            abort=lambda: not self.supervisor.is_alive(proc),
        )
        if not self.supervisor.is_alive(proc):
            raise UnexpectedExitError(
                f"tailscaled failed to start (code={proc.returncode})", proc.returncode
            )
        if not ready:
            raise ReadinessTimeoutError(
                f"tailscaled control socket {socket_path} not ready after "
                f"{agent.readiness_attempts} attempts ({agent.readiness_interval}s interval)"
            )

        # 4. tailscale up
        self.state.transition(State.CONFIGURING)
        self.runner = self.runner_factory(str(self.spec.executable("tailscale")), cwd=str(install_dir))
        self.logger.info(
            f"Running: tailscale up (hostname={ts.hostname}, ssh={ts.enable_ssh}, "
            f"tags='{ts.advertise_tags}', exitnode={ts.exit_node}, key={mask_secret(ts.auth_key)})"
        )
        try:
            self.runner.run(up_args(ts))
        except ConfigurationError:
            if ts.advertise_tags:
                self.logger.warning(
                    "If this is a tags error: define tagOwners in the ACL "
                    "or set TAILSCALE_ADVERTISE_TAGS=''"
                )
            raise

        result = self.runner.probe(status_args(ts))
        if result is not None:
            console.print("\n[bold]Tailscale 상태:[/bold]")
            console.print(result.stdout)

        self.state.transition(State.RUNNING)
        console.print(f"[bold green]✓ Tailscale 연결 완료 (tailscaled PID={proc.pid})[/bold green]")
        self.logger.info(f"Tailscale is up. Tailscaled PID={proc.pid}")

    def remove_stale_socket(self, socket_path: Path):
        """이전 실행이 남긴 제어 소켓 삭제 (남아 있으면 준비 완료로 오판)"""
        try:
            socket_path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise AgentError(f"Cannot remove stale control socket {socket_path}: {e}") from e
        self.logger.warning(f"Removed stale control socket {socket_path}")

    def keep_alive(self, duration: Optional[float] = None):
        """주기적 생존 확인 + 비치명적 헬스체크

        Raises:
            UnexpectedExitError: 데몬이 종료된 경우
        """
        proc = self.state.process
        interval = self.config.agent.health_check_interval
        started = self.clock()
        tick = 0

        while True:
            if duration is not None and self.clock() - started >= duration:
                self.logger.info(f"Keep-alive duration reached ({tick} ticks)")
                return

            self.sleep(interval)
            tick += 1

            if not self.supervisor.is_alive(proc):
                raise UnexpectedExitError(
                    f"tailscaled exited unexpectedly (code={proc.returncode})", proc.returncode
                )

            self.health_probe(tick)

    def health_probe(self, tick: int = 0):
        """진단용 헬스체크, 실패해도 상태를 바꾸지 않는다"""
        ts = self.config.tailscale
        target = self.config.agent.health_check_target

        if self.runner is not None:
            result = self.runner.probe(status_args(ts))
            if result is not None:
                self.logger.debug(f"Health check #{tick}: tailscale status ok")

        if target:
            ok, message = self.network_checker.check_target(target)
            if not ok:
                self.logger.warning(f"Health check #{tick}: {message}")

    def report_fatal(self, error: AgentError):
        """치명적 오류 보고"""
        console.print(f"[red]✗ {error}[/red]")
        self.logger.error(f"{type(error).__name__}: {error}")
        if isinstance(error, ConfigurationError) and error.output:
            self.logger.error(error.output)

    # --------- 종료 처리 ----------

    def teardown(self):
        """정리 작업 (모든 종료 경로에서 정확히 한 번 실행)"""
        if not self.state.begin_teardown():
            return

        if self.state.state is State.UNINITIALIZED and self.state.process is None:
            self.state.transition(State.TERMINATED)
            return

        self.state.transition(State.SHUTTING_DOWN)
        self.logger.warning("Shutting down...")

        self.run_teardown_hook()

        proc = self.state.process
        if self.config.tailscale.down_on_stop and self.runner is not None and self.supervisor.is_alive(proc):
            self.logger.info("Running: tailscale down")
            self.runner.probe(down_args(self.config.tailscale))

        if proc is not None:
            self.supervisor.stop(proc, self.config.agent.stop_timeout)
            self.state.process = None

        self.state.transition(State.TERMINATED)
        self.logger.info("=== Agent execution finished ===")

    def run_teardown_hook(self):
        """외부 종료 스크립트 실행 (있을 때만, 실패해도 무시)"""
        hook_name = self.config.agent.teardown_hook
        if not hook_name:
            return

        workdir = Path(self.config.agent.workdir)
        hook = Path(hook_name)
        if not hook.is_absolute():
            hook = workdir / hook
        if not (hook.is_file() and os.access(hook, os.X_OK)):
            return

        cwd = self.spec.install_dir if self.spec and self.spec.install_dir.is_dir() else workdir
        self.logger.warning(f"Running {hook.name}...")
        try:
            result = subprocess.run(
                [str(hook)],
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=self.config.agent.stop_timeout,
            )
            if result.returncode != 0:
                self.logger.warning(
                    f"{hook.name} exited with code {result.returncode}: "
                    f"{(result.stderr or result.stdout).strip()}"
                )
        except (OSError, subprocess.SubprocessError) as e:
            self.logger.warning(f"{hook.name} failed: {e}")


def describe_up_command(config: Config) -> str:
    """표시용 tailscale up 명령 문자열"""
    return " ".join(["tailscale"] + mask_args(up_args(config.tailscale)))
