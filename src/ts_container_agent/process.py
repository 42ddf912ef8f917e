"""
프로세스 감시 모듈
백그라운드 데몬 실행, 생존 확인, 종료
"""

import os
import signal
import subprocess
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .logger import get_logger


@dataclass
class SupervisedProcess:
    """감시 대상 프로세스"""
    command: str
    args: List[str]
    cwd: Optional[str] = None
    handle: Optional[subprocess.Popen] = None
    started_at: float = field(default_factory=time.time)

    @property
    def pid(self) -> Optional[int]:
        return self.handle.pid if self.handle is not None else None

    @property
    def returncode(self) -> Optional[int]:
        return self.handle.returncode if self.handle is not None else None

    @property
    def uptime(self) -> float:
        return time.time() - self.started_at


class ProcessSupervisor:
    """백그라운드 프로세스 관리 클래스"""

    def __init__(self):
        self.logger = get_logger()

    def launch(self, command: str, args: Sequence[str] = (), cwd: Optional[str] = None) -> SupervisedProcess:
        """프로세스를 백그라운드로 실행 (완료를 기다리지 않음)

        새 세션으로 실행하여 컨트롤러에 전달된 시그널이 직접 전파되지 않도록 한다.
        이미 실행 중인 다른 프로세스는 건드리지 않는다.
        """
        argv = [command] + list(args)
        self.logger.debug(f"Launching: {' '.join(argv)} (cwd={cwd})")
        handle = subprocess.Popen(
            argv,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            start_new_session=True,
        )
        proc = SupervisedProcess(command=command, args=list(args), cwd=cwd, handle=handle)
        self.logger.info(f"Started {os.path.basename(command)} (pid={handle.pid})")
        return proc

    def is_alive(self, proc: Optional[SupervisedProcess]) -> bool:
        """비차단 생존 확인 (종료된 프로세스에도 예외 없음)"""
        if proc is None or proc.handle is None:
            return False
        try:
            return proc.handle.poll() is None
        except OSError as e:
            self.logger.debug(f"Liveness probe failed for pid={proc.pid}: {e}")
            return False

    def stop(self, proc: Optional[SupervisedProcess], timeout: float = 10) -> Optional[int]:
        """SIGTERM 전송 후 최대 timeout 초 대기

        강제 종료(SIGKILL)로 승격하지 않는다. 제한 시간 내 종료되지 않으면 경고만 남긴다.

        Returns:
            Optional[int]: 종료 코드 (아직 실행 중이면 None)
        """
        if proc is None or proc.handle is None:
            return None

        handle = proc.handle
        name = os.path.basename(proc.command)

        if handle.poll() is None:
            self.logger.warning(f"Stopping {name} (pid={handle.pid})...")
            try:
                handle.send_signal(signal.SIGTERM)
            except ProcessLookupError:
                pass

            try:
                handle.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                self.logger.warning(
                    f"{name} (pid={handle.pid}) did not exit within {timeout}s, leaving it running"
                )
                return None

        returncode = handle.returncode
        self.logger.info(f"{name} exited (code={returncode})")
        proc.handle = None
        return returncode
