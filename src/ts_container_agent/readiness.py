"""
준비 상태 대기 모듈
제한된 횟수로 조건을 폴링
"""

import os
import time
from typing import Callable, Optional

from .logger import get_logger

Predicate = Callable[[], bool]


class ReadinessGate:
    """외부 준비 신호(소켓, 포트, 파일)를 폴링하는 게이트"""

    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        self.sleep = sleep
        self.logger = get_logger()

    def await_ready(self, predicate: Predicate, interval: float, max_attempts: int,
                    abort: Optional[Predicate] = None) -> bool:
        """predicate가 성공할 때까지 최대 max_attempts 회 폴링

        실패한 폴링마다 interval 초 대기하므로 전체 소요 시간은 interval × max_attempts.
        predicate 예외는 실패로 간주한다. 제한 시간이 지나도 예외를 발생시키지 않으며,
        소진 여부를 치명적 오류로 볼지는 호출자가 결정한다.

        Args:
            predicate: 준비 여부 확인 함수
            interval: 폴링 간격 (초)
            max_attempts: 최대 폴링 횟수
            abort: True를 반환하면 즉시 폴링 중단 (예: 프로세스 종료)

        Returns:
            bool: 준비 완료 여부
        """
        for attempt in range(1, max_attempts + 1):
            try:
                if predicate():
                    self.logger.debug(f"Ready after {attempt} attempt(s)")
                    return True
            except Exception as e:
                self.logger.debug(f"Readiness probe raised on attempt {attempt}: {e}")

            if abort is not None and abort():
                self.logger.debug(f"Readiness wait aborted on attempt {attempt}")
                return False

            self.sleep(interval)

        self.logger.debug(f"Not ready after {max_attempts} attempts")
        return False


def path_exists(path: str) -> Predicate:
    """파일/소켓 존재 확인 조건"""
    return lambda: os.path.exists(path)

