"""
에이전트 예외 정의
모든 치명적 오류는 AgentError 하위 클래스로 전달되며 종료 코드 1로 이어진다
"""

from typing import Optional


class AgentError(Exception):
    """에이전트 공통 예외"""


class ConfigError(AgentError):
    """필수 설정 누락 또는 형식 오류 (프로세스 실행 전)"""


class DownloadError(AgentError):
    """바이너리 아카이브 다운로드 실패"""


class ExtractionError(AgentError):
    """아카이브 손상 또는 필수 실행 파일 누락"""


class ReadinessTimeoutError(AgentError):
    """데몬이 제한 시간 내에 준비 상태가 되지 않음"""


class ConfigurationError(AgentError):
    """일회성 설정 명령 실패"""

    def __init__(self, message: str, returncode: Optional[int] = None, output: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.output = output


class UnexpectedExitError(AgentError):
    """감시 중인 데몬이 예기치 않게 종료됨"""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode
