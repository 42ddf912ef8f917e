"""
네트워크 연결성 체크 모듈
포트, HTTP 체크 기능 (헬스체크 대상 확인용, 실패는 경고로만 기록)
"""

import socket
import requests
from typing import Tuple, Optional
from .logger import get_logger


def parse_host_port(target: str) -> Optional[Tuple[str, int]]:
    """'host:port' 문자열 파싱 ('[::1]:1055' 형식 지원)"""
    host, sep, port = target.strip().rpartition(":")
    if not sep or not host or not port.isdigit():
        return None
    return host.strip("[]"), int(port)


class NetworkChecker:
    """네트워크 연결성 확인 클래스"""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.logger = get_logger()

    def check_port(self, host: str, port: int, timeout: int = 5) -> Tuple[bool, str]:
        """포트 연결 테스트"""
        if not 0 < port < 65536:
            return False, f"✗ 잘못된 포트: {port}"

        try:
            self.logger.debug(f"Checking port {host}:{port}...")
            with socket.create_connection((host, port), timeout=timeout):
                pass
            self.logger.debug(f"✓ {host}:{port} is open")
            return True, f"✓ {host}:{port} 연결 성공"

        except socket.gaierror:
            self.logger.warning(f"✗ Cannot resolve {host}")
            return False, f"✗ {host} 호스트를 찾을 수 없습니다"
        except socket.timeout:
            self.logger.warning(f"✗ {host}:{port} timed out")
            return False, f"✗ {host}:{port} 타임아웃"
        except OSError as e:
            self.logger.warning(f"✗ {host}:{port} is closed ({e})")
            return False, f"✗ {host}:{port} 연결 실패"

    def check_http(self, url: str, timeout: int = 5) -> Tuple[bool, str]:
        """HTTP/HTTPS 연결 테스트"""
        try:
            self.logger.debug(f"Checking HTTP connection to {url}...")
            response = requests.get(url, timeout=timeout)
            if response.status_code < 400:
                self.logger.debug(f"✓ HTTP connection successful (status: {response.status_code})")
                return True, f"✓ HTTP 연결 성공 ({url})"
            else:
                self.logger.warning(f"✗ HTTP error: {response.status_code}")
                return False, f"✗ HTTP 오류: {response.status_code}"
        except requests.exceptions.SSLError:
            self.logger.warning("✗ SSL certificate error")
            return False, "✗ SSL 인증서 오류"
        except requests.exceptions.ConnectionError:
            self.logger.warning("✗ Connection failed")
            return False, "✗ 연결 실패"
        except requests.exceptions.Timeout:
            self.logger.warning("✗ Connection timeout")
            return False, "✗ 타임아웃"
        except requests.exceptions.RequestException as e:
            self.logger.warning(f"HTTP check error: {str(e)}")
            return False, f"✗ HTTP 테스트 오류: {str(e)}"

    def check_target(self, target: str, timeout: int = 5) -> Tuple[bool, str]:
        """헬스체크 대상 확인 (URL이면 HTTP, 아니면 host:port)"""
        if target.startswith(("http://", "https://")):
            return self.check_http(target, timeout)

        parsed = parse_host_port(target)
        if parsed is None:
            self.logger.warning(f"Invalid health check target: {target}")
            return False, f"✗ 잘못된 헬스체크 대상: {target}"

        host, port = parsed
        return self.check_port(host, port, timeout)
