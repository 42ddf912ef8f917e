"""
설정 관리 모듈
YAML/JSON 설정 파일 + 환경 변수 오버라이드, 기본값 제공
"""

import os
import yaml
import json
from typing import Dict, Any, Optional, Mapping
from dataclasses import dataclass, asdict

from .errors import ConfigError


@dataclass
class TailscaleConfig:
    """Tailscale 클라이언트 설정"""
    version: str = "1.82.5"
    auth_key: str = ""
    hostname: str = "josh-bam"
    enable_ssh: bool = True
    exit_node: bool = False
    advertise_tags: str = "tag:container"  # 빈 문자열이면 태그 광고 안 함
    socks5_addr: str = "127.0.0.1:1055"
    state_file: str = "tailscaled.state"
    socket_file: str = "tailscaled.sock"
    down_on_stop: bool = False


@dataclass
class ProvisionConfig:
    """바이너리 다운로드 설정"""
    base_url: str = "https://pkgs.tailscale.com"
    channel: str = "stable"
    archive_ext: str = "tgz"
    arch: str = ""  # 비워두면 자동 감지
    default_arch: str = "amd64"
    download_timeout: int = 60


@dataclass
class AgentConfig:
    """에이전트 설정"""
    workdir: str = "/home/container"
    log_dir: str = ""  # 비워두면 콘솔 로그만 사용
    log_level: str = "INFO"
    readiness_interval: float = 0.5
    readiness_attempts: int = 20
    health_check_interval: int = 30
    health_check_target: str = ""  # host:port 또는 http(s) URL
    stop_timeout: int = 10
    teardown_hook: str = "stop.sh"
    auth_key_prefix: str = "tskey-auth-"


# 환경 변수 -> (섹션, 필드)
ENV_OVERRIDES = {
    "WORKDIR": ("agent", "workdir"),
    "TS_VERSION": ("tailscale", "version"),
    "TS_ARCH": ("provision", "arch"),
    "TS_LOG_DIR": ("agent", "log_dir"),
    "TS_LOG_LEVEL": ("agent", "log_level"),
    "TS_HEALTH_CHECK_TARGET": ("agent", "health_check_target"),
    "TAILSCALE_AUTH_KEY": ("tailscale", "auth_key"),
    "TAILSCALE_HOSTNAME": ("tailscale", "hostname"),
    "TAILSCALE_ENABLE_SSH": ("tailscale", "enable_ssh"),
    "TAILSCALE_EXIT_NODE": ("tailscale", "exit_node"),
    "TAILSCALE_ADVERTISE_TAGS": ("tailscale", "advertise_tags"),
    "TAILSCALE_SOCKS5_ADDR": ("tailscale", "socks5_addr"),
    "TAILSCALE_STATE_FILE": ("tailscale", "state_file"),
    "TAILSCALE_SOCKET_FILE": ("tailscale", "socket_file"),
    "TAILSCALE_DOWN_ON_STOP": ("tailscale", "down_on_stop"),
}

TRUE_VALUES = {"true", "1", "yes", "on"}
FALSE_VALUES = {"false", "0", "no", "off", ""}


def parse_bool(value: Any) -> bool:
    """문자열/불리언 값을 bool로 변환"""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ConfigError(f"Invalid boolean value: {value!r}")


def mask_secret(value: str, visible: int = 11) -> str:
    """비밀 값 마스킹 (접두사만 노출, 짧은 값은 절반 미만만 노출)"""
    if not value:
        return ""
    visible = min(visible, (len(value) - 1) // 2)
    return value[:visible] + "*" * max(len(value) - visible, 4)


class Config:
    """전체 설정 관리 클래스"""

    SECTIONS = ("tailscale", "provision", "agent")

    DEFAULT_CONFIG_PATHS = [
        "/etc/ts-container-agent/config.yaml",
        "~/.ts-container-agent/config.yaml",
        "./config.yaml",
    ]

    def __init__(self, config_path: Optional[str] = None,
                 environ: Optional[Mapping[str, str]] = None):
        self.config_path = config_path
        self.tailscale = TailscaleConfig()
        self.provision = ProvisionConfig()
        self.agent = AgentConfig()

        if config_path:
            self.load(config_path)
        else:
            self._load_from_default_paths()

        self.apply_env(os.environ if environ is None else environ)

    def _load_from_default_paths(self):
        """기본 경로에서 설정 파일 로드"""
        for path in self.DEFAULT_CONFIG_PATHS:
            expanded_path = os.path.expanduser(path)
            if os.path.exists(expanded_path):
                self.load(expanded_path)
                return

    def load(self, path: str):
        """설정 파일 로드"""
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            return

        with open(path, 'r', encoding='utf-8') as f:
            try:
                if path.endswith('.json'):
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f) or {}
            except (yaml.YAMLError, json.JSONDecodeError) as e:
                raise ConfigError(f"Cannot parse config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        self._update_from_dict(data)
        self.config_path = path

    def _update_from_dict(self, data: Dict[str, Any]):
        """딕셔너리에서 설정 업데이트"""
        for section_name in self.SECTIONS:
            values = data.get(section_name) or {}
            section = getattr(self, section_name)
            for key, value in values.items():
                if hasattr(section, key):
                    self._set(section, key, value)

    def apply_env(self, environ: Mapping[str, str]):
        """환경 변수 오버라이드 적용 (빈 문자열도 유효한 값)"""
        for name, (section_name, key) in ENV_OVERRIDES.items():
            if name in environ:
                self._set(getattr(self, section_name), key, environ[name])

    @staticmethod
    def _set(section, key: str, value: Any):
        """기본값 타입에 맞춰 값 설정"""
        current = getattr(section, key)
        if isinstance(current, bool):
            value = parse_bool(value)
        elif isinstance(current, (int, float)) and not isinstance(value, type(current)):
            try:
                value = type(current)(value)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid value for {key}: {value!r}") from e
        elif isinstance(current, str) and value is None:
            value = ""
        setattr(section, key, value)

    def validate(self):
        """필수 설정 검증 (네트워크/프로세스 작업 전 호출)"""
        auth_key = (self.tailscale.auth_key or "").strip()
        if not auth_key:
            raise ConfigError(
                "TAILSCALE_AUTH_KEY is not set. Use an Auth Key "
                f"({self.agent.auth_key_prefix}...), not an API key."
            )
        if not auth_key.startswith(self.agent.auth_key_prefix):
            raise ConfigError(
                f"TAILSCALE_AUTH_KEY must start with '{self.agent.auth_key_prefix}' "
                "(looks like an API key or a malformed value)."
            )
        if not self.tailscale.version:
            raise ConfigError("Tailscale version is empty")
        if self.agent.readiness_attempts < 1:
            raise ConfigError("readiness_attempts must be at least 1")
        if self.agent.health_check_interval < 1:
            raise ConfigError("health_check_interval must be at least 1 second")

    def save(self, path: Optional[str] = None):
        """설정 파일 저장"""
        save_path = path or self.config_path or self.DEFAULT_CONFIG_PATHS[0]
        save_path = os.path.expanduser(save_path)

        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        data = self.to_dict()

        with open(save_path, 'w', encoding='utf-8') as f:
            if save_path.endswith('.json'):
                json.dump(data, f, indent=2)
            else:
                yaml.dump(data, f, default_flow_style=False, allow_unicode=True)

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        return {
            'tailscale': asdict(self.tailscale),
            'provision': asdict(self.provision),
            'agent': asdict(self.agent),
        }

    def create_sample(self, output_path: str):
        """샘플 설정 파일 생성"""
        template = """# Tailscale Container Agent Configuration File
# 이 파일을 복사하여 config.yaml로 사용하세요
# 모든 값은 환경 변수로 덮어쓸 수 있습니다 (예: TAILSCALE_AUTH_KEY)

# Tailscale 클라이언트 설정
tailscale:
  version: "1.82.5"
  auth_key: ""  # Auth Key (tskey-auth-...), API key 아님
  hostname: "josh-bam"
  enable_ssh: true
  exit_node: false
  advertise_tags: "tag:container"  # "" 이면 태그 광고 안 함
  socks5_addr: "127.0.0.1:1055"
  state_file: "tailscaled.state"
  socket_file: "tailscaled.sock"
  down_on_stop: false  # 종료 시 tailscale down 실행

# 바이너리 다운로드 설정
provision:
  base_url: "https://pkgs.tailscale.com"
  channel: "stable"
  archive_ext: "tgz"
  arch: ""  # 비워두면 자동 감지 (amd64, arm64, arm, 386)
  default_arch: "amd64"
  download_timeout: 60

# 에이전트 설정
agent:
  workdir: "/home/container"
  log_dir: ""  # 비워두면 콘솔 로그만 사용
  log_level: "INFO"  # DEBUG, INFO, WARNING, ERROR
  readiness_interval: 0.5
  readiness_attempts: 20
  health_check_interval: 30
  health_check_target: ""  # 예: "127.0.0.1:1055" 또는 "https://example.com"
  stop_timeout: 10
  teardown_hook: "stop.sh"
  auth_key_prefix: "tskey-auth-"
"""

        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(template)
