"""
설정 명령 모듈
조건부 플래그 조립 및 일회성 제어 명령 실행
"""

import subprocess
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Sequence

from .config import TailscaleConfig
from .errors import ConfigurationError
from .logger import get_logger

Options = Mapping[str, Any]


@dataclass(frozen=True)
class FlagRule:
    """(조건, 렌더러) 쌍

    조건이 참일 때만 렌더러가 만든 인자가 추가된다.
    """
    condition: Callable[[Options], bool]
    render: Callable[[Options], Sequence[str]]


def when_true(key: str, *flags: str) -> FlagRule:
    """불리언 옵션이 참이면 고정 플래그 추가"""
    return FlagRule(
        condition=lambda opts: opts.get(key) is True,
        render=lambda opts: list(flags),
    )


def when_set(key: str, template: str) -> FlagRule:
    """문자열 옵션이 비어 있지 않으면 값을 포함한 플래그 추가"""
    return FlagRule(
        condition=lambda opts: bool(opts.get(key)),
        render=lambda opts: [template.format(opts[key])],
    )


@dataclass(frozen=True)
class ConfigCommand:
    """기본 인자 + 선언 순서대로 평가되는 플래그 규칙"""
    base: Sequence[FlagRule] = field(default_factory=tuple)
    rules: Sequence[FlagRule] = field(default_factory=tuple)

    def build(self, options: Options) -> List[str]:
        """옵션으로 인자 목록 생성

        누락된 옵션은 False/빈 값과 동일하게 취급된다.
        """
        args: List[str] = []
        for rule in list(self.base) + list(self.rules):
            if rule.condition(options):
                args.extend(rule.render(options))
        return args


@dataclass
class CommandResult:
    """명령 실행 결과"""
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part.strip() for part in (self.stderr, self.stdout) if part and part.strip())


class CommandRunner:
    """동기식 명령 실행기"""

    def __init__(self, executable: str, cwd: Optional[str] = None, timeout: Optional[float] = 60):
        self.executable = executable
        self.cwd = cwd
        self.timeout = timeout
        self.logger = get_logger()

    def run(self, args: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
        """명령 실행, 0이 아닌 종료 코드는 ConfigurationError

        Raises:
            ConfigurationError: 실행 실패 또는 0이 아닌 종료 코드 (출력 포함)
        """
        argv = [self.executable] + list(args)
        self.logger.debug(f"Running: {' '.join(mask_args(argv))}")
        try:
            completed = subprocess.run(
                argv,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ConfigurationError(
                f"Command timed out after {e.timeout}s: {' '.join(mask_args(argv))}",
                output=_decode(e.stderr) or _decode(e.output),
            ) from e
        except OSError as e:
            raise ConfigurationError(f"Cannot execute {self.executable}: {e}") from e

        result = CommandResult(
            args=list(args),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if not result.ok:
            raise ConfigurationError(
                f"Command failed with exit code {result.returncode}: {' '.join(mask_args(argv))}",
                returncode=result.returncode,
                output=result.output,
            )
        return result

    def probe(self, args: Sequence[str], timeout: Optional[float] = 10) -> Optional[CommandResult]:
        """비치명적 실행 (실패는 경고 로그 후 무시)"""
        try:
            return self.run(args, timeout=timeout)
        except ConfigurationError as e:
            detail = f": {e.output}" if e.output else ""
            self.logger.warning(f"Non-fatal probe failed ({e}){detail}")
            return None


def _decode(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def mask_args(args: Sequence[str]) -> List[str]:
    """표시용 인자 목록 (auth key 마스킹)"""
    masked = []
    for arg in args:
        if arg.startswith("--auth-key=") or arg.startswith("--authkey="):
            flag = arg.split("=", 1)[0]
            masked.append(f"{flag}=****")
        else:
            masked.append(arg)
    return masked


# --------- Tailscale 명령 정의 ----------

def socket_flag(socket_file: str) -> str:
    return f"--socket={socket_file}"


UP_COMMAND = ConfigCommand(
    base=(
        when_set("socket_file", "--socket={}"),
        FlagRule(condition=lambda opts: True, render=lambda opts: ["up"]),
        when_set("auth_key", "--auth-key={}"),
        when_set("hostname", "--hostname={}"),
    ),
    rules=(
        when_true("enable_ssh", "--ssh"),
        when_set("advertise_tags", "--advertise-tags={}"),
        when_true("exit_node", "--advertise-exit-node"),
    ),
)


def up_options(cfg: TailscaleConfig) -> dict:
    """TailscaleConfig -> up 명령 옵션"""
    return {
        "socket_file": cfg.socket_file,
        "auth_key": cfg.auth_key,
        "hostname": cfg.hostname,
        "enable_ssh": cfg.enable_ssh,
        "advertise_tags": cfg.advertise_tags,
        "exit_node": cfg.exit_node,
    }


def up_args(cfg: TailscaleConfig) -> List[str]:
    """tailscale up 인자"""
    return UP_COMMAND.build(up_options(cfg))


def tailscaled_args(cfg: TailscaleConfig) -> List[str]:
    """tailscaled (userspace networking) 인자"""
    args = [
        "--tun=userspace-networking",
        f"--state={cfg.state_file}",
        socket_flag(cfg.socket_file),
    ]
    if cfg.socks5_addr:
        args.append(f"--socks5-server={cfg.socks5_addr}")
    return args


def status_args(cfg: TailscaleConfig) -> List[str]:
    return [socket_flag(cfg.socket_file), "status"]


def down_args(cfg: TailscaleConfig) -> List[str]:
    return [socket_flag(cfg.socket_file), "down"]
