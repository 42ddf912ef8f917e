"""
설정 명령 모듈 테스트
"""

import sys

import pytest

from ts_container_agent.commands import (
    CommandRunner,
    ConfigCommand,
    down_args,
    mask_args,
    status_args,
    tailscaled_args,
    up_args,
    when_set,
    when_true,
    UP_COMMAND,
)
from ts_container_agent.config import TailscaleConfig
from ts_container_agent.errors import ConfigurationError

AUTH_KEY = "tskey-auth-k123"


def make_ts(**overrides):
    cfg = TailscaleConfig(auth_key=AUTH_KEY, hostname="node-1")
    for key, value in overrides.items():
        setattr(cfg, key, value)
    return cfg


def test_up_args_defaults():
    """기본값: ssh + 태그"""
    assert up_args(make_ts()) == [
        "--socket=tailscaled.sock",
        "up",
        f"--auth-key={AUTH_KEY}",
        "--hostname=node-1",
        "--ssh",
        "--advertise-tags=tag:container",
    ]


def test_up_args_all_flags_in_order():
    args = up_args(make_ts(enable_ssh=True, exit_node=True, advertise_tags="tag:a,tag:b"))
    assert args[-3:] == ["--ssh", "--advertise-tags=tag:a,tag:b", "--advertise-exit-node"]


def test_up_args_no_optional_flags():
    args = up_args(make_ts(enable_ssh=False, exit_node=False, advertise_tags=""))
    assert args == ["--socket=tailscaled.sock", "up", f"--auth-key={AUTH_KEY}", "--hostname=node-1"]


def test_absent_options_equal_false_options():
    """누락된 옵션과 False 옵션은 같은 결과"""
    base = {"socket_file": "s.sock", "auth_key": AUTH_KEY, "hostname": "h"}
    explicit = dict(base, enable_ssh=False, exit_node=False, advertise_tags="")
    assert UP_COMMAND.build(base) == UP_COMMAND.build(explicit)


def test_build_is_deterministic():
    options = {"socket_file": "s.sock", "auth_key": AUTH_KEY, "hostname": "h",
               "enable_ssh": True, "exit_node": True, "advertise_tags": "tag:x"}
    assert UP_COMMAND.build(options) == UP_COMMAND.build(dict(reversed(list(options.items()))))


def test_custom_command():
    command = ConfigCommand(rules=(when_true("verbose", "-v"), when_set("name", "--name={}")))
    assert command.build({"verbose": True, "name": "x"}) == ["-v", "--name=x"]
    assert command.build({"verbose": "true"}) == []


def test_tailscaled_args():
    args = tailscaled_args(make_ts())
    assert args == [
        "--tun=userspace-networking",
        "--state=tailscaled.state",
        "--socket=tailscaled.sock",
        "--socks5-server=127.0.0.1:1055",
    ]
    assert "--socks5-server" not in " ".join(tailscaled_args(make_ts(socks5_addr="")))


def test_status_and_down_args():
    cfg = make_ts(socket_file="/run/ts.sock")
    assert status_args(cfg) == ["--socket=/run/ts.sock", "status"]
    assert down_args(cfg) == ["--socket=/run/ts.sock", "down"]


def test_mask_args():
    masked = mask_args(up_args(make_ts()))
    assert "--auth-key=****" in masked
    assert all(AUTH_KEY not in arg for arg in masked)


def test_runner_success():
    runner = CommandRunner(sys.executable)
    result = runner.run(["-c", "print('hello')"])
    assert result.ok
    assert result.stdout.strip() == "hello"


def test_runner_failure_carries_output():
    runner = CommandRunner(sys.executable)
    with pytest.raises(ConfigurationError) as excinfo:
        runner.run(["-c", "import sys; sys.stderr.write('tags error'); sys.exit(2)"])
    assert excinfo.value.returncode == 2
    assert "tags error" in excinfo.value.output


def test_runner_missing_executable(tmp_path):
    runner = CommandRunner(str(tmp_path / "does-not-exist"))
    with pytest.raises(ConfigurationError):
        runner.run(["status"])


def test_runner_timeout():
    runner = CommandRunner(sys.executable)
    with pytest.raises(ConfigurationError):
        runner.run(["-c", "import time; time.sleep(5)"], timeout=0.2)


def test_probe_is_non_fatal():
    runner = CommandRunner(sys.executable)
    assert runner.probe(["-c", "raise SystemExit(1)"]) is None
    assert runner.probe(["-c", "pass"]).ok
