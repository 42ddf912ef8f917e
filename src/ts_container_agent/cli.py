"""
CLI 메인 인터페이스
Click 및 Rich 기반 사용자 친화적 CLI
"""

import sys
import click
from rich.console import Console
from rich.table import Table
from . import __version__
from .config import Config, mask_secret
from .controller import LifecycleController, describe_up_command
from .errors import AgentError, ConfigError
from .logger import init_logger, get_logger
from .provisioner import BinaryProvisioner, ProvisionSpec

console = Console()


def load_config(config_path, debug: bool = False) -> Config:
    """설정 로드 및 로거 초기화"""
    try:
        cfg = Config(config_path)
    except ConfigError as e:
        console.print(f"[red]✗ 설정 파일 오류: {e}[/red]")
        sys.exit(1)

    init_logger(cfg.agent.log_dir or None, cfg.agent.log_level, debug)
    return cfg


@click.group()
@click.version_option(version=__version__)
def cli():
    """Tailscale Container Agent

    컨테이너 내부에서 Tailscale 데몬을 설치, 실행, 인증하고 감시합니다.
    """
    pass


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--debug', is_flag=True, help='디버그 모드')
@click.option('--duration', type=float, default=None,
              help='keep-alive 지속 시간 (초, 기본값: 무한)')
def run(config, debug, duration):
    """Tailscale 데몬 실행 및 감시"""
    cfg = load_config(config, debug)
    logger = get_logger()
    logger.info(f"Starting run command (debug={debug}, workdir={cfg.agent.workdir})")

    controller = LifecycleController(cfg)
    sys.exit(controller.run(duration=duration))


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--debug', is_flag=True, help='디버그 모드')
def provision(config, debug):
    """Tailscale 바이너리만 다운로드"""
    cfg = load_config(config, debug)

    try:
        spec = ProvisionSpec.from_config(cfg)
        install_dir = BinaryProvisioner(cfg.provision.download_timeout).ensure(spec)
    except AgentError as e:
        console.print(f"[red]✗ 프로비저닝 실패: {e}[/red]")
        get_logger().error(f"{type(e).__name__}: {e}")
        sys.exit(1)

    console.print(f"[green]✓ 설치 디렉토리: {install_dir}[/green]")


@cli.command()
@click.argument('output', type=click.Path(), default='./config.yaml')
def init(output):
    """샘플 설정 파일 생성"""
    cfg = Config(environ={})
    cfg.create_sample(output)
    console.print(f"[green]✓ 샘플 설정 파일 생성: {output}[/green]")
    console.print("[cyan]설정 파일을 편집한 후 다음 명령어로 실행하세요:[/cyan]")
    console.print(f"[cyan]  ts-container-agent run --config {output}[/cyan]")


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
def validate(config):
    """설정 유효성 검사 (환경 변수 포함)"""
    cfg = load_config(config)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")

    table.add_row("작업 디렉토리", cfg.agent.workdir)
    table.add_row("Tailscale 버전", cfg.tailscale.version)
    table.add_row("Auth Key", mask_secret(cfg.tailscale.auth_key) or "[red]미설정[/red]")
    table.add_row("호스트명", cfg.tailscale.hostname)
    table.add_row("SSH", "예" if cfg.tailscale.enable_ssh else "아니오")
    table.add_row("Exit Node", "예" if cfg.tailscale.exit_node else "아니오")
    table.add_row("태그", cfg.tailscale.advertise_tags or "(없음)")
    table.add_row("SOCKS5", cfg.tailscale.socks5_addr or "(없음)")
    console.print(table)

    try:
        cfg.validate()
    except ConfigError as e:
        console.print(f"[red]✗ 설정 오류: {e}[/red]")
        sys.exit(1)

    console.print("[green]✓ 설정이 유효합니다.[/green]")


@cli.command(name="show-command")
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
def show_command(config):
    """실행될 tailscale up 명령 표시 (Auth Key 마스킹)"""
    cfg = load_config(config)
    console.print(describe_up_command(cfg), markup=False, highlight=False, soft_wrap=True)


def main():
    """메인 엔트리 포인트"""
    cli()


if __name__ == '__main__':
    main()
