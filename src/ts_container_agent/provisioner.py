"""
바이너리 프로비저닝 모듈
플랫폼별 Tailscale 아카이브 다운로드 및 압축 해제 (idempotent)
"""

import os
import platform
import shutil
import stat
import tarfile
import tempfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Optional, Tuple

import requests
from rich.console import Console

from .config import Config
from .errors import DownloadError, ExtractionError
from .logger import get_logger

console = Console()

# uname -m -> 배포 아키텍처
ARCH_MAP = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "armv6l": "arm",
    "armv5l": "arm",
    "arm": "arm",
    "i386": "386",
    "i686": "386",
}

DOWNLOAD_CHUNK_SIZE = 64 * 1024


def detect_arch(machine: Optional[str] = None, default: str = "amd64") -> str:
    """CPU 아키텍처 감지, 알 수 없으면 경고 후 기본값 사용"""
    machine = machine if machine is not None else platform.machine()
    arch = ARCH_MAP.get(machine.strip().lower())
    if arch is None:
        get_logger().warning(f"Unknown arch '{machine}', defaulting to {default}")
        return default
    return arch


@dataclass(frozen=True)
class ProvisionSpec:
    """프로비저닝 대상 정의 (시작 시 1회 생성, 이후 불변)"""
    name: str
    version: str
    arch: str
    install_root: Path
    base_url: str = "https://pkgs.tailscale.com"
    channel: str = "stable"
    archive_ext: str = "tgz"
    executables: Tuple[str, ...] = field(default=("tailscale", "tailscaled"))

    @property
    def dir_name(self) -> str:
        return f"{self.name}_{self.version}_{self.arch}"

    @property
    def archive_name(self) -> str:
        return f"{self.dir_name}.{self.archive_ext}"

    @property
    def url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.channel}/{self.archive_name}"

    @property
    def install_dir(self) -> Path:
        return Path(self.install_root) / self.dir_name

    def executable(self, name: str) -> Path:
        return self.install_dir / name

    @classmethod
    def from_config(cls, config: Config) -> "ProvisionSpec":
        """설정에서 스펙 생성 (아키텍처 미지정 시 자동 감지)"""
        prov = config.provision
        if prov.arch:
            arch = detect_arch(prov.arch, prov.default_arch)
        else:
            arch = detect_arch(default=prov.default_arch)
        return cls(
            name="tailscale",
            version=config.tailscale.version,
            arch=arch,
            install_root=Path(config.agent.workdir),
            base_url=prov.base_url,
            channel=prov.channel,
            archive_ext=prov.archive_ext,
        )


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


class BinaryProvisioner:
    """실행 파일 세트가 설치 디렉토리에 존재하도록 보장"""

    def __init__(self, timeout: int = 60):
        self.timeout = timeout
        self.logger = get_logger()

    def is_installed(self, spec: ProvisionSpec) -> bool:
        """모든 실행 파일이 존재하고 실행 가능한지 확인"""
        return all(_is_executable(spec.executable(name)) for name in spec.executables)

    def ensure(self, spec: ProvisionSpec) -> Path:
        """설치 확인 후 없으면 다운로드 및 압축 해제

        Returns:
            Path: 실행 파일이 위치한 디렉토리

        Raises:
            DownloadError: 다운로드 실패
            ExtractionError: 아카이브 손상 또는 실행 파일 누락
        """
        if self.is_installed(spec):
            self.logger.info(f"Using existing {spec.name} dir: {spec.install_dir}")
            return spec.install_dir

        # 불완전한 디렉토리는 유효하지 않으므로 먼저 제거
        if spec.install_dir.exists():
            self.logger.warning(f"Removing incomplete install dir: {spec.install_dir}")
            shutil.rmtree(spec.install_dir)

        spec.install_root.mkdir(parents=True, exist_ok=True)
        archive_path = spec.install_root / spec.archive_name

        console.print(f"[cyan]{spec.name} {spec.version} ({spec.arch}) 다운로드 중...[/cyan]")
        self.logger.info(f"Downloading {spec.name} {spec.version} for {spec.arch}...")

        try:
            self.download(spec.url, archive_path)
            self.extract(spec, archive_path)
        finally:
            if archive_path.exists():
                archive_path.unlink()

        console.print(f"[green]✓ {spec.name} 설치 완료: {spec.install_dir}[/green]")
        self.logger.info(f"{spec.name} extracted to: {spec.install_dir}")
        return spec.install_dir

    def download(self, url: str, destination: Path):
        """아카이브 다운로드"""
        self.logger.debug(f"GET {url}")
        try:
            response = requests.get(url, stream=True, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise DownloadError(f"Failed to download {url}: {e}") from e

        try:
            if response.status_code != 200:
                raise DownloadError(f"Failed to download {url}: HTTP {response.status_code}")

            with open(destination, "wb") as f:
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
        except requests.exceptions.RequestException as e:
            raise DownloadError(f"Download interrupted for {url}: {e}") from e
        finally:
            response.close()

    def extract(self, spec: ProvisionSpec, archive_path: Path):
        """최상위 디렉토리를 제거하며 임시 디렉토리에 압축 해제 후 원자적으로 이동"""
        staging = Path(tempfile.mkdtemp(prefix=f".{spec.dir_name}.", dir=str(spec.install_root)))
        try:
            try:
                with tarfile.open(archive_path, "r:*") as tar:
                    for member in tar.getmembers():
                        stripped = self._strip_member(member)
                        if stripped is None:
                            continue
                        self._extract_member(tar, stripped, staging)
            except (tarfile.TarError, EOFError, OSError) as e:
                raise ExtractionError(f"Failed to extract {archive_path.name}: {e}") from e

            missing = [name for name in spec.executables if not (staging / name).is_file()]
            if missing:
                raise ExtractionError(
                    f"Archive {archive_path.name} is missing: {', '.join(missing)}"
                )

            for name in spec.executables:
                path = staging / name
                path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

            if spec.install_dir.exists():
                shutil.rmtree(spec.install_dir)
            os.rename(staging, spec.install_dir)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

    @staticmethod
    def _strip_member(member: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
        """tar --strip-components=1 과 동일, 디렉토리 탈출 경로는 거부"""
        parts = PurePosixPath(member.name).parts
        if len(parts) <= 1:
            return None
        relative = PurePosixPath(*parts[1:])
        if relative.is_absolute() or ".." in relative.parts:
            raise ExtractionError(f"Unsafe path in archive: {member.name}")
        if (member.issym() or member.islnk()) and (
            PurePosixPath(member.linkname).is_absolute() or ".." in PurePosixPath(member.linkname).parts
        ):
            raise ExtractionError(f"Unsafe link in archive: {member.name} -> {member.linkname}")
        member.name = str(relative)
        return member

    @staticmethod
    def _extract_member(tar: tarfile.TarFile, member: tarfile.TarInfo, target: Path):
        if hasattr(tarfile, "data_filter"):
            tar.extract(member, path=str(target), filter="data")
        else:
            tar.extract(member, path=str(target))
