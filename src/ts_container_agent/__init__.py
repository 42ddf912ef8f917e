"""
Tailscale Container Agent
컨테이너 내부에서 Tailscale 클라이언트를 기동하고 감시하는 에이전트

Features:
- 플랫폼별 Tailscale 바이너리 자동 다운로드 (idempotent)
- tailscaled 데몬 실행 및 감시 (userspace networking)
- Auth Key 기반 자동 인증 (tailscale up)
- 주기적 생존/헬스체크
- SIGINT/SIGTERM 시 graceful shutdown
"""

__version__ = "1.0.0"
__author__ = "DevOps Team"
