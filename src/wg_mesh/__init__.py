"""
WireGuard Mesh Manager
고정된 노드 집합 사이에 풀 메시 WireGuard VPN을 구성하고 유지하는 도구

Features:
- 노드별 키 페어 및 노드 쌍별 PSK 생성/캐시 (idempotent)
- 노드별 wg0.conf 생성 및 SSH 배포
- 병렬 설치/배포 파이프라인 및 dry-run 지원
- wg show 출력 파싱 기반 헬스체크 및 연결성 테스트
- ssh-keyscan 기반 known_hosts 등록
"""

__version__ = "1.0.0"
__author__ = "DevOps Team"
