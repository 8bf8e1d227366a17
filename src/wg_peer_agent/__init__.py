"""
WireGuard Peer Agent
WireGuard 서버의 피어(클라이언트) 수명주기와 설정 상태를 관리하는 에이전트

Features:
- 서브넷 내 최저 미사용 주소 자동 할당
- 서버 설정 문서 및 피어 디렉토리의 원자적 저장
- 기존 세션을 끊지 않는 diff 기반 라이브 인터페이스 동기화
- 핸드셰이크 기반 온라인/오프라인 상태 조회
"""

__version__ = "1.0.0"
__author__ = "DevOps Team"
