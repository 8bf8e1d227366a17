"""
에러 분류 체계

모든 예외는 WgAgentError 를 상속하며 다음 정보를 가진다:
- peer: 관련 피어 이름 (없으면 None)
- stage: 실패한 단계 (allocation, persistence, sync, lookup)
- partial: 영구 저장은 완료되었으나 이후 단계가 실패했는지 여부
"""

from typing import Optional

STAGE_ALLOCATION = "allocation"
STAGE_PERSISTENCE = "persistence"
STAGE_SYNC = "sync"
STAGE_LOOKUP = "lookup"


class WgAgentError(Exception):
    """에이전트 공통 예외"""

    stage = STAGE_PERSISTENCE

    def __init__(self, message: str, peer: Optional[str] = None,
                 stage: Optional[str] = None, partial: bool = False):
        super().__init__(message)
        self.message = message
        self.peer = peer
        if stage is not None:
            self.stage = stage
        self.partial = partial

    def describe(self) -> str:
        """운영자용 한 줄 설명"""
        parts = [f"stage={self.stage}"]
        if self.peer:
            parts.insert(0, f"peer={self.peer}")
        if self.partial:
            parts.append("partially applied")
        return f"{self.message} ({', '.join(parts)})"


class DuplicateName(WgAgentError):
    stage = STAGE_LOOKUP


class NotFound(WgAgentError):
    stage = STAGE_LOOKUP


class InvalidName(WgAgentError):
    stage = STAGE_LOOKUP


class AddressInUse(WgAgentError):
    stage = STAGE_ALLOCATION


class InvalidAddress(WgAgentError):
    stage = STAGE_ALLOCATION


class AddressSpaceExhausted(WgAgentError):
    stage = STAGE_ALLOCATION


class ConfigNotFound(WgAgentError):
    """서버 설정 문서가 없음 (프로비저닝 전)"""


class ConfigCorrupt(WgAgentError):
    """서버 설정 문서 파싱 실패"""


class AlreadyProvisioned(WgAgentError):
    pass


class PersistenceError(WgAgentError):
    """파일 쓰기/삭제 실패"""


class ClientFileMissing(WgAgentError):
    stage = STAGE_LOOKUP


class RepairImpossible(WgAgentError):
    """개인키가 남아있지 않아 클라이언트 문서를 재생성할 수 없음"""


class KeyGenerationError(WgAgentError):
    stage = STAGE_ALLOCATION


class SyncUnavailable(WgAgentError):
    """라이브 인터페이스에 변경을 반영할 수 없음"""

    stage = STAGE_SYNC
