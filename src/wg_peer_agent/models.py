"""
도메인 모델
서버 설정, 피어 레코드, 동기화 계획/결과
"""

import ipaddress
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

STATUS_ONLINE = "online"
STATUS_OFFLINE = "offline"
STATUS_UNKNOWN = "unknown"

# 마지막 핸드셰이크가 이 시간(초) 이내이면 온라인으로 간주
ONLINE_HANDSHAKE_WINDOW = 180

# 피어 이름은 피어 디렉토리의 파일 이름으로도 쓰인다
NAME_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,63}$")


@dataclass(frozen=True)
class KeyPair:
    """WireGuard 키 쌍"""
    private_key: str
    public_key: str


@dataclass
class PeerRecord:
    """VPN 클라이언트 1개"""
    name: str
    public_key: str
    address: str                  # 예: "10.0.0.2"
    persistent_keepalive: int = 25

    @property
    def allowed_ips(self) -> str:
        """서버측 AllowedIPs (/32 호스트 경로)"""
        return f"{self.address}/32"


@dataclass
class ServerConfig:
    """인터페이스 수준 설정 + 피어 목록"""
    address: str                  # 예: "10.0.0.1/24"
    listen_port: int
    private_key: str
    public_key: Optional[str] = None
    post_up: List[str] = field(default_factory=list)
    post_down: List[str] = field(default_factory=list)
    # 에이전트가 해석하지 않는 [Interface] 키 (DNS, MTU 등). 원문 순서 그대로 보존
    extra: Dict[str, str] = field(default_factory=dict)
    peers: Dict[str, PeerRecord] = field(default_factory=dict)

    @property
    def interface(self) -> ipaddress.IPv4Interface:
        return ipaddress.IPv4Interface(self.address)

    @property
    def network(self) -> ipaddress.IPv4Network:
        return self.interface.network

    def find_by_address(self, address: str) -> Optional[PeerRecord]:
        for peer in self.peers.values():
            if peer.address == address:
                return peer
        return None


@dataclass
class PeerStatus:
    """list() 결과 항목"""
    record: PeerRecord
    status: str = STATUS_UNKNOWN
    latest_handshake: Optional[int] = None


@dataclass
class LivePeer:
    """`wg show <iface> dump` 의 피어 한 줄"""
    public_key: str
    allowed_ips: str
    endpoint: Optional[str] = None
    latest_handshake: int = 0
    persistent_keepalive: Optional[int] = None


@dataclass
class SyncPlan:
    """라이브 인터페이스에 적용할 diff"""
    add: List[PeerRecord] = field(default_factory=list)
    update: List[PeerRecord] = field(default_factory=list)
    remove: List[str] = field(default_factory=list)       # 공개키
    unchanged: List[str] = field(default_factory=list)    # 공개키

    @property
    def is_empty(self) -> bool:
        return not (self.add or self.update or self.remove)


@dataclass
class SyncResult:
    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0

    @property
    def total_changes(self) -> int:
        return self.added + self.updated + self.removed
