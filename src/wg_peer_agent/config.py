"""
설정 관리 모듈
YAML/JSON 기반 설정 파일 관리 및 기본값 제공
"""

import os
import yaml
import json
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict


@dataclass
class ServerSettings:
    """WireGuard 서버 설정"""
    interface: str = "wg0"
    config_dir: str = "/etc/wireguard"
    clients_dir: str = ""  # 비워두면 <config_dir>/clients
    subnet: str = "10.0.0.0/24"
    listen_port: int = 0  # 0 이면 프로비저닝 시 무작위 선택
    endpoint: str = ""  # 비워두면 공인 IP 자동 조회
    endpoint_lookup_url: str = "https://ifconfig.me/ip"

    @property
    def server_config_path(self) -> str:
        return os.path.join(self.config_dir, f"{self.interface}.conf")

    @property
    def peer_dir(self) -> str:
        return self.clients_dir or os.path.join(self.config_dir, "clients")


@dataclass
class PeerSettings:
    """피어 정책 (모든 피어 공통)"""
    persistent_keepalive: int = 25
    dns: list = field(default_factory=lambda: ["8.8.8.8", "8.8.4.4"])
    client_allowed_ips: str = "0.0.0.0/0"


@dataclass
class FirewallSettings:
    """방화벽 템플릿 설정"""
    enabled: bool = True
    wan_interface: str = "eth0"


@dataclass
class AgentSettings:
    """에이전트 설정"""
    log_dir: str = "/var/log/wg-peer-agent"
    log_level: str = "INFO"
    sync_timeout: int = 10


class Config:
    """전체 설정 관리 클래스"""

    DEFAULT_CONFIG_PATHS = [
        "/etc/wg-peer-agent/config.yaml",
        "~/.wg-peer-agent/config.yaml",
        "./config/config.yaml",
        "./config.yaml",
    ]

    SECTIONS = ("server", "peers", "firewall", "agent")

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.server = ServerSettings()
        self.peers = PeerSettings()
        self.firewall = FirewallSettings()
        self.agent = AgentSettings()

        if config_path:
            self.load(config_path)
        else:
            self._load_from_default_paths()

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
            if path.endswith('.json'):
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}

        self._update_from_dict(data)
        self.config_path = path

    def _update_from_dict(self, data: Dict[str, Any]):
        """딕셔너리에서 설정 업데이트 (알 수 없는 키는 무시)"""
        for section in self.SECTIONS:
            values = data.get(section) or {}
            target = getattr(self, section)
            for key, value in values.items():
                if hasattr(target, key):
                    setattr(target, key, value)

    def save(self, path: Optional[str] = None):
        """설정 파일 저장"""
        save_path = path or self.config_path or self.DEFAULT_CONFIG_PATHS[0]
        save_path = os.path.expanduser(save_path)

        parent = os.path.dirname(save_path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        data = self.to_dict()

        with open(save_path, 'w', encoding='utf-8') as f:
            if save_path.endswith('.json'):
                json.dump(data, f, indent=2)
            else:
                yaml.dump(data, f, default_flow_style=False, allow_unicode=True)

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        return {section: asdict(getattr(self, section)) for section in self.SECTIONS}

    def create_sample(self, output_path: str):
        """샘플 설정 파일 생성"""
        template = """# WireGuard Peer Agent Configuration File
# 이 파일을 복사하여 config.yaml로 사용하세요

# WireGuard 서버 설정
server:
  interface: "wg0"
  config_dir: "/etc/wireguard"
  clients_dir: ""  # 비워두면 /etc/wireguard/clients
  subnet: "10.0.0.0/24"  # /24 서브넷만 지원 (.1 은 서버 인터페이스)
  listen_port: 0  # 0 이면 1024-65535 중 무작위
  endpoint: ""  # 클라이언트가 접속할 공인 주소 (비워두면 자동 조회)
  endpoint_lookup_url: "https://ifconfig.me/ip"

# 피어 공통 정책
peers:
  persistent_keepalive: 25
  dns:
    - "8.8.8.8"
    - "8.8.4.4"
  client_allowed_ips: "0.0.0.0/0"

# 방화벽 템플릿 (PostUp/PostDown)
firewall:
  enabled: true
  wan_interface: "eth0"

# 에이전트 설정
agent:
  log_dir: "/var/log/wg-peer-agent"
  log_level: "INFO"  # DEBUG, INFO, WARNING, ERROR
  sync_timeout: 10  # wg 명령 타임아웃 (초)
"""

        parent = os.path.dirname(output_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(template)
