"""
공통 테스트 픽스처
실제 wg 명령 대신 가짜 키 생성기와 가짜 라이브 인터페이스를 사용
"""

import itertools
import pytest

from wg_peer_agent.config import Config
from wg_peer_agent.errors import SyncUnavailable
from wg_peer_agent.logger import init_logger
from wg_peer_agent.models import KeyPair, LivePeer, ServerConfig
from wg_peer_agent.registry import PeerRegistry
from wg_peer_agent.store import ConfigStore
from wg_peer_agent.sync import RuntimeSynchronizer


@pytest.fixture(autouse=True, scope="session")
def console_logger():
    """파일 로그 없이 콘솔 로깅만 사용"""
    return init_logger(None, "DEBUG", False)


class FakeKeyPairProvider:
    """결정적 키 생성기"""

    def __init__(self):
        self._counter = itertools.count(1)
        self.generated = 0

    def generate(self) -> KeyPair:
        n = next(self._counter)
        self.generated += 1
        private_key = f"PRIVATE-{n:04d}"
        return KeyPair(private_key=private_key, public_key=self.public_key(private_key))

    def public_key(self, private_key: str) -> str:
        return private_key.replace("PRIVATE", "PUBLIC")


class FakeWgInterface:
    """메모리 기반 라이브 인터페이스"""

    def __init__(self, interface: str = "wg0"):
        self.interface = interface
        self.up = True
        self.peers = {}
        self.applied = []
        self.handshakes = {}

    def _check(self):
        if not self.up:
            raise SyncUnavailable(f"{self.interface} 인터페이스에 접근할 수 없습니다: No such device")

    def exists(self) -> bool:
        return self.up

    def dump(self):
        self._check()
        return [
            LivePeer(
                public_key=key,
                allowed_ips=peer.allowed_ips,
                latest_handshake=self.handshakes.get(key, 0),
                persistent_keepalive=peer.persistent_keepalive,
            )
            for key, peer in self.peers.items()
        ]

    def latest_handshakes(self):
        return {peer.public_key: peer.latest_handshake for peer in self.dump()}

    def apply(self, plan):
        self._check()
        self.applied.append(plan)
        for key in plan.remove:
            self.peers.pop(key, None)
        for record in plan.add + plan.update:
            self.peers[record.public_key] = LivePeer(
                public_key=record.public_key,
                allowed_ips=record.allowed_ips,
                persistent_keepalive=record.persistent_keepalive or None,
            )


@pytest.fixture
def keys():
    return FakeKeyPairProvider()


@pytest.fixture
def wg():
    return FakeWgInterface()


@pytest.fixture
def agent_config(tmp_path):
    cfg = Config(str(tmp_path / "missing.yaml"))
    cfg.server.config_dir = str(tmp_path / "wireguard")
    cfg.server.endpoint = "203.0.113.10"
    cfg.agent.log_dir = str(tmp_path / "logs")
    return cfg


@pytest.fixture
def store(agent_config):
    return ConfigStore.from_settings(agent_config.server)


@pytest.fixture
def server_config(store):
    """10.0.0.0/24 서브넷으로 프로비저닝된 빈 서버"""
    cfg = ServerConfig(
        address="10.0.0.1/24",
        listen_port=51820,
        private_key="SERVER-PRIVATE",
        public_key="SERVER-PUBLIC",
    )
    store.save_server_config(cfg)
    store.public_key_path.write_text("SERVER-PUBLIC\n")
    return cfg


@pytest.fixture
def registry(store, keys, wg, server_config, agent_config):
    return PeerRegistry(
        store=store,
        keys=keys,
        synchronizer=RuntimeSynchronizer(wg),
        peer_settings=agent_config.peers,
        endpoint_resolver=lambda: agent_config.server.endpoint,
    )
