"""
피어 레지스트리
주소 할당 + 키 생성 + 저장소 + 런타임 동기화를 묶어 add/remove/list 제공

변경 작업(add, remove, sync)은 저장소 잠금을 잡은 상태에서
load -> mutate -> persist -> converge 전체를 수행한다.
"""

import time
from typing import Callable, List, Optional

from . import allocator
from .config import PeerSettings
from .errors import (
    STAGE_PERSISTENCE,
    AddressInUse,
    ClientFileMissing,
    DuplicateName,
    InvalidAddress,
    InvalidName,
    NotFound,
    RepairImpossible,
    SyncUnavailable,
    WgAgentError,
)
from .logger import get_logger
from .models import (
    NAME_PATTERN,
    ONLINE_HANDSHAKE_WINDOW,
    STATUS_OFFLINE,
    STATUS_ONLINE,
    STATUS_UNKNOWN,
    KeyPair,
    PeerRecord,
    PeerStatus,
    ServerConfig,
    SyncResult,
)
from .render import render_client_config
from .store import ConfigStore
from .sync import RuntimeSynchronizer


def validate_name(name: str):
    if not name or not NAME_PATTERN.match(name):
        raise InvalidName(
            f"잘못된 피어 이름: {name!r} (영문/숫자/'_.-', 최대 64자)",
            peer=name,
        )


class PeerRegistry:
    """피어 도메인 API"""

    def __init__(
        self,
        store: ConfigStore,
        keys,
        synchronizer: RuntimeSynchronizer,
        peer_settings: Optional[PeerSettings] = None,
        endpoint_resolver: Optional[Callable[[], Optional[str]]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            store: 설정 저장소
            keys: generate() / public_key(private) 를 제공하는 키 생성기
            synchronizer: 라이브 인터페이스 동기화기
            peer_settings: 피어 공통 정책 (keepalive, DNS, 클라이언트 AllowedIPs)
            endpoint_resolver: 클라이언트 문서에 넣을 서버 공인 주소 반환 함수
            clock: 현재 시각 (온라인 판정용)
        """
        self.store = store
        self.keys = keys
        self.synchronizer = synchronizer
        self.peer_settings = peer_settings or PeerSettings()
        self.endpoint_resolver = endpoint_resolver or (lambda: None)
        self.clock = clock
        self.logger = get_logger()

    # ---------- 내부 헬퍼 ----------

    def _dns(self) -> List[str]:
        dns = self.peer_settings.dns
        if isinstance(dns, str):
            return [d.strip() for d in dns.split(",") if d.strip()]
        return list(dns or [])

    def _resolve_address(self, cfg: ServerConfig, address: Optional[str]) -> str:
        if address is None:
            octet = allocator.allocate(cfg.network, allocator.used_octets(cfg))
            return allocator.host_address(cfg.network, octet)

        octet = allocator.host_octet(address, cfg.network)
        resolved = allocator.host_address(cfg.network, octet)
        owner = cfg.find_by_address(resolved)
        if owner is not None:
            raise AddressInUse(f"{resolved} 는 이미 '{owner.name}' 에 할당되어 있습니다")
        return resolved

    def _render_client(self, cfg: ServerConfig, record: PeerRecord, private_key: str) -> str:
        server_public_key = cfg.public_key or self.keys.public_key(cfg.private_key)
        endpoint = self.endpoint_resolver()
        if not endpoint:
            self.logger.warning(f"Server endpoint unknown, client config for {record.name} has no Endpoint")
        return render_client_config(
            cfg,
            record,
            private_key=private_key,
            server_public_key=server_public_key,
            endpoint=endpoint,
            dns=self._dns(),
            allowed_ips=self.peer_settings.client_allowed_ips,
        )

    def _converge_after_persist(self, cfg: ServerConfig, name: str) -> SyncResult:
        try:
            return self.synchronizer.converge(cfg)
        except SyncUnavailable as e:
            self.logger.error(f"Persisted change for {name} not applied to live interface: {e.message}")
            e.peer = name
            e.partial = True
            raise

    # ---------- 공개 API ----------

    def add(self, name: str, address: Optional[str] = None, repair: bool = False) -> PeerRecord:
        """
        피어 추가

        Args:
            name: 피어 이름 (고유)
            address: 명시적 호스트 주소 (없으면 가장 낮은 미사용 주소)
            repair: 이미 등록된 이름이면 키/주소는 그대로 두고
                    누락된 클라이언트 문서와 라이브 동기화만 다시 수행

        Returns:
            PeerRecord: 추가(또는 복구)된 피어
        """
        validate_name(name)
        try:
            with self.store.lock():
                cfg = self.store.load_server_config()

                existing = cfg.peers.get(name)
                if existing is not None:
                    if not repair:
                        raise DuplicateName(f"피어 '{name}' 가 이미 존재합니다 (복구하려면 --repair)")
                    if address is not None:
                        self._check_repair_address(cfg, existing, address)
                    return self._repair(cfg, existing)

                resolved = self._resolve_address(cfg, address)
                keys: KeyPair = self.keys.generate()

                record = PeerRecord(
                    name=name,
                    public_key=keys.public_key,
                    address=resolved,
                    persistent_keepalive=self.peer_settings.persistent_keepalive,
                )
                cfg.peers[name] = record
                self.store.save_server_config(cfg)
                self.logger.info(f"Registered peer {name} at {resolved}")

                # 여기부터의 실패는 부분 적용 상태 (레지스트리에는 이미 기록됨)
                try:
                    document = self._render_client(cfg, record, keys.private_key)
                    self.store.write_client_file(name, document, keys)
                except WgAgentError as e:
                    e.stage = STAGE_PERSISTENCE
                    e.partial = True
                    raise

                self._converge_after_persist(cfg, name)
                self.logger.info(f"Peer {name} added ({resolved})")
                return record

        except WgAgentError as e:
            if e.peer is None:
                e.peer = name
            raise

    def _check_repair_address(self, cfg: ServerConfig, record: PeerRecord, address: str):
        """repair 는 주소를 바꾸지 않는다. 다른 주소가 지정되면 거부"""
        octet = allocator.host_octet(address, cfg.network)
        if allocator.host_address(cfg.network, octet) != record.address:
            raise InvalidAddress(
                f"'{record.name}' 는 {record.address} 로 등록되어 있습니다 "
                f"(repair 로 주소를 바꿀 수 없습니다. remove 후 다시 add 하세요)",
                peer=record.name,
            )

    def _repair(self, cfg: ServerConfig, record: PeerRecord) -> PeerRecord:
        """부분 적용된 add 복구. 키는 절대 재생성하지 않는다"""
        name = record.name
        self.logger.info(f"Repairing peer {name}")

        if self.store.read_client_file(name) is None:
            private_key = self.store.read_client_private_key(name)
            if private_key is None:
                raise RepairImpossible(
                    f"'{name}' 의 개인키가 남아있지 않아 클라이언트 문서를 복구할 수 없습니다 "
                    f"(remove 후 다시 add 하세요)",
                    peer=name,
                )
            if self.keys.public_key(private_key) != record.public_key:
                raise RepairImpossible(
                    f"'{name}' 의 저장된 개인키가 등록된 공개키와 일치하지 않습니다",
                    peer=name,
                )
            document = self._render_client(cfg, record, private_key)
            self.store.write_client_file(name, document)
            self.logger.info(f"Rebuilt client config for {name}")

        self._converge_after_persist(cfg, name)
        return record

    def remove(self, name: str):
        """
        피어 삭제. 등록되지 않은 이름이면 NotFound

        클라이언트 파일 삭제가 실패해도 라이브 인터페이스에서는 반드시 제거한 뒤
        삭제 실패를 부분 적용으로 보고한다.
        """
        validate_name(name)
        try:
            with self.store.lock():
                cfg = self.store.load_server_config()
                if name not in cfg.peers:
                    raise NotFound(f"피어 '{name}' 를 찾을 수 없습니다")

                record = cfg.peers.pop(name)
                self.store.save_server_config(cfg)
                self.logger.info(f"Unregistered peer {name} ({record.address})")

                cleanup_error: Optional[WgAgentError] = None
                try:
                    self.store.delete_client_files(name)
                except WgAgentError as e:
                    self.logger.error(f"Client files for {name} not fully removed: {e.message}")
                    e.partial = True
                    cleanup_error = e

                self._converge_after_persist(cfg, name)
                if cleanup_error is not None:
                    raise cleanup_error
                self.logger.info(f"Peer {name} removed")

        except WgAgentError as e:
            if e.peer is None:
                e.peer = name
            raise

    def list(self) -> List[PeerStatus]:
        """
        피어 목록 + 온라인 상태

        라이브 조회 실패 시 전체를 실패시키지 않고 상태를 unknown 으로 표시한다.
        """
        cfg = self.store.load_server_config()

        try:
            handshakes = self.synchronizer.handshakes()
        except SyncUnavailable as e:
            self.logger.warning(f"Live status unavailable: {e.message}")
            handshakes = None

        now = int(self.clock())
        result = []
        for record in cfg.peers.values():
            if handshakes is None:
                result.append(PeerStatus(record=record, status=STATUS_UNKNOWN))
                continue

            latest = handshakes.get(record.public_key) or None
            online = latest is not None and now - latest < ONLINE_HANDSHAKE_WINDOW
            result.append(PeerStatus(
                record=record,
                status=STATUS_ONLINE if online else STATUS_OFFLINE,
                latest_handshake=latest,
            ))
        return result

    def show(self, name: str) -> str:
        """저장된 클라이언트 문서 반환"""
        validate_name(name)
        cfg = self.store.load_server_config()
        if name not in cfg.peers:
            raise NotFound(f"피어 '{name}' 를 찾을 수 없습니다", peer=name)

        document = self.store.read_client_file(name)
        if document is None:
            raise ClientFileMissing(
                f"'{name}' 의 클라이언트 문서가 없습니다 (add {name} --repair 로 복구)",
                peer=name,
            )
        return document

    def sync(self) -> SyncResult:
        """영구 설정을 라이브 인터페이스에 다시 반영 (sync 단계 재시도용)"""
        with self.store.lock():
            cfg = self.store.load_server_config()
            return self.synchronizer.converge(cfg)
