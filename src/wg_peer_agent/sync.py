"""
런타임 동기화 모듈
영구 저장된 피어 집합을 라이브 WireGuard 인터페이스에 diff 로 반영

인터페이스 재시작(wg-quick down/up) 대신 `wg set` 한 번으로 추가/변경/삭제만
적용하므로 변경되지 않은 피어의 세션과 핸드셰이크는 유지된다.
"""

import subprocess
from typing import Dict, List, Optional

from .errors import SyncUnavailable
from .logger import get_logger
from .models import LivePeer, ServerConfig, SyncPlan, SyncResult


class WgInterface:
    """`wg` 명령 기반 라이브 인터페이스 어댑터"""

    def __init__(self, interface: str = "wg0", timeout: int = 10, wg_binary: str = "wg"):
        self.interface = interface
        self.timeout = timeout
        self.wg_binary = wg_binary
        self.logger = get_logger()

    def _run(self, args: List[str]) -> str:
        cmd = [self.wg_binary] + args
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except FileNotFoundError:
            raise SyncUnavailable(f"{self.wg_binary} 명령을 찾을 수 없습니다")
        except subprocess.TimeoutExpired:
            raise SyncUnavailable(f"{' '.join(cmd[:3])} 타임아웃 ({self.timeout}s)")

        if result.returncode != 0:
            error_msg = result.stderr.strip() or result.stdout.strip()
            raise SyncUnavailable(f"{self.interface} 인터페이스에 접근할 수 없습니다: {error_msg}")
        return result.stdout

    def exists(self) -> bool:
        try:
            self._run(["show", self.interface])
            return True
        except SyncUnavailable:
            return False

    def dump(self) -> List[LivePeer]:
        """`wg show <iface> dump` 파싱 (첫 줄은 인터페이스 정보)"""
        output = self._run(["show", self.interface, "dump"])
        peers = []
        for line in output.strip().splitlines()[1:]:
            parts = line.split("\t")
            if len(parts) < 8:
                self.logger.debug(f"Skipping malformed dump line: {line!r}")
                continue
            peers.append(LivePeer(
                public_key=parts[0],
                endpoint=parts[2] if parts[2] != "(none)" else None,
                allowed_ips=parts[3] if parts[3] != "(none)" else "",
                latest_handshake=int(parts[4]) if parts[4].isdigit() else 0,
                persistent_keepalive=int(parts[7]) if parts[7].isdigit() else None,
            ))
        return peers

    def latest_handshakes(self) -> Dict[str, int]:
        return {peer.public_key: peer.latest_handshake for peer in self.dump()}

    def build_set_command(self, plan: SyncPlan) -> List[str]:
        """diff 전체를 하나의 `wg set` 인자 목록으로 변환"""
        args = ["set", self.interface]
        for public_key in plan.remove:
            args += ["peer", public_key, "remove"]
        for record in plan.add + plan.update:
            keepalive = str(record.persistent_keepalive) if record.persistent_keepalive else "off"
            args += [
                "peer", record.public_key,
                "persistent-keepalive", keepalive,
                "allowed-ips", record.allowed_ips,
            ]
        return args

    def apply(self, plan: SyncPlan):
        """diff 적용 (한 번의 wg set 호출 = 커널에 한 번의 디바이스 갱신)"""
        self._run(self.build_set_command(plan))


class RuntimeSynchronizer:
    """영구 설정 -> 라이브 인터페이스 수렴"""

    def __init__(self, wg: WgInterface):
        self.wg = wg
        self.logger = get_logger()

    @staticmethod
    def _normalize_ips(value: str) -> str:
        return ",".join(sorted(ip.strip() for ip in value.split(",") if ip.strip()))

    def plan(self, cfg: ServerConfig, live: Optional[List[LivePeer]] = None) -> SyncPlan:
        """목표 피어 집합과 라이브 피어 집합의 diff 계산"""
        if live is None:
            live = self.wg.dump()
        live_by_key = {peer.public_key: peer for peer in live}
        target = {record.public_key: record for record in cfg.peers.values()}

        plan = SyncPlan()
        for public_key in live_by_key:
            if public_key not in target:
                plan.remove.append(public_key)

        for public_key, record in target.items():
            current = live_by_key.get(public_key)
            if current is None:
                plan.add.append(record)
                continue

            same_ips = self._normalize_ips(current.allowed_ips) == self._normalize_ips(record.allowed_ips)
            same_keepalive = (current.persistent_keepalive or 0) == record.persistent_keepalive
            if same_ips and same_keepalive:
                plan.unchanged.append(public_key)
            else:
                plan.update.append(record)

        return plan

    def converge(self, cfg: ServerConfig) -> SyncResult:
        """
        라이브 인터페이스를 cfg 의 피어 집합과 일치시킨다

        인터페이스가 없거나(서비스 중지) wg 호출이 실패/타임아웃되면 SyncUnavailable.
        변경할 것이 없으면 라이브 인터페이스에 어떤 명령도 보내지 않는다.
        """
        plan = self.plan(cfg)
        result = SyncResult(
            added=len(plan.add),
            updated=len(plan.update),
            removed=len(plan.remove),
            unchanged=len(plan.unchanged),
        )

        if plan.is_empty:
            self.logger.debug(f"{self.wg.interface} already converged ({result.unchanged} peers)")
            return result

        self.wg.apply(plan)
        self.logger.info(
            f"Converged {self.wg.interface}: +{result.added} ~{result.updated} "
            f"-{result.removed} ={result.unchanged}"
        )
        return result

    def handshakes(self) -> Dict[str, int]:
        """공개키 -> 마지막 핸드셰이크 시각 (epoch 초, 0 = 없음)"""
        return self.wg.latest_handshakes()
