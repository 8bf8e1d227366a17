"""
설정 저장소 모듈
서버 문서(wg0.conf)와 피어 디렉토리의 원자적 읽기/쓰기, 변경 잠금
"""

import fcntl
import ipaddress
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .config import ServerSettings
from .errors import ConfigCorrupt, ConfigNotFound, InvalidName, PersistenceError
from .logger import get_logger
from .models import NAME_PATTERN, KeyPair, PeerRecord, ServerConfig
from .render import PEER_MARKER, render_server_config

LOCK_FILE_NAME = ".wg-peer-agent.lock"

PRIVATE_MODE = 0o600
PUBLIC_MODE = 0o644

INTERFACE_KEYS = {"address", "listenport", "privatekey", "postup", "postdown"}
PEER_KEYS = {"publickey", "allowedips", "persistentkeepalive"}


def atomic_write(path: Path, text: str, mode: int = PRIVATE_MODE):
    """
    임시 파일에 쓴 뒤 os.replace 로 교체

    동시에 읽는 쪽은 이전 문서 또는 새 문서 중 하나만 보게 된다.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        raise PersistenceError(f"{path.parent} 에 임시 파일을 만들 수 없습니다: {e}")

    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            os.fchmod(f.fileno(), mode)
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, str(path))
    except OSError as e:
        raise PersistenceError(f"{path} 쓰기 실패: {e}")
    finally:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)


def read_optional(path: Path, peer: Optional[str] = None) -> Optional[str]:
    """파일 내용 반환. 파일이 없으면 None"""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        raise PersistenceError(f"{path} 읽기 실패: {e}", peer=peer)


def parse_server_config(content: str, source: str = "<server config>") -> ServerConfig:
    """서버 문서 파싱. 형식 오류는 ConfigCorrupt"""

    def corrupt(lineno: int, reason: str) -> ConfigCorrupt:
        return ConfigCorrupt(f"{source}:{lineno}: {reason}")

    interface: Optional[Dict] = None
    peers: List[Dict] = []
    section: Optional[Dict] = None
    pending_name: Optional[str] = None

    for lineno, raw in enumerate(content.splitlines(), 1):
        line = raw.strip()
        if not line:
            continue

        if line.startswith("#"):
            if line.startswith(PEER_MARKER):
                pending_name = line[len(PEER_MARKER):].strip()
                if not pending_name:
                    raise corrupt(lineno, "빈 피어 이름 주석")
                if not NAME_PATTERN.match(pending_name):
                    raise corrupt(lineno, f"잘못된 피어 이름: {pending_name!r}")
            continue

        if line.startswith("["):
            header = line.lower()
            if header == "[interface]":
                if interface is not None:
                    raise corrupt(lineno, "[Interface] 섹션 중복")
                interface = {"_line": lineno, "post_up": [], "post_down": [], "extra": {}}
                section = interface
            elif header == "[peer]":
                if pending_name is None:
                    raise corrupt(lineno, f"[Peer] 블록에 '{PEER_MARKER} <name>' 주석이 없습니다")
                section = {"_line": lineno, "name": pending_name}
                peers.append(section)
                pending_name = None
            else:
                raise corrupt(lineno, f"알 수 없는 섹션 {line}")
            continue

        if "=" not in line:
            raise corrupt(lineno, f"해석할 수 없는 줄: {line}")
        if section is None:
            raise corrupt(lineno, "섹션 밖의 설정 키")

        key, value = (part.strip() for part in line.split("=", 1))
        lkey = key.lower()

        if section is interface:
            if lkey == "postup":
                interface["post_up"].append(value)
            elif lkey == "postdown":
                interface["post_down"].append(value)
            elif lkey in INTERFACE_KEYS:
                interface[lkey] = value
            else:
                interface["extra"][key] = value
        else:
            if lkey not in PEER_KEYS:
                raise corrupt(lineno, f"지원하지 않는 [Peer] 키: {key}")
            section[lkey] = value

    if interface is None:
        raise ConfigCorrupt(f"{source}: [Interface] 섹션이 없습니다")

    for required in ("address", "listenport", "privatekey"):
        if required not in interface:
            raise corrupt(interface["_line"], f"[Interface] 필수 키 누락: {required}")

    try:
        iface = ipaddress.IPv4Interface(interface["address"])
        listen_port = int(interface["listenport"])
    except ValueError as e:
        raise corrupt(interface["_line"], f"잘못된 인터페이스 값: {e}")
    if not 1 <= listen_port <= 65535:
        raise corrupt(interface["_line"], f"ListenPort 범위 오류: {listen_port}")

    cfg = ServerConfig(
        address=interface["address"],
        listen_port=listen_port,
        private_key=interface["privatekey"],
        post_up=interface["post_up"],
        post_down=interface["post_down"],
        extra=interface["extra"],
    )

    for peer in peers:
        lineno = peer["_line"]
        name = peer["name"]
        for required in ("publickey", "allowedips"):
            if required not in peer:
                raise corrupt(lineno, f"피어 '{name}' 필수 키 누락: {required}")
        if name in cfg.peers:
            raise corrupt(lineno, f"피어 이름 중복: {name}")

        try:
            route = ipaddress.IPv4Network(peer["allowedips"], strict=True)
            keepalive = int(peer.get("persistentkeepalive", 0))
        except ValueError as e:
            raise corrupt(lineno, f"피어 '{name}' 값 오류: {e}")
        if route.prefixlen != 32 or route.network_address not in iface.network:
            raise corrupt(lineno, f"피어 '{name}' AllowedIPs 가 서브넷의 /32 가 아닙니다: {route}")
        if route.network_address == iface.ip:
            raise corrupt(lineno, f"피어 '{name}' 가 인터페이스 주소 {iface.ip} 를 사용합니다")

        address = str(route.network_address)
        owner = cfg.find_by_address(address)
        if owner is not None:
            raise corrupt(lineno, f"주소 {address} 가 '{owner.name}' 와 '{name}' 에 중복 할당됨")

        cfg.peers[name] = PeerRecord(
            name=name,
            public_key=peer["publickey"],
            address=address,
            persistent_keepalive=keepalive,
        )

    return cfg


class ConfigStore:
    """서버 문서 + 피어 디렉토리 저장소"""

    def __init__(self, server_config_path: str, peer_dir: str, lock_path: Optional[str] = None):
        self.server_config_path = Path(server_config_path)
        self.config_dir = self.server_config_path.parent
        self.peer_dir = Path(peer_dir)
        self.lock_path = Path(lock_path) if lock_path else self.config_dir / LOCK_FILE_NAME
        self.logger = get_logger()

    @classmethod
    def from_settings(cls, settings: ServerSettings) -> "ConfigStore":
        return cls(settings.server_config_path, settings.peer_dir)

    # ---------- 잠금 ----------

    @contextmanager
    def lock(self) -> Iterator[None]:
        """변경 작업 직렬화용 배타 잠금 (프로세스/스레드 간 모두 유효)"""
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            lock_file = open(self.lock_path, "a+")
        except OSError as e:
            raise PersistenceError(f"잠금 파일을 열 수 없습니다: {self.lock_path} ({e})")

        with lock_file:
            self.logger.debug(f"Waiting for lock {self.lock_path}")
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    # ---------- 서버 문서 ----------

    @property
    def public_key_path(self) -> Path:
        return self.config_dir / "publickey"

    @property
    def private_key_path(self) -> Path:
        return self.config_dir / "privatekey"

    def exists(self) -> bool:
        return self.server_config_path.exists()

    def load_server_config(self) -> ServerConfig:
        """서버 문서 로드"""
        try:
            content = self.server_config_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise ConfigNotFound(f"서버 설정이 없습니다: {self.server_config_path} (provision 먼저 실행)")
        except UnicodeDecodeError as e:
            raise ConfigCorrupt(f"{self.server_config_path}: 텍스트 문서가 아닙니다 ({e})")
        except OSError as e:
            raise PersistenceError(f"{self.server_config_path} 읽기 실패: {e}")

        cfg = parse_server_config(content, str(self.server_config_path))
        public_key = read_optional(self.public_key_path)
        if public_key is not None:
            cfg.public_key = public_key.strip() or None

        self.logger.debug(f"Loaded {self.server_config_path} ({len(cfg.peers)} peers)")
        return cfg

    def save_server_config(self, cfg: ServerConfig):
        """서버 문서 전체를 다시 렌더링하여 원자적으로 교체"""
        atomic_write(self.server_config_path, render_server_config(cfg), PRIVATE_MODE)
        self.logger.debug(f"Saved {self.server_config_path} ({len(cfg.peers)} peers)")

    def write_server_keys(self, keys: KeyPair):
        """서버 키 파일 저장 (privatekey 0600, publickey 0644)"""
        atomic_write(self.private_key_path, keys.private_key + "\n", PRIVATE_MODE)
        atomic_write(self.public_key_path, keys.public_key + "\n", PUBLIC_MODE)

    # ---------- 피어 디렉토리 ----------

    def client_paths(self, name: str) -> Dict[str, Path]:
        if not NAME_PATTERN.match(name):
            raise InvalidName(f"피어 디렉토리 밖을 가리키는 이름: {name!r}", peer=name)
        return {
            "config": self.peer_dir / f"{name}.conf",
            "private_key": self.peer_dir / f"{name}_private.key",
            "public_key": self.peer_dir / f"{name}_public.key",
        }

    def write_client_file(self, name: str, document: str, keys: Optional[KeyPair] = None) -> Path:
        """클라이언트 문서 저장 (개인키 포함이므로 0600)"""
        paths = self.client_paths(name)
        if keys is not None:
            atomic_write(paths["private_key"], keys.private_key + "\n", PRIVATE_MODE)
            atomic_write(paths["public_key"], keys.public_key + "\n", PUBLIC_MODE)
        atomic_write(paths["config"], document, PRIVATE_MODE)
        self.logger.debug(f"Wrote client config {paths['config']}")
        return paths["config"]

    def read_client_file(self, name: str) -> Optional[str]:
        return read_optional(self.client_paths(name)["config"], peer=name)

    def read_client_private_key(self, name: str) -> Optional[str]:
        content = read_optional(self.client_paths(name)["private_key"], peer=name)
        if content is None:
            return None
        return content.strip() or None

    def delete_client_files(self, name: str) -> List[Path]:
        """이름에 연결된 모든 파일 삭제. 이미 없으면 아무것도 하지 않음"""
        removed = []
        for path in self.client_paths(name).values():
            try:
                path.unlink()
                removed.append(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                raise PersistenceError(f"{path} 삭제 실패: {e}", peer=name)
        if removed:
            self.logger.debug(f"Removed client files for {name}: {[p.name for p in removed]}")
        return removed

    def list_client_files(self) -> List[str]:
        """피어 디렉토리에 .conf 문서가 있는 이름 목록"""
        if not self.peer_dir.is_dir():
            return []
        return sorted(p.stem for p in self.peer_dir.glob("*.conf"))
