"""
서버 프로비저닝 모듈
ServerConfig 최초 생성 (키, 인터페이스 주소, 포트, 고정 방화벽 템플릿)
및 클라이언트용 공인 엔드포인트 조회
"""

import ipaddress
import random
from typing import List, Optional, Tuple

import requests

from .config import Config
from .errors import AlreadyProvisioned, InvalidAddress
from .logger import get_logger
from .models import ServerConfig
from .store import ConfigStore

PORT_RANGE = (1024, 65535)


def firewall_template(interface: str, wan_interface: str) -> Tuple[List[str], List[str]]:
    """고정 포워딩/NAT 템플릿 (PostUp, PostDown)"""
    post_up = [
        f"iptables -A FORWARD -i {interface} -j ACCEPT; "
        f"iptables -A FORWARD -o {interface} -j ACCEPT; "
        f"iptables -t nat -A POSTROUTING -o {wan_interface} -j MASQUERADE",
        "sysctl -w net.ipv4.ip_forward=1",
    ]
    post_down = [
        f"iptables -D FORWARD -i {interface} -j ACCEPT; "
        f"iptables -D FORWARD -o {interface} -j ACCEPT; "
        f"iptables -t nat -D POSTROUTING -o {wan_interface} -j MASQUERADE",
    ]
    return post_up, post_down


def interface_address(subnet: str) -> str:
    """서브넷 -> 서버 인터페이스 주소 (<base>.1/24)"""
    try:
        net = ipaddress.IPv4Network(subnet, strict=False)
    except ValueError as e:
        raise InvalidAddress(f"잘못된 서브넷: {subnet} ({e})")
    if net.prefixlen != 24:
        raise InvalidAddress(f"/24 서브넷만 지원합니다: {subnet}")
    return f"{net.network_address + 1}/{net.prefixlen}"


def provision_server(
    store: ConfigStore,
    keys,
    config: Config,
    listen_port: Optional[int] = None,
    force: bool = False,
) -> ServerConfig:
    """
    서버 설정 문서 최초 생성

    Args:
        store: 설정 저장소
        keys: 키 생성기
        config: 에이전트 설정
        listen_port: 지정 포트 (없으면 설정값, 설정값도 0 이면 무작위)
        force: 기존 문서가 있어도 덮어쓰기 (모든 피어 정보가 사라짐)

    Returns:
        ServerConfig: 생성된 서버 설정
    """
    logger = get_logger()

    with store.lock():
        if store.exists() and not force:
            raise AlreadyProvisioned(f"이미 프로비저닝된 서버입니다: {store.server_config_path}")

        port = listen_port or config.server.listen_port or random.randint(*PORT_RANGE)
        if not 1 <= port <= 65535:
            raise InvalidAddress(f"ListenPort 범위 오류: {port}")

        server_keys = keys.generate()

        post_up: List[str] = []
        post_down: List[str] = []
        if config.firewall.enabled:
            post_up, post_down = firewall_template(config.server.interface, config.firewall.wan_interface)

        cfg = ServerConfig(
            address=interface_address(config.server.subnet),
            listen_port=port,
            private_key=server_keys.private_key,
            public_key=server_keys.public_key,
            post_up=post_up,
            post_down=post_down,
        )

        store.write_server_keys(server_keys)
        store.save_server_config(cfg)
        store.peer_dir.mkdir(parents=True, exist_ok=True)

    logger.info(f"Provisioned {store.server_config_path} (address={cfg.address}, port={cfg.listen_port})")
    return cfg


def resolve_endpoint(config: Config, timeout: int = 5) -> Optional[str]:
    """
    클라이언트가 접속할 서버 주소

    설정에 endpoint 가 있으면 그대로 사용하고, 없으면 HTTP 로 공인 IP 를 조회한다.
    조회 실패 시 None.
    """
    logger = get_logger()
    if config.server.endpoint:
        return config.server.endpoint

    url = config.server.endpoint_lookup_url
    if not url:
        return None

    try:
        logger.debug(f"Looking up public IP via {url}...")
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        public_ip = response.text.strip()
        ipaddress.ip_address(public_ip)
        logger.debug(f"Public IP: {public_ip}")
        return public_ip
    except requests.exceptions.RequestException as e:
        logger.warning(f"Public IP lookup failed: {e}")
        return None
    except ValueError:
        logger.warning(f"Public IP lookup returned unexpected content from {url}")
        return None
