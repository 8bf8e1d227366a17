"""
주소 할당 모듈
/24 서브넷에서 사용되지 않은 가장 낮은 호스트 옥텟을 반환
"""

import ipaddress
from typing import Iterable, Set, Union

from .errors import AddressSpaceExhausted, InvalidAddress
from .models import ServerConfig

INTERFACE_OCTET = 1
FIRST_HOST_OCTET = 2
LAST_HOST_OCTET = 254

Subnet = Union[str, ipaddress.IPv4Network]


def _network(subnet: Subnet) -> ipaddress.IPv4Network:
    try:
        net = ipaddress.IPv4Network(str(subnet), strict=False)
    except ValueError as e:
        raise InvalidAddress(f"잘못된 서브넷: {subnet} ({e})")
    if net.prefixlen != 24:
        raise InvalidAddress(f"/24 서브넷만 지원합니다: {subnet}")
    return net


def allocate(subnet: Subnet, in_use: Iterable[int]) -> int:
    """
    사용 중이 아닌 가장 작은 옥텟 [2, 254] 반환

    같은 in_use 에 대해 항상 같은 결과를 반환한다 (부작용 없음).
    호출자는 다음 할당 전에 결과를 ServerConfig 에 반영해야 한다.
    """
    net = _network(subnet)
    used: Set[int] = set(in_use)
    used.add(INTERFACE_OCTET)

    for octet in range(FIRST_HOST_OCTET, LAST_HOST_OCTET + 1):
        if octet not in used:
            return octet

    raise AddressSpaceExhausted(f"{net} 에 할당 가능한 주소가 없습니다")


def host_address(subnet: Subnet, octet: int) -> str:
    """옥텟 -> 호스트 주소 문자열 (예: 2 -> '10.0.0.2')"""
    net = _network(subnet)
    return str(net.network_address + octet)


def host_octet(address: str, subnet: Subnet) -> int:
    """호스트 주소 -> 옥텟. 서브넷 밖이거나 [2, 254] 범위 밖이면 InvalidAddress"""
    net = _network(subnet)
    try:
        ip = ipaddress.IPv4Address(address.split("/")[0].strip())
    except ValueError:
        raise InvalidAddress(f"잘못된 주소: {address}")

    if ip not in net:
        raise InvalidAddress(f"{ip} 는 서브넷 {net} 에 속하지 않습니다")

    octet = int(ip) - int(net.network_address)
    if not FIRST_HOST_OCTET <= octet <= LAST_HOST_OCTET:
        raise InvalidAddress(f"{ip} 는 피어에 할당할 수 없는 주소입니다")
    return octet


def used_octets(cfg: ServerConfig) -> Set[int]:
    """현재 피어가 사용 중인 옥텟 + 인터페이스 옥텟"""
    used = {INTERFACE_OCTET}
    net = cfg.network
    for peer in cfg.peers.values():
        used.add(int(ipaddress.IPv4Address(peer.address)) - int(net.network_address))
    return used
