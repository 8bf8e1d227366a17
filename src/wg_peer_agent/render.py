"""
설정 문서 렌더링
서버 문서(wg0.conf)와 클라이언트 문서를 jinja2 템플릿으로 생성
"""

import ipaddress
from typing import List, Optional
from jinja2 import Template

from .models import PeerRecord, ServerConfig

# 피어 블록 식별용 이름 주석 (파싱 시 동일한 접두어 사용)
PEER_MARKER = "# Client:"

SERVER_TEMPLATE = """[Interface]
Address = {{ cfg.address }}
ListenPort = {{ cfg.listen_port }}
PrivateKey = {{ cfg.private_key }}
{% for key, value in cfg.extra.items() %}
{{ key }} = {{ value }}
{% endfor %}
{% for line in cfg.post_up %}
PostUp = {{ line }}
{% endfor %}
{% for line in cfg.post_down %}
PostDown = {{ line }}
{% endfor %}
{% for peer in peers %}

{{ marker }} {{ peer.name }}
[Peer]
PublicKey = {{ peer.public_key }}
AllowedIPs = {{ peer.allowed_ips }}
PersistentKeepalive = {{ peer.persistent_keepalive }}
{% endfor %}
"""

CLIENT_TEMPLATE = """[Interface]
PrivateKey = {{ private_key }}
Address = {{ peer.address }}/{{ prefixlen }}
{% if dns %}
DNS = {{ dns | join(", ") }}
{% endif %}

[Peer]
PublicKey = {{ server_public_key }}
{% if endpoint %}
Endpoint = {{ endpoint }}
{% endif %}
AllowedIPs = {{ allowed_ips }}
PersistentKeepalive = {{ peer.persistent_keepalive }}
"""

_server_template = Template(SERVER_TEMPLATE, trim_blocks=True, keep_trailing_newline=True)
_client_template = Template(CLIENT_TEMPLATE, trim_blocks=True, keep_trailing_newline=True)


def format_endpoint(host: str, port: int) -> str:
    """host:port. IPv6 리터럴은 wg-quick 형식에 맞게 대괄호로 감싼다"""
    host = host.strip().strip("[]")
    try:
        if ipaddress.ip_address(host).version == 6:
            return f"[{host}]:{port}"
    except ValueError:
        pass  # 호스트 이름
    return f"{host}:{port}"


def render_server_config(cfg: ServerConfig) -> str:
    """ServerConfig -> wg-quick 호환 서버 문서"""
    return _server_template.render(
        cfg=cfg,
        peers=list(cfg.peers.values()),
        marker=PEER_MARKER,
    )


def render_client_config(
    cfg: ServerConfig,
    peer: PeerRecord,
    private_key: str,
    server_public_key: str,
    endpoint: Optional[str],
    dns: Optional[List[str]] = None,
    allowed_ips: str = "0.0.0.0/0",
) -> str:
    """클라이언트 장치에 전달할 문서 (피어 개인키 포함)"""
    return _client_template.render(
        peer=peer,
        private_key=private_key,
        prefixlen=cfg.network.prefixlen,
        dns=dns or [],
        server_public_key=server_public_key,
        endpoint=format_endpoint(endpoint, cfg.listen_port) if endpoint else None,
        allowed_ips=allowed_ips,
    )
