"""
메시 설정 생성 모듈
토폴로지와 키 캐시로부터 노드별 wg0.conf 생성
"""

from dataclasses import dataclass, field
from typing import Dict, List

from jinja2 import Template

from .config import MeshConfig
from .errors import KeysMissingError, NodeNotFoundError
from .keys import MeshContext

WG_CONFIG_TEMPLATE = """# WireGuard mesh configuration for {{ node_name }}
# Managed by wg-mesh. Manual changes will be overwritten.

[Interface]
PrivateKey = {{ private_key }}
Address = {{ address }}/{{ prefix_length }}
ListenPort = {{ listen_port }}
MTU = {{ mtu }}
{% for peer in peers %}

[Peer]
# {{ peer.name }}
PublicKey = {{ peer.public_key }}
{% if peer.preshared_key %}
PresharedKey = {{ peer.preshared_key }}
{% endif %}
AllowedIPs = {{ peer.allowed_ips }}
Endpoint = {{ peer.endpoint }}
PersistentKeepalive = {{ peer.keepalive }}
{% endfor %}
"""


@dataclass
class PeerConfig:
    """노드 입장에서 본 피어 하나"""
    name: str
    public_key: str
    preshared_key: str
    allowed_ips: str
    endpoint: str
    keepalive: int


@dataclass
class RenderedNodeConfig:
    """노드 하나의 인터페이스 블록과 피어 목록"""
    node_name: str
    private_key: str
    address: str
    prefix_length: int
    listen_port: int
    mtu: int
    peers: List[PeerConfig] = field(default_factory=list)

    def render(self) -> str:
        template = Template(WG_CONFIG_TEMPLATE, trim_blocks=True, lstrip_blocks=True,
                            keep_trailing_newline=True)
        return template.render(
            node_name=self.node_name,
            private_key=self.private_key,
            address=self.address,
            prefix_length=self.prefix_length,
            listen_port=self.listen_port,
            mtu=self.mtu,
            peers=self.peers,
        )


class MeshBuilder:
    """노드별 WireGuard 설정 생성기"""

    def __init__(self, config: MeshConfig, context: MeshContext):
        self.config = config
        self.context = context

    def build_config_for(self, node_name: str) -> RenderedNodeConfig:
        node = self.config.node_config(node_name)
        if node is None:
            raise NodeNotFoundError(node_name)

        keys = self.context.node_keys.get(node_name)
        if keys is None:
            raise KeysMissingError(node_name)

        peers = []
        for peer_name, peer in self.config.each_node():
            if peer_name == node_name:
                continue

            # 키가 아직 없는 피어는 제외
            peer_keys = self.context.node_keys.get(peer_name)
            if peer_keys is None:
                continue

            peers.append(PeerConfig(
                name=peer_name,
                public_key=peer_keys.public_key,
                preshared_key=self.context.psk_for(node_name, peer_name) or "",
                allowed_ips=f"{peer.private_ip}/32",
                endpoint=f"{peer.host}:{self.config.listen_port_for(peer_name)}",
                keepalive=self.config.keepalive,
            ))

        return RenderedNodeConfig(
            node_name=node_name,
            private_key=keys.private_key,
            address=node.private_ip,
            prefix_length=self.config.network_prefix_length,
            listen_port=self.config.listen_port_for(node_name),
            mtu=self.config.mtu,
            peers=peers,
        )

    def build_all_configs(self) -> Dict[str, RenderedNodeConfig]:
        """모든 노드 설정 생성 (하나라도 실패하면 전체 실패)"""
        return {name: self.build_config_for(name) for name in self.config.node_names}
