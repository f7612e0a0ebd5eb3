"""
메시 설정 생성 테스트
"""

import pytest

from wg_mesh.errors import KeysMissingError, NodeNotFoundError
from wg_mesh.keys import KeyPair, MeshContext
from wg_mesh.mesh import MeshBuilder

from conftest import make_config, THREE_NODES


def _context(names, psks=None):
    return MeshContext(
        node_keys={name: KeyPair(f"priv-{name}", f"pub-{name}") for name in names},
        psk_map=psks or {},
    )


def test_build_config_peers(three_node_config):
    context = _context(["alpha", "beta", "gamma"], {"alpha-beta": "psk-ab", "alpha-gamma": "psk-ag"})
    node_config = MeshBuilder(three_node_config, context).build_config_for("alpha")

    assert node_config.private_key == "priv-alpha"
    assert node_config.address == "10.8.0.1"
    assert node_config.prefix_length == 24
    assert [p.name for p in node_config.peers] == ["beta", "gamma"]

    beta = node_config.peers[0]
    assert beta.public_key == "pub-beta"
    assert beta.preshared_key == "psk-ab"
    assert beta.allowed_ips == "10.8.0.2/32"
    assert beta.endpoint == "2.2.2.2:51820"
    assert beta.keepalive == 25


def test_peer_without_keys_is_skipped(three_node_config):
    """키가 없는 피어는 설정에서 제외"""
    context = _context(["alpha", "beta"])
    node_config = MeshBuilder(three_node_config, context).build_config_for("alpha")
    assert [p.name for p in node_config.peers] == ["beta"]


def test_unknown_node(three_node_config):
    with pytest.raises(NodeNotFoundError, match="Node not found: delta"):
        MeshBuilder(three_node_config, _context(["alpha"])).build_config_for("delta")


def test_missing_own_keys(three_node_config):
    with pytest.raises(KeysMissingError, match="Keys not found for node: gamma"):
        MeshBuilder(three_node_config, _context(["alpha", "beta"])).build_config_for("gamma")


def test_build_all_configs_fails_without_keys(three_node_config):
    with pytest.raises(KeysMissingError):
        MeshBuilder(three_node_config, _context(["alpha", "beta"])).build_all_configs()


def test_two_node_rendered_config():
    """두 노드 메시의 wg0.conf 전체 내용"""
    config = make_config({
        "alpha": {"host": "1.1.1.1", "private_ip": "10.8.0.1"},
        "beta": {"host": "2.2.2.2", "private_ip": "10.8.0.2"},
    })
    context = _context(["alpha", "beta"], {"alpha-beta": "psk-ab"})

    rendered = MeshBuilder(config, context).build_config_for("alpha").render()

    assert "[Interface]\nPrivateKey = priv-alpha\nAddress = 10.8.0.1/24\n" in rendered
    assert "ListenPort = 51820\nMTU = 1280\n" in rendered
    assert rendered.count("[Peer]") == 1
    assert (
        "[Peer]\n# beta\nPublicKey = pub-beta\nPresharedKey = psk-ab\n"
        "AllowedIPs = 10.8.0.2/32\nEndpoint = 2.2.2.2:51820\nPersistentKeepalive = 25\n"
    ) in rendered
    assert rendered.endswith("\n")


def test_no_preshared_key_line_without_psk(three_node_config):
    context = _context(["alpha", "beta"])
    rendered = MeshBuilder(three_node_config, context).build_config_for("beta").render()
    assert "PresharedKey" not in rendered
    assert "PublicKey = pub-alpha" in rendered


def test_listen_port_override_and_mtu():
    """노드별 listen_port 는 자신의 ListenPort 와 피어의 Endpoint 에 반영"""
    nodes = dict(THREE_NODES)
    nodes["beta"] = dict(THREE_NODES["beta"], listen_port=51999)
    config = make_config(nodes, network="10.8.0.0/16", mtu=1420)
    context = _context(["alpha", "beta", "gamma"])
    builder = MeshBuilder(config, context)

    beta = builder.build_config_for("beta")
    assert beta.listen_port == 51999
    assert beta.prefix_length == 16
    assert "MTU = 1420" in beta.render()

    alpha = builder.build_config_for("alpha")
    assert alpha.peers[0].endpoint == "2.2.2.2:51999"
