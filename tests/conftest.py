"""
테스트 공용 픽스처
SSH 대신 사용하는 가짜 원격 작업 객체와 샘플 토폴로지
"""

import pytest

from wg_mesh.config import MeshConfig
from wg_mesh.errors import RemoteExecutionError
from wg_mesh.keys import KeyPair


class FakeRemote:
    """WireGuardRemote 와 같은 인터페이스의 기록용 가짜 객체"""

    def __init__(self, statuses=None, ping_ok=(), tcp_ok=(), fail_on=()):
        self.statuses = statuses or {}
        self.ping_ok = set(ping_ok)
        self.tcp_ok = set(tcp_ok)
        self.fail_on = set(fail_on)
        self.calls = []
        self.status_requests = []
        self.keygen_count = 0
        self.psk_count = 0
        self.deployed = {}

    def _check(self, action, node_name):
        if (action, node_name) in self.fail_on:
            raise RemoteExecutionError(node_name, f"{action} failed", host="192.0.2.1")

    def install(self, node_name):
        self._check("install", node_name)
        self.calls.append(("install", node_name))

    def install_on_all(self, node_names, parallel=True):
        node_names = list(node_names)
        self.calls.append(("install_on_all", tuple(node_names), parallel))
        for name in node_names:
            self._check("install", name)

    def generate_keypair(self, node_name):
        self._check("keygen", node_name)
        self.keygen_count += 1
        self.calls.append(("keygen", node_name))
        return KeyPair(private_key=f"priv-{node_name}", public_key=f"pub-{node_name}")

    def generate_psk(self, node_name):
        self._check("genpsk", node_name)
        self.psk_count += 1
        self.calls.append(("genpsk", node_name))
        return f"psk-{self.psk_count}"

    def deploy(self, item):
        self._check("deploy", item.node_name)
        self.calls.append(("deploy", item.node_name))
        self.deployed[item.node_name] = item.config

    def deploy_all(self, items, parallel=True):
        items = list(items)
        self.calls.append(("deploy_all", tuple(i.node_name for i in items), parallel))
        for item in items:
            self.deploy(item)

    def restart(self, node_name):
        self._check("restart", node_name)
        self.calls.append(("restart", node_name))

    def purge_all(self, node_names, parallel=True):
        node_names = list(node_names)
        self.calls.append(("purge_all", tuple(node_names), parallel))
        for name in node_names:
            self._check("purge", name)

    def get_status(self, node_name):
        self.status_requests.append(node_name)
        self._check("status", node_name)
        return self.statuses.get(node_name, "interface: wg0\n")

    def ping_from(self, source_node, target_ip, timeout=None):
        self.calls.append(("ping", source_node, target_ip))
        return (source_node, target_ip) in self.ping_ok

    def tcp_probe(self, source_node, target_ip, port=22, timeout=None):
        self.calls.append(("tcp", source_node, target_ip))
        return (source_node, target_ip) in self.tcp_ok

    def actions(self):
        return [call[0] for call in self.calls]


def make_config(nodes, tmp_path=None, **overrides):
    """노드 딕셔너리로 MeshConfig 생성"""
    env = {"nodes": nodes}
    if tmp_path is not None:
        env["secrets_dir"] = str(tmp_path / "secrets")
        env["log_dir"] = str(tmp_path / "logs")
    env.update(overrides)
    return MeshConfig.from_dict({"test": env}, "test")


THREE_NODES = {
    "alpha": {"host": "1.1.1.1", "private_ip": "10.8.0.1"},
    "beta": {"host": "2.2.2.2", "private_ip": "10.8.0.2"},
    "gamma": {"host": "3.3.3.3", "private_ip": "10.8.0.3"},
}


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
def three_node_config(tmp_path):
    return make_config(THREE_NODES, tmp_path)
