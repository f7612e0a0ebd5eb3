"""
메시 설치 파이프라인 테스트
"""

import pytest

from wg_mesh.errors import ConfigError, NodeNotFoundError, RemoteExecutionError
from wg_mesh.installer import MeshInstaller, Outcome
from wg_mesh.keys import KeyPair
from wg_mesh.secrets_store import SecretsStore

from conftest import FakeRemote, make_config

HEALTHY = {
    "alpha": "peer: B=\n  allowed ips: 10.8.0.2/32\n  latest handshake: 5 seconds ago\n",
    "beta": "peer: A=\n  allowed ips: 10.8.0.1/32\n  latest handshake: 5 seconds ago\n",
    "gamma": "peer: A=\n  allowed ips: 10.8.0.1/32\n  latest handshake: 5 seconds ago\n",
}


def _installer(config, remote, dry_run=False):
    store = SecretsStore(config.secrets_dir)
    return MeshInstaller(config, dry_run=dry_run, remote=remote, store=store, settle_delay=0)


def test_setup_stage_order(three_node_config):
    """초기화 → 설치 → 키 → 배포 → 재시작 → 검증 순서"""
    remote = FakeRemote(statuses=HEALTHY)
    result = _installer(three_node_config, remote).setup()

    assert result.outcome == Outcome.SUCCESS
    actions = remote.actions()
    assert actions[:2] == ["purge_all", "install_on_all"]
    assert ("purge_all", ("alpha", "beta", "gamma"), True) in remote.calls
    assert actions.count("keygen") == 3
    assert actions.count("genpsk") == 3
    assert actions.index("deploy_all") > actions.index("genpsk")
    assert actions[-3:] == ["restart", "restart", "restart"]
    assert remote.status_requests == ["alpha", "beta", "gamma"]


def test_setup_deploys_full_mesh(three_node_config):
    remote = FakeRemote(statuses=HEALTHY)
    _installer(three_node_config, remote).setup()

    assert set(remote.deployed) == {"alpha", "beta", "gamma"}
    for node_config in remote.deployed.values():
        assert len(node_config.peers) == 2
        assert all(peer.preshared_key for peer in node_config.peers)


def test_setup_install_runs_in_parallel(three_node_config):
    remote = FakeRemote(statuses=HEALTHY)
    _installer(three_node_config, remote).setup()

    assert ("install_on_all", ("alpha", "beta", "gamma"), True) in remote.calls
    assert ("deploy_all", ("alpha", "beta", "gamma"), True) in remote.calls


def test_setup_reuses_stored_keys(three_node_config):
    """두 번째 실행은 저장된 키/PSK 를 재사용"""
    _installer(three_node_config, FakeRemote(statuses=HEALTHY)).setup()

    remote = FakeRemote(statuses=HEALTHY)
    _installer(three_node_config, remote).setup()

    assert remote.keygen_count == 0
    assert remote.psk_count == 0


def test_setup_skip_node(three_node_config):
    """skip 노드는 작업 대상에서만 제외되고 기존 키는 피어 목록에 유지"""
    SecretsStore(three_node_config.secrets_dir).store_keypair("gamma", KeyPair("priv-old", "pub-old"))
    remote = FakeRemote(statuses=HEALTHY)
    result = _installer(three_node_config, remote).setup(skip="gamma")

    assert result.success
    assert ("purge_all", ("alpha", "beta"), True) in remote.calls
    assert ("restart", "gamma") not in remote.calls
    assert ("install_on_all", ("alpha", "beta"), True) in remote.calls
    assert set(remote.deployed) == {"alpha", "beta"}
    peers = {p.name: p for p in remote.deployed["alpha"].peers}
    assert peers["gamma"].public_key == "pub-old"
    assert peers["gamma"].preshared_key == ""
    assert ("keygen", "gamma") not in remote.calls
    assert "gamma" not in remote.status_requests


def test_setup_dry_run_has_no_side_effects(three_node_config):
    """dry-run 은 원격 호출과 키 저장을 하지 않음"""
    remote = FakeRemote()
    installer = _installer(three_node_config, remote, dry_run=True)
    result = installer.setup()

    assert result.success
    assert remote.calls == []
    assert remote.status_requests == []
    assert not installer.store.secrets_dir.exists()
    assert len(installer.context.node_keys) == 3


def test_setup_partial_failure(three_node_config):
    """검증 실패는 예외가 아니라 PARTIAL_FAILURE"""
    statuses = dict(HEALTHY)
    del statuses["beta"]
    remote = FakeRemote(statuses=statuses)
    result = _installer(three_node_config, remote).setup()

    assert result.outcome == Outcome.PARTIAL_FAILURE
    assert result.failed_nodes == ["beta"]


def test_setup_stops_on_remote_error(three_node_config):
    """배포 실패 시 이후 단계(재시작)는 실행되지 않음"""
    remote = FakeRemote(fail_on={("deploy", "beta")})
    installer = _installer(three_node_config, remote)

    with pytest.raises(RemoteExecutionError) as exc_info:
        installer.setup()

    assert exc_info.value.node_name == "beta"
    assert "restart" not in remote.actions()
    assert installer.execution_log[-1]["status"] == "failed"
    assert installer.execution_log[-1]["step"] == "Deploying configurations"


def test_setup_invalid_config_makes_no_remote_calls(tmp_path):
    config = make_config({"alpha": {"host": "1.1.1.1"}}, tmp_path)
    remote = FakeRemote()

    with pytest.raises(ConfigError):
        _installer(config, remote).setup()
    assert remote.calls == []


def test_setup_node_only_touches_target(three_node_config):
    remote = FakeRemote()
    _installer(three_node_config, remote).setup_node("beta")

    assert ("install", "beta") in remote.calls
    assert set(remote.deployed) == {"beta"}
    assert [p.name for p in remote.deployed["beta"].peers] == ["alpha", "gamma"]
    assert "restart" not in remote.actions()


def test_setup_node_unknown(three_node_config):
    with pytest.raises(NodeNotFoundError):
        _installer(three_node_config, FakeRemote()).setup_node("delta")


def test_generate_keys_does_not_deploy(three_node_config):
    remote = FakeRemote()
    installer = _installer(three_node_config, remote)
    installer.generate_keys()

    assert remote.keygen_count == 3
    assert remote.deployed == {}
    assert set(installer.store.load_keys()) == {"alpha", "beta", "gamma"}


def test_restart_node(three_node_config):
    remote = FakeRemote()
    installer = _installer(three_node_config, remote)

    installer.restart_node("alpha")
    assert remote.calls == [("restart", "alpha")]

    with pytest.raises(NodeNotFoundError):
        installer.restart_node("delta")
