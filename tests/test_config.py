"""
설정 관리 모듈 테스트
"""

import os
import tempfile
import pytest
import yaml

from wg_mesh.config import MeshConfig, VERIFY_ALWAYS, VERIFY_ACCEPT_NEW, VERIFY_NEVER
from wg_mesh.errors import ConfigError

from conftest import make_config


def test_default_config():
    """기본 설정 테스트"""
    config = MeshConfig.from_dict({}, "development")
    assert config.network == "10.8.0.0/24"
    assert config.mtu == 1280
    assert config.listen_port == 51820
    assert config.keepalive == 25
    assert config.user == "ubuntu"
    assert config.verify_host_key_mode == VERIFY_ALWAYS
    assert config.nodes == {}


def test_config_load_yaml_selects_environment():
    """YAML 설정 파일에서 환경 섹션 선택"""
    yaml_content = """
development:
  nodes:
    dev1:
      host: "192.168.1.10"
      private_ip: "10.8.0.1"

production:
  network: "10.10.0.0/16"
  mtu: 1420
  nodes:
    alpha:
      host: "1.1.1.1"
      private_ip: "10.10.0.1"
      ssh_port: 2222
      user: "admin"
      listen_port: 51821
"""

    with tempfile.NamedTemporaryFile(mode='w', suffix='.yml', delete=False) as f:
        f.write(yaml_content)
        temp_path = f.name

    try:
        config = MeshConfig.load(temp_path, "production")
        assert config.environment == "production"
        assert config.node_names == ["alpha"]
        assert config.mtu == 1420
        node = config.node_config("alpha")
        assert node.ssh_port == 2222
        assert node.ssh_user == "admin"
        assert config.listen_port_for("alpha") == 51821
    finally:
        os.unlink(temp_path)


def test_config_environment_variable(tmp_path, monkeypatch):
    """환경 변수로 환경 선택"""
    path = tmp_path / "mesh.yml"
    path.write_text(yaml.safe_dump({"staging": {"nodes": {"s1": {"host": "h", "private_ip": "10.8.0.9"}}}}))
    monkeypatch.setenv(MeshConfig.ENVIRONMENT_VARIABLE, "staging")

    config = MeshConfig.load(str(path))
    assert config.environment == "staging"
    assert config.node_names == ["s1"]


def test_config_missing_file():
    """없는 설정 파일"""
    with pytest.raises(ConfigError, match="Config file not found"):
        MeshConfig.load("/nonexistent/mesh.yml", "development")


@pytest.mark.parametrize("network,expected", [
    ("10.10.0.0/16", 16),
    ("10.10.0.0", 24),
    ("10.10.0.0/abc", 24),
    ("", 24),
])
def test_network_prefix_length(network, expected):
    """CIDR prefix 파싱 (잘못된 값은 /24)"""
    config = MeshConfig()
    config.network = network
    assert config.network_prefix_length == expected


def test_validate_no_nodes():
    """노드가 없으면 검증 실패"""
    config = make_config({})
    with pytest.raises(ConfigError, match="No nodes defined"):
        config.validate()


def test_validate_missing_fields():
    """host / private_ip 누락 검증"""
    config = make_config({"alpha": {"private_ip": "10.8.0.1"}})
    with pytest.raises(ConfigError, match="missing 'host'"):
        config.validate()

    config = make_config({"alpha": {"host": "1.1.1.1"}})
    with pytest.raises(ConfigError, match="missing 'private_ip'"):
        config.validate()


def test_validate_ok(three_node_config):
    assert three_node_config.validate() is True


@pytest.mark.parametrize("value,expected", [
    (True, VERIFY_ALWAYS),
    ("always", VERIFY_ALWAYS),
    ("accept_new", VERIFY_ACCEPT_NEW),
    ("accept-new", VERIFY_ACCEPT_NEW),
    ("never", VERIFY_NEVER),
    (False, VERIFY_NEVER),
    ("bogus", VERIFY_ALWAYS),
])
def test_verify_host_key_mode(value, expected):
    config = make_config({}, verify_host_key=value)
    assert config.verify_host_key_mode == expected


def test_config_save_keeps_other_environments(tmp_path):
    """설정 저장 테스트"""
    path = tmp_path / "mesh.yml"
    path.write_text(yaml.safe_dump({"other": {"nodes": {}}}))

    config = make_config({"alpha": {"host": "1.1.1.1", "private_ip": "10.8.0.1"}})
    config.save(str(path))

    data = yaml.safe_load(path.read_text())
    assert "other" in data
    reloaded = MeshConfig.load(str(path), "test")
    assert reloaded.node_config("alpha").host == "1.1.1.1"


def test_create_sample_is_valid(tmp_path):
    """샘플 설정 파일은 그대로 로드/검증 가능"""
    path = tmp_path / "config" / "mesh.yml"
    MeshConfig.create_sample(str(path))

    config = MeshConfig.load(str(path), "development")
    assert config.validate()
    assert len(config.nodes) == 3
    assert config.node_config("beta").ssh_port == 2222
