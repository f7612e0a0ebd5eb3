"""
설정 관리 모듈
환경별 YAML 설정 파일 로드, 노드 토폴로지 및 기본값 제공
"""

import os
import yaml
import json
from typing import Dict, Any, Optional, Iterator, Tuple, List
from dataclasses import dataclass, field, asdict

from .errors import ConfigError


DEFAULT_NETWORK = "10.8.0.0/24"
DEFAULT_PREFIX_LENGTH = 24

VERIFY_ALWAYS = "always"
VERIFY_ACCEPT_NEW = "accept-new"
VERIFY_NEVER = "never"


@dataclass
class NodeConfig:
    """메시 노드 설정"""
    name: str
    host: str = ""
    private_ip: str = ""
    ssh_port: Optional[int] = None
    ssh_user: Optional[str] = None
    ssh_key: Optional[str] = None
    listen_port: Optional[int] = None
    region: str = ""

    @classmethod
    def from_dict(cls, name: str, data: Optional[Dict[str, Any]]) -> "NodeConfig":
        data = data or {}
        return cls(
            name=name,
            host=data.get("host") or "",
            private_ip=data.get("private_ip") or "",
            ssh_port=data.get("ssh_port") or data.get("port"),
            ssh_user=data.get("ssh_user") or data.get("user"),
            ssh_key=data.get("ssh_key"),
            listen_port=data.get("listen_port"),
            region=data.get("region") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("name")
        return {key: value for key, value in data.items() if value not in (None, "")}


@dataclass
class MeshConfig:
    """환경 하나에 대한 메시 전체 설정 (토폴로지)"""
    environment: str = "development"
    network: str = DEFAULT_NETWORK
    nodes: Dict[str, NodeConfig] = field(default_factory=dict)
    user: str = "ubuntu"
    ssh_key: str = os.path.expanduser("~/.ssh/id_rsa")
    mtu: int = 1280
    listen_port: int = 51820
    keepalive: int = 25
    verify_host_key: Any = True
    secrets_dir: str = os.path.join(".secrets", "wireguard")
    log_dir: str = os.path.expanduser("~/.wg-mesh/logs")
    log_level: str = "INFO"

    DEFAULT_CONFIG_PATH = "config/mesh.yml"
    ENVIRONMENT_VARIABLE = "WG_MESH_ENVIRONMENT"

    @classmethod
    def from_dict(cls, config_hash: Optional[Dict[str, Any]],
                  environment: str = "development") -> "MeshConfig":
        """환경 이름으로 선택한 섹션에서 설정 생성"""
        env_config = (config_hash or {}).get(environment) or {}
        config = cls(environment=environment)

        config.network = env_config.get("network") or DEFAULT_NETWORK
        config.nodes = {
            str(name): NodeConfig.from_dict(str(name), node_data)
            for name, node_data in (env_config.get("nodes") or {}).items()
        }
        config.user = env_config.get("user") or "ubuntu"
        config.ssh_key = os.path.expanduser(env_config.get("ssh_key") or "~/.ssh/id_rsa")
        config.mtu = env_config.get("mtu") or 1280
        config.listen_port = env_config.get("listen_port") or 51820
        config.keepalive = env_config.get("keepalive") or 25
        if "verify_host_key" in env_config:
            config.verify_host_key = env_config["verify_host_key"]

        for key in ("secrets_dir", "log_dir", "log_level"):
            if env_config.get(key):
                value = env_config[key]
                setattr(config, key, os.path.expanduser(value) if key.endswith("_dir") else value)

        return config

    @classmethod
    def load(cls, path: Optional[str] = None, environment: Optional[str] = None) -> "MeshConfig":
        """설정 파일 로드"""
        path = os.path.expanduser(path or cls.DEFAULT_CONFIG_PATH)
        environment = environment or os.environ.get(cls.ENVIRONMENT_VARIABLE) or "development"

        if not os.path.exists(path):
            raise ConfigError(f"Config file not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            if path.endswith('.json'):
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigError(f"Invalid config file: {path}")

        return cls.from_dict(data, environment)

    @property
    def node_names(self) -> List[str]:
        return list(self.nodes.keys())

    def node_config(self, name: str) -> Optional[NodeConfig]:
        return self.nodes.get(name)

    def each_node(self) -> Iterator[Tuple[str, NodeConfig]]:
        return iter(list(self.nodes.items()))

    @property
    def network_prefix_length(self) -> int:
        """네트워크 CIDR의 prefix 길이 (잘못된 값이면 /24)"""
        if not self.network:
            return DEFAULT_PREFIX_LENGTH

        parts = str(self.network).split('/')
        if len(parts) < 2:
            return DEFAULT_PREFIX_LENGTH

        try:
            return int(parts[-1])
        except ValueError:
            return DEFAULT_PREFIX_LENGTH

    def listen_port_for(self, name: str) -> int:
        node = self.nodes.get(name)
        if node and node.listen_port:
            return node.listen_port
        return self.listen_port

    def validate(self) -> bool:
        """노드 설정 유효성 검사"""
        if not self.nodes:
            raise ConfigError("No nodes defined")

        for name, node in self.nodes.items():
            if not node.host:
                raise ConfigError(f"Node {name} missing 'host'")
            if not node.private_ip:
                raise ConfigError(f"Node {name} missing 'private_ip'")

        return True

    @property
    def verify_host_key_mode(self) -> str:
        value = self.verify_host_key
        if value is True or value in ("always", "yes"):
            return VERIFY_ALWAYS
        if value in ("accept_new", "accept-new"):
            return VERIFY_ACCEPT_NEW
        if value is False or value == "never":
            return VERIFY_NEVER
        return VERIFY_ALWAYS

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환 (환경 섹션 하나)"""
        return {
            'network': self.network,
            'user': self.user,
            'ssh_key': self.ssh_key,
            'mtu': self.mtu,
            'listen_port': self.listen_port,
            'keepalive': self.keepalive,
            'verify_host_key': self.verify_host_key_mode,
            'secrets_dir': self.secrets_dir,
            'log_dir': self.log_dir,
            'log_level': self.log_level,
            'nodes': {name: node.to_dict() for name, node in self.nodes.items()},
        }

    def save(self, path: Optional[str] = None):
        """설정 파일 저장 (다른 환경 섹션은 유지)"""
        save_path = os.path.expanduser(path or self.DEFAULT_CONFIG_PATH)
        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        data: Dict[str, Any] = {}
        if os.path.exists(save_path):
            with open(save_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}

        data[self.environment] = self.to_dict()

        with open(save_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    @staticmethod
    def create_sample(output_path: str):
        """샘플 설정 파일 생성"""
        template = """# WireGuard Mesh Configuration File
# 환경 이름(development, production 등)별로 섹션을 구성합니다.
# 환경 선택: wg-mesh -e production ... 또는 WG_MESH_ENVIRONMENT=production

development:
  network: "10.8.0.0/24"  # 오버레이 네트워크 대역
  user: "ubuntu"  # 기본 SSH 사용자
  ssh_key: "~/.ssh/id_rsa"
  mtu: 1280
  listen_port: 51820
  keepalive: 25
  verify_host_key: "always"  # always, accept_new, never
  secrets_dir: ".secrets/wireguard"  # 키/PSK 캐시 디렉토리 (git에 커밋하지 마세요)

  nodes:
    alpha:
      host: "203.0.113.10"  # SSH 접속 주소
      private_ip: "10.8.0.1"  # 메시 내부 IP
    beta:
      host: "203.0.113.20"
      private_ip: "10.8.0.2"
      ssh_port: 2222  # 노드별 SSH 포트 (선택사항)
    gamma:
      host: "203.0.113.30"
      private_ip: "10.8.0.3"
      ssh_user: "admin"  # 노드별 SSH 사용자 (선택사항)
      listen_port: 51821  # 노드별 WireGuard 포트 (선택사항)
"""

        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(template)
