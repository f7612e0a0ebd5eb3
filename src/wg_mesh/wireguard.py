"""
WireGuard 원격 관리 모듈
설치, 키 생성, 설정 배포, 재시작, 상태 조회, 연결성 프로브
"""

import shlex
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from .errors import MeshError, RemoteExecutionError
from .keys import KeyPair
from .logger import get_logger
from .mesh import RenderedNodeConfig
from .remote import SSHExecutor

INTERFACE = "wg0"
SERVICE = f"wg-quick@{INTERFACE}"
CONFIG_PATH = f"/etc/wireguard/{INTERFACE}.conf"
UPLOAD_PATH = f"/tmp/{INTERFACE}.conf"

APT_INSTALL = "sudo DEBIAN_FRONTEND=noninteractive apt-get install -y -qq"

# 각 명령은 실패해도 계속 진행 (ssh 자체 실패만 오류)
PURGE_COMMANDS = [
    f"sudo systemctl stop {SERVICE} 2>/dev/null || true",
    f"sudo systemctl disable {SERVICE} 2>/dev/null || true",
    f"sudo ip link delete {INTERFACE} 2>/dev/null || true",
    f"sudo rm -f {CONFIG_PATH}",
]


@dataclass
class DeployItem:
    """병렬 배포 작업 항목 (노드와 해당 노드의 설정)"""
    node_name: str
    config: RenderedNodeConfig


class WireGuardRemote:
    """원격 노드의 WireGuard 작업"""

    def __init__(self, executor: SSHExecutor):
        self.executor = executor
        self.logger = get_logger()

    def is_installed(self, node_name: str) -> bool:
        return self.executor.test(node_name, "[ -f /usr/bin/wg ]")

    def install(self, node_name: str):
        """wireguard 및 ping 설치 (이미 설치되어 있으면 건너뜀)"""
        if self.is_installed(node_name):
            self.logger.info(f"[{node_name}] WireGuard already installed")
        else:
            self.logger.info(f"[{node_name}] Installing WireGuard...")
            self.executor.run_on(node_name, [
                "sudo apt-get update -qq",
                f"{APT_INSTALL} wireguard iputils-ping",
            ])

        if not self.executor.test(node_name, "which ping"):
            self.logger.info(f"[{node_name}] Installing ping utility...")
            self.executor.test(node_name, f"sudo apt-get update -qq && {APT_INSTALL} iputils-ping")

    def install_on_all(self, node_names: Iterable[str], parallel: bool = True):
        self.executor.fan_out(list(node_names), self.install, parallel=parallel)

    def generate_keypair(self, node_name: str) -> KeyPair:
        """노드에서 wg genkey / wg pubkey 실행"""
        private_key = self.executor.capture(node_name, "wg genkey")
        public_key = self.executor.capture(
            node_name, f"echo {shlex.quote(private_key)} | wg pubkey"
        )
        if not private_key or not public_key:
            raise RemoteExecutionError(node_name, "wg did not return a key pair")
        return KeyPair(private_key=private_key, public_key=public_key)

    def generate_psk(self, node_name: str) -> str:
        psk = self.executor.capture(node_name, "wg genpsk")
        if not psk:
            raise RemoteExecutionError(node_name, "wg genpsk returned no output")
        return psk

    def upload_config(self, node_name: str, content: str):
        """설정 업로드 후 /etc/wireguard 로 이동 (600 권한)"""
        self.executor.upload(node_name, content, UPLOAD_PATH)
        self.executor.run_on(node_name, [
            f"sudo mkdir -p {shlex.quote(CONFIG_PATH.rsplit('/', 1)[0])}",
            f"sudo mv {UPLOAD_PATH} {CONFIG_PATH}",
            f"sudo chmod 600 {CONFIG_PATH}",
        ])

    def enable_and_start(self, node_name: str):
        self.executor.run(node_name, f"sudo systemctl enable {SERVICE}")
        if self.executor.test(node_name, f"systemctl is-active {SERVICE}"):
            self.executor.run(node_name, f"sudo systemctl restart {SERVICE}")
        else:
            self.executor.run(node_name, f"sudo systemctl start {SERVICE}")

    def deploy(self, item: DeployItem):
        """설정 업로드 후 서비스 활성화 및 (재)시작"""
        self.upload_config(item.node_name, item.config.render())
        self.enable_and_start(item.node_name)

    def deploy_all(self, items: Sequence[DeployItem], parallel: bool = True):
        self.executor.fan_out(list(items), self.deploy, parallel=parallel)

    def restart(self, node_name: str):
        """서비스 중지, 인터페이스 삭제 후 새로 시작"""
        if self.executor.test(node_name, f"systemctl is-active {SERVICE}"):
            self.executor.run(node_name, f"sudo systemctl stop {SERVICE}")

        if self.executor.test(node_name, f"[ -d /sys/class/net/{INTERFACE} ]"):
            self.executor.test(node_name, f"sudo ip link delete {INTERFACE}")

        self.executor.run(node_name, f"sudo systemctl start {SERVICE}")

    def purge_all(self, node_names: Iterable[str], parallel: bool = True):
        """기존 WireGuard 상태 제거 (best effort)"""
        node_names = list(node_names)
        self.logger.info(f"Purging existing WireGuard state on {len(node_names)} nodes")
        self.executor.run_on_all(node_names, PURGE_COMMANDS, parallel=parallel)

    def get_status(self, node_name: str) -> str:
        """wg show 출력"""
        return self.executor.run(node_name, f"sudo wg show {INTERFACE}")

    def ping_from(self, source_node: str, target_ip: str, timeout: Optional[float] = 3) -> bool:
        """source 노드에서 wg0 경유 ICMP 프로브"""
        # ping 확인과 프로브는 ssh 호출 한 번
        command = (
            "command -v ping >/dev/null && "
            f"timeout 3 ping -c 1 -W 1 -I {INTERFACE} {shlex.quote(target_ip)}"
        )
        try:
            return self.executor.test(source_node, command, timeout=timeout)
        except MeshError as e:
            self.logger.debug(f"Ping from {source_node} to {target_ip} failed: {e}")
            return False

    def tcp_probe(self, source_node: str, target_ip: str, port: int = 22,
                  timeout: Optional[float] = 3) -> bool:
        """source 노드에서 bash /dev/tcp 로 TCP 연결 확인"""
        script = f"exec 3<>/dev/tcp/{target_ip}/{int(port)} && exec 3<&- && exec 3>&-"
        try:
            return self.executor.test(
                source_node,
                f"timeout 2 bash -c {shlex.quote(script)}",
                timeout=timeout
            )
        except MeshError as e:
            self.logger.debug(f"TCP probe from {source_node} to {target_ip}:{port} failed: {e}")
            return False
