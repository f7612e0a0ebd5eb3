"""
원격 실행 모듈
OpenSSH 클라이언트 기반 명령 실행, 파일 업로드, 병렬 실행
"""

import os
import shlex
import subprocess
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

from .config import MeshConfig, NodeConfig, VERIFY_ACCEPT_NEW, VERIFY_NEVER
from .errors import ErrorKind, NodeNotFoundError, RemoteExecutionError
from .logger import get_logger

T = TypeVar("T")

SSH_EXIT_FAILURE = 255

HOST_KEY_MARKERS = (
    "host key verification failed",
    "remote host identification has changed",
    "does not match",
)
AUTH_MARKERS = (
    "permission denied",
    "authentication failed",
    "too many authentication failures",
)
CONNECTION_MARKERS = (
    "connection refused",
    "connection timed out",
    "operation timed out",
    "no route to host",
    "network is unreachable",
    "could not resolve hostname",
    "connection reset",
    "connection closed",
)


def classify_ssh_error(returncode: int, stderr: str) -> ErrorKind:
    """ssh 종료 코드와 진단 메시지로 실패 유형 분류

    ssh 자체 실패는 종료 코드 255로 보고된다. 그 외 코드는 원격 명령의 실패이다.
    """
    if returncode != SSH_EXIT_FAILURE:
        return ErrorKind.OTHER

    text = (stderr or "").lower()
    if any(marker in text for marker in HOST_KEY_MARKERS):
        return ErrorKind.HOST_KEY_MISMATCH
    if any(marker in text for marker in AUTH_MARKERS):
        return ErrorKind.AUTHENTICATION
    if any(marker in text for marker in CONNECTION_MARKERS):
        return ErrorKind.CONNECTION
    return ErrorKind.OTHER


class SSHExecutor:
    """노드 단위 SSH 원격 실행기"""

    DEFAULT_CONNECT_TIMEOUT = 10
    DEFAULT_COMMAND_TIMEOUT = 600
    MAX_PARALLEL = 16

    def __init__(self, config: MeshConfig, connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
                 command_timeout: int = DEFAULT_COMMAND_TIMEOUT):
        self.config = config
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.logger = get_logger()

    def _node(self, node_name: str) -> NodeConfig:
        node = self.config.node_config(node_name)
        if node is None:
            raise NodeNotFoundError(node_name)
        return node

    def ssh_options(self, node: NodeConfig) -> List[str]:
        """노드별 ssh 옵션 (사용자, 포트, 키, 호스트 키 검증 모드)"""
        options = [
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-o", "ForwardAgent=no",
            "-o", "PreferredAuthentications=publickey",
        ]

        mode = self.config.verify_host_key_mode
        if mode == VERIFY_NEVER:
            options += ["-o", "StrictHostKeyChecking=no", "-o", "UserKnownHostsFile=/dev/null"]
        elif mode == VERIFY_ACCEPT_NEW:
            options += ["-o", "StrictHostKeyChecking=accept-new"]
        else:
            options += ["-o", "StrictHostKeyChecking=yes"]

        key_path = os.path.expanduser(node.ssh_key) if node.ssh_key else self.config.ssh_key
        if key_path and os.path.exists(key_path):
            options += ["-i", key_path, "-o", "IdentitiesOnly=yes"]

        if node.ssh_port:
            options += ["-p", str(node.ssh_port)]

        return options

    def destination(self, node: NodeConfig) -> str:
        user = node.ssh_user or self.config.user
        return f"{user}@{node.host}" if user else node.host

    def ssh_command(self, node_name: str, command: str) -> List[str]:
        node = self._node(node_name)
        return ["ssh"] + self.ssh_options(node) + [self.destination(node), command]

    def _execute(self, node_name: str, command: str, input_data: Optional[str] = None,
                 timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        node = self._node(node_name)
        cmd = self.ssh_command(node_name, command)
        self.logger.debug(f"[{node_name}] $ {command}")

        try:
            return subprocess.run(
                cmd,
                input=input_data,
                capture_output=True,
                text=True,
                timeout=timeout or self.command_timeout
            )
        except FileNotFoundError:
            raise RemoteExecutionError(node_name, "ssh client not found", ErrorKind.OTHER, node.host)

    def _raise_for(self, node_name: str, command: str, result: subprocess.CompletedProcess):
        node = self._node(node_name)
        stderr = (result.stderr or "").strip()
        kind = classify_ssh_error(result.returncode, stderr)
        message = stderr or f"'{command}' exited with status {result.returncode}"
        self.logger.error(f"[{node_name}] command failed ({kind.value}): {message}")
        raise RemoteExecutionError(node_name, message, kind, node.host)

    def run(self, node_name: str, command: str, timeout: Optional[float] = None) -> str:
        """명령 실행, 실패 시 RemoteExecutionError"""
        try:
            result = self._execute(node_name, command, timeout=timeout)
        except subprocess.TimeoutExpired:
            node = self._node(node_name)
            raise RemoteExecutionError(node_name, f"Command timed out: {command}",
                                       ErrorKind.CONNECTION, node.host)

        if result.returncode != 0:
            self._raise_for(node_name, command, result)
        return result.stdout

    def run_on(self, node_name: str, commands: Sequence[str]):
        """명령 목록을 순서대로 실행"""
        for command in commands:
            self.run(node_name, command)

    def run_on_all(self, node_names: Iterable[str], commands: Sequence[str], parallel: bool = True):
        """여러 노드에서 같은 명령 목록 실행"""
        self.fan_out(list(node_names), lambda name: self.run_on(name, commands), parallel=parallel)

    def capture(self, node_name: str, command: str) -> str:
        """명령 출력 반환 (앞뒤 공백 제거)"""
        return self.run(node_name, command).strip()

    def test(self, node_name: str, command: str, timeout: Optional[float] = None) -> bool:
        """원격 명령 성공 여부 (ssh 자체 실패는 예외)"""
        try:
            result = self._execute(node_name, command, timeout=timeout)
        except subprocess.TimeoutExpired:
            self.logger.debug(f"[{node_name}] test timed out: {command}")
            return False

        if result.returncode == SSH_EXIT_FAILURE:
            self._raise_for(node_name, command, result)
        return result.returncode == 0

    def upload(self, node_name: str, content: str, remote_path: str):
        """내용을 원격 파일로 업로드"""
        command = f"umask 077 && cat > {shlex.quote(remote_path)}"
        try:
            result = self._execute(node_name, command, input_data=content)
        except subprocess.TimeoutExpired:
            node = self._node(node_name)
            raise RemoteExecutionError(node_name, f"Upload timed out: {remote_path}",
                                       ErrorKind.CONNECTION, node.host)

        if result.returncode != 0:
            self._raise_for(node_name, command, result)
        self.logger.debug(f"[{node_name}] uploaded {len(content)} bytes to {remote_path}")

    def fan_out(self, items: Sequence[T], action: Callable[[T], None], parallel: bool = True):
        """작업 항목별 action 실행

        병렬 실행 시 모든 항목이 끝난 뒤 첫 번째 실패를 다시 발생시킨다.
        이미 완료된 다른 노드의 작업은 되돌리지 않는다.
        """
        if not items:
            return

        if not parallel or len(items) == 1:
            for item in items:
                action(item)
            return

        workers = min(len(items), self.MAX_PARALLEL)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(action, item) for item in items]

        errors = [future.exception() for future in futures if future.exception() is not None]
        if errors:
            for error in errors[1:]:
                self.logger.error(f"Additional parallel failure: {error}")
            raise errors[0]
