"""
예외 정의
설정 오류, 원격 실행 오류, 호스트 신뢰 오류
"""

from enum import Enum
from typing import Optional


class MeshError(Exception):
    """모든 메시 관련 오류의 기본 클래스"""


class ConfigError(MeshError):
    """설정 오류 (원격 작업 전에 중단)"""


class NodeNotFoundError(ConfigError):
    """토폴로지에 없는 노드"""

    def __init__(self, node_name: str):
        super().__init__(f"Node not found: {node_name}")
        self.node_name = node_name


class KeysMissingError(ConfigError):
    """키 캐시에 키 페어가 없는 노드"""

    def __init__(self, node_name: str):
        super().__init__(f"Keys not found for node: {node_name}")
        self.node_name = node_name


class ErrorKind(Enum):
    """원격 실행 실패 분류"""
    AUTHENTICATION = "authentication"
    HOST_KEY_MISMATCH = "host_key_mismatch"
    CONNECTION = "connection"
    OTHER = "other"


class RemoteExecutionError(MeshError):
    """SSH 원격 실행 실패"""

    def __init__(self, node_name: str, message: str,
                 kind: ErrorKind = ErrorKind.OTHER, host: Optional[str] = None):
        super().__init__(f"{node_name}: {message}")
        self.node_name = node_name
        self.message = message
        self.kind = kind
        self.host = host


class TrustError(MeshError):
    """호스트 키 등록 전제조건 실패"""
