"""
키 및 PSK 생명주기 관리
노드별 키 페어와 노드 쌍별 PSK를 한 번만 생성하고 즉시 저장
"""

import base64
import hashlib
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, Optional

from .config import MeshConfig
from .logger import get_logger, console

PAIR_SEPARATOR = "-"


@dataclass(frozen=True)
class KeyPair:
    """WireGuard 키 페어"""
    private_key: str
    public_key: str


@dataclass
class MeshContext:
    """파이프라인 한 번의 실행 동안 공유되는 키/PSK 캐시"""
    node_keys: Dict[str, KeyPair] = field(default_factory=dict)
    psk_map: Dict[str, str] = field(default_factory=dict)

    def psk_for(self, node_a: str, node_b: str) -> Optional[str]:
        return self.psk_map.get(pair_key(node_a, node_b))


def pair_key(node_a: str, node_b: str) -> str:
    """정렬된 노드 이름 쌍 (pair_key(a, b) == pair_key(b, a))"""
    return PAIR_SEPARATOR.join(sorted([node_a, node_b]))


def fake_keypair_for(node_name: str) -> KeyPair:
    """dry-run 용 결정적 가짜 키 페어

    암호학적 키가 아니며 시뮬레이션에만 사용한다.
    """
    digest = hashlib.sha256(node_name.encode("utf-8")).digest()
    encoded = base64.b64encode(digest).decode("ascii")
    return KeyPair(private_key=encoded[:44], public_key=encoded[::-1][:44])


def fake_psk_for(pair: str) -> str:
    """dry-run 용 결정적 가짜 PSK (시뮬레이션 전용)"""
    digest = hashlib.sha256(pair.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")[:44]


class KeyManager:
    """키/PSK 생성 또는 재사용"""

    def __init__(self, config: MeshConfig, context: MeshContext, remote=None,
                 store=None, dry_run: bool = False):
        """
        Args:
            config: 메시 설정
            context: 키/PSK 캐시 (오케스트레이터 소유)
            remote: generate_keypair / generate_psk 를 제공하는 원격 작업 객체
            store: SecretsStore (dry-run 이면 저장하지 않음)
            dry_run: 원격 생성 대신 결정적 가짜 값 사용
        """
        self.config = config
        self.context = context
        self.remote = remote
        self.store = store
        self.dry_run = dry_run
        self.logger = get_logger()

    def ensure_node_key(self, node_name: str) -> KeyPair:
        """캐시된 키 페어 반환, 없으면 생성 후 저장"""
        cached = self.context.node_keys.get(node_name)
        if cached:
            console.print(f"  [green]✓[/green] Using stored keys for {node_name}")
            self.logger.debug(f"Reusing cached key pair for {node_name}")
            return cached

        console.print(f"  Generating keys for {node_name}...")
        if self.dry_run:
            keypair = fake_keypair_for(node_name)
        else:
            keypair = self.remote.generate_keypair(node_name)

        self.context.node_keys[node_name] = keypair
        if not self.dry_run and self.store is not None:
            self.store.store_keypair(node_name, keypair)

        self.logger.info(f"Generated key pair for {node_name}")
        return keypair

    def ensure_pair_secret(self, node_a: str, node_b: str) -> str:
        """노드 쌍의 PSK 반환, 없으면 node_a 에서 생성 후 저장"""
        key = pair_key(node_a, node_b)
        existing = self.context.psk_map.get(key)
        if existing:
            return existing

        if self.dry_run:
            psk = fake_psk_for(key)
        else:
            psk = self.remote.generate_psk(node_a)

        self.context.psk_map[key] = psk
        if not self.dry_run and self.store is not None:
            self.store.store_psks(self.context.psk_map)

        self.logger.info(f"Generated pre-shared key for {key}")
        return psk

    def ensure_all_pair_secrets(self, skip: Optional[str] = None):
        for node_a, node_b in combinations(self.config.node_names, 2):
            if skip and skip in (node_a, node_b):
                continue
            self.ensure_pair_secret(node_a, node_b)

    def ensure_all_keys(self, skip: Optional[str] = None):
        """skip 을 제외한 모든 노드의 키와 모든 노드 쌍의 PSK 확보"""
        for node_name in self.config.node_names:
            if skip and node_name == skip:
                continue
            self.ensure_node_key(node_name)

        self.ensure_all_pair_secrets(skip=skip)
