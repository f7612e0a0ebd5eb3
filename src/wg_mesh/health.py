"""
헬스체크 및 연결성 테스트 모듈

이 모듈은 다음 기능을 제공합니다:
- 노드별 wg show 상태 요약 (피어 수, 엔드포인트, 전송량)
- 모든 노드 쌍에 대한 연결성 테스트 (ICMP → TCP → 최근 핸드셰이크)
- 피어별 상세 통계
- 배포 후 메시 검증
"""

import re
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, List, Optional

from rich.markup import escape

from .config import MeshConfig
from .errors import MeshError, NodeNotFoundError
from .keys import pair_key
from .logger import get_logger, console
from . import status_parser

HANDSHAKE_STALENESS_LIMIT = 180  # seconds
PROBE_TIMEOUT = 3  # seconds
TCP_PROBE_PORT = 22

STATUS_OK = "ok"
STATUS_HANDSHAKE = "handshake"
STATUS_FAILED = "failed"

_IPV4 = re.compile(r"^\d+\.\d+\.\d+\.\d+$")


@dataclass
class PairResult:
    """노드 쌍 하나의 테스트 결과"""
    source: str
    target: str
    target_ip: str
    status: str

    @property
    def connected(self) -> bool:
        return self.status in (STATUS_OK, STATUS_HANDSHAKE)


@dataclass
class ConnectivityReport:
    """test_all 결과"""
    results: List[PairResult] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def all_ok(self) -> bool:
        return all(result.connected for result in self.results)

    @property
    def failed(self) -> List[PairResult]:
        return [result for result in self.results if not result.connected]

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp,
            "overall_status": "healthy" if self.all_ok else "unhealthy",
            "total_pairs": len(self.results),
            "failed_pairs": [f"{r.source}-{r.target}" for r in self.failed],
            "results": [asdict(result) for result in self.results],
        }


@dataclass
class NodeStatus:
    """노드 하나의 wg show 요약"""
    name: str
    private_ip: str
    peers: List[status_parser.PeerHealthRecord] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def up(self) -> bool:
        return self.error is None and len(self.peers) > 0

    @property
    def handshake_count(self) -> int:
        return sum(1 for peer in self.peers if peer.handshake_seconds is not None)


class HealthChecker:
    """메시 상태 확인 및 연결성 테스트"""

    def __init__(self, config: MeshConfig, remote, probe_timeout: float = PROBE_TIMEOUT,
                 staleness_limit: int = HANDSHAKE_STALENESS_LIMIT):
        """
        Args:
            config: 메시 설정
            remote: WireGuardRemote (get_status, ping_from, tcp_probe)
            probe_timeout: 노드 쌍 하나의 능동 프로브 제한 시간 (초)
            staleness_limit: 연결로 인정하는 최근 핸드셰이크 한도 (초)
        """
        self.config = config
        self.remote = remote
        self.probe_timeout = probe_timeout
        self.staleness_limit = staleness_limit
        self.logger = get_logger()

    def _fetch_status(self, node_name: str) -> NodeStatus:
        node = self.config.node_config(node_name)
        if node is None:
            raise NodeNotFoundError(node_name)

        try:
            status = self.remote.get_status(node_name)
        except MeshError as e:
            self.logger.error(f"Failed to read WireGuard status on {node_name}: {e}")
            return NodeStatus(node_name, node.private_ip, error=str(e))

        return NodeStatus(node_name, node.private_ip, peers=status_parser.parse_status(status))

    def show_status(self) -> Dict[str, NodeStatus]:
        console.print("[bold]==> WireGuard Mesh Status[/bold]")
        console.print(f"Environment: {self.config.environment}\n")

        statuses = {}
        for node_name in self.config.node_names:
            statuses[node_name] = self.show_node_status(node_name)
            console.print()
        return statuses

    def show_node_status(self, node_name: str) -> NodeStatus:
        """노드의 피어 수와 피어별 엔드포인트/전송량 표시"""
        node_status = self._fetch_status(node_name)
        label = f"{node_name} ({node_status.private_ip})"

        if node_status.error:
            console.print(f"[red]✗ {label} - Error: {escape(node_status.error)}[/red]")
        elif node_status.up:
            console.print(f"[green]✓ {label} - connected to {len(node_status.peers)} peers[/green]")
            for peer in node_status.peers:
                if not peer.endpoint:
                    continue
                console.print(f"  └─ Peer: {peer.endpoint} - {peer.received} rx, {peer.sent} tx")
        else:
            console.print(f"[red]✗ {label} - 0 peers (DOWN)[/red]")

        return node_status

    def show_stats(self, node: Optional[str] = None) -> Dict[str, NodeStatus]:
        names = [node] if node else self.config.node_names
        stats = {}
        for node_name in names:
            stats[node_name] = self._show_node_stats(node_name)
            console.print()
        return stats

    def _show_node_stats(self, node_name: str) -> NodeStatus:
        node_status = self._fetch_status(node_name)
        console.print(f"[bold]==> Stats for {node_name} ({node_status.private_ip})[/bold]")

        if node_status.error:
            console.print(f"[red]Error: {escape(node_status.error)}[/red]")
            return node_status

        for index, peer in enumerate(node_status.peers, start=1):
            console.print(f"\nPeer #{index}:")
            if peer.endpoint:
                console.print(f"  Endpoint: {peer.endpoint}")
            if peer.allowed_ips:
                console.print(f"  Allowed IPs: {peer.allowed_ips}")
            if peer.handshake:
                console.print(f"  Last handshake: {peer.handshake}")
            console.print(f"  Received: {peer.received}")
            console.print(f"  Sent: {peer.sent}")

        return node_status

    def ping_node(self, node_or_ip: str) -> Optional[Dict[str, bool]]:
        """다른 모든 노드에서 대상 노드(이름 또는 메시 IP)로 ping"""
        if _IPV4.match(node_or_ip):
            target_ip = node_or_ip
            target_node = next(
                (name for name, node in self.config.each_node() if node.private_ip == target_ip),
                None
            )
        else:
            target_node = node_or_ip
            node = self.config.node_config(target_node)
            target_ip = node.private_ip if node else None

        if not target_ip:
            console.print(f"[red]Node or IP not found: {node_or_ip}[/red]")
            return None

        console.print(f"Pinging {target_node or target_ip} ({target_ip})...")

        results = {}
        for source_node in self.config.node_names:
            if source_node == target_node:
                continue
            success = self.remote.ping_from(source_node, target_ip, timeout=self.probe_timeout)
            results[source_node] = success
            mark = "[green]✓[/green]" if success else "[red]✗[/red]"
            console.print(f"  {mark} from {source_node}")
        return results

    def _probe(self, source: str, target_ip: str) -> bool:
        """ICMP 후 TCP 프로브 (합계 probe_timeout 이내)"""
        started = time.monotonic()
        if self.remote.ping_from(source, target_ip, timeout=self.probe_timeout):
            return True

        remaining = self.probe_timeout - (time.monotonic() - started)
        if remaining <= 0:
            return False
        return self.remote.tcp_probe(source, target_ip, TCP_PROBE_PORT, timeout=remaining)

    def handshake_recent(self, source: str, target_ip: str, status_cache: Dict[str, str]) -> bool:
        """source 의 wg show 에서 target 과의 핸드셰이크가 staleness_limit 이내인지"""
        try:
            if source not in status_cache:
                status_cache[source] = self.remote.get_status(source)
        except MeshError as e:
            self.logger.debug(f"Could not read status from {source}: {e}")
            status_cache[source] = ""

        block = status_parser.extract_peer_block(status_cache[source], target_ip)
        seconds = status_parser.extract_handshake_seconds(block)
        if seconds is None:
            return False
        return seconds <= self.staleness_limit

    def test_all(self) -> ConnectivityReport:
        """모든 노드 쌍을 한 번씩 테스트 (N·(N−1)/2)"""
        console.print("[bold]==> Testing mesh connectivity...[/bold]\n")

        names = self.config.node_names
        total_tests = len(names) * (len(names) - 1) // 2
        tested_pairs = set()
        status_cache: Dict[str, str] = {}
        report = ConnectivityReport()

        for source in names:
            for target in names:
                if source == target:
                    continue

                key = pair_key(source, target)
                if key in tested_pairs:
                    continue
                tested_pairs.add(key)

                target_ip = self.config.node_config(target).private_ip
                console.print(
                    f"[{len(tested_pairs)}/{total_tests}] Testing {source} → {target} ({target_ip})... ",
                    end="",
                    markup=False
                )

                if self._probe(source, target_ip):
                    status = STATUS_OK
                    console.print("[green]✓[/green]")
                elif self.handshake_recent(source, target_ip, status_cache):
                    status = STATUS_HANDSHAKE
                    console.print("[green]✓ (handshake)[/green]")
                else:
                    status = STATUS_FAILED
                    console.print("[red]✗ (ICMP/TCP may be blocked, and no recent WireGuard handshake)[/red]")

                report.results.append(PairResult(source, target, target_ip, status))
                self.logger.info(f"Connectivity {source} -> {target}: {status}")

        if not report.all_ok:
            console.print(
                "\n[yellow]When ICMP/TCP probes fail, a recent WireGuard handshake counts as connected.\n"
                "Pairs still failing have no recent handshake: check UDP "
                f"{self.config.listen_port} and keepalive/route settings.[/yellow]"
            )
        return report

    def verify_nodes(self, skip: Optional[str] = None) -> Dict[str, NodeStatus]:
        """배포 후 노드별 피어/핸드셰이크 수 확인"""
        statuses = {}
        for node_name in self.config.node_names:
            if skip and node_name == skip:
                continue

            node_status = self._fetch_status(node_name)
            statuses[node_name] = node_status

            if node_status.error:
                console.print(f"  [red]✗ {node_name} - Error: {escape(node_status.error)}[/red]")
            elif not node_status.peers:
                console.print(f"  [red]✗ {node_name} - No peers connected[/red]")
            elif node_status.handshake_count:
                console.print(
                    f"  [green]✓ {node_name} - {len(node_status.peers)} peers, "
                    f"{node_status.handshake_count} handshakes[/green]"
                )
            else:
                console.print(
                    f"  [yellow]⚠ {node_name} - {len(node_status.peers)} peers, no handshakes yet[/yellow]"
                )
        return statuses
