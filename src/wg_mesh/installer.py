"""
메시 설치 파이프라인
검증 → 초기화 → 설치 → 키 생성 → 설정 생성 → 배포 → 재시작 → 검증
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from rich.panel import Panel
from rich.table import Table

from .config import MeshConfig
from .errors import MeshError, NodeNotFoundError
from .health import HealthChecker, NodeStatus
from .keys import KeyManager, MeshContext
from .logger import get_logger, console
from .mesh import MeshBuilder, RenderedNodeConfig
from .remote import SSHExecutor
from .secrets_store import SecretsStore
from .wireguard import DeployItem, WireGuardRemote


class Outcome(Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"


@dataclass
class SetupResult:
    """파이프라인 실행 결과"""
    outcome: Outcome
    node_statuses: Dict[str, NodeStatus] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    @property
    def failed_nodes(self) -> List[str]:
        return [name for name, status in self.node_statuses.items() if not status.up]


class MeshInstaller:
    """WireGuard 메시 설치 오케스트레이터"""

    SETTLE_DELAY = 3  # seconds

    def __init__(self, config: MeshConfig, dry_run: bool = False,
                 remote: Optional[WireGuardRemote] = None,
                 store: Optional[SecretsStore] = None,
                 settle_delay: float = SETTLE_DELAY):
        self.config = config
        self.dry_run = dry_run
        self.remote = remote or WireGuardRemote(SSHExecutor(config))
        self.store = store or SecretsStore(config.secrets_dir)
        self.settle_delay = settle_delay
        self.logger = get_logger()
        self.execution_log = []

        # 저장소는 시작 시 한 번만 읽는다
        self.context = MeshContext(
            node_keys=self.store.load_keys(config.node_names),
            psk_map=self.store.load_psks(),
        )
        self.key_manager = KeyManager(config, self.context, self.remote, self.store, dry_run)
        self.health_checker = HealthChecker(config, self.remote)

    def log_step(self, step: str, status: str, message: str = ""):
        """실행 단계 로깅"""
        self.execution_log.append({
            "step": step,
            "status": status,
            "message": message
        })

    @contextmanager
    def stage(self, step: str):
        """단계 실행 기록 (실패 시 기록 후 예외 전파)"""
        console.print(f"\n[bold cyan]==> {step}...[/bold cyan]")
        self.logger.info(f"Stage started: {step}")
        try:
            yield
        except MeshError as e:
            self.log_step(step, "failed", str(e))
            self.logger.error(f"Stage failed: {step}: {e}")
            raise
        self.log_step(step, "success", "dry-run" if self.dry_run else "")
        self.logger.info(f"Stage completed: {step}")

    def show_summary(self):
        """실행 결과 요약 표시"""
        table = Table(title="실행 결과 요약", show_header=True, header_style="bold magenta")
        table.add_column("단계", style="cyan", width=30)
        table.add_column("상태", width=10)
        table.add_column("메시지", width=40)

        for log in self.execution_log:
            ok = log["status"] == "success"
            status_color = "green" if ok else "red"
            table.add_row(
                log["step"],
                f"[{status_color}]{'✓' if ok else '✗'}[/{status_color}]",
                log["message"][:40] if log["message"] else ""
            )

        console.print()
        console.print(table)

    def _targets(self, skip: Optional[str] = None) -> List[str]:
        return [name for name in self.config.node_names if not (skip and name == skip)]

    def setup(self, skip: Optional[str] = None) -> SetupResult:
        """전체 메시 설치"""
        console.print(Panel.fit(
            "[bold cyan]WireGuard Mesh Setup[/bold cyan]\n"
            f"Environment: {self.config.environment}\n"
            f"Nodes: {', '.join(self.config.node_names)}",
            border_style="cyan"
        ))
        self.logger.info(f"=== Mesh setup started (dry_run={self.dry_run}, skip={skip}) ===")

        with self.stage("Validating configuration"):
            self.config.validate()

        if not self.dry_run:
            with self.stage("Cleaning up existing WireGuard installations"):
                self.purge_all(skip=skip)

        with self.stage("Installing WireGuard on nodes"):
            self.install_tooling(skip=skip)

        with self.stage("Generating WireGuard keys"):
            self.key_manager.ensure_all_keys(skip=skip)

        with self.stage("Building mesh configurations"):
            configs = MeshBuilder(self.config, self.context).build_all_configs()

        with self.stage("Deploying configurations"):
            self.deploy_configs(configs, skip=skip)

        if not self.dry_run:
            with self.stage("Restarting WireGuard on all nodes"):
                self.restart_all(skip=skip)

        with self.stage("Verifying mesh connectivity"):
            result = self.verify_mesh(skip=skip)

        self.show_summary()
        if result.success:
            console.print("\n[bold green]✓ WireGuard mesh setup complete![/bold green]")
        else:
            console.print(
                f"\n[bold yellow]⚠ Mesh deployed, but verification failed for: "
                f"{', '.join(result.failed_nodes)}[/bold yellow]"
            )
        self.logger.info(f"=== Mesh setup finished: {result.outcome.value} ===")
        return result

    def setup_node(self, node_name: str):
        """노드 하나만 설치/복구 (다른 노드는 건드리지 않음)"""
        if self.config.node_config(node_name) is None:
            raise NodeNotFoundError(node_name)

        console.print(f"[bold]==> Setting up node: {node_name}[/bold]")
        self.config.validate()

        with self.stage(f"Installing WireGuard tools on {node_name}"):
            if not self.dry_run:
                self.remote.install(node_name)

        with self.stage("Ensuring key material exists"):
            self.key_manager.ensure_all_keys()

        with self.stage(f"Deploying configuration to {node_name}"):
            node_config = MeshBuilder(self.config, self.context).build_config_for(node_name)
            if self.dry_run:
                console.print(f"  [DRY RUN] Would upload WireGuard config to {node_name}")
            else:
                self.remote.deploy(DeployItem(node_name, node_config))

        console.print(f"[green]✓ Node {node_name} setup complete[/green]")

    def generate_keys(self, skip: Optional[str] = None):
        """설치 및 키 생성만 수행 (설정 배포 없음)"""
        console.print("[bold]==> Generating WireGuard keys (no deploy)[/bold]")

        with self.stage("Validating configuration"):
            self.config.validate()

        with self.stage("Installing WireGuard on nodes"):
            self.install_tooling(skip=skip)

        with self.stage("Generating WireGuard keys"):
            self.key_manager.ensure_all_keys(skip=skip)

        if not self.dry_run:
            console.print(f"[green]✓ Keys stored in {self.store.secrets_dir}[/green]")

    def install_tooling(self, skip: Optional[str] = None):
        targets = self._targets(skip)
        if self.dry_run:
            for node_name in targets:
                console.print(f"  [DRY RUN] Would install WireGuard on {node_name}")
            return

        console.print(f"  Installing WireGuard on {len(targets)} nodes in parallel...")
        self.remote.install_on_all(targets, parallel=True)

    def deploy_configs(self, configs: Dict[str, RenderedNodeConfig], skip: Optional[str] = None):
        items = [
            DeployItem(node_name, node_config)
            for node_name, node_config in configs.items()
            if not (skip and node_name == skip)
        ]

        if self.dry_run:
            for item in items:
                console.print(
                    f"  [DRY RUN] Would deploy to {item.node_name} ({len(item.config.peers)} peers)"
                )
            return

        console.print(f"  Deploying configurations to {len(items)} nodes in parallel...")
        self.remote.deploy_all(items, parallel=True)

    def restart_node(self, node_name: str):
        if self.config.node_config(node_name) is None:
            raise NodeNotFoundError(node_name)
        console.print(f"[bold]==> Restarting WireGuard on: {node_name}[/bold]")
        self.remote.restart(node_name)
        console.print("[green]✓ Restarted[/green]")

    def restart_all(self, skip: Optional[str] = None):
        for node_name in self._targets(skip):
            console.print(f"  Restarting {node_name}...")
            self.remote.restart(node_name)
        console.print("  [green]✓ All nodes restarted[/green]")

    def purge_all(self, skip: Optional[str] = None):
        self.remote.purge_all(self._targets(skip), parallel=True)

    def verify_mesh(self, skip: Optional[str] = None) -> SetupResult:
        """배포 후 검증 (실패는 보고만 하고 예외를 발생시키지 않음)"""
        if self.dry_run:
            console.print("  [DRY RUN] Skipping verification")
            return SetupResult(Outcome.SUCCESS)

        # 핸드셰이크가 맺어질 시간을 준다
        if self.settle_delay:
            time.sleep(self.settle_delay)

        statuses = self.health_checker.verify_nodes(skip=skip)
        all_ok = all(status.up for status in statuses.values())

        if not all_ok:
            console.print("\n[yellow]Note: Handshakes may take a few seconds to establish.[/yellow]")
            console.print("[yellow]Run 'wg-mesh status' to check detailed connectivity.[/yellow]")

        outcome = Outcome.SUCCESS if all_ok else Outcome.PARTIAL_FAILURE
        return SetupResult(outcome, statuses)
