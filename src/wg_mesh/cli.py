"""
CLI 메인 인터페이스
Click 및 Rich 기반 사용자 친화적 CLI
"""

import os
import sys
import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import MeshConfig
from .errors import ConfigError, ErrorKind, MeshError, RemoteExecutionError, TrustError
from .health import HealthChecker
from .installer import MeshInstaller
from .logger import init_logger, get_logger
from .monitor import MeshMonitor, generate_health_summary, save_health_report
from .remote import SSHExecutor
from .trust import DEFAULT_KNOWN_HOSTS, DEFAULT_TIMEOUT, HostTrustManager
from .wireguard import WireGuardRemote

console = Console()


def load_config(ctx: click.Context) -> MeshConfig:
    """설정 로드 및 로거 초기화 (실패 시 종료)"""
    options = ctx.obj
    try:
        cfg = MeshConfig.load(options["config"], options["environment"])
    except (ConfigError, OSError, ValueError) as e:
        console.print(f"[red]Error loading config: {escape(str(e))}[/red]")
        sys.exit(1)

    init_logger(cfg.log_dir, cfg.log_level, options["debug"])
    get_logger().info(f"Loaded config {options['config']} (environment={cfg.environment})")
    return cfg


def environment_prefix(cfg: MeshConfig) -> str:
    if cfg.environment == "development":
        return ""
    return f"{MeshConfig.ENVIRONMENT_VARIABLE}={cfg.environment} "


def handle_remote_error(error: RemoteExecutionError, cfg: MeshConfig, config_path: str):
    """원격 실행 오류 유형별 해결 방법 안내 후 종료"""
    prefix = environment_prefix(cfg)
    host = error.host or "<host>"
    message = escape(error.message.splitlines()[0] if error.message else "")

    if error.kind == ErrorKind.HOST_KEY_MISMATCH:
        title = "SSH Host Key Verification Failed"
        body = (
            "The SSH fingerprint for one or more hosts has changed or is unknown.\n"
            "This typically happens when a server is rebuilt or reinstalled.\n\n"
            f"Problematic host: {host} ({error.node_name})\n\n"
            "🔧 How to fix this:\n"
            f"  1. Update all host keys automatically (recommended):\n     {prefix}wg-mesh trust-hosts --force\n"
            f"  2. Or manually remove just the problematic host:\n     ssh-keygen -R {host}\n"
            f"  3. Then retry the setup:\n     {prefix}wg-mesh setup"
        )
    elif error.kind == ErrorKind.AUTHENTICATION:
        title = "SSH Authentication Failed"
        body = (
            f"Could not authenticate to {host} ({error.node_name}).\n\n"
            "🔧 Troubleshooting steps:\n"
            f"  1. Verify the SSH key path is correct in your config:\n"
            f"     Config file: {config_path}\n     Environment: {cfg.environment}\n     SSH key: {cfg.ssh_key}\n"
            f"  2. Check that the SSH key exists:\n     ls -la {cfg.ssh_key}\n"
            f"  3. Verify the SSH key is authorized on the remote host:\n"
            f"     ssh -i {cfg.ssh_key} {cfg.user}@{host} 'cat ~/.ssh/authorized_keys'\n"
            f"  4. Check file permissions (should be 600 for private key):\n     chmod 600 {cfg.ssh_key}"
        )
    elif error.kind == ErrorKind.CONNECTION:
        title = "SSH Connection Failed"
        body = (
            f"Could not connect to {host} ({error.node_name}).\n\n"
            f"Error: {message}\n\n"
            "🔧 Troubleshooting steps:\n"
            f"  1. Verify the host is online and reachable:\n     ping {host}\n"
            f"  2. Check that the SSH port is open (default: 22):\n     nc -zv {host} 22\n"
            "  3. Verify firewall rules allow SSH connections\n"
            "  4. Check that the SSH service is running:\n     systemctl status sshd\n"
            f"  5. Review host configuration in:\n     {config_path}"
        )
    else:
        title = "Remote Command Failed"
        body = (
            f"Node: {error.node_name} ({host})\n"
            f"Error: {escape(error.message)}\n\n"
            "🔧 Troubleshooting steps:\n"
            f"  1. Trust SSH host keys for all nodes:\n     {prefix}wg-mesh trust-hosts\n"
            f"  2. Verify configuration:\n     Config file: {config_path}\n     Environment: {cfg.environment}\n"
            f"  3. Test manual SSH connection:\n     ssh -i {cfg.ssh_key} {cfg.user}@{host}\n"
            "  4. Re-run with --debug for the full command log"
        )

    get_logger().error(f"{title}: {error}")
    console.print(Panel(body, title=f"[bold red]❌ {title}[/bold red]", border_style="red"))
    sys.exit(1)


def run_remote(ctx: click.Context, cfg: MeshConfig, action):
    """원격 작업 실행 및 공통 오류 처리"""
    try:
        return action()
    except RemoteExecutionError as e:
        handle_remote_error(e, cfg, ctx.obj["config"])
    except MeshError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        get_logger().error(str(e))
        sys.exit(1)


def build_health_checker(cfg: MeshConfig) -> HealthChecker:
    return HealthChecker(cfg, WireGuardRemote(SSHExecutor(cfg)))


@click.group()
@click.version_option(version=__version__, prog_name="wg-mesh")
@click.option('--config', '-c', default=MeshConfig.DEFAULT_CONFIG_PATH, show_default=True,
              help='설정 파일 경로')
@click.option('--environment', '-e', default=None,
              help=f'환경 이름 (기본값: ${MeshConfig.ENVIRONMENT_VARIABLE} 또는 development)')
@click.option('--debug', is_flag=True, help='디버그 모드')
@click.pass_context
def cli(ctx, config, environment, debug):
    """WireGuard Mesh Manager

    모든 노드 쌍 사이에 WireGuard 터널을 구성하는 풀 메시 VPN 관리 도구입니다.
    """
    ctx.ensure_object(dict)
    ctx.obj.update({"config": config, "environment": environment, "debug": debug})


@cli.command()
@click.argument('output', type=click.Path(), default=MeshConfig.DEFAULT_CONFIG_PATH)
def init(output):
    """샘플 설정 파일 생성"""
    if os.path.exists(output):
        console.print(f"[yellow]이미 존재하는 파일입니다: {output}[/yellow]")
        sys.exit(1)
    MeshConfig.create_sample(output)
    console.print(f"[green]✓ 샘플 설정 파일 생성: {output}[/green]")
    console.print("[cyan]설정 파일을 편집한 후 다음 명령어로 실행하세요:[/cyan]")
    console.print(f"[cyan]  wg-mesh -c {output} trust-hosts[/cyan]")
    console.print(f"[cyan]  wg-mesh -c {output} setup[/cyan]")


@cli.command()
@click.pass_context
def validate(ctx):
    """설정 파일 유효성 검사"""
    cfg = load_config(ctx)
    try:
        cfg.validate()
    except ConfigError as e:
        console.print(f"[red]✗ 설정 파일 오류: {escape(str(e))}[/red]")
        sys.exit(1)

    console.print("[green]✓ 설정 파일이 유효합니다.[/green]")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")
    table.add_row("환경", cfg.environment)
    table.add_row("네트워크", f"{cfg.network} (/{cfg.network_prefix_length})")
    table.add_row("노드 수", str(len(cfg.nodes)))
    table.add_row("Listen Port", str(cfg.listen_port))
    table.add_row("MTU", str(cfg.mtu))
    table.add_row("Keepalive", f"{cfg.keepalive}s")
    table.add_row("호스트 키 검증", cfg.verify_host_key_mode)
    table.add_row("키 저장소", cfg.secrets_dir)
    console.print(table)


@cli.command(name="list")
@click.pass_context
def list_nodes(ctx):
    """노드 목록"""
    cfg = load_config(ctx)
    for name, node in cfg.each_node():
        console.print(f"{name}: {node.host} ({node.private_ip})")


@cli.command()
@click.argument('name')
@click.pass_context
def show(ctx, name):
    """노드 상세 정보 및 상태"""
    cfg = load_config(ctx)
    node = cfg.node_config(name)
    if node is None:
        console.print(f"[red]Node not found: {name}[/red]")
        sys.exit(1)

    console.print(f"Node: {name}")
    console.print(f"Host: {node.host}")
    console.print(f"Private IP: {node.private_ip}")
    if node.region:
        console.print(f"Region: {node.region}")

    run_remote(ctx, cfg, lambda: build_health_checker(cfg).show_node_status(name))


@cli.command()
@click.option('--dry-run', is_flag=True, help='원격 변경 없이 시뮬레이션')
@click.option('--skip-node', default=None, help='이번 실행에서 제외할 노드')
@click.option('--only-node', default=None, help='지정한 노드 하나만 설치')
@click.pass_context
def setup(ctx, dry_run, skip_node, only_node):
    """모든 노드에 WireGuard 메시 설치"""
    cfg = load_config(ctx)
    installer = MeshInstaller(cfg, dry_run=dry_run)

    if only_node:
        run_remote(ctx, cfg, lambda: installer.setup_node(only_node))
        return

    result = run_remote(ctx, cfg, lambda: installer.setup(skip=skip_node))
    sys.exit(0 if result.success else 1)


@cli.command()
@click.option('--dry-run', is_flag=True, help='원격 변경 없이 시뮬레이션')
@click.option('--skip-node', default=None, help='이번 실행에서 제외할 노드')
@click.pass_context
def keygen(ctx, dry_run, skip_node):
    """설정 배포 없이 키만 생성"""
    cfg = load_config(ctx)
    installer = MeshInstaller(cfg, dry_run=dry_run)
    run_remote(ctx, cfg, lambda: installer.generate_keys(skip=skip_node))


@cli.command()
@click.pass_context
def status(ctx):
    """메시 상태 표시"""
    cfg = load_config(ctx)
    statuses = run_remote(ctx, cfg, lambda: build_health_checker(cfg).show_status())
    sys.exit(0 if all(s.up for s in statuses.values()) else 1)


@cli.command()
@click.pass_context
def health(ctx):
    """status 와 동일"""
    ctx.invoke(status)


@cli.command()
@click.argument('node')
@click.pass_context
def ping(ctx, node):
    """다른 모든 노드에서 지정한 노드로 ping"""
    cfg = load_config(ctx)
    results = run_remote(ctx, cfg, lambda: build_health_checker(cfg).ping_node(node))
    sys.exit(0 if results and all(results.values()) else 1)


@cli.command(name="test-connectivity")
@click.option('--save-report', is_flag=True, help='리포트를 파일로 저장')
@click.pass_context
def test_connectivity(ctx, save_report):
    """모든 노드 쌍 연결성 테스트"""
    cfg = load_config(ctx)
    report = run_remote(ctx, cfg, lambda: build_health_checker(cfg).test_all())

    console.print(
        f"\n{len(report.results) - len(report.failed)}/{len(report.results)} pairs connected"
    )
    if save_report:
        report_file = save_health_report(report, cfg.log_dir)
        console.print(f"[green]✅ 리포트 저장: {report_file}[/green]")
    sys.exit(0 if report.all_ok else 1)


@cli.command()
@click.option('--node', default=None, help='노드 하나만 표시')
@click.pass_context
def stats(ctx, node):
    """피어별 트래픽 통계"""
    cfg = load_config(ctx)
    if node and cfg.node_config(node) is None:
        console.print(f"[red]Node not found: {node}[/red]")
        sys.exit(1)
    run_remote(ctx, cfg, lambda: build_health_checker(cfg).show_stats(node=node))


@cli.command()
@click.option('--node', default=None, help='노드 하나만 재시작')
@click.option('--skip-node', default=None, help='재시작에서 제외할 노드')
@click.pass_context
def restart(ctx, node, skip_node):
    """WireGuard 인터페이스 재시작"""
    cfg = load_config(ctx)
    installer = MeshInstaller(cfg)
    if node:
        run_remote(ctx, cfg, lambda: installer.restart_node(node))
    else:
        run_remote(ctx, cfg, lambda: installer.restart_all(skip=skip_node))


@cli.command(name="trust-hosts")
@click.option('--known-hosts', default=DEFAULT_KNOWN_HOSTS, show_default=True,
              help='known_hosts 경로')
@click.option('--force', is_flag=True, help='기존 항목을 제거한 뒤 다시 등록')
@click.option('--hash-hosts', is_flag=True, help='known_hosts 에 호스트 이름 해시 저장')
@click.option('--timeout', type=int, default=DEFAULT_TIMEOUT, show_default=True,
              help='ssh-keyscan 타임아웃 (초)')
@click.pass_context
def trust_hosts(ctx, known_hosts, force, hash_hosts, timeout):
    """ssh-keyscan 으로 모든 노드 호스트 키를 known_hosts 에 등록"""
    cfg = load_config(ctx)
    manager = HostTrustManager(
        cfg,
        known_hosts_path=known_hosts,
        timeout=timeout,
        hash_hosts=hash_hosts,
        replace_existing=force
    )

    try:
        success = manager.trust_all_hosts()
    except TrustError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        sys.exit(1)

    sys.exit(0 if success else 1)


@cli.command()
@click.option("--interval", type=int, default=60, show_default=True, help="모니터링 간격 (초)")
@click.option("--duration", type=int, default=None, help="모니터링 지속 시간 (초, 기본값: 무한)")
@click.pass_context
def monitor(ctx, interval, duration):
    """메시 연결성을 지속적으로 모니터링"""
    cfg = load_config(ctx)
    monitor_obj = MeshMonitor(build_health_checker(cfg), cfg.log_dir, interval=interval)

    console.print(f"[green]모니터링 간격: {interval}초[/green]")
    if duration:
        console.print(f"[green]모니터링 지속 시간: {duration}초[/green]")
    else:
        console.print("[green]모니터링 지속 시간: 무한 (Ctrl+C로 중지)[/green]")

    try:
        run_remote(ctx, cfg, lambda: monitor_obj.start_monitoring(duration=duration))
    except KeyboardInterrupt:
        console.print("\n[yellow]모니터링 중지[/yellow]")

    console.print("[green]모니터링 종료[/green]")


@cli.command(name="health-summary")
@click.pass_context
def health_summary(ctx):
    """저장된 헬스 리포트 요약"""
    cfg = load_config(ctx)
    summary = generate_health_summary(cfg.log_dir)

    if summary.get("status") == "no_reports":
        console.print("[yellow]헬스 리포트가 없습니다.[/yellow]")
        return

    if summary.get("status") == "error":
        console.print(f"[red]오류: {summary.get('message')}[/red]")
        return

    table = Table(title="헬스체크 요약")
    table.add_column("항목", style="cyan")
    table.add_column("값", style="white")

    table.add_row("최근 체크 시간", summary["latest_check"])
    table.add_row("최근 상태", summary["latest_status"])
    table.add_row("총 체크 횟수", str(summary["total_checks"]))
    table.add_row("정상 체크", str(summary["healthy_checks"]))
    table.add_row("비정상 체크", str(summary["unhealthy_checks"]))
    table.add_row("정상률", f"{summary['health_rate']}%")
    console.print(table)

    if summary.get("warning"):
        console.print(f"\n[yellow]⚠️  {summary['warning']}[/yellow]")


def main():
    """메인 엔트리 포인트"""
    cli(obj={})


if __name__ == '__main__':
    main()
