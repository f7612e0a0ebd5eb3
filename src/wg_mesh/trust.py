"""
호스트 키 신뢰 관리 모듈
ssh-keyscan 으로 노드 호스트 키를 수집하여 known_hosts 에 중복 없이 추가
"""

import os
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Set

from rich.markup import escape

from .config import MeshConfig
from .errors import TrustError
from .logger import get_logger, console

DEFAULT_TIMEOUT = 5
DEFAULT_KEY_TYPES = ("ed25519", "ecdsa", "rsa")
DEFAULT_KNOWN_HOSTS = "~/.ssh/known_hosts"


class HostTrustManager:
    """known_hosts 등록 관리자"""

    def __init__(self, config: MeshConfig,
                 known_hosts_path: str = DEFAULT_KNOWN_HOSTS,
                 timeout: int = DEFAULT_TIMEOUT,
                 key_types: Sequence[str] = DEFAULT_KEY_TYPES,
                 hash_hosts: bool = False,
                 replace_existing: bool = False):
        self.config = config
        self.known_hosts_path = Path(os.path.expanduser(known_hosts_path))
        self.timeout = timeout
        self.key_types = ",".join(key_types)
        self.hash_hosts = hash_hosts
        self.replace_existing = replace_existing
        self.logger = get_logger()

    def trust_all_hosts(self) -> bool:
        """모든 노드 호스트 키 등록, 하나라도 실패하면 False"""
        self.ensure_keyscan()
        self.ensure_known_hosts_file()

        existing = self.load_known_host_lines()
        trusted: List[str] = []
        failed: List[str] = []

        for node_name, node in self.config.each_node():
            if not node.host:
                continue

            port = node.ssh_port
            label = f"{node.host}:{port}" if port else node.host

            console.print(f"[bold]==> Fetching host key for {node_name} ({label})[/bold]")
            if self.replace_existing:
                self.remove_host_entries(node.host, port)

            output = self.scan_host(node.host, port)
            if output:
                added = self.append_unique_entries(output, existing)
                trusted.append(label)
                console.print(f"  [green]✓ Added {label} to {self.known_hosts_path}[/green]")
                self.logger.info(f"Trusted {label} ({added} new entries)")
            else:
                failed.append(label)
                console.print(f"  [red]✗ Failed to scan {label}[/red]")
                self.logger.warning(f"Host key scan failed for {label}")

        self.summary(trusted, failed)
        return not failed

    def ensure_keyscan(self):
        if shutil.which("ssh-keyscan") is None:
            raise TrustError("ssh-keyscan command not found. Install OpenSSH client utilities.")

    def ensure_known_hosts_file(self):
        self.known_hosts_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.known_hosts_path.exists():
            self.known_hosts_path.touch(mode=0o600)

    def load_known_host_lines(self) -> Set[str]:
        if not self.known_hosts_path.exists():
            return set()
        with open(self.known_hosts_path, "r", encoding="utf-8") as f:
            return {line.strip() for line in f}

    def scan_host(self, host: str, port: Optional[int] = None) -> Optional[str]:
        """ssh-keyscan 실행, 실패하면 None"""
        cmd = ["ssh-keyscan", "-T", str(self.timeout)]
        if self.hash_hosts:
            cmd.append("-H")
        if port:
            cmd += ["-p", str(port)]
        cmd += ["-t", self.key_types, host]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout + 5)
        except subprocess.TimeoutExpired:
            console.print(f"    [yellow]Connection timeout or host unreachable (timeout: {self.timeout}s)[/yellow]")
            return None

        if result.returncode == 0 and result.stdout.strip():
            return result.stdout

        stderr = result.stderr.strip()
        if stderr:
            console.print(f"    [yellow]ssh-keyscan error: {escape(stderr)}[/yellow]")
        else:
            console.print(f"    [yellow]Connection timeout or host unreachable (timeout: {self.timeout}s)[/yellow]")
            console.print("    [yellow]Check firewall rules, network connectivity, and SSH service[/yellow]")
        return None

    def remove_host_entries(self, host: str, port: Optional[int] = None):
        """ssh-keygen -R 로 기존 항목 제거 (ssh-keygen 이 없으면 건너뜀)"""
        if shutil.which("ssh-keygen") is None:
            return

        label = f"[{host}]:{port}" if port else host
        result = subprocess.run(
            ["ssh-keygen", "-R", label, "-f", str(self.known_hosts_path)],
            capture_output=True,
            text=True
        )
        if result.returncode == 0:
            if result.stdout.strip():
                console.print(f"    Removed existing known_hosts entry for {escape(label)}")
        elif result.stderr.strip():
            console.print(f"    [yellow]ssh-keygen -R error for {escape(label)}: {escape(result.stderr.strip())}[/yellow]")

    def append_unique_entries(self, output: str, existing: Set[str]) -> int:
        """이미 있는 라인은 건너뛰고 추가, 추가한 라인 수 반환"""
        added = 0
        needs_newline = self._missing_trailing_newline()
        with open(self.known_hosts_path, "a", encoding="utf-8") as f:
            if needs_newline:
                f.write("\n")
            for line in output.splitlines():
                normalized = line.strip()
                if not normalized or normalized in existing:
                    continue
                f.write(normalized + "\n")
                existing.add(normalized)
                added += 1
        return added

    def _missing_trailing_newline(self) -> bool:
        """파일이 비어 있지 않고 개행으로 끝나지 않는지"""
        if not self.known_hosts_path.exists() or self.known_hosts_path.stat().st_size == 0:
            return False
        with open(self.known_hosts_path, "rb") as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) != b"\n"

    def summary(self, trusted: List[str], failed: List[str]):
        console.print("\n[bold]==> Host trust summary[/bold]")
        console.print(f"  Trusted: {len(trusted)}")
        console.print(f"  Failed: {len(failed)}")
        if not failed:
            return

        console.print("\n  [red]❌ Hosts that could not be scanned:[/red]")
        for host in failed:
            console.print(f"    - {host}")
        console.print("\n  🔧 Troubleshooting steps:")
        console.print("    1. Verify the hosts are online and reachable")
        console.print("    2. Check firewall rules allow SSH connections (port 22 by default)")
        console.print("    3. Ensure SSH service is running on the remote hosts")
        console.print("    4. Try increasing the timeout with: --timeout 10")
        console.print("    5. Test manual SSH connection: ssh -i <ssh_key> <user>@<host>")
