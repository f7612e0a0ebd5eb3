"""
키/PSK 로컬 저장소
노드별 YAML 파일과 PSK 통합 파일, 소유자 전용 권한
"""

import os
import tempfile
import yaml
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Optional

from .keys import KeyPair
from .logger import get_logger

PSK_FILE_NAME = "psks.yml"


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class SecretsStore:
    """파일 시스템 기반 키/PSK 캐시

    외부 파일 잠금이 없으므로 같은 디렉토리에 대한 동시 실행은 안전하지 않다.
    """

    def __init__(self, secrets_dir: str):
        self.secrets_dir = Path(os.path.expanduser(secrets_dir)).resolve()
        self.logger = get_logger()

    @property
    def psk_file(self) -> Path:
        return self.secrets_dir / PSK_FILE_NAME

    def key_file(self, node_name: str) -> Path:
        return self.secrets_dir / f"{node_name}.yml"

    def _ensure_dir(self):
        self.secrets_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.secrets_dir, 0o700)

    def _write(self, path: Path, payload: Dict):
        """같은 디렉토리의 임시 파일(0600)에 쓴 뒤 교체

        쓰기 도중 중단되어도 기존 파일은 그대로 남는다.
        """
        self._ensure_dir()
        fd, tmp_path = tempfile.mkstemp(dir=str(self.secrets_dir), prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(payload, f, default_flow_style=False, sort_keys=False)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def load_keys(self, node_names: Optional[Iterable[str]] = None) -> Dict[str, KeyPair]:
        """저장된 키 페어 로드 (알 수 없는 노드나 손상된 파일은 무시)"""
        if not self.secrets_dir.is_dir():
            return {}

        known = set(node_names) if node_names is not None else None
        keys: Dict[str, KeyPair] = {}

        for path in sorted(self.secrets_dir.glob("*.yml")):
            if path.name == PSK_FILE_NAME:
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                self.logger.warning(f"Skipping unreadable key file {path}: {e}")
                continue

            if not isinstance(data, dict):
                continue

            node_name = str(data.get("node") or path.stem)
            if known is not None and node_name not in known:
                continue
            if not data.get("private_key") or not data.get("public_key"):
                continue

            keys[node_name] = KeyPair(
                private_key=str(data["private_key"]),
                public_key=str(data["public_key"]),
            )

        self.logger.debug(f"Loaded {len(keys)} stored key pairs from {self.secrets_dir}")
        return keys

    def load_psks(self) -> Dict[str, str]:
        """저장된 PSK 테이블 로드"""
        if not self.psk_file.exists():
            return {}

        try:
            with open(self.psk_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            self.logger.warning(f"Ignoring unreadable PSK file {self.psk_file}: {e}")
            return {}

        pairs = data.get("pairs") if isinstance(data, dict) else None
        if not isinstance(pairs, dict):
            return {}
        return {str(key): str(value) for key, value in pairs.items()}

    def store_keypair(self, node_name: str, keypair: KeyPair):
        payload = {
            "node": node_name,
            "private_key": keypair.private_key,
            "public_key": keypair.public_key,
            "generated_at": _timestamp(),
        }
        self._write(self.key_file(node_name), payload)
        self.logger.info(f"Stored key pair for {node_name} in {self.key_file(node_name)}")

    def store_psks(self, psk_map: Dict[str, str]):
        payload = {
            "generated_at": _timestamp(),
            "pairs": dict(psk_map),
        }
        self._write(self.psk_file, payload)
        self.logger.info(f"Stored {len(psk_map)} pre-shared keys in {self.psk_file}")
