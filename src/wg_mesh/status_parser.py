"""
wg show 출력 파서

모든 함수는 입력이 잘못되어도 예외를 발생시키지 않고 None 또는 기본값을 반환한다.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

PEER_MARKER = "peer:"
DEFAULT_TRANSFER = "0 B"

TIME_UNITS_IN_SECONDS = {
    "second": 1,
    "minute": 60,
    "hour": 3_600,
    "day": 86_400,
}

_PEER_LINE = re.compile(r"^\s*peer:\s*(.*?)\s*$", re.MULTILINE)
_ENDPOINT = re.compile(r"^\s*endpoint:\s*(.+?)\s*$", re.MULTILINE)
_ALLOWED_IPS = re.compile(r"^\s*allowed ips:\s*(.+?)\s*$", re.MULTILINE)
_HANDSHAKE = re.compile(r"^\s*latest handshake:\s*(.+?)\s*$", re.MULTILINE)
_TRANSFER = re.compile(r"^\s*transfer:\s*(.+?)\s+received,\s*(.+?)\s+sent\s*$", re.MULTILINE)
_DURATION = re.compile(r"(\d+)\s+(second|minute|hour|day)s?", re.IGNORECASE)


@dataclass
class TransferStats:
    received: str = DEFAULT_TRANSFER
    sent: str = DEFAULT_TRANSFER


@dataclass
class PeerHealthRecord:
    """피어 블록 하나에서 추출한 정보"""
    public_key: Optional[str]
    endpoint: Optional[str]
    allowed_ips: Optional[str]
    received: str
    sent: str
    handshake_seconds: Optional[int]
    handshake: Optional[str] = None


def split_peer_blocks(status: Optional[str]) -> List[str]:
    """인터페이스 헤더를 제외한 피어 블록 목록"""
    if not isinstance(status, str):
        return []

    blocks: List[List[str]] = []
    for line in status.splitlines():
        if line.strip().startswith(PEER_MARKER):
            blocks.append([line])
        elif blocks:
            blocks[-1].append(line)
    return ["\n".join(block) for block in blocks]


def _first(pattern: re.Pattern, text: Optional[str]) -> Optional[str]:
    if not isinstance(text, str):
        return None
    match = pattern.search(text)
    return match.group(1) if match else None


def extract_peer_block(status: Optional[str], target_ip: str) -> Optional[str]:
    """allowed ips 에 target_ip/32 를 포함하는 첫 번째 피어 블록"""
    route = f"{target_ip}/32"
    for block in split_peer_blocks(status):
        allowed = extract_allowed_ips(block)
        if allowed and route in [item.strip() for item in allowed.split(",")]:
            return block
    return None


def parse_handshake_seconds(desc: Optional[str]) -> Optional[int]:
    """'1 day, 2 hours, 30 minutes ago' 형식을 초로 변환"""
    if not isinstance(desc, str):
        return None
    if desc.strip().lower() == "(none)":
        return None

    matches = _DURATION.findall(desc)
    if not matches:
        return None

    return sum(TIME_UNITS_IN_SECONDS[unit.lower()] * int(value) for value, unit in matches)


def extract_handshake_seconds(peer_block: Optional[str]) -> Optional[int]:
    return parse_handshake_seconds(_first(_HANDSHAKE, peer_block))


def extract_handshake_description(peer_block: Optional[str]) -> Optional[str]:
    return _first(_HANDSHAKE, peer_block)


def extract_endpoint(peer_block: Optional[str]) -> Optional[str]:
    return _first(_ENDPOINT, peer_block)


def extract_allowed_ips(peer_block: Optional[str]) -> Optional[str]:
    return _first(_ALLOWED_IPS, peer_block)


def extract_transfer_stats(peer_block: Optional[str]) -> TransferStats:
    """transfer 라인이 없으면 양방향 모두 '0 B'"""
    if not isinstance(peer_block, str):
        return TransferStats()
    match = _TRANSFER.search(peer_block)
    if not match:
        return TransferStats()
    return TransferStats(received=match.group(1), sent=match.group(2))


def parse_peer(peer_block: str) -> PeerHealthRecord:
    stats = extract_transfer_stats(peer_block)
    return PeerHealthRecord(
        public_key=_first(_PEER_LINE, peer_block) or None,
        endpoint=extract_endpoint(peer_block),
        allowed_ips=extract_allowed_ips(peer_block),
        received=stats.received,
        sent=stats.sent,
        handshake_seconds=extract_handshake_seconds(peer_block),
        handshake=extract_handshake_description(peer_block),
    )


def parse_status(status: Optional[str]) -> List[PeerHealthRecord]:
    return [parse_peer(block) for block in split_peer_blocks(status)]
