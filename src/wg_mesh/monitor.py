#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
WireGuard Mesh - 지속 모니터링 모듈

이 모듈은 다음 기능을 제공합니다:
- 주기적인 전체 노드 쌍 연결성 테스트
- 헬스 리포트(JSON) 저장
- 저장된 리포트 요약
"""

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from .health import ConnectivityReport, HealthChecker
from .logger import get_logger

REPORT_GLOB = "health_report_*.json"


def save_health_report(report: ConnectivityReport, log_dir: str) -> Path:
    """연결성 테스트 결과를 파일로 저장

    Returns:
        Path: 저장된 파일 경로
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    report_file = log_path / f"health_report_{timestamp}.json"

    with open(report_file, "w", encoding="utf-8") as f:
        json.dump(report.to_dict(), f, indent=2, ensure_ascii=False)

    get_logger().info(f"Saved health report: {report_file}")
    return report_file


class MeshMonitor:
    """메시를 지속적으로 모니터링하는 클래스"""

    def __init__(self, health_checker: HealthChecker, log_dir: str, interval: int = 60):
        """
        Args:
            health_checker: 연결성 테스트에 사용할 HealthChecker
            log_dir: 리포트 저장 디렉토리
            interval: 모니터링 간격 (초)
        """
        self.health_checker = health_checker
        self.log_dir = log_dir
        self.interval = interval
        self.logger = get_logger()
        self.running = False

    def start_monitoring(self, duration: Optional[int] = None) -> int:
        """모니터링 시작

        Args:
            duration: 모니터링 지속 시간 (초). None이면 무한 실행

        Returns:
            int: 수행한 체크 횟수
        """
        self.logger.info(f"Monitoring started (interval: {self.interval}s)")
        self.running = True

        start_time = time.time()
        check_count = 0

        try:
            while self.running:
                check_count += 1
                self.logger.info(f"Mesh check #{check_count}")

                report = self.health_checker.test_all()
                save_health_report(report, self.log_dir)

                if not report.all_ok:
                    failed = [f"{r.source}-{r.target}" for r in report.failed]
                    self.logger.warning(f"Mesh is unhealthy. Failed pairs: {failed}")

                if duration is not None and (time.time() - start_time) >= duration:
                    self.logger.info(f"Monitoring finished ({check_count} checks)")
                    break

                time.sleep(self.interval)
        finally:
            self.running = False

        return check_count

    def stop_monitoring(self):
        self.logger.info("Monitoring stop requested")
        self.running = False


def generate_health_summary(log_dir: str, limit: int = 10) -> Dict:
    """최근 헬스 리포트들의 요약 생성"""
    log_path = Path(log_dir)
    report_files = sorted(log_path.glob(REPORT_GLOB), reverse=True) if log_path.is_dir() else []

    if not report_files:
        return {
            "status": "no_reports",
            "message": "헬스 리포트가 없습니다."
        }

    recent_reports = []
    for report_file in report_files[:limit]:
        try:
            with open(report_file, "r", encoding="utf-8") as f:
                recent_reports.append(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            get_logger().warning(f"Skipping unreadable report {report_file}: {e}")

    if not recent_reports:
        return {
            "status": "error",
            "message": "유효한 헬스 리포트가 없습니다."
        }

    total_checks = len(recent_reports)
    healthy_checks = sum(1 for r in recent_reports if r.get("overall_status") == "healthy")
    unhealthy_checks = total_checks - healthy_checks
    latest = recent_reports[0]

    summary = {
        "status": "ok",
        "latest_check": latest.get("timestamp", ""),
        "latest_status": latest.get("overall_status", "unknown"),
        "latest_failed_pairs": latest.get("failed_pairs", []),
        "total_checks": total_checks,
        "healthy_checks": healthy_checks,
        "unhealthy_checks": unhealthy_checks,
        "health_rate": round(healthy_checks / total_checks * 100, 2),
    }

    if unhealthy_checks > 0:
        summary["warning"] = f"최근 {total_checks}번의 체크 중 {unhealthy_checks}번 비정상 감지"

    return summary
