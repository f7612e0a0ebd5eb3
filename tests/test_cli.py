"""
CLI 테스트 (원격 작업이 필요 없는 명령)
"""

import yaml
from click.testing import CliRunner

from wg_mesh.cli import cli

from conftest import THREE_NODES


def _write_config(tmp_path, nodes=None):
    path = tmp_path / "mesh.yml"
    env = {
        "nodes": THREE_NODES if nodes is None else nodes,
        "log_dir": str(tmp_path / "logs"),
        "secrets_dir": str(tmp_path / "secrets"),
    }
    path.write_text(yaml.safe_dump({"development": env, "production": env}))
    return str(path)


def test_init_creates_sample(tmp_path):
    runner = CliRunner()
    output = tmp_path / "config" / "mesh.yml"

    result = runner.invoke(cli, ["init", str(output)], obj={})
    assert result.exit_code == 0
    assert output.exists()

    result = runner.invoke(cli, ["init", str(output)], obj={})
    assert result.exit_code == 1


def test_validate_ok(tmp_path):
    runner = CliRunner()
    result = runner.invoke(cli, ["-c", _write_config(tmp_path), "validate"], obj={})
    assert result.exit_code == 0
    assert "유효합니다" in result.output


def test_validate_invalid(tmp_path):
    runner = CliRunner()
    config_path = _write_config(tmp_path, nodes={"alpha": {"host": "1.1.1.1"}})
    result = runner.invoke(cli, ["-c", config_path, "validate"], obj={})
    assert result.exit_code == 1
    assert "private_ip" in result.output


def test_missing_config_file(tmp_path):
    runner = CliRunner()
    result = runner.invoke(cli, ["-c", str(tmp_path / "nope.yml"), "list"], obj={})
    assert result.exit_code == 1
    assert "Config file not found" in result.output


def test_list_nodes(tmp_path):
    runner = CliRunner()
    result = runner.invoke(cli, ["-c", _write_config(tmp_path), "-e", "production", "list"], obj={})
    assert result.exit_code == 0
    assert "alpha: 1.1.1.1 (10.8.0.1)" in result.output
    assert "gamma: 3.3.3.3 (10.8.0.3)" in result.output


def test_show_unknown_node(tmp_path):
    runner = CliRunner()
    result = runner.invoke(cli, ["-c", _write_config(tmp_path), "show", "delta"], obj={})
    assert result.exit_code == 1
    assert "Node not found: delta" in result.output


def test_health_summary_without_reports(tmp_path):
    runner = CliRunner()
    result = runner.invoke(cli, ["-c", _write_config(tmp_path), "health-summary"], obj={})
    assert result.exit_code == 0
    assert "헬스 리포트가 없습니다" in result.output
