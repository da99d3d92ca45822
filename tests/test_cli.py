import pytest

from click.testing import CliRunner

import bfbridge.cli.cli as cli_module
import bfbridge.lib.bootstrap

from bfbridge.cli.formatters import cli_report_format_pretty, cli_report_format_steps
from bfbridge.lib.common import PreflightSSHError
from bfbridge.lib.plan import CHANGED, UNCHANGED


REPORT = {
    "mode": "ipv4",
    "link_if": "tmfifo_net0",
    "peer": "ubuntu@192.168.100.2",
    "dry_run": False,
    "egress": {4: "eth0"},
    "steps": {"address-v4": CHANGED, "forwarding-v4": UNCHANGED},
    "flashed": False,
    "peer_configured": True,
    "validation": [
        {"name": "BF IPv4 ping", "target": "peer", "command": "", "ok": True, "detail": ""},
        {
            "name": "BF IPv4 HTTP",
            "target": "peer",
            "command": "",
            "ok": False,
            "detail": "Could not resolve host",
        },
    ],
}


@pytest.fixture
def calls(monkeypatch):
    monkeypatch.delenv("BFBRIDGE_CONFIG_FILE", raising=False)
    monkeypatch.delenv("BFBRIDGE_DEBUG", raising=False)
    monkeypatch.setattr(cli_module, "audit", lambda: None)

    recorded = list()

    def fake_bootstrap(config, logger, **kwargs):
        recorded.append((config, kwargs))
        return REPORT

    monkeypatch.setattr(bfbridge.lib.bootstrap, "bootstrap", fake_bootstrap)
    return recorded


def test_version():
    result = CliRunner().invoke(cli_module.cli, ["--version"])

    assert result.exit_code == 0
    assert "1.0.0" in result.output


def test_invalid_mode(calls, ssh_key):
    result = CliRunner().invoke(
        cli_module.cli, ["--mode", "ipv5", "--ssh-key", ssh_key, "--no-colour"]
    )

    assert result.exit_code == 1
    assert "ipv4 | ipv6 | dual" in result.output
    assert calls == []


def test_options_reach_configuration(calls, ssh_key):
    result = CliRunner().invoke(
        cli_module.cli,
        [
            "--mode",
            "dual",
            "--host-if",
            "tmfifo_net1",
            "--bf-ssh-user",
            "admin",
            "--no-install",
            "--ssh-key",
            ssh_key,
            "--dry-run",
            "--resume-from",
            "masquerade-v4",
            "--no-colour",
        ],
    )

    assert result.exit_code == 0, result.output
    config, kwargs = calls[0]
    assert config.mode == "dual"
    assert config.link_if == "tmfifo_net1"
    assert config.peer_ssh_user == "admin"
    assert config.install_packages is False
    assert kwargs["dry_run"] is True
    assert kwargs["resume_from"] == "masquerade-v4"
    assert kwargs["validate_only"] is False


def test_success_report(calls, ssh_key):
    result = CliRunner().invoke(cli_module.cli, ["--ssh-key", ssh_key, "--no-colour"])

    assert result.exit_code == 0, result.output
    assert "Egress:       IPv4 eth0" in result.output
    assert "1/2 probes passed" in result.output
    assert "warning BF IPv4 HTTP: Could not resolve host" in result.output


def test_bridge_error_exits_nonzero(calls, monkeypatch, ssh_key):
    def failing_bootstrap(config, logger, **kwargs):
        raise PreflightSSHError(
            "ubuntu@192.168.100.2", ssh_key, "user", detail="Permission denied"
        )

    monkeypatch.setattr(bfbridge.lib.bootstrap, "bootstrap", failing_bootstrap)

    result = CliRunner().invoke(cli_module.cli, ["--ssh-key", ssh_key, "--no-colour"])

    assert result.exit_code == 1
    assert "ssh-copy-id -i" in result.output


def test_log_file(calls, ssh_key, tmp_path):
    log_file = tmp_path / "bfbridge.log"

    result = CliRunner().invoke(
        cli_module.cli,
        ["--ssh-key", ssh_key, "--no-colour", "--log-file", str(log_file)],
    )

    assert result.exit_code == 0, result.output
    assert log_file.exists()


def test_unwritable_log_file(calls, ssh_key, tmp_path):
    log_file = tmp_path / "missing-dir" / "bfbridge.log"

    result = CliRunner().invoke(
        cli_module.cli,
        ["--ssh-key", ssh_key, "--no-colour", "--log-file", str(log_file)],
    )

    assert result.exit_code == 1
    assert result.exception is None or isinstance(result.exception, SystemExit)
    assert "Cannot open log file" in result.output
    assert calls == []


def test_format_steps():
    assert cli_report_format_steps({}) == "none run"
    assert cli_report_format_steps(REPORT["steps"]) == "1 changed, 1 unchanged"


def test_format_flashed():
    output = cli_report_format_pretty(
        {"colour": False}, dict(REPORT, flashed=True, peer_configured=False, validation=[])
    )

    assert "Firmware:     flashed" in output
    assert "BF network:   not configured" in output
    assert "Validation:   not run" in output
