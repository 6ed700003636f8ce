"""Tests for the docker compose and systemd adapters."""

import json

from pairgate.config.schema import ServiceConfig
from pairgate.service.manager import (
    DockerComposeService,
    ServiceStatus,
    SystemdService,
    _compose_state,
    build_service_manager,
)
from pairgate.transport.types import CommandResult


class TestComposeState:
    def test_json_array(self):
        out = json.dumps([{"Service": "openclaw-gateway", "State": "running"}])
        assert _compose_state(out, "openclaw-gateway") == "running"

    def test_json_lines(self):
        out = "\n".join([
            json.dumps({"Service": "db", "State": "running"}),
            json.dumps({"Service": "openclaw-gateway", "State": "exited"}),
        ])
        assert _compose_state(out, "openclaw-gateway") == "exited"

    def test_empty_is_absent(self):
        assert _compose_state("", "openclaw-gateway") == "absent"

    def test_other_service_only(self):
        out = json.dumps({"Service": "db", "State": "running"})
        assert _compose_state(out, "openclaw-gateway") == "absent"

    def test_no_containers_is_absent(self):
        assert _compose_state("[]", "openclaw-gateway") == "absent"

    def test_garbage_is_unknown(self):
        assert _compose_state('{"Service": oops\n', "openclaw-gateway") == "unknown"
        assert _compose_state("time=... level=warning msg=obsolete", "openclaw-gateway") == "unknown"

    def test_skips_broken_lines(self):
        out = "\n".join(['{"Service": oops', json.dumps({"Service": "openclaw-gateway", "State": "exited"})])
        assert _compose_state(out, "openclaw-gateway") == "exited"

    def test_non_object_rows_are_unknown(self):
        assert _compose_state('["running"]', "openclaw-gateway") == "unknown"
        assert _compose_state("42", "openclaw-gateway") == "unknown"


class TestServiceStatus:
    def test_running_and_stopped(self):
        assert ServiceStatus("running").running
        assert ServiceStatus("active").running
        assert ServiceStatus("exited").stopped
        assert ServiceStatus("inactive").stopped
        assert not ServiceStatus("restarting").stopped
        assert not ServiceStatus("unknown").stopped


# ── docker compose ──────────────────────────────────────────────────


class TestDockerCompose:
    def test_stop_command(self, make_transport):
        transport = make_transport()
        service = DockerComposeService(transport, ServiceConfig(compose_dir="/srv/gw"))
        assert service.stop().success
        argv, cwd = transport.commands[-1]
        assert argv == ["docker", "compose", "-f", "docker-compose.yml", "stop", "openclaw-gateway"]
        assert cwd == "/srv/gw"

    def test_status_parses_ps(self, make_transport):
        ps = CommandResult(success=True, exit_code=0, stdout='{"Service":"openclaw-gateway","State":"running"}\n')
        transport = make_transport(results={"ps": ps})
        service = DockerComposeService(transport, ServiceConfig())
        assert service.status().running

    def test_status_unknown_on_failure(self, make_transport):
        ps = CommandResult(success=False, exit_code=1, stderr="Cannot connect to the Docker daemon")
        service = DockerComposeService(make_transport(results={"ps": ps}), ServiceConfig())
        status = service.status()
        assert status.state == "unknown"
        assert not status.stopped
        assert "Docker daemon" in status.detail

    def test_logs_tail(self, make_transport):
        transport = make_transport()
        DockerComposeService(transport, ServiceConfig()).logs(20)
        argv, _ = transport.commands[-1]
        assert argv[-4:] == ["--no-color", "--tail", "20", "openclaw-gateway"]

    def test_manual_command(self, make_transport):
        service = DockerComposeService(make_transport(), ServiceConfig(compose_dir="/srv/gw"))
        assert service.manual_command("start") == (
            "cd /srv/gw && docker compose -f docker-compose.yml start openclaw-gateway"
        )

    def test_probe(self, make_transport):
        config = ServiceConfig()
        assert DockerComposeService(make_transport(http_status=200), config).probe()
        assert DockerComposeService(make_transport(http_status=401), config).probe()
        assert not DockerComposeService(make_transport(http_status=502), config).probe()
        assert not DockerComposeService(make_transport(http_status=None), config).probe()


# ── systemd ─────────────────────────────────────────────────────────


class TestSystemd:
    def test_user_scope(self, make_transport):
        transport = make_transport()
        service = SystemdService(transport, ServiceConfig(manager="systemd", systemd_user=True))
        service.start()
        argv, cwd = transport.commands[-1]
        assert argv == ["systemctl", "--user", "start", "openclaw-gateway.service"]
        assert cwd is None

    def test_is_active(self, make_transport):
        inactive = CommandResult(success=False, exit_code=3, stdout="inactive\n")
        service = SystemdService(make_transport(results={"is-active": inactive}), ServiceConfig(manager="systemd"))
        assert service.status().stopped

    def test_journal(self, make_transport):
        transport = make_transport()
        SystemdService(transport, ServiceConfig(manager="systemd")).logs(5)
        argv, _ = transport.commands[-1]
        assert argv == ["journalctl", "-u", "openclaw-gateway.service", "-n", "5", "--no-pager"]


def test_build_service_manager(make_transport):
    transport = make_transport()
    assert isinstance(build_service_manager(transport, ServiceConfig()), DockerComposeService)
    assert isinstance(build_service_manager(transport, ServiceConfig(manager="systemd")), SystemdService)
