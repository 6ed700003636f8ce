"""Process-manager adapters for the gateway service."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass

from loguru import logger

from pairgate.config.schema import ServiceConfig
from pairgate.transport.base import Transport
from pairgate.transport.types import CommandResult

# Status words that mean "not running and safe to mutate"
STOPPED_STATES = {"exited", "stopped", "inactive", "failed", "dead", "created", "absent"}

# Liveness: the gateway answers / with 200, or 401 when a token is required
LIVE_HTTP_STATUSES = {200, 401}


@dataclass
class ServiceStatus:
    """Service state as reported by the process manager."""
    state: str
    detail: str = ""

    @property
    def running(self) -> bool:
        return self.state in ("running", "active")

    @property
    def stopped(self) -> bool:
        return self.state in STOPPED_STATES


class ServiceManager(ABC):
    """Start/stop/status control over the gateway, executed through a transport."""

    def __init__(self, transport: Transport, config: ServiceConfig):
        self.transport = transport
        self.config = config

    @property
    @abstractmethod
    def label(self) -> str:
        """Human-readable service name."""

    @abstractmethod
    def command(self, action: str, *extra: str) -> list[str]:
        """argv for a process-manager action."""

    @property
    def cwd(self) -> str | None:
        return None

    def _run(self, action: str, *extra: str) -> CommandResult:
        argv = self.command(action, *extra)
        result = self.transport.run(argv, timeout=self.config.command_timeout_seconds, cwd=self.cwd)
        if not result.success:
            logger.debug(f"{' '.join(argv)} failed: {result.message}")
        return result

    def stop(self) -> CommandResult:
        return self._run("stop")

    def start(self) -> CommandResult:
        return self._run("start")

    def restart(self) -> CommandResult:
        return self._run("restart")

    @abstractmethod
    def status(self) -> ServiceStatus:
        """Current state of the service."""

    @abstractmethod
    def logs(self, tail: int = 50) -> CommandResult:
        """Last ``tail`` log lines."""

    def probe(self) -> bool:
        """Liveness check against the gateway's HTTP port."""
        status = self.transport.probe_http(f"http://127.0.0.1:{self.config.port}/")
        return status in LIVE_HTTP_STATUSES

    def manual_command(self, action: str) -> str:
        """Shell command an operator can run by hand for ``action``."""
        command = " ".join(self.command(action))
        if self.cwd:
            command = f"cd {self.cwd} && {command}"
        if self.transport.name == "remote":
            return f"{self.transport.describe()} '{command}'"
        return command


class DockerComposeService(ServiceManager):
    """Gateway running as a docker compose service."""

    @property
    def label(self) -> str:
        return f"compose service {self.config.service_name}"

    @property
    def cwd(self) -> str:
        return self.transport.expand_path(self.config.compose_dir)

    def command(self, action: str, *extra: str) -> list[str]:
        return ["docker", "compose", "-f", self.config.compose_file, action, *extra, self.config.service_name]

    def status(self) -> ServiceStatus:
        result = self._run("ps", "--all", "--format", "json")
        if not result.success:
            return ServiceStatus(state="unknown", detail=result.message)
        return ServiceStatus(state=_compose_state(result.stdout, self.config.service_name))

    def logs(self, tail: int = 50) -> CommandResult:
        return self._run("logs", "--no-color", "--tail", str(tail))


def _compose_state(output: str, service: str) -> str:
    """Extract State from `docker compose ps --format json` (array or JSON lines)."""
    output = output.strip()
    if not output:
        return "absent"
    try:
        parsed = json.loads(output)
        rows = parsed if isinstance(parsed, list) else [parsed]
    except json.JSONDecodeError:
        rows = []
        for line in output.splitlines():
            try:
                rows.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug(f"Skipping unparseable compose ps line: {line!r}")
    if any(not isinstance(row, dict) for row in rows):
        return "unknown"
    if not rows and output != "[]":
        return "unknown"
    for row in rows:
        if row.get("Service", service) == service:
            return str(row.get("State", "unknown")).lower()
    return "absent"


class SystemdService(ServiceManager):
    """Gateway running as a systemd unit."""

    @property
    def label(self) -> str:
        return f"systemd unit {self.config.systemd_unit}"

    def _scope(self) -> list[str]:
        return ["--user"] if self.config.systemd_user else []

    def command(self, action: str, *extra: str) -> list[str]:
        return ["systemctl", *self._scope(), action, *extra, self.config.systemd_unit]

    def status(self) -> ServiceStatus:
        result = self._run("is-active")
        state = result.stdout.strip()
        if not state:
            return ServiceStatus(state="unknown", detail=result.message)
        return ServiceStatus(state=state)

    def logs(self, tail: int = 50) -> CommandResult:
        argv = ["journalctl", *self._scope(), "-u", self.config.systemd_unit, "-n", str(tail), "--no-pager"]
        return self.transport.run(argv, timeout=self.config.command_timeout_seconds)


def build_service_manager(transport: Transport, config: ServiceConfig) -> ServiceManager:
    if config.manager == "systemd":
        return SystemdService(transport, config)
    return DockerComposeService(transport, config)
