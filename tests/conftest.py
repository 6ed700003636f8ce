"""Shared fixtures: fake clock, fake transport and a scripted gateway service."""

import copy
import json
import os
from pathlib import Path

import pytest

from pairgate.config.schema import Config, PairingConfig, ServiceConfig
from pairgate.pairing.manager import PairingManager
from pairgate.service.manager import ServiceManager, ServiceStatus
from pairgate.transport.local import LocalTransport
from pairgate.transport.types import CommandResult


SCENARIO_STORE = {
    "version": 1,
    "requests": [{"id": "42", "code": "AB12CD", "createdAt": "2026-01-01T00:00:00Z"}],
    "approved": [],
}


class FakeClock:
    """Monotonic clock that only moves when sleep() is called."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeTransport(LocalTransport):
    """Local files, scripted commands and HTTP probes."""

    name = "fake"

    def __init__(self, results: dict[str, CommandResult] | None = None, http_status: int | None = 200):
        self.results = results or {}
        self.http_status = http_status
        self.commands: list[tuple[list[str], str | None]] = []

    def run(self, argv, timeout=None, cwd=None):
        self.commands.append((list(argv), cwd))
        for key, result in self.results.items():
            if key in argv:
                return result
        return CommandResult(success=True, exit_code=0)

    def probe_http(self, url, timeout=5.0):
        return self.http_status


class FakeServiceManager(ServiceManager):
    """Gateway stand-in that records every lifecycle call."""

    label = "fake gateway"

    def __init__(
        self,
        transport=None,
        config: ServiceConfig | None = None,
        running: bool = True,
        stop_ok: bool = True,
        start_ok: bool = True,
        ignores_stop: bool = False,
        ready: bool = True,
    ):
        super().__init__(transport or FakeTransport(), config or ServiceConfig())
        self.running = running
        self.stop_ok = stop_ok
        self.start_ok = start_ok
        self.ignores_stop = ignores_stop
        self.ready = ready
        self.calls: list[str] = []

    def command(self, action, *extra):
        return ["fakectl", action, *extra]

    def stop(self):
        self.calls.append("stop")
        if not self.stop_ok:
            return CommandResult(success=False, exit_code=1, stderr="permission denied")
        if not self.ignores_stop:
            self.running = False
        return CommandResult(success=True, exit_code=0)

    def start(self):
        self.calls.append("start")
        if not self.start_ok:
            return CommandResult(success=False, exit_code=1, stderr="port already allocated")
        self.running = True
        return CommandResult(success=True, exit_code=0)

    def restart(self):
        self.calls.append("restart")
        if not self.start_ok:
            return CommandResult(success=False, exit_code=1, stderr="port already allocated")
        self.running = True
        return CommandResult(success=True, exit_code=0)

    def status(self):
        return ServiceStatus(state="running" if self.running else "exited")

    def logs(self, tail=50):
        return CommandResult(success=True, exit_code=0, stdout="gateway started\n")

    def probe(self):
        return self.running and self.ready


def _write_json(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2))
    return path


@pytest.fixture
def write_json():
    return _write_json


@pytest.fixture
def scenario_store():
    return copy.deepcopy(SCENARIO_STORE)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "credentials" / "telegram-pairing.json"


@pytest.fixture
def allow_from_path(store_path):
    return store_path.parent / "telegram-default-allowFrom.json"


@pytest.fixture
def pairing_config(store_path):
    # Own the files as the test user so chown always succeeds
    return PairingConfig(pairing_file=str(store_path), owner_uid=os.getuid(), owner_gid=os.getgid())


@pytest.fixture
def service_config():
    return ServiceConfig(
        stop_timeout_seconds=3,
        poll_interval_seconds=1,
        ready_retries=3,
        ready_delay_seconds=2,
    )


@pytest.fixture
def config(pairing_config, service_config):
    return Config(pairing=pairing_config, service=service_config)


@pytest.fixture
def service(service_config):
    return FakeServiceManager(config=service_config)


@pytest.fixture
def manager(config, service, tmp_path, clock):
    return PairingManager(
        config,
        transport=LocalTransport(),
        service=service,
        lock_dir=tmp_path / "locks",
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def make_service(service_config):
    def factory(**kwargs) -> FakeServiceManager:
        kwargs.setdefault("config", service_config)
        return FakeServiceManager(**kwargs)
    return factory


@pytest.fixture
def make_transport():
    return FakeTransport
