"""Tests for the ssh/scp transport (subprocess is faked)."""

import subprocess
from pathlib import Path

import pytest
from pydantic import SecretStr

from pairgate.config.schema import RemoteConfig
from pairgate.errors import TransportError
from pairgate.transport import LocalTransport, RemoteTransport, build_transport
from pairgate.transport.remote import scp_path, shell_word
from pairgate.transport.types import FileOwnership


class FakeRun:
    """Stands in for subprocess.run; answers by program and snippet."""

    def __init__(self):
        self.calls: list[dict] = []
        self.uploads: list[str] = []
        self.responses: list[tuple[str, int, str]] = []

    def respond(self, needle: str, returncode: int = 0, stdout: str = ""):
        self.responses.append((needle, returncode, stdout))

    def __call__(self, argv, capture_output=True, text=True, timeout=None, env=None):
        self.calls.append({"argv": list(argv), "env": env, "timeout": timeout})
        if "scp" in argv:
            self.uploads.append(Path(argv[-2]).read_text())
        command = " ".join(argv)
        for needle, returncode, stdout in self.responses:
            if needle in command:
                return subprocess.CompletedProcess(argv, returncode, stdout=stdout, stderr="")
        return subprocess.CompletedProcess(argv, 0, stdout="", stderr="")


@pytest.fixture
def fake_run(monkeypatch):
    fake = FakeRun()
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


@pytest.fixture
def remote():
    return RemoteTransport(RemoteConfig(host="gw.example.com", user="root", key_file="/keys/id_ed25519"))


@pytest.fixture
def password_remote():
    return RemoteTransport(RemoteConfig(host="root@gw.example.com", auth="password", password=SecretStr("hunter2")))


OWNERSHIP = FileOwnership(uid=1000, gid=1000, mode=0o600)


# ── Quoting ─────────────────────────────────────────────────────────


class TestQuoting:
    def test_home_relative(self):
        assert shell_word("~/.openclaw/a b.json") == "\"$HOME\"/'.openclaw/a b.json'"
        assert shell_word("~") == '"$HOME"'

    def test_absolute(self):
        assert shell_word("/srv/x") == "/srv/x"
        assert shell_word("/srv/it's") == "'/srv/it'\"'\"'s'"

    def test_scp_path(self):
        assert scp_path("~/.openclaw/p.json") == ".openclaw/p.json"
        assert scp_path("/srv/p.json") == "/srv/p.json"


# ── argv construction ───────────────────────────────────────────────


class TestArgv:
    def test_key_auth(self, remote):
        argv = remote.ssh_argv("true")
        assert argv[0] == "ssh"
        assert "StrictHostKeyChecking=accept-new" in argv
        assert "BatchMode=yes" in argv
        assert argv[argv.index("-i") + 1] == "/keys/id_ed25519"
        assert argv[-2:] == ["root@gw.example.com", "true"]

    def test_password_auth_keeps_secret_off_argv(self, password_remote, fake_run):
        password_remote.shell("true")
        call = fake_run.calls[0]
        assert call["argv"][:3] == ["sshpass", "-e", "ssh"]
        assert "hunter2" not in " ".join(call["argv"])
        assert call["env"]["SSHPASS"] == "hunter2"
        assert "BatchMode=yes" not in call["argv"]

    def test_password_required(self, fake_run):
        transport = RemoteTransport(RemoteConfig(host="h", auth="password"))
        with pytest.raises(TransportError, match="no password"):
            transport.shell("true")
        assert fake_run.calls == []

    def test_scp_uses_capital_p(self):
        transport = RemoteTransport(RemoteConfig(host="h", port=2222))
        argv = transport.scp_argv("/tmp/x", "~/p.json")
        assert argv[argv.index("-P") + 1] == "2222"
        assert argv[-1] == "h:p.json"

    def test_requires_host(self):
        with pytest.raises(ValueError):
            RemoteTransport(RemoteConfig())

    def test_build_transport(self):
        assert isinstance(build_transport(RemoteConfig()), LocalTransport)
        assert isinstance(build_transport(RemoteConfig(host="h")), RemoteTransport)


# ── File operations ─────────────────────────────────────────────────


class TestRead:
    def test_missing_is_none(self, remote, fake_run):
        fake_run.respond("cat", returncode=44)
        assert remote.read_text("~/.openclaw/p.json") is None

    def test_content(self, remote, fake_run):
        fake_run.respond("cat", stdout='{"version": 1}')
        assert remote.read_text("/srv/p.json") == '{"version": 1}'

    def test_ssh_failure_raises(self, remote, fake_run):
        fake_run.respond("cat", returncode=255)
        with pytest.raises(TransportError) as exc_info:
            remote.read_text("/srv/p.json")
        assert exc_info.value.phase == "transport"
        assert exc_info.value.exit_code == 255
        assert "ssh root@gw.example.com true" in exc_info.value.remediation

    def test_timeout_raises(self, remote, monkeypatch):
        def timeout(*args, **kwargs):
            raise subprocess.TimeoutExpired(args[0], 1)

        monkeypatch.setattr(subprocess, "run", timeout)
        with pytest.raises(TransportError, match="timed out"):
            remote.read_text("/srv/p.json")


class TestWrite:
    def test_upload_then_install(self, remote, fake_run):
        report = remote.write_text_atomic("/srv/p.json", '{"version": 1}\n', OWNERSHIP)

        assert report.ok
        assert fake_run.uploads == ['{"version": 1}\n']
        scp, install = fake_run.calls
        assert scp["argv"][0] == "scp"
        remote_tmp = scp["argv"][-1].split(":", 1)[1]
        assert remote_tmp.startswith("/srv/p.json.tmp-")
        snippet = install["argv"][-1]
        assert f"chmod 600 {remote_tmp}" in snippet
        assert "chown 1000:1000" in snippet
        assert f"mv -f {remote_tmp} /srv/p.json" in snippet
        assert not Path(scp["argv"][-2]).exists()

    def test_failed_upload_cleans_remote_temp(self, remote, fake_run):
        fake_run.respond("scp", returncode=1)
        with pytest.raises(TransportError):
            remote.write_text_atomic("/srv/p.json", "{}", OWNERSHIP)
        cleanup = fake_run.calls[-1]["argv"][-1]
        assert cleanup.startswith("rm -f /srv/p.json.tmp-")
        assert not any("mv -f" in c["argv"][-1] for c in fake_run.calls)

    def test_chown_failure_reported(self, remote, fake_run):
        fake_run.respond("mv -f", returncode=45)
        report = remote.write_text_atomic("/srv/p.json", "{}", OWNERSHIP)
        assert not report.ok
        assert "chown" in report.error

    def test_install_failure_raises(self, remote, fake_run):
        fake_run.respond("mv -f", returncode=1)
        with pytest.raises(TransportError):
            remote.write_text_atomic("/srv/p.json", "{}", OWNERSHIP)

    def test_copy_exclusive(self, remote, fake_run):
        fake_run.respond("cp -p", returncode=46)
        assert remote.copy_exclusive("/srv/p.json", "/srv/p.json.backup-1") is False


class TestCommands:
    def test_stat(self, remote, fake_run):
        fake_run.respond("stat -c", stdout="1000 1000 600\n")
        st = remote.stat("/srv/p.json")
        assert (st.uid, st.gid, st.mode) == (1000, 1000, 0o600)
        assert st.matches(OWNERSHIP)

    def test_run_with_cwd(self, remote, fake_run):
        result = remote.run(["docker", "compose", "ps"], cwd="~/openclaw/openclaw")
        assert result.success
        assert fake_run.calls[0]["argv"][-1] == "cd \"$HOME\"/openclaw/openclaw && docker compose ps"

    def test_probe_http(self, remote, fake_run):
        fake_run.respond("curl", stdout="401")
        assert remote.probe_http("http://127.0.0.1:18789/") == 401

    def test_probe_http_unreachable(self, remote, fake_run):
        fake_run.respond("curl", returncode=7, stdout="000")
        assert remote.probe_http("http://127.0.0.1:18789/") is None
