"""Remote execution over ssh/scp.

Every read is a remote ``cat``; every write is scp to a temporary sibling of
the live file followed by a single remote shell step that fixes ownership
and renames it into place. Host keys are accepted on first use only
(``StrictHostKeyChecking=accept-new``); a changed key fails the connection.
"""

import os
import secrets
import shlex
import subprocess
import tempfile
from pathlib import Path

from loguru import logger

from pairgate.config.schema import RemoteConfig
from pairgate.errors import TransportError
from pairgate.transport.base import Transport
from pairgate.transport.types import CommandResult, FileOwnership, FileStat, PermissionReport

# Exit codes used by the remote snippets below
EXIT_MISSING = 44
EXIT_PERMISSIONS = 45
EXIT_EXISTS = 46


def shell_word(arg: str) -> str:
    """Quote an argument for the remote shell, keeping a leading ~/ expandable."""
    if arg == "~":
        return '"$HOME"'
    if arg.startswith("~/"):
        return '"$HOME"/' + shlex.quote(arg[2:])
    return shlex.quote(arg)


def scp_path(path: str) -> str:
    """scp resolves relative paths against the remote home directory."""
    if path.startswith("~/"):
        return path[2:]
    return path


class RemoteTransport(Transport):
    """Runs everything on a remote host through ssh."""

    name = "remote"

    def __init__(self, config: RemoteConfig):
        if not config.host:
            raise ValueError("RemoteTransport requires remote.host")
        self.config = config

    def describe(self) -> str:
        return f"ssh {self.config.destination}"

    # ── argv construction ──────────────────────────────────────────

    def _common_options(self) -> list[str]:
        opts = [
            "-o", "StrictHostKeyChecking=accept-new",
            "-o", f"ConnectTimeout={self.config.connect_timeout_seconds}",
        ]
        if self.config.auth == "key":
            opts += ["-o", "BatchMode=yes"]
            if self.config.key_file:
                opts += ["-i", str(Path(self.config.key_file).expanduser())]
        return opts

    def _wrap_auth(self, argv: list[str]) -> list[str]:
        if self.config.auth == "password":
            # sshpass -e reads SSHPASS from the environment, keeping the secret off argv
            return ["sshpass", "-e", *argv]
        return argv

    def _env(self) -> dict[str, str] | None:
        if self.config.auth != "password":
            return None
        password = self.config.password.get_secret_value()
        if not password:
            raise TransportError(
                f"Password authentication selected for {self.config.destination} but no password given",
                remediation="Set PAIRGATE_SSH_PASSWORD or use --ssh-auth key",
            )
        env = os.environ.copy()
        env["SSHPASS"] = password
        return env

    def ssh_argv(self, command: str) -> list[str]:
        argv = ["ssh", *self._common_options(), "-p", str(self.config.port), self.config.destination, command]
        return self._wrap_auth(argv)

    def scp_argv(self, local_path: str, remote_path: str) -> list[str]:
        argv = [
            "scp", "-q", *self._common_options(), "-P", str(self.config.port),
            local_path, f"{self.config.destination}:{scp_path(remote_path)}",
        ]
        return self._wrap_auth(argv)

    # ── execution ──────────────────────────────────────────────────

    def _exec(self, argv: list[str], timeout: float | None) -> CommandResult:
        timeout = timeout or self.config.command_timeout_seconds
        try:
            proc = subprocess.run(argv, capture_output=True, text=True, timeout=timeout, env=self._env())
        except subprocess.TimeoutExpired:
            return CommandResult(
                success=False,
                exit_code=-1,
                error=f"Remote command timed out after {timeout} seconds",
                timed_out=True,
            )
        except OSError as e:
            return CommandResult(success=False, error=f"{argv[0]}: {e}")
        return CommandResult(
            success=proc.returncode == 0,
            exit_code=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )

    def shell(self, command: str, timeout: float | None = None) -> CommandResult:
        """Run a raw shell snippet on the remote host."""
        logger.debug(f"ssh {self.config.destination}: {command}")
        return self._exec(self.ssh_argv(command), timeout)

    def _fail(self, action: str, result: CommandResult) -> TransportError:
        return TransportError(
            f"{action} on {self.config.destination} failed: {result.message}",
            remediation=f"Check SSH access with: ssh {self.config.destination} true",
            exit_code=result.exit_code,
            stderr=result.stderr,
        )

    # ── Transport API ──────────────────────────────────────────────

    def expand_path(self, path: str) -> str:
        return path

    def read_text(self, path: str) -> str | None:
        p = shell_word(path)
        result = self.shell(f"if [ -e {p} ]; then cat {p}; else exit {EXIT_MISSING}; fi")
        if result.exit_code == EXIT_MISSING:
            return None
        if not result.success:
            raise self._fail(f"Reading {path}", result)
        return result.stdout

    def write_text_atomic(self, path: str, text: str, ownership: FileOwnership) -> PermissionReport:
        remote_tmp = f"{path}.tmp-{secrets.token_hex(4)}"
        t, p = shell_word(remote_tmp), shell_word(path)
        fd, local_tmp = tempfile.mkstemp(prefix="pairgate-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)

            logger.debug(f"scp {local_tmp} -> {self.config.destination}:{remote_tmp}")
            upload = self._exec(self.scp_argv(local_tmp, remote_tmp), None)
            if not upload.success:
                self.shell(f"rm -f {t}")
                raise self._fail(f"Uploading {path}", upload)

            install = self.shell(
                f"chmod {ownership.mode:o} {t} || {{ rm -f {t}; exit 1; }}; "
                f"chown {ownership.uid}:{ownership.gid} {t}; c=$?; "
                f"mv -f {t} {p} || {{ rm -f {t}; exit 1; }}; "
                f"[ $c -eq 0 ] || exit {EXIT_PERMISSIONS}"
            )
        finally:
            Path(local_tmp).unlink(missing_ok=True)

        if install.exit_code == EXIT_PERMISSIONS:
            return PermissionReport(ok=False, error=f"chown {ownership.uid}:{ownership.gid} {path} failed")
        if not install.success:
            raise self._fail(f"Installing {path}", install)
        return PermissionReport(ok=True)

    def copy_exclusive(self, src: str, dst: str) -> bool:
        d = shell_word(dst)
        result = self.shell(f"if [ -e {d} ]; then exit {EXIT_EXISTS}; fi; cp -p {shell_word(src)} {d}")
        if result.exit_code == EXIT_EXISTS:
            return False
        if not result.success:
            raise self._fail(f"Backing up {src}", result)
        return True

    def fix_permissions(self, path: str, ownership: FileOwnership) -> PermissionReport:
        p = shell_word(path)
        result = self.shell(f"chown {ownership.uid}:{ownership.gid} {p} && chmod {ownership.mode:o} {p}")
        if result.success:
            return PermissionReport(ok=True)
        return PermissionReport(ok=False, error=result.message)

    def stat(self, path: str) -> FileStat | None:
        p = shell_word(path)
        result = self.shell(f"if [ -e {p} ]; then stat -c '%u %g %a' {p}; else exit {EXIT_MISSING}; fi")
        if result.exit_code == EXIT_MISSING:
            return None
        if not result.success:
            raise self._fail(f"stat {path}", result)
        uid, gid, mode = result.stdout.split()
        return FileStat(uid=int(uid), gid=int(gid), mode=int(mode, 8))

    def run(self, argv: list[str], timeout: float | None = None, cwd: str | None = None) -> CommandResult:
        command = " ".join(shell_word(a) for a in argv)
        if cwd:
            command = f"cd {shell_word(cwd)} && {command}"
        return self.shell(command, timeout)

    def probe_http(self, url: str, timeout: float = 5.0) -> int | None:
        # The gateway port is usually firewalled, so probe from the remote side.
        result = self.shell(
            f"curl -s -o /dev/null -w '%{{http_code}}' --max-time {int(timeout)} {shlex.quote(url)}",
            timeout=timeout + self.config.connect_timeout_seconds,
        )
        try:
            status = int(result.stdout.strip() or "0")
        except ValueError:
            return None
        return status or None
