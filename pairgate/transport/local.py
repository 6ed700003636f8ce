"""Local filesystem and process execution."""

import os
import secrets
import shutil
import subprocess
from pathlib import Path

import httpx
from loguru import logger

from pairgate.transport.base import Transport
from pairgate.transport.types import CommandResult, FileOwnership, FileStat, PermissionReport


def _apply_ownership(path: Path, ownership: FileOwnership) -> PermissionReport:
    """chmod then chown. chown is skipped when the owner already matches."""
    try:
        path.chmod(ownership.mode)
        st = path.stat()
        if (st.st_uid, st.st_gid) != (ownership.uid, ownership.gid):
            os.chown(path, ownership.uid, ownership.gid)
    except OSError as e:
        return PermissionReport(ok=False, error=f"{path}: {e}")
    return PermissionReport(ok=True)


class LocalTransport(Transport):
    """Runs everything on this host."""

    name = "local"

    def expand_path(self, path: str) -> str:
        return str(Path(path).expanduser())

    def read_text(self, path: str) -> str | None:
        p = Path(self.expand_path(path))
        try:
            return p.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def write_text_atomic(self, path: str, text: str, ownership: FileOwnership) -> PermissionReport:
        target = Path(self.expand_path(path))
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_name(f".{target.name}.{secrets.token_hex(4)}.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            # Ownership goes on before the rename so the live file is never exposed with wrong bits.
            report = _apply_ownership(tmp_path, ownership)
            os.replace(tmp_path, target)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        if not report.ok:
            # The temp file may have lost only the chown; retry on the final path once.
            report = _apply_ownership(target, ownership)
        return report

    def copy_exclusive(self, src: str, dst: str) -> bool:
        src_path = Path(self.expand_path(src))
        dst_path = Path(self.expand_path(dst))
        try:
            with open(src_path, "rb") as fsrc, open(dst_path, "xb") as fdst:
                shutil.copyfileobj(fsrc, fdst)
        except FileExistsError:
            return False
        shutil.copymode(src_path, dst_path)
        return True

    def fix_permissions(self, path: str, ownership: FileOwnership) -> PermissionReport:
        return _apply_ownership(Path(self.expand_path(path)), ownership)

    def stat(self, path: str) -> FileStat | None:
        try:
            st = Path(self.expand_path(path)).stat()
        except FileNotFoundError:
            return None
        return FileStat(uid=st.st_uid, gid=st.st_gid, mode=st.st_mode & 0o777)

    def run(self, argv: list[str], timeout: float | None = None, cwd: str | None = None) -> CommandResult:
        logger.debug(f"local: {' '.join(argv)}")
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=self.expand_path(cwd) if cwd else None,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                success=False,
                exit_code=-1,
                error=f"Command timed out after {timeout} seconds",
                timed_out=True,
            )
        except OSError as e:
            return CommandResult(success=False, error=str(e))

        return CommandResult(
            success=proc.returncode == 0,
            exit_code=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )

    def probe_http(self, url: str, timeout: float = 5.0) -> int | None:
        try:
            return httpx.get(url, timeout=timeout).status_code
        except httpx.HTTPError as e:
            logger.debug(f"probe {url} failed: {e}")
            return None
