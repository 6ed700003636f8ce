"""CLI commands for pairgate."""

import json
import os
import sys
from contextlib import contextmanager
from pathlib import Path

import typer
from loguru import logger
from pydantic import SecretStr
from rich.console import Console
from rich.table import Table

from pairgate import __version__, __logo__
from pairgate.config.schema import Config
from pairgate.errors import PairingError, RequestNotFoundError
from pairgate.service.lifecycle import CoordinationResult

app = typer.Typer(
    name="pairgate",
    help=f"{__logo__} pairgate - approve chat pairing requests for an assistant gateway",
    no_args_is_help=True,
)

console = Console()

PASSWORD_ENV = "PAIRGATE_SSH_PASSWORD"


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} pairgate v{__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format="<level>{level: <8}</level> {message}",
    )


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file (default: ~/.pairgate/config.json)"),
    ssh_host: str = typer.Option(None, "--ssh-host", help="Remote host, e.g. root@server (default: local)"),
    ssh_user: str = typer.Option(None, "--ssh-user", help="Remote user if not part of --ssh-host"),
    ssh_port: int = typer.Option(None, "--ssh-port", help="Remote SSH port"),
    ssh_auth: str = typer.Option(None, "--ssh-auth", help="SSH auth method: key or password"),
    ssh_key: str = typer.Option(None, "--ssh-key", help="Private key file for --ssh-auth key"),
    pairing_file: str = typer.Option(None, "--pairing-file", help="Path to telegram-pairing.json"),
    docker_dir: str = typer.Option(None, "--docker-dir", help="Docker compose directory of the gateway"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """pairgate - approve chat pairing requests for an assistant gateway."""
    from pairgate.config.loader import get_config_path, load_config

    _configure_logging(verbose)

    if ssh_auth is not None and ssh_auth not in ("key", "password"):
        console.print(f"[red]Invalid --ssh-auth: {ssh_auth}. Use 'key' or 'password'[/red]")
        raise typer.Exit(1)

    config = load_config(config_path)
    ctx.meta["config_path"] = config_path or get_config_path()
    ctx.obj = config.with_overrides(
        remote={"host": ssh_host, "user": ssh_user, "port": ssh_port, "auth": ssh_auth, "key_file": ssh_key},
        pairing={"pairing_file": pairing_file},
        service={"compose_dir": docker_dir},
    )


def _config(ctx: typer.Context) -> Config:
    """Config from the callback, with the SSH password resolved on first use."""
    config: Config = ctx.obj
    remote = config.remote
    if remote.enabled and remote.auth == "password" and not remote.password.get_secret_value():
        password = os.environ.get(PASSWORD_ENV) or typer.prompt(
            f"SSH password for {remote.destination}", hide_input=True
        )
        config = config.model_copy(update={"remote": remote.model_copy(update={"password": SecretStr(password)})})
        ctx.obj = config
    return config


def _manager(ctx: typer.Context):
    from pairgate.pairing.manager import PairingManager
    return PairingManager(_config(ctx))


@contextmanager
def _errors():
    """Print pairing failures with their phase and remediation, then exit 1."""
    try:
        yield
    except PairingError as e:
        console.print(f"[red]✗ {e.phase} failed: {e}[/red]")
        if e.remediation:
            console.print(f"[yellow]{e.remediation}[/yellow]")
        raise typer.Exit(1)


def _report(result: CoordinationResult, done: str) -> None:
    """Print a coordinated mutation outcome; exit 2 when data saved but gateway down."""
    if result.success:
        if result.noop:
            console.print("[dim]Nothing to change; already up to date.[/dim]")
        else:
            console.print(f"[green]✓[/green] {done}")
        return

    if result.failed_phase == "start":
        console.print(f"[green]✓[/green] {done}")
        console.print(f"[yellow]⚠ The change was saved, but the gateway did not come back: {result.error}[/yellow]")
        if result.remediation:
            console.print(f"[yellow]{result.remediation}[/yellow]")
        raise typer.Exit(2)

    console.print(f"[red]✗ {result.failed_phase} phase failed: {result.error}[/red]")
    if result.failed_phase == "stop":
        console.print("[red]Nothing was changed.[/red]")
    elif result.service_running is False:
        console.print("[red]The gateway is STOPPED.[/red]")
    elif result.service_running:
        console.print("[dim]The gateway was restarted without the change.[/dim]")
    if result.remediation:
        console.print(f"[yellow]{result.remediation}[/yellow]")
    raise typer.Exit(1)


def _print_write(write) -> None:
    if write.backup_path:
        console.print(f"  [dim]Backup: {write.backup_path}[/dim]")
    if not write.permissions_ok:
        console.print(f"  [yellow]⚠ Could not fix ownership/mode: {write.permission_error}[/yellow]")


# ============================================================================
# Pairing Commands
# ============================================================================

pairing_app = typer.Typer(help="Pairing requests and approvals")
app.add_typer(pairing_app, name="pairing")


@pairing_app.command("list")
def pairing_list(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List pending pairing requests."""
    with _errors():
        requests = _manager(ctx).pending()

    if json_output:
        print(json.dumps({"requests": [r.to_dict() for r in requests]}, indent=2))
        return

    if not requests:
        console.print("[dim]No pending pairing requests.[/dim]")
        console.print("[dim]Send a message to the bot to generate one.[/dim]")
        return

    table = Table(title="Pending Pairing Requests")
    table.add_column("Code", style="cyan")
    table.add_column("User ID")
    table.add_column("Name")
    table.add_column("Meta")
    table.add_column("Requested")

    for r in requests:
        meta_str = ", ".join(f"{k}={v}" for k, v in (r.meta or {}).items())
        table.add_row(r.code, r.id, r.display_name, meta_str, r.created_at[:19])

    console.print(table)


@pairing_app.command("approve")
def pairing_approve(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User ID to approve"),
    code: str = typer.Argument(..., help="Pairing code"),
    no_restart: bool = typer.Option(False, "--no-restart", help="Gateway is already stopped; do not stop/start it"),
    notify: bool = typer.Option(False, "--notify", "-n", help="Notify user on approval"),
    force: bool = typer.Option(False, "--force", help="Approve even if an allowFrom list is in use"),
):
    """Approve one pairing request (stops and restarts the gateway)."""
    with _errors():
        manager = _manager(ctx)
        result = manager.approve(user_id, code, restart=not no_restart, force=force)

    if result.value is not None:
        _print_write(result.value.write)
        if not result.value.verified:
            console.print("[yellow]⚠ Approval was written but could not be verified on re-read[/yellow]")
    _report(result, f"Approved user [cyan]{user_id}[/cyan] with code {code}")

    if notify and result.mutated:
        _notify(ctx, user_id)


@pairing_app.command("approve-all")
def pairing_approve_all(
    ctx: typer.Context,
    no_restart: bool = typer.Option(False, "--no-restart", help="Gateway is already stopped; do not stop/start it"),
    force: bool = typer.Option(False, "--force", help="Fold even if paired approvals exist"),
):
    """Approve every pending request into the allowFrom list."""
    with _errors():
        manager = _manager(ctx)
        try:
            result = manager.approve_all(restart=not no_restart, force=force)
        except RequestNotFoundError:
            console.print("[dim]No pending pairing requests.[/dim]")
            return

    if result.value is not None:
        record = result.value
        for user_id in record.fold.folded_ids:
            console.print(f"  [green]✓[/green] {user_id}")
        _print_write(record.allow_from_write)
        _print_write(record.store_write)
        console.print(f"  [dim]allowFrom: {manager.allow_from.path}[/dim]")
    _report(result, "Approved all pending pairing requests")


@pairing_app.command("revoke")
def pairing_revoke(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User ID to revoke"),
    code: str = typer.Option(None, "--code", help="Only revoke the entry with this code"),
    allow_from: bool = typer.Option(False, "--allow-from", help="Revoke from the allowFrom list instead"),
    no_restart: bool = typer.Option(False, "--no-restart", help="Gateway is already stopped; do not stop/start it"),
):
    """Revoke access for a user."""
    with _errors():
        try:
            result = _manager(ctx).revoke(user_id, code=code, allow_from=allow_from, restart=not no_restart)
        except RequestNotFoundError as e:
            console.print(f"[yellow]{e}[/yellow]")
            return

    if result.value is not None:
        _print_write(result.value.write)
    _report(result, f"Revoked access for {user_id}")


@pairing_app.command("approved")
def pairing_approved(ctx: typer.Context):
    """List approved users."""
    with _errors():
        approved = _manager(ctx).approved()

    if not approved:
        console.print("[dim]No approved users.[/dim]")
        return

    table = Table(title="Approved Users")
    table.add_column("User ID", style="cyan")
    table.add_column("Code")
    table.add_column("Name")
    table.add_column("Approved")
    for a in approved:
        table.add_row(a.id, a.code, a.display_name, a.approved_at[:19])
    console.print(table)


@pairing_app.command("allowed")
def pairing_allowed(ctx: typer.Context):
    """List users in the allowFrom list."""
    with _errors():
        manager = _manager(ctx)
        allowed = manager.allowed()

    if not allowed:
        console.print("[dim]No users in the allowFrom list.[/dim]")
        return

    console.print(f"[bold]Allowed Users ({manager.allow_from.path}):[/bold]")
    for user_id in allowed:
        console.print(f"  • {user_id}")


@pairing_app.command("watch")
def pairing_watch(
    ctx: typer.Context,
    timeout: float = typer.Option(None, "--timeout", "-t", help="Seconds to wait (default from config)"),
    user_id: str = typer.Option(None, "--user-id", help="Only accept a request from this user"),
    approve: bool = typer.Option(False, "--approve", help="Approve the detected request"),
    new_only: bool = typer.Option(False, "--new-only", help="Ignore requests already pending"),
    notify: bool = typer.Option(False, "--notify", "-n", help="Notify user on approval"),
):
    """Wait for a pairing request (optionally approving it)."""
    from pairgate.telegram import TelegramClient

    config = _config(ctx)
    with TelegramClient(config.telegram) as telegram:
        bot = telegram.get_bot_username()
    target = f"@{bot}" if bot else "your bot"
    console.print(f"Send a message to [cyan]{target}[/cyan] now.")

    with _errors():
        manager = _manager(ctx)
        with console.status("Waiting for a pairing request..."):
            request = manager.watch(timeout, user_id=user_id, ignore_existing=new_only)

    console.print("[green]✓[/green] Found pairing request")
    console.print(f"  User ID: [cyan]{request.id}[/cyan]")
    console.print(f"  Code: {request.code}")
    console.print(f"  Name: {request.display_name}")

    if not approve:
        console.print(f"[dim]Approve with: pairgate pairing approve {request.id} {request.code}[/dim]")
        return

    with _errors():
        result = manager.approve(request.id, request.code)
    if result.value is not None:
        _print_write(result.value.write)
    _report(result, f"Approved user [cyan]{request.id}[/cyan]")
    if notify and result.mutated:
        _notify(ctx, request.id)


@pairing_app.command("verify")
def pairing_verify(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User ID"),
    code: str = typer.Argument(None, help="Pairing code (optional)"),
):
    """Check that a user is in the approved list."""
    with _errors():
        ok = _manager(ctx).verify(user_id, code)
    if ok:
        console.print(f"[green]✓[/green] User {user_id} is approved")
    else:
        console.print(f"[red]✗ User {user_id} is not approved[/red]")
        raise typer.Exit(1)


@pairing_app.command("inspect")
def pairing_inspect(ctx: typer.Context):
    """Show pairing file location, ownership and counts."""
    with _errors():
        info = _manager(ctx).inspect()

    console.print(f"Target: [cyan]{info.target}[/cyan]")
    console.print(f"Pairing file: {info.path} {'[green]✓[/green]' if info.exists else '[red]✗ missing[/red]'}")
    if info.stat is not None:
        if info.permissions_ok:
            console.print(f"Permissions: [green]{info.stat.describe()}[/green]")
        else:
            console.print(
                f"Permissions: [yellow]{info.stat.describe()}[/yellow] (expected {info.expected.describe()})"
            )
    console.print(f"Pending requests: {info.pending}")
    console.print(f"Approved users: {info.approved}")
    console.print(f"allowFrom entries: {info.allowed}")


def _notify(ctx: typer.Context, user_id: str) -> None:
    from pairgate.telegram import TelegramClient

    config = _config(ctx)
    if not config.telegram.token:
        console.print("[yellow]Warning: telegram.token not set; cannot notify user[/yellow]")
        return
    with TelegramClient(config.telegram) as telegram:
        sent = telegram.notify_approved(user_id)
    if sent:
        console.print("[green]✓[/green] Notification sent")
    else:
        console.print("[yellow]Warning: Could not notify user[/yellow]")


# ============================================================================
# Service Commands
# ============================================================================

service_app = typer.Typer(help="Control the gateway service")
app.add_typer(service_app, name="service")


def _service(ctx: typer.Context):
    from pairgate.service.lifecycle import LifecycleCoordinator

    manager = _manager(ctx)
    return LifecycleCoordinator(manager.service, manager.config.service)


@service_app.command("stop")
def service_stop(ctx: typer.Context):
    """Stop the gateway and wait until it is down."""
    coordinator = _service(ctx)
    with _errors():
        coordinator.stop()
    console.print(f"[green]✓[/green] Stopped {coordinator.manager.label}")


@service_app.command("start")
def service_start(ctx: typer.Context):
    """Start the gateway and wait until it is ready."""
    coordinator = _service(ctx)
    with _errors():
        coordinator.start()
    console.print(f"[green]✓[/green] Started {coordinator.manager.label}")


@service_app.command("restart")
def service_restart(ctx: typer.Context):
    """Restart the gateway and wait until it is ready."""
    coordinator = _service(ctx)
    with _errors():
        coordinator.restart()
    console.print(f"[green]✓[/green] Restarted {coordinator.manager.label}")


@service_app.command("status")
def service_status(ctx: typer.Context):
    """Show service state and gateway health."""
    service = _service(ctx).manager
    with _errors():
        status = service.status()
        healthy = service.probe() if status.running else False
    state_color = "green" if status.running else "yellow"
    console.print(f"Service: [cyan]{service.label}[/cyan] ({service.transport.describe()})")
    console.print(f"State: [{state_color}]{status.state}[/{state_color}]")
    if status.detail:
        console.print(f"[dim]{status.detail}[/dim]")
    console.print(f"Health: {'[green]ok[/green]' if healthy else '[yellow]down[/yellow]'}")


@service_app.command("logs")
def service_logs(
    ctx: typer.Context,
    lines: int = typer.Option(50, "--lines", "-n", min=1, help="Number of lines to show"),
):
    """Show recent gateway logs."""
    result = _service(ctx).manager.logs(lines)
    if not result.success:
        console.print(f"[red]Failed to read logs: {result.message}[/red]")
        raise typer.Exit(1)
    print(result.stdout, end="")


# ============================================================================
# Status Commands
# ============================================================================


@app.command()
def status(ctx: typer.Context):
    """Show pairgate status."""
    from pairgate.config.loader import get_config_path
    from pairgate.telegram import TelegramClient

    config = _config(ctx)
    config_path = ctx.meta.get("config_path") or get_config_path()

    console.print(f"{__logo__} pairgate Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[dim]defaults[/dim]'}")
    console.print(f"Target: {config.remote.destination if config.is_remote else 'local'}")
    console.print(f"Service manager: {config.service.manager}")

    with _errors():
        info = _manager(ctx).inspect()
    console.print(f"Pairing file: {info.path} {'[green]✓[/green]' if info.exists else '[red]✗[/red]'}")
    console.print(f"Pending: {info.pending}  Approved: {info.approved}  allowFrom: {info.allowed}")

    if config.telegram.token:
        with TelegramClient(config.telegram) as telegram:
            bot = telegram.get_bot_username()
        console.print(f"Telegram bot: {'[green]@' + bot + '[/green]' if bot else '[red]token invalid[/red]'}")
    else:
        console.print("Telegram bot: [dim]not set[/dim]")


if __name__ == "__main__":
    app()
