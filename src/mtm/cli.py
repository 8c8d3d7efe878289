"""Manual Transfer Manager CLI.

Commands:
    mtm approve          - Set an approval (allowance + expiry) for a pair
    mtm block            - Set a block (expiry) for a pair
    mtm revoke-approval  - Remove the approval for a pair
    mtm revoke-block     - Remove the block for a pair
    mtm verify           - Preview or execute a transfer against the policy
    mtm show             - Show the entries stored for a pair
    mtm list             - List every stored approval and block
    mtm tags             - List the permission tags the policy requires
"""

from typing import Annotated, NoReturn

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from mtm import __version__
from mtm.collaborators import FixedClock, GrantsFileError, GrantTable, PauseFlag, SystemClock
from mtm.config import get_settings
from mtm.logging import setup_logging
from mtm.manager import ManualTransferManager, Unauthorized
from mtm.models import Result
from mtm.protocols import ClockProtocol
from mtm.storage import StateFileError, StateStore

app = typer.Typer(
    name="mtm",
    help="Manual Transfer Manager - approval and blocking policy for transfers",
    no_args_is_help=True,
)
console = Console()

RESULT_STYLES = {
    Result.VALID: "green",
    Result.INVALID: "red",
    Result.NA: "yellow",
}

CallerOption = Annotated[
    str,
    typer.Option("--caller", "-c", help="Identity performing the change"),
]
NowOption = Annotated[
    int | None,
    typer.Option("--now", help="Override the current timestamp (unix seconds)"),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        rprint(f"Manual Transfer Manager v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    _version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-V", help="Enable verbose logging"),
    ] = False,
) -> None:
    """Manual Transfer Manager - approval and blocking policy."""
    setup_logging(level="DEBUG" if verbose else get_settings().log_level)


def _open(now: int | None = None) -> tuple[ManualTransferManager, StateStore]:
    """Build a manager over the persisted state."""
    settings = get_settings()
    store = StateStore(settings.state_file)
    try:
        approvals, blocks = store.load()
    except StateFileError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    try:
        gate = GrantTable.from_yaml(settings.grants_file, owner=settings.owner)
    except GrantsFileError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    clock: ClockProtocol = FixedClock(now) if now is not None else SystemClock()
    manager = ManualTransferManager(
        permission_gate=gate,
        clock=clock,
        pause_state=PauseFlag(paused=settings.paused),
        approvals=approvals,
        blocks=blocks,
    )
    return manager, store


def _save(manager: ManualTransferManager, store: StateStore) -> None:
    store.save(manager.list_approvals(), manager.list_blockings())


def _deny(e: Unauthorized) -> NoReturn:
    console.print(f"[red]✗ Unauthorized: {e}[/red]")
    raise typer.Exit(1) from e


# =============================================================================
# Mutating Commands
# =============================================================================


@app.command()
def approve(
    from_address: Annotated[str, typer.Argument(help="Sender address")],
    to_address: Annotated[str, typer.Argument(help="Recipient address")],
    caller: CallerOption,
    allowance: Annotated[
        int,
        typer.Option("--allowance", "-a", min=0, help="Amount that may be transferred"),
    ],
    expiry: Annotated[
        int,
        typer.Option("--expiry", "-e", min=0, help="Expiry timestamp (0 removes the approval)"),
    ],
) -> None:
    """Set the approval for a sender/recipient pair.

    Example:
        mtm approve alice bob --caller issuer --allowance 100 --expiry 1767225600
    """
    manager, store = _open()
    try:
        manager.add_manual_approval(caller, from_address, to_address, allowance, expiry)
    except Unauthorized as e:
        _deny(e)
    _save(manager, store)
    console.print(
        f"[green]✓ Approved {from_address} → {to_address}: "
        f"allowance={allowance}, expiry={expiry}[/green]"
    )


@app.command()
def block(
    from_address: Annotated[str, typer.Argument(help="Sender address")],
    to_address: Annotated[str, typer.Argument(help="Recipient address")],
    caller: CallerOption,
    expiry: Annotated[
        int,
        typer.Option("--expiry", "-e", min=0, help="Expiry timestamp (0 removes the block)"),
    ],
) -> None:
    """Block transfers for a sender/recipient pair until expiry.

    Example:
        mtm block alice mallory --caller issuer --expiry 1767225600
    """
    manager, store = _open()
    try:
        manager.add_manual_blocking(caller, from_address, to_address, expiry)
    except Unauthorized as e:
        _deny(e)
    _save(manager, store)
    console.print(f"[green]✓ Blocked {from_address} → {to_address} until {expiry}[/green]")


@app.command("revoke-approval")
def revoke_approval(
    from_address: Annotated[str, typer.Argument(help="Sender address")],
    to_address: Annotated[str, typer.Argument(help="Recipient address")],
    caller: CallerOption,
) -> None:
    """Remove the approval for a sender/recipient pair."""
    manager, store = _open()
    try:
        manager.revoke_manual_approval(caller, from_address, to_address)
    except Unauthorized as e:
        _deny(e)
    _save(manager, store)
    console.print(f"[green]✓ Revoked approval {from_address} → {to_address}[/green]")


@app.command("revoke-block")
def revoke_block(
    from_address: Annotated[str, typer.Argument(help="Sender address")],
    to_address: Annotated[str, typer.Argument(help="Recipient address")],
    caller: CallerOption,
) -> None:
    """Remove the block for a sender/recipient pair."""
    manager, store = _open()
    try:
        manager.revoke_manual_blocking(caller, from_address, to_address)
    except Unauthorized as e:
        _deny(e)
    _save(manager, store)
    console.print(f"[green]✓ Revoked block {from_address} → {to_address}[/green]")


# =============================================================================
# Query Commands
# =============================================================================


@app.command()
def verify(
    from_address: Annotated[str, typer.Argument(help="Sender address")],
    to_address: Annotated[str, typer.Argument(help="Recipient address")],
    amount: Annotated[int, typer.Argument(min=0, help="Amount being transferred")],
    execute: Annotated[
        bool,
        typer.Option("--execute", help="Treat as an actual transfer (consumes allowance)"),
    ] = False,
    now: NowOption = None,
) -> None:
    """Check a transfer against the policy.

    Without --execute this is a read-only preview.

    Example:
        mtm verify alice bob 40
        mtm verify alice bob 40 --execute
    """
    manager, store = _open(now)
    result = manager.verify_transfer(from_address, to_address, amount, is_transfer=execute)
    if execute and result is Result.VALID:
        _save(manager, store)

    style = RESULT_STYLES[result]
    mode = "transfer" if execute else "preview"
    console.print(f"[{style}]{result.value}[/{style}] ({mode}) {from_address} → {to_address}")
    if result is Result.VALID:
        remaining = manager.get_approval(from_address, to_address).allowance
        console.print(f"[dim]Remaining allowance: {remaining}[/dim]")


@app.command()
def show(
    from_address: Annotated[str, typer.Argument(help="Sender address")],
    to_address: Annotated[str, typer.Argument(help="Recipient address")],
    now: NowOption = None,
) -> None:
    """Show the approval and block stored for a pair."""
    manager, _ = _open(now)
    current = now if now is not None else SystemClock().now()
    approval = manager.get_approval(from_address, to_address)
    blocking = manager.get_blocking(from_address, to_address)

    table = Table(title=f"{from_address} → {to_address}")
    table.add_column("Entry", style="cyan")
    table.add_column("Allowance", justify="right")
    table.add_column("Expiry", justify="right")
    table.add_column("Status")

    table.add_row(
        "Approval",
        str(approval.allowance),
        str(approval.expiry_time),
        _status(approval.is_active(current)),
    )
    table.add_row("Block", "-", str(blocking.expiry_time), _status(blocking.is_active(current)))
    console.print(table)


@app.command("list")
def list_entries(now: NowOption = None) -> None:
    """List every stored approval and block (expired ones included)."""
    manager, _ = _open(now)
    current = now if now is not None else SystemClock().now()
    approvals = manager.list_approvals()
    blockings = manager.list_blockings()

    if not approvals and not blockings:
        console.print("[yellow]No approvals or blocks stored[/yellow]")
        return

    table = Table(title="Manual Transfer Policy")
    table.add_column("Type", style="cyan")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Allowance", justify="right")
    table.add_column("Expiry", justify="right")
    table.add_column("Status")

    for pair, approval in approvals:
        table.add_row(
            "approval",
            pair.from_address,
            pair.to_address,
            str(approval.allowance),
            str(approval.expiry_time),
            _status(approval.is_active(current)),
        )
    for pair, blocking in blockings:
        table.add_row(
            "block",
            pair.from_address,
            pair.to_address,
            "-",
            str(blocking.expiry_time),
            _status(blocking.is_active(current)),
        )
    console.print(table)


@app.command()
def tags() -> None:
    """List the permission tags required by mutating commands."""
    manager, _ = _open()
    for tag in sorted(manager.list_permission_tags()):
        console.print(tag)


def _status(active: bool) -> str:
    return "[green]ACTIVE[/green]" if active else "[dim]EXPIRED[/dim]"


if __name__ == "__main__":
    app()
