"""Speaker Contracts CLI.

Usage:
    sc init
    sc templates
    sc template-save my-agreement.yaml
    sc preview standard-speaker-agreement --deal deal.yaml
    sc create --deal deal.yaml --set payment_terms="Due upon receipt"
    sc send 12 --email
    sc review 12
    sc approve 12
    sc status
    sc status 12
    sc cancel 12 --reason "Event postponed"
    sc activate 12
    sc complete 12
    sc sign <token> --name "Jane Doe" --email jane@acme.com --image sig.png
    sc serve
"""

from __future__ import annotations

import base64
import logging
from contextlib import contextmanager
from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from sc.config import get_settings
from sc.errors import ContractError
from sc.models import ContractStatus, Deal, SignatureSubmission
from sc.store import Database

app = typer.Typer(name="sc", help="Speaker contract lifecycle and e-signature workflow")
console = Console()

STATUS_COLORS = {
    "draft": "white",
    "pending_review": "yellow",
    "sent_for_signature": "cyan",
    "partially_signed": "cyan",
    "fully_executed": "green",
    "active": "green",
    "completed": "dim",
    "cancelled": "red",
}


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    settings = get_settings()
    logging.basicConfig(
        level="DEBUG" if verbose else settings.log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _db() -> Database:
    return Database(get_settings().database_file)


@contextmanager
def _handled():
    """Print workflow errors in red and exit 1."""
    try:
        yield
    except ContractError as e:
        console.print(f"[red]{e.message}[/red]")
        missing = getattr(e, "labels", None) or getattr(e, "errors", None)
        for item in missing or []:
            console.print(f"  [red]- {item}[/red]")
        raise typer.Exit(1)


def _load_deal(path: Path | None) -> Deal:
    if path is None:
        return Deal()
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return Deal.model_validate(data)


def _parse_sets(pairs: list[str]) -> dict[str, str]:
    out = {}
    for pair in pairs:
        if "=" not in pair:
            console.print(f"[red]Expected key=value, got {pair!r}[/red]")
            raise typer.Exit(2)
        key, value = pair.split("=", 1)
        out[key.strip()] = value
    return out


def _status(value: str) -> str:
    color = STATUS_COLORS.get(value, "white")
    return f"[{color}]{value}[/{color}]"


# ---------------------------------------------------------------------------
# sc init / templates
# ---------------------------------------------------------------------------

@app.command()
def init():
    """Create the database and seed the packaged templates."""
    from sc.templates.loader import seed_templates

    settings = get_settings()
    with _handled():
        db = _db()
        seeded = seed_templates(db, settings.templates_path)
    console.print(f"[green]Database ready:[/green] {settings.database_file}")
    for t in seeded:
        console.print(f"  Seeded {t.id} v{t.version}")
    if not seeded:
        console.print("  Templates already present")


@app.command()
def templates():
    """List contract templates."""
    from sc import store

    with _handled():
        with _db().connect() as c:
            items = store.list_templates(c)

    table = Table(title="Contract Templates")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Version", justify="right")
    table.add_column("Event Types", style="dim")
    for t in items:
        table.add_row(t.id, t.name, str(t.version), ", ".join(t.event_types))
    console.print(table)


@app.command("template-save")
def template_save(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True,
                                help="Template YAML file"),
):
    """Add or edit a template; edits to a template in use become a new version."""
    from sc.engine.workflow import save_template
    from sc.templates.loader import load_template

    with _handled():
        saved = save_template(_db(), load_template(path))
    console.print(f"[green]Saved[/green] {saved.id} v{saved.version}")


# ---------------------------------------------------------------------------
# sc preview / create
# ---------------------------------------------------------------------------

@app.command()
def preview(
    template_id: str = typer.Argument(None, help="Template id (default: by event type)"),
    deal: Path = typer.Option(None, "--deal", "-d", help="Deal YAML file"),
    sets: list[str] = typer.Option([], "--set", "-s", help="Override key=value"),
):
    """Render a contract without saving it."""
    from sc.engine.workflow import preview_contract

    with _handled():
        body = preview_contract(_db(), template_id, _load_deal(deal), _parse_sets(sets))
    console.print(body, markup=False, highlight=False)


@app.command()
def create(
    template_id: str = typer.Option(None, "--template", "-t", help="Template id"),
    deal: Path = typer.Option(None, "--deal", "-d", help="Deal YAML file"),
    sets: list[str] = typer.Option([], "--set", "-s", help="Override key=value"),
    admin_signature: bool = typer.Option(False, "--admin-signature", help="Require agency counter-signature"),
    title: str = typer.Option(None, "--title"),
    created_by: str = typer.Option("", "--by", help="Admin creating the contract"),
):
    """Create a draft contract from a deal."""
    from sc.engine.workflow import create_contract

    with _handled():
        contract = create_contract(
            _db(), template_id, _load_deal(deal), _parse_sets(sets),
            requires_admin_signature=admin_signature, created_by=created_by, title=title,
        )
    console.print(f"\n[green]Contract created:[/green] {contract.contract_number} (id {contract.id})")
    console.print(f"  Title: {contract.title}")
    console.print(f"  Template: {contract.template_id} v{contract.template_version}")
    console.print(f"\nNext: run [bold]sc send {contract.id}[/bold] or [bold]sc review {contract.id}[/bold]")


# ---------------------------------------------------------------------------
# sc send / review / approve
# ---------------------------------------------------------------------------

def _print_links(contract, tokens):
    settings = get_settings()
    console.print(f"\n[green]Sent for signature:[/green] {contract.contract_number}")
    if contract.expires_at:
        console.print(f"  Expires: {contract.expires_at:%Y-%m-%d}")
    for t in tokens:
        console.print(f"  {t.signer_type.value:<8} {settings.signing_url(t.token)}")


def _mailer(email: bool):
    if not email:
        return None
    from sc.integrations.email_client import SmtpMailer
    return SmtpMailer()


def _notifier(settings=None):
    """Completion notifier; parties are emailed when SMTP is configured."""
    from sc.integrations.email_client import SmtpMailer
    from sc.integrations.notifications import PushNotifier

    settings = settings or get_settings()
    mailer = SmtpMailer(settings) if settings.has_smtp() else None
    return PushNotifier(settings, mailer=mailer)


@app.command()
def send(
    contract_id: int = typer.Argument(...),
    email: bool = typer.Option(False, "--email", help="Email signing links to signers"),
):
    """Send a draft contract for signature."""
    from sc.engine.workflow import send_contract

    with _handled():
        contract, tokens = send_contract(_db(), contract_id, mailer=_mailer(email))
    _print_links(contract, tokens)


@app.command()
def review(contract_id: int = typer.Argument(...)):
    """Move a draft into internal review."""
    from sc.engine.workflow import request_review

    with _handled():
        contract = request_review(_db(), contract_id)
    console.print(f"{contract.contract_number}: {_status(contract.status.value)}")


@app.command()
def approve(
    contract_id: int = typer.Argument(...),
    email: bool = typer.Option(False, "--email", help="Email signing links to signers"),
):
    """Approve a reviewed contract and send it for signature."""
    from sc.engine.workflow import approve_review

    with _handled():
        contract, tokens = approve_review(_db(), contract_id, mailer=_mailer(email))
    _print_links(contract, tokens)


# ---------------------------------------------------------------------------
# sc status
# ---------------------------------------------------------------------------

@app.command()
def status(
    contract_id: int = typer.Argument(None),
    only: ContractStatus = typer.Option(None, "--status", help="Filter the list by status"),
):
    """List contracts, or show one contract in detail."""
    from sc.engine.workflow import get_contract_detail, list_contracts

    with _handled():
        if contract_id is None:
            items = list_contracts(_db(), only)
        else:
            detail = get_contract_detail(_db(), contract_id)

    if contract_id is None:
        table = Table(title="Contracts")
        table.add_column("ID", style="dim", justify="right")
        table.add_column("Number", style="bold")
        table.add_column("Title")
        table.add_column("Client")
        table.add_column("Speaker")
        table.add_column("Status")
        for c in items:
            table.add_row(str(c.id), c.contract_number, c.title,
                          c.client.company or c.client.name, c.speaker.name,
                          _status(c.status.value))
        console.print(table)
        return

    c = detail.contract
    console.print(f"\n[bold]{c.contract_number}[/bold]  {c.title}")
    console.print(f"  Status: {_status(c.status.value)}")
    console.print(f"  Client: {c.client.company or c.client.name}")
    if c.has_speaker:
        console.print(f"  Speaker: {c.speaker.name}")
    if c.total_amount is not None:
        console.print(f"  Amount: ${c.total_amount:,.2f}")
    if c.expires_at:
        console.print(f"  Expires: {c.expires_at:%Y-%m-%d}")

    console.print("\n  Signers:")
    for s in detail.signers:
        mark = "[green]signed[/green]" if s.signed else "[yellow]waiting[/yellow]"
        who = f" by {s.signer_name} at {s.signed_at:%Y-%m-%d %H:%M}" if s.signed else ""
        console.print(f"    {s.signer_type.value:<8} {mark}{who}")

    if detail.events:
        table = Table(title="History")
        table.add_column("When", style="dim")
        table.add_column("Action")
        table.add_column("Detail")
        for e in detail.events:
            table.add_row(f"{e.ts:%Y-%m-%d %H:%M}" if e.ts else "", e.action, e.detail)
        console.print(table)


# ---------------------------------------------------------------------------
# sc cancel / activate / complete
# ---------------------------------------------------------------------------

@app.command()
def cancel(
    contract_id: int = typer.Argument(...),
    reason: str = typer.Option("", "--reason", "-r"),
):
    """Cancel a contract that has not been fully executed."""
    from sc.engine.workflow import cancel_contract

    with _handled():
        contract = cancel_contract(_db(), contract_id, reason)
    console.print(f"{contract.contract_number}: {_status(contract.status.value)}")


@app.command()
def activate(contract_id: int = typer.Argument(...)):
    """Mark a fully executed contract active."""
    from sc.engine.workflow import activate_contract

    with _handled():
        contract = activate_contract(_db(), contract_id)
    console.print(f"{contract.contract_number}: {_status(contract.status.value)}")


@app.command()
def complete(contract_id: int = typer.Argument(...)):
    """Mark an active contract completed after the event."""
    from sc.engine.workflow import complete_contract

    with _handled():
        contract = complete_contract(_db(), contract_id)
    console.print(f"{contract.contract_number}: {_status(contract.status.value)}")


# ---------------------------------------------------------------------------
# sc sign
# ---------------------------------------------------------------------------

@app.command()
def sign(
    token: str = typer.Argument(..., help="Signing token"),
    name: str = typer.Option(..., "--name"),
    email: str = typer.Option(..., "--email"),
    image: Path = typer.Option(..., "--image", exists=True, dir_okay=False, readable=True,
                               help="PNG of the signature"),
    title: str = typer.Option("", "--title"),
    notify: bool = typer.Option(True, "--notify/--no-notify", help="Announce full execution"),
):
    """Sign a contract on behalf of a signer (e.g. a wet signature scanned in)."""
    from sc.engine.signing import submit_signature

    data = base64.b64encode(image.read_bytes()).decode()
    submission = SignatureSubmission(
        name=name, email=email, title=title,
        image_data=f"data:image/png;base64,{data}",
        user_agent="sc-cli",
    )
    with _handled():
        result = submit_signature(_db(), token, submission,
                                  notifier=_notifier() if notify else None)
    console.print(f"[green]Signed[/green] {result.contract.contract_number} "
                  f"as {result.signature.signer_type.value}")
    console.print(f"  Status: {_status(result.contract.status.value)}")


# ---------------------------------------------------------------------------
# sc serve
# ---------------------------------------------------------------------------

@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(5001, "--port", "-p"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Run the signing and admin API."""
    from sc.web import create_app

    settings = get_settings()
    web = create_app(_db(), notifier=_notifier(settings),
                     mailer=_mailer(settings.has_smtp()),
                     settings=settings)
    console.print(f"[bold]Serving on http://{host}:{port}[/bold]")
    web.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    app()
