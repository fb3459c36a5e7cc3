"""SignDesk CLI: inspect and drive signing workflows from the command line.

Usage:
    signdesk create "NDA" --pages 2
    signdesk add-recipient <document-id> "Alice" --email alice@example.com
    signdesk list [--status active] [--all]
    signdesk show <document-id>
    signdesk eligibility <document-id>
    signdesk sign <document-id> <recipient-id> [--value FIELD=VALUE]
    signdesk status <document-id> active
    signdesk bake <document-id>
    signdesk audit <document-id>
    signdesk serve [--port 8400]
"""

import logging
import os
import sys
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .config import SignDeskSettings
from .eligibility import ordered_recipients
from .errors import SignDeskError
from .models import Actor, DocumentStatus, RecipientRole, SignatureStatus
from .service import DocumentService
from .store import DocumentStore

console = Console()

STATUS_COLORS = {
    DocumentStatus.DRAFT: "dim",
    DocumentStatus.ACTIVE: "yellow",
    DocumentStatus.PROCESSING: "blue",
    DocumentStatus.FINAL: "green",
    DocumentStatus.FAILED: "red",
    DocumentStatus.ARCHIVED: "dim",
}


def _fail(message: str) -> None:
    console.print(Panel(f"[bold red]{message}[/]", title="SignDesk", border_style="red"))
    sys.exit(1)


def _load(service: DocumentService, document_id: str):
    try:
        return service.get_document(document_id)
    except FileNotFoundError:
        _fail(f"Document not found: {document_id}")


def _cli_actor() -> Actor:
    return Actor(actor_id="cli", name="signdesk-cli")


@click.group()
@click.option(
    "--data-dir",
    type=click.Path(),
    default=None,
    help="SignDesk data directory (default: ~/.signdesk)",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Debug logging")
@click.pass_context
def main(ctx: click.Context, data_dir: Optional[str], verbose: bool) -> None:
    """SignDesk: field placement and multi-party signing."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    settings = SignDeskSettings(**({"data_dir": data_dir} if data_dir else {}))
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["service"] = DocumentService(DocumentStore(settings.data_dir), settings=settings)


# ---------------------------------------------------------------------------
# Create / recipients
# ---------------------------------------------------------------------------

@main.command()
@click.argument("title")
@click.option("--pages", default=1, type=click.IntRange(min=1), help="Page count")
@click.pass_context
def create(ctx: click.Context, title: str, pages: int) -> None:
    """Create a draft document."""
    service: DocumentService = ctx.obj["service"]
    doc = service.create_document(title, actor=_cli_actor(), page_count=pages)
    console.print(
        Panel(
            f"[bold green]Draft created[/]\n\n"
            f"  Document: {doc.title}\n"
            f"  ID:       {doc.document_id}\n"
            f"  Pages:    {doc.page_count}",
            title="SignDesk",
            border_style="green",
        )
    )


@main.command("add-recipient")
@click.argument("document_id")
@click.argument("name")
@click.option("--email", default=None, help="Recipient email")
@click.option("--order", "signing_order", default=None, type=click.IntRange(min=1), help="Signing order")
@click.option(
    "--role",
    default=RecipientRole.SIGNER.value,
    type=click.Choice([r.value for r in RecipientRole]),
    help="Recipient role",
)
@click.pass_context
def add_recipient(
    ctx: click.Context,
    document_id: str,
    name: str,
    email: Optional[str],
    signing_order: Optional[int],
    role: str,
) -> None:
    """Add a recipient to a draft."""
    service: DocumentService = ctx.obj["service"]
    _load(service, document_id)
    try:
        recipient = service.add_recipient(
            document_id, name, email=email, signing_order=signing_order, role=role, actor=_cli_actor()
        )
    except SignDeskError as exc:
        _fail(str(exc))
    console.print(
        f"[green]Added[/] {recipient.name} ([dim]{recipient.id}[/]) "
        f"as {recipient.role.value}, order {recipient.signing_order}"
    )


# ---------------------------------------------------------------------------
# List / show
# ---------------------------------------------------------------------------

@main.command("list")
@click.option("--status", default=None, type=click.Choice([s.value for s in DocumentStatus]), help="Filter by status")
@click.option("--all", "include_archived", is_flag=True, default=False, help="Include archived")
@click.pass_context
def list_docs(ctx: click.Context, status: Optional[str], include_archived: bool) -> None:
    """List documents."""
    service: DocumentService = ctx.obj["service"]
    status_filter = DocumentStatus(status) if status else None
    docs = service.list_documents(status=status_filter, include_archived=include_archived)

    if not docs:
        console.print("[dim]No documents found.[/]")
        return

    table = Table(title="SignDesk Documents")
    table.add_column("ID", style="dim", max_width=12)
    table.add_column("Title", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Signed", justify="right")
    table.add_column("Fields", justify="right")
    table.add_column("Created")

    for doc in docs:
        obligated = doc.obligated_recipients
        signed = sum(1 for r in obligated if r.signature_status == SignatureStatus.SIGNED)
        color = STATUS_COLORS.get(doc.status, "white")
        table.add_row(
            doc.document_id[:12],
            doc.title,
            f"[{color}]{doc.status.value}[/]",
            f"{signed}/{len(obligated)}",
            str(len(doc.fields)),
            doc.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@main.command()
@click.argument("document_id")
@click.pass_context
def show(ctx: click.Context, document_id: str) -> None:
    """Show a document's recipients and fields."""
    service: DocumentService = ctx.obj["service"]
    doc = _load(service, document_id)
    color = STATUS_COLORS.get(doc.status, "white")
    console.print(
        f"[bold]{doc.title}[/] [dim]{doc.document_id}[/]  "
        f"[{color}]{doc.status.value}[/]  v{doc.version}"
    )
    if doc.signed_artifact_url:
        console.print(f"Artifact: {doc.signed_artifact_url}")

    recipients = Table(title="Recipients")
    recipients.add_column("Order", justify="right")
    recipients.add_column("Name", style="cyan")
    recipients.add_column("Role")
    recipients.add_column("Status")
    recipients.add_column("ID", style="dim")
    for r in ordered_recipients(doc.recipients):
        recipients.add_row(
            str(r.signing_order), r.name, r.role.value, r.signature_status.value, r.id
        )
    console.print(recipients)

    fields = Table(title="Fields")
    fields.add_column("Page", justify="right")
    fields.add_column("Type")
    fields.add_column("x / y / w / h (%)")
    fields.add_column("Recipient")
    fields.add_column("Value")
    fields.add_column("ID", style="dim")
    names = {r.id: r.name for r in doc.recipients}
    for f in sorted(doc.fields, key=lambda f: (f.page_number, f.rect.y_pct, f.rect.x_pct)):
        r = f.rect
        fields.add_row(
            str(f.page_number),
            f.field_type.value + ("*" if f.required else ""),
            f"{r.x_pct:.1f} / {r.y_pct:.1f} / {r.w_pct:.1f} / {r.h_pct:.1f}",
            names.get(f.recipient_id, "?"),
            f.value or "",
            f.id[:8],
        )
    console.print(fields)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

@main.command()
@click.argument("document_id")
@click.pass_context
def audit(ctx: click.Context, document_id: str) -> None:
    """Show the audit trail for a document."""
    service: DocumentService = ctx.obj["service"]
    try:
        entries = service.get_audit_trail(document_id)
    except FileNotFoundError:
        _fail(f"Document not found: {document_id}")

    if not entries:
        console.print("[dim]No audit entries found.[/]")
        return

    table = Table(title="Audit Trail")
    table.add_column("Time", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("Actor")
    table.add_column("IP", style="dim")
    table.add_column("Details")

    for e in entries:
        table.add_row(
            e.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            e.action.value,
            e.actor_name or e.actor_id or "-",
            e.ip_address or "-",
            e.details,
        )

    console.print(table)


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

@main.command()
@click.argument("document_id")
@click.pass_context
def eligibility(ctx: click.Context, document_id: str) -> None:
    """Show who may sign now, and who is waiting on whom."""
    service: DocumentService = ctx.obj["service"]
    doc = _load(service, document_id)

    table = Table(title=f"Eligibility: {doc.title}")
    table.add_column("Order", justify="right")
    table.add_column("Recipient", style="cyan")
    table.add_column("May sign", justify="center")
    table.add_column("Reason")

    for r in ordered_recipients(doc.recipients):
        result = service.check_eligibility(document_id, r.id)
        mark = "[bold green]YES[/]" if result.can_sign else "[dim]no[/]"
        table.add_row(str(r.signing_order), r.name, mark, result.reason)

    console.print(table)
    if doc.status != DocumentStatus.ACTIVE:
        console.print(f"[yellow]Document is {doc.status.value}; signing is not open.[/]")


@main.command()
@click.argument("document_id")
@click.argument("recipient_id")
@click.option("--value", "values", multiple=True, help="Field value as FIELD_ID=VALUE")
@click.pass_context
def sign(ctx: click.Context, document_id: str, recipient_id: str, values: tuple[str, ...]) -> None:
    """Sign a document as a recipient."""
    service: DocumentService = ctx.obj["service"]
    _load(service, document_id)
    field_values = {}
    for item in values:
        field_id, sep, value = item.partition("=")
        if not sep:
            _fail(f"Expected FIELD_ID=VALUE, got {item!r}")
        field_values[field_id] = value
    try:
        doc = service.sign(document_id, recipient_id, field_values, actor=_cli_actor())
    except (SignDeskError, ValueError) as exc:
        _fail(str(exc))
    console.print(f"[green]Signed.[/] Document is now [bold]{doc.status.value}[/].")


@main.command()
@click.argument("document_id")
@click.argument("recipient_id")
@click.option("--reason", default="", help="Why the recipient declines")
@click.pass_context
def decline(ctx: click.Context, document_id: str, recipient_id: str, reason: str) -> None:
    """Decline to sign as a recipient (halts the workflow)."""
    service: DocumentService = ctx.obj["service"]
    _load(service, document_id)
    try:
        doc = service.decline(document_id, recipient_id, reason, actor=_cli_actor())
    except SignDeskError as exc:
        _fail(str(exc))
    console.print(f"[yellow]Declined.[/] Document is now [bold]{doc.status.value}[/].")


@main.command()
@click.argument("document_id")
@click.argument("new_status", type=click.Choice([s.value for s in DocumentStatus]))
@click.option("--details", default="", help="Note for the audit trail")
@click.pass_context
def status(ctx: click.Context, document_id: str, new_status: str, details: str) -> None:
    """Move a document to a new lifecycle status."""
    service: DocumentService = ctx.obj["service"]
    before = _load(service, document_id).status
    try:
        doc = service.transition_status(document_id, new_status, actor=_cli_actor(), details=details)
    except SignDeskError as exc:
        _fail(str(exc))
    console.print(f"{before.value} -> [bold]{doc.status.value}[/]")


@main.command()
@click.argument("document_id")
@click.pass_context
def bake(ctx: click.Context, document_id: str) -> None:
    """Bake a processing document into its final artifact."""
    service: DocumentService = ctx.obj["service"]
    _load(service, document_id)
    with console.status("[bold]Baking fields...[/]"):
        try:
            doc = service.bake(document_id, actor=_cli_actor())
        except SignDeskError as exc:
            _fail(f"Bake failed: {exc}")
    console.print(
        Panel(
            f"[bold green]Document final[/]\n\n"
            f"  Document: {doc.title}\n"
            f"  Fields:   {len(doc.fields)}\n"
            f"  Artifact: {doc.signed_artifact_url}",
            title="SignDesk",
            border_style="green",
        )
    )


# ---------------------------------------------------------------------------
# Serve
# ---------------------------------------------------------------------------

@main.command()
@click.option("--host", default=None, help="Bind address (default from settings)")
@click.option("--port", default=None, type=int, help="Port (default from settings)")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]) -> None:
    """Start the SignDesk API server."""
    import uvicorn

    settings: SignDeskSettings = ctx.obj["settings"]
    host = host or settings.host
    port = port or settings.port
    os.environ["SIGNDESK_DATA_DIR"] = str(settings.data_dir)

    console.print(f"[bold]SignDesk API[/] listening on [cyan]http://{host}:{port}[/]")
    console.print(f"[dim]Data directory: {settings.data_dir}[/]\n")
    uvicorn.run("signdesk.api:app", host=host, port=port, log_level="info")
