"""Typer CLI for Attest-Engine."""

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="attest", help="Attest-Engine: signing identities, document signatures, audit chain")
console = Console()


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind host (default: ATTEST_HOST)"),
    port: Optional[int] = typer.Option(None, help="Bind port (default: ATTEST_PORT)"),
):
    """Start the Attest-Engine API server."""
    import uvicorn
    from attest_engine.app import create_app
    from attest_engine.common.config import get_settings

    settings = get_settings()
    host = host or settings.host
    port = port or settings.port

    console.print(f"[bold green]Starting Attest-Engine on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command("master-key")
def master_key():
    """Print a fresh random master key (base64) for local use."""
    from attest_engine.vault.crypto import MasterKey

    console.print(MasterKey.generate().to_b64(), markup=False, highlight=False)


@app.command("verify-chain")
def verify_chain_file(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Exported audit log (JSON)"),
    anchor: Optional[str] = typer.Option(None, help="Hash of the entry preceding the first one"),
):
    """Verify an exported audit log.

    Accepts a JSON list of entries (oldest first) or a log page
    ``{"logs": [...]}`` as served by the API (newest first).
    """
    from attest_engine.audit.chain import GENESIS_HASH, verify_chain

    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        entries = list(reversed(data.get("logs", [])))
    else:
        entries = data

    result = verify_chain(entries, anchor_hash=anchor or GENESIS_HASH)
    if result.valid:
        console.print(f"[bold green]VALID[/bold green] — {result.entries_checked} entries checked")
    else:
        console.print(
            f"[bold red]BROKEN[/bold red] at index {result.break_index} "
            f"(entry {result.break_at}): {result.reason}"
        )
        raise typer.Exit(1)


@app.command("verify-document")
def verify_document(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Signed document"),
):
    """Verify a signed document against its embedded certificate."""
    from attest_engine.common.config import get_settings
    from attest_engine.signing.engine import verify_signed_document

    result = verify_signed_document(
        path.read_bytes(), trust_roots=get_settings().tsa_trust_root_certificates,
    )
    if not result.valid:
        console.print(f"[bold red]INVALID[/bold red] — {result.error}")
        raise typer.Exit(1)

    table = Table(show_header=False)
    table.add_row("Document hash", result.document_hash)
    table.add_row("Identity", result.identity_id)
    table.add_row("Signer fingerprint", result.signer_fingerprint)
    table.add_row("Signed at", result.signed_at)
    table.add_row("Reason", result.reason or "-")
    table.add_row("Location", result.location or "-")
    if result.timestamp is not None:
        stamp = result.timestamp
        chain = "chain validated" if stamp.tsa_cert_chain_validated else "chain not validated"
        table.add_row("Timestamp", f"{stamp.gen_time.isoformat()} by {stamp.tsa_signer} ({chain})")
    else:
        table.add_row("Timestamp", "none")
    console.print("[bold green]VALID[/bold green]")
    console.print(table)


@app.command()
def health(
    url: str = typer.Option("http://localhost:8090", help="Server URL"),
):
    """Check Attest-Engine server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] — v{data['version']}")
    except (httpx.HTTPError, ValueError, KeyError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
