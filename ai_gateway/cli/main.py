"""
CLI interface for the AI provider gateway.

Operator access to schema setup, provider discovery, credential checks and
per-user usage.
"""

import asyncio
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ai_gateway.config.loader import ENV_DB_PATH, GatewayConfig, load_gateway_config
from ai_gateway.core.gateway import Gateway
from ai_gateway.core.security import SecurityAuditor, audit_endpoint, validate_key_format
from ai_gateway.providers import default_adapters
from ai_gateway.storage.db import DEFAULT_DB_PATH
from ai_gateway.storage.repository import (
    SQLitePreferenceStore,
    SQLiteSecurityEventLog,
    initialize_schema,
)

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DB_OPTION = typer.Option(None, "--db", envvar=ENV_DB_PATH, help="Path to the SQLite database")


def _db_path(db: Optional[str]) -> str:
    return db or DEFAULT_DB_PATH


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """AI provider gateway CLI."""
    if ctx.invoked_subcommand is None:
        console.print("AI Gateway - Use --help to see available commands")


@app.command()
def init(db: Optional[str] = DB_OPTION):
    """Create the preference and security audit tables."""
    try:
        initialize_schema(_db_path(db))
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def providers():
    """List supported providers and their models."""
    table = Table(title="AI Providers")
    table.add_column("Provider")
    table.add_column("Name")
    table.add_column("Default model")
    table.add_column("Models", justify="right")
    table.add_column("Pricing")

    for identity, adapter in default_adapters().items():
        capabilities = adapter.get_capabilities()
        default_model = capabilities.default_model
        table.add_row(
            identity.value,
            capabilities.name,
            default_model.id if default_model else "-",
            str(len(capabilities.models)),
            capabilities.pricing.type,
        )

    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command("validate-key")
def validate_key(
    provider: str = typer.Argument(..., help="Provider name, e.g. openai"),
    api_key: str = typer.Argument(..., help="API key to check"),
):
    """Check an API key's format without contacting the provider."""
    try:
        result = validate_key_format(provider, api_key)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if result.valid:
        console.print("[green]✓[/] API key format looks valid")
    else:
        console.print("[red]✗[/] API key format is invalid")
    for warning in result.warnings:
        console.print(f"  [yellow]![/] {warning}")

    sys.exit(EXIT_CODE_PASS if result.valid else EXIT_CODE_FAIL)


@app.command("audit-endpoint")
def audit_endpoint_command(url: str = typer.Argument(..., help="Custom endpoint URL")):
    """Flag an insecure or loopback custom endpoint."""
    issues = audit_endpoint(url)
    if not issues:
        console.print("[green]✓[/] No issues found")
        sys.exit(EXIT_CODE_PASS)

    for issue in issues:
        console.print(f"[yellow]![/] {issue}")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def usage(
    user_id: str = typer.Argument(..., help="User identifier"),
    db: Optional[str] = DB_OPTION,
):
    """Show cumulative usage and connection status for a user."""
    try:
        record = SQLitePreferenceStore(_db_path(db)).get(user_id)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if record is None:
        console.print(f"[yellow]No AI provider configured for user {user_id}[/]")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Usage for {user_id}[/bold]")
    console.print("-" * 40)
    console.print(f"Provider: {record.provider.value}")
    console.print(f"Model: {record.model_name or '-'}")
    console.print(f"Connection status: {record.connection_status.value}")
    console.print(f"Total requests: {record.total_requests:,}")
    console.print(f"Total tokens: {record.total_tokens_used:,}")
    last_used = record.last_used_at.isoformat(timespec="seconds") if record.last_used_at else "never"
    console.print(f"Last used: {last_used}")
    if record.last_error:
        console.print(f"Last error: {record.last_error}")
    sys.exit(EXIT_CODE_PASS)


@app.command("test-connection")
def test_connection(
    user_id: str = typer.Argument(..., help="User identifier"),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Gateway YAML config (defaults to environment variables)",
    ),
    db: Optional[str] = DB_OPTION,
):
    """Send a canned prompt through the user's stored configuration."""
    try:
        config = load_gateway_config(config_path) if config_path else GatewayConfig.from_env()
        db_path = db or config.db_path or DEFAULT_DB_PATH
        gateway = Gateway(
            config,
            SQLitePreferenceStore(db_path),
            auditor=SecurityAuditor(SQLiteSecurityEventLog(db_path)),
        )
        result = asyncio.run(gateway.test_connection(user_id))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if result.success:
        console.print("[green]✓[/] Connection successful")
        sys.exit(EXIT_CODE_PASS)

    console.print(f"[red]✗[/] Connection failed: {result.error}")
    sys.exit(EXIT_CODE_FAIL)


if __name__ == "__main__":
    app()
