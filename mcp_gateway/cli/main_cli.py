# mcp_gateway/cli/main_cli.py
from typing import Annotated, Optional

import typer

from . import ratelimit_cli, sessions_cli
from .utils_cli import make_api_request

# Main CLI application with help enabled when no arguments are provided
app = typer.Typer(
    name="gateway",
    help="MCP Gateway Command Line Interface.",
    no_args_is_help=True
)

app.add_typer(sessions_cli.app, name="sessions")
app.add_typer(ratelimit_cli.app, name="ratelimit")


@app.callback()
def main_callback():
    """
    MCP Gateway main CLI application.
    Use 'gateway sessions --help' for session commands.
    """
    pass


@app.command("audit")
def list_audit(
    user_id: Annotated[Optional[str], typer.Option(help="Only show entries for this user.")] = None
):
    """List retained audit entries, oldest first."""
    make_api_request("GET", "/admin/audit", params_payload={"user_id": user_id} if user_id else None)


@app.command("serve")
def serve(
    host: Annotated[str, typer.Option(help="Interface to bind.")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Port to listen on.")] = 8000,
    reload: Annotated[bool, typer.Option(help="Reload on code changes.")] = False,
    log_level: Annotated[str, typer.Option(help="Uvicorn log level.")] = "info",
):
    """Run the gateway with uvicorn."""
    import uvicorn

    typer.echo(f"Starting MCP Gateway on {host}:{port}")
    uvicorn.run("mcp_gateway.main:app", host=host, port=port, reload=reload, log_level=log_level)


def cli_entry_point():
    """Entry point function for console script registration in pyproject.toml"""
    app()


if __name__ == "__main__":
    cli_entry_point()
