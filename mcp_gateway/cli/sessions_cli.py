# mcp_gateway/cli/sessions_cli.py
from typing import Annotated, List, Optional

import typer

from .utils_cli import make_api_request

app = typer.Typer(
    name="sessions",
    help="Issue and revoke identity sessions via the Admin API.",
    no_args_is_help=True
)


@app.command("issue")
def issue_session(
    user_id: Annotated[str, typer.Option(prompt="User ID", help="Stable identifier of the user.")],
    username: Annotated[str, typer.Option(prompt="Username", help="Display name for the user.")],
    email: Annotated[Optional[str], typer.Option(help="Email address of the user.")] = None,
    lifetime_seconds: Annotated[
        Optional[int],
        typer.Option("--lifetime", help="Session lifetime in seconds. Defaults to the server setting.", min=60)
    ] = None,
    scopes: Annotated[Optional[List[str]], typer.Option("--scope", help="Scope to grant. Repeatable.")] = None,
):
    """Issue an API-key session. The returned session_id is used as a bearer token."""
    payload = {"user_id": user_id, "username": username, "scopes": scopes or []}
    if email:
        payload["email"] = email
    if lifetime_seconds:
        payload["lifetime_seconds"] = lifetime_seconds
    make_api_request("POST", "/admin/sessions", json_payload=payload, expected_status=201)


@app.command("revoke")
def revoke_session(
    session_id: Annotated[str, typer.Argument(help="The session identifier to revoke.")],
    force: Annotated[bool, typer.Option("--force", "-f", help="Skip confirmation.")] = False,
):
    """Revoke an identity session."""
    if not force:
        typer.confirm(f"Revoke session '{session_id}'?", abort=True)
    make_api_request("DELETE", f"/admin/sessions/{session_id}", expected_status=204)
