# mcp_gateway/cli/ratelimit_cli.py
from typing import Annotated

import typer

from .utils_cli import make_api_request

app = typer.Typer(
    name="ratelimit",
    help="Inspect per-identity rate limiter state via the Admin API.",
    no_args_is_help=True
)


@app.command("show")
def show_rate_limit(
    user_id: Annotated[str, typer.Argument(help="The identity whose window to inspect.")]
):
    """Show how many calls the identity has made in the current window."""
    make_api_request("GET", f"/admin/rate-limits/{user_id}")
