"""state command: rebuild and print the review state held in a PR's comments."""

from __future__ import annotations

import json

import click
from rich.console import Console
from rich.table import Table

from prtrail_store.memory import InMemoryPlatform
from prtrail_store.models import DISPUTED, ESCALATED, PENDING, RESOLVED
from prtrail_store.state import StateStore

console = Console()

_STATUS_STYLE = {
    PENDING: "yellow",
    DISPUTED: "magenta",
    ESCALATED: "red",
    RESOLVED: "green",
}


@click.command("state")
@click.option("--repo", default=None, help="GitHub repository (owner/name).")
@click.option("--pr", "pr_number", type=int, default=None, help="Pull request number.")
@click.option(
    "--comments-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Rebuild from a JSON comment dump instead of GitHub.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the state as JSON.")
@click.pass_context
def state_cmd(ctx, repo: str | None, pr_number: int | None, comments_file: str | None, as_json: bool):
    """Show the findings prtrail is tracking and their status.

    The state is rebuilt from the comment history; nothing is written back.
    """
    from prtrail_core.config import load_config

    config_path = ctx.obj.get("config_path", ".prtrail.yml") if ctx.obj else ".prtrail.yml"
    config = load_config(config_path)

    if comments_file:
        platform = InMemoryPlatform.from_json(comments_file)
        request_id = comments_file
    elif repo and pr_number:
        from prtrail_cli.auth import resolve_github_token
        from prtrail_core.gh.platform import GitHubPlatform

        token = resolve_github_token()
        if not token:
            raise click.UsageError("No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.")
        platform = GitHubPlatform(repo, pr_number, token)
        request_id = f"{repo}#{pr_number}"
    else:
        raise click.UsageError("Pass --repo and --pr, or --comments-file.")

    try:
        state = StateStore(platform, request_id, config["automation_identities"]).rebuild()
    finally:
        platform.close()

    if as_json:
        click.echo(json.dumps(state.to_dict(), indent=2))
        return

    if not state.threads:
        console.print("[yellow]No review findings found.[/yellow]")
        return

    table = Table(title=f"Review state: {request_id}", show_header=True, header_style="bold cyan")
    table.add_column("Thread", style="bold", width=10)
    table.add_column("Location", max_width=40)
    table.add_column("Score", justify="right", width=6)
    table.add_column("Status", width=10)
    table.add_column("Replies", justify="right", width=8)
    table.add_column("Finding", max_width=50)

    for t in state.threads:
        style = _STATUS_STYLE.get(t.status, "white")
        table.add_row(
            t.id,
            f"{t.file}:{t.line}",
            str(t.score),
            f"[{style}]{t.status}[/{style}]",
            str(len(t.developer_replies)),
            t.assessment.finding[:50],
        )

    console.print(table)
    active = len(state.active_threads())
    console.print(f"{len(state.threads)} finding(s), {active} open, head {state.last_known_revision[:7]}")
