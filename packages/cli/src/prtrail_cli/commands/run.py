"""run command: detect outstanding work on a pull request and execute it."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prtrail_core.agent.opencode import OpenCodeClient
from prtrail_core.audit import AuditLog
from prtrail_core.classify import Classifier, RemoteStrategy
from prtrail_core.detector import TaskDetector
from prtrail_core.errors import ConfigurationError
from prtrail_core.executor import ExecutionOrchestrator
from prtrail_core.gh.platform import GitHubPlatform
from prtrail_core.providers.base import build_completion_client
from prtrail_core.safety import SafetyPipeline
from prtrail_core.session import ReviewSession
from prtrail_core.tasks import AUTO, MANUAL, NONE, ExecutionResult, TriggerContext
from prtrail_core.tools import ReviewTools
from prtrail_store.state import StateStore

console = Console()


def build_orchestrator(config: dict, platform, agent, llm, request_id: str, workspace_root: str = "."):
    """Wire one run's collaborators together; returns (orchestrator, session)."""
    audit = AuditLog()
    store = StateStore(platform, request_id, config["automation_identities"])
    safety = SafetyPipeline.from_config(config, llm, audit=audit)
    classifier = Classifier(RemoteStrategy(llm))
    tools = ReviewTools(store, platform, safety, audit, config)
    session = ReviewSession(agent, store, platform, tools, classifier, safety, config, workspace_root=workspace_root)
    detector = TaskDetector(store, platform, classifier, config)
    return ExecutionOrchestrator(detector, session, store), session


def _print_summary(result: ExecutionResult) -> None:
    if not result.results:
        console.print("[green]Nothing to do: no outstanding work on this pull request.[/green]")
        return

    table = Table(title="prtrail run", show_header=True, header_style="bold cyan")
    table.add_column("Task", style="bold")
    table.add_column("Status", width=10)
    table.add_column("Issues", justify="right", width=8)
    table.add_column("Blocking", justify="right", width=9)
    table.add_column("Error", max_width=50)

    for r in result.results:
        status = "[green]ok[/green]" if r.success else "[red]failed[/red]"
        blocking = f"[red]{r.blocking_issues}[/red]" if r.blocking_issues else "0"
        label = r.task_key + (" (manual)" if r.is_manual_review else "")
        table.add_row(label, status, str(r.issues_found), blocking, r.error or "")

    console.print(table)


@click.command("run")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option(
    "--event",
    type=click.Choice([AUTO, MANUAL, NONE]),
    default=AUTO,
    show_default=True,
    help="What triggered this run: a PR event, a review request mention, or neither.",
)
@click.option("--action", default=None, help="Platform event action, e.g. opened or synchronize.")
@click.option("--comment-id", default=None, help="Comment that requested a manual review.")
@click.option(
    "--model",
    type=click.Choice(["anthropic", "openai"]),
    default=None,
    help="Completion provider for classification and safety checks. Overrides config file.",
)
@click.option("--agent-url", default=None, help="Agent runtime base URL. Overrides config file.")
@click.pass_context
def run_cmd(
    ctx,
    repo: str,
    pr_number: int,
    event: str,
    action: str | None,
    comment_id: str | None,
    model: str | None,
    agent_url: str | None,
):
    """Handle disputes, questions and reviews outstanding on a pull request.

    Exits with status 1 only when an automatic review finished with blocking
    issues. Manual reviews never fail the run.

    Reviews need an agent runtime at --agent-url whose tool plugin forwards
    the agent's tool calls (github_post_review_comment, submit_pass_results,
    ...) to ReviewTools.dispatch. Without that bridge every review fails
    with "Pass 1 ended without submit_pass_results".

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub token (or use gh CLI)
      ANTHROPIC_API_KEY    Required when using --model anthropic
      OPENAI_API_KEY       Required when using --model openai
    """
    from prtrail_cli.auth import resolve_github_token
    from prtrail_core.config import load_config, validate_config

    config_path = ctx.obj.get("config_path", ".prtrail.yml") if ctx.obj else ".prtrail.yml"
    config = load_config(config_path, cli_overrides={"model": model, "agent_url": agent_url})

    token = resolve_github_token()
    if not token:
        raise click.UsageError("No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.")
    config["github_token"] = token

    if config["model"] == "anthropic" and not config.get("anthropic_api_key"):
        raise click.UsageError("ANTHROPIC_API_KEY environment variable is not set.")
    if config["model"] == "openai" and not config.get("openai_api_key"):
        raise click.UsageError("OPENAI_API_KEY environment variable is not set.")

    try:
        validate_config(config)
    except ConfigurationError as e:
        raise click.UsageError(str(e))

    platform = GitHubPlatform(repo, pr_number, token)
    agent = OpenCodeClient(config["agent_url"], timeout=config["review_timeout_minutes"] * 60)
    llm = build_completion_client(config)
    orchestrator, session = build_orchestrator(config, platform, agent, llm, request_id=f"{repo}#{pr_number}")

    console.print(f"[bold]prtrail[/bold] {repo}#{pr_number} (event: {event})")
    try:
        result = orchestrator.execute(TriggerContext(event=event, action=action, comment_id=comment_id))
    finally:
        session.close()
        agent.close()
        platform.close()

    _print_summary(result)

    if result.auto_review_has_blocking_issues:
        console.print(f"[red]Automatic review found {result.blocking_issues} blocking issue(s).[/red]")
        ctx.exit(1)
    if result.failed:
        console.print(f"[yellow]{len(result.failed)} task(s) failed; see the log above.[/yellow]")
