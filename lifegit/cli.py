"""CLI entrypoint for LifeGit."""

from __future__ import annotations

import asyncio
import inspect
import logging
import sys
import uuid
from pathlib import Path
from typing import Any, Callable, Optional

import click

from lifegit.core.exceptions import (
    EntityNotFoundError,
    LifeGitError,
    NoTaskPlanError,
    ValidationError,
)
from lifegit.core.factory import ComponentBundle, ComponentFactory
from lifegit.core.models import (
    Branch,
    BranchStatus,
    CommitType,
    NoPlan,
    TaskItem,
    TaskPlan,
    TaskTimeScope,
)
from lifegit.planning.progress import ProgressTracker

_STATUS_COLORS = {
    BranchStatus.ACTIVE: "cyan",
    BranchStatus.COMPLETED: "green",
    BranchStatus.ABANDONED: "yellow",
    BranchStatus.MASTER: "magenta",
}

_WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def _setup_logging(verbose: bool = False, config_dir: Optional[Path] = None, env: Optional[str] = None) -> None:
    """Apply logging configuration from config/default.yaml."""
    from lifegit.core.config import load_config

    try:
        config = load_config(config_dir=config_dir, env=env)
        level_name = config.logging.level
        fmt = config.logging.format
    except LifeGitError:
        level_name = "INFO"
        fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr)


# ---------------------------------------------------------------------------
# Invocation helpers
# ---------------------------------------------------------------------------

async def _with_bundle(ctx: click.Context, action: Callable[[ComponentBundle], Any]) -> Any:
    injected = ctx.obj.get("bundle")
    bundle = injected or ComponentFactory.create(
        config_dir=ctx.obj.get("config_dir"),
        env=ctx.obj.get("env"),
    )
    try:
        bundle.manager.ensure_master_branch()
        result = action(bundle)
        if inspect.isawaitable(result):
            result = await result
        return result
    finally:
        if injected is None:
            await ComponentFactory.close(bundle)


def _run(ctx: click.Context, action: Callable[[ComponentBundle], Any]) -> Any:
    """Run ``action`` against a bundle, turning LifeGitError into a CLI error."""
    try:
        return asyncio.run(_with_bundle(ctx, action))
    except LifeGitError as exc:
        raise click.ClickException(str(exc)) from exc


def _resolve_branch(bundle: ComponentBundle, ref: str) -> Branch:
    """Find a branch by UUID or by exact name."""
    try:
        return bundle.manager.get_branch(uuid.UUID(ref))
    except ValueError:
        pass
    matches = [b for b in bundle.manager.list_branches() if b.name == ref]
    if not matches:
        raise EntityNotFoundError("Branch", ref)
    if len(matches) > 1:
        raise ValidationError(f"Branch name '{ref}' is ambiguous; use the branch id")
    return matches[0]


def _resolve_task(plan: TaskPlan, position: int) -> TaskItem:
    tasks = plan.ordered_tasks()
    if position < 1 or position > len(tasks):
        raise ValidationError(f"Task number must be between 1 and {len(tasks)}")
    return tasks[position - 1]


def _require_plan(bundle: ComponentBundle, branch: Branch) -> TaskPlan:
    state = bundle.manager.plan_state(branch)
    if isinstance(state, NoPlan):
        raise NoTaskPlanError(f"Branch '{branch.name}' has no task plan")
    return state.plan


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _status_label(branch: Branch) -> str:
    label = "merged" if branch.is_merged else branch.status.value
    return click.style(label, fg=_STATUS_COLORS.get(branch.status, "white"))


def _echo_branch(branch: Branch) -> None:
    click.echo(f"  {branch.id}  {branch.name:<30} {_status_label(branch)}  {branch.progress:.0%}")


def _echo_plan(plan: TaskPlan) -> None:
    source = "AI" if plan.is_ai_generated else "manual"
    click.echo(click.style(f"Task plan ({source}, {plan.total_duration})", bold=True))
    for number, task in enumerate(plan.ordered_tasks(), start=1):
        box = "x" if task.is_completed else " "
        duration = ProgressTracker.format_duration(task.estimated_duration)
        click.echo(f"  {number:>2}. [{box}] {task.title} ({task.time_scope.value}, {duration})")
        if task.description:
            click.echo(f"         {task.description}")


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose (DEBUG) logging.")
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding default.yaml and prompts/.",
)
@click.option("--env", default=None, help="Config overlay to apply (e.g. test).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_dir: Optional[Path], env: Optional[str]) -> None:
    """LifeGit: goals as branches of your life timeline."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_dir"] = config_dir
    ctx.obj["env"] = env
    _setup_logging(verbose=verbose, config_dir=config_dir, env=env)


@cli.command("init")
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create the storage schema and the master branch."""
    master = _run(ctx, lambda bundle: bundle.manager.ensure_master_branch())
    click.echo(f"Master branch ready: {master.id}")


# ---------------------------------------------------------------------------
# branch
# ---------------------------------------------------------------------------

@cli.group("branch")
def branch_group() -> None:
    """Create and move goal branches through their lifecycle."""


@branch_group.command("create")
@click.argument("name")
@click.option("--description", "-d", default="", help="What the goal is about.")
@click.option("--timeframe", "-t", default=None, help="Target timeframe, e.g. '3 months'.")
@click.pass_context
def branch_create(ctx: click.Context, name: str, description: str, timeframe: Optional[str]) -> None:
    """Create a goal branch and generate its task plan."""

    async def action(bundle: ComponentBundle):
        return await bundle.manager.create_branch(name, description, timeframe)

    creation = _run(ctx, action)
    click.echo(click.style(f"Created branch '{creation.branch.name}' ({creation.branch.id})", fg="green"))
    if creation.used_fallback:
        click.echo(click.style("AI plan unavailable; started you off with a manual plan.", fg="yellow"))
    _echo_plan(creation.plan)


@branch_group.command("list")
@click.option(
    "--status",
    type=click.Choice([s.value for s in BranchStatus]),
    default=None,
    help="Only show branches with this status.",
)
@click.pass_context
def branch_list(ctx: click.Context, status: Optional[str]) -> None:
    """List branches."""
    wanted = BranchStatus(status) if status else None
    branches = _run(ctx, lambda bundle: bundle.manager.list_branches(wanted))
    if not branches:
        click.echo("No branches.")
        return
    for branch in branches:
        _echo_branch(branch)


@branch_group.command("show")
@click.argument("branch_ref")
@click.pass_context
def branch_show(ctx: click.Context, branch_ref: str) -> None:
    """Show a branch with its statistics."""

    def action(bundle: ComponentBundle):
        branch = _resolve_branch(bundle, branch_ref)
        return branch, bundle.manager.get_statistics(branch)

    branch, stats = _run(ctx, action)
    click.echo(click.style(branch.name, bold=True) + f"  [{_status_label(branch)}]")
    if branch.description:
        click.echo(f"  {branch.description}")
    click.echo(f"  Id:              {branch.id}")
    click.echo(f"  Progress:        {stats.progress:.0%} ({stats.completed_tasks}/{stats.total_tasks} tasks)")
    click.echo(f"  Remaining:       {ProgressTracker.format_duration(stats.remaining_estimated_duration)}")
    click.echo(f"  Commits:         {stats.commit_count}")


def _transition(ctx: click.Context, branch_ref: str, method: str, verb: str) -> None:
    def action(bundle: ComponentBundle):
        branch = _resolve_branch(bundle, branch_ref)
        return getattr(bundle.manager, method)(branch)

    branch = _run(ctx, action)
    click.echo(click.style(f"Branch '{branch.name}' {verb}.", fg="green"))


@branch_group.command("complete")
@click.argument("branch_ref")
@click.pass_context
def branch_complete(ctx: click.Context, branch_ref: str) -> None:
    """Mark an active branch as completed."""
    _transition(ctx, branch_ref, "complete_branch", "completed")


@branch_group.command("abandon")
@click.argument("branch_ref")
@click.pass_context
def branch_abandon(ctx: click.Context, branch_ref: str) -> None:
    """Abandon an active branch."""
    _transition(ctx, branch_ref, "abandon_branch", "abandoned")


@branch_group.command("reactivate")
@click.argument("branch_ref")
@click.pass_context
def branch_reactivate(ctx: click.Context, branch_ref: str) -> None:
    """Bring an abandoned branch back to active."""
    _transition(ctx, branch_ref, "reactivate_branch", "reactivated")


@branch_group.command("merge")
@click.argument("branch_ref")
@click.pass_context
def branch_merge(ctx: click.Context, branch_ref: str) -> None:
    """Merge a completed branch into master."""

    def action(bundle: ComponentBundle):
        branch = _resolve_branch(bundle, branch_ref)
        before = len(bundle.manager.version_history())
        merged = bundle.manager.merge_branch(branch)
        history = bundle.manager.version_history()
        return merged, history[0] if len(history) > before else None

    branch, record = _run(ctx, action)
    click.echo(click.style(f"Branch '{branch.name}' merged into master.", fg="green"))
    if record is not None:
        click.echo(click.style(
            f"Life version upgraded to {record.version} ({record.description})",
            fg="magenta", bold=record.is_important_milestone,
        ))


@branch_group.command("delete")
@click.argument("branch_ref")
@click.confirmation_option(prompt="Delete the branch with its plan and commits?")
@click.pass_context
def branch_delete(ctx: click.Context, branch_ref: str) -> None:
    """Delete a branch with its plan and commits."""

    def action(bundle: ComponentBundle):
        branch = _resolve_branch(bundle, branch_ref)
        bundle.manager.delete_branch(branch)
        return branch

    branch = _run(ctx, action)
    click.echo(f"Deleted branch '{branch.name}'.")


# ---------------------------------------------------------------------------
# plan
# ---------------------------------------------------------------------------

@cli.group("plan")
def plan_group() -> None:
    """Inspect and edit a branch's task plan."""


@plan_group.command("show")
@click.argument("branch_ref")
@click.pass_context
def plan_show(ctx: click.Context, branch_ref: str) -> None:
    """Show the task plan of a branch."""
    plan = _run(ctx, lambda bundle: _require_plan(bundle, _resolve_branch(bundle, branch_ref)))
    _echo_plan(plan)


@plan_group.command("regenerate")
@click.argument("branch_ref")
@click.pass_context
def plan_regenerate(ctx: click.Context, branch_ref: str) -> None:
    """Replace the plan with a newly generated one."""

    async def action(bundle: ComponentBundle):
        branch = _resolve_branch(bundle, branch_ref)
        return await bundle.manager.regenerate_task_plan(branch)

    plan = _run(ctx, action)
    click.echo(click.style("Plan regenerated.", fg="green"))
    _echo_plan(plan)


@plan_group.command("add-task")
@click.argument("branch_ref")
@click.argument("title")
@click.option("--description", "-d", required=True, help="What the task involves.")
@click.option("--minutes", "-m", type=int, default=60, show_default=True, help="Estimated duration.")
@click.option(
    "--scope",
    type=click.Choice([s.value for s in TaskTimeScope]),
    default=TaskTimeScope.DAILY.value,
    show_default=True,
)
@click.pass_context
def plan_add_task(
    ctx: click.Context,
    branch_ref: str,
    title: str,
    description: str,
    minutes: int,
    scope: str,
) -> None:
    """Append a manual task to the plan."""

    def action(bundle: ComponentBundle):
        plan = _require_plan(bundle, _resolve_branch(bundle, branch_ref))
        return bundle.editor.add_task(plan, title, description, minutes, TaskTimeScope(scope))

    plan = _run(ctx, action)
    _echo_plan(plan)


@plan_group.command("toggle")
@click.argument("branch_ref")
@click.argument("task_number", type=int)
@click.option("--no-commit", is_flag=True, default=False, help="Do not record a completion commit.")
@click.pass_context
def plan_toggle(ctx: click.Context, branch_ref: str, task_number: int, no_commit: bool) -> None:
    """Toggle completion of task TASK_NUMBER (as listed by `plan show`)."""

    def action(bundle: ComponentBundle):
        plan = _require_plan(bundle, _resolve_branch(bundle, branch_ref))
        task = _resolve_task(plan, task_number)
        return bundle.editor.toggle_task(plan, task.id, record_commit=not no_commit)

    plan = _run(ctx, action)
    _echo_plan(plan)


# ---------------------------------------------------------------------------
# commit
# ---------------------------------------------------------------------------

@cli.group("commit")
def commit_group() -> None:
    """Record and review progress commits."""


@commit_group.command("add")
@click.argument("branch_ref")
@click.argument("message")
@click.option(
    "--type",
    "commit_type",
    type=click.Choice([t.value for t in CommitType]),
    default=CommitType.LEARNING.value,
    show_default=True,
)
@click.pass_context
def commit_add(ctx: click.Context, branch_ref: str, message: str, commit_type: str) -> None:
    """Record a commit on a branch."""

    def action(bundle: ComponentBundle):
        branch = _resolve_branch(bundle, branch_ref)
        return bundle.ledger.record(message, CommitType(commit_type), branch.id)

    commit = _run(ctx, action)
    click.echo(f"[{commit.type.value}] {commit.message}")


@commit_group.command("log")
@click.argument("branch_ref")
@click.option("--limit", type=int, default=20, show_default=True)
@click.pass_context
def commit_log(ctx: click.Context, branch_ref: str, limit: int) -> None:
    """Show a branch's commits, newest first."""

    def action(bundle: ComponentBundle):
        return bundle.ledger.history(_resolve_branch(bundle, branch_ref).id)

    commits = _run(ctx, action)
    if not commits:
        click.echo("No commits.")
        return
    for commit in list(reversed(commits))[:limit]:
        stamp = commit.timestamp.strftime("%Y-%m-%d %H:%M")
        click.echo(f"  {stamp}  {click.style(commit.type.value, fg='cyan'):<14} {commit.message}")


@commit_group.command("stats")
@click.argument("branch_ref")
@click.pass_context
def commit_stats(ctx: click.Context, branch_ref: str) -> None:
    """Show commit statistics and the current streak."""

    def action(bundle: ComponentBundle):
        branch = _resolve_branch(bundle, branch_ref)
        return bundle.ledger.statistics(branch.id), bundle.ledger.streak(branch.id)

    stats, streak = _run(ctx, action)
    click.echo(f"  Total commits:   {stats.total_commits}")
    click.echo(f"  Per day (30d):   {stats.commit_frequency:.2f}")
    click.echo(f"  Streak:          {streak} day(s)")
    if stats.most_active_weekday is not None:
        click.echo(f"  Busiest day:     {_WEEKDAYS[stats.most_active_weekday]}")
    for type_name, count in sorted(stats.counts_by_type.items()):
        click.echo(f"    {type_name:<14} {count}")


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------

@cli.command("version")
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show the current life version and how it was reached."""

    def action(bundle: ComponentBundle):
        return bundle.manager.current_version(), bundle.manager.version_history()

    current, history = _run(ctx, action)
    click.echo(click.style(f"Life version {current}", bold=True))
    if not history:
        click.echo("No upgrades yet.")
        return
    for record in history:
        stamp = record.upgraded_at.strftime("%Y-%m-%d")
        marker = "*" if record.is_important_milestone else " "
        click.echo(f"  {marker} {record.version:<7} {stamp}  {record.trigger_branch_name}")
        if record.description:
            click.echo(f"      {record.description}")


def main() -> None:
    """Entry point used by `lifegit` console script."""
    from dotenv import load_dotenv
    load_dotenv(Path(__file__).parent.parent / ".env", override=True)
    cli()


if __name__ == "__main__":
    main()
