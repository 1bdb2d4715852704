"""Atlas command-line interface."""

import json
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from atlas.config import get_settings
from atlas.database.repository import TaskRepository
from atlas.database.session import get_db_session, init_db
from atlas.planner.executor import PlanExecutor
from atlas.tools.base import ToolContext
from atlas.tools.cost import estimate_plan_cost
from atlas.tools.orchestrator import build_orchestrator_registry
from atlas.utils.logging import configure_logging

console = Console()


def _parse_step(value: str) -> tuple[str, int | None, str | None]:
    """Parse ``agent_type[:tokens[:model]]``."""
    parts = value.split(":")
    if len(parts) > 3 or not parts[0]:
        raise click.BadParameter(f"Expected agent_type[:tokens[:model]], got {value!r}")

    tokens = None
    if len(parts) > 1 and parts[1]:
        try:
            tokens = int(parts[1])
        except ValueError:
            raise click.BadParameter(f"Token count must be an integer, got {parts[1]!r}") from None
        if tokens <= 0:
            raise click.BadParameter("Token count must be positive")

    model = parts[2] if len(parts) > 2 and parts[2] else None
    return parts[0], tokens, model


@click.group()
@click.version_option(package_name="atlas-orchestrator")
def main():
    """Atlas - plan generation and orchestration for agent teams."""
    configure_logging()


@main.command(name="init-db")
@click.option("--database-url", default=None, help="Override the configured database URL")
def init_db_command(database_url: str | None):
    """Create all tables."""
    init_db(database_url)
    console.print(f"[green]✓[/green] Database ready at {database_url or get_settings().database_url}")


@main.command()
def tools():
    """List orchestrator tools and their parameters."""
    registry = build_orchestrator_registry(session=None)

    table = Table(title="Orchestrator Tools")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Parameters", style="dim")

    for schema in registry.schemas():
        properties = schema["parameters"].get("properties", {})
        required = set(schema["parameters"].get("required", []))
        params = ", ".join(f"{name}*" if name in required else name for name in properties)
        table.add_row(schema["name"], schema["description"], params)

    console.print(table)


@main.command()
@click.argument("tool_name")
@click.option("--account", "account_id", required=True, help="Account id")
@click.option("--task", "task_id", default=None, help="Calling task id")
@click.option("--agent", "agent_id", default=None, help="Calling agent id")
@click.option("--params", "params_json", default="{}", help="Tool parameters as a JSON object")
def call(tool_name: str, account_id: str, task_id: str | None, agent_id: str | None, params_json: str):
    """Invoke an orchestrator tool.

    Example:
        atlas call list_tasks --account acc-1 --task t-1 --params '{"status": "queued"}'
    """
    try:
        params = json.loads(params_json)
    except json.JSONDecodeError as e:
        console.print(f"[red]✗ Invalid --params JSON: {e}[/red]")
        sys.exit(2)
    if not isinstance(params, dict):
        console.print("[red]✗ --params must be a JSON object[/red]")
        sys.exit(2)

    context = ToolContext(account_id=account_id, context_task_id=task_id, agent_id=agent_id)
    with get_db_session() as session:
        registry = build_orchestrator_registry(session)
        result = registry.invoke(tool_name, params, context)

    if result.success:
        console.print(result.formatted, markup=False, highlight=False)
    else:
        console.print(f"[red]✗ {escape(result.error or '')}[/red]")
        sys.exit(1)


@main.command(name="estimate-cost")
@click.option(
    "--step",
    "steps",
    multiple=True,
    required=True,
    help="agent_type[:tokens[:model]], repeatable",
)
def estimate_cost(steps: tuple[str, ...]):
    """Estimate token usage and cost for proposed steps.

    Example:
        atlas estimate-cost --step researcher --step content-writer:6000:opus
    """
    estimate = estimate_plan_cost([_parse_step(s) for s in steps])
    console.print(estimate.format(), markup=False, highlight=False)


@main.command(name="show-plan")
@click.argument("task_id")
def show_plan(task_id: str):
    """Show the plan stored on a task and its step cursor."""
    with get_db_session() as session:
        task = TaskRepository(session).find(task_id)
        if task is None:
            console.print(f"[red]✗ Task {task_id} not found[/red]")
            sys.exit(1)

        plan = PlanExecutor.get_plan_from_task(task)
        if plan is None:
            console.print(f"[yellow]Task {task_id} has no stored plan.[/yellow]")
            return

        current = PlanExecutor.get_plan_current_step(task)
        title = task.title

    console.print(f"[bold]{escape(title)}[/bold]")
    console.print(
        f"Mode: {plan.execution_mode.value}  "
        f"Confidence: {plan.confidence.overall_score:.2f}  "
        f"Pattern: [dim]{plan.pattern_key}[/dim]"
    )
    if plan.reasoning:
        console.print(f"[dim]{escape(plan.reasoning)}[/dim]")

    table = Table()
    table.add_column("#", justify="right")
    table.add_column("Title", style="cyan")
    table.add_column("Agent")
    table.add_column("Depends on")
    table.add_column("State")

    for index, step in enumerate(plan.steps):
        if index < current:
            state = "[green]created[/green]"
        elif index == current:
            state = "[yellow]next[/yellow]"
        else:
            state = "[dim]waiting[/dim]"
        depends = str(step.depends_on_index + 1) if step.depends_on_index is not None else "-"
        table.add_row(
            str(index + 1),
            escape(step.title),
            escape(f"{step.agent_alias} ({step.agent_type})"),
            depends,
            state,
        )

    console.print(table)
    console.print(f"Cursor: step {current} of {len(plan.steps)}")


if __name__ == "__main__":
    main()
