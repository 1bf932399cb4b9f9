"""CLI entrypoint for pmchat."""

import json
import logging
import os
import sys
from pathlib import Path

import click

from pmchat import __version__
from pmchat.config import AssistantConfig
from pmchat.contracts import FeedbackDetail, FeedbackRating, StatsFilter, Turn
from pmchat.errors import PmChatError


def _load_config(ctx: click.Context) -> AssistantConfig:
    options = ctx.obj or {}
    try:
        config = AssistantConfig.from_env()
    except PmChatError as e:
        click.echo(f"❌ {e.message}", err=True)
        raise click.Abort() from e
    if options.get("data_db"):
        config.data_db_path = Path(options["data_db"]).expanduser()
    if options.get("store_db"):
        config.store_db_path = Path(options["store_db"]).expanduser()
    return config


def _orchestrator(ctx: click.Context):
    from pmchat.orchestrator.runtime import ChatOrchestrator

    try:
        return ChatOrchestrator(_load_config(ctx))
    except PmChatError as e:
        click.echo(f"❌ {e.message}", err=True)
        raise click.Abort() from e


def _print_turn(turn: Turn, show_sql: bool) -> None:
    click.echo(turn.content)
    if show_sql and turn.sql_query:
        click.echo("\nSQL:")
        click.echo(turn.sql_query)
    if turn.chart_data:
        click.echo(f"\nChart ({turn.chart_type.value}):")
        for point in turn.chart_data:
            click.echo(f"  {point.name}: {point.value:g}")
    elif turn.mindmap_data:
        click.echo(f"\nMindmap: {turn.mindmap_data.count_nodes()} nodes (expand depth {turn.mindmap_expand_depth})")
    if turn.error_message:
        click.echo(f"\n⚠️  {turn.error_message}", err=True)
    gen = f"{turn.sql_gen_time_ms:.0f}" if turn.sql_gen_time_ms is not None else "-"
    exe = f"{turn.sql_exec_time_ms:.0f}" if turn.sql_exec_time_ms is not None else "-"
    click.echo(f"\n[turn {turn.id} | {turn.processing_time_ms:.0f} ms total, sql gen {gen} ms, exec {exe} ms]")


@click.group()
@click.version_option(__version__)
@click.option("--data-db", default=None, type=click.Path(), help="Project DuckDB file (overrides PMC_DATA_DB_PATH)")
@click.option("--store-db", default=None, type=click.Path(), help="Turn store DuckDB file (overrides PMC_STORE_DB_PATH)")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (default: WARNING)",
)
@click.pass_context
def main(ctx: click.Context, data_db: str | None, store_db: str | None, log_level: str):
    """pmchat - Conversational analytics over project-management data."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"data_db": data_db, "store_db": store_db}


@main.command()
@click.argument("question")
@click.option("--project", "project_id", default=None, help="Project id to scope the question to")
@click.option("--persona", "persona_id", default=None, help="Persona id (default persona when omitted)")
@click.option("--show-sql", is_flag=True, help="Print the generated SQL")
@click.option("--json", "as_json", is_flag=True, help="Print the stored turn as JSON")
@click.pass_context
def ask(ctx: click.Context, question: str, project_id: str | None, persona_id: str | None,
        show_sql: bool, as_json: bool):
    """Ask a question about project data."""
    orchestrator = _orchestrator(ctx)
    try:
        turn = orchestrator.submit_turn(question, project_id=project_id, persona_id=persona_id)
    except (PmChatError, ValueError) as e:
        click.echo(f"❌ {getattr(e, 'message', e)}", err=True)
        raise click.Abort() from e

    if as_json:
        click.echo(turn.model_dump_json(indent=2))
    else:
        _print_turn(turn, show_sql)


@main.command()
@click.argument("turn_id")
@click.argument("rating", type=click.Choice([r.value for r in FeedbackRating], case_sensitive=False))
@click.option("--comment", default=None, help="Free-text comment")
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable)")
@click.option("--sql-correct/--sql-wrong", "is_sql_correct", default=None, help="Was the SQL right?")
@click.option("--helpful/--not-helpful", "is_response_helpful", default=None, help="Was the answer helpful?")
@click.pass_context
def feedback(ctx: click.Context, turn_id: str, rating: str, comment: str | None, tags: tuple[str, ...],
             is_sql_correct: bool | None, is_response_helpful: bool | None):
    """Rate an assistant turn."""
    orchestrator = _orchestrator(ctx)
    detail = FeedbackDetail(
        comment=comment,
        tags=list(tags),
        is_sql_correct=is_sql_correct,
        is_response_helpful=is_response_helpful,
    )
    try:
        result = orchestrator.submit_feedback(turn_id, rating, detail)
    except PmChatError as e:
        click.echo(f"❌ {e.message}", err=True)
        raise click.Abort() from e
    click.echo(f"✅ Recorded {result.rating.value} feedback {result.id} for turn {turn_id}")


@main.command()
@click.option("--project", "project_id", default=None, help="Only turns of this project")
@click.option("--rating", default=None, type=click.Choice([r.value for r in FeedbackRating], case_sensitive=False))
@click.option("--start", "start_date", default=None, type=click.DateTime(formats=["%Y-%m-%d"]))
@click.option("--end", "end_date", default=None, type=click.DateTime(formats=["%Y-%m-%d"]))
@click.pass_context
def stats(ctx: click.Context, project_id, rating, start_date, end_date):
    """Show feedback statistics."""
    try:
        flt = StatsFilter(
            project_id=project_id,
            rating=FeedbackRating(rating) if rating else None,
            start_date=start_date.date() if start_date else None,
            end_date=end_date.date() if end_date else None,
        )
    except ValueError as e:
        click.echo(f"❌ {e}", err=True)
        raise click.Abort() from e
    result = _orchestrator(ctx).get_stats(flt)
    click.echo(json.dumps(result.model_dump(), indent=2))


@main.command()
@click.option("--project", "project_id", default=None, help="Only turns of this project")
@click.option("--limit", default=20, show_default=True, help="Number of turns")
@click.option("--clear", is_flag=True, help="Delete the history instead of printing it")
@click.pass_context
def history(ctx: click.Context, project_id: str | None, limit: int, clear: bool):
    """Print (or clear) the chat history."""
    orchestrator = _orchestrator(ctx)
    if clear:
        target = project_id or "all projects"
        if not click.confirm(f"Delete chat history for {target}?"):
            raise click.Abort()
        deleted = orchestrator.clear_history(project_id)
        click.echo(f"🗑️  Deleted {deleted} turn(s)")
        return

    for turn in orchestrator.history(project_id, limit):
        marker = "🧑" if turn.role.value == "user" else "🤖"
        text = " ".join(turn.content.split())
        if len(text) > 120:
            text = text[:117] + "..."
        click.echo(f"{marker} [{turn.created_at:%Y-%m-%d %H:%M}] {text}  ({turn.id})")


# =============================================================================
# Personas
# =============================================================================

@main.group()
def personas():
    """Manage assistant personas."""


@personas.command("list")
@click.pass_context
def personas_list(ctx: click.Context):
    """List personas (default first)."""
    for persona in _orchestrator(ctx).persona_store.list_personas():
        flag = "*" if persona.is_default else " "
        click.echo(f"{flag} {persona.id}  {persona.name}  ({persona.icon})")
        if persona.description:
            click.echo(f"    {persona.description}")


@personas.command("add")
@click.option("--name", required=True, help="Persona name")
@click.option("--prompt", "system_prompt", default=None, help="System prompt text")
@click.option("--prompt-file", default=None, type=click.Path(exists=True, dir_okay=False),
              help="Read the system prompt from a file")
@click.option("--description", default=None)
@click.option("--icon", default=None)
@click.option("--default", "is_default", is_flag=True, help="Make this the default persona")
@click.pass_context
def personas_add(ctx: click.Context, name: str, system_prompt: str | None, prompt_file: str | None,
                 description: str | None, icon: str | None, is_default: bool):
    """Create a persona."""
    if prompt_file:
        system_prompt = Path(prompt_file).read_text(encoding="utf-8")
    if not system_prompt:
        raise click.UsageError("Give --prompt or --prompt-file")
    try:
        persona = _orchestrator(ctx).persona_store.create_persona(
            name=name,
            system_prompt=system_prompt,
            description=description,
            icon=icon,
            is_default=is_default,
        )
    except PmChatError as e:
        click.echo(f"❌ {e.message}", err=True)
        raise click.Abort() from e
    click.echo(f"✅ Created persona {persona.id} ({persona.name})")


@personas.command("set-default")
@click.argument("persona_id")
@click.pass_context
def personas_set_default(ctx: click.Context, persona_id: str):
    """Make a persona the default."""
    try:
        persona = _orchestrator(ctx).persona_store.set_default(persona_id)
    except PmChatError as e:
        click.echo(f"❌ {e.message}", err=True)
        raise click.Abort() from e
    click.echo(f"✅ {persona.name} is now the default persona")


@personas.command("remove")
@click.argument("persona_id")
@click.pass_context
def personas_remove(ctx: click.Context, persona_id: str):
    """Delete a persona (the default persona cannot be deleted)."""
    try:
        _orchestrator(ctx).persona_store.delete_persona(persona_id)
    except PmChatError as e:
        click.echo(f"❌ {e.message}", err=True)
        raise click.Abort() from e
    click.echo(f"🗑️  Deleted persona {persona_id}")


# =============================================================================
# Server
# =============================================================================

@main.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, reload: bool):
    """Run the HTTP API (configuration from PMC_* variables)."""
    import uvicorn

    # The app factory reads its configuration from the environment.
    if ctx.obj.get("data_db"):
        os.environ["PMC_DATA_DB_PATH"] = ctx.obj["data_db"]
    if ctx.obj.get("store_db"):
        os.environ["PMC_STORE_DB_PATH"] = ctx.obj["store_db"]

    uvicorn.run("pmchat.api.server:create_app", factory=True, host=host, port=port, reload=reload)


if __name__ == "__main__":
    sys.exit(main())
