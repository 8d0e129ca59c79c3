"""Command line interface for running and operating lessonflow workflows."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import typer

from lessonflow.cli_utils.render import render_instance
from lessonflow.config import LessonflowConfig, load_config
from lessonflow.definitions import WorkflowRegistry
from lessonflow.engine import WorkflowEngine, build_engine
from lessonflow.errors import LessonflowError

T = TypeVar("T")

app = typer.Typer(help="CLI for lessonflow processing workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflow instances")

app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to the YAML configuration file"
    ),
) -> None:
    """lessonflow CLI entry point."""
    loaded = load_config(config)
    logging.basicConfig(
        level=loaded.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = loaded


def _config(ctx: typer.Context) -> LessonflowConfig:
    return ctx.obj if isinstance(ctx.obj, LessonflowConfig) else load_config()


def _run(
    ctx: typer.Context, operation: Callable[[WorkflowEngine], Awaitable[T]]
) -> T:
    """Run ``operation`` against a freshly built engine and report errors."""

    async def runner() -> T:
        engine = build_engine(_config(ctx))
        await engine.connect()
        try:
            return await operation(engine)
        finally:
            await engine.close()

    try:
        return asyncio.run(runner())
    except LessonflowError as exc:
        typer.secho(f"{type(exc).__name__}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _parse_params(values: Optional[List[str]]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    for value in values or []:
        key, sep, raw = value.partition("=")
        if not sep or not key:
            typer.secho(
                f"Invalid parameter {value!r}, expected KEY=VALUE", fg=typer.colors.RED
            )
            raise typer.Exit(code=2)
        params[key] = raw
    return params


@app.command("serve")
def serve(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, help="Interface to bind"),
    port: Optional[int] = typer.Option(None, help="Port to listen on"),
) -> None:
    """
    Run the HTTP API.

    Validates every registered workflow definition, resumes watching
    in-flight workflows and serves the workflow endpoints.

    Example:
        lessonflow serve --port 8080
    """
    import uvicorn

    from lessonflow.api import create_app

    config = _config(ctx)
    uvicorn.run(
        create_app(config),
        host=host or config.api.host,
        port=port or config.api.port,
        log_level=config.log_level.lower(),
    )


@workflow_app.command("types")
def workflow_types(ctx: typer.Context) -> None:
    """List the registered workflow types and their step graphs."""
    registry = WorkflowRegistry.with_builtins(_config(ctx).workflows)
    for definition in registry.definitions():
        header = definition.workflow_type
        if definition.description:
            header += f" - {definition.description}"
        typer.echo(header)
        for step in definition.steps:
            deps = f" <- {', '.join(step.dependencies)}" if step.dependencies else ""
            flags = " (skippable)" if step.can_skip else ""
            typer.echo(f"  {step.name}{deps}{flags}")


@workflow_app.command("list")
def workflow_list(
    ctx: typer.Context,
    resource_id: Optional[str] = typer.Option(None, help="Only show this resource"),
) -> None:
    """
    List workflow instances with their current status.

    Example:
        lessonflow workflow list --resource-id lesson-42
        # Output: 0b6d...    lesson-42    full_processing    processing
    """
    instances = _run(ctx, lambda engine: engine.list_instances(resource_id))
    if not instances:
        typer.echo("No workflows found")
        return
    for wf in instances:
        typer.echo(f"{wf.id}\t{wf.resource_id}\t{wf.workflow_type}\t{wf.status.value}")


@workflow_app.command("show")
def workflow_show(ctx: typer.Context, workflow_id: str) -> None:
    """Show every step of a workflow instance."""
    instance = _run(ctx, lambda engine: engine.get_instance(workflow_id))
    typer.echo(render_instance(instance))


@workflow_app.command("create")
def workflow_create(
    ctx: typer.Context,
    resource_id: str,
    workflow_type: str = typer.Argument("full_processing"),
    param: Optional[List[str]] = typer.Option(
        None, "--param", "-p", help="Step input as KEY=VALUE, repeatable"
    ),
    start: bool = typer.Option(False, help="Start the workflow right away"),
) -> None:
    """
    Create a workflow instance for a resource.

    Example:
        lessonflow workflow create lesson-42 full_processing -p audio_url=s3://a.mp3 --start
    """
    params = _parse_params(param)

    async def operation(engine: WorkflowEngine):
        instance = await engine.create_instance(resource_id, workflow_type, params)
        if start:
            instance = await engine.start(instance.id)
        return instance

    instance = _run(ctx, operation)
    typer.echo(render_instance(instance))


@workflow_app.command("start")
def workflow_start(ctx: typer.Context, workflow_id: str) -> None:
    """Start every dependency-free step of a pending workflow."""
    instance = _run(ctx, lambda engine: engine.start(workflow_id))
    typer.echo(render_instance(instance))


@workflow_app.command("retry")
def workflow_retry(ctx: typer.Context, workflow_id: str, step_id: str) -> None:
    """Start a new job for a failed step."""
    instance = _run(ctx, lambda engine: engine.retry(workflow_id, step_id))
    typer.echo(render_instance(instance))


@workflow_app.command("skip")
def workflow_skip(ctx: typer.Context, workflow_id: str, step_id: str) -> None:
    """Skip an optional pending step."""
    instance = _run(ctx, lambda engine: engine.skip(workflow_id, step_id))
    typer.echo(render_instance(instance))


@workflow_app.command("cancel")
def workflow_cancel(ctx: typer.Context, workflow_id: str) -> None:
    instance = _run(ctx, lambda engine: engine.cancel(workflow_id))
    typer.echo(render_instance(instance))


@workflow_app.command("resync")
def workflow_resync(ctx: typer.Context, workflow_id: str) -> None:
    """Re-read the status of every job of a workflow from the status store."""
    instance = _run(ctx, lambda engine: engine.resync(workflow_id))
    typer.echo(render_instance(instance))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
