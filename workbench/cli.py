import asyncio

import click
from rich.console import Console
from rich.table import Table

from workbench.agent.errors import DispatchError
from workbench.config import Config, get_config
from workbench.logging import configure_logging, uvicorn_log_config

console = Console()


@click.group(invoke_without_command=True)
@click.pass_context
def main(ctx):
    """workbench - approval-gated planning agent"""
    try:
        ctx.ensure_object(dict)
        ctx.obj["config"] = get_config()
    except ValueError as e:
        ctx.obj["config_error"] = str(e)

    if ctx.invoked_subcommand is None:
        console.print("[bold]workbench[/bold] - approval-gated planning agent\n")
        console.print("Run [cyan]workbench serve[/cyan] to start the server.")
        console.print("\nUse [cyan]workbench --help[/cyan] for all commands.")


def _config(ctx) -> Config:
    if "config_error" in ctx.obj:
        console.print(f"[red]Error:[/red] {ctx.obj['config_error']}")
        raise SystemExit(1)
    return ctx.obj["config"]


@main.command()
@click.pass_context
def status(ctx):
    """Show codex health and loaded tooling."""
    config = _config(ctx)
    asyncio.run(_status(config))


async def _status(config: Config):
    from workbench.server.runtime import Runtime

    runtime = Runtime(config)
    await runtime.connect()
    try:
        health = await runtime.probe.check(runtime.session.settings.codex)
        tooling = runtime.registry.config

        console.print("[bold]workbench status[/bold]")
        console.print()
        console.print(f"Data dir: [cyan]{config.db_dir}[/cyan]")
        console.print(f"Tooling dir: [cyan]{config.tooling_dir}[/cyan]")
        marker = "[green]ok[/green]" if health.found else "[red]missing[/red]"
        console.print(f"Codex: {marker} {health.binary or ''} [dim]{health.message}[/dim]")
        console.print(f"  MCP: {'yes' if health.mcp_available else 'no'}  exec: {'yes' if health.exec_available else 'no'}")
        console.print(
            f"Tooling: {len(tooling.mcp_servers)} MCP server(s), "
            f"{len(tooling.skills)} skill(s), {len(tooling.commands)} command(s)"
        )
        console.print(f"Pending proposals: {len(runtime.session.pending)}  audit records: {len(runtime.session.audit)}")
    finally:
        await runtime.close()


@main.command()
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
@click.pass_context
def serve(ctx, host: str | None, port: int | None, reload: bool):
    """Start the workbench API server."""
    config = _config(ctx)
    host = host or config.host
    port = port or config.port

    import uvicorn

    console.print(f"[bold]workbench server[/bold] starting on http://{host}:{port}")
    console.print("[dim]Press Ctrl+C to stop[/dim]")
    console.print()

    uvicorn.run(
        "workbench.server.app:app",
        host=host,
        port=port,
        reload=reload,
        log_config=uvicorn_log_config(config.log_level, config.log_format),
    )


@main.command()
@click.option("-p", "--prompt", required=True, help="The message to send")
@click.option("--approve", is_flag=True, help="Execute every proposed action without asking")
@click.pass_context
def ask(ctx, prompt: str, approve: bool):
    """Send one message (headless) and print the reply and proposals."""
    config = _config(ctx)
    configure_logging(config.log_level, config.log_format)
    asyncio.run(_ask(config, prompt, approve))


async def _ask(config: Config, prompt: str, approve: bool):
    from workbench.server.runtime import Runtime

    runtime = Runtime(config)
    await runtime.connect()
    session = runtime.session
    try:
        console.print(f"[dim]Sending: {prompt}[/dim]\n")
        try:
            response = await session.send_message(prompt)
        except DispatchError as e:
            console.print(f"[red]Agent unavailable:[/red] {e}")
            raise SystemExit(1)
        if response is None:
            console.print("[yellow]Nothing sent[/yellow]")
            return

        console.print(response.reply)
        if not response.actions:
            return

        table = Table("id", "type", "title", "reason")
        for action in response.actions:
            table.add_row(action.id, action.type, action.title, action.reason)
        console.print()
        console.print(table)

        if approve:
            result = await session.execute_actions([a.id for a in response.actions])
            if result:
                color = "green" if result.success else "yellow"
                console.print(f"\n[{color}]{result.message}[/{color}]")
                for record in result.records:
                    if not record.success:
                        console.print(f"  [red]{record.action_id}[/red] {record.error}")
    finally:
        await runtime.close()


if __name__ == "__main__":
    main()
