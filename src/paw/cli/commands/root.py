"""Root CLI command registration."""

from __future__ import annotations

import click

from paw import __version__

from .finish import cancel_task, end_task
from .hooks import ask_user_hook, stop_hook, user_prompt_hook
from .lifecycle import recover_stdin, wait_deps
from .merge import merge_task
from .tasks import tasks


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """Task lifecycle and merge coordination for coding agents in tmux."""
    if version:
        click.echo(f"paw {__version__}")
        ctx.exit(0)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


cli.add_command(stop_hook)
cli.add_command(user_prompt_hook)
cli.add_command(ask_user_hook)
cli.add_command(merge_task)
cli.add_command(end_task)
cli.add_command(cancel_task)
cli.add_command(wait_deps)
cli.add_command(recover_stdin)
cli.add_command(tasks)
