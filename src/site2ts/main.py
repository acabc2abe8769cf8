"""CLI entrypoint for site2ts."""

import logging
import sys
from pathlib import Path

import rich_click as click

from site2ts import __version__
from site2ts.config import Settings
from site2ts.controllers import (
    CallCommand,
    ControlPlaneCliController,
    FlowCommand,
    ServeCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = ControlPlaneCliController()

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="site2ts")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level for stderr diagnostics. Defaults to SITE2TS_LOG_LEVEL or INFO.",
)
def site2ts(log_level: str | None) -> None:
    """site2ts control plane: crawl a site and drive code generation stages."""

    settings = Settings.from_env(log_level=log_level)
    try:
        settings.validate()
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    # stdout carries the protocol, so diagnostics always go to stderr.
    logging.basicConfig(stream=sys.stderr, level=settings.log_level, format=LOG_FORMAT)


project_root_option = click.option(
    "--project-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Project directory holding `.site2ts/`. Defaults to SITE2TS_PROJECT_ROOT or `.`.",
)
worker_command_option = click.option(
    "--worker-command",
    default=None,
    help="Worker launch command. Defaults to SITE2TS_WORKER_COMMAND.",
)


@site2ts.command("serve")
@project_root_option
@worker_command_option
def serve(project_root: Path | None, worker_command: str | None) -> None:
    """Serve line-delimited JSON-RPC requests on stdin/stdout."""

    # Raw bytes: undecodable lines are answered per line rather than ending the loop.
    try:
        CONTROLLER.serve(
            ServeCommand(project_root=project_root, worker_command=worker_command),
            sys.stdin.buffer,
            sys.stdout,
        )
    except BrokenPipeError:
        logging.getLogger(__name__).warning("Output closed by caller; stopping")


@site2ts.command("call")
@project_root_option
@worker_command_option
@click.argument("request")
def call(project_root: Path | None, worker_command: str | None, request: str) -> None:
    """Send one JSON-RPC REQUEST line and print progress and the response."""

    _emit_lines(
        CONTROLLER.call(
            CallCommand(
                project_root=project_root,
                worker_command=worker_command,
                request=request,
            ),
        ),
    )


@site2ts.command("flow")
@project_root_option
@worker_command_option
@click.argument("start_url")
@click.option(
    "--max-pages",
    type=click.IntRange(min=1),
    default=25,
    show_default=True,
    help="Crawl page budget.",
)
@click.option(
    "--max-depth",
    type=click.IntRange(min=0),
    default=3,
    show_default=True,
    help="Crawl link depth.",
)
@click.option(
    "--apply/--dry-run",
    default=False,
    show_default=True,
    help="Write generated files into the project or only plan the changes.",
)
def flow(  # noqa: PLR0913
    project_root: Path | None,
    worker_command: str | None,
    start_url: str,
    max_pages: int,
    max_depth: int,
    apply: bool,
) -> None:
    """Run init through apply for START_URL, threading ids between stages."""

    result = CONTROLLER.flow(
        FlowCommand(
            project_root=project_root,
            worker_command=worker_command,
            start_url=start_url,
            max_pages=max_pages,
            max_depth=max_depth,
            apply=apply,
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("site2ts flow failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    site2ts()
