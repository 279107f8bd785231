# cli.py
from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path

import click

from stagerun.codec import FORMATS, dump_descriptor
from stagerun.config import LOCK_POLICIES, Settings
from stagerun.errors import ConfigurationError
from stagerun.executor import run_pipeline
from stagerun.loader import load_pipeline
from stagerun.model import BLOCK_TYPES, PipelineDescriptor
from stagerun.ui.console import Console, get_console, set_console

DEFAULT_PIPELINE_FILES = ("stagerun_pipeline.py", "pipeline.yaml", "pipeline.yml", "pipeline.json")


def find_pipeline_files(root: Path = Path(".")) -> list[Path]:
    """
    Find pipeline files in `root`.

    A default-named file wins; otherwise every *_pipeline.py is a candidate.
    """
    defaults = [root / name for name in DEFAULT_PIPELINE_FILES if (root / name).exists()]
    if defaults:
        return defaults
    return sorted(root.glob("*_pipeline.py"))


def discover_pipeline(pipeline_arg: str | None) -> Path:
    """
    Discover the pipeline file from argument or default.

    Raises:
        SystemExit: If no pipeline, or more than one, can be found
    """
    console = get_console()

    if pipeline_arg:
        path = Path(pipeline_arg)
        if not path.exists():
            console.print_error(
                "Pipeline file not found",
                f"Could not find pipeline file: {pipeline_arg}",
                suggestion="Specify a different path:\n  stagerun run --pipeline pipeline.yaml",
            )
            sys.exit(1)
        return path

    candidates = find_pipeline_files()
    if not candidates:
        console.print_error(
            "No pipeline file found",
            "Could not find any pipeline files.",
            details=["Looked for:", *[f"  {n}" for n in DEFAULT_PIPELINE_FILES], "  *_pipeline.py"],
            suggestion="Create a pipeline file or specify one explicitly:\n  stagerun run --pipeline my_pipeline.py",
        )
        sys.exit(1)
    if len(candidates) > 1:
        console.print_error(
            "Multiple pipeline files found",
            "Found multiple pipeline files. Please specify which one to use:",
            details=[f"  {c}" for c in candidates],
            suggestion=f"Specify a pipeline explicitly:\n  stagerun run --pipeline {candidates[0]}",
        )
        sys.exit(1)
    return candidates[0]


def _load_or_exit(ctx, path: Path) -> PipelineDescriptor:
    console = get_console()
    try:
        return load_pipeline(path)
    except Exception as e:
        console.print_error(
            "Failed to load pipeline",
            f"Could not load pipeline from {path}",
            details=[str(e)],
        )
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """stagerun: declarative stage-sequencing pipeline runner."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--pipeline", "pipeline_arg", default=None, help="Pipeline file (.py, .yaml, .yml or .json)")
@click.option("--workspace", default=".", type=click.Path(file_okay=False), show_default=True, help="Workspace directory")
@click.option("--credentials", default=None, type=click.Path(dir_okay=False), help="Credentials file (YAML/JSON)")
@click.option("--services", default=None, type=click.Path(dir_okay=False), help="Service contexts file (YAML/JSON)")
@click.option("--lock-policy", default=None, type=click.Choice(LOCK_POLICIES), help="When the pipeline is already running: wait or reject")
@click.option("--redis-url", default=None, help="Use a Redis run lock at this URL instead of a lock file")
@click.option("--log-file", default=None, type=click.Path(dir_okay=False), help="Also write the (redacted) run log here")
@click.pass_context
def run(ctx, pipeline_arg, workspace, credentials, services, lock_policy, redis_url, log_file):
    """Run a pipeline and exit 0 on SUCCESS, 1 on FAILURE."""
    debug = ctx.obj.get("debug", False)
    if log_file:
        set_console(Console(debug=debug, log_file=log_file))
    console = get_console()

    path = discover_pipeline(pipeline_arg)

    try:
        settings = Settings.from_env()
        overrides = {}
        if credentials:
            overrides["credentials_file"] = Path(credentials)
        if services:
            overrides["services_file"] = Path(services)
        if lock_policy:
            overrides["lock_policy"] = lock_policy
        if redis_url:
            overrides["redis_url"] = redis_url
        settings = replace(settings, **overrides)
    except ConfigurationError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(1)

    descriptor = _load_or_exit(ctx, path)

    try:
        result = run_pipeline(
            descriptor,
            workspace=workspace,
            settings=settings,
            console=console,
            source=path.name,
        )
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)
    finally:
        console.close()

    if not result.ok:
        sys.exit(1)


@cli.command()
@click.option("--pipeline", "pipeline_arg", default=None, help="Pipeline file (.py, .yaml, .yml or .json)")
@click.pass_context
def validate(ctx, pipeline_arg):
    """Load a pipeline and print its stage plan without running anything."""
    console = get_console()
    path = discover_pipeline(pipeline_arg)
    descriptor = _load_or_exit(ctx, path)

    console.print_header(f"Pipeline: {descriptor.name}")
    if descriptor.agent:
        console.print_info(f"Agent: {descriptor.agent}")
    opts = descriptor.options
    console.print_info(
        f"Options: timestamps={opts.timestamps} disable_concurrent_builds={opts.disable_concurrent_builds}"
    )
    for i, stage in enumerate(descriptor.stages, start=1):
        where = f" (dir: {stage.dir})" if stage.dir else ""
        console.print_info(f"  {i}. {stage.name}{where}")
        _print_steps(console, stage.steps, indent=6)
    console.print_info("\nOK")


def _print_steps(console: Console, steps, indent: int) -> None:
    for step in steps:
        console.print_info(" " * indent + step.display_name)
        if isinstance(step, BLOCK_TYPES):
            _print_steps(console, step.steps, indent + 2)


@cli.command()
@click.option("--pipeline", "pipeline_arg", default=None, help="Pipeline file (.py, .yaml, .yml or .json)")
@click.option("--format", "fmt", default="yaml", type=click.Choice(FORMATS), show_default=True)
@click.pass_context
def export(ctx, pipeline_arg, fmt):
    """Print the pipeline as a YAML or JSON descriptor document."""
    path = discover_pipeline(pipeline_arg)
    descriptor = _load_or_exit(ctx, path)
    click.echo(dump_descriptor(descriptor, format=fmt), nl=False)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
