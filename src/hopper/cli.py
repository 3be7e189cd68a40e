# src/hopper/cli.py
"""hopper Command Line Interface.

Entry point for the hopper CLI tool.
"""

from __future__ import annotations

import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Literal

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from hopper import __version__
from hopper.assembly import Application, build_application, build_jobs
from hopper.cli_formatters import echo_execution, echo_executions
from hopper.contracts.enums import BatchStatus
from hopper.contracts.errors import HopperError
from hopper.contracts.execution import JobExecution
from hopper.contracts.parameters import JobParameters, JobParametersBuilder, parse_parameter
from hopper.core.config import HopperSettings, load_settings
from hopper.plugins.config_base import PluginConfigError

__all__ = [
    "app",
    "load_settings",  # Re-exported from config for convenience
]

app = typer.Typer(
    name="hopper",
    help="hopper: chunk-oriented batch jobs with restartable executions.",
    no_args_is_help=True,
)

SETTINGS_OPTION = typer.Option(
    ...,
    "--settings",
    "-s",
    help="Path to settings YAML file.",
)
FORMAT_OPTION = typer.Option(
    "console",
    "--format",
    "-f",
    help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"hopper version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)  # Don't override existing env vars


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,  # We handle existence check ourselves for better error message
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """hopper: chunk-oriented batch jobs with restartable executions."""
    from hopper.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


# === Helpers ===


def _load_settings_or_exit(settings: str) -> HopperSettings:
    settings_path = Path(settings).expanduser()
    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        typer.echo(f"YAML syntax error in {settings}: {e.problem}", err=True)
        raise typer.Exit(1) from None
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


@contextmanager
def _application(settings: str) -> Iterator[Application]:
    config = _load_settings_or_exit(settings)
    try:
        application = build_application(config)
    except PluginConfigError as e:
        typer.echo(f"Error instantiating plugins: {e}", err=True)
        raise typer.Exit(1) from None
    except Exception as e:
        typer.echo(f"Error opening job repository: {e}", err=True)
        raise typer.Exit(1) from None
    with application:
        try:
            yield application
        except HopperError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1) from None


def _parse_parameters(identifying: list[str], labels: list[str]) -> JobParameters:
    builder = JobParametersBuilder()
    try:
        for text in identifying:
            builder.add_parameter(*parse_parameter(text, identifying=True))
        for text in labels:
            builder.add_parameter(*parse_parameter(text, identifying=False))
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    return builder.to_job_parameters()


def _finish(execution: JobExecution, output_format: str) -> None:
    echo_execution(execution, output_format=output_format)
    if execution.status != BatchStatus.COMPLETED:
        raise typer.Exit(1)


@contextmanager
def _shutdown_handler() -> Iterator[threading.Event]:
    """Install SIGINT/SIGTERM handlers that set a shutdown event.

    On first signal: sets the event, restores default SIGINT handler
    (so second Ctrl-C force-kills via KeyboardInterrupt).
    """
    shutdown_event = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield shutdown_event
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, frame: Any) -> None:
        shutdown_event.set()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    try:
        yield shutdown_event
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)


# === Commands ===


@app.command()
def watch(
    settings: str = SETTINGS_OPTION,
) -> None:
    """Watch the inbound directory and launch a job per new file.

    Runs until interrupted (Ctrl-C or SIGTERM); running jobs are allowed to
    finish before the process exits.
    """
    with _application(settings) as application:
        if application.trigger is None:
            typer.echo("Error: no trigger configured in settings", err=True)
            raise typer.Exit(1)
        typer.echo(f"Watching {application.trigger.directory} for {application.trigger.job_name} (Ctrl-C to stop)")
        with _shutdown_handler() as shutdown_event:
            application.trigger.run(shutdown_event)


@app.command()
def launch(
    job: str = typer.Argument(..., help="Name of the job to launch."),
    settings: str = SETTINGS_OPTION,
    parameter: list[str] = typer.Option(
        [],
        "--param",
        "-p",
        help="Identifying parameter, name[:type]=value (types: string, long, double, date).",
    ),
    label: list[str] = typer.Option(
        [],
        "--label",
        "-l",
        help="Non-identifying parameter, name[:type]=value.",
    ),
    next_instance: bool = typer.Option(
        False,
        "--next",
        help="Derive parameters from the last execution with the job's incrementer.",
    ),
    output_format: Literal["console", "json"] = FORMAT_OPTION,
) -> None:
    """Launch a job and wait for it to finish.

    Exits with status 1 unless the execution COMPLETED.
    """
    parameters = _parse_parameters(parameter, label)
    with _application(settings) as application:
        operator = application.operator
        if next_instance:
            if parameters:
                typer.echo("Error: --next derives its own parameters; drop --param/--label", err=True)
                raise typer.Exit(1)
            started = operator.start_next_instance(job)
            execution = operator.wait(started.job_execution_id)
        else:
            execution = operator.launch(job, parameters)
        _finish(execution, output_format)


@app.command()
def status(
    execution_id: int = typer.Argument(..., help="Job execution id."),
    settings: str = SETTINGS_OPTION,
    output_format: Literal["console", "json"] = FORMAT_OPTION,
) -> None:
    """Show one execution with its step executions."""
    with _application(settings) as application:
        echo_execution(application.operator.get_execution(execution_id), output_format=output_format)


@app.command()
def executions(
    settings: str = SETTINGS_OPTION,
    job: str | None = typer.Option(None, "--job", "-j", help="Only executions of this job."),
    parameter: list[str] = typer.Option(
        [],
        "--param",
        "-p",
        help="Only executions of the instance with these identifying parameters (requires --job).",
    ),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Maximum executions shown."),
    output_format: Literal["console", "json"] = FORMAT_OPTION,
) -> None:
    """List executions, newest first."""
    parameters = _parse_parameters(parameter, []) if parameter else None
    if parameters is not None and job is None:
        typer.echo("Error: --param requires --job", err=True)
        raise typer.Exit(1)
    with _application(settings) as application:
        found = application.repository.find_executions(job, parameters, limit=limit)
        echo_executions(found, output_format=output_format)


@app.command()
def stop(
    execution_id: int = typer.Argument(..., help="Job execution id."),
    settings: str = SETTINGS_OPTION,
) -> None:
    """Request a stop; the running process honours it at the next chunk boundary."""
    with _application(settings) as application:
        execution = application.operator.stop(execution_id)
        typer.echo(f"Stop requested for #{execution.job_execution_id} {execution.job_name} ({execution.status.value})")


@app.command()
def restart(
    execution_id: int = typer.Argument(..., help="FAILED or STOPPED job execution id."),
    settings: str = SETTINGS_OPTION,
    output_format: Literal["console", "json"] = FORMAT_OPTION,
) -> None:
    """Relaunch a FAILED or STOPPED execution and wait for it to finish.

    Completed steps are not repeated, and a step that failed mid-way resumes
    after its last committed chunk.
    """
    with _application(settings) as application:
        started = application.operator.restart(execution_id)
        _finish(application.operator.wait(started.job_execution_id), output_format)


@app.command()
def recover(
    execution_id: int = typer.Argument(..., help="Job execution id left running by a crashed process."),
    settings: str = SETTINGS_OPTION,
) -> None:
    """Mark an execution abandoned by a crashed process as FAILED, so it can be restarted."""
    with _application(settings) as application:
        execution = application.operator.recover(execution_id)
        typer.echo(f"Execution #{execution.job_execution_id} {execution.job_name} marked {execution.status.value}")


@app.command()
def validate(
    settings: str = SETTINGS_OPTION,
) -> None:
    """Validate settings and plugin options without touching the repository."""
    config = _load_settings_or_exit(settings)
    try:
        jobs = build_jobs(config)
    except (PluginConfigError, ValueError) as e:
        typer.echo(f"Error instantiating plugins: {e}", err=True)
        raise typer.Exit(1) from None

    typer.echo("Configuration valid.")
    for job in jobs:
        typer.echo(f"  Job: {job.name} ({len(job.steps)} steps: {', '.join(job.step_names)})")
    if config.trigger is not None:
        typer.echo(f"  Trigger: {config.trigger.directory} -> {config.trigger.job}")


if __name__ == "__main__":
    app()
