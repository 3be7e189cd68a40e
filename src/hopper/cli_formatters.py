# src/hopper/cli_formatters.py
"""Console and JSON renderings of executions for the CLI."""

from __future__ import annotations

import json
from collections.abc import Sequence

import typer

from hopper.contracts.enums import BatchStatus
from hopper.contracts.execution import JobExecution, StepExecution

_STATUS_SYMBOLS = {
    BatchStatus.STARTING: "…",
    BatchStatus.STARTED: "▶",
    BatchStatus.STOPPING: "■",
    BatchStatus.COMPLETED: "✓",
    BatchStatus.FAILED: "✗",
    BatchStatus.STOPPED: "■",
}


def _format_time(execution: JobExecution) -> str:
    if execution.start_time is None:
        return "not started"
    if execution.end_time is None:
        return f"started {execution.start_time:%Y-%m-%d %H:%M:%S}"
    seconds = (execution.end_time - execution.start_time).total_seconds()
    return f"{seconds:.2f}s"


def format_step_line(step: StepExecution) -> str:
    line = (
        f"    {_STATUS_SYMBOLS[step.status]} {step.step_name} [{step.status.value}] "
        f"read={step.read_count} written={step.write_count} filtered={step.filter_count} "
        f"skipped={step.skip_count} commits={step.commit_count} rollbacks={step.rollback_count}"
    )
    if step.exit_description:
        line += f"\n      {step.exit_description}"
    return line


def format_execution_line(execution: JobExecution) -> str:
    parameters = ", ".join(f"{name}={parameter.encode()}" for name, parameter in execution.parameters.items())
    resumed = f" (resumes #{execution.resumed_from})" if execution.resumed_from is not None else ""
    return (
        f"{_STATUS_SYMBOLS[execution.status]} #{execution.job_execution_id} {execution.job_name} "
        f"{execution.status.value}{resumed} | {_format_time(execution)} | {parameters}"
    )


def echo_execution(execution: JobExecution, *, output_format: str = "console") -> None:
    """Print one execution with its steps."""
    if output_format == "json":
        typer.echo(json.dumps(execution.summary(), indent=2))
        return
    typer.echo(format_execution_line(execution))
    for step in execution.step_executions:
        typer.echo(format_step_line(step))
    if execution.exit_description:
        typer.echo(f"  {execution.exit_description}")


def echo_executions(executions: Sequence[JobExecution], *, output_format: str = "console") -> None:
    """Print a list of executions, one line each."""
    if output_format == "json":
        typer.echo(json.dumps([execution.summary() for execution in executions], indent=2))
        return
    if not executions:
        typer.echo("No executions found.")
        return
    for execution in executions:
        typer.echo(format_execution_line(execution))
