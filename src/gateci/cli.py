# cli.py
from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path
from typing import Optional

import click

from gateci.backends import ShellBackend
from gateci.config import Settings
from gateci.dag import Graph, build_graph
from gateci.errors import CIError
from gateci.git_facts.git import head_sha, remote_url
from gateci.model import TriggerContext, TriggerKind, Workflow
from gateci.report import build_report, write_report
from gateci.scheduler import Scheduler
from gateci.trigger import classify, event_from_env, local_event
from gateci.ui.console import Console, get_console, set_console
from gateci.workflow import WORKFLOW_SUFFIXES, load_workflow


EXIT_REJECTED = 1
EXIT_INVALID = 2
EXIT_INTERRUPTED = 130


def find_workflow_files(directory: Path = Path(".")) -> list[Path]:
    """
    Find all workflow files in a directory.

    Returns:
        List of Path objects for workflow files
    """
    found: set[Path] = set()

    default_workflow = directory / "gateci_workflow.py"
    if default_workflow.exists():
        found.add(default_workflow)

    for suffix in WORKFLOW_SUFFIXES:
        if suffix == ".json":
            continue
        found.update(directory.glob(f"*_workflow{suffix}"))

    return sorted(found)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix not in WORKFLOW_SUFFIXES:
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  gateci run --workflow ci_workflow.yml",
            )
            sys.exit(EXIT_INVALID)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                "  gateci_workflow.py",
                "  *_workflow.py, *_workflow.yml, *_workflow.yaml",
            ],
            suggestion="Create a workflow file or specify one explicitly:\n  gateci run --workflow ci_workflow.yml",
        )
        sys.exit(EXIT_INVALID)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a workflow explicitly:\n  gateci run --workflow gateci_workflow.py",
        )
        sys.exit(EXIT_INVALID)

    return workflow_files[0]


def trigger_context(
    workflow: Workflow,
    event: Optional[str],
    branch: Optional[str],
    base_branch: Optional[str],
) -> TriggerContext:
    """Classify the run: hosted-runner environment first, CLI overrides on top, git as fallback."""
    raw = event_from_env(os.environ)
    if raw is None:
        raw = local_event(event or TriggerKind.PUSH.value, branch)
    else:
        if event:
            raw["event_name"] = event
        if branch:
            raw["branch"] = branch
    if base_branch:
        raw["base_ref"] = base_branch
    ctx = classify(raw, workflow.triggers)
    if ctx.kind is TriggerKind.PULL_REQUEST and not ctx.base_branch:
        get_console().print_warning(
            "pull_request run without a target branch; branch filters cannot match. "
            "Pass --base-branch to name it."
        )
    return ctx


def _load_settings() -> Settings:
    try:
        return Settings.from_env()
    except ValueError as e:
        get_console().print_error("Invalid configuration", str(e))
        sys.exit(EXIT_INVALID)


def _print_ci_error(e: CIError, title: str) -> None:
    details = [f"job={e.job}"] if e.job else []
    for k, v in e.details.items():
        if isinstance(v, list):
            details.append(f"{k}:")
            details.extend(f"  {item}" for item in v)
        else:
            details.append(f"{k}={v}")
    get_console().print_error(title, f"{e.kind}: {e.message}", details=details or None)


def _prepare(workflow_arg, event, branch, base_branch) -> tuple[Path, Workflow, Graph]:
    """Load + classify + build. Any build-time error aborts before dispatch."""
    workflow_path = discover_workflow(workflow_arg)
    try:
        wf = load_workflow(workflow_path)
        ctx = trigger_context(wf, event, branch, base_branch)
        graph = build_graph(wf.jobs, ctx)
    except CIError as e:
        _print_ci_error(e, "Workflow rejected before any job ran")
        sys.exit(EXIT_INVALID)
    return workflow_path, wf, graph


def _repository_name() -> str:
    try:
        url = remote_url("origin")
        return url.rstrip("/").split("/")[-1].replace(".git", "")
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path(".").resolve().name


_trigger_options = [
    click.option("--workflow", default=None, help="Workflow file (.py, .yml, .yaml, .json)"),
    click.option("--event", default=None, help="Trigger kind (push, pull_request, ...); defaults to the CI environment or push"),
    click.option("--branch", default=None, help="Branch that triggered the run; defaults to the CI environment or git"),
    click.option("--base-branch", default=None, help="Target branch of a pull request"),
]


def trigger_options(fn):
    for option in reversed(_trigger_options):
        fn = option(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """GateCI — dependency-aware CI job runner with gate aggregation."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@trigger_options
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Number of jobs run in parallel")
@click.option("--strict-platform/--no-strict-platform", default=None, help="Fail jobs whose platform differs from this host")
@click.option("--report", "report_path", default=None, help="Write a JSON status report to this path")
@click.option("--print-plan/--no-print-plan", default=True, show_default=True, help="Print stages before running")
@click.pass_context
def run(ctx, workflow, event, branch, base_branch, workers, strict_platform, report_path, print_plan):
    """Run a workflow and exit with the gate verdict."""
    console = get_console()
    settings = _load_settings()

    workflow_path, wf, graph = _prepare(workflow or settings.workflow, event, branch, base_branch)

    try:
        console.print_run_started(
            repository=_repository_name(),
            workflow=workflow_path.name,
            ctx=graph.ctx,
            instance_count=len(graph),
        )
        if print_plan:
            console.print_plan(graph.levels, graph)

        backend = ShellBackend(
            ".",
            workflow_env=wf.env,
            shell=wf.shell,
            capacity=workers or settings.max_workers,
            strict_platform=settings.strict_platform if strict_platform is None else strict_platform,
        )
        result = Scheduler(graph, backend).run()

        console.print_results(result.instances)
        for g in result.gates:
            console.print_gate(g)
        accepted, reason = result.verdict
        console.print_verdict(accepted, reason)

        report_path = report_path or settings.report_path
        if report_path:
            try:
                sha = head_sha()
            except (subprocess.CalledProcessError, FileNotFoundError):
                sha = None
            out = write_report(build_report(result, wf.name, sha=sha), report_path)
            console.print_info(f"Report written to {out}")

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_REJECTED)

    if not accepted:
        sys.exit(EXIT_REJECTED)


@cli.command()
@trigger_options
def plan(workflow, event, branch, base_branch):
    """Build the job graph for a trigger and print it without running anything."""
    console = get_console()
    settings = _load_settings()
    workflow_path, _wf, graph = _prepare(workflow or settings.workflow, event, branch, base_branch)
    console.print_run_started(
        repository=_repository_name(),
        workflow=workflow_path.name,
        ctx=graph.ctx,
        instance_count=len(graph),
    )
    console.print_plan(graph.levels, graph)


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def validate(path):
    """Check that a workflow loads and builds for every trigger kind."""
    console = get_console()
    try:
        wf = load_workflow(path)
        for kind in TriggerKind:
            graph = build_graph(wf.jobs, TriggerContext(kind=kind, event_name=kind.value))
            console.print_debug(f"{kind.value}: {len(graph)} job instance(s)")
    except CIError as e:
        _print_ci_error(e, "Invalid workflow")
        sys.exit(EXIT_INVALID)

    gates = sum(1 for j in wf.jobs if j.is_gate)
    console.print_info(f"OK: {wf.name} ({len(wf.jobs)} job(s), {gates} gate(s), {len(graph)} instance(s))")


if __name__ == "__main__":
    cli()
