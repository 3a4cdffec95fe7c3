"""Console output formatting utilities for GateCI."""

from __future__ import annotations

import sys
from typing import Iterable, List, Optional

from ..model import GateResult, JobInstance, JobStatus, TriggerContext


_STATUS_MARKS = {
    JobStatus.SUCCESS: "✓",
    JobStatus.FAILURE: "✗",
    JobStatus.SKIPPED: "⏭",
}


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_run_started(
        self,
        repository: str,
        workflow: str,
        ctx: TriggerContext,
        instance_count: int,
    ) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Repository: {repository}")
        print(f"Workflow: {workflow}")
        print(f"Trigger: {ctx.event_name or ctx.kind.value} (branch: {ctx.branch or '-'})")
        if not ctx.applicable:
            print(f"Not applicable: {ctx.reason}")
        print(f"Jobs: {instance_count}")
        print()

    def print_plan(self, levels: List[List[str]], instances: Iterable[JobInstance]) -> None:
        """Print the stages and the status every instance starts in."""
        by_job: dict[str, list[JobInstance]] = {}
        for inst in instances:
            by_job.setdefault(inst.key.job, []).append(inst)

        for idx, level in enumerate(levels):
            print(f"=== Stage {idx + 1}: {level} ===")
            for name in level:
                for inst in by_job.get(name, []):
                    if inst.status is JobStatus.SKIPPED:
                        print(f"  ⏭ {inst.name} (skipped: {inst.detail or inst.skip_reason.value})")
                    else:
                        kind = f"gate: {inst.job.gate.value}" if inst.job.is_gate else "job"
                        print(f"  ✓ {inst.name} ({kind})")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        print(f"\nJOB STARTED: {name}")

    def print_step(self, job: str, step: str) -> None:
        """Print step start message."""
        print(f"[{job}] ▶ {step}")

    def print_job_finished(self, inst: JobInstance) -> None:
        """Print the terminal status of a dispatched job."""
        print(f"{_STATUS_MARKS.get(inst.status, '?')} {inst.name}: {inst.status.value}")
        if inst.status is JobStatus.FAILURE and inst.detail:
            if self.debug:
                print(f"Error details: {inst.detail}")
            else:
                print(f"Error: {inst.detail.splitlines()[0]}")

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        print(f"⏭ {name}: skipped ({reason})")

    def print_gate(self, result: GateResult) -> None:
        """Print the outcome of a gate job."""
        if not result.reported:
            print(f"GATE {result.job} [{result.check}]: skipped")
            return
        verdict = "pass" if result.passed else "fail"
        print(f"GATE {result.job} [{result.check}] {result.kind.value}: {result.status.value} -> {verdict}")
        if self.debug:
            for dep, status in result.dependencies:
                print(f"  {dep}: {status.value}")

    def print_results(self, instances: Iterable[JobInstance]) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for inst in instances:
            line = f"  {inst.name}: {inst.status.value.upper()}"
            if inst.status is JobStatus.SKIPPED and inst.skip_reason is not None:
                line += f" ({inst.skip_reason.value})"
            print(line)

    def print_verdict(self, accepted: bool, reason: str) -> None:
        print(f"\nVERDICT: {'ACCEPTED' if accepted else 'REJECTED'} ({reason})")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_warning(self, message: str) -> None:
        """Print a non-fatal warning."""
        print(f"WARNING: {message}", file=sys.stderr)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
