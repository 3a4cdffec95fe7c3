# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the JSON status report
      - debugging without full tracebacks
    """
    kind: str
    job: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


# ----------------------------------------------------------------------
# Build time (fatal: the run never starts)
# ----------------------------------------------------------------------

class WorkflowError(CIError):
    """The workflow description itself is malformed."""

    def __init__(self, message: str, *, job: str | None = None, **details):
        super().__init__(kind="WorkflowError", job=job, message=message, details=details)


class UnknownDependency(CIError):
    def __init__(self, job: str, missing: str, known: Iterable[str]):
        super().__init__(
            kind="UnknownDependency",
            job=job,
            message=f"Job '{job}' needs missing job '{missing}'",
            details={"missing": missing, "known": sorted(known)},
        )
        self.missing = missing


class CyclicDependency(CIError):
    def __init__(self, stuck: Iterable[str]):
        stuck = sorted(stuck)
        super().__init__(
            kind="CyclicDependency",
            job=None,
            message="Job graph has a dependency cycle",
            details={"stuck": stuck},
        )
        self.stuck = stuck


class GuardEvaluationError(CIError):
    def __init__(self, message: str, *, expression: str, job: str | None = None):
        super().__init__(
            kind="GuardEvaluationError",
            job=job,
            message=message,
            details={"expression": expression},
        )
        self.expression = expression


# ----------------------------------------------------------------------
# Dispatch time (contained to one job instance)
# ----------------------------------------------------------------------

class BackendDispatchError(CIError):
    """The execution backend could not start an instance."""

    def __init__(self, job: str, message: str, **details):
        super().__init__(kind="BackendDispatchError", job=job, message=message, details=details)


class StepFailure(CIError):
    def __init__(self, job: str, step: str, cmd: str, exit_code: int | None, output: str = ""):
        reason = "timed out" if exit_code is None else f"exit={exit_code}"
        super().__init__(
            kind="StepFailure",
            job=job,
            message=f"step '{step}' failed ({reason}): {cmd}",
            details={"step": step, "exit_code": exit_code},
        )
        self.step = step
        self.exit_code = exit_code
        self.output = output


class InvalidTransition(CIError):
    def __init__(self, job: str, current: str, requested: str):
        super().__init__(
            kind="InvalidTransition",
            job=job,
            message=f"cannot move from {current} to {requested}",
        )
