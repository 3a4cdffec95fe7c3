# gates.py
"""
Gate evaluation.

A gate is a sink job without a body. Its status is a pure function of the
trigger context (through its guard) and the statuses of its dependencies:

  - all-succeeded: Success iff every dependency is Success.
  - any-failed:    Success iff some dependency is not Success.

Skipped counts as "not Success" for both rules, so the two gates are exact
duals over the same dependency vector. A matrix dependency contributes every
expanded instance, so one failing environment fails the whole template.

Pairing an all-succeeded gate and an any-failed gate under mutually exclusive
guards, with the same display name, yields exactly one reporting check per
triggered run.
"""
from __future__ import annotations

from typing import Iterable, Sequence, Tuple

from .model import GateKind, GateResult, JobInstance, JobStatus


def aggregate(kind: GateKind, statuses: Iterable[JobStatus]) -> JobStatus:
    all_succeeded = all(s is JobStatus.SUCCESS for s in statuses)
    if kind is GateKind.ALL_SUCCEEDED:
        return JobStatus.SUCCESS if all_succeeded else JobStatus.FAILURE
    return JobStatus.FAILURE if all_succeeded else JobStatus.SUCCESS


def gate_result(gate: JobInstance, dependencies: Sequence[JobInstance]) -> GateResult:
    """Snapshot of a terminal gate instance for reporting."""
    return GateResult(
        job=gate.name,
        check=gate.job.check_name,
        kind=gate.job.gate,
        status=gate.status,
        dependencies=tuple((d.name, d.status) for d in dependencies),
    )


def resolve_verdict(gates: Sequence[GateResult], instances: Iterable[JobInstance]) -> Tuple[bool, str]:
    """
    Overall accept/reject for the hosting platform.

    Every gate that reported must pass. When no gate reported (all of them
    were guarded out, e.g. on a pull request) fall back to the plain job
    outcomes so a failing run is never accepted silently.
    """
    reported = [g for g in gates if g.reported]
    if reported:
        failed = [g for g in reported if not g.passed]
        if failed:
            return False, "gate failed: " + ", ".join(f"{g.job} [{g.check}]" for g in failed)
        return True, "gate passed: " + ", ".join(f"{g.job} [{g.check}]" for g in reported)

    failures = [i.name for i in instances if i.status is JobStatus.FAILURE]
    if failures:
        return False, f"no gate reported; failed jobs: {failures}"
    return True, "no gate reported; no job failed"
