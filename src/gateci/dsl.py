# src/gateci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Union

from .model import GateKind, Job, MatrixAxis, Step, TriggerFilter, TriggerKind, Workflow


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, shell: str | None = None, env: Optional[Dict[str, str]] = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, shell=shell, env=dict(env or {}))


def uses(name: str, action: str) -> Step:
    """Reference an external action (not executed by the local backend)."""
    return Step(name=name, uses=action)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

def matrix(key: str, values: Iterable[Any]) -> MatrixAxis:
    """
    One matrix dimension. The job is defined once and expanded per value:

        job("test", sh("Test", "pytest"), matrix=matrix("os", ["ubuntu", "macos"]),
            runs_on="${{ matrix.os }}-latest")
    """
    return MatrixAxis(key, tuple(str(v) for v in values))


# ---------------------------------------------------------------------
# Functional Job helpers
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    display_name: Optional[str] = None,
    matrix: Optional[MatrixAxis] = None,
    runs_on: Optional[str] = None,
    when: Optional[str] = None,  # guard expression (`if:`)
    env: Optional[Dict[str, str]] = None,
    timeout_minutes: Optional[float] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        display_name=display_name,
        matrix=matrix,
        runs_on=runs_on,
        guard=when,
        env={k: str(v) for k, v in (env or {}).items()},
        timeout_minutes=timeout_minutes,
    )


def gate(
    name: str,
    kind: Union[GateKind, str],
    *,
    needs: List[str],
    when: Optional[str] = None,
    display_name: Optional[str] = None,
) -> Job:
    """A gate job: no body, status aggregated from `needs`."""
    if not needs:
        raise ValueError(f"gate({name!r}) must need at least one job")
    return Job(
        name=name,
        needs=list(needs),
        display_name=display_name,
        guard=when,
        gate=GateKind(kind),
    )


def ci_gates(
    needs: List[str],
    *,
    check: str = "ci",
    event: str = "push",
) -> List[Job]:
    """
    The mirrored success/failure gate pair reporting under one check name.

    On `event` exactly one of them reports: `<check>-success` (all-succeeded)
    when everything passed, `<check>-failure` (any-failed) otherwise.
    On any other event both are skipped.
    """
    return [
        gate(
            f"{check}-success",
            GateKind.ALL_SUCCEEDED,
            needs=needs,
            when=f"event == '{event}' && success()",
            display_name=check,
        ),
        gate(
            f"{check}-failure",
            GateKind.ANY_FAILED,
            needs=needs,
            when=f"event == '{event}' && !success()",
            display_name=check,
        ),
    ]


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._display_name: Optional[str] = None
        self._matrix: Optional[MatrixAxis] = None
        self._runs_on: Optional[str] = None
        self._guard: Optional[str] = None
        self._gate: Optional[GateKind] = None
        self._timeout: Optional[float] = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd))
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def named(self, display_name: str):
        self._display_name = display_name
        return self

    def over(self, key: str, *values: Any):
        self._matrix = matrix(key, values)
        return self

    def runs_on(self, label: str):
        self._runs_on = label
        return self

    def when(self, guard: str):
        self._guard = guard
        return self

    def as_gate(self, kind: Union[GateKind, str]):
        self._gate = GateKind(kind)
        return self

    def timeout(self, minutes: float):
        self._timeout = minutes
        return self

    def build(self) -> Job:
        if self._gate is None and not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")
        if self._gate is not None and self._steps:
            raise ValueError(f"Gate '{self.name}' cannot have steps")

        return Job(
            name=self.name,
            steps=list(self._steps),
            needs=list(self._needs),
            display_name=self._display_name,
            matrix=self._matrix,
            runs_on=self._runs_on,
            guard=self._guard,
            gate=self._gate,
            env=dict(self._env),
            timeout_minutes=self._timeout,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------

def push(*branches: str) -> TriggerFilter:
    return TriggerFilter(TriggerKind.PUSH, tuple(branches) or None)


def pull_request(*branches: str) -> TriggerFilter:
    return TriggerFilter(TriggerKind.PULL_REQUEST, tuple(branches) or None)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    *jobs: Union[Job, List[Job]],
    name: str = "workflow",
    on: Optional[List[TriggerFilter]] = None,
    env: Optional[Dict[str, str]] = None,
    shell: Optional[str] = None,
) -> Workflow:
    """
    Workflow definition helper. Use this name so you can define your own
    def workflow(): return wf(job(...), job(...)).

        from gateci import wf, job, sh, ci_gates, push

        def workflow():
            return wf(
                job("lint", sh("Ruff", "ruff check .")),
                job("test", sh("Pytest", "pytest -q")),
                *ci_gates(["lint", "test"]),
                on=[push("main")],
            )

    Lists of jobs (as returned by ci_gates) are flattened.
    """
    flat: List[Job] = []
    for j in jobs:
        if isinstance(j, list):
            flat.extend(j)
        else:
            flat.append(j)
    return Workflow(
        name=name,
        jobs=flat,
        triggers=list(on or []),
        env={k: str(v) for k, v in (env or {}).items()},
        shell=shell,
    )
