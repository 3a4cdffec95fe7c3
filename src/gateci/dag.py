# dag.py
from __future__ import annotations

import re
from collections import deque
from typing import Dict, Iterator, List, Mapping, Optional, Set, Tuple

from .errors import CyclicDependency, UnknownDependency, WorkflowError
from .guards import Guard, compile_guard
from .model import InstanceKey, Job, JobInstance, Platform, SkipReason, TriggerContext


_MATRIX_REF = re.compile(r"\$\{\{\s*matrix\.([A-Za-z_][A-Za-z0-9_-]*)\s*\}\}")


def interpolate(text: str, matrix_env: Mapping[str, str], *, job: str | None = None) -> str:
    """Replace ${{ matrix.<key> }} references with the instance's matrix value."""

    def _sub(m: re.Match) -> str:
        key = m.group(1)
        if key not in matrix_env:
            raise WorkflowError(f"unknown matrix key {key!r} in {text!r}", job=job)
        return matrix_env[key]

    return _MATRIX_REF.sub(_sub, text)


# ----------------------------------------------------------------------
# Template-level DAG
# ----------------------------------------------------------------------

def build_dag(jobs: List[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build the template DAG from Job objects.

    Requires:
      - job.name: str (unique)
      - job.needs: names of jobs that must finish BEFORE this job
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise WorkflowError(f"Duplicate job names found: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for job in jobs:
        for dep in job.needs:
            if dep not in name_set:
                raise UnknownDependency(job.name, dep, name_set)
            # edge dep -> job (dep must finish before job)
            if job.name not in adj[dep]:
                adj[dep].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert the DAG into topological "levels" (stages).
    Jobs within one stage are independent of each other.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted(n for n, d in indeg.items() if d == 0))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level: List[str] = []
        for _ in range(len(q)):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        raise CyclicDependency(n for n, d in indeg.items() if d > 0)

    return levels


# ----------------------------------------------------------------------
# Instance graph
# ----------------------------------------------------------------------

class Graph:
    """
    Arena of JobInstances keyed by (job name, matrix value) plus the
    dependency edges between them. Owned by one Scheduler for one run.
    """

    def __init__(self, ctx: TriggerContext, levels: List[List[str]]):
        self.ctx = ctx
        self.levels = levels
        self.instances: Dict[InstanceKey, JobInstance] = {}
        self.guards: Dict[str, Optional[Guard]] = {}
        self.dependencies: Dict[InstanceKey, Tuple[InstanceKey, ...]] = {}
        self.dependents: Dict[InstanceKey, List[InstanceKey]] = {}
        self._by_job: Dict[str, List[InstanceKey]] = {}

    def _add(self, inst: JobInstance, deps: List[InstanceKey]) -> None:
        self.instances[inst.key] = inst
        self.dependencies[inst.key] = tuple(deps)
        self.dependents.setdefault(inst.key, [])
        for d in deps:
            self.dependents[d].append(inst.key)
        self._by_job.setdefault(inst.key.job, []).append(inst.key)

    def __iter__(self) -> Iterator[JobInstance]:
        return iter(self.instances.values())

    def __len__(self) -> int:
        return len(self.instances)

    def __getitem__(self, key: InstanceKey) -> JobInstance:
        return self.instances[key]

    def of_job(self, name: str) -> List[JobInstance]:
        return [self.instances[k] for k in self._by_job.get(name, [])]

    def deps_of(self, key: InstanceKey) -> List[JobInstance]:
        return [self.instances[k] for k in self.dependencies[key]]

    def ancestors_of(self, key: InstanceKey) -> List[JobInstance]:
        """Every instance `key` transitively depends on."""
        seen: Dict[InstanceKey, None] = {}
        stack = list(self.dependencies[key])
        while stack:
            k = stack.pop()
            if k in seen:
                continue
            seen[k] = None
            stack.extend(self.dependencies[k])
        return [self.instances[k] for k in seen]

    def gates(self) -> List[JobInstance]:
        return [i for i in self if i.job.is_gate]

    @property
    def finished(self) -> bool:
        return all(i.status.terminal for i in self)


def _expand(job: Job) -> List[Optional[str]]:
    if job.matrix is None:
        return [None]
    return list(job.matrix.values)


def _resolve_platform(job: Job, matrix_env: Dict[str, str]) -> Optional[Platform]:
    if job.runs_on is None:
        # a bare `os` matrix names the platform when it can
        try:
            return Platform.from_label(matrix_env["os"]) if "os" in matrix_env else None
        except ValueError:
            return None
    label = interpolate(job.runs_on, matrix_env, job=job.name)
    try:
        return Platform.from_label(label)
    except ValueError as e:
        raise WorkflowError(str(e), job=job.name) from e


def _instance_deps(job: Job, value: Optional[str], by_name: Dict[str, Job]) -> List[InstanceKey]:
    deps: List[InstanceKey] = []
    for dep_name in job.needs:
        dep = by_name[dep_name]
        if dep.matrix is None:
            deps.append(InstanceKey(dep_name))
        elif (
            value is not None
            and job.matrix is not None
            and job.matrix.key == dep.matrix.key
            and value in dep.matrix.values
        ):
            # same matrix element: test (ubuntu) -> package (ubuntu)
            deps.append(InstanceKey(dep_name, value))
        else:
            deps.extend(InstanceKey(dep_name, v) for v in dep.matrix.values)
    return list(dict.fromkeys(deps))


def build_graph(jobs: List[Job], ctx: TriggerContext) -> Graph:
    """
    Expand job templates into the instance graph for one trigger.

    Fails before anything runs on duplicate names, unknown needs, cycles and
    invalid guards. Instances whose guard is already false for this trigger
    (or every instance, when the trigger is not applicable) start Skipped.
    """
    adj, indeg = build_dag(jobs)
    levels = topo_levels(adj, indeg)
    by_name = {j.name: j for j in jobs}

    graph = Graph(ctx, levels)

    # validate every guard, even when the trigger makes them moot
    for job in jobs:
        graph.guards[job.name] = compile_guard(job.guard, job=job.name)

    for level in levels:
        for name in level:
            job = by_name[name]
            guard = graph.guards[name]
            for value in _expand(job):
                matrix_env = {job.matrix.key: value} if job.matrix is not None else {}
                inst = JobInstance(
                    key=InstanceKey(name, value),
                    job=job,
                    platform=_resolve_platform(job, matrix_env),
                )
                if not ctx.applicable:
                    inst.skip(SkipReason.NOT_APPLICABLE, ctx.reason)
                elif guard is not None and guard.evaluate(ctx) is False:
                    inst.skip(SkipReason.GUARD, f"if: {guard.source}")
                graph._add(inst, _instance_deps(job, value, by_name))

    return graph
