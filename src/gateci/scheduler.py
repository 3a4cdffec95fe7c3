# scheduler.py
from __future__ import annotations

from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

from .backends import ExecutionBackend, default_capacity
from .dag import Graph, build_graph
from .errors import BackendDispatchError, StepFailure
from .gates import aggregate, gate_result, resolve_verdict
from .model import GateResult, InstanceKey, Job, JobInstance, JobStatus, SkipReason, TriggerContext
from .ui.console import get_console


@dataclass
class RunResult:
    ctx: TriggerContext
    instances: List[JobInstance]
    gates: List[GateResult] = field(default_factory=list)

    def status_of(self, name: str) -> JobStatus:
        for inst in self.instances:
            if inst.name == name:
                return inst.status
        raise KeyError(name)

    def gate(self, job: str) -> GateResult:
        for g in self.gates:
            if g.job == job:
                return g
        raise KeyError(job)

    @property
    def verdict(self) -> Tuple[bool, str]:
        return resolve_verdict(self.gates, self.instances)

    @property
    def accepted(self) -> bool:
        return self.verdict[0]

    @property
    def exit_code(self) -> int:
        return 0 if self.accepted else 1


class Scheduler:
    """
    Drives one Graph to completion.

    - An instance is considered once every instance it needs is terminal.
    - Gates are settled in-line: guard, then aggregation over their needs.
    - Other instances are skipped when their guard says so (or, without a
      status function in the guard, when something upstream failed). A
      status guard that declines next to a failed dependency records an
      upstream-failure skip, so the fail-fast default keeps propagating.
    - Everything else goes to the backend, at most `capacity` at a time.
    - Every instance is dispatched at most once; the run ends when all are
      terminal.
    """

    def __init__(self, graph: Graph, backend: ExecutionBackend):
        self.graph = graph
        self.backend = backend
        self.dispatched: List[InstanceKey] = []
        self._remaining: Dict[InstanceKey, int] = {k: len(d) for k, d in graph.dependencies.items()}
        self._ready: Deque[InstanceKey] = deque()

    # ---- bookkeeping (scheduler thread only) ----

    def _release(self, key: InstanceKey) -> None:
        for nxt in self.graph.dependents[key]:
            self._remaining[nxt] -= 1
            if self._remaining[nxt] == 0 and not self.graph[nxt].status.terminal:
                self._ready.append(nxt)

    def _settle(self, inst: JobInstance) -> bool:
        """Resolve an instance without the backend if possible. True when it is now terminal."""
        console = get_console()
        ctx = self.graph.ctx
        deps = self.graph.deps_of(inst.key)
        ancestors = self.graph.ancestors_of(inst.key)
        guard = self.graph.guards.get(inst.key.job)

        if inst.job.is_gate:
            if guard is not None and not guard.evaluate(ctx, deps, ancestors):
                inst.skip(SkipReason.GUARD, f"if: {guard.source}")
            else:
                inst.transition(JobStatus.RUNNING)
                inst.transition(aggregate(inst.job.gate, (d.status for d in deps)))
            console.print_gate(gate_result(inst, deps))
            return True

        if guard is None or not guard.uses_status:
            failed = [d for d in deps if d.failed_upstream]
            if failed:
                inst.skip(SkipReason.UPSTREAM_FAILURE, f"needs {failed[0].name} ({failed[0].status.value})")
                console.print_job_skipped(inst.name, inst.detail)
                return True

        if guard is not None and not guard.evaluate(ctx, deps, ancestors):
            failed = [d for d in deps if d.failed_upstream]
            if failed:
                # declined after an upstream failure: dependents must still see it
                inst.skip(
                    SkipReason.UPSTREAM_FAILURE,
                    f"if: {guard.source}; needs {failed[0].name} ({failed[0].status.value})",
                )
            else:
                inst.skip(SkipReason.GUARD, f"if: {guard.source}")
            console.print_job_skipped(inst.name, inst.detail)
            return True

        return False

    # ---- worker side ----

    def _execute(self, inst: JobInstance) -> Tuple[JobStatus, str]:
        try:
            status = self.backend.run(inst)
        except BackendDispatchError as e:
            return JobStatus.FAILURE, str(e)
        except StepFailure as e:
            detail = str(e)
            if e.output:
                detail = f"{detail}\n{e.output}"
            return JobStatus.FAILURE, detail
        except Exception as e:
            get_console().print_exception(e)
            return JobStatus.FAILURE, f"{type(e).__name__}: {e}"

        if status not in (JobStatus.SUCCESS, JobStatus.FAILURE):
            return JobStatus.FAILURE, f"backend reported non-terminal status {status!r}"
        return status, ""

    # ---- main loop ----

    def run(self) -> RunResult:
        console = get_console()

        for inst in self.graph:
            if inst.status.terminal:
                # skipped at build time: still counts as a finished dependency
                self._release(inst.key)
            elif not self.graph.dependencies[inst.key]:
                self._ready.append(inst.key)

        capacity = getattr(self.backend, "capacity", None) or default_capacity()
        in_flight: Dict[Future, InstanceKey] = {}

        with ThreadPoolExecutor(max_workers=capacity) as pool:
            while self._ready or in_flight:
                # schedule what is ready, up to the backend's capacity
                while self._ready and len(in_flight) < capacity:
                    key = self._ready.popleft()
                    inst = self.graph[key]
                    if self._settle(inst):
                        self._release(key)
                        continue

                    inst.transition(JobStatus.RUNNING)
                    self.dispatched.append(key)
                    console.print_job_start(inst.name)
                    in_flight[pool.submit(self._execute, inst)] = key

                if not in_flight:
                    continue

                # wait for one completion, then loop to schedule newly-ready jobs
                fut = next(as_completed(list(in_flight.keys())))
                key = in_flight.pop(fut)
                status, detail = fut.result()

                inst = self.graph[key]
                inst.transition(status, detail)
                console.print_job_finished(inst)
                self._release(key)

        unfinished = [i.name for i in self.graph if not i.status.terminal]
        if unfinished:
            raise RuntimeError(f"run ended with non-terminal jobs: {unfinished}")

        gates = [gate_result(g, self.graph.deps_of(g.key)) for g in self.graph.gates()]
        return RunResult(ctx=self.graph.ctx, instances=list(self.graph), gates=gates)


def run_dag(
    jobs: List[Job],
    ctx: TriggerContext,
    backend: ExecutionBackend,
    *,
    graph: Optional[Graph] = None,
) -> RunResult:
    """Build the graph for `ctx` (unless given) and run it to completion."""
    if graph is None:
        graph = build_graph(jobs, ctx)
    return Scheduler(graph, backend).run()
