# tests/conftest.py
"""
Shared fixtures: trigger contexts and a scripted execution backend.

The scripted backend never spawns processes. Outcomes are looked up by
instance name first ("test (ubuntu)"), then by job name ("test"); anything
not scripted succeeds. An exception instance as outcome is raised from run().
"""
from __future__ import annotations

import threading

import pytest

from gateci.model import JobStatus, TriggerContext, TriggerKind


class ScriptedBackend:
    def __init__(self, outcomes=None, capacity: int = 4, graph=None):
        self.outcomes = dict(outcomes or {})
        self.capacity = capacity
        self.graph = graph
        self.calls: list[str] = []
        self.violations: list[str] = []
        self._lock = threading.Lock()

    def run(self, instance):
        with self._lock:
            self.calls.append(instance.name)
            if self.graph is not None:
                for dep in self.graph.deps_of(instance.key):
                    if not dep.status.terminal:
                        self.violations.append(f"{instance.name} dispatched before {dep.name}")

        outcome = self.outcomes.get(instance.name, self.outcomes.get(instance.key.job, JobStatus.SUCCESS))
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def make_ctx(event: str = "push", branch: str | None = "master", base_branch: str | None = None) -> TriggerContext:
    return TriggerContext(
        kind=TriggerKind.parse(event),
        event_name=event,
        branch=branch,
        base_branch=base_branch,
    )


@pytest.fixture
def push_ctx() -> TriggerContext:
    return make_ctx("push", "master")


@pytest.fixture
def pr_ctx() -> TriggerContext:
    return make_ctx("pull_request", "feature", "master")


@pytest.fixture
def scripted():
    """Factory: scripted(outcomes, capacity=..., graph=...)."""

    def _make(outcomes=None, **kwargs) -> ScriptedBackend:
        return ScriptedBackend(outcomes, **kwargs)

    return _make


@pytest.fixture(autouse=True)
def _no_hosted_runner_env(monkeypatch):
    # runs inside a hosted CI job must not leak the job's own event into tests
    for name in ("GITHUB_EVENT_NAME", "GITHUB_REF", "GITHUB_REF_NAME", "GITHUB_HEAD_REF", "GITHUB_BASE_REF"):
        monkeypatch.delenv(name, raising=False)
    for name in ("GATECI_WORKFLOW", "GATECI_MAX_WORKERS", "GATECI_STRICT_PLATFORM", "GATECI_REPORT"):
        monkeypatch.delenv(name, raising=False)
