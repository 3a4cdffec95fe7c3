"""Tests for the Python workflow DSL."""

import pytest

from gateci import JobBuilder, build, ci_gates, gate, job, matrix, pull_request, push, sh, uses, wf
from gateci.model import GateKind, MatrixAxis, TriggerKind


class TestJob:
    def test_steps_positional_and_list(self):
        j = job("test", sh("b", "make b"), steps_list=[sh("a", "make a")])
        assert [s.name for s in j.steps] == ["a", "b"]

    def test_requires_steps(self):
        with pytest.raises(ValueError, match="at least one step"):
            job("empty")

    def test_default_cwd(self):
        j = job("test", sh("a", "make"), sh("b", "make", cwd="sub"), cwd="root")
        assert [s.cwd for s in j.steps] == ["root", "sub"]

    def test_env_values_are_strings(self):
        j = job("test", sh("a", "make"), env={"LEVEL": 3})
        assert j.env == {"LEVEL": "3"}

    def test_uses_step(self):
        step = uses("checkout", "actions/checkout@v4")
        assert step.run is None
        assert step.uses == "actions/checkout@v4"

    def test_matrix(self):
        axis = matrix("python", [3.11, "3.12"])
        assert axis == MatrixAxis("python", ("3.11", "3.12"))


class TestGates:
    def test_gate_needs_dependencies(self):
        with pytest.raises(ValueError, match="must need"):
            gate("ci", GateKind.ALL_SUCCEEDED, needs=[])

    def test_gate_kind_from_string(self):
        g = gate("ci", "any-failed", needs=["a"])
        assert g.gate is GateKind.ANY_FAILED
        assert g.is_gate
        assert g.steps == []

    def test_ci_gates_pair(self):
        ok, bad = ci_gates(["test", "fmt"], check="build")
        assert (ok.name, bad.name) == ("build-success", "build-failure")
        assert ok.check_name == bad.check_name == "build"
        assert ok.gate is GateKind.ALL_SUCCEEDED
        assert bad.gate is GateKind.ANY_FAILED
        assert ok.guard == "event == 'push' && success()"
        assert bad.guard == "event == 'push' && !success()"
        assert ok.needs == bad.needs == ["test", "fmt"]


class TestJobBuilder:
    def test_build(self):
        j = (
            build("test")
            .depends_on("lint")
            .define_step("Run", "pytest", cwd="src")
            .with_env(LEVEL=1)
            .named("Tests")
            .over("os", "ubuntu", "macos")
            .runs_on("${{ matrix.os }}-latest")
            .when("event == 'push'")
            .timeout(5)
            .build()
        )
        assert isinstance(build("x"), JobBuilder)
        assert j.needs == ["lint"]
        assert j.env == {"LEVEL": "1"}
        assert j.check_name == "Tests"
        assert j.matrix.values == ("ubuntu", "macos")
        assert j.runs_on == "${{ matrix.os }}-latest"
        assert j.guard == "event == 'push'"
        assert j.timeout_minutes == 5

    def test_job_without_steps(self):
        with pytest.raises(ValueError, match="no steps"):
            JobBuilder("empty").build()

    def test_gate_with_steps(self):
        with pytest.raises(ValueError, match="cannot have steps"):
            JobBuilder("ci").as_gate("all-succeeded").define_step("x", "true").build()

    def test_gate(self):
        g = JobBuilder("ci").depends_on("a").as_gate(GateKind.ANY_FAILED).build()
        assert g.gate is GateKind.ANY_FAILED


class TestWorkflow:
    def test_flattens_job_lists(self):
        w = wf(job("a", sh("a", "true")), ci_gates(["a"]), name="demo", env={"X": 1}, shell="bash")
        assert [j.name for j in w.jobs] == ["a", "ci-success", "ci-failure"]
        assert w.env == {"X": "1"}
        assert w.shell == "bash"

    def test_triggers(self):
        w = wf(job("a", sh("a", "true")), on=[push("main"), pull_request()])
        assert w.triggers[0].kind is TriggerKind.PUSH
        assert w.triggers[0].branches == ("main",)
        assert w.triggers[1].kind is TriggerKind.PULL_REQUEST
        assert w.triggers[1].branches is None
