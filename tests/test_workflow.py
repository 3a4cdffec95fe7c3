"""Tests for loading workflow descriptions (YAML, JSON and Python files)."""

import json
import textwrap
from pathlib import Path

import pytest
import yaml

from gateci.dag import build_graph
from gateci.errors import WorkflowError
from gateci.model import GateKind, JobStatus, Platform, TriggerKind
from gateci.scheduler import run_dag
from gateci.trigger import classify
from gateci.workflow import load_workflow, parse_workflow

from conftest import make_ctx

RUST_WORKFLOW = Path(__file__).resolve().parents[1] / "examples" / "rust_workflow.yml"


def _parse(text: str):
    return parse_workflow(yaml.safe_load(textwrap.dedent(text)))


class TestParseWorkflow:
    def test_minimal(self):
        wf = _parse(
            """
            jobs:
              build:
                steps:
                  - run: make
            """
        )
        assert wf.name == "workflow"
        assert [j.name for j in wf.jobs] == ["build"]
        assert wf.jobs[0].steps[0].name == "make"
        assert wf.triggers == []

    def test_on_key_read_as_boolean(self):
        wf = _parse(
            """
            on: push
            jobs:
              build:
                steps: [{run: make}]
            """
        )
        assert [t.kind for t in wf.triggers] == [TriggerKind.PUSH]

    def test_on_list_and_mapping(self):
        wf = _parse(
            """
            on: [push, pull_request]
            jobs:
              build:
                steps: [{run: make}]
            """
        )
        assert [t.kind for t in wf.triggers] == [TriggerKind.PUSH, TriggerKind.PULL_REQUEST]

        wf = _parse(
            """
            on:
              push:
                branches: [main, "release/*"]
              pull_request:
            jobs:
              build:
                steps: [{run: make}]
            """
        )
        assert wf.triggers[0].branches == ("main", "release/*")
        assert wf.triggers[1].branches is None

    def test_job_fields(self):
        wf = _parse(
            """
            env:
              RUST_BACKTRACE: 1
              CI: true
            defaults:
              run:
                shell: bash
                working-directory: crates
            jobs:
              lint:
                steps: [{run: make lint}]
              test:
                name: Unit tests
                needs: lint
                if: ${{ github.event_name == 'push' }}
                runs-on: ${{ matrix.os }}-latest
                timeout-minutes: 10
                strategy:
                  fail-fast: false
                  matrix:
                    os: [ubuntu, macos]
                env:
                  LEVEL: 3
                steps:
                  - uses: actions/checkout@v4
                  - name: Test
                    run: cargo test
                    shell: sh
                    working-directory: core
                    env: {VERBOSE: "1"}
            """
        )
        assert wf.env == {"RUST_BACKTRACE": "1", "CI": "true"}
        assert wf.shell == "bash"
        lint, test = wf.jobs
        assert lint.steps[0].cwd == "crates"
        assert test.needs == ["lint"]
        assert test.display_name == "Unit tests"
        assert test.check_name == "Unit tests"
        assert test.guard == "${{ github.event_name == 'push' }}"
        assert test.matrix.key == "os"
        assert test.matrix.values == ("ubuntu", "macos")
        assert test.timeout_minutes == 10
        assert test.env == {"LEVEL": "3"}
        checkout, run = test.steps
        assert checkout.uses == "actions/checkout@v4"
        assert checkout.run is None
        assert checkout.name == "actions/checkout@v4"
        assert (run.name, run.shell, run.cwd, run.env) == ("Test", "sh", "core", {"VERBOSE": "1"})

    def test_boolean_guard(self):
        wf = _parse(
            """
            jobs:
              never:
                if: false
                steps: [{run: make}]
            """
        )
        assert wf.jobs[0].guard == "false"

    def test_gate_job(self):
        wf = _parse(
            """
            jobs:
              build:
                steps: [{run: make}]
              ci:
                gate: any-failed
                needs: [build]
            """
        )
        assert wf.jobs[1].gate is GateKind.ANY_FAILED
        assert wf.jobs[1].steps == []

    def test_unknown_keys_are_ignored(self):
        wf = _parse(
            """
            permissions: read-all
            jobs:
              build:
                permissions: {}
                steps:
                  - uses: actions/setup-python@v5
                    with: {python-version: "3.12"}
            """
        )
        assert wf.jobs[0].steps[0].uses == "actions/setup-python@v5"


class TestInvalidWorkflows:
    @pytest.mark.parametrize(
        "text, fragment",
        [
            ("jobs: {}", "no jobs"),
            ("jobs:\n  a: {}", "at least one step"),
            ("jobs:\n  a:\n    steps: [{name: nothing}]", "'run' or 'uses'"),
            ("jobs:\n  a:\n    gate: all-succeeded\n    steps: [{run: make}]", "take no steps"),
            ("jobs:\n  a:\n    gate: sometimes\n    needs: [b]", "gate"),
            ("jobs:\n  a:\n    timeout-minutes: 0\n    steps: [{run: make}]", "greater than 0"),
            (
                "jobs:\n  a:\n    strategy:\n      matrix: {os: [ubuntu], py: ['3.12']}\n    steps: [{run: make}]",
                "exactly one matrix dimension",
            ),
        ],
    )
    def test_rejected(self, text, fragment):
        with pytest.raises(WorkflowError) as exc:
            parse_workflow(yaml.safe_load(text))
        assert any(fragment in line for line in exc.value.details["errors"])

    def test_root_must_be_mapping(self):
        with pytest.raises(WorkflowError, match="mapping"):
            parse_workflow(["jobs"])

    def test_duplicate_matrix_values(self):
        with pytest.raises(WorkflowError, match="duplicate"):
            _parse(
                """
                jobs:
                  a:
                    strategy: {matrix: {os: [ubuntu, ubuntu]}}
                    steps: [{run: make}]
                """
            )


class TestRustWorkflow:
    def test_shape(self):
        wf = load_workflow(RUST_WORKFLOW)
        assert wf.name == "Rust"
        assert [j.name for j in wf.jobs] == ["test", "rustfmt", "clippy", "ci-success", "ci-failure"]
        assert {j.check_name for j in wf.jobs if j.is_gate} == {"ci"}
        assert wf.shell == "bash"
        assert wf.env["RUSTFLAGS"] == "-Dwarnings"

    def test_push_to_master(self):
        wf = load_workflow(RUST_WORKFLOW)
        ctx = classify({"event_name": "push", "branch": "master"}, wf.triggers)
        graph = build_graph(wf.jobs, ctx)
        assert [i.platform for i in graph.of_job("test")] == [Platform.UBUNTU, Platform.WINDOWS, Platform.MACOS]
        assert len(graph) == 7

    def test_push_elsewhere_skips_everything(self):
        wf = load_workflow(RUST_WORKFLOW)
        ctx = classify({"event_name": "push", "branch": "topic"}, wf.triggers)
        graph = build_graph(wf.jobs, ctx)
        assert all(i.status is JobStatus.SKIPPED for i in graph)

    def test_pull_request_skips_gates(self, scripted):
        wf = load_workflow(RUST_WORKFLOW)
        ctx = classify({"event_name": "pull_request", "branch": "topic", "base_ref": "master"}, wf.triggers)
        result = run_dag(wf.jobs, ctx, scripted())
        assert result.status_of("ci-success") is JobStatus.SKIPPED
        assert result.status_of("ci-failure") is JobStatus.SKIPPED
        assert result.status_of("test (macos)") is JobStatus.SUCCESS
        assert result.accepted

    def test_one_platform_failing(self, scripted):
        wf = load_workflow(RUST_WORKFLOW)
        result = run_dag(wf.jobs, make_ctx("push", "master"), scripted({"test (windows)": JobStatus.FAILURE}))
        assert result.status_of("ci-success") is JobStatus.SKIPPED
        assert result.status_of("ci-failure") is JobStatus.SUCCESS
        assert not result.accepted


class TestLoadWorkflow:
    def test_json(self, tmp_path):
        path = tmp_path / "ci_workflow.json"
        path.write_text(json.dumps({"name": "j", "jobs": {"a": {"steps": [{"run": "true"}]}}}))
        wf = load_workflow(path)
        assert wf.name == "j"

    def test_yaml_name_defaults_to_stem(self, tmp_path):
        path = tmp_path / "lint_workflow.yml"
        path.write_text("jobs:\n  a:\n    steps: [{run: 'true'}]\n")
        assert load_workflow(path).name == "lint_workflow"

    def test_yaml_syntax_error(self, tmp_path):
        path = tmp_path / "broken.yml"
        path.write_text("jobs: [\n")
        with pytest.raises(WorkflowError, match="could not parse"):
            load_workflow(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(WorkflowError, match="not found"):
            load_workflow(tmp_path / "nope.yml")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "ci.toml"
        path.write_text("")
        with pytest.raises(WorkflowError, match="must be one of"):
            load_workflow(path)

    def test_python_workflow_function(self, tmp_path):
        path = tmp_path / "gateci_workflow.py"
        path.write_text(
            textwrap.dedent(
                """
                from gateci import wf, job, sh, ci_gates, push

                def workflow():
                    return wf(
                        job("lint", sh("Lint", "true")),
                        ci_gates(["lint"]),
                        name="py",
                        on=[push("main")],
                    )
                """
            )
        )
        wf = load_workflow(path)
        assert wf.name == "py"
        assert [j.name for j in wf.jobs] == ["lint", "ci-success", "ci-failure"]
        assert wf.triggers[0].branches == ("main",)

    def test_python_jobs_list(self, tmp_path):
        path = tmp_path / "jobs_workflow.py"
        path.write_text(
            textwrap.dedent(
                """
                from gateci import job, sh, push

                JOBS = [job("a", sh("A", "true"))]
                TRIGGERS = [push("main")]
                """
            )
        )
        wf = load_workflow(path)
        assert wf.name == "jobs_workflow"
        assert len(wf.triggers) == 1

    def test_python_without_workflow(self, tmp_path):
        path = tmp_path / "empty_workflow.py"
        path.write_text("X = 1\n")
        with pytest.raises(WorkflowError, match="Workflow must return"):
            load_workflow(path)
