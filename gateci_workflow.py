# gateci_workflow.py
# Workflow for gateci itself: lint, format check and tests on every supported
# platform, gated by one "ci" check on pushes to main.
from __future__ import annotations

from gateci.dsl import ci_gates, job, matrix, pull_request, push, sh, wf


def workflow():
    return wf(
        job(
            "lint",
            sh("Ruff check", "ruff check src tests"),
        ),
        job(
            "format-check",
            sh("Ruff format check", "ruff format --check src tests"),
        ),
        job(
            "test",
            sh("Install package", "pip install -e '.[test]'"),
            sh("Run pytest", "pytest -q"),
            matrix=matrix("os", ["ubuntu", "macos", "windows"]),
            runs_on="${{ matrix.os }}-latest",
            needs=["lint"],
            timeout_minutes=20,
        ),
        *ci_gates(["lint", "format-check", "test"]),
        name="gateci",
        on=[push("main"), pull_request("main")],
    )
