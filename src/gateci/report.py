from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .scheduler import RunResult


# -------------------- Schemas --------------------

class TriggerReport(BaseModel):
    kind: str
    event_name: str
    branch: Optional[str] = None
    base_branch: Optional[str] = None
    applicable: bool = True
    reason: str = ""


class JobReport(BaseModel):
    name: str
    job: str
    matrix_value: Optional[str] = None
    platform: Optional[str] = None
    status: str
    skip_reason: Optional[str] = None
    detail: str = ""


class GateReport(BaseModel):
    job: str
    check: str
    kind: str
    status: str
    passed: Optional[bool] = None
    dependencies: Dict[str, str] = Field(default_factory=dict)


class RunReport(BaseModel):
    workflow: str
    sha: Optional[str] = None
    trigger: TriggerReport
    jobs: List[JobReport]
    gates: List[GateReport]
    accepted: bool
    reason: str
    exit_code: int
    finished_at: datetime


def build_report(result: RunResult, workflow: str, sha: Optional[str] = None) -> RunReport:
    ctx = result.ctx
    accepted, reason = result.verdict
    return RunReport(
        workflow=workflow,
        sha=sha,
        trigger=TriggerReport(
            kind=ctx.kind.value,
            event_name=ctx.event_name,
            branch=ctx.branch,
            base_branch=ctx.base_branch,
            applicable=ctx.applicable,
            reason=ctx.reason,
        ),
        jobs=[
            JobReport(
                name=i.name,
                job=i.key.job,
                matrix_value=i.key.matrix_value,
                platform=i.platform.value if i.platform else None,
                status=i.status.value,
                skip_reason=i.skip_reason.value if i.skip_reason else None,
                detail=i.detail,
            )
            for i in result.instances
        ],
        gates=[
            GateReport(
                job=g.job,
                check=g.check,
                kind=g.kind.value,
                status=g.status.value,
                passed=g.passed,
                dependencies={name: status.value for name, status in g.dependencies},
            )
            for g in result.gates
        ],
        accepted=accepted,
        reason=reason,
        exit_code=0 if accepted else 1,
        finished_at=datetime.now(timezone.utc),
    )


def write_report(report: RunReport, path: str | Path) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(report.model_dump_json(indent=2) + "\n", encoding="utf-8")
    return out
