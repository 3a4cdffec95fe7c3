# workflow.py
from __future__ import annotations

import json
import runpy
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import WorkflowError
from .model import GateKind, Job, MatrixAxis, Step, TriggerFilter, TriggerKind, Workflow


Scalar = Union[str, int, float, bool]


# ----------------------------------------------------------------------
# Declarative description (YAML / JSON)
# ----------------------------------------------------------------------

class _Spec(BaseModel):
    # unknown keys (with:, id:, permissions:, ...) are the runner's business
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class StepSpec(_Spec):
    name: Optional[str] = None
    run: Optional[str] = None
    uses: Optional[str] = None
    shell: Optional[str] = None
    working_directory: Optional[str] = Field(None, alias="working-directory")
    env: Dict[str, Scalar] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _has_body(self) -> "StepSpec":
        if self.run is None and self.uses is None:
            raise ValueError("step needs either 'run' or 'uses'")
        return self

    @property
    def display(self) -> str:
        if self.name:
            return self.name
        if self.run is not None:
            return self.run.strip().splitlines()[0] if self.run.strip() else "run"
        return self.uses or "step"


class StrategySpec(_Spec):
    matrix: Dict[str, List[Scalar]]
    fail_fast: bool = Field(True, alias="fail-fast")

    @field_validator("matrix")
    @classmethod
    def _single_axis(cls, v: Dict[str, List[Scalar]]) -> Dict[str, List[Scalar]]:
        if len(v) != 1:
            raise ValueError(f"exactly one matrix dimension is supported, got {sorted(v)}")
        return v


class JobSpec(_Spec):
    name: Optional[str] = None
    needs: List[str] = Field(default_factory=list)
    if_: Optional[Union[str, bool]] = Field(None, alias="if")
    runs_on: Optional[str] = Field(None, alias="runs-on")
    strategy: Optional[StrategySpec] = None
    steps: List[StepSpec] = Field(default_factory=list)
    env: Dict[str, Scalar] = Field(default_factory=dict)
    gate: Optional[GateKind] = None
    timeout_minutes: Optional[float] = Field(None, alias="timeout-minutes", gt=0)

    @field_validator("needs", mode="before")
    @classmethod
    def _needs_list(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [v]
        return v if v is not None else []

    @model_validator(mode="after")
    def _body(self) -> "JobSpec":
        if self.gate is not None and self.steps:
            raise ValueError("gate jobs are computed from their needs and take no steps")
        if self.gate is None and not self.steps:
            raise ValueError("job must have at least one step")
        return self


class RunDefaultsSpec(_Spec):
    shell: Optional[str] = None
    working_directory: Optional[str] = Field(None, alias="working-directory")


class DefaultsSpec(_Spec):
    run: RunDefaultsSpec = Field(default_factory=RunDefaultsSpec)


class TriggerSpec(_Spec):
    branches: Optional[List[str]] = None


class WorkflowSpec(_Spec):
    name: Optional[str] = None
    on: Optional[Union[str, List[str], Dict[str, Optional[TriggerSpec]]]] = None
    env: Dict[str, Scalar] = Field(default_factory=dict)
    defaults: DefaultsSpec = Field(default_factory=DefaultsSpec)
    jobs: Dict[str, JobSpec]

    @field_validator("jobs")
    @classmethod
    def _non_empty(cls, v: Dict[str, JobSpec]) -> Dict[str, JobSpec]:
        if not v:
            raise ValueError("workflow defines no jobs")
        return v


def _str_env(env: Dict[str, Scalar]) -> Dict[str, str]:
    # YAML turns `1`/`true` into numbers/bools; process env wants strings
    out: Dict[str, str] = {}
    for k, v in env.items():
        out[k] = ("true" if v else "false") if isinstance(v, bool) else str(v)
    return out


def _triggers(on: Any) -> List[TriggerFilter]:
    if on is None:
        return []
    if isinstance(on, str):
        return [TriggerFilter(TriggerKind.parse(on))]
    if isinstance(on, list):
        return [TriggerFilter(TriggerKind.parse(k)) for k in on]
    out: List[TriggerFilter] = []
    for kind, spec in on.items():
        branches = tuple(spec.branches) if spec is not None and spec.branches is not None else None
        out.append(TriggerFilter(TriggerKind.parse(kind), branches))
    return out


def _guard_text(v: Union[str, bool, None]) -> Optional[str]:
    if isinstance(v, bool):
        return "true" if v else "false"
    return v


def _job_from_spec(job_id: str, spec: JobSpec, defaults: DefaultsSpec) -> Job:
    steps = [
        Step(
            name=s.display,
            run=s.run,
            cwd=s.working_directory or defaults.run.working_directory,
            uses=s.uses,
            shell=s.shell,
            env=_str_env(s.env),
        )
        for s in spec.steps
    ]

    matrix = None
    if spec.strategy is not None:
        key, values = next(iter(spec.strategy.matrix.items()))
        try:
            matrix = MatrixAxis(key, tuple(str(v) for v in values))
        except ValueError as e:
            raise WorkflowError(str(e), job=job_id) from e

    return Job(
        name=job_id,
        steps=steps,
        needs=list(spec.needs),
        display_name=spec.name,
        matrix=matrix,
        runs_on=spec.runs_on,
        guard=_guard_text(spec.if_),
        gate=spec.gate,
        env=_str_env(spec.env),
        timeout_minutes=spec.timeout_minutes,
    )


def _format_validation_error(e: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]


def parse_workflow(data: Any, *, name: str = "workflow") -> Workflow:
    """Validate a decoded YAML/JSON document and turn it into a Workflow."""
    if not isinstance(data, dict):
        raise WorkflowError(f"workflow root must be a mapping, got {type(data).__name__}")

    data = dict(data)
    # YAML 1.1 reads a bare `on:` key as boolean True
    if True in data:
        data["on"] = data.pop(True)

    try:
        spec = WorkflowSpec.model_validate(data)
    except ValidationError as e:
        lines = _format_validation_error(e)
        raise WorkflowError("invalid workflow description", errors=lines) from e

    return Workflow(
        name=spec.name or name,
        jobs=[_job_from_spec(job_id, js, spec.defaults) for job_id, js in spec.jobs.items()],
        triggers=_triggers(spec.on),
        env=_str_env(spec.env),
        shell=spec.defaults.run.shell,
    )


def _load_document(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        try:
            if path.suffix == ".json":
                return json.load(f)
            return yaml.safe_load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise WorkflowError(f"could not parse {path.name}: {e}") from e


# ----------------------------------------------------------------------
# Python workflow files (DSL)
# ----------------------------------------------------------------------

def _load_python(path: Path) -> Workflow:
    """
    The file must define either:
      - workflow() -> Workflow | List[Job]
      - WORKFLOW = Workflow(...)
      - JOBS = [Job, ...]  (optionally with TRIGGERS = [TriggerFilter, ...])
    """
    module_name = f"gateci_workflow_{path.stem}"
    globals_dict = runpy.run_path(str(path), run_name=module_name)

    result: Any = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            result = globals_dict["workflow"]()
        except TypeError as e:
            if "positional argument" in str(e):
                raise WorkflowError(
                    "workflow() is being called with arguments (name collision with the helper). "
                    "Use the 'wf' helper instead: `from gateci import wf, job, sh` then "
                    "`def workflow(): return wf(job(...), job(...))`"
                ) from e
            raise
    elif "WORKFLOW" in globals_dict:
        result = globals_dict["WORKFLOW"]
    elif "JOBS" in globals_dict:
        result = globals_dict["JOBS"]

    if isinstance(result, Workflow):
        return result
    if isinstance(result, list) and all(isinstance(j, Job) for j in result):
        triggers = list(globals_dict.get("TRIGGERS") or [])
        return Workflow(name=path.stem, jobs=result, triggers=triggers)

    raise WorkflowError(
        "Workflow must return/define a Workflow or a List[Job]. "
        "Define workflow() -> Workflow, WORKFLOW = wf(...) or JOBS = [Job, ...]."
    )


WORKFLOW_SUFFIXES = (".py", ".yml", ".yaml", ".json")


def load_workflow(path: str | Path) -> Workflow:
    """Load a workflow from a Python DSL file or a YAML/JSON description."""
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise WorkflowError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix not in WORKFLOW_SUFFIXES:
        raise WorkflowError(f"Workflow must be one of {list(WORKFLOW_SUFFIXES)}, got: {wf_path.name}")

    if wf_path.suffix == ".py":
        return _load_python(wf_path)
    return parse_workflow(_load_document(wf_path), name=wf_path.stem)
