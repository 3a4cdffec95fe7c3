from .dsl import job, sh, uses, matrix, gate, ci_gates, push, pull_request, wf, JobBuilder, build
from .dag import build_graph
from .scheduler import Scheduler, RunResult, run_dag
from .trigger import classify
from .workflow import load_workflow, parse_workflow
from .model import GateKind, Job, JobStatus, Step, TriggerContext, TriggerKind, Workflow

__all__ = [
    "job", "sh", "uses", "matrix", "gate", "ci_gates", "push", "pull_request", "wf",
    "JobBuilder", "build", "build_graph", "Scheduler", "RunResult", "run_dag", "classify",
    "load_workflow", "parse_workflow", "GateKind", "Job", "JobStatus", "Step", "TriggerContext",
    "TriggerKind", "Workflow",
]
