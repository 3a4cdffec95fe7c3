# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Tuple


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.SUCCESS, JobStatus.FAILURE, JobStatus.SKIPPED})

# monotonic: nothing re-enters PENDING, terminal statuses are final
_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.SKIPPED},
    JobStatus.RUNNING: {JobStatus.SUCCESS, JobStatus.FAILURE},
}


class SkipReason(str, Enum):
    GUARD = "guard"
    UPSTREAM_FAILURE = "upstream failure"
    NOT_APPLICABLE = "trigger not applicable"


class GateKind(str, Enum):
    """Aggregation rule of a gate job."""
    ALL_SUCCEEDED = "all-succeeded"
    ANY_FAILED = "any-failed"


class Platform(str, Enum):
    UBUNTU = "ubuntu"
    WINDOWS = "windows"
    MACOS = "macos"

    @classmethod
    def from_label(cls, label: str) -> "Platform":
        """Map a runner label such as ``ubuntu-latest`` or ``macos-13`` to a platform."""
        head = label.strip().lower().split("-", 1)[0]
        for p in cls:
            if head == p.value:
                return p
        raise ValueError(f"Unknown platform label: {label!r} (expected one of {[p.value for p in cls]})")


class TriggerKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    OTHER = "other"

    @classmethod
    def parse(cls, event_name: str | None) -> "TriggerKind":
        name = (event_name or "").strip().lower().replace("-", "_")
        for k in (cls.PUSH, cls.PULL_REQUEST):
            if name == k.value:
                return k
        return cls.OTHER


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str | None = None
    cwd: str | None = None
    uses: str | None = None          # external action, opaque to the core
    shell: str | None = None
    env: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MatrixAxis:
    """One matrix dimension: a key and the finite set of values it takes."""
    key: str
    values: Tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.key:
            raise ValueError("matrix key must be non-empty")
        if not self.values:
            raise ValueError(f"matrix {self.key!r} must have at least one value")
        if len(set(self.values)) != len(self.values):
            raise ValueError(f"matrix {self.key!r} has duplicate values: {list(self.values)}")


@dataclass
class Job:
    """
    A job template: body (steps) + dependencies + guard.

    `name` is the identity used by `needs`; `display_name` is what the hosting
    platform shows (several jobs may share it, e.g. two gates reporting as "ci").
    A job with `gate` set has no body; its status is computed from its needs.
    """
    name: str
    steps: list[Step] = field(default_factory=list)
    needs: list[str] = field(default_factory=list)

    display_name: Optional[str] = None
    matrix: Optional[MatrixAxis] = None
    runs_on: Optional[str] = None              # runner label, may use ${{ matrix.<key> }}
    guard: Optional[str] = None                # `if:` expression
    gate: Optional[GateKind] = None

    env: Dict[str, str] = field(default_factory=dict)
    timeout_minutes: Optional[float] = None

    @property
    def check_name(self) -> str:
        return self.display_name or self.name

    @property
    def is_gate(self) -> bool:
        return self.gate is not None


@dataclass(frozen=True)
class TriggerFilter:
    """`on:` entry: an event kind, optionally restricted to branch globs."""
    kind: TriggerKind
    branches: Optional[Tuple[str, ...]] = None


@dataclass
class Workflow:
    name: str
    jobs: List[Job]
    triggers: List[TriggerFilter] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    shell: Optional[str] = None                # defaults.run.shell


@dataclass(frozen=True)
class TriggerContext:
    """What produced this run. Immutable for the lifetime of the run."""
    kind: TriggerKind
    event_name: str
    branch: Optional[str] = None
    base_branch: Optional[str] = None
    applicable: bool = True
    reason: str = ""

    @property
    def filtered_branch(self) -> Optional[str]:
        # pull requests are filtered by the branch they target
        if self.kind is TriggerKind.PULL_REQUEST:
            return self.base_branch
        return self.branch


class InstanceKey(NamedTuple):
    job: str
    matrix_value: Optional[str] = None

    def __str__(self) -> str:
        if self.matrix_value is None:
            return self.job
        return f"{self.job} ({self.matrix_value})"


@dataclass
class JobInstance:
    """One concrete execution of a Job for one matrix element."""
    key: InstanceKey
    job: Job
    platform: Optional[Platform] = None
    status: JobStatus = JobStatus.PENDING
    skip_reason: Optional[SkipReason] = None
    detail: str = ""

    @property
    def name(self) -> str:
        return str(self.key)

    @property
    def matrix_env(self) -> Dict[str, str]:
        if self.job.matrix is None or self.key.matrix_value is None:
            return {}
        return {self.job.matrix.key: self.key.matrix_value}

    def transition(self, new: JobStatus, detail: str = "") -> None:
        from .errors import InvalidTransition

        if new not in _ALLOWED_TRANSITIONS.get(self.status, set()):
            raise InvalidTransition(self.name, self.status.value, new.value)
        self.status = new
        if detail:
            self.detail = detail

    def skip(self, reason: SkipReason, detail: str = "") -> None:
        self.transition(JobStatus.SKIPPED, detail)
        self.skip_reason = reason

    @property
    def failed_upstream(self) -> bool:
        """True when this instance counts as a failure for its dependents' fail-fast default."""
        return self.status is JobStatus.FAILURE or (
            self.status is JobStatus.SKIPPED and self.skip_reason is SkipReason.UPSTREAM_FAILURE
        )


@dataclass(frozen=True)
class GateResult:
    """Final status of a gate job plus the dependency statuses it was computed from."""
    job: str
    check: str
    kind: GateKind
    status: JobStatus
    dependencies: Tuple[Tuple[str, JobStatus], ...] = ()

    @property
    def reported(self) -> bool:
        return self.status is not JobStatus.SKIPPED

    @property
    def passed(self) -> Optional[bool]:
        """Verdict of this gate for the hosting platform, None when it did not report."""
        if not self.reported:
            return None
        if self.kind is GateKind.ALL_SUCCEEDED:
            return self.status is JobStatus.SUCCESS
        # an any-failed gate succeeds exactly when something upstream failed
        return self.status is not JobStatus.SUCCESS
