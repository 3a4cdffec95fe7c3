# backends.py
from __future__ import annotations

import os
import shutil
import subprocess
import sys
import time
from pathlib import Path
from typing import Dict, Optional, Protocol

from .dag import interpolate
from .errors import BackendDispatchError, StepFailure
from .model import JobInstance, JobStatus, Platform, Step
from .ui.console import get_console


class ExecutionBackend(Protocol):
    """
    Runs job bodies. The scheduler only relies on:
      - `capacity`: how many instances may run at once (None = backend default)
      - `run(instance)`: blocks until the body finishes and returns SUCCESS or
        FAILURE; raises BackendDispatchError when the body cannot be started.
    Any other exception also counts as FAILURE for that instance.
    """
    capacity: Optional[int]

    def run(self, instance: JobInstance) -> JobStatus: ...


def host_platform() -> Platform:
    if sys.platform.startswith("win"):
        return Platform.WINDOWS
    if sys.platform == "darwin":
        return Platform.MACOS
    return Platform.UBUNTU


def default_capacity() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


# ----------------------------------------------------------------------
# Local shell backend
# ----------------------------------------------------------------------

class ShellBackend:
    """Runs each step's `run` command in a subprocess on this machine."""

    def __init__(
        self,
        repo_root: str | Path = ".",
        *,
        workflow_env: Optional[Dict[str, str]] = None,
        shell: Optional[str] = None,
        capacity: Optional[int] = None,
        strict_platform: bool = False,
    ):
        self.repo_root = Path(repo_root).resolve()
        self.workflow_env = dict(workflow_env or {})
        self.shell = shell
        self.capacity = capacity or default_capacity()
        self.strict_platform = strict_platform

    # ---- dispatch checks ----

    def _resolve_shell(self, inst: JobInstance, step: Step) -> Optional[str]:
        name = step.shell or self.shell
        if not name:
            return None
        exe = shutil.which(name)
        if exe is None:
            raise BackendDispatchError(inst.name, f"shell '{name}' not found on PATH", step=step.name)
        return exe

    def _step_cwd(self, inst: JobInstance, step: Step) -> Path:
        cwd = (self.repo_root / (step.cwd or ".")).resolve()
        if not cwd.is_dir():
            raise BackendDispatchError(inst.name, f"step '{step.name}' cwd not found: {cwd}", step=step.name)
        return cwd

    def _prepare(self, inst: JobInstance) -> Dict[int, tuple[Path, Optional[str]]]:
        if self.strict_platform and inst.platform is not None and inst.platform is not host_platform():
            raise BackendDispatchError(
                inst.name,
                f"runs on {inst.platform.value}, this host is {host_platform().value}",
                platform=inst.platform.value,
            )
        return {
            i: (self._step_cwd(inst, step), self._resolve_shell(inst, step))
            for i, step in enumerate(inst.job.steps)
            if step.run is not None
        }

    def _env(self, inst: JobInstance, step: Step) -> Dict[str, str]:
        matrix = inst.matrix_env
        env = os.environ.copy()
        for layer in (self.workflow_env, inst.job.env, step.env):
            env.update({k: interpolate(str(v), matrix, job=inst.name) for k, v in layer.items()})
        for k, v in matrix.items():
            env[f"MATRIX_{k.upper().replace('-', '_')}"] = v
        if inst.platform is not None:
            env["GATECI_PLATFORM"] = inst.platform.value
        return env

    # ---- execution ----

    def run(self, instance: JobInstance) -> JobStatus:
        console = get_console()
        prepared = self._prepare(instance)
        matrix = instance.matrix_env

        timeout = instance.job.timeout_minutes
        deadline = time.monotonic() + timeout * 60 if timeout else None

        for i, step in enumerate(instance.job.steps):
            step_name = interpolate(step.name, matrix, job=instance.name)
            if step.run is None:
                console.print_info(f"[{instance.name}] ↷ {step_name}: uses {step.uses} (not run locally)")
                continue

            console.print_step(instance.name, step_name)
            cmd = interpolate(step.run, matrix, job=instance.name)
            cwd, shell = prepared[i]
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())

            try:
                proc = subprocess.run(
                    cmd,
                    shell=True,
                    executable=shell,
                    cwd=str(cwd),
                    env=self._env(instance, step),
                    text=True,
                    capture_output=True,
                    timeout=remaining,
                )
            except subprocess.TimeoutExpired as e:
                raise StepFailure(instance.name, step_name, cmd, None, _tail(e.stdout, e.stderr)) from e

            if proc.returncode != 0:
                raise StepFailure(instance.name, step_name, cmd, proc.returncode, _tail(proc.stdout, proc.stderr))
            if console.debug and proc.stdout:
                console.print_debug(proc.stdout.rstrip())

        return JobStatus.SUCCESS


def _tail(stdout, stderr, limit: int = 4000) -> str:
    def _s(v) -> str:
        if v is None:
            return ""
        return v.decode(errors="replace") if isinstance(v, bytes) else v

    return (_s(stdout)[-limit:] + _s(stderr)[-limit:]).strip()
