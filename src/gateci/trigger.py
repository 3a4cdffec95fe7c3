# trigger.py
from __future__ import annotations

import subprocess
from fnmatch import fnmatch
from typing import Any, Dict, Mapping, Optional, Sequence

from .git_facts.git import current_branch
from .model import TriggerContext, TriggerFilter, TriggerKind


def _branch_from_ref(ref: str | None) -> Optional[str]:
    """refs/heads/main -> main; tags and pull refs are not branches."""
    if not ref:
        return None
    if ref.startswith("refs/heads/"):
        return ref[len("refs/heads/"):]
    if ref.startswith("refs/"):
        return None
    return ref


def event_from_env(environ: Mapping[str, str]) -> Optional[Dict[str, Any]]:
    """
    Raw event data as exported by a hosted runner, or None outside CI.

    For pull requests GITHUB_REF points at the synthetic merge ref, so the
    source branch comes from GITHUB_HEAD_REF.
    """
    event_name = environ.get("GITHUB_EVENT_NAME")
    if not event_name:
        return None

    raw: Dict[str, Any] = {"event_name": event_name}
    if event_name == "pull_request":
        raw["branch"] = environ.get("GITHUB_HEAD_REF") or None
        raw["base_ref"] = environ.get("GITHUB_BASE_REF") or None
    else:
        ref = environ.get("GITHUB_REF")
        raw["branch"] = _branch_from_ref(ref) if ref else environ.get("GITHUB_REF_NAME")
    return raw


def local_event(event_name: str = "push", branch: str | None = None) -> Dict[str, Any]:
    """Raw event data for a run started from a developer machine."""
    if branch is None:
        try:
            branch = current_branch()
        except (subprocess.CalledProcessError, FileNotFoundError):
            branch = None
    # the target of a local pull request is unknowable; the caller supplies it
    return {"event_name": event_name, "branch": branch}


def classify(raw: Mapping[str, Any], triggers: Sequence[TriggerFilter] = ()) -> TriggerContext:
    """
    Turn raw event data into a TriggerContext.

    A branch or kind outside the configured filters is not an error: the
    context comes back with applicable=False and the whole graph is skipped.
    """
    event_name = str(raw.get("event_name") or "")
    kind = TriggerKind.parse(event_name)
    branch = raw.get("branch") or _branch_from_ref(raw.get("ref"))
    base_branch = raw.get("base_ref") or None

    ctx = dict(kind=kind, event_name=event_name, branch=branch, base_branch=base_branch)

    if not triggers:
        return TriggerContext(**ctx)

    candidates = [t for t in triggers if t.kind is kind]
    if not candidates:
        configured = sorted({t.kind.value for t in triggers})
        return TriggerContext(
            **ctx,
            applicable=False,
            reason=f"event '{event_name or kind.value}' not in {configured}",
        )

    probe = TriggerContext(**ctx)
    target = probe.filtered_branch
    for t in candidates:
        if t.branches is None:
            return probe
        if target is not None and any(fnmatch(target, pattern) for pattern in t.branches):
            return probe

    patterns = sorted({p for t in candidates for p in (t.branches or ())})
    return TriggerContext(
        **ctx,
        applicable=False,
        reason=f"branch '{target}' does not match {patterns}",
    )
