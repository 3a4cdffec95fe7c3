from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    workflow: Optional[str] = None
    max_workers: Optional[int] = None
    strict_platform: bool = False
    report_path: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "Settings":
        workers = environ.get("GATECI_MAX_WORKERS")
        try:
            max_workers = int(workers) if workers else None
        except ValueError:
            raise ValueError(f"GATECI_MAX_WORKERS must be an integer, got {workers!r}") from None
        if max_workers is not None and max_workers < 1:
            raise ValueError(f"GATECI_MAX_WORKERS must be >= 1, got {max_workers}")

        return cls(
            workflow=environ.get("GATECI_WORKFLOW") or None,
            max_workers=max_workers,
            strict_platform=_flag(environ.get("GATECI_STRICT_PLATFORM")),
            report_path=environ.get("GATECI_REPORT") or None,
        )
