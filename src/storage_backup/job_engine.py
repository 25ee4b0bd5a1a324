from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from .config import JobConfig

LOG = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobContext:
    job: JobConfig
    started_at: datetime


@dataclass
class JobResult:
    job_name: str
    status: str
    started_at: datetime
    completed_at: datetime
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == "success"

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    @classmethod
    def failed(cls, job_name: str, error: str) -> "JobResult":
        now = utcnow()
        return cls(job_name=job_name, status="failed", started_at=now, completed_at=now, errors=[error])


class BackupService(Protocol):
    def prepare(self, context: JobContext) -> None:
        ...

    def execute(self, context: JobContext) -> None:
        ...

    def finalize(self, context: JobContext) -> None:
        ...


class BackupServiceError(Exception):
    """Raised by backup services to signal controlled job failures."""

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]


class JobEngine:
    """Drives one backup job through prepare, execute and finalize."""

    def run(self, job_config: JobConfig, service: BackupService) -> JobResult:
        context = JobContext(job=job_config, started_at=utcnow())
        LOG.info("Starting %s job %s (%d source(s))", job_config.service, job_config.name, len(job_config.sources))

        errors: List[str] = []
        try:
            service.prepare(context)
            service.execute(context)
            service.finalize(context)
        except BackupServiceError as exc:
            errors.extend(exc.errors)
        except Exception as exc:  # noqa: BLE001
            LOG.exception("Job %s raised an unexpected error", job_config.name)
            errors.append(str(exc))

        return JobResult(
            job_name=job_config.name,
            status="failed" if errors else "success",
            started_at=context.started_at,
            completed_at=utcnow(),
            errors=errors,
        )
