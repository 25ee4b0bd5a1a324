from __future__ import annotations

from typing import Callable, Iterable, List, Optional, Sequence

from .azcopy import AzCopyRunner, locate_azcopy
from .config import CoreConfig, JobConfig, ConfigurationError
from .job_engine import BackupService, JobEngine, JobResult
from .storage import BlobContainerProvisioner

ServiceFactory = Callable[[JobConfig, CoreConfig, AzCopyRunner, BlobContainerProvisioner], BackupService]


class BackupOrchestrator:
    """High-level orchestrator that runs backup jobs through the job engine."""

    def __init__(
        self,
        config: CoreConfig,
        service_factory: ServiceFactory,
        runner: Optional[AzCopyRunner] = None,
        provisioner: Optional[BlobContainerProvisioner] = None,
    ) -> None:
        self._config = config
        self._service_factory = service_factory
        self._runner = runner
        self._provisioner = provisioner or BlobContainerProvisioner(endpoint_suffix=config.azcopy.endpoint_suffix)
        self._engine = JobEngine()

    @property
    def runner(self) -> AzCopyRunner:
        if self._runner is None:
            azcopy_cfg = self._config.azcopy
            executable = locate_azcopy(azcopy_cfg.path, azcopy_cfg.search_root)
            self._runner = AzCopyRunner(executable, settle_delay=azcopy_cfg.settle_delay_seconds)
        return self._runner

    def run(self, job_names: Optional[Sequence[str]] = None) -> List[JobResult]:
        jobs = list(self._select_jobs(job_names))
        results: List[JobResult] = []
        for job in jobs:
            try:
                service = self._service_factory(job, self._config, self.runner, self._provisioner)
            except Exception as exc:  # noqa: BLE001
                results.append(JobResult.failed(job.name, f"Service instantiation failed: {exc}"))
                continue

            results.append(self._engine.run(job, service))
        return results

    def _select_jobs(self, job_names: Optional[Sequence[str]]) -> Iterable[JobConfig]:
        if job_names:
            name_set = set(job_names)
            missing = name_set - {job.name for job in self._config.jobs}
            if missing:
                missing_str = ", ".join(sorted(missing))
                raise ConfigurationError(f"Unknown job(s) requested: {missing_str}")
            for job in self._config.jobs:
                if job.name in name_set:
                    yield job
        else:
            yield from self._config.jobs

